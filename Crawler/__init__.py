from .Crawler import SiteCrawler, normalize_url
