"""
tests/test_graph.py — Unit tests for the page-level workflow graph.
"""
from Graph import DEFAULT_INTENT, WorkflowGraphBuilder, intent_histogram
from Models import CrawlPage, CrawlResult, DetailedForms, FormMeta, PageElement

ROOT = "https://shop.test"


def make_element(intent: str) -> PageElement:
    return PageElement(tag="a", text=intent, intent=intent)


def make_page(path: str, links=(), intents=(), forms=0, mode="static") -> CrawlPage:
    return CrawlPage(
        url=f"{ROOT}{path}",
        title=path.strip("/") or "home",
        mode=mode,
        links=tuple(f"{ROOT}{link}" if link.startswith("/") else link for link in links),
        elements=tuple(make_element(i) for i in intents),
        forms=DetailedForms(tuple(FormMeta() for _ in range(forms))),
    )


def build(*pages: CrawlPage):
    return WorkflowGraphBuilder().build(CrawlResult(start_url=ROOT, results=tuple(pages)))


class TestIntentHistogram:
    def test_descending_count(self):
        page = make_page("/", intents=["search_input", "auth_login", "auth_login"])
        assert intent_histogram(page) == [("auth_login", 2), ("search_input", 1)]

    def test_ties_keep_first_seen_order(self):
        page = make_page("/", intents=["purchase_action", "auth_login", "auth_login", "purchase_action"])
        assert [i for i, _ in intent_histogram(page)] == ["purchase_action", "auth_login"]

    def test_elements_without_intent_ignored(self):
        page = make_page("/", intents=["", "", "contact_action"])
        assert intent_histogram(page) == [("contact_action", 1)]


class TestWorkflowGraphBuilder:
    def test_one_node_per_page(self):
        graph = build(make_page("/"), make_page("/a"), make_page("/b"))
        assert [n.id for n in graph.nodes] == [ROOT + "/", ROOT + "/a", ROOT + "/b"]

    def test_edges_only_between_crawled_pages(self):
        graph = build(
            make_page("/", links=["/a", "/never-crawled", "https://other.test/"]),
            make_page("/a"),
        )
        assert [(e.source, e.target) for e in graph.edges] == [(ROOT + "/", ROOT + "/a")]

    def test_edges_reference_nodes(self):
        graph = build(
            make_page("/", links=["/a", "/b"]),
            make_page("/a", links=["/b", "/"]),
            make_page("/b", links=["/a"]),
        )
        ids = {n.id for n in graph.nodes}
        assert all(e.source in ids and e.target in ids for e in graph.edges)

    def test_duplicate_and_self_links_collapsed(self):
        graph = build(make_page("/a", links=["/a", "/b", "/b/", "/b#x"]), make_page("/b"))
        assert graph.total_edges == 1

    def test_links_matched_after_normalisation(self):
        graph = build(make_page("/", links=["/a/#top"]), make_page("/a"))
        assert graph.edges[0].target == ROOT + "/a"

    def test_edge_intent_is_top_intent_of_source(self):
        graph = build(
            make_page("/", links=["/a"], intents=["purchase_action", "purchase_action", "auth_login"]),
            make_page("/a", links=["/"]),
        )
        by_source = {e.source: e.intent for e in graph.edges}
        assert by_source[ROOT + "/"] == "purchase_action"
        assert by_source[ROOT + "/a"] == DEFAULT_INTENT

    def test_adjacency_view(self):
        graph = build(make_page("/", links=["/a"]), make_page("/a"))
        assert graph.graph[ROOT + "/"] == [{"to": ROOT + "/a", "intent": "navigate", "action": "navigate"}]
        assert graph.graph[ROOT + "/a"] == []

    def test_summary(self):
        graph = build(
            make_page("/", links=["/a"], intents=["auth_login"], forms=1),
            make_page("/a", intents=["auth_login", "search_input"], mode="dynamic"),
            CrawlPage.failed(ROOT + "/broken", 1, "HTTP 500"),
        )
        assert graph.summary["totalPages"] == 3
        assert graph.summary["totalEdges"] == 1
        assert graph.summary["pagesWithForms"] == 1
        assert graph.summary["modes"] == {"static": 1, "dynamic": 1, "error": 1}
        assert graph.summary["intents"][0] == {"intent": "auth_login", "count": 2}

    def test_empty_crawl(self):
        graph = build()
        assert graph.nodes == [] and graph.edges == []
        assert graph.summary["totalPages"] == 0
