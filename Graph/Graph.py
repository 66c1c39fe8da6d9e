"""
Graph/Graph.py — Page-level navigation graph over a crawl.

A read-only derived view: one node per crawled page, one edge per link that
lands on another crawled page.  Rebuild it from the :class:`~Models.CrawlResult`
rather than mutating it.
"""
from __future__ import annotations

import logging
from collections import Counter

from Crawler import normalize_url
from Models import CrawlPage, CrawlResult, WorkflowEdge, WorkflowGraph, WorkflowNode

logger = logging.getLogger(__name__)

DEFAULT_INTENT = "navigate"


def intent_histogram(page: CrawlPage) -> list[tuple[str, int]]:
    """Count element intents, most frequent first; ties keep first-seen order."""
    counts: dict[str, int] = {}
    for element in page.elements:
        if element.intent:
            counts[element.intent] = counts.get(element.intent, 0) + 1
    # sorted() is stable, and dicts keep insertion (first-seen) order
    return sorted(counts.items(), key=lambda item: -item[1])


class WorkflowGraphBuilder:
    """Builds :class:`~Models.WorkflowGraph` views from crawl results."""

    def build(self, crawl: CrawlResult) -> WorkflowGraph:
        nodes: list[WorkflowNode] = []
        node_ids: dict[str, str] = {}
        titles: dict[str, str] = {}
        top_intents: dict[str, str] = {}
        intent_totals: Counter[str] = Counter()
        modes: Counter[str] = Counter()

        for page in crawl.results:
            key = normalize_url(page.url) or page.url
            if key in node_ids:
                continue
            histogram = intent_histogram(page)
            node_ids[key] = page.url
            titles[page.url] = page.title
            top_intents[page.url] = histogram[0][0] if histogram else DEFAULT_INTENT
            for intent, count in histogram:
                intent_totals[intent] += count
            modes[page.mode] += 1
            nodes.append(
                WorkflowNode(
                    id=page.url,
                    url=page.url,
                    title=page.title,
                    mode=page.mode,
                    intents=histogram,
                    link_count=len(page.links),
                    forms=page.forms_count,
                    inputs=page.inputs_count,
                    buttons=page.buttons_count,
                )
            )

        edges: list[WorkflowEdge] = []
        adjacency: dict[str, list[dict[str, str]]] = {node.id: [] for node in nodes}
        for node in nodes:
            page_links = self._links_of(crawl, node.id)
            seen_targets: set[str] = set()
            for link in page_links:
                target = node_ids.get(normalize_url(link))
                if target is None or target == node.id or target in seen_targets:
                    continue
                seen_targets.add(target)
                intent = top_intents[node.id]
                edges.append(
                    WorkflowEdge(
                        source=node.id,
                        target=target,
                        source_title=titles[node.id],
                        target_title=titles[target],
                        intent=intent,
                    )
                )
                adjacency[node.id].append({"to": target, "intent": intent, "action": "navigate"})

        summary = {
            "totalPages": len(nodes),
            "totalEdges": len(edges),
            "pagesWithForms": sum(1 for n in nodes if n.forms > 0),
            "modes": dict(modes),
            "intents": [
                {"intent": intent, "count": count}
                for intent, count in sorted(intent_totals.items(), key=lambda item: -item[1])
            ],
        }
        logger.info("Workflow graph: %d nodes, %d edges", len(nodes), len(edges))
        return WorkflowGraph(nodes=nodes, edges=edges, graph=adjacency, summary=summary)

    @staticmethod
    def _links_of(crawl: CrawlResult, url: str) -> tuple[str, ...]:
        for page in crawl.results:
            if page.url == url:
                return page.links
        return ()
