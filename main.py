"""
main.py — Entry point for FlowScout.

Sets up the CLI, configures logging and runs one pipeline stage (or the whole
pipeline) against a site, or starts the HTTP server.  Handles SIGINT
gracefully by finishing the current unit of work and saving partial results.

Usage::

    python main.py run https://shop.example.com [options]

See ``python main.py --help`` or README.md for full documentation.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace

import uvicorn

from Api import FlowServices, create_app
from Config import Settings
from Reporter import Reporter

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI definition
# ---------------------------------------------------------------------------


def _common_options() -> argparse.ArgumentParser:
    """Options shared by every pipeline sub-command."""
    common = argparse.ArgumentParser(add_help=False)

    # ── Output ────────────────────────────────────────────────────────────────
    out = common.add_argument_group("output")
    out.add_argument(
        "--output",
        default=None,
        metavar="FILE",
        help="Write the stage result as JSON to FILE",
    )
    out.add_argument(
        "--verbose",
        action="store_true",
        help="Enable DEBUG-level logging",
    )

    # ── Browser ───────────────────────────────────────────────────────────────
    browser = common.add_argument_group("browser")
    headless = browser.add_mutually_exclusive_group()
    headless.add_argument(
        "--headless",
        dest="headless",
        action="store_true",
        default=None,
        help="Run browser headlessly (default, or FLOWSCOUT_HEADLESS)",
    )
    headless.add_argument(
        "--no-headless",
        dest="headless",
        action="store_false",
        help="Show the browser UI (useful for debugging)",
    )
    return common


def _crawl_limits() -> argparse.ArgumentParser:
    limits_parser = argparse.ArgumentParser(add_help=False)

    # ── Crawl limits ──────────────────────────────────────────────────────────
    limits = limits_parser.add_argument_group("crawl limits")
    limits.add_argument(
        "--max-pages",
        type=int,
        default=50,
        metavar="N",
        help="Maximum pages to crawl (default: 50)",
    )
    limits.add_argument(
        "--max-depth",
        type=int,
        default=3,
        metavar="N",
        help="Maximum BFS crawl depth (default: 3)",
    )
    limits.add_argument(
        "--concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Max pages fetched at once (default: 3, or FLOWSCOUT_CONCURRENCY)",
    )
    return limits_parser


def build_arg_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="flowscout",
        description="Discover and verify user workflows on a website",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=r"""
Examples
────────
  Crawl a site and keep the page records:
    python main.py crawl https://shop.example.com --output crawl.json

  Canonical form pages only:
    python main.py forms https://shop.example.com --max-pages 30

  Discover and run the named workflows (checkout, login, contact, ...):
    python main.py discover https://shop.example.com --execute

  Full pipeline, crawl to verdicts, with the browser visible:
    python main.py run https://shop.example.com \
                   --max-pages 20 --max-depth 2 \
                   --output verdicts.json --no-headless --verbose

  HTTP server on $PORT (default 5001):
    python main.py serve
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    common = _common_options()
    limits = _crawl_limits()

    for name, help_text in (
        ("crawl", "Crawl a site and print every visited page"),
        ("forms", "Crawl, then keep one canonical page per distinct form"),
        ("graph", "Crawl, then build the page graph and coverage workflows"),
        ("run", "Crawl, canonicalize forms, then fill and submit each one"),
    ):
        cmd = sub.add_parser(name, help=help_text, parents=[common, limits])
        cmd.add_argument("url", metavar="URL", help="Starting URL to crawl")

    discover = sub.add_parser(
        "discover", help="Find named workflows from the entry page and its links", parents=[common]
    )
    discover.add_argument("url", metavar="URL", help="Entry page of the site")
    discover.add_argument(
        "--max-pages",
        type=int,
        default=15,
        metavar="N",
        help="Maximum pages to scan (default: 15)",
    )
    discover.add_argument(
        "--execute",
        action="store_true",
        default=False,
        help="Run every available workflow after discovery",
    )

    serve = sub.add_parser("serve", help="Start the HTTP API server")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument(
        "--port", type=int, default=None, help="Listen port (default: 5001, or PORT)"
    )
    serve.add_argument("--verbose", action="store_true", help="Enable DEBUG-level logging")

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings with CLI flags laid over the top."""
    settings = Settings.from_env()
    overrides: dict = {}
    if getattr(args, "headless", None) is not None:
        overrides["headless"] = args.headless
    if getattr(args, "concurrency", None):
        overrides["concurrency"] = max(1, args.concurrency)
    if getattr(args, "port", None):
        overrides["port"] = args.port
    return replace(settings, **overrides) if overrides else settings


# ---------------------------------------------------------------------------
# Main async entry point
# ---------------------------------------------------------------------------


async def run(args: argparse.Namespace) -> None:
    """Run the chosen pipeline stage and report on it."""
    reporter = Reporter(output_file=args.output)
    reporter.print_banner()

    shutdown_event = asyncio.Event()

    # ── SIGINT handler ────────────────────────────────────────────────────────
    def _on_sigint(*_) -> None:
        reporter.log_info(
            "[yellow]Ctrl-C received, finishing the current step and saving partial results…[/yellow]"
        )
        shutdown_event.set()

    signal.signal(signal.SIGINT, _on_sigint)

    settings = _settings_from_args(args)
    services = FlowServices(settings, shutdown_event=shutdown_event, on_progress=reporter.log_page)

    reporter.log_info(f"Target:      [bold cyan]{args.url}[/bold cyan]")
    reporter.log_info(
        "Planner:     "
        + (f"[bold cyan]{settings.groq_model}[/bold cyan]" if settings.has_llm else "[yellow]rule-based[/yellow]")
    )

    if args.command == "discover":
        await _discover(args, services, reporter)
    else:
        await _pipeline(args, services, reporter)

    reporter.print_summary()


async def _pipeline(args: argparse.Namespace, services: FlowServices, reporter: Reporter) -> None:
    reporter.log_info(f"Max pages:   {args.max_pages}   depth: {args.max_depth}")

    # ── Step 1: crawl ─────────────────────────────────────────────────────────
    crawl = await services.crawl(args.url, max_depth=args.max_depth, max_pages=args.max_pages)
    reporter.log_info(
        f"Crawl {crawl.status}: [bold]{crawl.total_pages}[/bold] pages visited."
    )
    if args.command == "crawl":
        reporter.save(crawl.to_dict())
        return

    if args.command == "graph":
        graph = services.detect_workflows(crawl)
        workflows = await services.generate_workflows(graph)
        reporter.log_info(
            f"Graph: [bold]{graph.total_pages}[/bold] nodes, [bold]{graph.total_edges}[/bold] edges, "
            f"{len(workflows)} workflows."
        )
        reporter.save({"graph": graph.to_dict(), "workflows": [w.to_dict() for w in workflows]})
        return

    # ── Step 2: canonicalize forms ────────────────────────────────────────────
    detection = await services.detect_forms(crawl)
    reporter.forms_kept = len(detection.form_pages)
    reporter.forms_filtered = detection.filtered_forms
    for form_page in detection.form_pages:
        reporter.log_info(f"Form page:   [cyan]{form_page.url}[/cyan]  ({form_page.forms} form(s))")
    if args.command == "forms":
        reporter.save(detection.to_dict())
        return

    # ── Step 3: fill, submit and judge ────────────────────────────────────────
    if not detection.form_pages:
        reporter.log_error("No form pages found, nothing to execute.")
        reporter.save({"crawl": crawl.to_dict(), "forms": detection.to_dict()})
        return
    if args.headless is False:
        reporter.log_info("[yellow]Forms will be submitted in a visible browser.[/yellow]")
    report = await services.test_forms(detection.form_pages)
    for result in report.results:
        if result.execution is not None:
            reporter.log_result(result.url, result.execution)
        else:
            reporter.log_error(f"{result.url}: {result.error}")
    reporter.log_info(f"Pass rate:   [bold]{report.pass_rate}%[/bold]")
    reporter.save({"forms": detection.to_dict(), "results": report.to_dict()})


async def _discover(args: argparse.Namespace, services: FlowServices, reporter: Reporter) -> None:
    discovery = await services.discover(args.url, max_pages=args.max_pages)
    reporter.pages_crawled = len(discovery.scanned_pages)
    reporter.log_info(discovery.summary)
    for workflow in discovery.detected_workflows:
        mark = "[green]available[/green]" if workflow.available else "[dim]unavailable[/dim]"
        reporter.log_info(
            f"{workflow.name:<22} {mark}  confidence={workflow.confidence}  "
            f"[cyan]{workflow.page_url}[/cyan]"
        )

    if not args.execute:
        reporter.save(discovery.to_dict())
        return

    runnable = [w for w in discovery.detected_workflows if w.available and w.steps]
    if not runnable:
        reporter.log_error("No available workflows to execute.")
        reporter.save(discovery.to_dict())
        return

    with reporter.testing_progress(len(runnable)) as (progress, task_id):

        def _on_result(workflow, result) -> None:
            reporter.log_result(workflow.name, result)
            progress.advance(task_id)

        batch = await services.execute_workflows(runnable, on_result=_on_result)

    reporter.save({"discovery": discovery.to_dict(), "execution": batch.to_dict()})


def serve(args: argparse.Namespace) -> None:
    """Run the HTTP API with uvicorn."""
    settings = _settings_from_args(args)
    app = create_app(settings)
    logger.info("Serving on %s:%d", args.host, settings.port)
    uvicorn.run(
        app,
        host=args.host,
        port=settings.port,
        log_config=None,
        log_level="debug" if args.verbose else "info",
    )


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Parse arguments, configure logging, and run the async main loop."""
    parser = build_arg_parser()
    args = parser.parse_args()

    # ── Logging setup ─────────────────────────────────────────────────────────
    log_level = logging.DEBUG if args.verbose else logging.ERROR
    if args.command == "serve" and not args.verbose:
        # the server reports requests and failures at INFO
        log_level = logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    # Suppress noisy library logs unless in verbose mode
    if not args.verbose:
        for lib in ("playwright", "httpx", "asyncio"):
            logging.getLogger(lib).setLevel(logging.WARNING)

    if args.command == "serve":
        serve(args)
        return

    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        # Second Ctrl-C while cleanup is running, exit immediately
        sys.exit(0)
    except ValueError as exc:
        Reporter().log_error(str(exc))
        sys.exit(2)


if __name__ == "__main__":
    main()
