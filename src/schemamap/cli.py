"""
Command-line interface for schemamap.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from schemamap.config import CrawlOptions
from schemamap.crawler import Crawler
from schemamap.errors import ScanNotFound, SchemaMapError, ValidationError
from schemamap.models import PageRef
from schemamap.pipeline import SchemaMapService, ScanStore


def print_scan_line(page: PageRef, new_links: int) -> None:
    """Print single scan result line."""
    status_str = "OK " if page.ok else "ERR"
    suffix = f"(+{new_links} links)" if page.ok else f"({page.error})"
    sys.stderr.write(f"  → {status_str} {page.url} {suffix}\n")
    sys.stderr.flush()


def print_summary(report: Dict[str, Any]) -> None:
    """Print scan summary to stderr."""
    summary = report.get("summary", {})
    sys.stderr.write("\n" + "=" * 50 + "\n")
    sys.stderr.write("SCAN SUMMARY\n")
    sys.stderr.write("=" * 50 + "\n\n")

    sys.stderr.write(f"Pages scanned:          {summary.get('pages_scanned', 0)}\n")
    sys.stderr.write(f"Pages failed:           {summary.get('pages_failed', 0)}\n")
    sys.stderr.write(f"Schemas found:          {summary.get('total_schemas', 0)}\n")
    sys.stderr.write(f"Entities:               {summary.get('total_entities', 0)}\n")
    sys.stderr.write(f"Consistency score:      {summary.get('consistency_score', 0)}/100\n\n")

    failed = [p for p in report.get("session", {}).get("pages", []) if p.get("error")]
    if failed:
        sys.stderr.write("Failed pages:\n")
        for page in failed:
            sys.stderr.write(f"  {page['url']}: {page['error']}\n")
    else:
        sys.stderr.write("No errors encountered.\n")

    recommendations = report.get("recommendations", [])
    if recommendations:
        sys.stderr.write("\nRecommendations:\n")
        for rec in recommendations:
            sys.stderr.write(f"  [{rec['level']}] {rec['type']}: {rec['message']}\n")

    sys.stderr.write("\n")


def write_output(payload: Dict[str, Any], out: Optional[str], pretty: bool) -> None:
    json_text = json.dumps(payload, ensure_ascii=False, indent=2 if pretty else None, default=str)
    if out is None or out == "-":
        print(json_text)
        return
    output_path = Path(out)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json_text, encoding="utf-8")
    sys.stderr.write(f"Results written to: {output_path}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schemamap",
        description="Crawl a website, map its JSON-LD entities and score identifier consistency.",
    )
    parser.add_argument("--verbose", action="store_true", help="Show progress, logs and summary")
    parser.add_argument("--scans-dir", help="Directory for stored scan results (default: data/scans)")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan a whole site starting from a URL")
    scan.add_argument("start_url", help="Start URL (e.g. https://example.com)")
    scan.add_argument("--max-pages", type=int, default=25, help="Maximum pages to scan (default: 25)")
    scan.add_argument("--crawl-depth", type=int, default=3, help="Link-following depth (default: 3)")
    scan.add_argument("--crawl-delay", type=float, default=1.0, help="Seconds between requests (default: 1)")
    scan.add_argument("--concurrency", type=int, help="Number of concurrent workers (default: 5)")
    scan.add_argument("--no-sitemaps", action="store_true", help="Skip sitemap and robots.txt discovery")
    scan.add_argument("--no-common-pages", action="store_true", help="Skip the common-paths guess list")
    _add_render_args(scan)

    analyze = sub.add_parser("analyze", help="Analyze a single page")
    analyze.add_argument("url", help="Page URL")
    analyze.add_argument("--timeout", type=float, default=30.0, help="Render timeout in seconds (default: 30)")
    analyze.add_argument("--renderer", choices=("browser", "static"), help="Page renderer (default: browser)")
    analyze.add_argument("--out", help="Output file path, or '-' for stdout (default: stdout)")
    analyze.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    results = sub.add_parser("results", help="Show stored results of a scan")
    results.add_argument("scan_id")
    results.add_argument("--out", help="Output file path, or '-' for stdout (default: stdout)")
    results.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    sub.add_parser("list", help="List stored scans, most recent first")
    return parser


def _add_render_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--renderer", choices=("browser", "static"), help="Page renderer (default: browser)")
    parser.add_argument("--timeout", type=float, help="Render timeout in seconds (default: 30)")
    parser.add_argument("--user-agent", help="User-Agent header")
    parser.add_argument("--out", help="Output file path, or '-' for stdout (default: stored only)")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")


async def run_scan(args: argparse.Namespace, options: CrawlOptions) -> Dict[str, Any]:
    on_page = print_scan_line if args.verbose else None
    service = SchemaMapService(
        options=options,
        crawler_factory=lambda opts: Crawler(opts, on_page=on_page),
    )
    started = await service.start_scan({
        "start_url": args.start_url,
        "options": {
            "max_pages": args.max_pages,
            "crawl_depth": args.crawl_depth,
            "crawl_delay": args.crawl_delay,
            "include_sitemaps": not args.no_sitemaps,
        },
    })
    if args.verbose:
        sys.stderr.write(f"Scan {started['scan_id']} started for {args.start_url}\n")
    return await service.wait(started["scan_id"])


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the schemamap CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    options = CrawlOptions.from_env(
        scans_dir=args.scans_dir,
        max_concurrency=getattr(args, "concurrency", None),
        include_common_pages=False if getattr(args, "no_common_pages", False) else None,
        renderer=getattr(args, "renderer", None),
        user_agent=getattr(args, "user_agent", None),
    )

    try:
        if args.command == "scan":
            if args.timeout is not None:
                options = options.merged(timeout=args.timeout)
            report = asyncio.run(run_scan(args, options))
            if report.get("status") == "failed":
                sys.stderr.write(f"Scan failed: {report.get('message')}\n")
                return 1
            if args.verbose:
                print_summary(report)
            if args.out:
                write_output(report, args.out, args.pretty)
            else:
                path = ScanStore(options.scans_dir).path_for(report["scan_id"])
                sys.stderr.write(f"Results written to: {path}\n")

        elif args.command == "analyze":
            service = SchemaMapService(options=options)
            result = asyncio.run(service.analyze({
                "url": args.url,
                "options": {"timeout": args.timeout, "renderer": args.renderer},
            }))
            write_output(result, args.out, args.pretty)

        elif args.command == "results":
            service = SchemaMapService(options=options)
            write_output(service.results(args.scan_id), args.out, args.pretty)

        elif args.command == "list":
            for scan_id, entry in SchemaMapService(options=options).list_scans().items():
                print(f"{scan_id}  {entry['timestamp']}  {entry['status']:<10}  {entry['url']}")

    except ValidationError as e:
        sys.stderr.write(f"{e}:\n")
        for detail in e.details:
            sys.stderr.write(f"  {detail['field']}: {detail['message']}\n")
        return 2
    except ScanNotFound as e:
        sys.stderr.write(f"{e}\n")
        return 1
    except SchemaMapError as e:
        sys.stderr.write(f"Error: {e}\n")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
