"""Command line entry point for the crawl, download, import and enrichment steps."""
from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import Sequence

from . import config
from .authors import run_backfill
from .config_validation import validate_config
from .downloader import BatchDownloader, localize_records, plan_downloads, write_error_log
from .errors import PageLoadTimeout, StoreUnavailable
from .extractor import crawl
from .healthcheck import log_health, run_health_checks
from .reconciler import run_import
from .snapshot import load_snapshot, save_snapshot
from .translation import run_translate
from .utils import ensure_dirs, log_line, setup_run_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _build_parser() -> argparse.ArgumentParser:
    """Return an argument parser with one subcommand per pipeline step."""

    parser = argparse.ArgumentParser(
        prog="mimirprompt",
        description="Scrape the prompt gallery and reconcile it into a store.",
    )
    parser.add_argument("--data-dir", help="Directory for snapshot, images, logs and database.")
    parser.add_argument(
        "--store",
        choices=("sqlite", "pocketbase"),
        help="Target store backend (default from MIMIR_STORE_BACKEND).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    crawl_parser = subparsers.add_parser("crawl", help="Extract records into the snapshot.")
    crawl_parser.add_argument("--headful", action="store_true", help="Show the browser window.")
    crawl_parser.add_argument("--flush-every", type=int, help="Records between snapshot flushes.")

    download_parser = subparsers.add_parser("download", help="Download snapshot images.")
    download_parser.add_argument("--concurrency", type=int, help="Downloads per batch.")
    download_parser.add_argument("--retries", type=int, help="Attempts per image.")
    download_parser.add_argument(
        "--no-localize",
        action="store_true",
        help="Keep remote URLs in the snapshot after downloading.",
    )

    import_parser = subparsers.add_parser("import", help="Import the snapshot into the store.")
    import_parser.add_argument("--snapshot", type=Path, help="Snapshot file to import.")

    subparsers.add_parser("translate", help="Translate stored Chinese prompts in place.")

    authors_parser = subparsers.add_parser("authors", help="Link authors to stored prompts.")
    authors_parser.add_argument("--snapshot", type=Path, help="Snapshot file to match against.")

    subparsers.add_parser("health", help="Run the health checks.")
    return parser


def _config_from_args(args: argparse.Namespace) -> config.PipelineConfig:
    cfg = config.PipelineConfig.from_env(args.data_dir)

    overrides: dict[str, object] = {}
    if args.store:
        overrides["store_backend"] = args.store
    if getattr(args, "headful", False):
        overrides["headless"] = False
    for arg_name, field_name in (
        ("flush_every", "flush_every"),
        ("concurrency", "concurrency"),
        ("retries", "retry_attempts"),
    ):
        value = getattr(args, arg_name, None)
        if value is not None:
            overrides[field_name] = value
    return dataclasses.replace(cfg, **overrides) if overrides else cfg


def _run_crawl(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    summary = crawl(cfg)
    print(f"Crawled {summary.crawled}/{summary.total_found} items")
    print(f"  with prompts: {summary.with_prompts}")
    print(f"  snapshot: {summary.snapshot_path}")
    if summary.cancelled:
        print("  cancelled: progress saved")
    return EXIT_OK


def _run_download(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    ensure_dirs(cfg)
    setup_run_logger("download", cfg.log_dir)
    snapshot = load_snapshot(cfg.snapshot_path)
    items = plan_downloads(snapshot.records, cfg.images_dir)
    log_line(f"Found {len(items)} images to download")

    summary = BatchDownloader(cfg).download_all(items)
    write_error_log(summary.errors, cfg.download_errors_log)
    if not args.no_localize and localize_records(
        snapshot.records, cfg.images_dir, cfg.images_url_prefix
    ):
        save_snapshot(cfg.snapshot_path, snapshot)

    print(f"Downloaded: {summary.downloaded}")
    print(f"Skipped (already exists): {summary.skipped}")
    print(f"Failed: {summary.failed}")
    return EXIT_OK


def _run_import(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    summary = run_import(cfg, snapshot_path=args.snapshot)
    print(f"Imported: {summary.imported}")
    print(f"Skipped: {summary.skipped}")
    print(f"Errors: {summary.errors}")
    for message in summary.error_messages:
        print(f"  {message}")
    return EXIT_OK


def _run_translate(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    summary = run_translate(cfg)
    print(f"Translated: {summary.translated}")
    print(f"Failed: {summary.failed}")
    return EXIT_OK


def _run_authors(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    summary = run_backfill(cfg, snapshot_path=args.snapshot)
    print(f"Linked: {summary.linked}")
    print(f"Unmatched: {summary.unmatched}")
    print(f"Authors created: {summary.authors_created}")
    return EXIT_OK


def _run_health(cfg: config.PipelineConfig, args: argparse.Namespace) -> int:
    result = run_health_checks(cfg)
    log_health(result)
    return EXIT_OK if result.ok else EXIT_FAILED


COMMANDS = {
    "crawl": _run_crawl,
    "download": _run_download,
    "import": _run_import,
    "translate": _run_translate,
    "authors": _run_authors,
    "health": _run_health,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the pipeline CLI."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    cfg = _config_from_args(args)

    try:
        cfg = validate_config(cfg, "cli", mode=args.command)
    except ValueError as exc:
        print(f"Configuration error: {exc}")
        return EXIT_CONFIG

    try:
        return COMMANDS[args.command](cfg, args)
    except (PageLoadTimeout, StoreUnavailable) as exc:
        log_line(f"Fatal: {exc}")
        return EXIT_FAILED
    except FileNotFoundError as exc:
        log_line(f"Missing input: {exc}")
        return EXIT_FAILED


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
