from __future__ import annotations

import argparse
import asyncio
import subprocess
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .core.logging import configure_logging, level_from_name
from .fetch.fetcher import RateLimitedFetcher
from .ingest.fingerprint import local_fingerprint
from .ingest.identity import quick_hash
from .ingest.mime import detect_mime
from .ingest.probe import ProbeError, probe_media
from .ingest.similarity import SimilarityPolicy, best_window_distance
from .resolve import SiteResolver

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(level_from_name(args.log_level or settings.log_level), json_output=False)
    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="clipvault developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe/fpcalc")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    subparsers = parser.add_subparsers(dest="command")

    hash_parser = subparsers.add_parser("hash", help="Print the combined dedup hash of a file")
    hash_parser.add_argument("file", help="Path to the media file")
    hash_parser.set_defaults(func=_cmd_hash)

    probe_parser = subparsers.add_parser("probe", help="Print duration, dimensions and audio presence")
    probe_parser.add_argument("file", help="Path to the media file")
    probe_parser.set_defaults(func=_cmd_probe)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a page or share URL to a direct media URL")
    resolve_parser.add_argument("url", help="Source URL")
    resolve_parser.set_defaults(func=_cmd_resolve)

    fingerprint_parser = subparsers.add_parser("fingerprint", help="Compute frame hashes and audio fingerprint")
    fingerprint_parser.add_argument("file", help="Path to the media file")
    fingerprint_parser.set_defaults(func=_cmd_fingerprint)

    compare_parser = subparsers.add_parser("compare", help="Best sliding-window distance between two files")
    compare_parser.add_argument("first", help="Path to the first media file")
    compare_parser.add_argument("second", help="Path to the second media file")
    compare_parser.set_defaults(func=_cmd_compare)
    return parser


def _existing_file(raw: str) -> Path:
    path = Path(raw).expanduser().resolve()
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)
    return path


def _cmd_hash(args: argparse.Namespace) -> None:
    digest = quick_hash(_existing_file(args.file))
    console.print_json(data=asdict(digest))


def _cmd_probe(args: argparse.Namespace) -> None:
    path = _existing_file(args.file)
    try:
        facts = probe_media(path)
    except ProbeError as exc:
        console.print(f"[red]ffprobe failed:[/] {exc}")
        sys.exit(3)
    console.print_json(data={"mime_type": detect_mime(path), **asdict(facts)})


def _cmd_resolve(args: argparse.Namespace) -> None:
    settings = get_settings()

    async def _run() -> str:
        fetcher = RateLimitedFetcher.from_settings(settings)
        try:
            return await SiteResolver.from_settings(settings, fetcher).resolve(args.url)
        finally:
            await fetcher.aclose()

    resolved = asyncio.run(_run())
    console.print_json(data={"source_url": args.url, "resolved_url": resolved, "changed": resolved != args.url})


def _fingerprint_file(path: Path) -> dict:
    settings = get_settings()
    try:
        facts = probe_media(path)
    except ProbeError as exc:
        console.print(f"[yellow]probe unavailable:[/] {exc}")
        facts = None
    fingerprint = local_fingerprint(path, content_type=detect_mime(path), facts=facts, scratch_dir=Path(settings.scratch_dir))
    return asdict(fingerprint)


def _cmd_fingerprint(args: argparse.Namespace) -> None:
    console.print_json(data=_fingerprint_file(_existing_file(args.file)))


def _cmd_compare(args: argparse.Namespace) -> None:
    first = _fingerprint_file(_existing_file(args.first))
    second = _fingerprint_file(_existing_file(args.second))
    policy = SimilarityPolicy.from_settings(get_settings())
    score = best_window_distance(first["frame_hashes"], second["frame_hashes"])
    shorter = min(len(first["frame_hashes"]), len(second["frame_hashes"]))
    threshold = policy.threshold_for(shorter)
    console.print_json(
        data={
            "first_frames": len(first["frame_hashes"]),
            "second_frames": len(second["frame_hashes"]),
            "score": score,
            "threshold": threshold,
            "similar": score is not None and score <= threshold,
        }
    )


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    checks = {
        "ffmpeg": ["ffmpeg", "-version"],
        "ffprobe": ["ffprobe", "-version"],
        "fpcalc": ["fpcalc", "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (OSError, subprocess.CalledProcessError):
            results[label] = False

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg and chromaprint.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
