from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from .config import ERROR_POLICIES, LINK_RESOLUTIONS, config_from_mapping, read_config_file
from .errors import GardenError
from .pipeline import build_site


def parse_args(argv: Optional[list[str]] = None) -> tuple[argparse.Namespace, dict]:
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument(
        "--config",
        default="site.toml",
        help="Path to site config file (TOML/YAML/JSON).",
    )
    pre_args, _ = pre_parser.parse_known_args(argv)
    data = read_config_file(Path(pre_args.config))

    parser = argparse.ArgumentParser(description="Build a static site from a folder of markdown notes.")
    parser.add_argument("--config", default=pre_args.config, help="Path to site config file (TOML/YAML/JSON).")
    parser.add_argument("--content", help="Directory containing markdown notes and assets.")
    parser.add_argument("--output", help="Output directory for the site.")
    parser.add_argument("--static", help="Directory copied to static/ in the output.")
    parser.add_argument("--base-url", help="Public site URL used for the sitemap and RSS feed.")
    parser.add_argument(
        "--link-resolution",
        choices=LINK_RESOLUTIONS,
        help="How link targets are matched against documents.",
    )
    parser.add_argument(
        "--build-workers",
        type=int,
        help="Number of worker threads for transforming/emitting (0 = auto).",
    )
    parser.add_argument(
        "--on-error",
        choices=ERROR_POLICIES,
        help="Skip documents that fail to process, or abort the build.",
    )
    parser.add_argument(
        "--strict",
        dest="on_error",
        action="store_const",
        const="abort",
        help="Same as --on-error abort.",
    )
    parser.add_argument(
        "--incremental",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Skip publishing when the artifacts match the lock file.",
    )
    parser.add_argument("--lock-file", help="Path to build lock JSON.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log debug detail.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors.")
    args = parser.parse_args(argv)
    return args, data


def apply_overrides(data: dict, args: argparse.Namespace) -> dict:
    overrides = {
        "content": args.content,
        "output": args.output,
        "static": args.static,
        "base_url": args.base_url,
        "link_resolution": args.link_resolution,
        "build_workers": args.build_workers,
        "on_error": args.on_error,
        "incremental": args.incremental,
        "lock_file": args.lock_file,
    }
    merged = dict(data)
    merged.update({key: value for key, value in overrides.items() if value is not None})
    return merged


def configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.ERROR
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main(argv: Optional[list[str]] = None) -> None:
    try:
        args, data = parse_args(argv)
        configure_logging(args)
        config = config_from_mapping(apply_overrides(data, args))
        project_root = Path(args.config).resolve().parent if Path(args.config).exists() else Path.cwd()
        logging.getLogger(__name__).debug("Config: %s", dataclasses.asdict(config))
        start = time.perf_counter()
        report = build_site(config, project_root)
    except GardenError as exc:
        print(f"Build failed: {exc}", file=sys.stderr)
        sys.exit(1)
    elapsed = time.perf_counter() - start
    print(f"Build completed in {elapsed:.2f}s.")
    print(report.summary_text())
    if report.published:
        print(f"Site generated in: {report.output_dir}")
