"""CLI entrypoint for cratetags."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .config import build_config
from .errors import CrateTagsError
from .logging import configure_logging, get_logger
from .models import NodeStatus, TagsKind
from .orchestrator import Orchestrator


def _add_common_options(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    def _default(value: object) -> object:
        return argparse.SUPPRESS if suppress_default else value

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=_default(False),
        help="Verbose output about all operations.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_default(False),
        help="Don't output anything but errors.",
    )
    parser.add_argument(
        "-f",
        "--force-recreate",
        action="store_true",
        default=_default(False),
        help="Forces the recreation of all tags.",
    )
    parser.add_argument(
        "-s",
        "--start-dir",
        default=_default(None),
        help="Start directory for the search of the Cargo.toml (defaults to current directory).",
    )
    parser.add_argument(
        "-n",
        "--num-threads",
        type=int,
        default=_default(None),
        help="Number of worker threads used to build tags (defaults to the CPU count).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=_default(None),
        help="Also write log output to this file.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cratetags",
        description="Create ctags/etags for a cargo project and all of its dependencies.",
    )
    _add_common_options(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    for kind, help_text in (
        (TagsKind.VI, "Create tags for vi-compatible editors."),
        (TagsKind.EMACS, "Create etags for emacs."),
    ):
        sub = subparsers.add_parser(kind.value, help=help_text)
        _add_common_options(sub, suppress_default=True)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for cratetags."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        quiet=bool(args.quiet),
        log_file=args.log_file,
    )
    logger = get_logger("cli")

    try:
        config = build_config(
            kind=args.command,
            start_dir=args.start_dir,
            force_recreate=bool(args.force_recreate),
            verbose=bool(args.verbose),
            quiet=bool(args.quiet),
            num_threads=args.num_threads,
        )
        orchestrator = Orchestrator.from_config(config)
        report = orchestrator.update_all_tags(config.start_dir, config.std_src_path)
    except CrateTagsError as exc:
        parser.exit(1, f"{exc}\n")
    except OSError as exc:
        parser.exit(1, f"{exc}\n")

    failures = report.failures
    if failures:
        names = ", ".join(sorted(result.node.display_name for result in failures))
        logger.warning("Tags could not be created for: %s", names)
    built = len(report.with_status(NodeStatus.DONE))
    logger.debug("Created tags for %d node(s)", built)


if __name__ == "__main__":
    main(sys.argv[1:])
