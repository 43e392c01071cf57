from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .annotations import annotations_to_document, parse_data
from .config import AppConfig, load_config
from .errors import EngineError
from .logging_utils import setup_logging
from .models import UnifiedResult
from .pipeline import check_with_config, client_from_config


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ltcheck", description="Check long texts with a LanguageTool server.")
    sub = p.add_subparsers(dest="cmd", required=True)

    c = sub.add_parser("check", help="Check text, annotated data or files.")
    src = c.add_mutually_exclusive_group()
    src.add_argument("--text", "-t", default=None, help="Text to check.")
    src.add_argument("--data", "-d", default=None, help='Annotated data JSON: {"annotation": [...]}.')
    c.add_argument("filenames", nargs="*", help="Files to check (stdin when nothing else is given).")
    c.add_argument("--config", "-c", default=None, help="Path to YAML config.")
    c.add_argument("--provider", choices=["languagetool", "mock"], default=None, help="Override server provider.")
    c.add_argument("--max-length", type=int, default=None, help="Maximum characters per request.")
    c.add_argument(
        "--concurrency",
        choices=["sequential", "parallel"],
        default=None,
        help="Dispatch fragments one at a time or in parallel.",
    )
    c.add_argument("--max-workers", type=int, default=None, help="Parallel requests in flight.")
    c.add_argument("--timeout", type=float, default=None, help="Timeout for the whole check in seconds.")
    c.add_argument("--overlap", type=int, default=None, help="Overlap between fragments in characters.")
    c.add_argument(
        "--split-pattern",
        default=None,
        help=(
            "Literal text that also marks a cut point, like a paragraph break. "
            "\\n and \\t stand for newline and tab."
        ),
    )
    c.add_argument("--language", "-l", default=None, help="Language code like en-US, or 'auto'.")
    c.add_argument("--raw", "-r", action="store_true", help="Print the JSON result instead of one line per match.")
    c.add_argument("--progress", action="store_true", help="Show a progress bar while checking.")
    c.add_argument("--log", default=None, help="Override log path.")
    c.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    for name, help_text in (
        ("languages", "List the languages the server supports."),
        ("ping", "Measure the round-trip time to the server."),
    ):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("--config", "-c", default=None, help="Path to YAML config.")
        s.add_argument("--provider", choices=["languagetool", "mock"], default=None, help="Override server provider.")
        s.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return p


def _config_with_provider(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    if args.provider is not None:
        server_cfg = cfg.server.__class__(**{**cfg.server.__dict__, "provider": args.provider})
        cfg = cfg.__class__(**{**cfg.__dict__, "server": server_cfg})
    return cfg


def format_match_lines(result: UnifiedResult, origin: str | None = None) -> list[str]:
    if not result.matches:
        clean = "No errors were found in provided text"
        return [f"{origin}: {clean}" if origin else clean]
    lines: list[str] = []
    for m in result.matches:
        where = f"{m.line_number}:{m.line_offset}" if m.line_number is not None else str(m.offset)
        prefix = f"{origin}:{where}" if origin else where
        line = f"{prefix}: [{m.rule_id}] {m.message}"
        if m.replacements:
            line += f" ({', '.join(r.value for r in m.replacements)})"
        lines.append(line)
    return lines


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.cmd in ("languages", "ping"):
        try:
            cfg = _config_with_provider(args)
            client = client_from_config(cfg)
        except (OSError, ValueError) as e:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            return 2
        logger = setup_logging(None, level=logging.DEBUG if args.verbose else logging.WARNING)
        try:
            if args.cmd == "languages":
                langs = client.languages()
                print(json.dumps([lang.to_dict() for lang in langs], ensure_ascii=False, indent=2))
            else:
                print(f"PONG! Delay: {round(client.ping())} ms")
        except EngineError as e:
            logger.error("Request failed: %s", e)
            return 1
        return 0

    if args.cmd == "check":
        if args.filenames and (args.text is not None or args.data is not None):
            print("Files cannot be combined with --text or --data", file=sys.stderr)
            return 2
        try:
            cfg = _config_with_provider(args)

            # CLI overrides
            check_overrides = {
                "max_length": args.max_length,
                "concurrency": args.concurrency,
                "max_workers": args.max_workers,
                "timeout_s": args.timeout,
                "overlap": args.overlap,
                "language": args.language,
            }
            check_overrides = {k: v for k, v in check_overrides.items() if v is not None}
            if args.split_pattern:
                check_overrides["split_pattern"] = args.split_pattern.replace("\\n", "\n").replace("\\t", "\t")
            if check_overrides:
                check_cfg = cfg.check.__class__(**{**cfg.check.__dict__, **check_overrides})
                cfg = cfg.__class__(**{**cfg.__dict__, "check": check_cfg})
            if args.log is not None:
                cfg = cfg.__class__(**{**cfg.__dict__, "log_path": str(args.log)})
        except (OSError, ValueError) as e:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            return 2
        if cfg.check.max_length <= 0:
            print("--max-length must be positive", file=sys.stderr)
            return 2
        if cfg.check.overlap < 0 or cfg.check.overlap >= cfg.check.max_length:
            print(
                f"--overlap must be in [0, {cfg.check.max_length}), got {cfg.check.overlap}",
                file=sys.stderr,
            )
            return 2

        logger = setup_logging(
            Path(cfg.log_path) if cfg.log_path else None,
            level=logging.DEBUG if args.verbose else logging.WARNING,
        )

        inputs: list[tuple[str | None, str, list]] = []
        try:
            if args.data is not None:
                text, spans = annotations_to_document(parse_data(args.data))
                inputs.append((None, text, spans))
            elif args.text is not None:
                inputs.append((None, args.text, []))
            elif args.filenames:
                for name in args.filenames:
                    inputs.append((name, Path(name).read_text(encoding="utf-8"), []))
            else:
                inputs.append((None, sys.stdin.read(), []))
        except (OSError, ValueError) as e:
            print(f"Cannot read input: {e}", file=sys.stderr)
            return 2

        for origin, text, spans in inputs:
            try:
                result = check_with_config(text, cfg, markup=spans or None, show_progress=args.progress)
            except EngineError as e:
                logger.error("Check failed%s: %s", f" for {origin}" if origin else "", e)
                return 1
            except ValueError as e:
                print(f"Invalid check settings: {e}", file=sys.stderr)
                return 2
            if args.raw:
                print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
            else:
                for line in format_match_lines(result, origin):
                    print(line)
        return 0

    print(f"Unknown command: {args.cmd}", file=sys.stderr)
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
