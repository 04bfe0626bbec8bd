#!/usr/bin/env python3
"""
evaldash command-line tools.

Usage:
    # Convert a workbook to JSONL locally (translation per configs/evaldash.json)
    evaldash-tools convert dataset.xlsx -o dataset.jsonl

    # Skip translation entirely
    evaldash-tools convert dataset.xlsx --provider none

    # Render a conversation string the way the review page shows it
    evaldash-tools parse "[{'role': 'user', 'content': 'hi'}]"

    # Follow a run until it completes or fails
    evaldash-tools monitor --eval-id eval_123 --run-id run_456 --interval 10
"""

import argparse
import sys
from pathlib import Path

from evalcore.client import EvalServiceClient
from evalcore.config import Settings
from evalcore.conversation import parse_conversation
from evalcore.converter import ConversionError, UnsupportedFormatError, check_extension, convert_workbook
from evalcore.logging_config import get_logger, setup_logging
from evalcore.polling import RunMonitor
from evalcore.translation import build_translator


def cmd_convert(args, settings: Settings) -> int:
    log = get_logger("cli")
    source = Path(args.input)
    if not source.exists():
        log.error(f"Input file not found: {source}")
        return 1
    try:
        check_extension(source.name)
    except UnsupportedFormatError as e:
        log.error(str(e))
        return 1

    if args.provider:
        settings.translation.provider = args.provider
    translator = build_translator(settings.translation)
    destination = Path(args.output) if args.output else source.with_suffix(".jsonl")

    try:
        stats = convert_workbook(
            source, destination, translator,
            workers=args.workers or settings.conversion.translate_workers,
            skip_ascii=settings.conversion.skip_ascii,
            target_lang=settings.translation.target_lang,
        )
    except ConversionError as e:
        log.error(str(e))
        return 1

    print(f"Input:   {source}")
    print(f"Output:  {destination}")
    print(f"Rows:    {stats.rows_read} read, {stats.rows_written} written, {stats.rows_skipped} skipped")
    return 0


def cmd_parse(args, settings: Settings) -> int:
    text = args.text if args.text is not None else sys.stdin.read()
    print(parse_conversation(text))
    return 0


def cmd_monitor(args, settings: Settings) -> int:
    client = EvalServiceClient.from_config(settings.external_api, api_key=args.api_key)
    interval = args.interval if args.interval is not None else settings.server.poll_interval
    monitor = RunMonitor(client, args.eval_id, args.run_id, interval=interval)
    try:
        details = monitor.run(max_polls=args.max_polls)
    except KeyboardInterrupt:
        monitor.stop()
        return 130

    if details is None:
        return 1
    print(f"Run {details.id}: {details.status} ({details.summary()})")
    return 0 if details.status == "completed" else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="evaldash dataset and run tools")
    parser.add_argument("--config", help="Path to configs/evaldash.json")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    convert = sub.add_parser("convert", help="Convert an .xlsx dataset to JSONL")
    convert.add_argument("input", help="Input .xlsx file")
    convert.add_argument("-o", "--output", help="Output .jsonl file (default: next to input)")
    convert.add_argument("--provider", choices=["google", "deepl", "none"],
                         help="Override translation provider")
    convert.add_argument("--workers", type=int, help="Parallel translation calls (order is kept)")
    convert.set_defaults(func=cmd_convert)

    parse = sub.add_parser("parse", help="Render a conversation string as role: content")
    parse.add_argument("text", nargs="?", help="Conversation string (default: stdin)")
    parse.set_defaults(func=cmd_parse)

    monitor = sub.add_parser("monitor", help="Poll a run until it reaches a final state")
    monitor.add_argument("--eval-id", required=True)
    monitor.add_argument("--run-id", required=True)
    monitor.add_argument("--api-key", help="Evaluation service API key (default: EVAL_API_KEY)")
    monitor.add_argument("--interval", type=float, help="Seconds between polls")
    monitor.add_argument("--max-polls", type=int, help="Give up after this many polls")
    monitor.set_defaults(func=cmd_monitor)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.load(args.config)
    setup_logging(debug=args.debug or settings.logging.debug, log_to_file=False)
    return args.func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
