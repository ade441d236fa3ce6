"""Entry point: bootstrap a context, run one adapter, wait for delivery, print stats."""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Sequence

from dotenv import load_dotenv

from ingestor.adapters import (
    process_api_data,
    process_csv_file,
    process_queue_event,
    process_queue_message,
)
from ingestor.context import IngestionContext, build_context
from ingestor.errors import IngestionError, ValidationError
from ingestor.logging_config import setup_logging
from ingestor.settings import get_setting, load_settings

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Upper bound on waiting for retries to settle before printing stats
_DRAIN_TIMEOUT = 120.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ingestor",
        description="Ingest records from an API, a CSV file or a queue payload.",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory containing settings.yaml (default: ./config next to the package)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    csv_cmd = sub.add_parser("csv", help="Ingest a CSV file")
    csv_cmd.add_argument("path", type=Path)

    api_cmd = sub.add_parser("api", help="Ingest every page of a JSON list endpoint")
    api_cmd.add_argument("api_url")
    api_cmd.add_argument("endpoint")

    queue_cmd = sub.add_parser("queue", help="Ingest a JSON object or array from a file")
    queue_cmd.add_argument("path", type=Path)
    queue_cmd.add_argument(
        "--envelope",
        action="store_true",
        help="Payload is a Pub/Sub, SQS or HTTP delivery event; unwrap it first",
    )

    sub.add_parser("stats", help="Print empty-context stats (sanity check)")
    return parser


def _read_input(path: Path, correlation_id: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e.strerror or e}", correlation_id) from e


def _load_json(path: Path, correlation_id: str) -> Any:
    raw = _read_input(path, correlation_id)
    try:
        return json.loads(raw.decode("utf-8-sig"))
    except ValueError as e:
        raise ValidationError(f"Invalid JSON in {path.name}: {e}", correlation_id) from e


def _print_error(message: str, correlation_id: str | None) -> None:
    print(json.dumps({"error": message, "correlation_id": correlation_id}), file=sys.stderr)


async def run_command(ctx: IngestionContext, args: argparse.Namespace) -> dict[str, Any]:
    """Run one adapter against ctx. Returns the adapter result as a dict."""
    correlation_id = str(uuid.uuid4())
    settings = ctx.settings
    if args.command == "csv":
        result = await process_csv_file(
            ctx.broker,
            _read_input(args.path, correlation_id),
            args.path.name,
            correlation_id,
            max_bytes=get_setting(settings, "csv.max_bytes", 10 * 1024 * 1024),
            topic=ctx.topic,
        )
    elif args.command == "api":
        result = await process_api_data(
            ctx.broker,
            args.api_url,
            args.endpoint,
            correlation_id,
            client=ctx.api_client(args.api_url),
            topic=ctx.topic,
            page_param=get_setting(settings, "api.page_param", "page"),
            size_param=get_setting(settings, "api.page_size_param", "limit"),
            page_size=get_setting(settings, "api.page_size", 100),
        )
    elif args.command == "queue":
        payload = _load_json(args.path, correlation_id)
        process = process_queue_event if args.envelope else process_queue_message
        result = await process(ctx.broker, payload, correlation_id, topic=ctx.topic)
    else:
        return {"correlation_id": correlation_id}
    return {"correlation_id": correlation_id, **result.model_dump()}


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Bootstrap: settings -> logging -> context -> adapter -> drain -> stats."""
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config_dir)
    setup_logging(_PROJECT_ROOT, settings)
    ctx = build_context(settings)
    await ctx.start()
    try:
        try:
            result = await run_command(ctx, args)
        except IngestionError as e:
            _print_error(e.message, e.correlation_id)
            return 1
        try:
            await ctx.broker.join(timeout=_DRAIN_TIMEOUT)
        except TimeoutError:
            _print_error("Timed out waiting for deliveries to settle", result["correlation_id"])
            return 1
        print(
            json.dumps(
                {"result": result, "stats": ctx.get_stats().model_dump()},
                indent=2,
                ensure_ascii=False,
            )
        )
        return 0
    finally:
        await ctx.stop()


def main(argv: Sequence[str] | None = None) -> None:
    """Synchronous entry for the ingestion CLI."""
    load_dotenv(_PROJECT_ROOT / ".env")
    try:
        code = asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


__all__ = ["main"]
