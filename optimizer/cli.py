"""Command-line entry point: optimize media kept in a local storage directory."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from optimizer.errors import ClientError, OptimizationError
from optimizer.logging_config import configure_logging
from optimizer.schemas import ContentType, StrategyKey, TargetConnection, TargetDevice
from optimizer.service import ContentOptimizationService, build_service
from optimizer.settings import settings
from optimizer.storage import get_storage_adapter


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2), file=sys.stdout)


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("ref", help="Storage key of the source file.")
    parser.add_argument(
        "--type",
        dest="content_type",
        required=True,
        choices=[c.value.lower() for c in ContentType],
        help="Content type of the source file.",
    )


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="content-optimizer", description="Content optimization engine.")
    parser.add_argument("--storage", default=settings.STORAGE_BASE_PATH, help="Local storage directory.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("strategies", help="List available strategies.")

    analyze = commands.add_parser("analyze", help="Analyze a stored file.")
    _add_source_args(analyze)

    optimize = commands.add_parser("optimize", help="Optimize a stored file.")
    _add_source_args(optimize)
    optimize.add_argument("--strategy", choices=[s.value for s in StrategyKey], default=None)
    optimize.add_argument("--device", choices=[d.value for d in TargetDevice], default=None)
    optimize.add_argument("--connection", choices=[c.value for c in TargetConnection], default=None)
    optimize.add_argument("--preserve-metadata", action="store_true", help="Keep EXIF/ICC and container tags.")

    return parser.parse_args(argv)


async def run(args: argparse.Namespace, service: ContentOptimizationService) -> None:
    if args.command == "strategies":
        _print_json([s.model_dump(mode="json", by_alias=True) for s in service.list_strategies()])
    elif args.command == "analyze":
        analysis = await service.analyze_content(args.ref, args.content_type)
        _print_json(analysis.model_dump(mode="json", by_alias=True))
    elif args.command == "optimize":
        options = {
            "strategy": args.strategy,
            "target_device": args.device,
            "target_connection": args.connection,
            "preserve_metadata": args.preserve_metadata,
        }
        result = await service.optimize_content(args.ref, args.content_type, options)
        _print_json(result.model_dump(mode="json", by_alias=True))


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level)
    service = build_service(storage=get_storage_adapter(args.storage))

    try:
        asyncio.run(run(args, service))
    except ClientError as exc:
        print(f"invalid request: {exc}", file=sys.stderr)
        return 1
    except OptimizationError as exc:
        print(f"optimization failed: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
