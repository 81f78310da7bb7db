"""Command line entry point: refresh the market cache of one network from the ledger."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.core.networks import NetworkName
from ledger.reconciler import ReconcileResult
from ledger.service import sync_network


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile the local market cache against the ledger",
    )
    parser.add_argument(
        "--network",
        choices=[network.value for network in NetworkName],
        default=None,
        help="Network to refresh (defaults to the NETWORK setting)",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Override the SQLAlchemy URL of the market cache",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def _write_summary(result: ReconcileResult, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(result.to_dict(), default=str, indent=2))
    logger.info("Sync summary written to {}", path)


def main(argv: list[str] | None = None) -> ReconcileResult:
    args = _parse_args(argv)
    overrides: dict[str, object] = {}
    if args.network:
        overrides["network"] = NetworkName(args.network)
    if args.database_url:
        overrides["database_url"] = args.database_url
    settings = get_settings().model_copy(update=overrides) if overrides else get_settings()

    result = asyncio.run(sync_network(settings))
    print(json.dumps(result.to_dict(), default=str, indent=2))
    if args.summary_path:
        _write_summary(result, args.summary_path)
    return result


if __name__ == "__main__":
    main()
