"""
Run one sync from the command line and wait for it to finish.

Usage:
    python scripts/run_sync.py airlines --clear-existing
    python scripts/run_sync.py petPolicies --mode update --option smart_update=true
    python scripts/run_sync.py countryPolicies --option country_name=Japan
    python scripts/run_sync.py petPolicies --resume
"""

import argparse
import asyncio
import json
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import engine, async_session_maker
from core.exceptions import SyncException
from core.logging import setup_logging
from models.base import SyncMode, SyncType
from sync.continuation import DriverState
from sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def parse_option(raw: str):
    """key=value, where value is parsed as JSON when possible"""
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected key=value, got {raw!r}")
    try:
        return key, json.loads(value)
    except ValueError:
        return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a reference data sync")
    parser.add_argument("type", type=SyncType, choices=list(SyncType), metavar="TYPE",
                        help=", ".join(t.value for t in SyncType))
    parser.add_argument("--resume", action="store_true", help="Continue the last incomplete job")
    parser.add_argument("--clear-existing", action="store_true", help="Purge stored content first")
    parser.add_argument("--batch-size", type=int, default=None, help="Items per chunk")
    parser.add_argument("--mode", type=SyncMode, choices=list(SyncMode), default=None)
    parser.add_argument("--option", type=parse_option, action="append", default=[],
                        help="Provider option key=value (repeatable)")
    return parser


async def run_sync(args) -> int:
    orchestrator = SyncOrchestrator(async_session_maker, enable_recovery=False)
    try:
        if args.resume:
            progress = await orchestrator.resume(args.type)
        else:
            progress = await orchestrator.start(
                args.type,
                clear_existing=args.clear_existing,
                batch_size=args.batch_size,
                mode=args.mode,
                provider_options=dict(args.option)
            )
        logger.info(f"Running {args.type.value} sync (job_id={progress.job_id})")

        state = await orchestrator.wait(args.type)
        final = await orchestrator.status(args.type)
        logger.info(
            f"{args.type.value} finished in state {state.value}: "
            f"processed={final.processed}/{final.total}, skipped={final.items_skipped}, "
            f"errors={len(final.error_items)}"
        )
        return 0 if state == DriverState.COMPLETE else 1

    except SyncException as e:
        logger.error(f"Sync failed: {e}")
        return 1
    finally:
        await orchestrator.shutdown()
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run_sync(build_parser().parse_args())))
