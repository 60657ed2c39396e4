"""Worker for the AutoCount sync engine.

Runs on Temporal Cloud, listens on the sync task queue and executes the sync
workflows and activities. Activities share one process-wide runtime (local
store, sync log, AutoCount connector factory) built from the environment.

Run with --check to log in to AutoCount and exit, without polling Temporal.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from workflows.sync_workflow import EntitySyncWorkflow, FullSyncWorkflow, TASK_QUEUE_SYNC
from activities.sync import (
    preview_entity,
    execute_entity,
    push_entity,
    retry_sync,
    valuate_item,
    build_valuation_report,
)
from core.observability.logging import configure_logging
from reconciliation.runtime import get_runtime


logger = logging.getLogger(__name__)

WORKFLOWS = [EntitySyncWorkflow, FullSyncWorkflow]

ACTIVITIES = [
    preview_entity,
    execute_entity,
    push_entity,
    retry_sync,
    valuate_item,
    build_valuation_report,
]


async def check_autocount() -> bool:
    """Log in to AutoCount once and call its connection check."""
    status = await get_runtime().orchestrator.test_connection()
    if status["connected"]:
        logger.info(status["message"])
    else:
        logger.error(status["message"])
    return status["connected"]


async def run_worker(queue: str = TASK_QUEUE_SYNC):
    """Start a worker listening on the sync task queue.

    Args:
        queue: Task queue to poll

    Raises:
        Exception: If connection to Temporal Cloud fails
    """
    client = None

    try:
        # Fail fast on missing AutoCount settings, before polling
        get_runtime()

        client = await get_temporal_client()
        logger.info(f"Connected to Temporal Cloud: {client.namespace}")

        worker = Worker(
            client,
            task_queue=queue,
            workflows=WORKFLOWS,
            activities=ACTIVITIES,
        )

        logger.info(f"Worker created for queue '{queue}':")
        logger.info(f"  - Workflows: {len(WORKFLOWS)}")
        logger.info(f"  - Activities: {len(ACTIVITIES)}")

        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()

    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="AutoCount Sync Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=TASK_QUEUE_SYNC,
        help=f"Task queue to poll (default: {TASK_QUEUE_SYNC})"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Test the AutoCount connection and exit"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs"
    )

    args = parser.parse_args()
    configure_logging(json_format=args.json_logs)

    if args.check:
        ok = asyncio.run(check_autocount())
        sys.exit(0 if ok else 1)

    asyncio.run(run_worker(queue=args.queue))


if __name__ == "__main__":
    main()
