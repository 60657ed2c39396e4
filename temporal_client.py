"""Temporal client factory and sync launcher.

Creates connections to Temporal (Cloud or a local dev server) using settings
from the environment, and starts sync workflows from the command line:

    python temporal_client.py item            # preview + execute item pull
    python temporal_client.py supplier --push
    python temporal_client.py all             # suppliers, items, purchase orders
"""

import argparse
import asyncio
import os
import ssl
import uuid
from pathlib import Path
from typing import Optional

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client

from workflows.sync_workflow import (
    EntitySyncWorkflow,
    EntitySyncWorkflowInput,
    FullSyncWorkflow,
    FullSyncInput,
    TASK_QUEUE_SYNC,
)


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Temporal endpoint (e.g., "temporal.example.com:7233")
    - TEMPORAL_NAMESPACE: Namespace (e.g., "default")
    - TEMPORAL_API_KEY: API key for Temporal Cloud; omit for a local dev server
    - TEMPORAL_CERT_PATH: Path to client certificate (optional, for mTLS)

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If TEMPORAL_ENDPOINT is missing
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT")
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")

    if not endpoint:
        raise ValueError(
            "TEMPORAL_ENDPOINT environment variable not set. "
            "Set to your Temporal endpoint (e.g., 'localhost:7233' or 'temporal.example.com:7233')"
        )

    if not api_key:
        # Local dev server: no TLS, no credentials
        return await Client.connect(endpoint, namespace=namespace)

    tls_config: Optional[ssl.SSLContext] = ssl.create_default_context()
    if cert_path:
        tls_config.load_cert_chain(cert_path)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls_config,
        api_key=api_key,
    )


async def start_sync(entity_type: str, push: bool = False, preview_only: bool = False) -> dict:
    """Run one sync workflow to completion and return its result."""
    client = await get_temporal_client()
    run_id = uuid.uuid4().hex[:8]

    if entity_type == "all":
        return await client.execute_workflow(
            FullSyncWorkflow.run,
            FullSyncInput(),
            id=f"autocount-full-sync-{run_id}",
            task_queue=TASK_QUEUE_SYNC,
        )

    direction = "push" if push else "pull"
    return await client.execute_workflow(
        EntitySyncWorkflow.run,
        EntitySyncWorkflowInput(entity_type=entity_type, direction=direction, preview_only=preview_only),
        id=f"autocount-{entity_type}-{direction}-{run_id}",
        task_queue=TASK_QUEUE_SYNC,
    )


def main():
    parser = argparse.ArgumentParser(description="Start an AutoCount sync workflow")
    parser.add_argument("entity_type", choices=["item", "supplier", "purchase_order", "all"])
    parser.add_argument("--push", action="store_true", help="Push local records to AutoCount")
    parser.add_argument("--preview", action="store_true", help="Stop after the preview report")
    args = parser.parse_args()

    result = asyncio.run(start_sync(args.entity_type, push=args.push, preview_only=args.preview))
    print(result)


if __name__ == "__main__":
    main()
