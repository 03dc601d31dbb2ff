from __future__ import annotations

import asyncio
import logging

from temporalio.worker import Worker

from mup_app.config import settings
from mup_app.temporal.activities.fulfillment_hold_activities import place_mup_fulfillment_hold_activity
from mup_app.temporal.client import get_temporal_client
from mup_app.temporal.workflows.fulfillment_hold import MupFulfillmentHoldWorkflow


async def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    client = await get_temporal_client()
    worker = Worker(
        client,
        task_queue=settings.TEMPORAL_TASK_QUEUE,
        workflows=[MupFulfillmentHoldWorkflow],
        activities=[place_mup_fulfillment_hold_activity],
    )
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
