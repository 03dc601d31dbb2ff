from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from temporalio.client import Client
from temporalio.exceptions import WorkflowAlreadyStartedError

from mup_app.temporal.client import get_temporal_client
from mup_app.temporal.workflows.fulfillment_hold import WORKFLOW_NAME, MupHoldInput

logger = logging.getLogger(__name__)


def hold_workflow_id(*, shop_domain: str, order_gid: str) -> str:
    order_id = order_gid.rsplit("/", 1)[-1]
    return f"mup-hold-{shop_domain}-{order_id}"


class TemporalHoldScheduler:
    """Starts the deferred hold workflow; at most one per order."""

    def __init__(
        self,
        *,
        task_queue: str,
        client_factory: Callable[[], Awaitable[Client]] = get_temporal_client,
    ) -> None:
        self._task_queue = task_queue
        self._client_factory = client_factory

    async def schedule(self, *, delay_seconds: int, shop_domain: str, order_gid: str) -> None:
        workflow_id = hold_workflow_id(shop_domain=shop_domain, order_gid=order_gid)
        client = await self._client_factory()
        try:
            await client.start_workflow(
                WORKFLOW_NAME,
                MupHoldInput(shop_domain=shop_domain, order_gid=order_gid, delay_seconds=delay_seconds),
                id=workflow_id,
                task_queue=self._task_queue,
            )
        except WorkflowAlreadyStartedError:
            logger.info("mup.hold.already_scheduled", extra={"workflow_id": workflow_id})
            return
        logger.info(
            "mup.hold.scheduled",
            extra={"workflow_id": workflow_id, "delay_seconds": delay_seconds},
        )
