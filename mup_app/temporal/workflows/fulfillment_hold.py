from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from mup_app.temporal.activities.fulfillment_hold_activities import place_mup_fulfillment_hold_activity

WORKFLOW_NAME = "MupFulfillmentHoldWorkflow"


@dataclass
class MupHoldInput:
    shop_domain: str
    order_gid: str
    delay_seconds: int = 60


@workflow.defn(name=WORKFLOW_NAME)
class MupFulfillmentHoldWorkflow:
    """Waits for fulfillment orders to exist, then makes a single hold attempt."""

    @workflow.run
    async def run(self, input: MupHoldInput) -> Dict[str, Any]:
        if input.delay_seconds > 0:
            await workflow.sleep(timedelta(seconds=input.delay_seconds))

        # One attempt only; failures surface as manual-required inside the activity.
        return await workflow.execute_activity(
            place_mup_fulfillment_hold_activity,
            {"shop_domain": input.shop_domain, "order_gid": input.order_gid},
            start_to_close_timeout=timedelta(minutes=2),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )
