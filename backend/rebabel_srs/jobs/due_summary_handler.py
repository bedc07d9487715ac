"""Lambda handler for scheduled due-count summaries."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.utilities.typing import LambdaContext

from ..services.due_service import DueAggregationService

logger = Logger()
tracer = Tracer()

# Initialize service
due_service = DueAggregationService()


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """Lambda handler for due summaries.

    Invoked by an external scheduler with {"owner_ids": [...]}. Only counts
    due items; deciding whom to notify is left to the caller.

    Args:
        event: Scheduler event with the owners to summarize.
        context: Lambda context.

    Returns:
        Response with per-owner totals.
    """
    owner_ids: List[str] = (event or {}).get("owner_ids") or []
    logger.info(f"Starting due summary job for {len(owner_ids)} owners")

    current_time = datetime.now(timezone.utc)
    logger.info(f"Processing for time: {current_time.isoformat()}")

    owners = []
    errors = []
    for owner_id in owner_ids:
        try:
            summary = due_service.due_for_owner(owner_id, current_time, count_only=True)
        except Exception as e:
            logger.error(f"Failed to summarize due items for owner {owner_id}: {e}")
            errors.append({"owner_id": owner_id, "error": str(e)})
            continue

        owners.append(
            {
                "owner_id": owner_id,
                "total_due": summary.total_due,
                "by_set": [b.model_dump(mode="json") for b in summary.by_set],
            }
        )

    response_body = {
        "owners": owners,
        "error_count": len(errors),
    }

    if errors:
        logger.warning(f"Due summary errors: {json.dumps(errors)}")

    logger.info(f"Due summary job complete: {len(owners)} owners, {len(errors)} errors")

    return {
        "statusCode": 200,
        "body": json.dumps(response_body),
    }
