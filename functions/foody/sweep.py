"""
Scheduled campaign sweep shared by the Lambda handler and the CLI.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from notifications.campaigns import CampaignOrchestrator, SweepResult

logger = logging.getLogger(__name__)


def _result_to_dict(result: SweepResult) -> dict:
    item = {
        "campaignId": result.campaign_id,
        "campaignName": result.campaign_name,
        "success": result.success,
    }
    if result.summary is not None:
        item["result"] = {
            "sentCount": result.summary.sent_count,
            "failedCount": result.summary.failed_count,
            "totalRecipients": result.summary.total_recipients,
            "invalidTokensCleared": result.summary.invalid_tokens_cleared,
            "message": result.summary.message,
        }
    if result.error is not None:
        item["error"] = result.error
    return item


def run_sweep(
    orchestrator: CampaignOrchestrator, now: Optional[float] = None
) -> tuple[int, dict]:
    """
    Sends every due campaign and returns (status code, report body).

    Per-campaign failures are reported in the body; only a failure to list
    due campaigns yields a 500.
    """
    now = time.time() if now is None else now
    checked_at = datetime.fromtimestamp(now, tz=timezone.utc).isoformat()
    try:
        results = orchestrator.run_due(now)
    except Exception as e:
        logger.exception("Campaign sweep failed")
        return 500, {
            "success": False,
            "error": "Campaign scheduler failed",
            "message": str(e),
        }

    if not results:
        message = "No campaigns due for sending"
    else:
        message = f"Processed {len(results)} campaigns"
    logger.info(message)
    return 200, {
        "success": True,
        "message": message,
        "checkedAt": checked_at,
        "dueCampaigns": len(results),
        "results": [_result_to_dict(r) for r in results],
    }
