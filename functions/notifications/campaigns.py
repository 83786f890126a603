# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

"""
Campaign lifecycle.

    draft ──► scheduled ──► sent
      ▲          │
      └──────────┘          failed ──► draft | scheduled

`send` moves any unsent campaign through `sending` to `sent`, or to `failed`
when resolution or dispatch blows up. A campaign whose audience is empty is
left in `sending` and can be sent again later.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional

from foody.db import CampaignRecord, DbClient
from notifications.errors import (
    AlreadySentError,
    CampaignImmutableError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
)
from notifications.filters import parse_filter
from notifications.sender import NotificationSender
from notifications.types import CampaignStatus, NotificationPayload, SendSummary

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED}),
    CampaignStatus.SCHEDULED: frozenset({CampaignStatus.DRAFT, CampaignStatus.SENT}),
    CampaignStatus.SENDING: frozenset(),
    CampaignStatus.SENT: frozenset(),
    CampaignStatus.FAILED: frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED}),
}

EDITABLE_FIELDS = frozenset(
    {"name", "title", "body", "data", "filter_criteria", "scheduled_at", "status", "notes"}
)
REQUIRED_TEXT_FIELDS = ("name", "title", "body")


@dataclass
class SweepResult:
    campaign_id: str
    campaign_name: str
    success: bool
    summary: Optional[SendSummary] = None
    error: Optional[str] = None


def _parse_status(value) -> CampaignStatus:
    try:
        return CampaignStatus(value)
    except ValueError:
        raise InvalidRequestError(
            f"Unknown status '{value}'. Use: {', '.join(s.value for s in CampaignStatus)}"
        )


class CampaignOrchestrator:
    def __init__(
        self,
        db: DbClient,
        sender: NotificationSender,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.sender = sender
        self._clock = clock

    def create(
        self,
        *,
        name: Optional[str],
        title: Optional[str],
        body: Optional[str],
        data: Optional[dict] = None,
        filter_criteria: Optional[dict] = None,
        scheduled_at: Optional[float] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
        status: Optional[str] = None,
    ) -> CampaignRecord:
        if not name or not title or not body:
            raise InvalidRequestError("campaignName, title, and body are required")

        audience = parse_filter(filter_criteria or {"type": "all"})
        initial = (
            CampaignStatus.SCHEDULED if scheduled_at is not None else CampaignStatus.DRAFT
        )
        if status is not None and _parse_status(status) != initial:
            raise InvalidTransitionError("new", str(status), [initial.value])

        campaign = self.db.create_campaign(
            CampaignRecord(
                name=name,
                title=title,
                body=body,
                data=dict(data or {}),
                filter_criteria=audience.to_dict(),
                status=initial,
                scheduled_at=scheduled_at,
                created_by=created_by or "system",
                notes=notes,
            )
        )
        logger.info("Campaign created: %s (%s)", campaign.id, campaign.status.value)
        return campaign

    def get(self, campaign_id: str) -> CampaignRecord:
        campaign = self.db.get_campaign(campaign_id)
        if not campaign:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return campaign

    def list(
        self, status: Optional[str] = None, limit: int = 50, offset: int = 0
    ) -> tuple[List[CampaignRecord], int]:
        status_filter = _parse_status(status) if status else None
        return self.db.list_campaigns(status=status_filter, limit=limit, offset=offset)

    def update(self, campaign_id: str, patch: dict) -> CampaignRecord:
        """Applies only the fields present in `patch`."""
        if not patch:
            raise InvalidRequestError("No fields to update")
        unknown = set(patch) - EDITABLE_FIELDS
        if unknown:
            raise InvalidRequestError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )

        current = self.get(campaign_id)
        if current.status == CampaignStatus.SENT:
            raise CampaignImmutableError(campaign_id)

        changes = dict(patch)
        for key in REQUIRED_TEXT_FIELDS:
            if key in changes and not changes[key]:
                raise InvalidRequestError(f"{key} must not be empty")
        if "filter_criteria" in changes:
            changes["filter_criteria"] = parse_filter(changes["filter_criteria"]).to_dict()
        if "data" in changes:
            changes["data"] = dict(changes["data"] or {})
        if "status" in changes:
            target = _parse_status(changes["status"])
            allowed = VALID_TRANSITIONS[current.status]
            if target not in allowed:
                raise InvalidTransitionError(
                    current.status.value, target.value, [s.value for s in allowed]
                )
            changes["status"] = target

        updated = self.db.update_campaign(campaign_id, changes)
        if not updated:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        logger.info("Campaign updated: %s (%s)", campaign_id, ", ".join(sorted(changes)))
        return updated

    def delete(self, campaign_id: str) -> CampaignRecord:
        deleted = self.db.delete_campaign(campaign_id)
        if not deleted:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        logger.info("Campaign deleted: %s", campaign_id)
        return deleted

    def send(self, campaign_id: str) -> SendSummary:
        campaign = self.get(campaign_id)
        if campaign.status == CampaignStatus.SENT:
            raise AlreadySentError(campaign_id)

        logger.info("Sending campaign %s (%s)", campaign_id, campaign.name)
        self.db.update_campaign(
            campaign_id, {"status": CampaignStatus.SENDING, "sent_at": self._clock()}
        )

        try:
            payload = NotificationPayload(
                title=campaign.title, body=campaign.body, data=dict(campaign.data)
            )
            summary = self.sender.send(
                campaign.filter_criteria, payload, campaign_id=campaign_id
            )
        except Exception as e:
            logger.error("Error sending campaign %s: %s", campaign_id, e)
            self._mark_failed(campaign_id)
            raise

        if summary.total_recipients == 0:
            logger.warning(
                "Campaign %s matched no recipients; status left as sending", campaign_id
            )
            return summary

        self.db.update_campaign(
            campaign_id,
            {
                "status": CampaignStatus.SENT,
                "total_recipients": summary.total_recipients,
                "successful_sends": summary.sent_count,
                "failed_sends": summary.failed_count,
            },
        )
        logger.info(
            "Campaign %s sent: %d sent, %d failed",
            campaign_id,
            summary.sent_count,
            summary.failed_count,
        )
        return summary

    def _mark_failed(self, campaign_id: str) -> None:
        try:
            self.db.update_campaign(campaign_id, {"status": CampaignStatus.FAILED})
        except Exception as e:
            logger.error("Error updating campaign %s status to failed: %s", campaign_id, e)

    def run_due(self, now: Optional[float] = None) -> List[SweepResult]:
        """Sends every scheduled campaign that is due. One failure never stops the sweep."""
        now = self._clock() if now is None else now
        due = self.db.list_due_campaigns(now)
        logger.info("Found %d campaigns due for sending", len(due))

        results = []
        for campaign in due:
            try:
                summary = self.send(campaign.id)
            except Exception as e:
                logger.error("Failed to send campaign %s: %s", campaign.id, e)
                results.append(
                    SweepResult(
                        campaign_id=campaign.id,
                        campaign_name=campaign.name,
                        success=False,
                        error=str(e),
                    )
                )
                continue
            results.append(
                SweepResult(
                    campaign_id=campaign.id,
                    campaign_name=campaign.name,
                    success=True,
                    summary=summary,
                )
            )
        return results
