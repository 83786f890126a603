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

import logging
from typing import Iterable, Mapping, Optional, Sequence

from foody.db import AuditRecord, DbClient
from notifications.types import DeliveryOutcome, NotificationPayload, SourceType

logger = logging.getLogger(__name__)


class DeliveryRecorder:
    """
    Writes the delivery audit log and clears dead device tokens.

    Both operations are best effort: a failure here is logged and never
    fails the send that triggered it.
    """

    def __init__(self, db: DbClient):
        self.db = db

    def record(
        self,
        outcomes: Sequence[DeliveryOutcome],
        payload: NotificationPayload,
        data: Optional[Mapping[str, str]],
        source_type: SourceType,
        campaign_id: Optional[str] = None,
    ) -> None:
        if not outcomes:
            return

        rows = [
            AuditRecord(
                user_id=outcome.user_id,
                notification_type=source_type.value,
                campaign_id=campaign_id,
                title=payload.title,
                body=payload.body,
                data=dict(data or {}),
                status=outcome.status.value,
                error_message=outcome.error_message,
            )
            for outcome in outcomes
        ]
        try:
            logger.info("Logging %d notifications to database", len(rows))
            self.db.insert_audit_rows(rows)
        except Exception as e:
            logger.error("Error logging notifications: %s", e)

    def purge_invalid_tokens(self, tokens: Iterable[str]) -> int:
        """Returns the number of users whose token was actually cleared."""
        token_set = set(tokens)
        if not token_set:
            return 0
        try:
            cleared = self.db.clear_tokens(token_set)
        except Exception as e:
            logger.error("Error clearing invalid tokens: %s", e)
            return 0
        logger.info(
            "Cleared %d of %d invalid tokens from database", cleared, len(token_set)
        )
        return cleared
