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
from typing import Optional, Union

from notifications.audience import AudienceResolver
from notifications.dispatcher import MessageDispatcher, stringify_data
from notifications.filters import AudienceFilter
from notifications.recorder import DeliveryRecorder
from notifications.types import (
    DeliveryOutcome,
    NotificationPayload,
    SendSummary,
    SourceType,
)

logger = logging.getLogger(__name__)


class NotificationSender:
    """Resolve, dispatch, record and purge for one logical send."""

    def __init__(
        self,
        resolver: AudienceResolver,
        dispatcher: MessageDispatcher,
        recorder: DeliveryRecorder,
    ):
        self.resolver = resolver
        self.dispatcher = dispatcher
        self.recorder = recorder

    def send(
        self,
        audience: Union[AudienceFilter, dict],
        payload: NotificationPayload,
        campaign_id: Optional[str] = None,
    ) -> SendSummary:
        source_type = SourceType.CAMPAIGN if campaign_id else SourceType.MANUAL

        recipients = self.resolver.resolve(audience)
        if not recipients:
            logger.warning("No target users found")
            return SendSummary(
                sent_count=0,
                failed_count=0,
                total_recipients=0,
                invalid_tokens_cleared=0,
            )

        tokens = [recipient.device_token for recipient in recipients]
        logger.info("Sending to %d users (%s)", len(tokens), source_type.value)
        aggregate = self.dispatcher.dispatch(tokens, payload)

        outcomes = []
        for recipient, result in zip(recipients, aggregate.results):
            result.user_id = recipient.user_id
            outcomes.append(
                DeliveryOutcome(
                    user_id=recipient.user_id,
                    status=result.outcome,
                    error_message=result.failure_reason,
                )
            )

        self.recorder.record(
            outcomes,
            payload,
            stringify_data(payload.data),
            source_type,
            campaign_id=campaign_id,
        )
        cleared = self.recorder.purge_invalid_tokens(aggregate.invalid_tokens)

        summary = SendSummary(
            sent_count=aggregate.sent_count,
            failed_count=aggregate.failed_count,
            total_recipients=len(recipients),
            invalid_tokens_cleared=cleared,
        )
        logger.info(
            "Notification results: %d sent, %d failed, %d invalid tokens cleared",
            summary.sent_count,
            summary.failed_count,
            summary.invalid_tokens_cleared,
        )
        return summary
