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

from enum import StrEnum
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from notifications.errors import InvalidRequestError


class CampaignStatus(StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class SourceType(StrEnum):
    MANUAL = "manual"
    CAMPAIGN = "campaign"


class DeliveryStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"


INVALID_TOKEN_MESSAGE = "Invalid or expired token"


@dataclass(frozen=True)
class Recipient:
    user_id: str
    device_token: str
    email: Optional[str] = None
    display_name: Optional[str] = None


@dataclass
class NotificationPayload:
    """What gets pushed to each device."""

    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    badge_count: Optional[int] = None

    def __post_init__(self):
        if not self.title or not self.body:
            raise InvalidRequestError(
                "notification.title and notification.body are required"
            )


@dataclass
class DispatchResult:
    """Outcome for one device token, in input order."""

    token: str
    outcome: DeliveryStatus
    failure_reason: Optional[str] = None
    token_invalid: bool = False
    message_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class DispatchAggregate:
    sent_count: int = 0
    failed_count: int = 0
    invalid_tokens: List[str] = field(default_factory=list)
    results: List[DispatchResult] = field(default_factory=list)

    def merge(self, other: "DispatchAggregate") -> None:
        self.sent_count += other.sent_count
        self.failed_count += other.failed_count
        self.invalid_tokens.extend(other.invalid_tokens)
        self.results.extend(other.results)


@dataclass
class DeliveryOutcome:
    """One audit row worth of delivery information."""

    user_id: str
    status: DeliveryStatus
    error_message: Optional[str] = None


@dataclass
class SendSummary:
    sent_count: int
    failed_count: int
    total_recipients: int
    invalid_tokens_cleared: int

    @property
    def message(self) -> str:
        if self.total_recipients == 0:
            return "No target users found matching the filter criteria"
        return f"Sent to {self.sent_count} users, {self.failed_count} failed"
