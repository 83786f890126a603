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
Error taxonomy for the notification pipeline.

Caller errors (bad filter, bad request, illegal status change) map to 4xx
responses, missing entities to 404, provider and store failures to 5xx.

Trust boundary: a `custom` audience filter carries a raw SQL predicate that
the store evaluates verbatim. It is accepted from trusted callers only and is
never validated here; a predicate the database rejects surfaces as a
StoreError like any other persistence failure.
"""

from typing import Iterable, Optional

# FCM error codes meaning the device token will never be deliverable again.
INVALID_TOKEN_CODES = frozenset(
    {
        "messaging/registration-token-not-registered",
        "messaging/invalid-registration-token",
    }
)


class NotificationError(Exception):
    pass


class InvalidFilterError(NotificationError):
    """Malformed audience filter."""


class InvalidRequestError(NotificationError):
    """Missing or malformed request fields."""


class NotFoundError(NotificationError):
    pass


class InvalidTransitionError(NotificationError):
    def __init__(self, current: str, target: str, allowed: Iterable[str]):
        self.current = current
        self.target = target
        self.allowed = sorted(allowed)
        super().__init__(
            f"Invalid status transition from '{current}' to '{target}'. "
            f"Valid transitions from '{current}': "
            f"{', '.join(self.allowed) or 'none'}"
        )


class CampaignImmutableError(NotificationError):
    def __init__(self, campaign_id: str):
        self.campaign_id = campaign_id
        super().__init__(
            f"Campaign {campaign_id} has already been sent and cannot be modified"
        )


class AlreadySentError(NotificationError):
    def __init__(self, campaign_id: str):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign {campaign_id} has already been sent")


class ProviderError(NotificationError):
    """Failure reported by the messaging provider."""

    def __init__(self, code: str, message: Optional[str] = None):
        self.code = code
        self.message = message or code
        super().__init__(self.message)

    @property
    def token_invalid(self) -> bool:
        return self.code in INVALID_TOKEN_CODES


class StoreError(NotificationError):
    """Persistence failure. Never retried inside the core."""
