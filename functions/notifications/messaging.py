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
Messaging provider abstraction for Firebase Cloud Messaging and an in-memory
test implementation.
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions

from notifications.errors import INVALID_TOKEN_CODES, ProviderError
from notifications.types import NotificationPayload

logger = logging.getLogger(__name__)

# Hard FCM limit on tokens per multicast request.
MAX_MULTICAST_TOKENS = 500

FIREBASE_APP_NAME = "foody-messaging"
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def token_preview(token: str) -> str:
    return f"{token[:20]}..."


@dataclass
class TokenResult:
    success: bool
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class MulticastResponse:
    success_count: int
    failure_count: int
    results: List[TokenResult]


class MessagingProvider(Protocol):
    """Operations the notification pipeline needs from the push provider."""

    def send_one(self, token: str, payload: NotificationPayload) -> str:
        ...

    def send_multicast(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> MulticastResponse:
        ...

    def validate_token(self, token: str) -> bool:
        ...


def error_code_for(exc: Exception) -> str:
    """Maps a firebase_admin exception onto a `messaging/...` error code."""
    if isinstance(exc, messaging.UnregisteredError):
        return "messaging/registration-token-not-registered"
    if isinstance(exc, firebase_exceptions.InvalidArgumentError):
        if "registration token" in str(exc).lower():
            return "messaging/invalid-registration-token"
        return "messaging/invalid-argument"
    if isinstance(exc, messaging.QuotaExceededError):
        return "messaging/quota-exceeded"
    if isinstance(exc, messaging.SenderIdMismatchError):
        return "messaging/mismatched-credential"
    if isinstance(exc, firebase_exceptions.FirebaseError):
        return "messaging/" + str(exc.code).lower().replace("_", "-")
    return "messaging/unknown-error"


def initialize_firebase_app(
    *,
    service_account_path: Optional[str] = None,
    project_id: Optional[str] = None,
    private_key: Optional[str] = None,
    client_email: Optional[str] = None,
) -> firebase_admin.App:
    """
    Returns the process-wide Firebase app, initializing it on first use.

    A service account file takes precedence over the discrete environment
    values; private keys passed through the environment carry escaped
    newlines.
    """
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    if service_account_path and os.path.exists(service_account_path):
        logger.info("Initializing Firebase from service account file")
        cred = credentials.Certificate(service_account_path)
    elif project_id and private_key and client_email:
        logger.info("Initializing Firebase from environment, project %s", project_id)
        cred = credentials.Certificate(
            {
                "type": "service_account",
                "project_id": project_id,
                "private_key": private_key.replace("\\n", "\n"),
                "client_email": client_email,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        )
    else:
        raise ValueError(
            "Firebase configuration not found. Set FIREBASE_SERVICE_ACCOUNT_PATH, "
            "or FIREBASE_PROJECT_ID, FIREBASE_PRIVATE_KEY and FIREBASE_CLIENT_EMAIL."
        )

    options = {"projectId": project_id} if project_id else None
    return firebase_admin.initialize_app(cred, options, name=FIREBASE_APP_NAME)


def build_android_config(payload: NotificationPayload) -> messaging.AndroidConfig:
    return messaging.AndroidConfig(
        priority="high",
        notification=messaging.AndroidNotification(
            sound="default",
            channel_id="default",
            image=payload.image_url,
        ),
    )


def build_apns_config(payload: NotificationPayload) -> messaging.APNSConfig:
    return messaging.APNSConfig(
        payload=messaging.APNSPayload(
            aps=messaging.Aps(
                sound="default",
                badge=payload.badge_count or 1,
                mutable_content=True if payload.image_url else None,
            )
        ),
        fcm_options=(
            messaging.APNSFCMOptions(image=payload.image_url)
            if payload.image_url
            else None
        ),
    )


class FirebaseMessagingProvider:
    """FCM-backed provider using the firebase_admin SDK."""

    def __init__(self, app: firebase_admin.App):
        self.app = app

    def _notification(self, payload: NotificationPayload) -> messaging.Notification:
        return messaging.Notification(title=payload.title, body=payload.body)

    def send_one(self, token: str, payload: NotificationPayload) -> str:
        message = messaging.Message(
            token=token,
            notification=self._notification(payload),
            data=payload.data,
            android=build_android_config(payload),
            apns=build_apns_config(payload),
        )
        try:
            return messaging.send(message, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise ProviderError(error_code_for(e), str(e)) from e

    def validate_token(self, token: str) -> bool:
        """Dry-run send. False when FCM reports the token as dead."""
        message = messaging.Message(
            token=token,
            notification=messaging.Notification(title="Test", body="Test"),
        )
        try:
            messaging.send(message, dry_run=True, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            code = error_code_for(e)
            if code in INVALID_TOKEN_CODES:
                return False
            raise ProviderError(code, str(e)) from e
        return True

    def send_multicast(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> MulticastResponse:
        if len(tokens) > MAX_MULTICAST_TOKENS:
            raise ValueError(
                f"At most {MAX_MULTICAST_TOKENS} tokens per multicast, got {len(tokens)}"
            )
        message = messaging.MulticastMessage(
            tokens=list(tokens),
            notification=self._notification(payload),
            data=payload.data,
            android=build_android_config(payload),
            apns=build_apns_config(payload),
        )
        try:
            batch = messaging.send_each_for_multicast(message, app=self.app)
        except (firebase_exceptions.FirebaseError, ValueError) as e:
            raise ProviderError(error_code_for(e), str(e)) from e

        results = []
        for response in batch.responses:
            if response.success:
                results.append(TokenResult(success=True, message_id=response.message_id))
            else:
                results.append(
                    TokenResult(
                        success=False,
                        error_code=error_code_for(response.exception),
                        error_message=str(response.exception) or "Unknown error",
                    )
                )
        return MulticastResponse(
            success_count=batch.success_count,
            failure_count=batch.failure_count,
            results=results,
        )


@dataclass
class InMemoryMessagingProvider:
    """Test double that records every provider call."""

    unregistered_tokens: set = field(default_factory=set)
    failing_tokens: Dict[str, str] = field(default_factory=dict)
    multicast_error: Optional[Exception] = None
    single_sends: List[str] = field(default_factory=list)
    multicast_calls: List[List[str]] = field(default_factory=list)
    payloads: List[NotificationPayload] = field(default_factory=list)

    def _result_for(self, token: str) -> TokenResult:
        if token in self.unregistered_tokens:
            return TokenResult(
                success=False,
                error_code="messaging/registration-token-not-registered",
                error_message="Requested entity was not found.",
            )
        if token in self.failing_tokens:
            code = self.failing_tokens[token]
            return TokenResult(success=False, error_code=code, error_message=code)
        return TokenResult(success=True, message_id=f"msg-{uuid.uuid4().hex[:12]}")

    def send_one(self, token: str, payload: NotificationPayload) -> str:
        self.single_sends.append(token)
        self.payloads.append(payload)
        result = self._result_for(token)
        if not result.success:
            raise ProviderError(result.error_code, result.error_message)
        return result.message_id

    def validate_token(self, token: str) -> bool:
        result = self._result_for(token)
        if result.success:
            return True
        if result.error_code in INVALID_TOKEN_CODES:
            return False
        raise ProviderError(result.error_code, result.error_message)

    def send_multicast(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> MulticastResponse:
        self.multicast_calls.append(list(tokens))
        self.payloads.append(payload)
        if self.multicast_error is not None:
            raise self.multicast_error
        results = [self._result_for(token) for token in tokens]
        success_count = sum(1 for r in results if r.success)
        return MulticastResponse(
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=results,
        )
