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

import json
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from notifications.errors import INVALID_TOKEN_CODES, ProviderError
from notifications.messaging import (
    MAX_MULTICAST_TOKENS,
    MessagingProvider,
    token_preview,
)
from notifications.types import (
    INVALID_TOKEN_MESSAGE,
    DeliveryStatus,
    DispatchAggregate,
    DispatchResult,
    NotificationPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_DELAY_SECONDS = 0.1


def stringify_data(data: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """
    FCM data payloads only carry string values.

    Booleans follow JSON spelling ("true"/"false"), containers are
    JSON-encoded and None values are dropped.
    """
    result: Dict[str, str] = {}
    for key, value in (data or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[str(key)] = "true" if value else "false"
        elif isinstance(value, (dict, list, tuple)):
            result[str(key)] = json.dumps(value, separators=(",", ":"))
        else:
            result[str(key)] = str(value)
    return result


def chunked(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class MessageDispatcher:
    """
    Sends one payload to many device tokens.

    A single token goes through `send_one`; anything larger is split into
    chunks of at most `batch_size` tokens that are multicast one after the
    other, sleeping `batch_delay` seconds between chunks. Results come back
    in input order so callers can zip them with their recipients.
    """

    def __init__(
        self,
        provider: MessagingProvider,
        *,
        batch_size: int = MAX_MULTICAST_TOKENS,
        batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not 1 <= batch_size <= MAX_MULTICAST_TOKENS:
            raise ValueError(f"batch_size must be between 1 and {MAX_MULTICAST_TOKENS}")
        self.provider = provider
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    def dispatch(
        self, tokens: Sequence[str], payload: NotificationPayload
    ) -> DispatchAggregate:
        payload = replace(payload, data=stringify_data(payload.data))
        if not tokens:
            return DispatchAggregate()
        if len(tokens) == 1:
            return self._send_single(tokens[0], payload)

        batches = chunked(tokens, self.batch_size)
        if len(batches) > 1:
            logger.info(
                "Token count (%d) exceeds batch size %d, sending %d batches",
                len(tokens),
                self.batch_size,
                len(batches),
            )

        aggregate = DispatchAggregate()
        for index, batch in enumerate(batches):
            if index > 0 and self.batch_delay > 0:
                self._sleep(self.batch_delay)
            logger.info("Processing batch %d/%d (%d tokens)", index + 1, len(batches), len(batch))
            aggregate.merge(self._send_batch(batch, payload))

        logger.info(
            "Dispatch complete: %d sent, %d failed, %d invalid tokens",
            aggregate.sent_count,
            aggregate.failed_count,
            len(aggregate.invalid_tokens),
        )
        return aggregate

    def _send_single(self, token: str, payload: NotificationPayload) -> DispatchAggregate:
        try:
            message_id = self.provider.send_one(token, payload)
        except ProviderError as e:
            logger.warning("Failed to send to %s: %s", token_preview(token), e.message)
            if e.token_invalid:
                result = DispatchResult(
                    token=token,
                    outcome=DeliveryStatus.FAILED,
                    failure_reason=INVALID_TOKEN_MESSAGE,
                    token_invalid=True,
                )
                return DispatchAggregate(
                    failed_count=1, invalid_tokens=[token], results=[result]
                )
            result = DispatchResult(
                token=token, outcome=DeliveryStatus.FAILED, failure_reason=e.message
            )
            return DispatchAggregate(failed_count=1, results=[result])

        logger.info("Sent message %s to %s", message_id, token_preview(token))
        result = DispatchResult(
            token=token, outcome=DeliveryStatus.SENT, message_id=message_id
        )
        return DispatchAggregate(sent_count=1, results=[result])

    def _send_batch(self, batch: List[str], payload: NotificationPayload) -> DispatchAggregate:
        response = self.provider.send_multicast(batch, payload)
        if len(response.results) != len(batch):
            raise ProviderError(
                "messaging/internal-error",
                f"Provider returned {len(response.results)} results for {len(batch)} tokens",
            )

        aggregate = DispatchAggregate(
            sent_count=response.success_count, failed_count=response.failure_count
        )
        for token, token_result in zip(batch, response.results):
            if token_result.success:
                aggregate.results.append(
                    DispatchResult(
                        token=token,
                        outcome=DeliveryStatus.SENT,
                        message_id=token_result.message_id,
                    )
                )
                continue
            invalid = token_result.error_code in INVALID_TOKEN_CODES
            if invalid:
                aggregate.invalid_tokens.append(token)
            aggregate.results.append(
                DispatchResult(
                    token=token,
                    outcome=DeliveryStatus.FAILED,
                    failure_reason=token_result.error_message or "Unknown error",
                    token_invalid=invalid,
                )
            )
        return aggregate
