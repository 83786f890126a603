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

import unittest
from unittest.mock import MagicMock

from notifications.dispatcher import MessageDispatcher, chunked, stringify_data
from notifications.errors import ProviderError
from notifications.messaging import InMemoryMessagingProvider
from notifications.types import (
    INVALID_TOKEN_MESSAGE,
    DeliveryStatus,
    NotificationPayload,
)


def _tokens(count):
    return [f"token-{i:05d}" for i in range(count)]


class StringifyDataTest(unittest.TestCase):

    def test_scalars_become_strings(self):
        self.assertEqual(
            stringify_data({"count": 3, "active": True}),
            {"count": "3", "active": "true"},
        )

    def test_false_none_and_containers(self):
        result = stringify_data(
            {"off": False, "gone": None, "nested": {"a": 1}, "items": [1, 2]}
        )
        self.assertEqual(
            result, {"off": "false", "nested": '{"a":1}', "items": "[1,2]"}
        )

    def test_empty(self):
        self.assertEqual(stringify_data(None), {})


class ChunkedTest(unittest.TestCase):

    def test_sizes(self):
        self.assertEqual([len(c) for c in chunked(_tokens(1200), 500)], [500, 500, 200])
        self.assertEqual(chunked([], 500), [])


class MessageDispatcherTest(unittest.TestCase):

    def setUp(self):
        self.provider = InMemoryMessagingProvider()
        self.sleep = MagicMock()
        self.dispatcher = MessageDispatcher(self.provider, sleep=self.sleep)
        self.payload = NotificationPayload(
            title="Lunch", body="Log your meal", data={"count": 3, "active": True}
        )

    def test_no_tokens_makes_no_calls(self):
        aggregate = self.dispatcher.dispatch([], self.payload)
        self.assertEqual(aggregate.sent_count, 0)
        self.assertEqual(aggregate.failed_count, 0)
        self.assertEqual(self.provider.single_sends, [])
        self.assertEqual(self.provider.multicast_calls, [])

    def test_single_token_uses_send_one(self):
        aggregate = self.dispatcher.dispatch(["only-token"], self.payload)
        self.assertEqual(self.provider.single_sends, ["only-token"])
        self.assertEqual(self.provider.multicast_calls, [])
        self.assertEqual(aggregate.sent_count, 1)
        self.assertEqual(aggregate.results[0].outcome, DeliveryStatus.SENT)
        self.assertIsNotNone(aggregate.results[0].message_id)

    def test_single_unregistered_token_is_invalid(self):
        self.provider.unregistered_tokens.add("dead-token")
        aggregate = self.dispatcher.dispatch(["dead-token"], self.payload)
        self.assertEqual(aggregate.sent_count, 0)
        self.assertEqual(aggregate.failed_count, 1)
        self.assertEqual(aggregate.invalid_tokens, ["dead-token"])
        result = aggregate.results[0]
        self.assertEqual(result.outcome, DeliveryStatus.FAILED)
        self.assertTrue(result.token_invalid)
        self.assertEqual(result.failure_reason, INVALID_TOKEN_MESSAGE)

    def test_single_transient_failure_keeps_token(self):
        self.provider.failing_tokens["busy-token"] = "messaging/quota-exceeded"
        aggregate = self.dispatcher.dispatch(["busy-token"], self.payload)
        self.assertEqual(aggregate.failed_count, 1)
        self.assertEqual(aggregate.invalid_tokens, [])
        self.assertFalse(aggregate.results[0].token_invalid)

    def test_large_audience_is_chunked_in_order(self):
        tokens = _tokens(1200)
        self.provider.unregistered_tokens.update({tokens[3], tokens[700]})
        self.provider.failing_tokens[tokens[1100]] = "messaging/internal-error"

        aggregate = self.dispatcher.dispatch(tokens, self.payload)

        calls = self.provider.multicast_calls
        self.assertEqual([len(c) for c in calls], [500, 500, 200])
        self.assertEqual(calls[0] + calls[1] + calls[2], tokens)
        self.assertEqual(
            [c.args for c in self.sleep.call_args_list], [(0.1,), (0.1,)]
        )
        self.assertEqual(aggregate.sent_count, 1197)
        self.assertEqual(aggregate.failed_count, 3)
        self.assertEqual(aggregate.invalid_tokens, [tokens[3], tokens[700]])
        self.assertEqual([r.token for r in aggregate.results], tokens)

    def test_payload_data_is_stringified_for_provider(self):
        self.dispatcher.dispatch(["a", "b"], self.payload)
        sent = self.provider.payloads[0]
        self.assertEqual(sent.data, {"count": "3", "active": "true"})
        self.assertEqual(self.payload.data, {"count": 3, "active": True})

    def test_multicast_error_propagates(self):
        self.provider.multicast_error = ProviderError("messaging/internal-error")
        with self.assertRaises(ProviderError):
            self.dispatcher.dispatch(["a", "b"], self.payload)

    def test_batch_size_is_bounded(self):
        with self.assertRaises(ValueError):
            MessageDispatcher(self.provider, batch_size=501)


if __name__ == "__main__":
    unittest.main()
