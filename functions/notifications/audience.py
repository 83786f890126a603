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
from typing import List, Union

from foody.db import DbClient
from notifications.filters import AudienceFilter, Custom, parse_filter
from notifications.types import Recipient

logger = logging.getLogger(__name__)


class AudienceResolver:
    """Turns an audience filter into the users that can receive a push."""

    def __init__(self, db: DbClient):
        self.db = db

    def resolve(self, audience: Union[AudienceFilter, dict]) -> List[Recipient]:
        """
        Returns recipients with notifications enabled and a device token,
        narrowed by the filter. Read-only; raises InvalidFilterError for a
        malformed filter.
        """
        if audience is None or isinstance(audience, dict):
            audience = parse_filter(audience)

        logger.info("Resolving audience, filter type: %s", audience.type)
        if isinstance(audience, Custom):
            logger.warning(
                "Evaluating caller-supplied audience predicate: %s",
                audience.where_clause,
            )

        recipients = self.db.query_recipients(audience)
        logger.info("Found %d target users", len(recipients))
        return recipients
