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
Audience filters.

Filters are immutable once built. The wire form is the JSON stored in
`notification_campaigns.filter_criteria`, e.g.

    {"type": "age", "minAge": 18, "maxAge": 30}
    {"type": "userIds", "userIds": ["u1", "u2"]}
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from notifications.errors import InvalidFilterError

FILTER_TYPES = ("all", "premium", "age", "userIds", "custom")


@dataclass(frozen=True)
class AllUsers:
    type = "all"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class PremiumUsers:
    type = "premium"

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class AgeRange:
    type = "age"

    min_age: Optional[int] = None
    max_age: Optional[int] = None

    def __post_init__(self):
        if self.min_age is None and self.max_age is None:
            raise InvalidFilterError("For age filter, provide minAge and/or maxAge")

    def to_dict(self) -> dict:
        result: dict = {"type": self.type}
        if self.min_age is not None:
            result["minAge"] = self.min_age
        if self.max_age is not None:
            result["maxAge"] = self.max_age
        return result


@dataclass(frozen=True)
class ByIds:
    type = "userIds"

    user_ids: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.user_ids:
            raise InvalidFilterError("userIds array is required and must not be empty")

    def to_dict(self) -> dict:
        return {"type": self.type, "userIds": list(self.user_ids)}


@dataclass(frozen=True)
class Custom:
    """Raw SQL predicate. Trusted callers only; see notifications.errors."""

    type = "custom"

    where_clause: str = ""

    def __post_init__(self):
        if not self.where_clause or not self.where_clause.strip():
            raise InvalidFilterError("whereClause is required for custom filter")

    def to_dict(self) -> dict:
        return {"type": self.type, "whereClause": self.where_clause}


AudienceFilter = Union[AllUsers, PremiumUsers, AgeRange, ByIds, Custom]


def _as_int(value, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidFilterError(f"{name} must be a number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidFilterError(f"{name} must be a number")


def parse_filter(data: Optional[dict]) -> AudienceFilter:
    """Builds an AudienceFilter from its JSON form."""
    if not data:
        raise InvalidFilterError("filter object is required")
    if not isinstance(data, dict):
        raise InvalidFilterError("filter must be an object")

    filter_type = data.get("type")
    if not filter_type:
        raise InvalidFilterError(
            f"filter.type is required ({', '.join(FILTER_TYPES)})"
        )

    if filter_type == "all":
        return AllUsers()
    if filter_type == "premium":
        return PremiumUsers()
    if filter_type == "age":
        return AgeRange(
            min_age=_as_int(data.get("minAge"), "minAge"),
            max_age=_as_int(data.get("maxAge"), "maxAge"),
        )
    if filter_type == "userIds":
        user_ids = data.get("userIds")
        if not isinstance(user_ids, (list, tuple)):
            raise InvalidFilterError("userIds array is required and must not be empty")
        # Keep first-seen order; duplicates would double-send.
        return ByIds(user_ids=tuple(dict.fromkeys(str(u) for u in user_ids)))
    if filter_type == "custom":
        return Custom(where_clause=data.get("whereClause") or "")

    raise InvalidFilterError(
        f"Invalid filter type: {filter_type}. Use: {', '.join(FILTER_TYPES)}"
    )
