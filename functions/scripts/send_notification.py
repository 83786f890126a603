"""
Send a push notification to an audience from the command line.

Examples:
  python scripts/send_notification.py --title Hi --body "New feature" --filter all
  python scripts/send_notification.py --title Hi --body Yo --filter userIds --user-id u1 --user-id u2
  python scripts/send_notification.py --campaign-id <id>
  python scripts/send_notification.py --check-token <fcm token>
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from foody.dependencies import (
    get_campaign_orchestrator,
    get_messaging_provider,
    get_notification_sender,
)
from notifications.errors import NotificationError
from notifications.filters import FILTER_TYPES
from notifications.types import NotificationPayload


logger = logging.getLogger(__name__)


def build_filter(args: argparse.Namespace) -> dict:
    audience = {"type": args.filter}
    if args.min_age is not None:
        audience["minAge"] = args.min_age
    if args.max_age is not None:
        audience["maxAge"] = args.max_age
    if args.user_id:
        audience["userIds"] = args.user_id
    if args.where:
        audience["whereClause"] = args.where
    return audience


def main() -> int:
    parser = argparse.ArgumentParser(description="Send a push notification")
    parser.add_argument("--campaign-id", help="Send an existing campaign instead")
    parser.add_argument(
        "--check-token", help="Only report whether a device token is still valid"
    )
    parser.add_argument("--title")
    parser.add_argument("--body")
    parser.add_argument("--filter", choices=FILTER_TYPES, default="all")
    parser.add_argument("--min-age", type=int, default=None)
    parser.add_argument("--max-age", type=int, default=None)
    parser.add_argument(
        "--user-id", action="append", default=[], help="Repeat for each user id"
    )
    parser.add_argument("--where", help="SQL predicate for the custom filter")
    parser.add_argument(
        "--data", type=json.loads, default={}, help="JSON object sent as data"
    )
    parser.add_argument("--image-url", default=None)
    parser.add_argument("--badge", type=int, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    try:
        if args.check_token:
            valid = get_messaging_provider().validate_token(args.check_token)
            logger.info("Token is %s", "valid" if valid else "invalid or expired")
            return 0 if valid else 3
        if args.campaign_id:
            summary = get_campaign_orchestrator().send(args.campaign_id)
        else:
            payload = NotificationPayload(
                title=args.title or "",
                body=args.body or "",
                data=args.data,
                image_url=args.image_url,
                badge_count=args.badge,
            )
            summary = get_notification_sender().send(build_filter(args), payload)
    except NotificationError as e:
        logger.error("Send failed: %s", e)
        return 1

    logger.info(summary.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
