"""
Send every scheduled campaign that is due.

Runs the same sweep as the scheduled Lambda, for cron hosts and manual
catch-up runs.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from foody.dependencies import get_campaign_orchestrator
from foody.sweep import run_sweep


logger = logging.getLogger(__name__)


def _parse_now(value: str) -> float:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp()


def main() -> int:
    parser = argparse.ArgumentParser(description="Send due notification campaigns")
    parser.add_argument(
        "--now",
        type=_parse_now,
        default=None,
        help="ISO timestamp to treat as the current time (default: now)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    status_code, body = run_sweep(get_campaign_orchestrator(), now=args.now)
    print(json.dumps(body, indent=2))
    if status_code != 200:
        return 1
    return 0 if all(item["success"] for item in body["results"]) else 2


if __name__ == "__main__":
    sys.exit(main())
