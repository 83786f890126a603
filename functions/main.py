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

# AWS Lambda entry points for the Foody backend.
#
# api_handler serves the HTTP API behind API Gateway; campaign_sweep_handler
# is invoked on a schedule (EventBridge) and sends due campaigns.

import json
import logging

from mangum import Mangum

from foody.app import create_app
from foody.dependencies import get_campaign_orchestrator
from foody.sweep import run_sweep

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

api_handler = Mangum(create_app(), lifespan="off")


def campaign_sweep_handler(event, context):
    logger.info("Campaign sweep triggered")
    try:
        orchestrator = get_campaign_orchestrator()
    except Exception as e:
        logger.exception("Could not initialize campaign sweep")
        status_code, body = 500, {
            "success": False,
            "error": "Campaign scheduler failed",
            "message": str(e),
        }
    else:
        status_code, body = run_sweep(orchestrator)
    return {"statusCode": status_code, "body": json.dumps(body)}
