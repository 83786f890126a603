"""
HTTP routes for the Foody API.
"""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from foody.db import DbClient, FoodRecord
from foody.dependencies import (
    get_campaign_orchestrator,
    get_db_client,
    get_notification_sender,
    get_storage_client,
)
from foody.schemas import (
    Campaign,
    CampaignCreateRequest,
    CampaignDeleteResponse,
    CampaignListResponse,
    CampaignResponse,
    CampaignSendResponse,
    CampaignUpdateRequest,
    DeletedCampaign,
    FoodAnalysis,
    FoodCreateRequest,
    FoodCreateResponse,
    FoodDeleteRequest,
    FoodDeleteResponse,
    FoodListResponse,
    ImageUploadRequest,
    ImageUploadResponse,
    Pagination,
    SendNotificationRequest,
    SendNotificationResponse,
    SendResults,
    UserFoodsDeleteResponse,
    UserProfile,
    UserProfileRequest,
    UserProfileResponse,
    UserSaveResponse,
    to_epoch,
)
from foody.storage import (
    UPLOAD_SOURCE,
    ObjectNotFoundError,
    StorageClient,
    build_image_key,
    guess_content_type,
    parse_s3_url,
)
from notifications.campaigns import CampaignOrchestrator
from notifications.errors import (
    AlreadySentError,
    CampaignImmutableError,
    InvalidFilterError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    NotificationError,
)
from notifications.sender import NotificationSender
from notifications.types import NotificationPayload, SendSummary

logger = logging.getLogger(__name__)

router = APIRouter()

_BAD_REQUEST_ERRORS = (
    InvalidFilterError,
    InvalidRequestError,
    InvalidTransitionError,
    CampaignImmutableError,
    AlreadySentError,
)


def _http_error(exc: NotificationError) -> HTTPException:
    if isinstance(exc, _BAD_REQUEST_ERRORS):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    logger.error("Notification pipeline failure: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _send_results(summary: SendSummary) -> SendResults:
    return SendResults(
        sent_count=summary.sent_count,
        failed_count=summary.failed_count,
        total_recipients=summary.total_recipients,
        invalid_tokens_cleared=summary.invalid_tokens_cleared,
        message=summary.message,
    )


# Users


@router.get("/users/{user_id}", response_model=UserProfileResponse)
def get_user(user_id: str, db: DbClient = Depends(get_db_client)):
    user = db.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserProfileResponse(user=UserProfile.model_validate(user))


@router.post("/users", response_model=UserSaveResponse)
def save_user(payload: UserProfileRequest, db: DbClient = Depends(get_db_client)):
    """Creates the profile or patches the fields present in the request."""
    user = db.upsert_user(payload.user_id, payload.to_patch())
    logger.info("User profile saved: %s", user.user_id)
    return UserSaveResponse(user_id=user.user_id)


# Food analyses


@router.post("/foods", response_model=FoodCreateResponse)
def create_food(payload: FoodCreateRequest, db: DbClient = Depends(get_db_client)):
    food = FoodRecord(
        user_id=payload.user_id,
        food_name=payload.food_name,
        image_url=payload.image_url,
        calories=payload.calories,
        protein=payload.protein,
        carbs=payload.carbs,
        fat=payload.fat,
        health_score=payload.health_score,
    )
    if payload.analysis_date is not None:
        food.analysis_date = to_epoch(payload.analysis_date)
    food = db.create_food(food)
    return FoodCreateResponse(food_id=food.id)


@router.get("/foods", response_model=FoodListResponse)
def list_foods(
    user_id: str = Query(..., alias="userId", min_length=1),
    limit: int = Query(100, ge=1, le=500),
    db: DbClient = Depends(get_db_client),
):
    foods = db.list_foods(user_id, limit=limit)
    return FoodListResponse(foods=[FoodAnalysis.model_validate(f) for f in foods])


@router.delete("/foods", response_model=FoodDeleteResponse)
def delete_food(payload: FoodDeleteRequest, db: DbClient = Depends(get_db_client)):
    deleted = db.delete_food_entry(
        payload.user_id, payload.food_name, to_epoch(payload.analysis_date)
    )
    if not deleted:
        raise HTTPException(status_code=404, detail="Food analysis not found")
    return FoodDeleteResponse(deleted_id=deleted.id, deleted_food=deleted.food_name)


@router.delete(
    "/foods/user/{user_id}",
    response_model=UserFoodsDeleteResponse,
)
def delete_user_foods(
    user_id: str,
    food_id: Optional[str] = Query(None, alias="foodId"),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    deleted = db.delete_foods(user_id, food_id=food_id)
    if food_id and not deleted:
        raise HTTPException(status_code=404, detail="Food analysis not found")

    for food in deleted:
        location = parse_s3_url(food.image_url or "")
        if not location or location[0] != storage.bucket:
            continue
        try:
            storage.delete_object(location[1])
        except Exception as e:
            logger.warning("Could not delete image %s: %s", food.image_url, e)

    return UserFoodsDeleteResponse(
        deleted_count=len(deleted),
        deleted_foods=[FoodAnalysis.model_validate(f) for f in deleted],
        message=f"Deleted {len(deleted)} food analyses",
    )


# Images


@router.post("/images", response_model=ImageUploadResponse)
def upload_image(
    payload: ImageUploadRequest, storage: StorageClient = Depends(get_storage_client)
):
    if not payload.image_data or not payload.file_name or not payload.content_type:
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: imageData, fileName, contentType",
        )
    try:
        body = base64.b64decode(payload.image_data, validate=True)
    except ValueError:
        raise HTTPException(status_code=400, detail="imageData must be base64 encoded")

    now = datetime.now(timezone.utc)
    key = build_image_key(payload.file_name, now)
    public_url = storage.upload_bytes(
        key,
        body,
        payload.content_type,
        metadata={
            "original-filename": payload.file_name,
            "upload-timestamp": now.isoformat(),
            "upload-source": UPLOAD_SOURCE,
        },
    )
    logger.info("Uploaded image %s (%d bytes)", key, len(body))
    return ImageUploadResponse(
        s3_url=f"s3://{storage.bucket}/{key}",
        public_url=public_url,
        file_name=key,
        original_file_name=payload.file_name,
        upload_timestamp=now,
    )


@router.get("/images")
def get_image(
    key: Optional[str] = Query(None),
    s3url: Optional[str] = Query(None),
    storage: StorageClient = Depends(get_storage_client),
):
    if s3url:
        location = parse_s3_url(s3url)
        if not location:
            raise HTTPException(status_code=400, detail="Invalid S3 URL")
        bucket, key = location
        if bucket != storage.bucket:
            raise HTTPException(status_code=400, detail="Image is not in the images bucket")
    if not key:
        raise HTTPException(status_code=400, detail="Provide either key or s3url")

    try:
        stored = storage.get_object(key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Image not found")
    return Response(
        content=stored.body,
        media_type=stored.content_type or guess_content_type(key),
        headers={"Cache-Control": "public, max-age=31536000"},
    )


# Notifications


@router.post(
    "/notifications/send",
    response_model=SendNotificationResponse,
)
def send_notification(
    payload: SendNotificationRequest,
    sender: NotificationSender = Depends(get_notification_sender),
):
    notification = payload.notification
    try:
        if notification is None:
            raise InvalidRequestError("notification object is required")
        message = NotificationPayload(
            title=notification.title or "",
            body=notification.body or "",
            data=dict(payload.data),
            image_url=payload.options.image_url,
            badge_count=payload.options.badge,
        )
        summary = sender.send(payload.filter, message, campaign_id=payload.campaign_id)
    except NotificationError as e:
        raise _http_error(e)
    return SendNotificationResponse(**_send_results(summary).model_dump())


# Campaigns


@router.post(
    "/campaigns",
    response_model=CampaignResponse,
    status_code=201,
)
def create_campaign(
    payload: CampaignCreateRequest,
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        campaign = orchestrator.create(
            name=payload.campaign_name,
            title=payload.title,
            body=payload.body,
            data=payload.data,
            filter_criteria=payload.filter_criteria,
            scheduled_at=to_epoch(payload.scheduled_at),
            created_by=payload.created_by,
            notes=payload.notes,
            status=payload.status,
        )
    except NotificationError as e:
        raise _http_error(e)
    return CampaignResponse(
        campaign=Campaign.from_record(campaign),
        message="Campaign created successfully",
    )


@router.get(
    "/campaigns", response_model=CampaignListResponse
)
def list_campaigns(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        campaigns, total = orchestrator.list(status=status, limit=limit, offset=offset)
    except NotificationError as e:
        raise _http_error(e)
    return CampaignListResponse(
        campaigns=[Campaign.from_record(c) for c in campaigns],
        pagination=Pagination(
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(campaigns) < total,
        ),
    )


@router.get(
    "/campaigns/{campaign_id}",
    response_model=CampaignResponse,
)
def get_campaign(
    campaign_id: str,
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        campaign = orchestrator.get(campaign_id)
    except NotificationError as e:
        raise _http_error(e)
    return CampaignResponse(campaign=Campaign.from_record(campaign))


@router.put(
    "/campaigns/{campaign_id}",
    response_model=CampaignResponse,
)
def update_campaign(
    campaign_id: str,
    payload: CampaignUpdateRequest,
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        campaign = orchestrator.update(campaign_id, payload.to_patch())
    except NotificationError as e:
        raise _http_error(e)
    return CampaignResponse(
        campaign=Campaign.from_record(campaign),
        message="Campaign updated successfully",
    )


@router.delete(
    "/campaigns/{campaign_id}",
    response_model=CampaignDeleteResponse,
)
def delete_campaign(
    campaign_id: str,
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        deleted = orchestrator.delete(campaign_id)
    except NotificationError as e:
        raise _http_error(e)
    return CampaignDeleteResponse(
        deleted_campaign=DeletedCampaign(id=deleted.id, campaign_name=deleted.name)
    )


@router.post(
    "/campaigns/{campaign_id}/send",
    response_model=CampaignSendResponse,
)
def send_campaign(
    campaign_id: str,
    orchestrator: CampaignOrchestrator = Depends(get_campaign_orchestrator),
):
    try:
        summary = orchestrator.send(campaign_id)
    except NotificationError as e:
        raise _http_error(e)
    return CampaignSendResponse(campaign_id=campaign_id, results=_send_results(summary))
