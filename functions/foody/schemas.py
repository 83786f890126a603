"""
Pydantic schemas for the Foody HTTP API.

The mobile client speaks camelCase; every model also accepts snake_case
field names on input.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

from foody.db import CampaignRecord


def to_epoch(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value):
    """Stored epoch seconds to an aware UTC datetime, rounded to the microsecond."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return value


EpochDatetime = Annotated[datetime, BeforeValidator(from_epoch)]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# Users


class UserProfileRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    weight: Optional[float] = None
    height: Optional[float] = None
    activity_level: Optional[str] = None
    goal: Optional[str] = None
    daily_calories: Optional[int] = None
    bmi: Optional[float] = None
    theme_preference: Optional[str] = None
    ai_provider: Optional[str] = None
    measurement_unit: Optional[str] = None
    fcm_token: Optional[str] = None
    notifications_enabled: Optional[bool] = None
    is_premium: Optional[bool] = None

    def to_patch(self) -> dict:
        """Only the fields the client actually sent."""
        patch = self.model_dump(exclude_unset=True, exclude={"user_id"})
        # Flags are NOT NULL; an explicit null means "leave as is".
        for key in ("notifications_enabled", "is_premium"):
            if key in patch and patch[key] is None:
                del patch[key]
        return patch


class UserProfile(CamelModel):
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[int] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    activity_level: Optional[str] = None
    goal: Optional[str] = None
    daily_calories: Optional[int] = None
    bmi: Optional[float] = None
    theme_preference: Optional[str] = None
    ai_provider: Optional[str] = None
    measurement_unit: Optional[str] = None
    fcm_token: Optional[str] = None
    notifications_enabled: bool = True
    is_premium: bool = False
    created_at: datetime
    updated_at: datetime


class UserProfileResponse(CamelModel):
    success: bool = True
    user: UserProfile


class UserSaveResponse(CamelModel):
    success: bool = True
    user_id: str
    message: str = "User profile saved successfully"


# Food analyses


class FoodCreateRequest(CamelModel):
    user_id: str = Field(..., min_length=1)
    food_name: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    health_score: Optional[int] = None
    analysis_date: Optional[datetime] = None


class FoodAnalysis(CamelModel):
    id: str
    user_id: str
    food_name: str
    image_url: Optional[str] = None
    calories: Optional[float] = None
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    health_score: Optional[int] = None
    analysis_date: EpochDatetime
    created_at: EpochDatetime


class FoodCreateResponse(CamelModel):
    success: bool = True
    food_id: str
    message: str = "Food analysis saved successfully"


class FoodListResponse(CamelModel):
    success: bool = True
    foods: list[FoodAnalysis]


class FoodDeleteRequest(CamelModel):
    user_id: str
    food_name: str
    analysis_date: datetime


class FoodDeleteResponse(CamelModel):
    success: bool = True
    deleted_id: str
    deleted_food: str
    message: str = "Food analysis deleted successfully"


class UserFoodsDeleteResponse(CamelModel):
    success: bool = True
    deleted_count: int
    deleted_foods: list[FoodAnalysis]
    message: str


# Images


class ImageUploadRequest(CamelModel):
    image_data: Optional[str] = None
    file_name: Optional[str] = None
    content_type: Optional[str] = None


class ImageUploadResponse(CamelModel):
    success: bool = True
    s3_url: str
    public_url: str
    file_name: str
    original_file_name: str
    upload_timestamp: datetime
    message: str = "Image uploaded successfully"


# Notifications


class NotificationContent(CamelModel):
    title: Optional[str] = None
    body: Optional[str] = None


class SendOptions(CamelModel):
    image_url: Optional[str] = None
    badge: Optional[int] = Field(default=None, ge=0)


class SendNotificationRequest(CamelModel):
    filter: Optional[dict] = None
    notification: Optional[NotificationContent] = None
    data: dict = Field(default_factory=dict)
    options: SendOptions = Field(default_factory=SendOptions)
    campaign_id: Optional[str] = None


class SendResults(CamelModel):
    sent_count: int
    failed_count: int
    total_recipients: int
    invalid_tokens_cleared: int
    message: str


class SendNotificationResponse(SendResults):
    success: bool = True


# Campaigns


class CampaignCreateRequest(CamelModel):
    campaign_name: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: dict = Field(default_factory=dict)
    filter_criteria: dict = Field(default_factory=lambda: {"type": "all"})
    scheduled_at: Optional[datetime] = None
    created_by: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None


class CampaignUpdateRequest(CamelModel):
    campaign_name: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    data: Optional[dict] = None
    filter_criteria: Optional[dict] = None
    scheduled_at: Optional[datetime] = None
    status: Optional[str] = None
    notes: Optional[str] = None

    def to_patch(self) -> dict:
        patch = self.model_dump(exclude_unset=True)
        if "campaign_name" in patch:
            patch["name"] = patch.pop("campaign_name")
        if "scheduled_at" in patch:
            patch["scheduled_at"] = to_epoch(self.scheduled_at)
        return patch


class Campaign(CamelModel):
    id: str
    campaign_name: str
    title: str
    body: str
    data: dict
    filter_criteria: dict
    status: str
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    created_by: str
    total_recipients: Optional[int] = None
    successful_sends: Optional[int] = None
    failed_sends: Optional[int] = None
    notes: Optional[str] = None

    @classmethod
    def from_record(cls, record: CampaignRecord) -> "Campaign":
        return cls(
            id=record.id,
            campaign_name=record.name,
            title=record.title,
            body=record.body,
            data=record.data,
            filter_criteria=record.filter_criteria,
            status=record.status.value,
            scheduled_at=record.scheduled_at,
            sent_at=record.sent_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
            created_by=record.created_by,
            total_recipients=record.total_recipients,
            successful_sends=record.successful_sends,
            failed_sends=record.failed_sends,
            notes=record.notes,
        )


class CampaignResponse(CamelModel):
    success: bool = True
    campaign: Campaign
    message: Optional[str] = None


class Pagination(CamelModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class CampaignListResponse(CamelModel):
    success: bool = True
    campaigns: list[Campaign]
    pagination: Pagination


class DeletedCampaign(CamelModel):
    id: str
    campaign_name: str


class CampaignDeleteResponse(CamelModel):
    success: bool = True
    deleted_campaign: DeletedCampaign
    message: str = "Campaign deleted successfully"


class CampaignSendResponse(CamelModel):
    success: Literal[True] = True
    campaign_id: str
    results: SendResults
    message: str = "Campaign sent successfully"
