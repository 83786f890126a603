"""
Dependency wiring for the API and the scheduled handlers.

Clients are created once per process and reused across invocations.
"""

from __future__ import annotations

import logging

from foody.config import get_settings
from foody.db import DbClient, InMemoryDbClient, PostgresDbClient
from foody.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from notifications.audience import AudienceResolver
from notifications.campaigns import CampaignOrchestrator
from notifications.dispatcher import MessageDispatcher
from notifications.messaging import (
    FirebaseMessagingProvider,
    InMemoryMessagingProvider,
    MessagingProvider,
    initialize_firebase_app,
)
from notifications.recorder import DeliveryRecorder
from notifications.sender import NotificationSender

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_messaging_provider: MessagingProvider | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.images_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.images_bucket,
            region=settings.aws_region,
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )
    return _storage_client


def get_messaging_provider() -> MessagingProvider:
    global _messaging_provider
    if _messaging_provider:
        return _messaging_provider

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.firebase_configured:
        logger.warning("Firebase is not configured; push notifications stay in memory")
        _messaging_provider = InMemoryMessagingProvider()
    else:
        app = initialize_firebase_app(
            service_account_path=settings.firebase_service_account_path,
            project_id=settings.firebase_project_id,
            private_key=settings.firebase_private_key,
            client_email=settings.firebase_client_email,
        )
        _messaging_provider = FirebaseMessagingProvider(app)
    return _messaging_provider


def get_notification_sender() -> NotificationSender:
    settings = get_settings()
    db = get_db_client()
    return NotificationSender(
        resolver=AudienceResolver(db),
        dispatcher=MessageDispatcher(
            get_messaging_provider(),
            batch_size=settings.fcm_batch_size,
            batch_delay=settings.fcm_batch_delay_seconds,
        ),
        recorder=DeliveryRecorder(db),
    )


def get_campaign_orchestrator() -> CampaignOrchestrator:
    return CampaignOrchestrator(get_db_client(), get_notification_sender())
