"""Shared FastAPI dependencies for outbound collaborators."""

import aiohttp
from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.notifier import Notifier, WebhookNotifier
from app.services.reconciliation import ReconciliationService


def get_http_session(request: Request) -> aiohttp.ClientSession:
    return request.app.state.http_session


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def get_notifier(
    http_session: aiohttp.ClientSession = Depends(get_http_session),
) -> Notifier:
    return WebhookNotifier(http_session)


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    http_session: aiohttp.ClientSession = Depends(get_http_session),
    redis: Redis = Depends(get_redis),
    notifier: Notifier = Depends(get_notifier),
) -> ReconciliationService:
    return ReconciliationService(db, session=http_session, redis=redis, notifier=notifier)
