"""Core module for configuration and utilities."""

from vodstream.core.celery_app import celery_app
from vodstream.core.config import settings
from vodstream.core.redis import get_redis

__all__ = [
    "celery_app",
    "settings",
    "get_redis",
]
