from __future__ import annotations

from replypilot.broker.base import QueueBackend
from replypilot.broker.memory import MemoryQueueBackend
from replypilot.broker.redis import RedisConfig, RedisQueueBackend
from replypilot.core.config import Settings, get_settings


def build_queue_backend(settings: Settings | None = None) -> QueueBackend:
    settings = settings or get_settings()
    if settings.QUEUE_BACKEND == "memory":
        return MemoryQueueBackend()
    if settings.QUEUE_BACKEND == "redis":
        return RedisQueueBackend(RedisConfig(url=settings.REDIS_URL))
    raise ValueError(f"Unsupported QUEUE_BACKEND: {settings.QUEUE_BACKEND}")
