"""Best-effort publication of committed state transitions.

Dashboards subscribe to the Redis channel and re-fetch; nothing in the
request path depends on delivery.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from redis.exceptions import RedisError

from ticketing.core.config import settings
from ticketing.redis_client import get_redis

logger = structlog.get_logger(__name__)


def publish_change(entity: str, action: str, entity_id: Any, **fields: Any) -> None:
    """Publish ``{entity, action, id, ...}`` after a commit. Never raises."""
    if not settings.change_feed_enabled:
        return

    message = {"entity": entity, "action": action, "id": str(entity_id)}
    message.update({k: str(v) if v is not None else None for k, v in fields.items()})
    try:
        get_redis().publish(settings.change_feed_channel, json.dumps(message))
    except RedisError:
        logger.warning("change_feed_publish_failed", entity=entity, action=action, id=str(entity_id))
