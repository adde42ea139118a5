import json
import logging
from typing import Any, Dict, Optional

from catalog_sync.core.redis import get_redis

logger = logging.getLogger(__name__)


def provider_channel(provider_id: int) -> str:
    return f"provider:{provider_id}"


def publish_sync_status(provider_id: int, status: str, counts: Optional[Dict[str, Any]] = None,
                        redis_client=None) -> bool:
    """Publish a sync status event on the provider's channel.

    Subscribers are optional; a broken Redis never fails a sync.
    """
    payload = {"provider_id": provider_id, "status": status}
    if counts is not None:
        payload["counts"] = counts
    try:
        client = redis_client or get_redis()
        client.publish(provider_channel(provider_id), json.dumps(payload, default=str))
        return True
    except Exception as e:
        logger.warning(f"Could not publish sync status for provider {provider_id}: {e}")
        return False
