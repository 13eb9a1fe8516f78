import json
import logging
import time
from typing import Any, Optional

import redis

from config import config

ADMINS_KEY = "zee-index:admins"
EDITORS_KEY = "zee-index:editors"
PINNED_FOLDERS_KEY = "zee-index:pinned-folders"
ACTIVITY_LOG_KEY = "zee-index:activity-log"
FILE_REQUESTS_KEY = "zee-index:file-requests"
MANUAL_DRIVES_KEY = "zee-index:manual-drives"
CREDENTIALS_KEY = "zee-index:credentials"
USER_ACCESS_FOLDERS_KEY = "zee-index:user-access:folders"
ACCESS_REQUESTS_KEY = "zee-index:access-requests:v3"
DATA_USAGE_KEY = "zee-index:datausage"


def folder_content_key(folder_id: str, page_token: Optional[str] = None) -> str:
    return f"zee-index:folder-content-v3:{folder_id}:{page_token or 'first'}"


def folder_path_key(folder_id: str, locale: str) -> str:
    return f"zee-index:folder-path-v7:{folder_id}:{locale}"


def file_details_key(file_id: str) -> str:
    return f"gdrive:file-details-v2:{file_id}"


def folder_access_key(folder_id: str) -> str:
    return f"folder:access:{folder_id}"


def favorites_key(email: str) -> str:
    return f"user:{email}:favorites"


def tags_key(file_id: str) -> str:
    return f"zee_tags:{file_id}"


def user_password_key(email: str) -> str:
    return f"password:{email}"


def blocked_jti_key(jti: str) -> str:
    return f"zee-index:blocked:{jti}"


def share_items_key(jti: str) -> str:
    return f"zee-index:share-items:{jti}"


class KVStore:
    """
    Redis-backed key-value store.

    Holds both durable metadata (admin sets, favorites, tags, activity log)
    and short-lived Drive caches. The JSON helpers are best-effort: a Redis
    failure there is logged and treated as a miss. Callers that need the data
    use ``client`` directly and let errors propagate.
    """

    def __init__(self):
        self._logger = logging.getLogger("zee_index.kv")
        self._last_failure_logged_at: Optional[float] = None
        # redis-py connects lazily, so building the client never blocks startup.
        self.client = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
            max_connections=20,
            retry_on_timeout=True,
            client_name="zee-index",
        )

    def get_json(self, key: str) -> Optional[Any]:
        """
        Retrieve a JSON value.

        Returns:
            Deserialized value, or None if missing or the store is unreachable
        """
        try:
            value = self.client.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            self._log_failure(f"KV GET error for key '{key}'", e)
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON value with a TTL (default: REDIS_DEFAULT_TTL).
        ``ttl=0`` stores without expiry.
        """
        try:
            serialized = json.dumps(value)
            if ttl == 0:
                self.client.set(key, serialized)
            else:
                self.client.setex(key, ttl or config.REDIS_DEFAULT_TTL, serialized)
            return True
        except Exception as e:
            self._log_failure(f"KV SET error for key '{key}'", e)
            return False

    def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.

        Args:
            pattern: e.g. 'zee-index:folder-content-v3:abc:*'

        Returns:
            Number of keys deleted
        """
        try:
            keys = self.client.keys(pattern)
            if keys:
                return self.client.delete(*keys)
            return 0
        except Exception as e:
            self._log_failure(f"KV pattern delete error for '{pattern}'", e)
            return 0

    def delete_key(self, key: str) -> bool:
        try:
            return self.client.delete(key) > 0
        except Exception as e:
            self._log_failure(f"KV DELETE error for key '{key}'", e)
            return False

    def ping(self) -> bool:
        return bool(self.client.ping())

    def _log_failure(self, message: str, exception: Exception) -> None:
        """Log failures without flooding logs."""

        now = time.time()
        if self._last_failure_logged_at is None or now - self._last_failure_logged_at > 60:
            self._last_failure_logged_at = now
            self._logger.warning(message, extra={"error": str(exception)})


kv_store = KVStore()


def invalidate_folder_cache(folder_id: str) -> int:
    """Drop cached listings, breadcrumbs and folder trees touching ``folder_id``."""
    if not folder_id:
        return 0
    deleted = 0
    deleted += kv_store.delete_pattern(f"zee-index:folder-content-v3:{folder_id}:*")
    deleted += kv_store.delete_pattern(f"zee-index:folder-path-v7:{folder_id}:*")
    deleted += kv_store.delete_pattern("zee-index:folder-tree*")
    kv_store.delete_key(file_details_key(folder_id))
    return deleted
