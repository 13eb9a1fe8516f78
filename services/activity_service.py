"""
Activity Service - append-only log of user and admin actions.

Entries are JSON members of a Redis sorted set scored by the epoch
millisecond timestamp, so reads come back in time order and pruning is a
single ZREMRANGEBYSCORE. Entries older than 30 days are dropped on every
write.
"""

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from kv import kv_store, ACTIVITY_LOG_KEY

logger = logging.getLogger("zee_index.activity")

RETENTION_SECONDS = 60 * 60 * 24 * 30


class ActivityType(str, Enum):
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    DELETE = "DELETE"
    RENAME = "RENAME"
    MOVE = "MOVE"
    COPY = "COPY"
    SHARE_LINK_CREATED = "SHARE_LINK_CREATED"
    SHARE_LINK_DELETED = "SHARE_LINK_DELETED"
    ADMIN_ADDED = "ADMIN_ADDED"
    ADMIN_REMOVED = "ADMIN_REMOVED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCESS_REQUESTED = "ACCESS_REQUESTED"
    ACCESS_GRANTED = "ACCESS_GRANTED"


def _now_ms() -> int:
    return int(time.time() * 1000)


def log_activity(activity_type: ActivityType, **details: Any) -> None:
    """
    Record an action. Never raises: a failed write is logged and dropped.

    Common detail keys: itemName, itemSize, userEmail (actor), targetUser,
    destinationFolder, status ("success" | "failure"), error.
    """
    try:
        timestamp = _now_ms()
        entry: Dict[str, Any] = {"type": ActivityType(activity_type).value, "timestamp": timestamp}
        entry.update({k: v for k, v in details.items() if v is not None})
        entry.setdefault("status", "success")

        kv_store.client.zadd(ACTIVITY_LOG_KEY, {json.dumps(entry): timestamp})
        prune_activity_logs(now_ms=timestamp)
    except Exception as e:
        logger.error(f"Failed to record activity {activity_type}: {e}")


def prune_activity_logs(now_ms: Optional[int] = None) -> int:
    """Drop entries older than the retention window. Returns how many were removed."""
    cutoff = (now_ms or _now_ms()) - RETENTION_SECONDS * 1000
    return kv_store.client.zremrangebyscore(ACTIVITY_LOG_KEY, 0, cutoff)


def clear_activity_logs() -> bool:
    return kv_store.client.delete(ACTIVITY_LOG_KEY) > 0


def count_activity_logs() -> int:
    return kv_store.client.zcard(ACTIVITY_LOG_KEY)


def get_activity_logs(limit: int = 50, offset: int = 0,
                      activity_type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest first."""
    if activity_type:
        # Type filtering has to look at every member.
        members = kv_store.client.zrevrange(ACTIVITY_LOG_KEY, 0, -1)
        entries = [e for e in _decode(members) if e.get("type") == activity_type]
        return entries[offset:offset + limit]

    members = kv_store.client.zrevrange(ACTIVITY_LOG_KEY, offset, offset + limit - 1)
    return _decode(members)


def get_logs_since(since: datetime) -> List[Dict[str, Any]]:
    start = int(since.timestamp() * 1000)
    members = kv_store.client.zrangebyscore(ACTIVITY_LOG_KEY, start, "+inf")
    return _decode(members)


def _decode(members) -> List[Dict[str, Any]]:
    entries = []
    for member in members:
        try:
            entries.append(json.loads(member))
        except (TypeError, ValueError):
            logger.warning("Skipping malformed activity log entry")
    return entries


def get_download_stats(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Dashboard figures from the DOWNLOAD entries: downloads per hour today,
    top files, downloads per weekday over the last 7 weeks and top users.
    """
    now = now or datetime.now(timezone.utc)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    downloads = [e for e in get_logs_since(now - timedelta(weeks=7))
                 if e.get("type") == ActivityType.DOWNLOAD.value]

    hourly = [0] * 24
    weekdays = [0] * 7
    files: Dict[str, int] = {}
    users: Dict[str, int] = {}

    for entry in downloads:
        moment = datetime.fromtimestamp(entry["timestamp"] / 1000, tz=timezone.utc)
        weekdays[moment.weekday()] += 1
        if moment >= start_of_day:
            hourly[moment.hour] += 1
        name = entry.get("itemName") or "Unknown"
        files[name] = files.get(name, 0) + 1
        user = entry.get("userEmail") or "Guest"
        users[user] = users.get(user, 0) + 1

    def _top(counts: Dict[str, int], label: str) -> List[Dict[str, Any]]:
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:10]
        return [{label: key, "count": value} for key, value in ranked]

    return {
        "downloadsToday": sum(hourly),
        "hourlyDownloads": [{"hour": f"{h:02d}:00", "count": c} for h, c in enumerate(hourly)],
        "weekdayDownloads": [
            {"day": day, "count": weekdays[i]}
            for i, day in enumerate(["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"])
        ],
        "topFiles": _top(files, "name"),
        "topUsers": _top(users, "email"),
    }
