import hashlib
import json
import logging
import time
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from kv import kv_store

logger = logging.getLogger("zee_index.analytics")

PAGEVIEW_KEY = "zee-index:analytics:pageviews"
VISITOR_KEY = "zee-index:analytics:visitors"
DAILY_VIEWS_KEY = "zee-index:analytics:daily-views"
DAILY_VISITORS_KEY = "zee-index:analytics:daily-visitors"
POPULAR_PAGES_KEY = "zee-index:analytics:popular-pages"
DEVICE_STATS_KEY = "zee-index:analytics:device-stats"
REFERRER_KEY = "zee-index:analytics:referrers"
BANDWIDTH_KEY = "zee-index:analytics:bandwidth"
ACTIVE_VISITORS_KEY = "zee-index:analytics:active-visitors"

RETENTION_SECONDS = 60 * 60 * 24 * 90
ACTIVE_WINDOW_SECONDS = 5 * 60

_PRUNED_KEYS = (PAGEVIEW_KEY, ACTIVE_VISITORS_KEY, POPULAR_PAGES_KEY, DEVICE_STATS_KEY, REFERRER_KEY)


def day_key(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def parse_user_agent(ua: Optional[str]) -> Dict[str, str]:
    """Coarse browser / OS / device classification."""
    ua = ua or ""
    browser, os_name, device = "Other", "Other", "Desktop"

    if "Firefox/" in ua:
        browser = "Firefox"
    elif "Edg/" in ua:
        browser = "Edge"
    elif "OPR/" in ua or "Opera/" in ua:
        browser = "Opera"
    elif "Chrome/" in ua:
        browser = "Chrome"
    elif "Safari/" in ua:
        browser = "Safari"
    elif "bot" in ua.lower() or "crawler" in ua:
        browser = "Bot"

    if "Windows" in ua:
        os_name = "Windows"
    elif "iPhone" in ua or "iPad" in ua:
        os_name = "iOS"
    elif "Mac OS X" in ua or "Macintosh" in ua:
        os_name = "macOS"
    elif "Android" in ua:
        os_name = "Android"
    elif "CrOS" in ua:
        os_name = "ChromeOS"
    elif "Linux" in ua:
        os_name = "Linux"

    if "iPad" in ua or "Tablet" in ua:
        device = "Tablet"
    elif "Mobile" in ua or "Android" in ua or "iPhone" in ua:
        device = "Mobile"

    return {"browser": browser, "os": os_name, "device": device}


def visitor_id(ip: str, user_agent: str) -> str:
    digest = hashlib.sha256(f"{ip}:{user_agent}".encode("utf-8")).hexdigest()
    return f"v-{digest[:12]}"


def track_page_view(path: str, ip: str, user_agent: str, referrer: Optional[str] = None) -> None:
    """Record one page view. Failures are logged, never raised."""
    try:
        now_ms = int(time.time() * 1000)
        today = day_key(datetime.now(timezone.utc))
        agent = parse_user_agent(user_agent)
        visitor = visitor_id(ip, user_agent)

        event = {
            "id": str(uuid.uuid4()),
            "path": path,
            "timestamp": now_ms,
            "visitorId": visitor,
            "referrer": referrer or "",
            **agent,
        }

        client = kv_store.client
        pipe = client.pipeline()
        pipe.zadd(PAGEVIEW_KEY, {json.dumps(event): now_ms})
        pipe.incr(f"{DAILY_VIEWS_KEY}:{today}")
        pipe.expire(f"{DAILY_VIEWS_KEY}:{today}", RETENTION_SECONDS)
        pipe.sadd(f"{VISITOR_KEY}:{today}", visitor)
        pipe.expire(f"{VISITOR_KEY}:{today}", RETENTION_SECONDS)
        pipe.zadd(ACTIVE_VISITORS_KEY, {visitor: now_ms})
        pipe.zadd(POPULAR_PAGES_KEY, {json.dumps({"path": path, "id": event["id"]}): now_ms})
        pipe.zadd(DEVICE_STATS_KEY, {json.dumps({**agent, "id": event["id"]}): now_ms})

        source = urlparse(referrer).hostname if referrer else None
        if source:
            pipe.zadd(REFERRER_KEY, {json.dumps({"source": source, "id": event["id"]}): now_ms})

        cutoff = now_ms - RETENTION_SECONDS * 1000
        for key in _PRUNED_KEYS:
            pipe.zremrangebyscore(key, 0, cutoff)
        pipe.execute()

        visitors_today = client.scard(f"{VISITOR_KEY}:{today}")
        client.set(f"{DAILY_VISITORS_KEY}:{today}", visitors_today, ex=RETENTION_SECONDS)
    except Exception as e:
        logger.error(f"Failed to track page view: {e}")


def track_bandwidth(num_bytes: int) -> None:
    if not num_bytes:
        return
    try:
        key = f"{BANDWIDTH_KEY}:{day_key(datetime.now(timezone.utc))}"
        kv_store.client.incrby(key, int(num_bytes))
        kv_store.client.expire(key, RETENTION_SECONDS)
    except Exception as e:
        logger.error(f"Failed to track bandwidth: {e}")


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _range_members(key: str, since_ms: int, until_ms: int) -> List[Dict[str, Any]]:
    decoded = []
    for raw in kv_store.client.zrangebyscore(key, since_ms, until_ms):
        try:
            decoded.append(json.loads(raw))
        except (TypeError, ValueError):
            continue
    return decoded


def get_analytics_data(now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    now_ms = int(now.timestamp() * 1000)
    client = kv_store.client

    days = [now - timedelta(days=i) for i in range(30)]
    views = [_int(client.get(f"{DAILY_VIEWS_KEY}:{day_key(d)}")) for d in days]
    visitors = [_int(client.get(f"{DAILY_VISITORS_KEY}:{day_key(d)}")) for d in days]
    bandwidth = [_int(client.get(f"{BANDWIDTH_KEY}:{day_key(d)}")) for d in days]

    active_members = client.zrangebyscore(ACTIVE_VISITORS_KEY, now_ms - ACTIVE_WINDOW_SECONDS * 1000, now_ms)

    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    hourly = [{"hour": f"{h:02d}:00", "views": 0, "visitors": 0} for h in range(24)]
    hourly_visitors: Dict[int, set] = {}
    for event in _range_members(PAGEVIEW_KEY, int(start_of_day.timestamp() * 1000), now_ms):
        hour = datetime.fromtimestamp(event["timestamp"] / 1000, tz=timezone.utc).hour
        hourly[hour]["views"] += 1
        hourly_visitors.setdefault(hour, set()).add(event.get("visitorId"))
    for hour, seen in hourly_visitors.items():
        hourly[hour]["visitors"] = len(seen)

    month_ago_ms = now_ms - 30 * 86400 * 1000
    pages = Counter(p.get("path") or "/" for p in _range_members(POPULAR_PAGES_KEY, month_ago_ms, now_ms))
    devices = _range_members(DEVICE_STATS_KEY, month_ago_ms, now_ms)
    referrers = Counter(r.get("source") for r in _range_members(REFERRER_KEY, month_ago_ms, now_ms))

    def _ranked(counter: Counter, limit: int = 8) -> List[Dict[str, Any]]:
        return [{"name": name, "count": count} for name, count in counter.most_common(limit)]

    return {
        "overview": {
            "viewsToday": views[0],
            "viewsYesterday": views[1],
            "viewsThisWeek": sum(views[:7]),
            "viewsThisMonth": sum(views),
            "visitorsToday": visitors[0],
            "visitorsYesterday": visitors[1],
            "visitorsThisWeek": sum(visitors[:7]),
            "visitorsThisMonth": sum(visitors),
            "activeNow": len(set(active_members)),
        },
        "hourlyViews": hourly,
        "dailyTrend": [
            {"date": f"{d.day}/{d.month}", "views": views[i], "visitors": visitors[i]}
            for i, d in reversed(list(enumerate(days)))
        ],
        "popularPages": [{"path": path, "views": count} for path, count in pages.most_common(10)],
        "deviceBreakdown": {
            "browsers": _ranked(Counter(d.get("browser") for d in devices)),
            "os": _ranked(Counter(d.get("os") for d in devices)),
            "devices": _ranked(Counter(d.get("device") for d in devices)),
        },
        "topReferrers": [{"source": s, "count": c} for s, c in referrers.most_common(10)],
        "bandwidth": {
            "totalToday": bandwidth[0],
            "totalThisWeek": sum(bandwidth[:7]),
            "totalThisMonth": sum(bandwidth),
            "dailyTrend": [
                {"date": f"{d.day}/{d.month}", "bytes": bandwidth[i]}
                for i, d in reversed(list(enumerate(days)))
            ],
        },
    }
