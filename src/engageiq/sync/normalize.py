"""Per-platform transforms of upstream content into analytics records.

Every item becomes one ``engagement`` record whose value is the platform's
headline interaction count:
- twitter: likes + retweets
- instagram: likes + comments
- youtube: likes + comments
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from engageiq.sync.ports import AnalyticsRecord, LinkedAccount

ENGAGEMENT = "engagement"


def _count(item: dict[str, Any], key: str) -> int:
    return int(item.get(key) or 0)


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value, UTC)
    elif value:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    else:
        dt = datetime.now(UTC)
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def normalize_tweet(account: LinkedAccount, item: dict[str, Any]) -> AnalyticsRecord:
    likes = _count(item, "like_count")
    retweets = _count(item, "retweet_count")
    return AnalyticsRecord(
        user_id=account.user_id,
        platform="twitter",
        account_id=account.id,
        metric_type=ENGAGEMENT,
        value=likes + retweets,
        date=_parse_date(item.get("created_at")),
        data={
            "content_id": item.get("id"),
            "text": item.get("text"),
            "likes": likes,
            "retweets": retweets,
            "comments": _count(item, "reply_count"),
        },
    )


def normalize_instagram_post(account: LinkedAccount, item: dict[str, Any]) -> AnalyticsRecord:
    likes = _count(item, "likes_count")
    comments = _count(item, "comments_count")
    return AnalyticsRecord(
        user_id=account.user_id,
        platform="instagram",
        account_id=account.id,
        metric_type=ENGAGEMENT,
        value=likes + comments,
        date=_parse_date(item.get("timestamp")),
        data={
            "content_id": item.get("id"),
            "caption": item.get("caption"),
            "likes": likes,
            "comments": comments,
            "media_type": item.get("media_type"),
        },
    )


def normalize_video(account: LinkedAccount, item: dict[str, Any]) -> AnalyticsRecord:
    likes = _count(item, "likes_count")
    comments = _count(item, "comments_count")
    return AnalyticsRecord(
        user_id=account.user_id,
        platform="youtube",
        account_id=account.id,
        metric_type=ENGAGEMENT,
        value=likes + comments,
        date=_parse_date(item.get("published_at")),
        data={
            "content_id": item.get("id"),
            "title": item.get("title"),
            "views": _count(item, "views_count"),
            "likes": likes,
            "comments": comments,
        },
    )


NORMALIZERS: dict[str, Callable[[LinkedAccount, dict[str, Any]], AnalyticsRecord]] = {
    "twitter": normalize_tweet,
    "instagram": normalize_instagram_post,
    "youtube": normalize_video,
}


def normalize(account: LinkedAccount, items: list[dict[str, Any]]) -> list[AnalyticsRecord]:
    """Normalize a batch of upstream items for ``account``.

    Raises:
        ValueError: If the account's platform has no transform
    """
    transform = NORMALIZERS.get(account.platform)
    if transform is None:
        raise ValueError(f"Unsupported platform: {account.platform}")
    return [transform(account, item) for item in items]
