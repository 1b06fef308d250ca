"""
Competitor Metrics
==================
Aggregates over the content items collected for one profile:
1. Content patterns (types, hashtags, posting schedule, themes)
2. Engagement averages, rate and trend
3. Data quality score

Items are expected newest first.
"""

import math
import re
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional

from .platforms.base import ContentItem, ProfileData

HASHTAG_PATTERN = re.compile(r"#\w+")

THEME_KEYWORDS = (
    "tutorial", "review", "unboxing", "challenge", "behind-the-scenes",
    "lifestyle", "fashion", "food", "travel", "fitness", "tech", "beauty",
    "gaming", "music", "art", "business", "motivation", "comedy", "dance",
    "cooking",
)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


# ============================================================
# CONFIGURATION
# ============================================================

class MetricsConfig:
    TOP_HASHTAGS = 20
    TOP_HOURS = 5
    TOP_DAYS = 3
    TOP_THEMES = 5
    TOP_CONTENT = 3
    PEAK_HOURS = 3

    TREND_MIN_POSTS = 5
    TREND_THRESHOLD_PERCENT = 10

    # Coefficient of variation bands
    CONSISTENCY_BANDS = ((0.3, "very_consistent"), (0.6, "consistent"), (1.0, "moderate"))

    QUALITY_HIGH = 80
    QUALITY_MEDIUM = 50
    SUFFICIENT_SAMPLE = 10


def _top_entries(counter: Counter, limit: int) -> List[Dict[str, Any]]:
    return [{"key": key, "value": value} for key, value in counter.most_common(limit)]


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ============================================================
# CONTENT PATTERNS
# ============================================================

def top_hashtags(items: List[ContentItem], limit: int = MetricsConfig.TOP_HASHTAGS) -> List[Dict[str, Any]]:
    counts = Counter(tag.lower() for item in items for tag in HASHTAG_PATTERN.findall(item.text or ""))
    return [{"tag": tag, "count": count} for tag, count in counts.most_common(limit)]


def posting_schedule(items: List[ContentItem]) -> Dict[str, List[Dict[str, Any]]]:
    """Most common posting hours and weekdays, in UTC."""
    hours: Counter = Counter()
    days: Counter = Counter()
    for item in items:
        if item.created_at is None:
            continue
        hours[item.created_at.hour] += 1
        days[WEEKDAYS[item.created_at.weekday()]] += 1
    return {
        "best_hours": _top_entries(hours, MetricsConfig.TOP_HOURS),
        "best_days": _top_entries(days, MetricsConfig.TOP_DAYS),
    }


def content_themes(items: List[ContentItem]) -> List[Dict[str, Any]]:
    themes: Counter = Counter()
    for item in items:
        text = (item.text or "").lower()
        for keyword in THEME_KEYWORDS:
            if keyword in text:
                themes[keyword] += 1
    return [{"theme": theme, "count": count} for theme, count in themes.most_common(MetricsConfig.TOP_THEMES)]


def average_caption_length(items: List[ContentItem]) -> int:
    if not items:
        return 0
    return round(sum(len(item.text or "") for item in items) / len(items))


def content_patterns(items: List[ContentItem], time_period_days: int) -> Dict[str, Any]:
    durations = [item.duration_seconds for item in items if item.duration_seconds]
    return {
        "total_items": len(items),
        "content_types": dict(Counter(item.content_type for item in items)),
        "top_hashtags": top_hashtags(items),
        "posting_schedule": posting_schedule(items),
        "average_caption_length": average_caption_length(items),
        "average_video_duration": round(_mean(durations)) if durations else 0,
        "content_themes": content_themes(items),
        "posts_per_week": round(len(items) / max(time_period_days, 1) * 7, 2),
        "recent_content": [item.to_dict() for item in items[:10]],
    }


# ============================================================
# ENGAGEMENT
# ============================================================

def engagement_rate(average_engagement: float, followers: Optional[int]) -> float:
    """Average engagement per post as a percentage of followers."""
    return round(average_engagement / max(followers or 0, 1) * 100, 2)


def engagement_trend(items: List[ContentItem]) -> str:
    """Compare the newer half of the items against the older half."""
    if len(items) < MetricsConfig.TREND_MIN_POSTS:
        return "insufficient_data"

    split = len(items) // 2
    newer = _mean([item.metrics.total for item in items[:split]])
    older = _mean([item.metrics.total for item in items[split:]])

    if older == 0:
        return "increasing" if newer > 0 else "stable"
    change = (newer - older) / older * 100
    if change > MetricsConfig.TREND_THRESHOLD_PERCENT:
        return "increasing"
    if change < -MetricsConfig.TREND_THRESHOLD_PERCENT:
        return "decreasing"
    return "stable"


def engagement_consistency(items: List[ContentItem]) -> str:
    if len(items) < MetricsConfig.TREND_MIN_POSTS:
        return "insufficient_data"
    totals = [item.metrics.total for item in items]
    average = _mean(totals)
    if average == 0:
        return "stable"
    deviation = math.sqrt(sum((total - average) ** 2 for total in totals) / len(totals))
    coefficient = deviation / average
    for limit, label in MetricsConfig.CONSISTENCY_BANDS:
        if coefficient < limit:
            return label
    return "inconsistent"


def best_performing(items: List[ContentItem]) -> List[Dict[str, Any]]:
    ranked = sorted(items, key=lambda item: item.metrics.total, reverse=True)
    return [
        {
            "id": item.id,
            "content": item.text,
            "engagement": item.metrics.total,
            "created_at": item.to_dict()["created_at"],
            "content_type": item.content_type,
            "url": item.url,
        }
        for item in ranked[:MetricsConfig.TOP_CONTENT]
    ]


def peak_engagement_hours(items: List[ContentItem]) -> List[Dict[str, int]]:
    by_hour: Dict[int, int] = defaultdict(int)
    for item in items:
        if item.created_at is not None:
            by_hour[item.created_at.hour] += item.metrics.total
    ranked = sorted(by_hour.items(), key=lambda entry: entry[1], reverse=True)
    return [{"hour": hour, "engagement": total} for hour, total in ranked[:MetricsConfig.PEAK_HOURS]]


def engagement_by_content_type(items: List[ContentItem]) -> Dict[str, Dict[str, float]]:
    grouped: Dict[str, List[int]] = defaultdict(list)
    for item in items:
        grouped[item.content_type or "unknown"].append(item.metrics.total)
    return {
        content_type: {"total": sum(totals), "count": len(totals), "average": round(_mean(totals), 2)}
        for content_type, totals in grouped.items()
    }


def engagement_metrics(items: List[ContentItem], followers: Optional[int]) -> Dict[str, Any]:
    count = len(items)
    likes = sum(item.metrics.likes for item in items)
    comments = sum(item.metrics.comments for item in items)
    shares = sum(item.metrics.shares for item in items)
    views = sum(item.metrics.views for item in items)
    total = likes + comments + shares
    average = total / count if count else 0.0

    return {
        "total_posts": count,
        "total_likes": likes,
        "total_comments": comments,
        "total_shares": shares,
        "total_views": views,
        "total_engagement": total,
        "average_likes": round(likes / count, 2) if count else 0,
        "average_comments": round(comments / count, 2) if count else 0,
        "average_shares": round(shares / count, 2) if count else 0,
        "average_views": round(views / count, 2) if count else 0,
        "average_engagement": round(average, 2),
        "engagement_rate": engagement_rate(average, followers),
        "engagement_trend": engagement_trend(items),
        "engagement_consistency": engagement_consistency(items),
        "best_performing_content": best_performing(items),
        "peak_engagement_hours": peak_engagement_hours(items),
        "engagement_by_content_type": engagement_by_content_type(items),
    }


# ============================================================
# DATA QUALITY
# ============================================================

def data_quality(profile: Optional[ProfileData], items: List[ContentItem]) -> Dict[str, Any]:
    """Heuristic 0-100 completeness score of one snapshot."""
    score = 0
    factors = []

    if profile is not None:
        score += 30
        factors.append("profile_data_available")

    if items:
        score += 40
        factors.append("content_data_available")
        if len(items) >= MetricsConfig.SUFFICIENT_SAMPLE:
            score += 10
            factors.append("sufficient_content_sample")

    if sum(item.metrics.total for item in items) > 0:
        score += 20
        factors.append("engagement_data_available")

    score = min(score, 100)
    if score >= MetricsConfig.QUALITY_HIGH:
        level = "high"
    elif score >= MetricsConfig.QUALITY_MEDIUM:
        level = "medium"
    else:
        level = "low"
    return {"score": score, "level": level, "factors": factors}
