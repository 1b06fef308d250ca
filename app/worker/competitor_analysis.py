"""
Competitor Analysis
===================
1. Validate the request
2. Serve cached snapshots, collect the rest
3. Forward the merged data to the AI service
4. Fall back to a locally computed basic analysis when the service is down
5. Store the run as an AnalysisResult
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..clock import isoformat, utcnow
from ..config import get_settings
from ..logging_config import get_logger
from ..models.analysis_result import AnalysisResult
from .ai_client import AIServiceClient, AIServiceUnavailable
from .cache_store import CompetitorCache
from .competitor_collector import CollectionError, CompetitorCollector, CompetitorSnapshot, platform_for_url

logger = get_logger("competitor_analysis")

BASIC_MODEL_VERSION = "basic-fallback-v1.0"
BASIC_RECOMMENDATIONS = [
    "AI-powered insights temporarily unavailable",
    "Basic competitor data collected successfully",
    "Try again later for enhanced AI analysis",
]
ANALYSIS_OPTIONS = (
    "include_content_analysis",
    "include_engagement_analysis",
    "include_audience_analysis",
    "include_competitive_insights",
    "include_recommendations",
)
REQUIRED_SECTIONS = ("competitors", "market_insights", "benchmark_metrics")


class AnalysisRequestError(ValueError):
    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


@dataclass
class AnalysisRequest:
    competitor_urls: List[Any]
    analysis_type: str = "comprehensive"
    platforms: Optional[List[str]] = None
    campaign_id: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)


def validate_request(request: AnalysisRequest, max_urls: int) -> None:
    urls = request.competitor_urls
    if not isinstance(urls, list) or not urls:
        raise AnalysisRequestError("At least one competitor URL is required")
    if len(urls) > max_urls:
        raise AnalysisRequestError(f"A maximum of {max_urls} competitor URLs can be analyzed at once")
    if any(not isinstance(url, str) for url in urls):
        raise AnalysisRequestError("Competitor URLs must be strings")
    if request.platforms:
        allowed = {platform.lower() for platform in request.platforms}
        for url in urls:
            platform = platform_for_url(url)
            if platform is not None and platform.value not in allowed:
                raise AnalysisRequestError(
                    f"URL {url} is on {platform.value}, which is not in the requested platforms"
                )


# ============================================================
# PAYLOAD & FALLBACK
# ============================================================

def build_payload(
    user_id: int,
    request: AnalysisRequest,
    snapshots: List[CompetitorSnapshot],
    errors: List[CollectionError],
) -> Dict[str, Any]:
    options = request.options
    analysis_options = {name: options.get(name, True) for name in ANALYSIS_OPTIONS}
    analysis_options["include_realtime_data"] = bool(options.get("include_realtime_data", False))

    return {
        "user_id": user_id,
        "campaign_id": request.campaign_id,
        "analysis_type": request.analysis_type,
        "competitors_data": [
            {
                "profile_url": snapshot.profile_url,
                "platform": snapshot.platform,
                "profile_data": snapshot.profile.to_dict(),
                "content_analysis": snapshot.content,
                "engagement_metrics": snapshot.engagement,
                "data_quality": snapshot.data_quality,
                "collected_at": isoformat(snapshot.collected_at),
            }
            for snapshot in snapshots
        ],
        "analysis_options": analysis_options,
        "metadata": {
            "total_competitors": len(request.competitor_urls),
            "successful_collections": len(snapshots),
            "failed_collections": len(errors),
            "collection_timestamp": isoformat(utcnow()),
            "data_source": "platform_apis",
        },
    }


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0


def build_basic_analysis(snapshots: List[CompetitorSnapshot], analysis_type: str) -> Dict[str, Any]:
    """Analysis computed from the collected data alone."""
    competitors = []
    for snapshot in snapshots:
        engagement = snapshot.engagement
        content = snapshot.content
        competitors.append({
            "platform": snapshot.platform,
            "username": snapshot.username,
            "profile_url": snapshot.profile_url,
            "verified": snapshot.profile.verified,
            "key_metrics": {
                "followers": snapshot.profile.followers,
                "engagement_rate": engagement.get("engagement_rate", 0),
                "posts_analyzed": content.get("total_items", 0),
                "average_likes": engagement.get("average_likes", 0),
                "average_comments": engagement.get("average_comments", 0),
                "average_shares": engagement.get("average_shares", 0),
            },
            "content_analysis": {
                "total_posts": content.get("total_items", 0),
                "posts_per_week": content.get("posts_per_week", 0),
                "content_types": content.get("content_types", {}),
                "top_hashtags": content.get("top_hashtags", []),
                "posting_schedule": content.get("posting_schedule", {}),
            },
            "data_quality": snapshot.data_quality,
        })

    rates = [competitor["key_metrics"]["engagement_rate"] for competitor in competitors]
    followers = [competitor["key_metrics"]["followers"] for competitor in competitors]
    ranked = sorted(competitors, key=lambda competitor: competitor["key_metrics"]["engagement_rate"], reverse=True)

    return {
        "results": {
            "competitors": competitors,
            "market_insights": {
                "total_competitors": len(competitors),
                "platforms_analyzed": sorted({competitor["platform"] for competitor in competitors}),
                "average_engagement": _average(rates),
                "analysis_note": "Basic analysis performed - AI services unavailable",
            },
            "benchmark_metrics": {
                "engagement_benchmark": _average(rates),
                "follower_benchmark": _average(followers),
            },
            "competitive_landscape": {
                "top_performers": ranked[:3],
                "analysis_type": analysis_type,
            },
            "recommendations": list(BASIC_RECOMMENDATIONS),
            "ai_insights": {
                "status": "offline_mode",
                "message": "AI services are currently unavailable. Basic analysis provided.",
                "fallback_used": True,
            },
        },
        "model_version": BASIC_MODEL_VERSION,
        "fallback_mode": True,
    }


def key_insights(snapshots: List[CompetitorSnapshot]) -> List[str]:
    if not snapshots:
        return []
    rates = [snapshot.engagement.get("engagement_rate", 0) for snapshot in snapshots]
    platforms = sorted({snapshot.platform for snapshot in snapshots})
    top = max(snapshots, key=lambda snapshot: snapshot.engagement.get("engagement_rate", 0))
    total_posts = sum(snapshot.content.get("total_items", 0) for snapshot in snapshots)
    return [
        f"Average engagement rate across competitors: {sum(rates) / len(rates):.2f}%",
        f"Competitors analyzed across {len(platforms)} platforms: {', '.join(platforms)}",
        f"Top performing competitor: @{top.username} with {top.engagement.get('engagement_rate', 0)}% engagement",
        f"Total posts analyzed: {total_posts} posts",
    ]


def trending_hashtags(snapshots: List[CompetitorSnapshot], limit: int = 10) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    for snapshot in snapshots:
        for entry in snapshot.content.get("top_hashtags", []):
            counts[entry["tag"]] += entry.get("count", 1)
    return [{"tag": tag, "usage_count": count} for tag, count in counts.most_common(limit)]


def content_themes(snapshots: List[CompetitorSnapshot], limit: int = 10) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    for snapshot in snapshots:
        for entry in snapshot.content.get("content_themes", []):
            counts[entry["theme"]] += entry.get("count", 1)
    return [{"theme": theme, "count": count} for theme, count in counts.most_common(limit)]


def optimal_posting_times(snapshots: List[CompetitorSnapshot]) -> Dict[str, List[Dict[str, Any]]]:
    hours: Counter = Counter()
    days: Counter = Counter()
    for snapshot in snapshots:
        schedule = snapshot.content.get("posting_schedule", {})
        for entry in schedule.get("best_hours", []):
            hours[entry["key"]] += entry["value"]
        for entry in schedule.get("best_days", []):
            days[entry["key"]] += entry["value"]
    return {
        "best_hours": [{"hour": hour, "posts": count} for hour, count in hours.most_common(5)],
        "best_days": [{"day": day, "posts": count} for day, count in days.most_common(3)],
    }


# ============================================================
# SERVICE
# ============================================================

class CompetitorAnalysisService:
    def __init__(
        self,
        db: Session,
        collector: Optional[CompetitorCollector] = None,
        ai_client: Optional[AIServiceClient] = None,
        settings=None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.collector = collector or CompetitorCollector(settings=self.settings)
        self.ai_client = ai_client or AIServiceClient(self.settings)
        self.cache = CompetitorCache(db, self.settings.competitor_cache_ttl_seconds)

    async def analyze(self, user_id: int, request: AnalysisRequest) -> Dict[str, Any]:
        started = time.monotonic()
        validate_request(request, self.settings.competitor_max_urls)
        log = logger.bind(user_id=user_id, competitors=len(request.competitor_urls))

        urls = request.competitor_urls
        max_posts = request.options.get("max_posts") or self.settings.competitor_default_max_posts
        days = request.options.get("time_period_days") or self.settings.competitor_default_time_period_days
        use_cache = request.options.get("use_cache", True)

        cached = self.cache.get_many(urls, max_posts, days) if use_cache else {}
        misses = list(dict.fromkeys(url for url in urls if url not in cached))
        fresh = await self.collector.collect_many(
            misses, max_posts, days, concurrency=request.options.get("concurrency")
        ) if misses else []
        fresh_by_url = dict(zip(misses, fresh))
        self.cache.set_many([outcome for outcome in fresh if outcome.success], max_posts, days)

        outcomes = [cached[url] if url in cached else fresh_by_url[url] for url in urls]
        snapshots = [outcome for outcome in outcomes if outcome.success]
        errors = [outcome for outcome in outcomes if not outcome.success]
        log.info("Competitor data collected", cache_hits=len(cached), succeeded=len(snapshots), failed=len(errors))

        if not snapshots:
            raise AnalysisRequestError(
                "Failed to collect data from any competitor profiles",
                errors=[error.to_dict() for error in errors],
            )

        payload = build_payload(user_id, request, snapshots, errors)
        try:
            analysis = await self.ai_client.competitor_analysis(payload)
        except AIServiceUnavailable as exc:
            log.warning("AI service unavailable, using basic analysis", reason=str(exc))
            analysis = build_basic_analysis(snapshots, request.analysis_type)
        fallback_mode = bool(analysis.get("fallback_mode", False))

        raw_results = analysis.get("results")
        results = dict(raw_results) if isinstance(raw_results, dict) else {}
        if not fallback_mode:
            basic = build_basic_analysis(snapshots, request.analysis_type)["results"]
            for name in REQUIRED_SECTIONS:
                results[name] = results.get(name) or basic[name]
        results["key_insights"] = results.get("key_insights") or key_insights(snapshots)
        results["trending_hashtags"] = results.get("trending_hashtags") or trending_hashtags(snapshots)
        results["content_themes"] = results.get("content_themes") or content_themes(snapshots)
        results["optimal_posting_times"] = results.get("optimal_posting_times") or optimal_posting_times(snapshots)
        results["competitors_data"] = payload["competitors_data"]

        warnings = [f"{snapshot.profile_url}: {warning}" for snapshot in snapshots for warning in snapshot.warnings]
        quality = [snapshot.data_quality.get("score", 0) for snapshot in snapshots]

        record = AnalysisResult(
            user_id=user_id,
            campaign_id=request.campaign_id,
            result_type="competitor_analysis",
            input_data={
                "competitor_urls": urls,
                "analysis_type": request.analysis_type,
                "platforms": request.platforms,
                "options": request.options,
            },
            competitor_analysis=results,
            ai_metadata={
                "model_version": analysis.get("model_version", "unknown"),
                "processing_time_ms": analysis.get("processing_time_ms") or int((time.monotonic() - started) * 1000),
                "data_quality_score": round(sum(quality) / len(quality)),
                "fallback_mode": fallback_mode,
                "competitors_analyzed": len(snapshots),
                "competitors_failed": len(errors),
                "data_sources": sorted({snapshot.platform for snapshot in snapshots}),
            },
            status="completed",
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        log.info("Competitor analysis stored", analysis_id=record.id, fallback_mode=fallback_mode)

        return {
            "analysis_id": record.id,
            "competitors_analyzed": len(snapshots),
            "competitors_failed": len(errors),
            "analysis_type": request.analysis_type,
            "results": results,
            "errors": [error.to_dict() for error in errors],
            "warnings": warnings,
            "fallback_mode": fallback_mode,
        }
