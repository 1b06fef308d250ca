from pydantic import BaseModel, Field
from typing import Any, List, Optional


class AnalysisOptions(BaseModel):
    max_posts: Optional[int] = Field(default=None, ge=1, le=200, alias="maxPosts")
    time_period_days: Optional[int] = Field(default=None, ge=1, le=365, alias="timePeriodDays")
    concurrency: Optional[int] = Field(default=None, ge=1, le=10)
    use_cache: bool = Field(default=True, alias="useCache")
    # Competitor lookups always run on the app credentials from the environment
    use_environment_credentials: bool = Field(default=True, alias="useEnvironmentCredentials")
    include_content_analysis: bool = True
    include_engagement_analysis: bool = True
    include_audience_analysis: bool = True
    include_competitive_insights: bool = True
    include_recommendations: bool = True
    include_realtime_data: bool = Field(default=False, alias="fetchRealTimeData")

    class Config:
        populate_by_name = True


class CompetitorAnalysisRequest(BaseModel):
    # Items are checked by the service so a non-string yields a 400, not a 422
    competitor_urls: List[Any] = Field(alias="competitorUrls")
    analysis_type: str = Field(default="comprehensive", alias="analysisType")
    platforms: Optional[List[str]] = None
    campaign_id: Optional[str] = Field(default=None, alias="campaignId")
    options: AnalysisOptions = AnalysisOptions()

    class Config:
        populate_by_name = True
