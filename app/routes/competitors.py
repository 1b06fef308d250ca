"""
Competitor analysis routes.
"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..clock import isoformat
from ..database import get_db
from ..models.analysis_result import AnalysisResult
from ..models.user import User
from ..responses import bad_request, deleted, not_found, paginated, success
from ..schemas.competitors import CompetitorAnalysisRequest
from ..worker.competitor_analysis import AnalysisRequest, AnalysisRequestError, CompetitorAnalysisService

router = APIRouter(prefix="/api/competitors", tags=["competitors"])


def get_analysis_service(db: Session = Depends(get_db)) -> CompetitorAnalysisService:
    return CompetitorAnalysisService(db)


def result_to_dict(result: AnalysisResult, include_analysis: bool = True) -> dict:
    data = {
        "id": result.id,
        "campaign_id": result.campaign_id,
        "result_type": result.result_type,
        "input_data": result.input_data or {},
        "ai_metadata": result.ai_metadata or {},
        "status": result.status,
        "created_at": isoformat(result.created_at),
    }
    if include_analysis:
        data["competitor_analysis"] = result.competitor_analysis or {}
    return data


def _owned_result(db: Session, result_id: int, user: User) -> AnalysisResult:
    result = db.query(AnalysisResult).filter(
        AnalysisResult.id == result_id,
        AnalysisResult.user_id == user.id,
    ).first()
    if not result:
        not_found("Analysis result", result_id)
    return result


@router.post("/analyze")
async def analyze_competitors(
    payload: CompetitorAnalysisRequest,
    current_user: User = Depends(get_required_user),
    service: CompetitorAnalysisService = Depends(get_analysis_service),
):
    """Collect competitor data and run the analysis."""
    request = AnalysisRequest(
        competitor_urls=payload.competitor_urls,
        analysis_type=payload.analysis_type,
        platforms=payload.platforms,
        campaign_id=payload.campaign_id,
        options=payload.options.model_dump(),
    )
    try:
        data = await service.analyze(current_user.id, request)
    except AnalysisRequestError as exc:
        if exc.errors:
            return JSONResponse(status_code=400, content={
                "success": False,
                "message": exc.message,
                "errors": exc.errors,
            })
        bad_request(exc.message, "INVALID_ANALYSIS_REQUEST")

    return {
        "success": True,
        "message": "Competitor analysis completed",
        "data": data,
    }


@router.get("/history")
def analysis_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Past analyses, newest first."""
    query = db.query(AnalysisResult).filter(AnalysisResult.user_id == current_user.id)
    total = query.count()
    results = (
        query.order_by(AnalysisResult.created_at.desc(), AnalysisResult.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return paginated([result_to_dict(r, include_analysis=False) for r in results], total, page, per_page)


@router.get("/results/{result_id}")
def get_analysis_result(
    result_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    return success(result_to_dict(_owned_result(db, result_id, current_user)))


@router.delete("/results/{result_id}")
def delete_analysis_result(
    result_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    result = _owned_result(db, result_id, current_user)
    db.delete(result)
    db.commit()
    return deleted("Analysis result deleted")
