"""
Engagement metrics for the user's connected accounts.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..auth import get_required_user
from ..database import get_db
from ..models.user import User
from ..responses import bad_request
from ..worker.engagement_sync import EngagementSync
from ..worker.platforms.base import Platform

router = APIRouter(prefix="/api/engagement", tags=["engagement"])


def get_engagement_sync(db: Session = Depends(get_db)) -> EngagementSync:
    return EngagementSync(db)


@router.get("")
async def all_engagement(
    current_user: User = Depends(get_required_user),
    sync: EngagementSync = Depends(get_engagement_sync),
):
    """Sync every connected platform concurrently."""
    return {"success": True, "data": await sync.sync_all(current_user)}


@router.get("/{platform}")
async def platform_engagement(
    platform: str,
    current_user: User = Depends(get_required_user),
    sync: EngagementSync = Depends(get_engagement_sync),
):
    if platform not in Platform._value2member_map_:
        bad_request(f"Unsupported platform: {platform}", "UNSUPPORTED_PLATFORM")

    result = await sync.sync_platform(current_user, Platform(platform))
    if not result["success"]:
        return JSONResponse(status_code=400, content=result)
    return {"success": True, "data": result}
