"""
Postflow Health Check Routes
"""
from fastapi import APIRouter, Depends
from datetime import datetime, timezone
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Dict, Any

from ..clock import utcnow
from ..config import get_settings
from ..database import get_db
from ..worker.platforms import build_adapters, configured_platforms

router = APIRouter(prefix="/api/health", tags=["health"])

START_TIME = utcnow()


def get_uptime() -> str:
    """Get process uptime as human-readable string"""
    delta = utcnow() - START_TIME
    hours, remainder = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(remainder, 60)

    if delta.days > 0:
        return f"{delta.days}d {hours}h {minutes}m"
    elif hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    else:
        return f"{minutes}m {seconds}s"


def check_database(db: Session) -> Dict[str, Any]:
    """Check database connectivity"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return {"status": "unhealthy", "error": str(e)}
    return {"status": "healthy"}


@router.get("")
def health_check(db: Session = Depends(get_db)):
    """Health check endpoint for load balancers and monitoring."""
    settings = get_settings()
    database = check_database(db)
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "environment": settings.environment,
        "version": "1.0.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": get_uptime(),
        "checks": {
            "database": database,
            "platforms": configured_platforms(build_adapters(settings)),
            "ai_service": {"configured": bool(settings.ai_service_url)},
        },
    }
