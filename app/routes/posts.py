"""
Posts routes: CRUD, publishing, scheduling and content validation.
"""
import secrets
from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional

from ..auth import get_required_user
from ..clock import isoformat
from ..config import get_settings
from ..database import get_db
from ..models.post import Post
from ..models.user import User
from ..responses import bad_request, forbidden, not_found, validation_error
from ..schemas.posts import (
    PostCreate,
    PostUpdate,
    ScheduleCreate,
    ScheduleRequest,
    ValidateRequest,
    check_post_type,
)
from ..worker.platforms.base import Platform
from ..worker.publisher import PublishOrchestrator, PublishOutcome, normalize_content, validate_content

router = APIRouter(prefix="/api/posts", tags=["posts"])


def get_orchestrator(db: Session = Depends(get_db)) -> PublishOrchestrator:
    return PublishOrchestrator(db)


def post_to_dict(post: Post) -> dict:
    """Convert a Post model to a dictionary response."""
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content or {},
        "platform": post.platform,
        "post_type": post.post_type,
        "status": post.status,
        "media": post.media or [],
        "platform_content": post.platform_content or {},
        "tags": post.tags or [],
        "categories": post.categories or [],
        "publishing": post.publishing,
        "published_at": isoformat(post.published_at),
        "platform_post_id": post.platform_post_id,
        "scheduled_at": isoformat(post.scheduled_at),
        "timezone": post.timezone,
        "recurrence": post.recurrence,
        "analytics": post.analytics,
        "created_at": isoformat(post.created_at),
        "updated_at": isoformat(post.updated_at),
    }


def _owned_post(db: Session, post_id: int, user: User) -> Post:
    post = db.query(Post).filter(Post.id == post_id, Post.user_id == user.id).first()
    if not post:
        not_found("Post", post_id)
    return post


def _new_post(data: PostCreate, user: User) -> Post:
    return Post(
        user_id=user.id,
        title=data.title,
        content=data.content,
        platform=data.platform,
        post_type=data.post_type,
        status="draft",
        media=[item.model_dump(exclude_none=True) for item in data.media],
        platform_content=data.platform_content,
        tags=data.tags,
        categories=data.categories,
        timezone=data.timezone,
        recurrence=data.recurrence.model_dump() if data.recurrence else None,
    )


def publish_response(outcome: PublishOutcome):
    post = outcome.post
    label = Platform(post.platform).label if post.platform in Platform._value2member_map_ else post.platform

    if outcome.already_published:
        return {
            "success": True,
            "alreadyPublished": True,
            "message": f"Post is already published to {label}",
            "post": post_to_dict(post),
        }

    if outcome.scheduled:
        return {
            "success": True,
            "message": f"Post scheduled for {isoformat(post.scheduled_at)}",
            "publishedImmediately": False,
            "post": post_to_dict(post),
        }

    result = outcome.result
    if outcome.success:
        body = {
            "success": True,
            "message": f"Post published to {label}",
            "post": post_to_dict(post),
            "platformResult": {
                "id": result.external_id,
                "url": result.url,
                "data": result.raw,
            },
            "warnings": outcome.warnings,
        }
        if outcome.published_immediately:
            body["publishedImmediately"] = True
        return body

    return JSONResponse(status_code=400, content={
        "success": False,
        "message": f"Failed to publish to {label}: {result.error}",
        "platformError": result.error,
        "errorCode": result.error_code,
        "category": result.category.value if result.category else None,
        "requiresReconnection": result.requires_reconnection,
        "post": post_to_dict(post),
        "warnings": outcome.warnings,
        "publishedImmediately": outcome.published_immediately,
    })


@router.get("", response_model=List[dict])
def get_posts(
    status: Optional[str] = None,
    platform: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get all posts for the current user with optional filtering."""
    query = db.query(Post).filter(Post.user_id == current_user.id)

    if status:
        query = query.filter(Post.status == status)
    if platform:
        query = query.filter(Post.platform == platform)

    posts = query.order_by(Post.created_at.desc()).all()
    return [post_to_dict(p) for p in posts]


@router.post("", response_model=dict)
def create_post(
    post_data: PostCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Create a draft post for the current user."""
    post = _new_post(post_data, current_user)
    db.add(post)
    db.commit()
    db.refresh(post)

    return post_to_dict(post)


@router.post("/validate")
def validate_post_content(
    payload: ValidateRequest,
    current_user: User = Depends(get_required_user),
):
    """Check text length and media requirements without saving anything."""
    draft = Post(title=payload.title, content=payload.content, platform=payload.platform)
    text = normalize_content(draft).text if (payload.content or payload.title) else ""
    return validate_content(payload.platform, text, len(payload.media))


@router.post("/publish")
async def create_and_publish(
    post_data: PostCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Create a post and publish it right away."""
    post = _new_post(post_data, current_user)
    db.add(post)
    db.commit()
    db.refresh(post)

    outcome = await orchestrator.publish(post, current_user)
    return publish_response(outcome)


@router.post("/schedule")
async def create_and_schedule(
    post_data: ScheduleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Create a post for later; a time already past publishes immediately."""
    post = _new_post(post_data, current_user)
    db.add(post)
    db.commit()
    db.refresh(post)

    outcome = await orchestrator.schedule(post, current_user, post_data.scheduled_at)
    return publish_response(outcome)


@router.post("/publish-due")
async def publish_due(
    x_scheduler_key: Optional[str] = Header(default=None),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Publish every scheduled post whose time has come. Called by an external trigger."""
    expected = get_settings().scheduler_api_key
    if not expected or not x_scheduler_key or not secrets.compare_digest(x_scheduler_key, expected):
        forbidden("Invalid scheduler key")
    return await orchestrator.publish_due_posts()


@router.get("/{post_id}", response_model=dict)
def get_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Get a single post by ID (must belong to current user)."""
    return post_to_dict(_owned_post(db, post_id, current_user))


@router.patch("/{post_id}", response_model=dict)
def update_post(
    post_id: int,
    post_update: PostUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Update a post (must belong to current user)."""
    post = _owned_post(db, post_id, current_user)
    if post.status == "published":
        bad_request("Published posts cannot be edited", "POST_PUBLISHED")

    update_data = post_update.model_dump(exclude_unset=True)
    if update_data.get("post_type"):
        try:
            check_post_type(post.platform, update_data["post_type"])
        except ValueError as exc:
            validation_error(str(exc), {"field": "post_type"})

    for key, value in update_data.items():
        if value is not None:
            setattr(post, key, value)

    db.commit()
    db.refresh(post)

    return post_to_dict(post)


@router.delete("/{post_id}")
def delete_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
):
    """Delete a post (must belong to current user)."""
    post = _owned_post(db, post_id, current_user)

    db.delete(post)
    db.commit()
    return {"message": "Post deleted"}


@router.post("/{post_id}/publish")
async def publish_post(
    post_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Publish a draft, scheduled or failed post now."""
    post = _owned_post(db, post_id, current_user)
    outcome = await orchestrator.publish(post, current_user)
    return publish_response(outcome)


@router.post("/{post_id}/schedule")
async def schedule_post(
    post_id: int,
    payload: ScheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_required_user),
    orchestrator: PublishOrchestrator = Depends(get_orchestrator),
):
    """Schedule an existing post."""
    post = _owned_post(db, post_id, current_user)
    if not post.can_publish():
        bad_request("Post is already published", "POST_PUBLISHED")
    if payload.timezone:
        post.timezone = payload.timezone

    outcome = await orchestrator.schedule(post, current_user, payload.scheduled_at)
    return publish_response(outcome)
