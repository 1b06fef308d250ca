from datetime import timedelta

from app.auth import get_password_hash
from app.clock import utcnow
from app.database import SessionLocal, engine, Base
from app.models import Post, SocialAccount, User

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

# Clear existing demo data
demo = db.query(User).filter(User.email == "demo@postflow.local").first()
if demo:
    db.delete(demo)
    db.commit()

user = User(
    email="demo@postflow.local",
    hashed_password=get_password_hash("postflow-demo"),
    display_name="Demo Creator",
    is_active=True,
)
db.add(user)
db.flush()

# Sample posts
posts = [
    Post(
        user_id=user.id,
        title="Launch announcement",
        content={"text": "We just shipped scheduled publishing! #launch #productivity"},
        platform="twitter",
        post_type="tweet",
        status="draft",
        tags=["launch"],
    ),
    Post(
        user_id=user.id,
        title="Behind the scenes",
        content={"caption": "A look at how we plan a week of content #behindthescenes"},
        platform="instagram",
        post_type="post",
        status="scheduled",
        media=[{"type": "image", "url": "https://picsum.photos/1080", "filename": "bts.jpg"}],
        scheduled_at=utcnow() + timedelta(days=1),
    ),
    Post(
        user_id=user.id,
        title="Hiring",
        content={"text": "We're hiring a community manager. Apply via our careers page."},
        platform="linkedin",
        post_type="post",
        status="draft",
    ),
]

# Connected account with placeholder tokens
accounts = [
    SocialAccount(
        user_id=user.id,
        platform="twitter",
        access_token="YOUR_TWITTER_ACCESS_TOKEN",
        refresh_token="YOUR_TWITTER_REFRESH_TOKEN",
        expires_at=utcnow() + timedelta(hours=2),
        account_id="0",
        username="postflow_demo",
    ),
]

db.add_all(posts)
db.add_all(accounts)
db.commit()

print("Database seeded successfully!")
print(f"  - demo user {user.email} (password: postflow-demo)")
print(f"  - {len(posts)} posts")
print(f"  - {len(accounts)} connected account")

db.close()
