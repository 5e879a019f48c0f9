# tests/conftest.py
"""
Shared fixtures: in-memory database, seeded posts/comments, fake generator
"""

from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.app.config import reset_config
from src.app.models import Base, Comment, ConnectedPlatform, Post
from src.domain.models import CommentRecord


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine for testing"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,  # Required for in-memory SQLite
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Create async database session for testing"""
    async with session_factory() as session:
        yield session


COMMENT_TEXTS = [
    "This tutorial was really helpful and clear",
    "Great tutorial, very helpful explanations",
    "The tutorial quality is excellent and helpful",
    "Helpful tutorial with clear examples",
    "The video editing could be smoother",
    "Editing needs work, video transitions are rough",
]


@pytest_asyncio.fixture
async def sample_post(db_session):
    """Post owned by user_1 with six comments and one connected platform"""
    post = Post(
        id="post_1",
        platform="youtube",
        title="Editing Tutorial",
        url="https://example.com/watch?v=1",
        user_id="user_1",
    )
    db_session.add(post)
    db_session.add(ConnectedPlatform(user_id="user_1", platform="youtube", is_active=True))

    base_time = datetime(2024, 1, 1, 12, 0, 0)
    for i, text in enumerate(COMMENT_TEXTS):
        db_session.add(
            Comment(
                id=f"comment_{i}",
                post_id=post.id,
                text=text,
                author_name=f"viewer{i}",
                published_at=base_time + timedelta(minutes=i),
                like_count=i,
            )
        )

    await db_session.commit()
    await db_session.refresh(post)
    return post


# ============================================================================
# Plain Fixtures
# ============================================================================


def make_comments(texts: List[str], likes: Optional[List[int]] = None) -> List[CommentRecord]:
    likes = likes or [0] * len(texts)
    return [
        CommentRecord(id=f"c{i}", text=text, author_name=f"user{i}", like_count=like)
        for i, (text, like) in enumerate(zip(texts, likes))
    ]


@pytest.fixture
def tutorial_comments() -> List[CommentRecord]:
    return make_comments(COMMENT_TEXTS, likes=[5, 3, 8, 1, 2, 4])


class FakeGenerator:
    """TextGenerator stand-in returning queued responses or raising queued errors"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts: List[str] = []

    async def generate(self, prompt: str, temperature=None, max_output_tokens=None) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise RuntimeError("no response queued")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def fake_generator():
    return FakeGenerator()


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def _reset_global_config():
    reset_config()
    yield
    reset_config()
