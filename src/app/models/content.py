# src/app/models/content.py
"""
Content Models
Posts, their comments and the user's connected platforms.

These tables are populated by the ingestion side; the analysis pipeline
reads them and only writes the comment filter flags back.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from src.app.models.base import Base, generate_uuid


class Post(Base):
    """Social media content item whose comments get analyzed"""

    __tablename__ = "posts"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    platform_post_id = Column(String(100), index=True, comment="Platform-side post ID")
    platform = Column(String(30), nullable=False, default="youtube", comment="Source platform")
    title = Column(String(500), comment="Post title")
    url = Column(String(1000), comment="Post URL")
    user_id = Column(String(100), nullable=False, index=True, comment="Owner user ID")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    comments = relationship(
        "Comment", back_populates="post", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Post(id={self.id}, platform={self.platform})>"


class ConnectedPlatform(Base):
    """OAuth-linked platform account (token exchange lives elsewhere)"""

    __tablename__ = "connected_platforms"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    platform = Column(String(30), nullable=False)
    platform_user_id = Column(String(100))
    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<ConnectedPlatform(user={self.user_id}, platform={self.platform})>"


class Comment(Base):
    """
    Fetched comment

    Immutable after fetch except for is_filtered / filter_reason,
    which the comment filter sets.
    """

    __tablename__ = "comments"
    __table_args__ = {"extend_existing": True}

    id = Column(String(36), primary_key=True, default=generate_uuid)
    platform_comment_id = Column(String(100), index=True, comment="Platform comment ID")
    post_id = Column(
        String(36),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    text = Column(Text, nullable=False, comment="Comment body")
    author_name = Column(String(255), default="", comment="Display name")
    published_at = Column(DateTime, comment="Platform publish time")
    like_count = Column(Integer, default=0, comment="Likes on the comment")

    # Filter flags
    is_filtered = Column(Boolean, nullable=False, default=False, index=True)
    filter_reason = Column(String(50), comment="spam/toxic/duplicate reason")

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    post = relationship("Post", back_populates="comments")

    def __repr__(self):
        return f"<Comment(id={self.id}, text={(self.text or '')[:30]}...)>"

    def to_dict(self) -> dict:
        """Convert model to dictionary"""
        return {
            "id": self.id,
            "post_id": self.post_id,
            "text": self.text,
            "author_name": self.author_name,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "like_count": self.like_count,
            "is_filtered": self.is_filtered,
            "filter_reason": self.filter_reason,
        }
