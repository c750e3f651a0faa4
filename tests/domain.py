"""
Test-only domain tables exercising every association shape.

- Post: subscribable, notifies its own subscribers on update ("self").
- Comment: notifies subscribers of its post (singular), auto-subscribes its author.
- Journal: notifies subscribers of all its posts (collection) or of its
  featured posts (method-based polymorphic association).
- Note: polymorphic parent via parent_type / parent_id columns.
- Favorite: notifies the owner of its post.
"""

import uuid
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel, select

from notifyhub.models import TimestampMixin, UUIDMixin, User


class Journal(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "test_journals"

    user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    title: str

    posts: List["Post"] = Relationship(back_populates="journal")

    async def featured_posts(self, session):
        result = await session.execute(
            select(Post).where(Post.journal_id == self.id, Post.featured == True)  # noqa: E712
        )
        return list(result.scalars().all())


class Post(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "test_posts"

    user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    journal_id: Optional[uuid.UUID] = Field(default=None, foreign_key="test_journals.id")
    title: str
    featured: bool = False

    journal: Optional[Journal] = Relationship(back_populates="posts")
    user: Optional[User] = Relationship()
    comments: List["Comment"] = Relationship(
        back_populates="post",
        sa_relationship_kwargs={"passive_deletes": "all"},
    )


class Comment(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "test_comments"

    user_id: uuid.UUID = Field(foreign_key="users.id")
    post_id: uuid.UUID = Field(foreign_key="test_posts.id")
    body: str = ""

    post: Optional[Post] = Relationship(back_populates="comments")
    user: Optional[User] = Relationship()

    async def notify_thread(self, session, engine, association):
        return await engine.notify_subscribers_of(session, self, association)


class Note(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "test_notes"

    user_id: uuid.UUID = Field(foreign_key="users.id")
    parent_type: Optional[str] = None
    parent_id: Optional[uuid.UUID] = None
    body: str = ""


class Favorite(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "test_favorites"

    user_id: uuid.UUID = Field(foreign_key="users.id")
    post_id: uuid.UUID = Field(foreign_key="test_posts.id")

    post: Optional[Post] = Relationship()
