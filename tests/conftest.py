"""
Shared fixtures: a small blog schema and a temporary SQLite database.

Post
  comments -> ordered, owned (ordering_list, delete-orphan)
      ratings -> ordered, owned
  tags     -> many-to-many through post_tags
  summary  -> singular, owned
"""

import enum
from datetime import date
from typing import List, Optional

import pytest
import sqlalchemy as sa
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from revisionable.config import Config
from revisionable.revisions.manager import RevisionManager
from revisionable.storage.database import RevisionDatabase


class Base(DeclarativeBase):
    pass


post_tags = sa.Table(
    "post_tags",
    Base.metadata,
    sa.Column("post_id", sa.ForeignKey("posts.id"), primary_key=True),
    sa.Column("tag_id", sa.ForeignKey("tags.id"), primary_key=True),
)


class Status(enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(sa.String(200))
    body: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    status: Mapped[Status] = mapped_column(sa.Enum(Status), default=Status.DRAFT)
    published_on: Mapped[Optional[date]] = mapped_column(sa.Date, nullable=True)

    comments: Mapped[List["Comment"]] = relationship(
        back_populates="post",
        order_by="Comment.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )
    tags: Mapped[List["Tag"]] = relationship(secondary=post_tags)
    summary: Mapped[Optional["Summary"]] = relationship(
        back_populates="post", cascade="all, delete-orphan"
    )

    # Validation errors recorded by a mutation
    errors = ()


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(primary_key=True)
    post_id: Mapped[Optional[int]] = mapped_column(sa.ForeignKey("posts.id"))
    position: Mapped[Optional[int]] = mapped_column(sa.Integer)
    text: Mapped[str] = mapped_column(sa.String(500))

    post: Mapped[Optional[Post]] = relationship(back_populates="comments")
    ratings: Mapped[List["Rating"]] = relationship(
        cascade="all, delete-orphan", order_by="Rating.id"
    )


class Rating(Base):
    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(primary_key=True)
    comment_id: Mapped[Optional[int]] = mapped_column(sa.ForeignKey("comments.id"))
    score: Mapped[int] = mapped_column(sa.Integer)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(50))


class Summary(Base):
    __tablename__ = "summaries"

    id: Mapped[int] = mapped_column(primary_key=True)
    post_id: Mapped[Optional[int]] = mapped_column(sa.ForeignKey("posts.id"))
    text: Mapped[str] = mapped_column(sa.String(500))

    post: Mapped[Optional[Post]] = relationship(back_populates="summary")


POST_TREE = {"comments": {"ratings": True}, "tags": True, "summary": True}


@pytest.fixture
def db(tmp_path):
    """Temporary database with the revision and blog tables."""
    database = RevisionDatabase(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_tables(Base.metadata)
    yield database
    database.close()


@pytest.fixture
def session(db):
    """Session on the temporary database."""
    with db.session() as s:
        yield s


@pytest.fixture
def manager(db):
    """Manager with Post registered for its full association tree."""
    m = RevisionManager(db, settings=Config())
    m.register(Post, associations=POST_TREE)
    return m


@pytest.fixture
def post(session):
    """A committed post with two comments, two tags and a summary."""
    p = Post(
        id=1,
        title="First draft",
        body="Hello",
        status=Status.DRAFT,
        published_on=date(2024, 5, 1),
    )
    p.comments.append(Comment(text="A", ratings=[Rating(score=5)]))
    p.comments.append(Comment(text="B"))
    p.tags.extend([Tag(name="python"), Tag(name="sql")])
    p.summary = Summary(text="Short")
    session.add(p)
    session.commit()
    return p
