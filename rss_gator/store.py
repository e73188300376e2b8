"""
Relational storage for users, feeds, follows and posts.

Every FeedStore method runs in its own short session. Any SQLAlchemy
failure is rolled back and surfaced as StoreError; returned rows are
detached copies the caller may keep reading after the session closes.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy import (
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from .exceptions import NotFoundError, StoreError

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Feed(Base):
    """
    A subscribed feed. `last_fetched_at` is null until the first poll and
    ranks eligibility: oldest (or null) is polled first.
    """

    __tablename__ = "feeds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), unique=True, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)


class FeedFollow(Base):
    __tablename__ = "feed_follows"
    __table_args__ = (UniqueConstraint("user_id", "feed_id", name="uq_feed_follows_user_feed"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    feed_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Post(Base):
    # No uniqueness on (feed_id, url): re-polling a feed appends again.
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    feed_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class FeedStore:
    """
    Feed Store backed by any SQLAlchemy engine (PostgreSQL, SQLite, ...).

    `clock` supplies "now" for bookkeeping and audit timestamps.
    """

    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "FeedStore":
        try:
            engine = create_engine(url)
        except (SQLAlchemyError, ValueError) as e:
            raise StoreError(f"invalid database URL {url!r}: {e}") from e
        return cls(engine, **kwargs)

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.debug("Store operation %s failed", action, exc_info=True)
            raise StoreError(f"{action} failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"create schema failed: {e}") from e

    def close(self) -> None:
        self.engine.dispose()

    # Scheduler operations

    def select_next_due_feed(self, fetched_before: Optional[datetime] = None) -> Optional[Feed]:
        """
        Return the most overdue feed, never-fetched feeds first, or None.

        With `fetched_before`, feeds polled at or after that instant are not
        due; the scheduler passes the batch start so a batch never polls the
        same feed twice.
        """
        stmt = select(Feed)
        if fetched_before is not None:
            stmt = stmt.where(or_(Feed.last_fetched_at.is_(None), Feed.last_fetched_at < fetched_before))
        stmt = stmt.order_by(Feed.last_fetched_at.asc().nulls_first(), Feed.created_at.asc()).limit(1)
        with self._session("select next feed") as session:
            return session.scalars(stmt).first()

    def mark_feed_fetched(self, feed_id: str) -> datetime:
        now = self._clock()
        with self._session("mark feed fetched") as session:
            feed = session.get(Feed, feed_id)
            if feed is None:
                raise NotFoundError(f"feed {feed_id} not found")
            feed.last_fetched_at = now
            feed.updated_at = now
        return now

    def insert_post(
        self,
        feed_id: str,
        title: str,
        url: str,
        description: Optional[str],
        published_at: datetime,
    ) -> Post:
        now = self._clock()
        post = Post(
            feed_id=feed_id,
            title=title,
            url=url,
            description=description or None,
            published_at=published_at,
            created_at=now,
            updated_at=now,
        )
        with self._session("insert post") as session:
            session.add(post)
        return post

    # Users

    def create_user(self, name: str) -> User:
        now = self._clock()
        user = User(name=name, created_at=now, updated_at=now)
        try:
            with self._session("create user") as session:
                session.add(user)
        except StoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise StoreError(f"user {name!r} already exists") from e.__cause__
            raise
        return user

    def get_user_by_name(self, name: str) -> User:
        with self._session("get user") as session:
            user = session.scalars(select(User).where(User.name == name)).first()
        if user is None:
            raise NotFoundError(f"user {name!r} not found")
        return user

    def list_users(self) -> List[User]:
        with self._session("list users") as session:
            return list(session.scalars(select(User).order_by(User.name)))

    # Feeds and follows

    def create_feed(self, name: str, url: str, user_id: str) -> Feed:
        """Create a feed owned by `user_id`; the owner follows it."""
        now = self._clock()
        feed = Feed(name=name, url=url, user_id=user_id, created_at=now, updated_at=now)
        try:
            with self._session("create feed") as session:
                session.add(feed)
                session.flush()
                session.add(FeedFollow(user_id=user_id, feed_id=feed.id, created_at=now, updated_at=now))
        except StoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise StoreError(f"feed {url} already exists") from e.__cause__
            raise
        return feed

    def get_feed_by_url(self, url: str) -> Feed:
        with self._session("get feed") as session:
            feed = session.scalars(select(Feed).where(Feed.url == url)).first()
        if feed is None:
            raise NotFoundError(f"feed {url} not found")
        return feed

    def list_feeds(self) -> List[Tuple[Feed, User]]:
        stmt = select(Feed, User).join(User, Feed.user_id == User.id).order_by(Feed.created_at)
        with self._session("list feeds") as session:
            return [(f, u) for f, u in session.execute(stmt).all()]

    def follow_feed(self, user_id: str, feed_id: str) -> FeedFollow:
        now = self._clock()
        follow = FeedFollow(user_id=user_id, feed_id=feed_id, created_at=now, updated_at=now)
        try:
            with self._session("follow feed") as session:
                session.add(follow)
        except StoreError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise StoreError("feed is already followed") from e.__cause__
            raise
        return follow

    def unfollow_feed(self, user_id: str, feed_id: str) -> bool:
        stmt = delete(FeedFollow).where(FeedFollow.user_id == user_id, FeedFollow.feed_id == feed_id)
        with self._session("unfollow feed") as session:
            result = session.execute(stmt)
        return bool(result.rowcount)

    def list_follows(self, user_id: str) -> List[Feed]:
        stmt = (
            select(Feed)
            .join(FeedFollow, FeedFollow.feed_id == Feed.id)
            .where(FeedFollow.user_id == user_id)
            .order_by(Feed.name)
        )
        with self._session("list follows") as session:
            return list(session.scalars(stmt))

    # Posts

    def posts_for_user(self, user_id: str, limit: int = 2) -> List[Post]:
        """Newest posts from the feeds `user_id` follows."""
        stmt = (
            select(Post)
            .join(FeedFollow, FeedFollow.feed_id == Post.feed_id)
            .where(FeedFollow.user_id == user_id)
            .order_by(Post.published_at.desc())
            .limit(limit)
        )
        with self._session("posts for user") as session:
            return list(session.scalars(stmt))

    def posts_for_feed(self, feed_id: str) -> List[Post]:
        stmt = select(Post).where(Post.feed_id == feed_id).order_by(Post.published_at.desc())
        with self._session("posts for feed") as session:
            return list(session.scalars(stmt))

    def reset(self) -> None:
        """Delete every user; feeds, follows and posts go with them."""
        with self._session("reset") as session:
            session.execute(delete(Post))
            session.execute(delete(FeedFollow))
            session.execute(delete(Feed))
            session.execute(delete(User))
