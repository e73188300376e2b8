from __future__ import annotations

import argparse
import functools
import logging
import re
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

import requests

from .config import Settings
from .exceptions import ConfigError, GatorError
from .fetcher import fetch_feed
from .scheduler import AggregationScheduler
from .store import FeedStore, User

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> float:
    """
    Parse a duration such as "30s", "1m" or "1h30m" into seconds.

    Every number needs a unit; the total must be positive.
    """
    s = (text or "").strip()
    if not s:
        raise ValueError("empty duration")

    total = 0.0
    pos = 0
    while pos < len(s):
        m = _DURATION_PART.match(s, pos)
        if not m:
            raise ValueError(f"invalid duration {text!r}")
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()

    if total <= 0:
        raise ValueError(f"duration must be positive: {text!r}")
    return total


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _feed_url(text: str) -> str:
    parts = urlparse(text)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise argparse.ArgumentTypeError(f"invalid feed URL: {text!r}")
    try:
        # empty or overlong host labels only fail once a connection is attempted
        parts.hostname.encode("idna")
    except UnicodeError as e:
        raise argparse.ArgumentTypeError(f"invalid feed URL: {text!r} ({e})") from e
    return text


@dataclass
class Context:
    settings: Settings
    store: FeedStore
    out: Callable[[str], None] = print

    def current_user(self) -> User:
        if not self.settings.current_user:
            raise ConfigError("no user selected; pass --user or set GATOR_USER")
        return self.store.get_user_by_name(self.settings.current_user)


# Command handlers


def cmd_register(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.store.create_user(args.name)
    ctx.out(f"User {user.name} registered with ID: {user.id}")


def cmd_users(args: argparse.Namespace, ctx: Context) -> None:
    for user in ctx.store.list_users():
        current = " (current)" if user.name == ctx.settings.current_user else ""
        ctx.out(f"* {user.name}{current}")


def cmd_addfeed(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.current_user()
    feed = ctx.store.create_feed(args.name, args.url, user.id)
    ctx.out(f"Feed {feed.name} added ({feed.id}) - {feed.url}")


def cmd_feeds(args: argparse.Namespace, ctx: Context) -> None:
    for feed, owner in ctx.store.list_feeds():
        ctx.out(f"* {feed.name} ({feed.id}) - {feed.url} - {owner.name}")


def cmd_follow(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.current_user()
    feed = ctx.store.get_feed_by_url(args.url)
    ctx.store.follow_feed(user.id, feed.id)
    ctx.out(f"{user.name} now follows {feed.name}")


def cmd_following(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.current_user()
    for feed in ctx.store.list_follows(user.id):
        ctx.out(f"* {feed.name} - {feed.url}")


def cmd_unfollow(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.current_user()
    feed = ctx.store.get_feed_by_url(args.url)
    if ctx.store.unfollow_feed(user.id, feed.id):
        ctx.out(f"{user.name} unfollowed {feed.name}")
    else:
        ctx.out(f"{user.name} was not following {feed.name}")


def cmd_browse(args: argparse.Namespace, ctx: Context) -> None:
    user = ctx.current_user()
    for post in ctx.store.posts_for_user(user.id, limit=args.limit):
        ctx.out(f"* {post.title}\n  {post.url}\n  Published at: {post.published_at}")


def cmd_reset(args: argparse.Namespace, ctx: Context) -> None:
    ctx.store.reset()
    ctx.out("Database reset.")


def cmd_agg(args: argparse.Namespace, ctx: Context) -> None:
    settings = ctx.settings
    shutdown = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.info("Received signal %s; finishing current batch", signum)
        shutdown.set()

    previous = {sig: signal.signal(sig, _stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        with requests.Session() as session:
            scheduler = AggregationScheduler(
                ctx.store,
                fetch=functools.partial(
                    fetch_feed, timeout=settings.request_timeout, user_agent=settings.user_agent
                ),
                session=session,
                batch_size=settings.batch_size,
                pacing=settings.pacing_seconds,
            )
            scheduler.run(args.interval, shutdown, fire_immediately=args.now)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gator", description="RSS feed aggregator")
    parser.add_argument("--database-url", dest="database_url", default=None, help="SQLAlchemy database URL")
    parser.add_argument("--user", dest="user", default=None, help="act as this user")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    p = subparsers.add_parser("register", help="register a user")
    p.add_argument("name")
    p.set_defaults(func=cmd_register)

    p = subparsers.add_parser("users", help="list users")
    p.set_defaults(func=cmd_users)

    p = subparsers.add_parser("addfeed", help="add a feed and follow it")
    p.add_argument("name")
    p.add_argument("url", type=_feed_url)
    p.set_defaults(func=cmd_addfeed)

    p = subparsers.add_parser("feeds", help="list all feeds")
    p.set_defaults(func=cmd_feeds)

    p = subparsers.add_parser("follow", help="follow an existing feed")
    p.add_argument("url", type=_feed_url)
    p.set_defaults(func=cmd_follow)

    p = subparsers.add_parser("following", help="list followed feeds")
    p.set_defaults(func=cmd_following)

    p = subparsers.add_parser("unfollow", help="stop following a feed")
    p.add_argument("url", type=_feed_url)
    p.set_defaults(func=cmd_unfollow)

    p = subparsers.add_parser("browse", help="show the newest posts of followed feeds")
    p.add_argument("limit", nargs="?", type=int, default=2)
    p.set_defaults(func=cmd_browse)

    p = subparsers.add_parser("reset", help="delete all users, feeds and posts")
    p.set_defaults(func=cmd_reset)

    p = subparsers.add_parser("agg", help="poll feeds every DURATION (e.g. 30s, 1m)")
    p.add_argument("interval", type=_duration_arg, metavar="DURATION")
    p.add_argument("--now", action="store_true", help="run the first batch immediately")
    p.set_defaults(func=cmd_agg)

    return parser


def main(argv: Optional[Sequence[str]] = None, *, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = (settings or Settings.from_env()).with_overrides(
            database_url=args.database_url, current_user=args.user
        )
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO), format=LOG_FORMAT)

    store: Optional[FeedStore] = None
    try:
        store = FeedStore.from_url(settings.database_url)
        store.create_schema()
        args.func(args, Context(settings=settings, store=store))
    except GatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        if store is not None:
            store.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
