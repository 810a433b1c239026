import logging
import os
import sys
import threading
from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

import requests
from dotenv import load_dotenv

from bot_config import BotConfig, load_config
from commands import route
from github_read import find_project, make_github
from matrix_client import MatrixClient
from memory import get_sync_token, init_db, set_sync_token
from reminders import start_reminder_scheduler

logger = logging.getLogger("retrobot")

SYNC_TIMEOUT_MS = 30000
SYNC_RETRY_SECONDS = 5


@dataclass(frozen=True)
class BotSession:
    """Who the bot is and where it talks. Resolved once at startup."""
    user_id: str
    localpart: str
    display_name: Optional[str]
    notice_room_id: str


@dataclass(frozen=True)
class BotContext:
    config: BotConfig
    session: BotSession
    matrix: MatrixClient
    project: object


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    for noisy in ("urllib3", "github", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def start_session(config: BotConfig, matrix: MatrixClient) -> BotSession:
    room_id = matrix.resolve_room(config.notice_room)
    if room_id not in matrix.get_joined_rooms():
        room_id = matrix.join_room(config.notice_room)

    user_id = matrix.get_user_id()
    localpart = user_id.split(":")[0][1:]
    profile = matrix.get_user_profile(user_id)

    return BotSession(
        user_id=user_id,
        localpart=localpart,
        display_name=profile.get("displayname") if profile else None,
        notice_room_id=room_id,
    )


def build_context(config: BotConfig, matrix: Optional[MatrixClient] = None) -> BotContext:
    # no project means nothing to post, fail before touching the room
    project = find_project(make_github(config.github_token), config.project_owner, config.project_id)
    logger.info("Using project %s", project.html_url)

    matrix = matrix or MatrixClient(config.homeserver_url, config.access_token)
    session = start_session(config, matrix)
    logger.info("Logged in as %s, notice room %s", session.user_id, session.notice_room_id)
    return BotContext(config=config, session=session, matrix=matrix, project=project)


def iter_room_messages(sync_payload: Dict) -> Iterator[Tuple[str, Dict]]:
    rooms = (sync_payload.get("rooms") or {}).get("join") or {}
    for room_id, room in rooms.items():
        for event in (room.get("timeline") or {}).get("events") or []:
            if event.get("type") == "m.room.message":
                yield room_id, event


def run_sync_loop(
    ctx: BotContext,
    db_path: str,
    stop: Optional[threading.Event] = None,
    timeout_ms: int = SYNC_TIMEOUT_MS,
) -> None:
    stop = stop or threading.Event()
    since = get_sync_token(db_path) or None
    if since is None:
        # first start: don't answer commands from before the bot was running
        since = ctx.matrix.sync(None, timeout_ms=0)["next_batch"]
        set_sync_token(db_path, since)

    logger.info("Bot started")
    while not stop.is_set():
        try:
            payload = ctx.matrix.sync(since, timeout_ms=timeout_ms)
        except (requests.ConnectionError, requests.Timeout) as e:
            logger.warning("Sync failed (%r), retrying in %ds", e, SYNC_RETRY_SECONDS)
            stop.wait(SYNC_RETRY_SECONDS)
            continue

        # a failing command must not replay the rest of the batch after a restart
        since = payload["next_batch"]
        set_sync_token(db_path, since)

        for room_id, event in iter_room_messages(payload):
            if event.get("sender") == ctx.session.user_id:
                continue
            route(ctx, room_id, event)


def main() -> None:
    load_dotenv()
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    config = load_config(os.environ)
    db_path = init_db(config.data_path)
    ctx = build_context(config)

    scheduler = start_reminder_scheduler(ctx)
    try:
        run_sync_loop(ctx, db_path)
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


# --- Start the bot ---
if __name__ == "__main__":
    main()
