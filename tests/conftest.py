"""Shared fixtures: a configured bot context with mocked Matrix and GitHub."""

from __future__ import annotations

from datetime import date
from typing import List
from unittest.mock import MagicMock

import pytest

from app import BotContext, BotSession
from bot_config import BotConfig
from matrix_client import MentionPill

ROOM_ID = "!retro:example.org"


def fake_pill(user_id: str, room_id: str = ROOM_ID) -> MentionPill:
    return MentionPill(text=f"[{user_id}]", html=f'<a href="https://matrix.to/#/{user_id}">{user_id}</a>')


def set_cards(project: MagicMock, notes: List[str | None], column_name: str = "Actions") -> MagicMock:
    column = MagicMock()
    column.name = column_name
    column.get_cards.return_value = [MagicMock(note=n) for n in notes]
    project.get_columns.return_value = [column]
    return column


@pytest.fixture()
def config() -> BotConfig:
    return BotConfig(
        homeserver_url="https://matrix.example.org",
        access_token="syt_token",
        notice_room="#retro:example.org",
        github_token="ghp_token",
        project_owner="acme",
        project_id="7",
        column_name="Actions",
        initials={"AB": "@alice:example.org", "CD": "@carol:example.org"},
        reminder_start=date(2024, 1, 1),  # a Monday
        reminder_interval_weeks=2,
        reminder_weekdays=(0,),
        reminder_hour=14,
    )


@pytest.fixture()
def session() -> BotSession:
    return BotSession(
        user_id="@retrobot:example.org",
        localpart="retrobot",
        display_name="Retro Bot",
        notice_room_id=ROOM_ID,
    )


@pytest.fixture()
def matrix() -> MagicMock:
    m = MagicMock()
    m.mention_for_user.side_effect = fake_pill
    return m


@pytest.fixture()
def project() -> MagicMock:
    p = MagicMock()
    p.html_url = "https://github.com/orgs/acme/projects/7"
    set_cards(p, [])
    return p


@pytest.fixture()
def ctx(config: BotConfig, session: BotSession, matrix: MagicMock, project: MagicMock) -> BotContext:
    return BotContext(config=config, session=session, matrix=matrix, project=project)
