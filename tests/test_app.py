"""Tests for startup and the sync loop."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

import app
from app import build_context, iter_room_messages, run_sync_loop, start_session
from commands import HELP_TEXT
from memory import get_sync_token, init_db, set_sync_token
from tests.conftest import ROOM_ID


def message(body: str, sender: str = "@dave:example.org", event_id: str = "$ev") -> dict:
    return {
        "type": "m.room.message",
        "event_id": event_id,
        "sender": sender,
        "content": {"msgtype": "m.text", "body": body},
    }


def sync_payload(next_batch: str, *events: dict, room_id: str = ROOM_ID) -> dict:
    return {"next_batch": next_batch, "rooms": {"join": {room_id: {"timeline": {"events": list(events)}}}}}


@pytest.fixture()
def db_path(tmp_path: Path) -> str:
    return init_db(str(tmp_path / "data"))


class TestStartSession:
    def test_already_joined(self, config) -> None:
        matrix = MagicMock()
        matrix.resolve_room.return_value = ROOM_ID
        matrix.get_joined_rooms.return_value = [ROOM_ID]
        matrix.get_user_id.return_value = "@retrobot:example.org"
        matrix.get_user_profile.return_value = {"displayname": "Retro Bot"}

        session = start_session(config, matrix)

        assert session.notice_room_id == ROOM_ID
        assert session.localpart == "retrobot"
        assert session.display_name == "Retro Bot"
        matrix.join_room.assert_not_called()

    def test_joins_when_needed(self, config) -> None:
        matrix = MagicMock()
        matrix.resolve_room.return_value = ROOM_ID
        matrix.get_joined_rooms.return_value = []
        matrix.join_room.return_value = ROOM_ID
        matrix.get_user_id.return_value = "@retrobot:example.org"
        matrix.get_user_profile.return_value = {}

        session = start_session(config, matrix)

        matrix.join_room.assert_called_once_with(config.notice_room)
        assert session.display_name is None


class TestBuildContext:
    def test_missing_project_is_fatal(self, config) -> None:
        matrix = MagicMock()
        with patch("app.make_github"), patch("app.find_project", side_effect=RuntimeError("Missing retro project")):
            with pytest.raises(RuntimeError, match="Missing retro project"):
                build_context(config, matrix)
        assert matrix.method_calls == []

    def test_builds(self, config, project) -> None:
        matrix = MagicMock()
        matrix.resolve_room.return_value = ROOM_ID
        matrix.get_joined_rooms.return_value = [ROOM_ID]
        matrix.get_user_id.return_value = "@retrobot:example.org"
        with patch("app.make_github") as make_github, patch("app.find_project", return_value=project) as find:
            ctx = build_context(config, matrix)
        make_github.assert_called_once_with(config.github_token)
        find.assert_called_once_with(make_github.return_value, "acme", "7")
        assert ctx.project is project
        assert ctx.session.notice_room_id == ROOM_ID


def test_iter_room_messages_only_messages() -> None:
    payload = sync_payload("s2", message("hi"), {"type": "m.reaction", "content": {}})
    payload["rooms"]["join"]["!other:x"] = {"timeline": {"events": [message("yo")]}}
    assert [(r, e["content"]["body"]) for r, e in iter_room_messages(payload)] == [
        (ROOM_ID, "hi"),
        ("!other:x", "yo"),
    ]


def test_iter_room_messages_empty() -> None:
    assert list(iter_room_messages({"next_batch": "s1"})) == []


class TestRunSyncLoop:
    def test_first_start_skips_backlog(self, ctx, matrix: MagicMock, db_path: str) -> None:
        stop = threading.Event()
        calls = []

        def sync(since, timeout_ms):
            calls.append(since)
            if since is None:
                return sync_payload("s1", message("!retro old command"))
            stop.set()
            return sync_payload(
                "s2",
                message("!retro", event_id="$new"),
                message("!retro", sender="@retrobot:example.org"),
            )

        matrix.sync.side_effect = sync
        run_sync_loop(ctx, db_path, stop=stop)

        assert calls == [None, "s1"]
        matrix.send_read_receipt.assert_called_once_with(ROOM_ID, "$new")
        matrix.send_notice.assert_called_once_with(ROOM_ID, HELP_TEXT)
        assert get_sync_token(db_path) == "s2"

    def test_resumes_from_stored_token(self, ctx, matrix: MagicMock, db_path: str) -> None:
        set_sync_token(db_path, "s5")
        stop = threading.Event()

        def sync(since, timeout_ms):
            stop.set()
            return sync_payload("s6")

        matrix.sync.side_effect = sync
        run_sync_loop(ctx, db_path, stop=stop)

        matrix.sync.assert_called_once_with("s5", timeout_ms=app.SYNC_TIMEOUT_MS)
        assert get_sync_token(db_path) == "s6"

    def test_transport_error_retried(self, ctx, matrix: MagicMock, db_path: str, monkeypatch) -> None:
        monkeypatch.setattr(app, "SYNC_RETRY_SECONDS", 0)
        set_sync_token(db_path, "s5")
        stop = threading.Event()
        outcomes = [requests.ConnectionError("down")]

        def sync(since, timeout_ms):
            if outcomes:
                raise outcomes.pop()
            stop.set()
            return sync_payload("s6")

        matrix.sync.side_effect = sync
        run_sync_loop(ctx, db_path, stop=stop)
        assert matrix.sync.call_count == 2
        assert get_sync_token(db_path) == "s6"

    def test_command_failure_stops_loop(self, ctx, matrix: MagicMock, project: MagicMock, db_path: str) -> None:
        set_sync_token(db_path, "s5")
        project.get_columns.side_effect = RuntimeError("github down")
        matrix.sync.return_value = sync_payload("s6", message("!retro actions"))

        with pytest.raises(RuntimeError, match="github down"):
            run_sync_loop(ctx, db_path)
        assert get_sync_token(db_path) == "s6"

    def test_restart_after_failure_does_not_answer_again(
        self, ctx, matrix: MagicMock, project: MagicMock, db_path: str
    ) -> None:
        set_sync_token(db_path, "s5")
        project.get_columns.side_effect = RuntimeError("github down")
        batch = sync_payload("s6", message("!retro", event_id="$help"), message("!retro actions", event_id="$act"))
        stop = threading.Event()

        def sync(since, timeout_ms):
            if since == "s5":
                return batch
            stop.set()
            return sync_payload("s7")

        matrix.sync.side_effect = sync
        with pytest.raises(RuntimeError, match="github down"):
            run_sync_loop(ctx, db_path, stop=stop)
        # supervisor restarts the process with the same store
        run_sync_loop(ctx, db_path, stop=stop)
        run_sync_loop(ctx, db_path, stop=stop)

        matrix.send_notice.assert_called_once_with(ROOM_ID, HELP_TEXT)
        assert [c.args[0] for c in matrix.sync.call_args_list] == ["s5", "s6"]
        assert get_sync_token(db_path) == "s7"
