import json
import os
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

REQUIRED_VARS = {
    "MATRIX_HOMESERVER_URL": "Matrix homeserver base URL",
    "MATRIX_ACCESS_TOKEN": "access token of the bot account",
    "NOTICE_ROOM": "room alias or id the bot operates in",
    "GITHUB_TOKEN": "GitHub token able to read the project board",
    "PROJECT_OWNER": "GitHub organization owning the project",
    "PROJECT_ID": "project number (last segment of its URL)",
    "COLUMN_NAME": "board column holding the action cards",
    "INITIALS": 'JSON object of initials to user ids, e.g. {"AB": "@alice:example.org"}',
}


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class BotConfig:
    homeserver_url: str
    access_token: str
    notice_room: str
    github_token: str
    project_owner: str
    project_id: str
    column_name: str
    initials: Dict[str, str] = field(default_factory=dict)
    data_path: str = "storage"
    reminder_start: Optional[date] = None
    reminder_interval_weeks: int = 1
    reminder_weekdays: Tuple[int, ...] = ()
    reminder_hour: int = 14
    reminder_cooldown_days: int = 5
    reminder_check_minutes: int = 30

    @property
    def reminders_enabled(self) -> bool:
        return self.reminder_start is not None


def _parse_initials(raw: str) -> Dict[str, str]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return {str(k).strip().upper(): str(v).strip() for k, v in data.items() if str(k).strip()}


def _parse_weekdays(raw: str) -> Tuple[int, ...]:
    days = []
    for part in raw.split(","):
        name = part.strip().lower()[:3]
        if not name:
            continue
        if name not in WEEKDAYS:
            raise ValueError(f"unknown weekday {part.strip()!r}")
        days.append(WEEKDAYS.index(name))
    return tuple(sorted(set(days)))


def _int(env: Mapping[str, str], name: str, default: int, lo: int, hi: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    value = int(raw)
    if not lo <= value <= hi:
        raise ValueError(f"must be between {lo} and {hi}")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Build the bot configuration from the environment (plus .env when reading
    the real process environment). Collects every problem before raising so
    a misconfigured deploy reports them all at once.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    problems = []
    values: Dict[str, str] = {}
    for name, description in REQUIRED_VARS.items():
        value = (environ.get(name) or "").strip()
        if not value:
            problems.append(f"  - {name}: {description}")
        values[name] = value

    initials: Dict[str, str] = {}
    if values["INITIALS"]:
        try:
            initials = _parse_initials(values["INITIALS"])
        except ValueError as e:
            problems.append(f"  - INITIALS: {e}")

    optional = {}
    for name, default, lo, hi in (
        ("REMINDER_INTERVAL_WEEKS", 1, 1, 52),
        ("REMINDER_HOUR", 14, 0, 23),
        ("REMINDER_COOLDOWN_DAYS", 5, 0, 365),
        ("REMINDER_CHECK_MINUTES", 30, 1, 60),
    ):
        try:
            optional[name] = _int(environ, name, default, lo, hi)
        except ValueError as e:
            problems.append(f"  - {name}: {e}")

    start = None
    raw_start = (environ.get("REMINDER_START_DATE") or "").strip()
    if raw_start:
        try:
            start = date.fromisoformat(raw_start)
        except ValueError as e:
            problems.append(f"  - REMINDER_START_DATE: {e}")

    weekdays: Tuple[int, ...] = ()
    try:
        weekdays = _parse_weekdays(environ.get("REMINDER_WEEKDAYS") or "")
    except ValueError as e:
        problems.append(f"  - REMINDER_WEEKDAYS: {e}")
    if not weekdays and start is not None:
        weekdays = (start.weekday(),)

    if problems:
        raise ConfigError("Invalid configuration:\n" + "\n".join(problems))

    return BotConfig(
        homeserver_url=values["MATRIX_HOMESERVER_URL"].rstrip("/"),
        access_token=values["MATRIX_ACCESS_TOKEN"],
        notice_room=values["NOTICE_ROOM"],
        github_token=values["GITHUB_TOKEN"],
        project_owner=values["PROJECT_OWNER"],
        project_id=values["PROJECT_ID"],
        column_name=values["COLUMN_NAME"],
        initials=initials,
        data_path=(environ.get("DATA_PATH") or "").strip() or "storage",
        reminder_start=start,
        reminder_interval_weeks=optional["REMINDER_INTERVAL_WEEKS"],
        reminder_weekdays=weekdays,
        reminder_hour=optional["REMINDER_HOUR"],
        reminder_cooldown_days=optional["REMINDER_COOLDOWN_DAYS"],
        reminder_check_minutes=optional["REMINDER_CHECK_MINUTES"],
    )
