import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from actions import fetch_action_messages
from commands import NO_ACTIONS

logger = logging.getLogger(__name__)

LAST_REMINDER_KEY = "im.vector.last_spam"


def _week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def is_reminder_due(
    now: datetime,
    start: date,
    interval_weeks: int,
    weekdays: Iterable[int],
    hour: int,
) -> bool:
    """True when `now` falls in the reminder hour of a recurring day: every
    `interval_weeks` weeks counted from the week of `start`."""
    today = now.date()
    if now.hour != hour or today < start:
        return False
    if today.weekday() not in tuple(weekdays):
        return False
    weeks = (_week_start(today) - _week_start(start)).days // 7
    return weeks % max(interval_weeks, 1) == 0


def _parse_timestamp(raw: str) -> datetime:
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def read_last_reminder(matrix) -> Optional[datetime]:
    # unreadable state counts as "never sent"
    try:
        data = matrix.get_account_data(LAST_REMINDER_KEY)
        return _parse_timestamp(data["last_timestamp"])
    except Exception as e:
        logger.warning("Could not read %s, assuming no reminder was sent: %r", LAST_REMINDER_KEY, e)
        return None


def write_last_reminder(matrix, when: datetime) -> None:
    matrix.set_account_data(LAST_REMINDER_KEY, {"last_timestamp": when.isoformat()})


def cooldown_elapsed(now: datetime, last: Optional[datetime], cooldown_days: int) -> bool:
    if last is None:
        return True
    return (now - last).days >= cooldown_days


def run_reminder_tick(ctx, now: Optional[datetime] = None) -> bool:
    config = ctx.config
    now = now or datetime.now(timezone.utc)

    if not config.reminders_enabled:
        return False
    if not is_reminder_due(
        now,
        config.reminder_start,
        config.reminder_interval_weeks,
        config.reminder_weekdays,
        config.reminder_hour,
    ):
        return False

    last = read_last_reminder(ctx.matrix)
    if not cooldown_elapsed(now, last, config.reminder_cooldown_days):
        logger.info("Reminder already sent at %s, skipping", last.isoformat())
        return False

    room_id = ctx.session.notice_room_id
    messages = fetch_action_messages(ctx)
    if messages:
        for message in messages:
            ctx.matrix.send_message(room_id, message.to_content())
    else:
        ctx.matrix.send_notice(room_id, NO_ACTIONS)

    write_last_reminder(ctx.matrix, now)
    logger.info("Sent %d action reminders to %s", len(messages), room_id)
    return True


def start_reminder_scheduler(ctx) -> Optional[BackgroundScheduler]:
    config = ctx.config
    if not config.reminders_enabled:
        logger.info("REMINDER_START_DATE not set, reminders disabled")
        return None

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_reminder_tick,
        trigger="interval",
        minutes=config.reminder_check_minutes,
        args=[ctx],
        id="retro_reminder",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Reminder check every %d minutes (hour %02d UTC, every %d week(s) from %s)",
        config.reminder_check_minutes,
        config.reminder_hour,
        config.reminder_interval_weeks,
        config.reminder_start.isoformat(),
    )
    return scheduler
