import logging
from typing import Dict, List, Optional

from actions import fetch_action_messages

logger = logging.getLogger(__name__)

COMMAND = "!retro"
NO_ACTIONS = "No actions 🎉"
HELP_TEXT = (
    "Help:\n"
    "!retro actions - Print current retro actions\n"
)


def command_prefixes(session) -> List[str]:
    prefixes = [COMMAND, session.localpart + ":"]
    if session.display_name:
        prefixes.append(session.display_name + ":")
    prefixes.append(session.user_id + ":")
    return prefixes


def canonical_command(session, body: str) -> Optional[str]:
    """Rewrite a message addressed to the bot so it always starts with !retro."""
    for prefix in command_prefixes(session):
        if body.startswith(prefix):
            return COMMAND + body[len(prefix):]
    return None


def route(ctx, room_id: str, event: Dict) -> None:
    if room_id != ctx.session.notice_room_id:
        return
    content = event.get("content") or {}
    if content.get("msgtype") != "m.text" or not content.get("body"):
        return

    command = canonical_command(ctx.session, content["body"])
    if command is None:
        return

    ctx.matrix.send_read_receipt(room_id, event["event_id"])
    handle_command(ctx, room_id, command)


def handle_command(ctx, room_id: str, command: str) -> None:
    args = command.split()
    verb = args[1] if len(args) > 1 else None
    logger.info("Command %r in %s", verb, room_id)

    if verb == "actions":
        send_actions(ctx, room_id)
        return

    if verb == "status":
        # placeholder, no status report yet
        logger.debug("status requested, showing help")

    ctx.matrix.send_notice(room_id, HELP_TEXT)


def send_actions(ctx, room_id: str) -> None:
    messages = fetch_action_messages(ctx)
    if not messages:
        ctx.matrix.send_notice(room_id, NO_ACTIONS)
        return
    for message in messages:
        # notices keep other bots from reacting to command output
        ctx.matrix.send_message(room_id, message.as_notice().to_content())
