import html
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Iterable, List

from github_read import get_action_texts
from matrix_client import MentionPill

UNASSIGNED = MentionPill(text="⚠ UNASSIGNED ⚠", html="⚠ UNASSIGNED ⚠")
CHECK_MARKS = ("✓", "✔", "✅", "☑")
HTML_FORMAT = "org.matrix.custom.html"

TOKEN_RE = re.compile(r"\S+")


class MessageKind(str, Enum):
    NORMAL = "m.text"
    NOTICE = "m.notice"


@dataclass(frozen=True)
class FormattedMessage:
    body: str
    formatted_body: str
    kind: MessageKind = MessageKind.NORMAL

    def as_notice(self) -> "FormattedMessage":
        return replace(self, kind=MessageKind.NOTICE)

    def to_content(self) -> Dict[str, str]:
        return {
            "body": self.body,
            "msgtype": self.kind.value,
            "format": HTML_FORMAT,
            "formatted_body": self.formatted_body,
        }


def format_action(
    raw: str,
    initials: Dict[str, str],
    pill_for: Callable[[str], MentionPill],
) -> FormattedMessage:
    """
    Turn one card note into a chat message.

    Leading words that are known initials (colons ignored, case-insensitive)
    become mention pills; matching stops at the first unknown word. The rest
    of the note is kept as written. A note with no assignee gets the
    UNASSIGNED marker instead of pills.
    """
    pills: List[MentionPill] = []
    consumed_to = 0
    for match in TOKEN_RE.finditer(raw):
        user_id = initials.get(match.group().replace(":", "").upper())
        if not user_id:
            break
        pills.append(pill_for(user_id))
        consumed_to = match.end()

    rest = raw[consumed_to:].lstrip() if pills else raw
    if not pills:
        pills.append(UNASSIGNED)

    kind = MessageKind.NOTICE if any(m in rest for m in CHECK_MARKS) else MessageKind.NORMAL
    return FormattedMessage(
        body=" ".join(p.text for p in pills) + " " + rest,
        formatted_body=" ".join(p.html for p in pills) + " " + html.escape(rest, quote=False),
        kind=kind,
    )


def format_actions(
    texts: Iterable[str],
    initials: Dict[str, str],
    pill_for: Callable[[str], MentionPill],
) -> List[FormattedMessage]:
    return [format_action(t, initials, pill_for) for t in texts]


def fetch_action_messages(ctx) -> List[FormattedMessage]:
    room_id = ctx.session.notice_room_id
    texts = get_action_texts(ctx.project, ctx.config.column_name)
    return format_actions(
        texts,
        ctx.config.initials,
        lambda user_id: ctx.matrix.mention_for_user(user_id, room_id),
    )
