import html
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

CLIENT_API = "/_matrix/client/v3"


@dataclass(frozen=True)
class MentionPill:
    text: str
    html: str


def _q(part: str) -> str:
    return quote(part, safe="")


class MatrixClient:
    def __init__(self, homeserver_url: str, access_token: str, timeout: float = 30) -> None:
        self.base = homeserver_url.rstrip("/") + CLIENT_API
        self.timeout = timeout
        self.s = requests.Session()
        self.s.headers.update({
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        })
        self._txn = 0
        self._txn_lock = threading.Lock()

    def _request(self, method: str, path: str, *, timeout: Optional[float] = None, **kwargs) -> Dict:
        r = self.s.request(method, self.base + path, timeout=timeout or self.timeout, **kwargs)
        r.raise_for_status()
        return r.json() if r.content else {}

    def _txn_id(self) -> str:
        # sync loop and reminder thread both send
        with self._txn_lock:
            self._txn += 1
            n = self._txn
        return f"{int(time.time() * 1000)}.{n}"

    # -- rooms --

    def resolve_room(self, alias: str) -> str:
        if alias.startswith("!"):
            return alias
        return self._request("GET", f"/directory/room/{_q(alias)}")["room_id"]

    def join_room(self, alias_or_id: str) -> str:
        return self._request("POST", f"/join/{_q(alias_or_id)}", json={})["room_id"]

    def get_joined_rooms(self) -> List[str]:
        return self._request("GET", "/joined_rooms").get("joined_rooms", [])

    def get_room_member(self, room_id: str, user_id: str) -> Optional[Dict]:
        try:
            return self._request("GET", f"/rooms/{_q(room_id)}/state/m.room.member/{_q(user_id)}")
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code in (403, 404):
                return None
            raise

    # -- identity --

    def get_user_id(self) -> str:
        return self._request("GET", "/account/whoami")["user_id"]

    def get_user_profile(self, user_id: str) -> Dict:
        try:
            return self._request("GET", f"/profile/{_q(user_id)}")
        except requests.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                return {}
            raise

    # -- messages --

    def send_message(self, room_id: str, content: Dict) -> str:
        path = f"/rooms/{_q(room_id)}/send/m.room.message/{_q(self._txn_id())}"
        return self._request("PUT", path, json=content)["event_id"]

    def send_notice(self, room_id: str, text: str) -> str:
        return self.send_message(room_id, {"msgtype": "m.notice", "body": text})

    def send_read_receipt(self, room_id: str, event_id: str) -> None:
        self._request("POST", f"/rooms/{_q(room_id)}/receipt/m.read/{_q(event_id)}", json={})

    # -- account data --

    def get_account_data(self, key: str) -> Dict:
        """Raises requests.HTTPError (404) when the key was never set."""
        user_id = self.get_user_id()
        return self._request("GET", f"/user/{_q(user_id)}/account_data/{_q(key)}")

    def set_account_data(self, key: str, content: Dict) -> None:
        user_id = self.get_user_id()
        self._request("PUT", f"/user/{_q(user_id)}/account_data/{_q(key)}", json=content)

    # -- sync --

    def sync(self, since: Optional[str] = None, timeout_ms: int = 30000) -> Dict:
        params = {"timeout": timeout_ms}
        if since:
            params["since"] = since
        # HTTP timeout has to outlast the server-side long poll
        return self._request("GET", "/sync", params=params, timeout=timeout_ms / 1000 + 10)

    # -- mentions --

    def mention_for_user(self, user_id: str, room_id: str) -> MentionPill:
        """
        Build a mention pill for a user as seen in a room: room display name
        first, then the global profile name, then the bare user id.
        """
        name = None
        member = self.get_room_member(room_id, user_id)
        if member:
            name = member.get("displayname")
        if not name:
            name = self.get_user_profile(user_id).get("displayname")
        name = name or user_id
        link = f"https://matrix.to/#/{user_id}"
        return MentionPill(
            text=name,
            html=f'<a href="{html.escape(link)}">{html.escape(name)}</a>',
        )
