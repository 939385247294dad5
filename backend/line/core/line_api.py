"""LINE Messaging API client (reply, push, member profiles)."""

import base64
import hashlib
import hmac
import logging

import httpx

from line.core.errors import TransportError

logger = logging.getLogger(__name__)

LINE_API_BASE = "https://api.line.me"


def verify_signature(channel_secret: str, body: bytes, signature: str) -> bool:
    """Check ``X-Line-Signature``: base64(HMAC-SHA256(secret, body))."""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature)


def is_shared_chat(gid: str) -> bool:
    """Group ids start with C, multi-person room ids with R."""
    return gid.startswith(("C", "R"))


class LineMessagingClient:
    """Thin async wrapper over the Messaging API v2 endpoints the bot uses.

    Manages a shared httpx client for connection reuse; call ``close()`` on
    shutdown. Failed calls raise ``TransportError``.
    """

    def __init__(self, channel_access_token: str, base_url: str = LINE_API_BASE):
        if not channel_access_token:
            raise ValueError("LINE channel access token is required")

        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=10.0,
            headers={"Authorization": f"Bearer {channel_access_token}"},
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        try:
            response = await self._http.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if response.status_code != 200:
            raise TransportError(f"{method} {path} -> {response.status_code}: {response.text}")
        return response.json() if response.content else {}

    async def reply(self, reply_token: str, text: str) -> None:
        await self._request(
            "POST",
            "/v2/bot/message/reply",
            {"replyToken": reply_token, "messages": [{"type": "text", "text": text}]},
        )

    async def push(self, to: str, text: str) -> None:
        await self._request(
            "POST",
            "/v2/bot/message/push",
            {"to": to, "messages": [{"type": "text", "text": text}]},
        )

    async def display_name(self, gid: str, uid: str) -> str:
        """Profile name of *uid* as seen in conversation *gid*."""
        if gid.startswith("C"):
            path = f"/v2/bot/group/{gid}/member/{uid}"
        elif gid.startswith("R"):
            path = f"/v2/bot/room/{gid}/member/{uid}"
        else:
            path = f"/v2/bot/profile/{uid}"
        profile = await self._request("GET", path)
        name = profile.get("displayName")
        if not name:
            raise TransportError(f"Profile for {uid} has no displayName")
        return name
