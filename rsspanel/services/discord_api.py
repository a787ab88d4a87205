"""
rsspanel.services.discord_api — Thin httpx wrapper over Discord's REST API
===========================================================================

Every call opens a short-lived :class:`httpx.AsyncClient` with an explicit
timeout.  Non-2xx responses are logged with their body and raised as
:class:`DiscordResponseError`; there is no retry.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rsspanel.constants import DISCORD_API

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


class DiscordResponseError(Exception):
    """A Discord endpoint answered with a non-success status."""

    def __init__(self, status: int, body: Any, action: str = "Discord request") -> None:
        self.status = status
        self.body = body
        self.action = action
        super().__init__(f"{action} failed: non-200 status code ({status})")


def http_client() -> httpx.AsyncClient:
    """Build the client used for every Discord call (patched in tests)."""
    return httpx.AsyncClient(timeout=REQUEST_TIMEOUT)


def response_body(resp: httpx.Response) -> Any:
    """Decode an error body as JSON when possible, otherwise return text."""
    try:
        return resp.json()
    except ValueError:
        return resp.text


def raise_for_response(resp: httpx.Response, action: str) -> None:
    if resp.is_success:
        return
    body = response_body(resp)
    logger.error("%s failed (%d): %s", action, resp.status_code, body)
    raise DiscordResponseError(resp.status_code, body, action)


def _auth_headers(*, bearer: str | None = None, bot_token: str | None = None) -> dict:
    if bearer:
        return {"Authorization": f"Bearer {bearer}"}
    if bot_token:
        return {"Authorization": f"Bot {bot_token}"}
    return {}


async def get_json(
    path: str,
    *,
    bearer: str | None = None,
    bot_token: str | None = None,
    action: str = "Discord GET",
) -> Any:
    """GET ``{DISCORD_API}{path}`` and return the decoded JSON body."""
    async with http_client() as client:
        resp = await client.get(
            f"{DISCORD_API}{path}",
            headers=_auth_headers(bearer=bearer, bot_token=bot_token),
        )
    raise_for_response(resp, action)
    return resp.json()


async def post_json(
    path: str,
    payload: dict,
    *,
    bot_token: str,
    action: str = "Discord POST",
) -> Any:
    """POST a JSON payload with bot credentials and return the decoded body."""
    async with http_client() as client:
        resp = await client.post(
            f"{DISCORD_API}{path}",
            json=payload,
            headers=_auth_headers(bot_token=bot_token),
        )
    raise_for_response(resp, action)
    return resp.json()


async def recommended_shard_count(bot_token: str) -> int:
    """Ask the gateway how many shards this bot should run."""
    data = await get_json("/gateway/bot", bot_token=bot_token, action="Fetch gateway info")
    return int(data.get("shards", 1))
