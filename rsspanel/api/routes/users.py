"""
rsspanel.api.routes.users — The logged-in user, their guilds, and the bot
==========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import Engine

from rsspanel.api.deps import get_config, get_engine, get_mirror, require_auth
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.database.engine import run_db
from rsspanel.services import guild_service, user_service
from rsspanel.services.session_service import SessionData

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/@me")
async def get_me(
    session: SessionData = Depends(require_auth),
    engine: Engine = Depends(get_engine),
):
    return await user_service.get_user(engine, session.user_id, session.token["access_token"])


@router.get("/@me/guilds")
async def get_my_guilds(
    session: SessionData = Depends(require_auth),
    engine: Engine = Depends(get_engine),
    mirror: CacheMirror = Depends(get_mirror),
    cfg: PanelConfig = Depends(get_config),
):
    """Guilds the user manages that the bot is in, with profile and limit."""
    guilds = await user_service.get_user_guilds(
        engine, session.user_id, session.token["access_token"]
    )
    manageable = await run_db(user_service.manageable_guilds, guilds, mirror)
    results = []
    for partial in manageable:
        data = await run_db(guild_service.get_guild, engine, mirror, cfg, int(partial["id"]))
        results.append({**partial, **data})
    return results


@router.get("/@bot")
def get_bot(mirror: CacheMirror = Depends(get_mirror)):
    bot_user = user_service.get_bot_user(mirror)
    if bot_user is None:
        raise HTTPException(404, "Bot user is not cached yet")
    return bot_user
