"""
rsspanel.api.routes.guilds — Guild profile, channels & roles
=============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from rsspanel.api.deps import get_config, get_engine, get_mirror, require_guild_access
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.services import channel_service, guild_service

router = APIRouter(prefix="/guilds/{guild_id}", tags=["guilds"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ProfileUpdate(BaseModel):
    prefix: str | None = Field(default=None, max_length=10)
    locale: str | None = Field(default=None, max_length=10)
    timezone: str | None = Field(default=None, max_length=64)
    date_format: str | None = Field(default=None, max_length=64)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("")
def get_guild(
    guild_id: int,
    guild: dict = Depends(require_guild_access),
    engine: Engine = Depends(get_engine),
    mirror: CacheMirror = Depends(get_mirror),
    cfg: PanelConfig = Depends(get_config),
):
    return guild_service.get_guild(engine, mirror, cfg, guild_id)


@router.patch("")
def update_guild_profile(
    guild_id: int,
    body: ProfileUpdate,
    guild: dict = Depends(require_guild_access),
    engine: Engine = Depends(get_engine),
):
    return guild_service.update_profile(
        engine, guild_id, guild["name"], body.model_dump(exclude_unset=True)
    )


@router.get("/channels")
def get_channels(
    guild_id: int,
    guild: dict = Depends(require_guild_access),
    mirror: CacheMirror = Depends(get_mirror),
):
    channels = channel_service.get_guild_channels(mirror, guild_id)
    return sorted(channels, key=lambda ch: ch["name"])


@router.get("/roles")
def get_roles(
    guild_id: int,
    guild: dict = Depends(require_guild_access),
    mirror: CacheMirror = Depends(get_mirror),
):
    return guild_service.get_guild_roles(mirror, guild_id)
