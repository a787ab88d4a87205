"""
rsspanel.api.routes.public — Unauthenticated read-only endpoints
=================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import Engine

from rsspanel.api.deps import get_config, get_engine, get_mirror
from rsspanel.cache.mirror import CacheMirror
from rsspanel.config import PanelConfig
from rsspanel.services import stats_service

router = APIRouter(tags=["public"])


@router.get("/config")
def get_bot_config(cfg: PanelConfig = Depends(get_config)):
    """Feed limits and OAuth client id for the front end."""
    return cfg.public_dict()


@router.get("/stats")
def get_stats(
    engine: Engine = Depends(get_engine),
    mirror: CacheMirror = Depends(get_mirror),
):
    """Landing-page numbers: communities, news sources, delivered articles."""
    return stats_service.get_stats(engine, mirror)
