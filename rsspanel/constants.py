"""
rsspanel.constants — Discord API endpoints & shared constants
==============================================================
"""

from __future__ import annotations

DISCORD_API = "https://discord.com/api/v10"

# OAuth2
OAUTH_TOKEN_HOST = "https://discord.com"
OAUTH_AUTHORIZE_PATH = "/api/oauth2/authorize"
OAUTH_TOKEN_PATH = "/api/oauth2/token"
OAUTH_REVOKE_PATH = "/api/oauth2/token/revoke"
OAUTH_SCOPES = "identify guilds"

# Permission bits (https://discord.com/developers/docs/topics/permissions)
PERMISSION_ADMINISTRATOR = 1 << 3
PERMISSION_MANAGE_CHANNELS = 1 << 4

# Shard ↔ manager handshake messages
MSG_CREATED = "created"
MSG_INITIALIZE = "initialize"
MSG_COMPLETE = "complete"
MSG_EXIT = "exit"

# WebCache lifetimes
USER_CACHE_SECONDS = 10 * 60
GUILDS_CACHE_SECONDS = 10 * 60

# Session cookie
SESSION_COOKIE = "drssweb_session"
SESSION_MAX_AGE_SECONDS = 24 * 60 * 60

# Placeholder names exposed by GET .../articles
ARTICLE_PLACEHOLDERS = ("title", "description", "summary", "link", "author", "date", "image")


def has_manage_permission(permissions: int, owner: bool = False) -> bool:
    """True if the given guild permission bitfield allows editing feeds."""
    if owner:
        return True
    return bool(permissions & (PERMISSION_ADMINISTRATOR | PERMISSION_MANAGE_CHANNELS))

# Logging (shared by the manager and every shard process)
LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
LOG_DATEFMT = "%H:%M:%S"
