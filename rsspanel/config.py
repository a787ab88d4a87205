"""
rsspanel.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for infrastructure settings (ports, OAuth client id,
shard count, feed limits) and overlays secrets from the environment
(``DISCORD_TOKEN``, ``DISCORD_CLIENT_SECRET``, ``DATABASE_URL``,
``REDIS_URL``).  Call ``load_dotenv()`` before
:func:`load_config` so a local ``.env`` is picked up.

Usage::

    from rsspanel.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.http.port)         # 8081
    print(cfg.bot.client_id)     # "1234567890"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

# Token baked into the docker image; treated the same as no token at all.
PLACEHOLDER_TOKEN = "DRSSWEB_docker_token"


class ConfigError(ValueError):
    """Raised when ``config.yaml`` or the environment holds an invalid value."""


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BotConfig:
    token: str
    client_id: str
    client_secret: str
    redirect_uri: str
    shard_count: int = 0  # 0 → ask Discord for the recommended count


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


@dataclass(frozen=True, slots=True)
class RedisConfig:
    uri: str
    prefix: str = "drss"


@dataclass(frozen=True, slots=True)
class HttpConfig:
    port: int
    trust_proxy: bool = False
    frontend_origin: str | None = None


@dataclass(frozen=True, slots=True)
class HttpsConfig:
    enabled: bool = False
    port: int = 443
    private_key: str | None = None
    certificate: str | None = None
    chain: str | None = None


@dataclass(frozen=True, slots=True)
class FeedsConfig:
    max_feeds: int = 5
    refresh_rate_minutes: float = 10.0


@dataclass(frozen=True, slots=True)
class PanelConfig:
    """Immutable configuration for the manager, the shards and the API."""

    bot: BotConfig
    database: DatabaseConfig
    redis: RedisConfig
    http: HttpConfig
    https: HttpsConfig
    feeds: FeedsConfig

    def public_dict(self) -> dict:
        """Subset of the configuration that is safe to hand to the browser."""
        return {
            "client_id": self.bot.client_id,
            "max_feeds": self.feeds.max_feeds,
            "refresh_rate_minutes": self.feeds.refresh_rate_minutes,
            "invite_url": (
                "https://discord.com/oauth2/authorize"
                f"?client_id={self.bot.client_id}&scope=bot&permissions=19456"
            ),
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _int(section: str, key: str, value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be an integer, got {value!r}") from None


def _secret(env_name: str, raw: dict, key: str) -> str:
    """Environment wins over YAML so secrets can stay out of the file."""
    return (os.getenv(env_name) or str(raw.get(key) or "")).strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def parse_config(raw: dict) -> PanelConfig:
    """Validate a parsed YAML mapping and build a :class:`PanelConfig`.

    Raises
    ------
    ConfigError
        If a value is missing or malformed.
    """
    bot_raw = raw.get("bot") or {}
    db_raw = raw.get("database") or {}
    redis_raw = raw.get("redis") or {}
    http_raw = raw.get("http") or {}
    https_raw = raw.get("https") or {}
    feeds_raw = raw.get("feeds") or {}

    token = _secret("DISCORD_TOKEN", bot_raw, "token")
    if not token or token == PLACEHOLDER_TOKEN:
        raise ConfigError("No bot token defined (set DISCORD_TOKEN)")

    bot = BotConfig(
        token=token,
        client_id=str(bot_raw.get("client_id") or "").strip(),
        client_secret=_secret("DISCORD_CLIENT_SECRET", bot_raw, "client_secret"),
        redirect_uri=str(bot_raw.get("redirect_uri") or "").strip(),
        shard_count=_int("bot", "shard_count", bot_raw.get("shard_count", 0)),
    )
    if bot.shard_count < 0:
        raise ConfigError("bot.shard_count cannot be negative")

    database = DatabaseConfig(uri=_secret("DATABASE_URL", db_raw, "uri"))
    if not database.uri:
        raise ConfigError("No database URI defined (set DATABASE_URL)")

    redis_cfg = RedisConfig(
        uri=_secret("REDIS_URL", redis_raw, "uri") or "redis://localhost:6379/0",
        prefix=str(redis_raw.get("prefix") or "drss"),
    )

    http = HttpConfig(
        port=_int("http", "port", http_raw.get("port", 8081)),
        trust_proxy=bool(http_raw.get("trust_proxy", False)),
        frontend_origin=http_raw.get("frontend_origin") or None,
    )

    https = HttpsConfig(
        enabled=bool(https_raw.get("enabled", False)),
        port=_int("https", "port", https_raw.get("port", 443)),
        private_key=https_raw.get("private_key") or None,
        certificate=https_raw.get("certificate") or None,
        chain=https_raw.get("chain") or None,
    )
    if https.enabled:
        missing = [
            name for name in ("private_key", "certificate", "chain")
            if not getattr(https, name)
        ]
        if missing:
            raise ConfigError(
                "HTTPS is enabled but these paths are missing: " + ", ".join(missing)
            )

    feeds = FeedsConfig(
        max_feeds=_int("feeds", "max_feeds", feeds_raw.get("max_feeds", 5)),
        refresh_rate_minutes=float(feeds_raw.get("refresh_rate_minutes", 10)),
    )

    return PanelConfig(
        bot=bot,
        database=database,
        redis=redis_cfg,
        http=http,
        https=https,
        feeds=feeds,
    )


def load_config(path: str | Path = "config.yaml") -> PanelConfig:
    """Read *path* and return a :class:`PanelConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ConfigError
        If a required value is missing or malformed.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return parse_config(raw)
