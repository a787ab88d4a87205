"""
RSS Panel — Web control panel & shard manager for a Discord RSS bot
====================================================================
Mirrors what the bot can see on Discord into Redis, lets guild managers
log in with Discord and edit their guild's feeds, and serves the whole
thing from the same process that supervises the bot's shards.

Package layout::

    rsspanel/
    ├── config.py          # YAML + env → typed Python config
    ├── constants.py       # Discord endpoints, handshake messages
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Profiles, feeds, subscribers, sessions, caches
    ├── cache/
    │   ├── client.py      # Redis connection + keyspace flush
    │   ├── structs.py     # Guild/channel/role/member/user snapshots
    │   └── mirror.py      # recognize / update / forget / fetch
    ├── bot/
    │   ├── manager.py     # Shard processes, handshake, uvicorn
    │   ├── shard.py       # Child process entry point
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/
    │       ├── guilds.py    # Guild + role events
    │       ├── channels.py  # Text channel events
    │       └── members.py   # Member + user events
    ├── services/
    │   ├── discord_api.py     # httpx REST helpers
    │   ├── auth_service.py    # OAuth2 tokens, logout
    │   ├── session_service.py # Server-side sessions + signed cookie
    │   ├── user_service.py    # Identity + guild list caching
    │   ├── guild_service.py   # Profiles + feed limits
    │   ├── feed_service.py    # Feeds, subscribers, article previews
    │   ├── channel_service.py # Cached channels
    │   └── stats_service.py   # Public counters
    └── api/
        ├── main.py        # FastAPI app factory
        ├── auth.py        # /login, /authorize, /logout
        ├── deps.py        # Session + guild access dependencies
        ├── errors.py      # {"code", "message"} error bodies
        ├── rate_limit.py  # Sliding-window limiter
        └── routes/        # Public, user, guild and feed endpoints
"""

__version__ = "0.1.0"
