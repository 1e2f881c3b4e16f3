"""
Service configuration.

Values are read once from the process environment. A ``.env`` file in the
working directory is loaded first so local development does not need exported
variables.

Environment Variables:
    KEYLEDGER_DATABASE_URL: SQLAlchemy connection URL
    KEYLEDGER_SECRET_KEY: secret used to sign bearer tokens
    KEYLEDGER_TOKEN_TTL_SECONDS: bearer token lifetime (default 24h)
    KEYLEDGER_API_TOKENS: static service tokens, "token:user_id,token:user_id"
    KEYLEDGER_ADMIN_EMAIL / KEYLEDGER_ADMIN_PASSWORD: bootstrap admin account
    KEYLEDGER_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default INFO)
    KEYLEDGER_DB_TIMEOUT_SECONDS: lock wait / pool timeout (default 30)
    KEYLEDGER_CORS_ORIGINS: browser origins allowed to call the API, comma
        separated (default "*")
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./keyledger.sqlite"
DEV_SECRET_KEY = "keyledger-dev-secret-change-me"


def _parse_api_tokens(raw: str) -> Dict[str, int]:
    """Parse "tok-a:1,tok-b:2" into {"tok-a": 1, "tok-b": 2}."""
    tokens: Dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        token, sep, user_id = item.rpartition(":")
        if not sep or not token:
            raise ValueError(f"Malformed API token entry: {item!r}")
        tokens[token] = int(user_id)
    return tokens


def _parse_origins(raw: str) -> List[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    DATABASE_URL: str = DEFAULT_DATABASE_URL
    SECRET_KEY: str = DEV_SECRET_KEY
    TOKEN_TTL_SECONDS: int = 24 * 60 * 60
    TOKENS: Dict[str, int] = field(default_factory=dict)
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    LOG_LEVEL: str = "INFO"
    DB_TIMEOUT_SECONDS: float = 30.0
    CORS_ORIGINS: List[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            DATABASE_URL=os.getenv("KEYLEDGER_DATABASE_URL", DEFAULT_DATABASE_URL),
            SECRET_KEY=os.getenv("KEYLEDGER_SECRET_KEY", DEV_SECRET_KEY),
            TOKEN_TTL_SECONDS=int(os.getenv("KEYLEDGER_TOKEN_TTL_SECONDS", 24 * 60 * 60)),
            TOKENS=_parse_api_tokens(os.getenv("KEYLEDGER_API_TOKENS", "")),
            ADMIN_EMAIL=os.getenv("KEYLEDGER_ADMIN_EMAIL") or None,
            ADMIN_PASSWORD=os.getenv("KEYLEDGER_ADMIN_PASSWORD") or None,
            LOG_LEVEL=os.getenv("KEYLEDGER_LOG_LEVEL", "INFO").upper(),
            DB_TIMEOUT_SECONDS=float(os.getenv("KEYLEDGER_DB_TIMEOUT_SECONDS", 30)),
            CORS_ORIGINS=_parse_origins(os.getenv("KEYLEDGER_CORS_ORIGINS", "*")),
        )


config_settings = Settings.from_env()
