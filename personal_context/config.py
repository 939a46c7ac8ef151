"""
Application configuration from environment variables.

Settings are read once at startup by load_settings() and passed explicitly into
the store and the authorization gate; nothing reads the environment at import
time. Missing or invalid secrets raise RuntimeError, which aborts startup.
"""
import os
import string
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

KEY_SIZE_BYTES = 32  # AES-256

DEFAULT_TOKEN_TTL_SECONDS = 3600  # issued tokens are valid for one hour


@dataclass(frozen=True)
class StoreConfig:
    """Out-of-band secrets the entity store needs: the field key and the database file."""
    encryption_key: bytes = field(repr=False)
    db_path: Path


@dataclass(frozen=True)
class AuthConfig:
    jwt_secret: str = field(repr=False)
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS
    # Literal, case-sensitive prefix stripped before JWT verification
    token_prefix: str = "Bearer "


@dataclass(frozen=True)
class Settings:
    store: StoreConfig
    auth: AuthConfig
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    env: str = "development"


def parse_encryption_key(raw: str | bytes) -> bytes:
    """
    Accept a 256-bit key as 64 hex characters or as 32 raw bytes/characters.
    Raises ValueError for anything else.
    """
    if isinstance(raw, bytes):
        key = raw
    else:
        raw = raw.strip()
        if len(raw) == KEY_SIZE_BYTES * 2 and all(c in string.hexdigits for c in raw):
            key = bytes.fromhex(raw)
        else:
            key = raw.encode("utf-8")
    if len(key) != KEY_SIZE_BYTES:
        raise ValueError(
            f"Encryption key must be {KEY_SIZE_BYTES} bytes (or {KEY_SIZE_BYTES * 2} hex chars), "
            f"got {len(key)} bytes"
        )
    return key


def _require(environ: Mapping[str, str], name: str) -> str:
    val = environ.get(name)
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")
    return val


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    try:
        return max(1, int(environ.get(key, str(default))))
    except ValueError:
        return default


def load_auth_config(environ: Mapping[str, str] | None = None) -> AuthConfig:
    """Token settings only: JWT_SECRET (required) and TOKEN_TTL_SECONDS."""
    if environ is None:
        environ = os.environ
    return AuthConfig(
        jwt_secret=_require(environ, "JWT_SECRET"),
        token_ttl_seconds=_int_env(environ, "TOKEN_TTL_SECONDS", DEFAULT_TOKEN_TTL_SECONDS),
    )


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from the environment (os.environ by default).

    Required: ENCRYPTION_KEY, DB_PATH, JWT_SECRET.
    Optional: TOKEN_TTL_SECONDS, HOST, PORT, LOG_LEVEL, ENV.
    """
    if environ is None:
        environ = os.environ

    # --- Required (raise if missing) ---
    raw_key = _require(environ, "ENCRYPTION_KEY")
    db_path = _require(environ, "DB_PATH")

    try:
        encryption_key = parse_encryption_key(raw_key)
    except ValueError as e:
        raise RuntimeError(f"ENCRYPTION_KEY is invalid: {e}") from e

    # --- Optional with defaults ---
    return Settings(
        store=StoreConfig(
            encryption_key=encryption_key,
            db_path=Path(db_path).expanduser(),
        ),
        auth=load_auth_config(environ),
        host=environ.get("HOST", "127.0.0.1"),
        port=_int_env(environ, "PORT", 8000),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        # development | production (affects .env loading)
        env=environ.get("ENV", "development").lower(),
    )
