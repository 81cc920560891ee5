"""Warehouse connection configuration and process settings."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, NamedTuple

from .errors import ConfigurationError

_ACCOUNT_PATTERN = re.compile(r"^[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)?$")

# Accepted keys for ConnectionConfig.from_mapping (JSON bodies use camelCase)
_FIELD_ALIASES = {
    "account": "account",
    "accountUrl": "account_url",
    "account_url": "account_url",
    "username": "username",
    "user": "username",
    "password": "password",
    "token": "token",
    "warehouse": "warehouse",
    "database": "database",
    "schema": "schema",
    "role": "role",
}

_ENV_FIELDS = {
    "account": "SNOWFLAKE_ACCOUNT",
    "username": "SNOWFLAKE_USERNAME",
    "password": "SNOWFLAKE_PASSWORD",
    "token": "SNOWFLAKE_TOKEN",
    "warehouse": "SNOWFLAKE_WAREHOUSE",
    "database": "SNOWFLAKE_DATABASE",
    "schema": "SNOWFLAKE_SCHEMA",
    "role": "SNOWFLAKE_ROLE",
}


def extract_account_from_url(account_url: str | None) -> str:
    """Reduce an account URL to the account identifier.

    Handles ``https://xyz123.snowflakecomputing.com``,
    ``xyz123.us-east-1.snowflakecomputing.com/console`` and bare identifiers
    such as ``xyz123.us-east-1``.
    """
    if not account_url:
        return ""
    account = account_url.strip()
    account = re.sub(r"^https?://", "", account)
    account = re.sub(r"\.snowflakecomputing\.com.*$", "", account)
    account = re.sub(r"/.*$", "", account)
    return account.split("?")[0].split("#")[0]


class PoolKey(NamedTuple):
    """Normalized connection identity. Never includes the secret."""

    account: str
    username: str
    warehouse: str
    database: str
    schema: str
    role: str

    def __str__(self) -> str:
        context = "/".join(part or "-" for part in (self.warehouse, self.database, self.schema, self.role))
        return f"{self.username}@{self.account}[{context}]"


def _identifier(value: str | None) -> str:
    return (value or "").strip().upper()


@dataclass(frozen=True, slots=True)
class ConnectionConfig:
    """Credentials and warehouse context needed to open a session."""

    username: str
    account: str | None = None
    account_url: str | None = None
    password: str | None = field(default=None, repr=False)
    token: str | None = field(default=None, repr=False)
    warehouse: str | None = None
    database: str | None = None
    schema: str | None = None
    role: str | None = None

    @property
    def resolved_account(self) -> str:
        if self.account and self.account.strip():
            return self.account.strip()
        return extract_account_from_url(self.account_url)

    @property
    def secret(self) -> str | None:
        return self.token or self.password

    @property
    def pool_key(self) -> PoolKey:
        return PoolKey(
            account=self.resolved_account.lower(),
            username=_identifier(self.username),
            warehouse=_identifier(self.warehouse),
            database=_identifier(self.database),
            schema=_identifier(self.schema),
            role=_identifier(self.role),
        )

    def validate(self) -> "ConnectionConfig":
        """Check required fields; returns self so calls can be chained."""
        account = self.resolved_account
        if not account:
            raise ConfigurationError("Account URL or Account is required")
        if not _ACCOUNT_PATTERN.match(account):
            raise ConfigurationError(
                f'Invalid account format: "{account}". Account should be like '
                '"xyz123", "ORG-ACCOUNT", or "xyz123.us-east-1".'
            )
        if not self.username or not self.username.strip():
            raise ConfigurationError("Missing required field: username")
        if not self.secret:
            raise ConfigurationError("Missing required field: password or token")
        return self

    def public_view(self) -> dict[str, Any]:
        """Masked form that is safe to send back to a browser."""
        return {
            "account": self.resolved_account or None,
            "username": "***" if self.username else None,
            "warehouse": self.warehouse,
            "database": self.database,
            "schema": self.schema,
            "role": self.role,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConnectionConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Connection settings must be a JSON object")
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            name = _FIELD_ALIASES.get(key)
            if name is None or value is None:
                continue
            if not isinstance(value, str):
                raise ConfigurationError(f"Field '{key}' must be a string")
            kwargs[name] = value.strip() or None
        if not kwargs.get("username"):
            raise ConfigurationError("Missing required field: username")
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ConnectionConfig | None":
        env = os.environ if environ is None else environ
        values = {name: env.get(var) or None for name, var in _ENV_FIELDS.items()}
        if not values["account"] or not values["username"]:
            return None
        return cls(**values)


def _env_number(env: Mapping[str, str], name: str, default: float, cast: type = float) -> Any:
    raw = env.get(name)
    if raw is None or raw == "":
        return cast(default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    """Process settings, read from ``QUALYTICS_*`` environment variables."""

    driver: str = "snowflake"
    duckdb_path: str = ":memory:"
    max_per_key: int = 4
    max_total: int = 16
    acquire_timeout: float = 10.0
    idle_timeout: float = 300.0
    max_lifetime: float = 3600.0
    reap_interval: float = 30.0
    login_timeout: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        driver = env.get("QUALYTICS_DRIVER", "snowflake").strip().lower()
        if driver not in ("snowflake", "duckdb"):
            raise ConfigurationError(f"QUALYTICS_DRIVER must be 'snowflake' or 'duckdb', got {driver!r}")
        return cls(
            driver=driver,
            duckdb_path=env.get("QUALYTICS_DUCKDB_PATH", ":memory:"),
            max_per_key=_env_number(env, "QUALYTICS_POOL_MAX_PER_KEY", 4, int),
            max_total=_env_number(env, "QUALYTICS_POOL_MAX_TOTAL", 16, int),
            acquire_timeout=_env_number(env, "QUALYTICS_POOL_ACQUIRE_TIMEOUT", 10.0),
            idle_timeout=_env_number(env, "QUALYTICS_POOL_IDLE_TIMEOUT", 300.0),
            max_lifetime=_env_number(env, "QUALYTICS_POOL_MAX_LIFETIME", 3600.0),
            reap_interval=_env_number(env, "QUALYTICS_POOL_REAP_INTERVAL", 30.0),
            login_timeout=_env_number(env, "QUALYTICS_LOGIN_TIMEOUT", 30, int),
            log_level=env.get("QUALYTICS_LOG_LEVEL", "INFO").upper(),
        )


__all__ = [
    "ConnectionConfig",
    "PoolKey",
    "Settings",
    "extract_account_from_url",
]
