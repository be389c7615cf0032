from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from .errors import ConfigError

PACKAGE_DIR = os.path.abspath(os.path.dirname(__file__))

ADMIN_AUTH_MODES = ("session", "basic")
DOWNLOAD_TOKEN_MODES = ("off", "required")


def load_dotenv(path: Optional[str] = None) -> None:
    """Best-effort .env loader (no external dependency).

    Only sets variables that are not already present in the environment.
    Supports simple KEY=VALUE lines (optionally quoted); ignores blanks and comments.
    """
    env_path = path or os.path.join(os.getcwd(), ".env")
    if not os.path.isfile(env_path):
        return
    try:
        with open(env_path, "r", encoding="utf-8") as f:
            lines = f.readlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip()
        if (v.startswith("'") and v.endswith("'")) or (v.startswith("\"") and v.endswith("\"")):
            v = v[1:-1]
        if k and k not in os.environ:
            os.environ[k] = v


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{key} must be positive")
    return value


def _choice(env: Mapping[str, str], key: str, default: str, choices) -> str:
    value = (env.get(key) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{key} must be one of {', '.join(choices)}, got {value!r}")
    return value


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    secret_key: str = ""
    stripe_secret_key: str = ""
    currency: str = "usd"
    public_url: str = ""
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_api_base: str = "https://api-m.sandbox.paypal.com"
    provider_timeout: float = 10.0
    admin_auth: str = "session"
    admin_username: str = ""
    admin_password: str = ""
    admin_password_hash: str = ""
    cors_origin: str = ""
    catalog_path: str = os.path.join(PACKAGE_DIR, "data", "products.json")
    digital_dir: str = os.path.join(PACKAGE_DIR, "digital")
    download_tokens: str = "off"
    download_ttl_seconds: int = 604800  # 7 days
    visitor_log_size: int = 200
    geoip_url: str = "http://ip-api.com/json/{ip}"
    geoip_timeout: float = 2.0
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def admin_configured(self) -> bool:
        return bool(self.admin_username and (self.admin_password or self.admin_password_hash))

    @property
    def paypal_configured(self) -> bool:
        return bool(self.paypal_client_id and self.paypal_client_secret)

    @property
    def download_tokens_required(self) -> bool:
        return self.download_tokens == "required"

    def with_overrides(self, **overrides: Any) -> "Settings":
        return replace(self, **overrides)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        In the production profile every secret must be provided explicitly;
        nothing falls back to a built-in literal.
        """
        if env is None:
            load_dotenv()
            env = os.environ

        environment = _choice(env, "STORE_ENV", "development", ("development", "production", "testing"))
        production = environment == "production"

        settings = cls(
            environment=environment,
            secret_key=(env.get("SECRET_KEY") or "").strip(),
            stripe_secret_key=(env.get("STRIPE_SECRET_KEY") or "").strip(),
            currency=(env.get("CURRENCY") or "usd").strip().lower(),
            public_url=(env.get("PUBLIC_URL") or "").strip().rstrip("/"),
            paypal_client_id=(env.get("PAYPAL_CLIENT_ID") or "").strip(),
            paypal_client_secret=(env.get("PAYPAL_CLIENT_SECRET") or "").strip(),
            paypal_api_base=(env.get("PAYPAL_API_BASE") or cls.paypal_api_base).strip().rstrip("/"),
            provider_timeout=_float(env, "PROVIDER_TIMEOUT", cls.provider_timeout),
            admin_auth=_choice(env, "ADMIN_AUTH", "session", ADMIN_AUTH_MODES),
            admin_username=(env.get("ADMIN_USERNAME") or "").strip(),
            admin_password=env.get("ADMIN_PASSWORD") or "",
            admin_password_hash=(env.get("ADMIN_PASSWORD_HASH") or "").strip(),
            cors_origin=(env.get("CORS_ORIGIN") or "").strip(),
            catalog_path=(env.get("CATALOG_PATH") or cls.catalog_path).strip(),
            digital_dir=(env.get("DIGITAL_DIR") or cls.digital_dir).strip(),
            download_tokens=_choice(
                env, "DOWNLOAD_TOKENS", "required" if production else "off", DOWNLOAD_TOKEN_MODES
            ),
            download_ttl_seconds=_int(env, "DOWNLOAD_TTL_SECONDS", cls.download_ttl_seconds, minimum=1),
            visitor_log_size=_int(env, "VISITOR_LOG_SIZE", cls.visitor_log_size, minimum=1),
            geoip_url=(env.get("GEOIP_URL", cls.geoip_url) or "").strip(),
            geoip_timeout=_float(env, "GEOIP_TIMEOUT", cls.geoip_timeout),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
        settings.validate()
        if not settings.secret_key:
            settings = settings.with_overrides(secret_key=secrets.token_hex(32))
        return settings

    def validate(self) -> None:
        if self.paypal_client_id and not self.paypal_client_secret:
            raise ConfigError("PAYPAL_CLIENT_SECRET is required when PAYPAL_CLIENT_ID is set")
        if self.paypal_client_secret and not self.paypal_client_id:
            raise ConfigError("PAYPAL_CLIENT_ID is required when PAYPAL_CLIENT_SECRET is set")
        if not self.is_production:
            return
        missing = []
        if not self.secret_key:
            missing.append("SECRET_KEY")
        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.admin_username:
            missing.append("ADMIN_USERNAME")
        if not (self.admin_password or self.admin_password_hash):
            missing.append("ADMIN_PASSWORD_HASH")
        if missing:
            raise ConfigError("Missing required configuration: " + ", ".join(missing))
