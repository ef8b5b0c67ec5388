"""Config management for room-oidc-bridge.

Settings come from environment variables, optionally preloaded from a .env
file by the entry point.
"""
import os
from typing import Optional


REQUIRED_VARIABLES = (
    "ISSUER_URL",
    "CLIENT_ID",
    "CLIENT_SECRET",
    "BASE_URL",
    "JITSI_URL",
    "JITSI_SECRET",
    "JITSI_SUB",
)

DEFAULT_LISTEN_ADDR = "0.0.0.0:8080"


class ConfigError(Exception):
    """Raised when required settings are missing or malformed."""


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    def _get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self.data.get(key)
        if value is None or value == "":
            return default
        return value

    def _get_number(self, key: str, default: float) -> float:
        value = self._get(key)
        if value is None:
            return default
        try:
            number = float(value)
        except ValueError:
            raise ConfigError(f"{key} must be a number, got {value!r}")
        if number <= 0:
            raise ConfigError(f"{key} must be positive, got {value!r}")
        return number

    # Identity provider

    @property
    def issuer_url(self) -> Optional[str]:
        return self._get("ISSUER_URL")

    @property
    def client_id(self) -> Optional[str]:
        return self._get("CLIENT_ID")

    @property
    def client_secret(self) -> Optional[str]:
        return self._get("CLIENT_SECRET")

    # This service

    @property
    def base_url(self) -> str:
        return (self._get("BASE_URL") or "").rstrip("/")

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url}/callback"

    @property
    def cookie_secure(self) -> bool:
        return self.base_url.startswith("https://")

    @property
    def listen_addr(self) -> str:
        return self._get("LISTEN_ADDR", DEFAULT_LISTEN_ADDR)

    @property
    def listen_host(self) -> str:
        host, _, _ = self.listen_addr.rpartition(":")
        return host.strip("[]") or "0.0.0.0"

    @property
    def listen_port(self) -> int:
        _, _, port = self.listen_addr.rpartition(":")
        try:
            return int(port)
        except ValueError:
            raise ConfigError(f"LISTEN_ADDR must be host:port, got {self.listen_addr!r}")

    # Conference server (token consumer)

    @property
    def jitsi_url(self) -> str:
        return (self._get("JITSI_URL") or "").rstrip("/")

    @property
    def jitsi_secret(self) -> Optional[str]:
        return self._get("JITSI_SECRET")

    @property
    def jitsi_sub(self) -> Optional[str]:
        return self._get("JITSI_SUB")

    @property
    def target_audience(self) -> str:
        return self._get("TARGET_AUDIENCE", "jitsi")

    @property
    def target_issuer(self) -> str:
        return self._get("TARGET_ISSUER", "jitsi")

    # Tuning

    @property
    def pending_ttl(self) -> float:
        return self._get_number("PENDING_TTL_SECONDS", 30 * 60)

    @property
    def reaper_interval(self) -> float:
        return self._get_number("REAPER_INTERVAL_SECONDS", 60)

    @property
    def http_timeout(self) -> float:
        return self._get_number("HTTP_TIMEOUT_SECONDS", 10)

    @property
    def log_format(self) -> str:
        return self._get("LOG_FORMAT", "plain").lower()

    @property
    def log_level(self) -> str:
        return self._get("LOG_LEVEL", "INFO").upper()

    def validate(self) -> "Config":
        """Check required fields. Returns self so calls can be chained."""
        missing = [key for key in REQUIRED_VARIABLES if not self._get(key)]
        if missing:
            raise ConfigError(f"Missing required settings: {', '.join(missing)}")

        for key in ("ISSUER_URL", "BASE_URL", "JITSI_URL"):
            if not self._get(key).startswith(("http://", "https://")):
                raise ConfigError(f"{key} must be an http(s) URL")

        # Touch the derived values so bad input fails at startup
        self.listen_port
        self.pending_ttl
        self.reaper_interval
        self.http_timeout
        return self


def load_config(environ: dict = None) -> Config:
    """Load config from the environment."""
    environ = os.environ if environ is None else environ
    keys = REQUIRED_VARIABLES + (
        "LISTEN_ADDR",
        "TARGET_AUDIENCE",
        "TARGET_ISSUER",
        "PENDING_TTL_SECONDS",
        "REAPER_INTERVAL_SECONDS",
        "HTTP_TIMEOUT_SECONDS",
        "LOG_FORMAT",
        "LOG_LEVEL",
    )
    return Config({key: environ[key] for key in keys if key in environ})
