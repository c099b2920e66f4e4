"""
Client configuration.

``BridgeConfig`` is passed explicitly to the client, transport and
correlator; nothing reads process-wide state after construction.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

#: Event kind for client → node lookups. Must match the node.
REQUEST_KIND = 30078

#: Event kind for node → client replies. Must match the node.
RESPONSE_KIND = 30079

#: Relays the node advertises by default.
DEFAULT_RELAYS = (
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.primal.net",
)

DEFAULT_REQUEST_TIMEOUT = 30.0
ENV_PREFIX = "BALANCEBRIDGE_"


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""

    pass


def _default_data_dir() -> Path:
    # Umbrel mounts the app's persistent volume here
    umbrel_dir = os.environ.get("UMBREL_APP_DATA_DIR")
    if umbrel_dir:
        return Path(umbrel_dir)
    return Path("./data")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BridgeConfig:
    """Configuration for a BalanceBridge client."""

    data_dir: Path = field(default_factory=_default_data_dir)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = 10.0
    heartbeat: float = 30.0
    subscription_window: float = 300.0
    clock_skew: int = 5
    request_kind: int = REQUEST_KIND
    response_kind: int = RESPONSE_KIND
    encrypt_payloads: bool = False
    verify_signatures: bool = True
    send_hello: bool = True
    diagnostics: bool = False

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)

    @property
    def identity_path(self) -> Path:
        return self.data_dir / "nostr_secret.hex"

    @property
    def pairing_path(self) -> Path:
        return self.data_dir / "pairing.json"

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: If a timeout is not positive or the kinds collide.
        """
        for name in ("request_timeout", "connect_timeout", "subscription_window"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")
        if self.heartbeat < 0:
            raise ConfigError(f"heartbeat must not be negative, got {self.heartbeat}")
        if self.clock_skew < 0:
            raise ConfigError(f"clock_skew must not be negative, got {self.clock_skew}")
        if self.request_kind == self.response_kind:
            raise ConfigError("request_kind and response_kind must differ")

    def to_dict(self) -> dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "request_timeout": self.request_timeout,
            "connect_timeout": self.connect_timeout,
            "heartbeat": self.heartbeat,
            "subscription_window": self.subscription_window,
            "clock_skew": self.clock_skew,
            "request_kind": self.request_kind,
            "response_kind": self.response_kind,
            "encrypt_payloads": self.encrypt_payloads,
            "verify_signatures": self.verify_signatures,
            "send_hello": self.send_hello,
            "diagnostics": self.diagnostics,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BridgeConfig:
        known = {f.name for f in fields(cls)}
        config = cls(**{key: value for key, value in data.items() if key in known})
        config.validate()
        return config

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> BridgeConfig:
        """Build a config from ``BALANCEBRIDGE_*`` environment variables."""
        environ = dict(os.environ if environ is None else environ)
        defaults = cls()
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            default = getattr(defaults, f.name)
            if f.name == "data_dir":
                values[f.name] = Path(raw)
            elif isinstance(default, bool):
                values[f.name] = _parse_bool(raw)
            elif isinstance(default, int):
                values[f.name] = int(raw)
            else:
                values[f.name] = float(raw)
        return cls.from_dict(values)
