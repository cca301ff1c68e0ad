"""Client configuration loading.

Configuration is a small YAML document; every key is optional::

    server_url: ws://127.0.0.1:8080
    ping_interval: 20
    connect_timeout: 15
    outbound_queue_size: 256
    avatars:
      template: https://avatars.dicebear.com/api/adventurer-neutral/{name}.svg
      placeholder: https://avatars.dicebear.com/api/adventurer-neutral/unknown.svg
    reconnect:
      enabled: true
      base_delay: 1
      max_delay: 30
      max_attempts: 5

``KAYCHAT_SERVER_URL`` in the environment overrides ``server_url``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError, KayChatHandshakeError
from .models import DEFAULT_AVATAR_TEMPLATE, DEFAULT_PLACEHOLDER_AVATAR, avatar_url
from .transport.ws import check_ws_url

SERVER_URL_ENV = "KAYCHAT_SERVER_URL"
DEFAULT_SERVER_URL = "ws://127.0.0.1:8080"


@dataclass(frozen=True)
class AvatarConfig:
    """How avatar references are derived from display names.

    Attributes:
        template: URL template with a ``{name}`` placeholder.
        placeholder: Avatar used for a sender missing from presence.
    """

    template: str = DEFAULT_AVATAR_TEMPLATE
    placeholder: str = DEFAULT_PLACEHOLDER_AVATAR

    def for_name(self, display_name: str) -> str:
        return avatar_url(display_name, self.template)


@dataclass(frozen=True)
class ReconnectPolicy:
    """Reconnect behavior after an unexpected close.

    Attributes:
        enabled: When False the client stays closed after the first drop.
        base_delay: First retry delay in seconds.
        max_delay: Upper bound for any single delay in seconds.
        max_attempts: Consecutive failed attempts before giving up.
    """

    enabled: bool = True
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """Backoff delay before the given zero-based attempt."""
        return min(self.base_delay * (2**attempt), self.max_delay)


@dataclass(frozen=True)
class ClientConfig:
    """Top-level client configuration."""

    server_url: str = DEFAULT_SERVER_URL
    ping_interval: float | None = 20
    connect_timeout: float = 15.0
    outbound_queue_size: int = 256
    avatars: AvatarConfig = field(default_factory=AvatarConfig)
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"File not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at top level of {path}")
    return data


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{name}' must be a number, got {type(value).__name__}")
    if value < 0:
        raise ConfigError(f"'{name}' must not be negative")
    return float(value)


def parse_config(
    data: Mapping[str, Any], *, environ: Mapping[str, str] | None = None
) -> ClientConfig:
    """Build a ClientConfig from already-parsed YAML data.

    Raises:
        ConfigError: If a value has the wrong type.
    """
    env = os.environ if environ is None else environ
    defaults = ClientConfig()

    server_url = env.get(SERVER_URL_ENV) or data.get("server_url", defaults.server_url)
    try:
        check_ws_url(server_url)
    except KayChatHandshakeError as err:
        raise ConfigError(f"server_url must be a ws:// or wss:// URL, got {server_url!r}") from err

    ping_interval = data.get("ping_interval", defaults.ping_interval)
    if ping_interval is not None:
        ping_interval = _number(ping_interval, "ping_interval")

    queue_size = data.get("outbound_queue_size", defaults.outbound_queue_size)
    if isinstance(queue_size, bool) or not isinstance(queue_size, int) or queue_size < 1:
        raise ConfigError("'outbound_queue_size' must be a positive integer")

    avatars_data = _section(data, "avatars")
    template = avatars_data.get("template", DEFAULT_AVATAR_TEMPLATE)
    if not isinstance(template, str) or "{name}" not in template:
        raise ConfigError("'avatars.template' must contain a {name} placeholder")
    placeholder = avatars_data.get("placeholder", DEFAULT_PLACEHOLDER_AVATAR)
    if not isinstance(placeholder, str):
        raise ConfigError("'avatars.placeholder' must be a string")

    reconnect_data = _section(data, "reconnect")
    max_attempts = reconnect_data.get("max_attempts", ReconnectPolicy.max_attempts)
    if isinstance(max_attempts, bool) or not isinstance(max_attempts, int):
        raise ConfigError("'reconnect.max_attempts' must be an integer")

    return ClientConfig(
        server_url=server_url,
        ping_interval=ping_interval,
        connect_timeout=_number(
            data.get("connect_timeout", defaults.connect_timeout), "connect_timeout"
        ),
        outbound_queue_size=queue_size,
        avatars=AvatarConfig(template=template, placeholder=placeholder),
        reconnect=ReconnectPolicy(
            enabled=bool(reconnect_data.get("enabled", ReconnectPolicy.enabled)),
            base_delay=_number(
                reconnect_data.get("base_delay", ReconnectPolicy.base_delay),
                "reconnect.base_delay",
            ),
            max_delay=_number(
                reconnect_data.get("max_delay", ReconnectPolicy.max_delay),
                "reconnect.max_delay",
            ),
            max_attempts=max_attempts,
        ),
    )


def load_config(
    path: Path | None = None, *, environ: Mapping[str, str] | None = None
) -> ClientConfig:
    """Load configuration from a YAML file, or defaults when no path is given.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    data = _load_yaml(path) if path is not None else {}
    return parse_config(data, environ=environ)
