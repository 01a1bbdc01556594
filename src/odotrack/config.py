"""Service configuration for odotrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from odotrack import _constants
from odotrack.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, cast: type[int] | type[float]) -> int | float:
    try:
        return cast(value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class TopicConfig:
    """MQTT topic names.

    Request topics are consumed, response topics are published to.
    """

    telemetry: str = _constants.TOPIC_TELEMETRY
    handshake_request: str = _constants.TOPIC_HANDSHAKE_REQUEST
    handshake_response: str = _constants.TOPIC_HANDSHAKE_RESPONSE
    odometer_request: str = _constants.TOPIC_ODOMETER_REQUEST
    odometer_response: str = _constants.TOPIC_ODOMETER_RESPONSE

    @property
    def subscriptions(self) -> tuple[str, ...]:
        return (self.telemetry, self.handshake_request, self.odometer_request)


@dataclasses.dataclass(frozen=True)
class IngestConfig:
    """Ingestion service configuration.

    Parameters
    ----------
    mqtt_host : str
        Broker host name.
    mqtt_port : int
        Broker port.
    mqtt_username : str or None
        Broker user, if the broker requires authentication.
    mqtt_password : str or None
        Broker password.
    mqtt_client_id : str
        Client identifier presented to the broker.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Wrap the broker connection in TLS using the system CA bundle.
    mqtt_qos : int
        QoS used for subscriptions and response publishes (0-2).
    topics : TopicConfig
        Topic names for the telemetry, handshake and odometer exchanges.
    database_url : str
        SQLAlchemy URL of the telemetry store.
    flush_interval : float
        Seconds between buffer flushes.
    default_device_id : str
        Device identifier used when a sample carries none.
    restore_odometer : bool
        Seed per-device odometer state from stored summaries at start-up.
    api_enabled : bool
        Serve the read-only HTTP query API.
    api_host : str
        Bind address of the query API.
    api_port : int
        Port of the query API.
    api_cors_origin : str
        Value of ``Access-Control-Allow-Origin`` on API responses.
    log_level : str
        Root log level used by the CLI.
    """

    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_client_id: str = "odotrack-ingest"
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    mqtt_qos: int = 1
    topics: TopicConfig = dataclasses.field(default_factory=TopicConfig)
    database_url: str = "sqlite:///odotrack.db"
    flush_interval: float = 1.0
    default_device_id: str = _constants.DEFAULT_DEVICE_ID
    restore_odometer: bool = True
    api_enabled: bool = False
    api_host: str = "0.0.0.0"
    api_port: int = 4000
    api_cors_origin: str = "http://localhost:3000"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.flush_interval <= 0:
            raise ConfigError(f"flush_interval must be positive, got {self.flush_interval}")
        if not 0 < self.mqtt_port < 65536:
            raise ConfigError(f"mqtt_port out of range: {self.mqtt_port}")
        if not 0 < self.api_port < 65536:
            raise ConfigError(f"api_port out of range: {self.api_port}")
        if self.mqtt_qos not in (0, 1, 2):
            raise ConfigError(f"mqtt_qos must be 0, 1 or 2, got {self.mqtt_qos}")
        if not self.default_device_id.strip():
            raise ConfigError("default_device_id must be non-empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> IngestConfig:
        """Create configuration from environment variables.

        Reads optional ``ODOTRACK_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        IngestConfig
            Populated configuration.

        Raises
        ------
        ConfigError
            If a variable holds an unparseable or out-of-range value.
        """
        env = os.environ

        topic_kwargs: dict[str, str] = {}
        _ENV_TOPIC_MAP = {
            "ODOTRACK_TOPIC_TELEMETRY": "telemetry",
            "ODOTRACK_TOPIC_HANDSHAKE_REQUEST": "handshake_request",
            "ODOTRACK_TOPIC_HANDSHAKE_RESPONSE": "handshake_response",
            "ODOTRACK_TOPIC_ODOMETER_REQUEST": "odometer_request",
            "ODOTRACK_TOPIC_ODOMETER_RESPONSE": "odometer_response",
        }
        for env_key, field_name in _ENV_TOPIC_MAP.items():
            val = env.get(env_key)
            if val is not None:
                topic_kwargs[field_name] = val

        # Allow overriding topics via a nested dict
        topic_overrides = overrides.pop("topics", None)
        if isinstance(topic_overrides, dict):
            topic_kwargs.update(topic_overrides)
        elif isinstance(topic_overrides, TopicConfig):
            topic_kwargs = dataclasses.asdict(topic_overrides)

        topics = TopicConfig(**topic_kwargs) if topic_kwargs else TopicConfig()

        _ENV_CONFIG_MAP = {
            "ODOTRACK_MQTT_HOST": "mqtt_host",
            "ODOTRACK_MQTT_USERNAME": "mqtt_username",
            "ODOTRACK_MQTT_PASSWORD": "mqtt_password",
            "ODOTRACK_MQTT_CLIENT_ID": "mqtt_client_id",
            "ODOTRACK_DATABASE_URL": "database_url",
            "ODOTRACK_DEFAULT_DEVICE_ID": "default_device_id",
            "ODOTRACK_API_HOST": "api_host",
            "ODOTRACK_API_CORS_ORIGIN": "api_cors_origin",
            "ODOTRACK_LOG_LEVEL": "log_level",
        }
        config_kwargs: dict[str, Any] = {"topics": topics}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "ODOTRACK_MQTT_PORT": ("mqtt_port", int),
            "ODOTRACK_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
            "ODOTRACK_MQTT_QOS": ("mqtt_qos", int),
            "ODOTRACK_FLUSH_INTERVAL": ("flush_interval", float),
            "ODOTRACK_API_PORT": ("api_port", int),
        }
        for env_key, (field_name, cast) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, cast)

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("ODOTRACK_MQTT_TLS"), False)
        if "restore_odometer" not in overrides:
            config_kwargs["restore_odometer"] = _env_bool(env.get("ODOTRACK_RESTORE_ODOMETER"), True)
        if "api_enabled" not in overrides:
            config_kwargs["api_enabled"] = _env_bool(env.get("ODOTRACK_API_ENABLED"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
