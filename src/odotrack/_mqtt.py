"""Internal MQTT runtime.

paho-mqtt runs its network loop on its own thread. The runtime does no
parsing there: each message is handed to the asyncio loop as-is with
``call_soon_threadsafe``, so validation and odometer reconciliation always
run on the loop thread in arrival order.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, cast

import paho.mqtt.client as mqtt

from odotrack.config import IngestConfig
from odotrack.exceptions import MqttTransportError


@dataclass(frozen=True)
class MqttMessage:
    """Raw inbound message envelope."""

    topic: str
    payload: bytes
    received_at: float = field(default_factory=time.time)


def encode_json_payload(payload: Mapping[str, Any]) -> bytes:
    return json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits raw messages onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        config: IngestConfig,
        subscriptions: tuple[str, ...],
        on_message: Callable[[MqttMessage], None],
        logger: logging.Logger | None = None,
        client_factory: Callable[[str], mqtt.Client] = _default_client_factory,
    ) -> None:
        self._loop = loop
        self._config = config
        self._subscriptions = subscriptions
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client_factory = client_factory
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect, subscribe on every (re)connect, and start the network loop."""
        self.stop()
        config = self._config
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s topics=%s",
            config.mqtt_host,
            config.mqtt_port,
            config.mqtt_client_id,
            self._subscriptions,
        )

        client = self._client_factory(config.mqtt_client_id)
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("Connected to MQTT broker %s:%s", config.mqtt_host, config.mqtt_port)
            for topic in self._subscriptions:
                self._logger.debug("MQTT subscribing topic=%s qos=%s", topic, config.mqtt_qos)
                c.subscribe(topic, qos=config.mqtt_qos)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            message = MqttMessage(topic=msg.topic, payload=bytes(msg.payload))
            self._logger.debug("Received PUBLISH topic=%s bytes=%d", message.topic, len(message.payload))
            try:
                self._loop.call_soon_threadsafe(self._on_message, message)
            except RuntimeError:
                # Loop already closed during shutdown.
                self._logger.debug("Dropping MQTT message after loop shutdown topic=%s", message.topic)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.warning("MQTT disconnected: %s; paho will reconnect", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        except OSError as exc:
            raise MqttTransportError(
                f"cannot connect to MQTT broker {config.mqtt_host}:{config.mqtt_port}: {exc}"
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish(self, topic: str, payload: Mapping[str, Any]) -> None:
        """Publish a JSON object. Safe to call from the event loop thread."""
        client = self._client
        if client is None or not self._running:
            raise MqttTransportError(f"cannot publish to {topic}: MQTT runtime is not running")
        info = client.publish(topic, encode_json_payload(payload), qos=self._config.mqtt_qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MqttTransportError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        self._logger.debug("Published topic=%s payload=%s", topic, payload)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
