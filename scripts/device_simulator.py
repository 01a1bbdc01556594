#!/usr/bin/env python3
"""Simulated vehicle controller for exercising an odotrack deployment.

Behaves like the ESP32 firmware:
1) sends ``{"status": "ping"}`` and waits for the ack,
2) asks for the last known odometer total,
3) publishes telemetry at a fixed rate with a one-byte odometer counter
   that wraps at 256, optionally simulating reboots (new ``bootId``).

Broker settings come from the same ``ODOTRACK_*`` variables as the service.
"""

from __future__ import annotations

import argparse
import json
import logging
import random
import signal
import sys
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

import paho.mqtt.client as mqtt  # noqa: E402

from odotrack.config import IngestConfig  # noqa: E402

_LOG = logging.getLogger("device_simulator")


@dataclass
class SimStats:
    started_at: float
    published: int = 0
    reboots: int = 0
    acks: int = 0
    synced_km: float | None = None


@dataclass
class SimDevice:
    vehicle_id: str
    counter: int
    boot_id: str
    speed: float = 0.0
    carry: float = 0.0

    def step(self, seconds: float) -> dict[str, Any]:
        self.speed = max(0.0, min(130.0, self.speed + random.uniform(-8.0, 10.0)))
        # 100 counter units per km.
        self.carry += self.speed / 3600.0 * seconds * 100.0
        units = int(self.carry)
        self.carry -= units
        self.counter = (self.counter + units) % 256
        return {
            "vehicleId": self.vehicle_id,
            "bootId": self.boot_id,
            "rpm": round(800 + self.speed * 35 + random.uniform(-50, 50)),
            "throttle": round(min(100.0, self.speed / 1.3), 1),
            "speed": round(self.speed, 1),
            "gear": min(6, 1 + int(self.speed // 25)),
            "brake": 1 if random.random() < 0.05 else 0,
            "engineCoolantTemp": round(85 + random.uniform(-3, 6), 1),
            "airIntakeTemp": round(24 + random.uniform(-2, 4), 1),
            "odoMeter": self.counter,
        }

    def reboot(self) -> None:
        self.boot_id = uuid.uuid4().hex[:8]
        self.counter = random.randrange(256)
        self.carry = 0.0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Publish simulated vehicle telemetry to an odotrack broker.",
    )
    parser.add_argument(
        "--vehicle-id",
        default="SIM-1",
        help="vehicleId to publish (empty string sends no vehicleId).",
    )
    parser.add_argument(
        "--rate",
        type=float,
        default=2.0,
        help="Telemetry messages per second.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--reboot-every",
        type=int,
        default=0,
        help="Simulate a device reboot every N messages (0 = never).",
    )
    parser.add_argument(
        "--bad-every",
        type=int,
        default=0,
        help="Publish a malformed body every N messages (0 = never).",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_summary(stats: SimStats) -> None:
    runtime = time.time() - stats.started_at
    print("[sim] Summary")
    print(f"[sim]   runtime_s  : {runtime:.1f}")
    print(f"[sim]   published  : {stats.published}")
    print(f"[sim]   reboots    : {stats.reboots}")
    print(f"[sim]   acks       : {stats.acks}")
    print(f"[sim]   synced_km  : {stats.synced_km}")


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if args.rate <= 0:
        print("[sim] --rate must be positive", file=sys.stderr)
        return 2

    config = IngestConfig.from_env(mqtt_client_id=f"odotrack-sim-{uuid.uuid4().hex[:6]}")
    topics = config.topics
    stats = SimStats(started_at=time.time())
    device = SimDevice(vehicle_id=args.vehicle_id, counter=random.randrange(256), boot_id=uuid.uuid4().hex[:8])
    connected = threading.Event()
    should_stop = False

    def stop_handler(_signum: int, _frame: Any) -> None:
        nonlocal should_stop
        should_stop = True

    signal.signal(signal.SIGINT, stop_handler)
    signal.signal(signal.SIGTERM, stop_handler)

    mqtt_client = mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=config.mqtt_client_id,
        protocol=mqtt.MQTTv311,
    )
    mqtt_client.enable_logger(_LOG)
    if config.mqtt_username:
        mqtt_client.username_pw_set(config.mqtt_username, config.mqtt_password)
    if config.mqtt_tls:
        mqtt_client.tls_set()

    def on_connect(
        client: mqtt.Client,
        _userdata: Any,
        _flags: mqtt.ConnectFlags,
        reason_code: mqtt.ReasonCode,
        _properties: mqtt.Properties | None,
    ) -> None:
        if reason_code.value != 0:
            print(f"[sim] MQTT connect failed: {reason_code}", file=sys.stderr)
            client.disconnect()
            return
        client.subscribe(topics.handshake_response, qos=config.mqtt_qos)
        client.subscribe(topics.odometer_response, qos=config.mqtt_qos)
        connected.set()

    def on_message(_client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            body = json.loads(msg.payload)
        except ValueError:
            print(f"[sim] unparseable reply on {msg.topic}: {msg.payload!r}")
            return
        if msg.topic == topics.handshake_response and body.get("status") == "ack":
            stats.acks += 1
            print("[sim] handshake ack received")
        elif msg.topic == topics.odometer_response:
            stats.synced_km = body.get("totalOdoKm")
            print(f"[sim] odometer sync totalOdoKm={stats.synced_km}")

    mqtt_client.on_connect = on_connect
    mqtt_client.on_message = on_message

    print(f"[sim] Connecting to {config.mqtt_host}:{config.mqtt_port}...")
    try:
        mqtt_client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive)
        mqtt_client.loop_start()
        if not connected.wait(timeout=10.0):
            print("[sim] Timed out waiting for broker", file=sys.stderr)
            return 1

        mqtt_client.publish(topics.handshake_request, json.dumps({"status": "ping"}), qos=config.mqtt_qos)
        mqtt_client.publish(topics.odometer_request, "", qos=config.mqtt_qos)

        period = 1.0 / args.rate
        while not should_stop:
            if args.duration > 0 and (time.time() - stats.started_at) >= args.duration:
                print(f"[sim] Reached --duration={args.duration}s, stopping.")
                break

            sequence = stats.published + 1
            if args.reboot_every and sequence % args.reboot_every == 0:
                device.reboot()
                stats.reboots += 1
                print(f"[sim] reboot: bootId={device.boot_id} counter={device.counter}")

            if args.bad_every and sequence % args.bad_every == 0:
                payload = json.dumps({"vehicleId": device.vehicle_id, "speed": "fast"})
            else:
                body = device.step(period)
                if not device.vehicle_id:
                    body.pop("vehicleId")
                payload = json.dumps(body)

            mqtt_client.publish(topics.telemetry, payload, qos=config.mqtt_qos)
            stats.published += 1
            _LOG.debug("published %s", payload)
            time.sleep(period)

    except KeyboardInterrupt:
        pass
    except OSError as exc:
        print(f"[sim] Broker connection failed: {exc}", file=sys.stderr)
        return 1
    finally:
        should_stop = True
        try:
            mqtt_client.disconnect()
        finally:
            mqtt_client.loop_stop()

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
