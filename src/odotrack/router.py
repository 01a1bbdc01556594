"""Topic router.

Owns:
- mapping subscribed topics to handlers
- the telemetry path: validate, reconcile, enrich, buffer
- turning every handler outcome into a :class:`RouteResult`
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from odotrack._constants import DEFAULT_DEVICE_ID
from odotrack._redact import redact_for_log
from odotrack.config import TopicConfig
from odotrack.exceptions import OdotrackError
from odotrack.handshake import Body, HandshakeResponder
from odotrack.ingestion.buffer import IngestionBuffer
from odotrack.ingestion.validate import Rejection, validate_payload
from odotrack.models.telemetry import EnrichedSample
from odotrack.state.odometer import OdometerReconciler

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RouteOutcome(StrEnum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESPONDED = "responded"
    IGNORED = "ignored"
    FAILED = "failed"
    UNROUTED = "unrouted"


@dataclass(frozen=True)
class RouteResult:
    topic: str
    outcome: RouteOutcome
    detail: str = ""
    sample: EnrichedSample | None = None
    rejection: Rejection | None = None


@dataclass
class RouterStats:
    received: int = 0
    accepted: int = 0
    rejected: int = 0
    responded: int = 0
    ignored: int = 0
    failed: int = 0
    unrouted: int = 0

    def record(self, outcome: RouteOutcome) -> None:
        self.received += 1
        name = outcome.value
        setattr(self, name, getattr(self, name) + 1)


Handler = Callable[[str, Body], Awaitable[RouteResult]]


@dataclass
class MessageRouter:
    """Dispatch ``(topic, body)`` pairs to handlers on the event loop thread.

    Per-device ordering holds because messages are routed one at a time in
    arrival order and the telemetry path never suspends before buffering.
    """

    reconciler: OdometerReconciler
    buffer: IngestionBuffer
    responder: HandshakeResponder
    topics: TopicConfig = field(default_factory=TopicConfig)
    default_device_id: str = DEFAULT_DEVICE_ID
    clock: Callable[[], datetime] = _utcnow
    stats: RouterStats = field(default_factory=RouterStats)
    _handlers: dict[str, Handler] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self._handlers = {
            self.topics.telemetry: self.handle_telemetry,
            self.topics.handshake_request: self.handle_handshake,
            self.topics.odometer_request: self.handle_odometer_sync,
        }

    @property
    def subscriptions(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def route(self, topic: str, body: Body) -> RouteResult:
        handler = self._handlers.get(topic)
        if handler is None:
            result = RouteResult(topic=topic, outcome=RouteOutcome.UNROUTED)
        else:
            try:
                result = await handler(topic, body)
            except OdotrackError as exc:
                _logger.warning("Handler for topic=%s failed: %s", topic, exc)
                result = RouteResult(topic=topic, outcome=RouteOutcome.FAILED, detail=str(exc))
        self.stats.record(result.outcome)
        return result

    def ingest(self, body: Body) -> EnrichedSample | Rejection:
        """Validate, reconcile and buffer one telemetry body.

        A rejected body never reaches the reconciler or the buffer.
        """
        validated = validate_payload(body if body is not None else b"", default_device_id=self.default_device_id)
        if isinstance(validated, Rejection):
            return validated

        total_km = self.reconciler.reconcile(validated.vehicle_id, validated.odo_meter, validated.boot_id)
        enriched = EnrichedSample.from_sample(validated, timestamp=self.clock(), total_odo_km=total_km)
        self.buffer.append(enriched)
        return enriched

    async def handle_telemetry(self, topic: str, body: Body) -> RouteResult:
        outcome = self.ingest(body)
        if isinstance(outcome, Rejection):
            _logger.warning(
                "Rejected telemetry kind=%s reason=%s body=%s",
                outcome.kind,
                outcome.reason,
                redact_for_log(outcome.body),
            )
            return RouteResult(topic=topic, outcome=RouteOutcome.REJECTED, detail=outcome.reason, rejection=outcome)

        _logger.debug(
            "Buffered telemetry vehicle=%s odo=%s totalOdoKm=%.2f",
            outcome.vehicle_id,
            outcome.odo_meter,
            outcome.total_odo_km,
        )
        return RouteResult(topic=topic, outcome=RouteOutcome.ACCEPTED, sample=outcome)

    async def handle_handshake(self, topic: str, body: Body) -> RouteResult:
        if self.responder.handle_ping(body):
            return RouteResult(topic=topic, outcome=RouteOutcome.RESPONDED, detail="ack")
        return RouteResult(topic=topic, outcome=RouteOutcome.IGNORED)

    async def handle_odometer_sync(self, topic: str, body: Body) -> RouteResult:
        response = await self.responder.handle_odometer_sync(body)
        if response is None:
            return RouteResult(topic=topic, outcome=RouteOutcome.FAILED, detail="odometer lookup failed")
        return RouteResult(topic=topic, outcome=RouteOutcome.RESPONDED, detail=f"totalOdoKm={response.total_odo_km}")
