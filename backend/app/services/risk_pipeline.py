"""
Risk assessment pipeline: one predicted-delay message in, one risk-assessed record out.

    deliver -> validate -> lookup factors (bounded) -> classify -> publish -> commit

The inbound message is committed only after the outbound publish succeeded.
Anything that stops short of that (publish failure, cancellation, crash) leaves
it uncommitted so the channel delivers it again. Re-processing recomputes the
classification, which is safe because the classifier is pure.

Factor lookup failures never block a record: neutral factors are substituted
(route score 0.5, vendor reliable) and the reason is marked as degraded.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any

from pydantic import ValidationError

from app.core.errors import FactorLookupFailed, MalformedRecord, ProcessingError, PublishFailed
from app.core.risk_classifier import RiskClassifier
from app.data.base import NEUTRAL_RISK_FACTORS, RiskFactorLookupError, RiskFactorProvider, RiskFactors
from app.schemas.risk_event import PredictedDelayRecord, RiskAssessedRecord
from app.services.event_channel import EventChannel, InboundMessage

logger = logging.getLogger(__name__)

DEGRADED_REASON_SUFFIX = " (degraded confidence: risk factors unavailable)"

OUTCOME_PUBLISHED = "published"
OUTCOME_MALFORMED = "malformed"
OUTCOME_RETRY = "retry"
OUTCOME_DEAD_LETTERED = "dead_lettered"

MAX_RECEIVE_BACKOFF_SECONDS = 30.0


@dataclass(frozen=True)
class ProcessingOutcome:
    message_id: int
    status: str
    shipment_id: str | None = None
    record: RiskAssessedRecord | None = None
    error: ProcessingError | None = None
    committed: bool = False

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_PUBLISHED


@dataclass
class PipelineStats:
    processed: int = 0
    published: int = 0
    malformed: int = 0
    degraded: int = 0
    publish_failures: int = 0
    consecutive_publish_failures: int = 0
    dead_lettered: int = 0
    inconsistent_delay_flags: int = 0
    commit_failures: int = 0
    receive_failures: int = 0
    consecutive_receive_failures: int = 0


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


class RiskAssessmentPipeline:
    def __init__(
        self,
        classifier: RiskClassifier,
        provider: RiskFactorProvider,
        channel: EventChannel,
        *,
        lookup_timeout_seconds: float = 2.0,
        max_concurrency: int = 8,
        max_delivery_attempts: int = 5,
        unhealthy_after_publish_failures: int = 5,
        receive_retry_seconds: float = 1.0,
        unhealthy_after_receive_failures: int = 5,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if max_delivery_attempts < 1:
            raise ValueError("max_delivery_attempts must be >= 1")
        self.classifier = classifier
        self.provider = provider
        self.channel = channel
        self.lookup_timeout_seconds = lookup_timeout_seconds
        self.max_concurrency = max_concurrency
        self.max_delivery_attempts = max_delivery_attempts
        self.unhealthy_after_publish_failures = unhealthy_after_publish_failures
        self.receive_retry_seconds = receive_retry_seconds
        self.unhealthy_after_receive_failures = unhealthy_after_receive_failures
        self.stats = PipelineStats()

    # ── Single message ───────────────────────────────────────────────

    def parse(self, payload: Any) -> PredictedDelayRecord:
        """Validate an inbound payload. Raises MalformedRecord."""
        try:
            if isinstance(payload, PredictedDelayRecord):
                record = payload
            elif isinstance(payload, (str, bytes)):
                record = PredictedDelayRecord.model_validate_json(payload)
            else:
                record = PredictedDelayRecord.model_validate(payload)
        except ValidationError as exc:
            shipment_id = payload.get("shipmentId") if isinstance(payload, dict) else None
            raise MalformedRecord(
                _describe_validation_error(exc),
                shipment_id=shipment_id if isinstance(shipment_id, str) else None,
            ) from exc

        # model_construct() bypasses validation, so re-check the hard requirements
        if not isinstance(record.shipment_id, str) or not record.shipment_id.strip():
            raise MalformedRecord("shipmentId must not be empty")
        if record.delay_minutes < 0:
            raise MalformedRecord(
                f"delayInMinutes must be >= 0, got {record.delay_minutes}",
                shipment_id=record.shipment_id,
            )
        return record

    async def fetch_factors(self, record: PredictedDelayRecord) -> tuple[RiskFactors, bool]:
        """Return (factors, degraded). Lookup failures substitute neutral factors."""
        try:
            factors = await asyncio.wait_for(
                self.provider.lookup(record), timeout=self.lookup_timeout_seconds
            )
            # The classifier is only defined for scores in [0, 1]
            if not isinstance(factors, RiskFactors) or not 0.0 <= factors.route_risk_score <= 1.0:
                raise RiskFactorLookupError(
                    record.shipment_id, f"Provider returned invalid factors: {factors!r}"
                )
            return factors, False
        except asyncio.TimeoutError:
            failure = FactorLookupFailed(
                f"Risk factor lookup exceeded {self.lookup_timeout_seconds}s",
                shipment_id=record.shipment_id,
            )
        except RiskFactorLookupError as exc:
            failure = FactorLookupFailed(str(exc), shipment_id=record.shipment_id)
        except Exception as exc:
            logger.exception("Risk factor provider crashed for %s", record.shipment_id)
            failure = FactorLookupFailed(
                f"Risk factor provider error: {exc}", shipment_id=record.shipment_id
            )

        self.stats.degraded += 1
        logger.warning(
            "%s: %s; using neutral risk factors", failure.kind, failure
        )
        return NEUTRAL_RISK_FACTORS, True

    def assess(
        self, record: PredictedDelayRecord, factors: RiskFactors, degraded: bool
    ) -> RiskAssessedRecord:
        risk_level, reason = self.classifier.classify(
            record.delay_minutes, factors.route_risk_score, factors.vendor_reliable
        )
        if degraded:
            reason += DEGRADED_REASON_SUFFIX
        return RiskAssessedRecord(
            shipment_id=record.shipment_id,
            risk_level=risk_level,
            reason=reason,
            predicted_eta=record.predicted_eta,
            degraded=degraded,
        )

    async def process_one(self, message: InboundMessage) -> ProcessingOutcome:
        self.stats.processed += 1

        if message.attempt > self.max_delivery_attempts:
            error = ProcessingError(
                f"Gave up after {message.attempt - 1} delivery attempts"
            )
            await self._dead_letter(message, error)
            return ProcessingOutcome(
                message.message_id, OUTCOME_DEAD_LETTERED, error=error
            )

        try:
            record = self.parse(message.payload)
        except MalformedRecord as exc:
            self.stats.malformed += 1
            logger.warning(
                "Malformed predicted-delay event %s: %s", message.message_id, exc
            )
            # A payload does not fix itself on redelivery
            await self._dead_letter(message, exc)
            return ProcessingOutcome(
                message.message_id,
                OUTCOME_MALFORMED,
                shipment_id=exc.shipment_id,
                error=exc,
            )

        if not record.delay_flag_consistent:
            self.stats.inconsistent_delay_flags += 1
            logger.warning(
                "Shipment %s: isDelayed=%s disagrees with delayInMinutes=%d; "
                "classifying on delayInMinutes",
                record.shipment_id,
                record.is_delayed,
                record.delay_minutes,
            )

        committed = False
        try:
            factors, degraded = await self.fetch_factors(record)
            assessed = self.assess(record, factors, degraded)
            publish_error = await self._publish(assessed, message)
            if publish_error is None:
                committed = await self._commit(message)
        except asyncio.CancelledError:
            logger.info(
                "Processing of %s cancelled; releasing event %s for redelivery",
                record.shipment_id,
                message.message_id,
            )
            try:
                await self.channel.release(message, "cancelled before commit")
            except Exception:
                logger.exception("Release failed for event %s", message.message_id)
            raise

        if publish_error is not None:
            return await self._publish_failed(message, publish_error)

        return ProcessingOutcome(
            message.message_id,
            OUTCOME_PUBLISHED,
            shipment_id=assessed.shipment_id,
            record=assessed,
            committed=committed,
        )

    async def _publish(
        self, assessed: RiskAssessedRecord, message: InboundMessage
    ) -> PublishFailed | None:
        try:
            await self.channel.publish(assessed, source=message)
        except PublishFailed as exc:
            return exc
        except Exception as exc:
            logger.exception("Unexpected publish error for %s", assessed.shipment_id)
            return PublishFailed(
                str(exc) or type(exc).__name__, shipment_id=assessed.shipment_id
            )

        self.stats.published += 1
        self.stats.consecutive_publish_failures = 0
        logger.info(
            "Shipment %s assessed %s%s",
            assessed.shipment_id,
            assessed.risk_level.value,
            " (degraded)" if assessed.degraded else "",
        )
        return None

    async def _commit(self, message: InboundMessage) -> bool:
        try:
            await self.channel.commit(message)
        except Exception:
            # Published but not acknowledged: it will be redelivered and republished
            self.stats.commit_failures += 1
            logger.exception("Commit failed for event %s", message.message_id)
            return False
        return True

    async def _publish_failed(
        self, message: InboundMessage, error: PublishFailed
    ) -> ProcessingOutcome:
        self.stats.publish_failures += 1
        self.stats.consecutive_publish_failures += 1
        if self.stats.consecutive_publish_failures == self.unhealthy_after_publish_failures:
            logger.error(
                "Outbound channel rejected %d consecutive publishes; reporting unhealthy",
                self.stats.consecutive_publish_failures,
            )

        if message.attempt >= self.max_delivery_attempts:
            await self._dead_letter(message, error)
            return ProcessingOutcome(
                message.message_id,
                OUTCOME_DEAD_LETTERED,
                shipment_id=error.shipment_id,
                error=error,
            )

        logger.warning(
            "Publish failed for event %s (attempt %d/%d): %s",
            message.message_id,
            message.attempt,
            self.max_delivery_attempts,
            error,
        )
        await self.channel.release(message, str(error))
        return ProcessingOutcome(
            message.message_id, OUTCOME_RETRY, shipment_id=error.shipment_id, error=error
        )

    async def _dead_letter(self, message: InboundMessage, error: ProcessingError) -> None:
        self.stats.dead_lettered += 1
        await self.channel.dead_letter(message, f"{error.kind}: {error}")

    # ── Worker loop ──────────────────────────────────────────────────

    async def _process_and_release_slot(
        self, message: InboundMessage, slots: asyncio.Semaphore
    ) -> None:
        try:
            await self.process_one(message)
        except Exception:
            # Left uncommitted; the channel redelivers it
            logger.exception("Unexpected error processing event %s", message.message_id)
        finally:
            slots.release()

    def _receive_failed(self, exc: Exception) -> float:
        """Count a failed receive and return how long to back off."""
        self.stats.receive_failures += 1
        self.stats.consecutive_receive_failures += 1
        failures = self.stats.consecutive_receive_failures
        delay = min(
            self.receive_retry_seconds * 2 ** min(failures - 1, 10),
            MAX_RECEIVE_BACKOFF_SECONDS,
        )
        logger.error(
            "Inbound channel receive failed (%d in a row): %s; retrying in %.2fs",
            failures,
            exc,
            delay,
            exc_info=exc,
        )
        if failures == self.unhealthy_after_receive_failures:
            logger.error(
                "Inbound channel failed %d consecutive receives; reporting unhealthy",
                failures,
            )
        return delay

    async def run(self) -> None:
        """Consume until cancelled, with at most ``max_concurrency`` messages in flight."""
        slots = asyncio.Semaphore(self.max_concurrency)
        in_flight: set[asyncio.Task] = set()
        deliveries = self.channel.deliver()
        logger.info(
            "Risk assessment pipeline started (concurrency=%d, provider=%s)",
            self.max_concurrency,
            self.provider.get_type(),
        )
        try:
            while True:
                await slots.acquire()
                try:
                    message = await deliveries.__anext__()
                except StopAsyncIteration:
                    slots.release()
                    break
                except Exception as exc:
                    slots.release()
                    # The generator is finished once receive() raised; start a new one
                    await deliveries.aclose()
                    await asyncio.sleep(self._receive_failed(exc))
                    deliveries = self.channel.deliver()
                    continue
                except BaseException:
                    slots.release()
                    raise
                self.stats.consecutive_receive_failures = 0
                task = asyncio.create_task(self._process_and_release_slot(message, slots))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)
            if in_flight:
                await asyncio.gather(*in_flight)
        finally:
            for task in list(in_flight):
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
            await deliveries.aclose()
            logger.info("Risk assessment pipeline stopped")

    # ── Health ───────────────────────────────────────────────────────

    def is_healthy(self) -> bool:
        return (
            self.stats.consecutive_publish_failures < self.unhealthy_after_publish_failures
            and self.stats.consecutive_receive_failures < self.unhealthy_after_receive_failures
        )

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok" if self.is_healthy() else "unhealthy",
            "provider": self.provider.get_type(),
            "stats": asdict(self.stats),
        }
