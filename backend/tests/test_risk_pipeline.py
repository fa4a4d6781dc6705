import asyncio
from dataclasses import replace
from unittest.mock import Mock

import pytest

from app.core.errors import MalformedRecord, PublishFailed
from app.core.risk_classifier import MEDIUM_REASON, RiskClassifier
from app.data.base import FactorTimeout, RiskFactorProvider, RiskFactors
from app.data.static_factors import StaticRiskFactorProvider
from app.schemas.risk_event import PredictedDelayRecord, RiskLevel
from app.services.event_channel import InMemoryEventChannel
from app.services.risk_pipeline import (
    DEGRADED_REASON_SUFFIX,
    OUTCOME_DEAD_LETTERED,
    OUTCOME_MALFORMED,
    OUTCOME_PUBLISHED,
    OUTCOME_RETRY,
    RiskAssessmentPipeline,
)


class FlakyChannel(InMemoryEventChannel):
    """Rejects the first ``failures`` publishes."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def publish(self, record, *, source=None):
        if self.failures > 0:
            self.failures -= 1
            raise PublishFailed("broker unavailable", shipment_id=record.shipment_id)
        await super().publish(record, source=source)


class BlockingProvider(RiskFactorProvider):
    def __init__(self):
        self.started = asyncio.Event()

    def get_type(self) -> str:
        return "blocking"

    async def lookup(self, record):
        self.started.set()
        await asyncio.sleep(3600)


class ExplodingProvider(RiskFactorProvider):
    def get_type(self) -> str:
        return "exploding"

    async def lookup(self, record):
        raise RuntimeError("connection reset")


class TimingOutProvider(RiskFactorProvider):
    def get_type(self) -> str:
        return "timing-out"

    async def lookup(self, record):
        raise FactorTimeout(record.shipment_id)


def make_pipeline(provider, channel=None, classifier=None, **kwargs):
    return RiskAssessmentPipeline(
        classifier or RiskClassifier(),
        provider,
        channel or InMemoryEventChannel(),
        **kwargs,
    )


async def deliver(channel, payload):
    await channel.submit(payload)
    return await channel.receive()


@pytest.mark.asyncio
async def test_end_to_end_180_minutes_is_medium_not_high(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel)

    message = await deliver(channel, make_payload("SHIP1234", 180))
    outcome = await pipeline.process_one(message)

    assert outcome.status == OUTCOME_PUBLISHED
    assert outcome.committed is True
    assert channel.committed == [message.message_id]
    assert len(channel.published) == 1
    wire = channel.published[0].to_wire()
    assert wire == {
        "shipmentId": "SHIP1234",
        "riskLevel": "MEDIUM",
        "reason": MEDIUM_REASON,
    }


@pytest.mark.asyncio
async def test_181_minutes_with_risky_route_and_vendor_is_high(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel)

    outcome = await pipeline.process_one(await deliver(channel, make_payload("SHIP1234", 181)))

    assert outcome.record.risk_level is RiskLevel.HIGH
    assert "route risk score 0.8)" in outcome.record.reason
    assert outcome.record.degraded is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"shipmentId": "SHIP1", "predictedETA": "2024-05-01T12:00:00Z", "delayInMinutes": -5, "isDelayed": True},
        {"shipmentId": "", "predictedETA": "2024-05-01T12:00:00Z", "delayInMinutes": 30, "isDelayed": True},
        {"shipmentId": "   ", "predictedETA": "2024-05-01T12:00:00Z", "delayInMinutes": 30, "isDelayed": True},
        {"shipmentId": "SHIP1", "delayInMinutes": 30, "isDelayed": True},
        {"shipmentId": "SHIP1", "predictedETA": "not-a-date", "delayInMinutes": 30, "isDelayed": True},
        "{not json",
        42,
    ],
)
async def test_malformed_never_reaches_classifier_or_publish(payload) -> None:
    channel = InMemoryEventChannel()
    provider = StaticRiskFactorProvider(default=RiskFactors(0.9, False))
    classifier = Mock(wraps=RiskClassifier())
    pipeline = make_pipeline(provider, channel, classifier=classifier)

    message = await deliver(channel, payload)
    outcome = await pipeline.process_one(message)

    assert outcome.status == OUTCOME_MALFORMED
    assert isinstance(outcome.error, MalformedRecord)
    classifier.classify.assert_not_called()
    assert provider.calls == []
    assert channel.published == []
    assert channel.committed == []
    assert [m.message_id for m, _ in channel.dead_letters] == [message.message_id]
    assert channel.dead_letters[0][1].startswith("malformed_record")
    assert pipeline.stats.malformed == 1


def test_parse_rechecks_records_built_without_validation(risky_provider) -> None:
    pipeline = make_pipeline(risky_provider)
    record = PredictedDelayRecord.model_construct(
        shipment_id="SHIP1", predicted_eta=None, delay_minutes=-5, is_delayed=False
    )
    with pytest.raises(MalformedRecord):
        pipeline.parse(record)


@pytest.mark.asyncio
async def test_shipment_id_is_copied_verbatim(make_payload) -> None:
    channel = InMemoryEventChannel()
    provider = StaticRiskFactorProvider(default=RiskFactors(0.3, True))
    pipeline = make_pipeline(provider, channel)

    for shipment_id in ("SHIP-1", " padded ", "ünïcode/42", "x" * 200):
        outcome = await pipeline.process_one(await deliver(channel, make_payload(shipment_id, 5)))
        assert outcome.record.shipment_id == shipment_id

    assert [r.shipment_id for r in channel.published] == [
        "SHIP-1",
        " padded ",
        "ünïcode/42",
        "x" * 200,
    ]


@pytest.mark.asyncio
async def test_redelivery_produces_equivalent_assessment(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel)
    payload = make_payload("SHIP1234", 200)

    message = await deliver(channel, payload)
    first = await pipeline.process_one(message)
    # Crash before the ack reached the broker: same event comes back
    second = await pipeline.process_one(message)

    assert len(channel.published) == 2
    a, b = channel.published
    assert (a.shipment_id, a.risk_level, a.reason) == (b.shipment_id, b.risk_level, b.reason)
    assert first.record == second.record


@pytest.mark.asyncio
async def test_missing_factors_substitute_neutral_defaults(make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(StaticRiskFactorProvider(), channel)

    medium = await pipeline.process_one(await deliver(channel, make_payload("UNKNOWN", 500)))
    low = await pipeline.process_one(await deliver(channel, make_payload("UNKNOWN", 30)))

    # Neutral factors (0.5, reliable) can never produce HIGH
    assert medium.record.risk_level is RiskLevel.MEDIUM
    assert medium.record.reason == MEDIUM_REASON + DEGRADED_REASON_SUFFIX
    assert medium.record.degraded is True
    assert low.record.risk_level is RiskLevel.LOW
    assert low.record.reason.endswith(DEGRADED_REASON_SUFFIX)
    assert pipeline.stats.degraded == 2
    assert len(channel.committed) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("provider", [BlockingProvider(), ExplodingProvider(), TimingOutProvider()])
async def test_lookup_failures_are_degraded_not_fatal(provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(provider, channel, lookup_timeout_seconds=0.05)

    outcome = await pipeline.process_one(await deliver(channel, make_payload("SHIP9", 240)))

    assert outcome.status == OUTCOME_PUBLISHED
    assert outcome.record.degraded is True
    assert outcome.record.risk_level is RiskLevel.MEDIUM
    assert channel.committed == [outcome.message_id]


@pytest.mark.asyncio
async def test_publish_failure_leaves_event_uncommitted_and_retries(risky_provider, make_payload) -> None:
    channel = FlakyChannel(failures=1)
    pipeline = make_pipeline(risky_provider, channel)

    message = await deliver(channel, make_payload("SHIP1234", 181))
    outcome = await pipeline.process_one(message)

    assert outcome.status == OUTCOME_RETRY
    assert isinstance(outcome.error, PublishFailed)
    assert channel.committed == []
    assert channel.released == [message.message_id]
    assert pipeline.stats.consecutive_publish_failures == 1

    redelivered = await channel.receive()
    assert redelivered.message_id == message.message_id
    assert redelivered.attempt == 2

    retry = await pipeline.process_one(redelivered)
    assert retry.status == OUTCOME_PUBLISHED
    assert retry.record.risk_level is RiskLevel.HIGH
    assert channel.committed == [message.message_id]
    assert pipeline.stats.consecutive_publish_failures == 0


@pytest.mark.asyncio
async def test_publish_failures_dead_letter_at_max_attempts(risky_provider, make_payload) -> None:
    channel = FlakyChannel(failures=10)
    pipeline = make_pipeline(risky_provider, channel, max_delivery_attempts=2)

    await channel.submit(make_payload("SHIP1234", 90))
    first = await pipeline.process_one(await channel.receive())
    second = await pipeline.process_one(await channel.receive())

    assert first.status == OUTCOME_RETRY
    assert second.status == OUTCOME_DEAD_LETTERED
    assert channel.pending() == 0
    assert len(channel.dead_letters) == 1
    assert channel.dead_letters[0][1].startswith("publish_failed")


@pytest.mark.asyncio
async def test_event_past_max_attempts_is_dead_lettered_on_arrival(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel, max_delivery_attempts=3)

    message = await deliver(channel, make_payload())

    outcome = await pipeline.process_one(replace(message, attempt=4))

    assert outcome.status == OUTCOME_DEAD_LETTERED
    assert channel.published == []


@pytest.mark.asyncio
async def test_health_degrades_after_consecutive_publish_failures(risky_provider, make_payload) -> None:
    channel = FlakyChannel(failures=3)
    pipeline = make_pipeline(
        risky_provider, channel, max_delivery_attempts=10, unhealthy_after_publish_failures=3
    )
    await channel.submit(make_payload())

    for _ in range(3):
        await pipeline.process_one(await channel.receive())
    assert pipeline.health()["status"] == "unhealthy"
    assert pipeline.health()["stats"]["publish_failures"] == 3

    await pipeline.process_one(await channel.receive())
    assert pipeline.is_healthy()


@pytest.mark.asyncio
async def test_cancellation_before_publish_releases_event(make_payload) -> None:
    channel = InMemoryEventChannel()
    provider = BlockingProvider()
    pipeline = make_pipeline(provider, channel, lookup_timeout_seconds=60)

    message = await deliver(channel, make_payload("SHIP7", 300))
    task = asyncio.create_task(pipeline.process_one(message))
    await provider.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert channel.published == []
    assert channel.committed == []
    assert channel.released == [message.message_id]
    assert channel.pending() == 1


@pytest.mark.asyncio
async def test_inconsistent_is_delayed_flag_is_flagged(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel)

    outcome = await pipeline.process_one(
        await deliver(channel, make_payload("SHIP1234", 200, is_delayed=False))
    )

    assert pipeline.stats.inconsistent_delay_flags == 1
    assert outcome.record.risk_level is RiskLevel.HIGH


@pytest.mark.asyncio
async def test_json_string_payload_is_accepted(risky_provider) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(risky_provider, channel)
    raw = '{"shipmentId": "SAFE1", "predictedETA": "2024-05-01T12:00:00+02:00", "delayInMinutes": 61, "isDelayed": true}'

    outcome = await pipeline.process_one(await deliver(channel, raw))

    assert outcome.record.risk_level is RiskLevel.MEDIUM
    assert outcome.record.predicted_eta.utcoffset().total_seconds() == 0
    assert outcome.record.predicted_eta.hour == 10


class CountingProvider(RiskFactorProvider):
    def __init__(self):
        self.active = 0
        self.max_active = 0

    def get_type(self) -> str:
        return "counting"

    async def lookup(self, record):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return RiskFactors(0.2, True)


@pytest.mark.asyncio
async def test_run_processes_concurrently_within_bound(make_payload) -> None:
    channel = InMemoryEventChannel()
    provider = CountingProvider()
    pipeline = make_pipeline(provider, channel, max_concurrency=2)
    for i in range(6):
        await channel.submit(make_payload(f"SHIP{i}", i * 30))

    runner = asyncio.create_task(pipeline.run())
    for _ in range(200):
        if len(channel.committed) == 6:
            break
        await asyncio.sleep(0.01)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert sorted(channel.committed) == [1, 2, 3, 4, 5, 6]
    assert 1 < provider.max_active <= 2
    assert {r.shipment_id for r in channel.published} == {f"SHIP{i}" for i in range(6)}


@pytest.mark.asyncio
async def test_publish_listeners_see_records_and_cannot_break_publish(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel()
    seen = []

    async def record_it(record):
        seen.append(record.to_wire())

    async def broken(record):
        raise RuntimeError("dashboard down")

    channel.add_publish_listener(broken)
    channel.add_publish_listener(record_it)
    pipeline = make_pipeline(risky_provider, channel)

    outcome = await pipeline.process_one(await deliver(channel, make_payload("SAFE1", 10)))

    assert outcome.committed is True
    assert seen == [{"shipmentId": "SAFE1", "riskLevel": "LOW", "reason": "Minor delay or low-risk route"}]


def test_pipeline_rejects_bad_limits(risky_provider) -> None:
    with pytest.raises(ValueError):
        make_pipeline(risky_provider, max_concurrency=0)
    with pytest.raises(ValueError):
        make_pipeline(risky_provider, max_delivery_attempts=0)


class OutOfRangeProvider(RiskFactorProvider):
    def get_type(self) -> str:
        return "out-of-range"

    async def lookup(self, record):
        return RiskFactors(route_risk_score=1.5, vendor_reliable=False)


@pytest.mark.asyncio
async def test_out_of_range_factors_are_treated_as_lookup_failure(make_payload) -> None:
    channel = InMemoryEventChannel()
    pipeline = make_pipeline(OutOfRangeProvider(), channel)

    outcome = await pipeline.process_one(await deliver(channel, make_payload("SHIP5", 400)))

    assert outcome.record.degraded is True
    assert outcome.record.risk_level is RiskLevel.MEDIUM


class BrokenReceiveChannel(InMemoryEventChannel):
    """Raises on the first ``failures`` receives."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def receive(self):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("db connection reset")
        return await super().receive()


@pytest.mark.asyncio
async def test_run_survives_receive_failure_and_keeps_consuming(risky_provider, make_payload) -> None:
    channel = BrokenReceiveChannel(failures=1)
    pipeline = make_pipeline(risky_provider, channel, receive_retry_seconds=0.01)
    await channel.submit(make_payload("SHIP1234", 181))

    runner = asyncio.create_task(pipeline.run())
    for _ in range(200):
        if channel.committed:
            break
        await asyncio.sleep(0.01)

    assert not runner.done()
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert channel.committed == [1]
    assert channel.published[0].risk_level is RiskLevel.HIGH
    assert pipeline.stats.receive_failures == 1
    assert pipeline.stats.consecutive_receive_failures == 0
    assert pipeline.is_healthy()


@pytest.mark.asyncio
async def test_persistent_receive_failures_report_unhealthy(risky_provider) -> None:
    channel = BrokenReceiveChannel(failures=1_000)
    pipeline = make_pipeline(
        risky_provider,
        channel,
        receive_retry_seconds=0.001,
        unhealthy_after_receive_failures=3,
    )

    runner = asyncio.create_task(pipeline.run())
    for _ in range(200):
        if not pipeline.is_healthy():
            break
        await asyncio.sleep(0.01)

    assert pipeline.health()["status"] == "unhealthy"
    assert pipeline.health()["stats"]["consecutive_receive_failures"] >= 3
    # Still retrying, not dead
    assert not runner.done()
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner


@pytest.mark.asyncio
async def test_stalled_publish_listener_does_not_block_commit(risky_provider, make_payload) -> None:
    channel = InMemoryEventChannel(listener_timeout_seconds=0.05)
    seen = []

    async def stalled(record):
        await asyncio.sleep(3600)

    async def record_it(record):
        seen.append(record.shipment_id)

    channel.add_publish_listener(stalled)
    channel.add_publish_listener(record_it)
    pipeline = make_pipeline(risky_provider, channel)

    outcome = await asyncio.wait_for(
        pipeline.process_one(await deliver(channel, make_payload("SAFE1", 10))), timeout=5
    )

    assert outcome.committed is True
    assert channel.committed == [outcome.message_id]
    assert seen == ["SAFE1"]
