# Shared fixtures: a controllable clock and channels that record what they receive
import asyncio
from datetime import datetime

import pytest

from posture_feedback.channels import DeliveryChannel
from posture_feedback.engine import EscalationEngine
from posture_feedback.models import Classification, PostureSample, UserProfile

# 09:00 local time, inside the morning bucket
MORNING = datetime(2024, 1, 15, 9, 0, 0).timestamp()


class FakeClock:
    def __init__(self, now: float = MORNING):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class RecordingChannel(DeliveryChannel):
    def __init__(self, name="recording", fail=False, delay=0.0, setup_error=None):
        super().__init__()
        self.name = name
        self.fail = fail
        self.delay = delay
        self.setup_error = setup_error
        self.delivered = []

    def _setup(self):
        if self.setup_error:
            raise self.setup_error

    async def deliver(self, message, settings):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("channel down")
        self.delivered.append(message)


def make_sample(timestamp, classification=Classification.MILD, angle=None, reason=None):
    if angle is None:
        angle = {
            Classification.NORMAL: 2.0,
            Classification.MILD: -2.0,
            Classification.SEVERE: -8.0,
        }[classification]
    if reason:
        return PostureSample(timestamp=timestamp, unmeasurable_reason=reason)
    return PostureSample(angle=angle, classification=classification, confidence=0.9, timestamp=timestamp)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
async def make_engine(clock, channel):
    """Factory for started engines; every engine is stopped on teardown"""
    engines = []

    async def factory(profile=None, settings=None, channels=None, follow_up_delay=1000.0):
        engine = EscalationEngine(
            settings=settings,
            profile=profile or UserProfile(),
            channels=channels if channels is not None else [channel],
            clock=clock,
            follow_up_delay=follow_up_delay
        )
        await engine.start()
        engines.append(engine)
        return engine

    yield factory

    for engine in engines:
        await engine.stop()
