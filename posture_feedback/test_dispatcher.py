"""Notification dispatcher and delivery channels"""
import asyncio
from datetime import datetime

import pytest

from posture_feedback import messages
from posture_feedback.channels import AudioCueChannel, HapticChannel, SystemNotificationChannel
from posture_feedback.conftest import FakeClock, RecordingChannel
from posture_feedback.dispatcher import NotificationDispatcher, fill_template, time_of_day
from posture_feedback.models import (
    FeedbackMessage,
    InterventionLevel,
    NotificationSettings,
    NotificationType,
)


def message(message_id="feedback_1", message_type=NotificationType.INFO, duration=None):
    return FeedbackMessage(id=message_id, type=message_type, title="t", message="m",
                           timestamp=0.0, duration=duration)


@pytest.fixture
def composer(clock):
    return NotificationDispatcher(channels=[], clock=clock)


@pytest.fixture
async def dispatcher(clock, channel):
    dispatcher = NotificationDispatcher(channels=[channel], clock=clock)
    yield dispatcher
    dispatcher.shutdown()


@pytest.mark.parametrize("hour,bucket", [
    (5, "night"), (6, "morning"), (11, "morning"), (12, "afternoon"),
    (18, "evening"), (21, "evening"), (22, "night"), (0, "night"),
])
def test_time_of_day_buckets(hour, bucket):
    assert time_of_day(hour) == bucket


def test_compose_uses_time_of_day_template(composer):
    composed = composer.compose(InterventionLevel.GENTLE, -2.0, 40)

    assert composed.message == messages.MESSAGE_TEMPLATES["gentle"]["morning"]
    assert composed.type == NotificationType.INFO
    assert composed.title == messages.LEVEL_TITLES["gentle"]
    assert composed.duration == 3
    assert [a.action for a in composed.actions] == ["dismiss", "snooze"]
    assert composed.actions[1].payload == {"minutes": 5}
    assert composed.id.startswith("feedback_")


def test_time_of_day_messages_carry_angle_and_duration(composer):
    active = composer.compose(InterventionLevel.ACTIVE, -4.26, 125)
    rest = composer.compose(InterventionLevel.BREAK, -6.0, 3720)

    assert "-4.3°" in active.message
    assert rest.message.startswith("62 minutes")
    assert "{" not in active.message + rest.message


def test_compose_falls_back_to_level_default():
    clock = FakeClock(datetime(2024, 1, 15, 23, 30).timestamp())
    templates = {"active": {"morning": "unused", "default": "Angle {angle}° for {duration} min"}}
    dispatcher = NotificationDispatcher(channels=[], clock=clock, templates=templates)

    composed = dispatcher.compose(InterventionLevel.ACTIVE, -4.26, 125)

    assert composed.message == "Angle -4.3° for 2 min"
    assert composed.type == NotificationType.WARNING
    assert composed.duration == 5


def test_compose_without_templates_uses_fallback(composer):
    composed = composer.compose(InterventionLevel.NONE, 0.0, 0)

    assert composed.title == messages.FALLBACK_TITLE
    assert composed.message == messages.FALLBACK_MESSAGE


def test_break_message_offers_exercise(composer):
    composed = composer.compose(InterventionLevel.BREAK, -5.0, 3700)

    assert [a.action for a in composed.actions] == ["dismiss", "snooze", "exercise", "settings"]
    assert composed.duration == 10


def test_fill_template_rounds_values():
    assert fill_template("{angle}/{duration}", -12.349, 59.9) == "-12.3/0"


def test_composed_ids_are_unique(composer):
    ids = {composer.compose(InterventionLevel.GENTLE, -2.0, 0).id for _ in range(50)}
    assert len(ids) == 50


def test_supplementary_messages(composer):
    positive = composer.compose_positive(1861)
    exercise = composer.compose_exercise()
    follow_up = composer.compose_follow_up()

    assert positive.type == NotificationType.SUCCESS
    assert "31" in positive.message
    assert exercise.message[2:] in messages.EXERCISES
    assert exercise.duration == 15
    assert follow_up.type == NotificationType.WARNING
    assert follow_up.duration == 6


async def test_dispatch_delivers_and_dedups(dispatcher, channel):
    msg = message()

    first = await dispatcher.dispatch(msg)
    second = await dispatcher.dispatch(msg)

    assert first == {"message_id": msg.id, "status": "delivered", "channels": {"recording": "ok"}}
    assert second["status"] == "duplicate"
    assert channel.delivered == [msg]
    assert dispatcher.get_active_messages() == [msg]


async def test_failing_channel_does_not_block_others(clock):
    good = RecordingChannel("good")
    bad = RecordingChannel("bad", fail=True)
    slow = RecordingChannel("slow", delay=1.0)
    dispatcher = NotificationDispatcher(channels=[bad, slow, good], clock=clock, channel_timeout=0.05)

    result = await dispatcher.dispatch(message())

    assert result["status"] == "partial"
    assert result["channels"] == {"bad": "failed", "slow": "timeout", "good": "ok"}
    assert len(good.delivered) == 1
    dispatcher.shutdown()


async def test_all_channels_failing_is_reported(clock):
    dispatcher = NotificationDispatcher(channels=[RecordingChannel(fail=True)], clock=clock)

    result = await dispatcher.dispatch(message())

    assert result["status"] == "failed"
    assert len(dispatcher.get_active_messages()) == 1
    dispatcher.shutdown()


async def test_channel_with_failed_setup_is_skipped(clock):
    broken = RecordingChannel("broken", setup_error=OSError("no audio device"))
    good = RecordingChannel("good")
    dispatcher = NotificationDispatcher(channels=[broken, good], clock=clock)

    result = await dispatcher.dispatch(message())

    assert broken.available is False
    assert result["channels"] == {"good": "ok"}
    dispatcher.shutdown()


async def test_disabled_and_snoozed_deliver_nothing(dispatcher, channel):
    dispatcher.update_settings(NotificationSettings(enabled=False))
    assert (await dispatcher.dispatch(message("a")))["status"] == "disabled"

    dispatcher.update_settings(NotificationSettings())
    dispatcher.snooze(10)
    assert dispatcher.is_snoozed
    assert (await dispatcher.dispatch(message("b")))["status"] == "snoozed"

    assert channel.delivered == []
    assert dispatcher.get_active_messages() == []


async def test_snooze_ends_on_its_own(dispatcher, channel):
    dispatcher.snooze(0.001)
    await asyncio.sleep(0.15)

    assert not dispatcher.is_snoozed
    assert dispatcher.snoozed_until is None
    assert (await dispatcher.dispatch(message()))["status"] == "delivered"


async def test_snooze_after_shutdown_is_refused(dispatcher):
    dispatcher.shutdown()

    assert dispatcher.snooze(5) is None
    assert not dispatcher.is_snoozed

    dispatcher.resume()
    assert (await dispatcher.dispatch(message()))["status"] == "delivered"


async def test_resume_clears_a_snooze_whose_timer_is_gone(dispatcher):
    dispatcher.snooze(0.0001)
    dispatcher.active = False
    await asyncio.sleep(0.05)
    assert dispatcher.is_snoozed

    dispatcher.resume()

    assert not dispatcher.is_snoozed
    assert dispatcher.snoozed_until is None


async def test_auto_dismiss_expires_message(dispatcher):
    events = []
    dispatcher.subscribe(lambda event, payload: events.append((event, payload)))

    await dispatcher.dispatch(message(duration=0.05))
    await asyncio.sleep(0.15)

    assert dispatcher.get_active_messages() == []
    assert events[-1] == ("dismissed", {"message_id": "feedback_1", "reason": "expired"})


async def test_dismiss_is_idempotent(dispatcher):
    await dispatcher.dispatch(message(duration=60))

    assert dispatcher.dismiss("feedback_1") is True
    assert dispatcher.dismiss("feedback_1") is False
    assert dispatcher.dismiss("never_existed") is False
    assert dispatcher._dismiss_timers == {}


async def test_dismiss_all(dispatcher):
    await dispatcher.dispatch(message("a", duration=60))
    await dispatcher.dispatch(message("b", duration=60))

    assert dispatcher.dismiss_all() == 2
    assert dispatcher.dismiss_all() == 0
    assert dispatcher.get_active_messages() == []


async def test_subscribers_are_isolated(dispatcher, channel):
    received = []

    def broken(event, payload):
        raise ValueError("subscriber bug")

    dispatcher.subscribe(broken)
    unsubscribe = dispatcher.subscribe(lambda event, payload: received.append(event))

    await dispatcher.dispatch(message("a"))
    unsubscribe()
    await dispatcher.dispatch(message("b"))

    assert received == ["message"]
    assert len(channel.delivered) == 2


async def test_shutdown_cancels_timers(dispatcher):
    await dispatcher.dispatch(message(duration=60))
    dispatcher.snooze(5)
    timers = list(dispatcher._dismiss_timers.values()) + [dispatcher._snooze_task]

    dispatcher.shutdown()
    await asyncio.sleep(0.01)

    assert all(t.cancelled() for t in timers)
    assert not dispatcher.is_snoozed
    assert (await dispatcher.dispatch(message("late")))["status"] == "inactive"


async def test_audio_channel_builds_scaled_tone():
    played = []
    audio = AudioCueChannel(player=played.append)
    settings = NotificationSettings(volume=50)

    await audio.deliver(message(message_type=NotificationType.DANGER), settings)

    assert played == [{
        "message_id": "feedback_1",
        "waveform": "sine",
        "frequency_hz": 1200,
        "duration_s": 0.8,
        "volume": 0.5,
        "ramp_s": 0.1,
    }]
    assert audio.wants(message(), NotificationSettings(sound=False)) is False


async def test_system_notification_requires_interaction_for_danger():
    shown = []

    async def notifier(payload):
        shown.append(payload)

    system = SystemNotificationChannel(notifier=notifier)
    settings = NotificationSettings(sound=False)

    await system.deliver(message("d", NotificationType.DANGER, duration=8), settings)
    await system.deliver(message("w", NotificationType.WARNING), settings)

    assert shown[0]["require_interaction"] is True
    assert shown[0]["tag"] == "d"
    assert shown[0]["silent"] is True
    assert shown[0]["timeout_s"] == 8
    assert shown[1]["require_interaction"] is False
    assert system.wants(message(), NotificationSettings(system_notifications=False)) is False


async def test_haptic_only_for_danger(clock):
    vibrations = []
    haptic = HapticChannel(vibrator=vibrations.append)
    dispatcher = NotificationDispatcher(channels=[haptic], clock=clock)

    await dispatcher.dispatch(message("info", NotificationType.INFO))
    result = await dispatcher.dispatch(message("danger", NotificationType.DANGER))

    assert result["channels"] == {"haptic": "ok"}
    assert vibrations == [{"message_id": "danger", "pattern_ms": [200, 100, 200]}]
    dispatcher.shutdown()
