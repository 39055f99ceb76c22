# Notification Dispatcher - message composition, channel fan-out and active-message tracking
import asyncio
import random
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from posture_feedback import config
from posture_feedback import logger
from posture_feedback import messages
from posture_feedback.channels import DeliveryChannel, build_default_channels
from posture_feedback.models import (
    FeedbackAction,
    FeedbackMessage,
    InterventionLevel,
    NotificationSettings,
    NotificationType,
)

Subscriber = Callable[[str, Any], None]


def time_of_day(hour: int) -> str:
    """Bucket a local hour into morning/afternoon/evening/night"""
    for bucket, (start, end) in config.TIME_OF_DAY_HOURS.items():
        if start <= hour < end:
            return bucket
    return "night"


def fill_template(template: str, angle: float, duration_seconds: float) -> str:
    return (template
            .replace("{angle}", f"{angle:.1f}")
            .replace("{duration}", str(int(duration_seconds // 60))))


def _actions(specs: List[Dict[str, Any]]) -> List[FeedbackAction]:
    return [FeedbackAction(**spec) for spec in specs]


class NotificationDispatcher:
    """
    Owns the active-message set and every timer that touches it.

    Channel calls fan out concurrently and report back through dispatch();
    auto-dismiss and snooze timers take the shared lock before mutating.
    """

    def __init__(self,
                 settings: Optional[NotificationSettings] = None,
                 channels: Optional[List[DeliveryChannel]] = None,
                 clock: Callable[[], float] = time.time,
                 lock: Optional[asyncio.Lock] = None,
                 templates: Optional[Dict[str, Dict[str, str]]] = None,
                 channel_timeout: float = config.CHANNEL_TIMEOUT_SECONDS):
        self.settings = settings or NotificationSettings()
        self.channels = list(channels) if channels is not None else build_default_channels()
        self.clock = clock
        self.lock = lock or asyncio.Lock()
        self.templates = templates if templates is not None else messages.MESSAGE_TEMPLATES
        self.channel_timeout = channel_timeout
        self.active = True
        self.snoozed_until: Optional[float] = None

        self._snoozed = False
        self._active_messages: Dict[str, FeedbackMessage] = {}
        self._dismiss_timers: Dict[str, asyncio.Task] = {}
        self._snooze_task: Optional[asyncio.Task] = None
        self._subscribers: List[Subscriber] = []

        for channel in self.channels:
            channel.setup()

    # ------------------------------------------------------------------
    # Settings & subscriptions
    # ------------------------------------------------------------------

    def update_settings(self, settings: NotificationSettings):
        self.settings = settings

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register for (event, payload) callbacks; returns an unsubscribe function"""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str, payload: Any):
        for callback in list(self._subscribers):
            try:
                callback(event, payload)
            except Exception as e:
                logger.log_error("Subscriber Failed", e, {"event": event})

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}_{int(self.clock() * 1000)}_{uuid.uuid4().hex[:9]}"

    def current_time_of_day(self) -> str:
        return time_of_day(datetime.fromtimestamp(self.clock()).hour)

    def compose(self, level: InterventionLevel, angle: float, duration_seconds: float) -> FeedbackMessage:
        """
        Build the message for an escalation level

        Args:
            level: Intervention level that fired
            angle: Current neck angle in degrees
            duration_seconds: How long the adverse run has lasted

        Returns:
            FeedbackMessage with time-of-day text, actions and auto-dismiss duration
        """
        key = InterventionLevel(level).value
        level_templates = self.templates.get(key)

        if level_templates:
            bucket = self.current_time_of_day()
            text = level_templates.get(bucket) or level_templates["default"]
            message_type = NotificationType(messages.LEVEL_TYPES.get(key, "info"))
            title = messages.LEVEL_TITLES.get(key, messages.FALLBACK_TITLE)
        else:
            text = messages.FALLBACK_MESSAGE
            message_type = NotificationType.INFO
            title = messages.FALLBACK_TITLE

        action_specs = list(messages.BASE_ACTIONS)
        if key == InterventionLevel.BREAK.value:
            action_specs += messages.BREAK_ACTIONS

        return FeedbackMessage(
            id=self._new_id("feedback"),
            type=message_type,
            title=title,
            message=fill_template(text, angle, duration_seconds),
            timestamp=self.clock(),
            duration=config.DISMISS_SECONDS.get(key, config.DEFAULT_DISMISS_SECONDS),
            actions=_actions(action_specs),
            level=InterventionLevel(level)
        )

    def compose_follow_up(self) -> FeedbackMessage:
        return FeedbackMessage(
            id=self._new_id("followup"),
            type=NotificationType.WARNING,
            title=messages.FOLLOW_UP_TITLE,
            message=messages.FOLLOW_UP_MESSAGE,
            timestamp=self.clock(),
            duration=config.FOLLOW_UP_DISMISS_SECONDS,
            level=InterventionLevel.INSISTENT,
            kind="follow_up"
        )

    def compose_positive(self, good_seconds: float) -> FeedbackMessage:
        minutes = int(good_seconds // 60)
        return FeedbackMessage(
            id=self._new_id("positive"),
            type=NotificationType.SUCCESS,
            title=messages.POSITIVE_TITLE,
            message=random.choice(messages.POSITIVE_MESSAGES).format(minutes=minutes),
            timestamp=self.clock(),
            duration=config.POSITIVE_DISMISS_SECONDS,
            kind="positive"
        )

    def compose_exercise(self) -> FeedbackMessage:
        # Uniform pick; the same exercise may come up twice in a row
        exercise = random.choice(messages.EXERCISES)
        return FeedbackMessage(
            id=self._new_id("exercise"),
            type=NotificationType.INFO,
            title=messages.EXERCISE_TITLE,
            message=f"💪 {exercise}",
            timestamp=self.clock(),
            duration=config.EXERCISE_DISMISS_SECONDS,
            actions=_actions(messages.EXERCISE_ACTIONS),
            level=InterventionLevel.BREAK,
            kind="exercise"
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    @property
    def is_snoozed(self) -> bool:
        return self._snoozed

    async def _deliver_to(self, channel: DeliveryChannel, message: FeedbackMessage) -> str:
        try:
            await asyncio.wait_for(channel.deliver(message, self.settings), timeout=self.channel_timeout)
            return "ok"
        except asyncio.TimeoutError:
            logger.log_warning("Channel Timeout", {
                "channel": channel.name,
                "message_id": message.id,
                "timeout_s": self.channel_timeout
            })
            return "timeout"
        except Exception as e:
            logger.log_error("Channel Delivery Failed", e, {
                "channel": channel.name,
                "message_id": message.id
            })
            return "failed"

    async def dispatch(self, message: FeedbackMessage) -> Dict[str, Any]:
        """
        Deliver a message to every enabled channel

        Args:
            message: Composed FeedbackMessage

        Returns:
            Dict with message_id, status and per-channel outcomes
        """
        result = {"message_id": message.id, "status": None, "channels": {}}

        if not self.active:
            result["status"] = "inactive"
            return result
        if not self.settings.enabled:
            result["status"] = "disabled"
            return result
        if self._snoozed:
            result["status"] = "snoozed"
            return result
        if message.id in self._active_messages:
            result["status"] = "duplicate"
            return result

        self._active_messages[message.id] = message
        self.publish("message", message)

        targets = [
            channel for channel in self.channels
            if channel.available and channel.wants(message, self.settings)
        ]
        outcomes = await asyncio.gather(*(self._deliver_to(channel, message) for channel in targets))
        result["channels"] = {channel.name: outcome for channel, outcome in zip(targets, outcomes)}

        delivered = sum(1 for outcome in outcomes if outcome == "ok")
        if not targets:
            result["status"] = "published"
        elif delivered == len(targets):
            result["status"] = "delivered"
        elif delivered > 0:
            result["status"] = "partial"
        else:
            result["status"] = "failed"

        if message.duration and message.id in self._active_messages:
            self._schedule_dismiss(message.id, message.duration)

        logger.log_notify(f"Message {result['status'].title()}", {
            "message_id": message.id,
            "type": message.type.value,
            "title": message.title,
            "channels": result["channels"]
        })
        return result

    # ------------------------------------------------------------------
    # Dismissal
    # ------------------------------------------------------------------

    def _schedule_dismiss(self, message_id: str, seconds: float):
        previous = self._dismiss_timers.pop(message_id, None)
        if previous:
            previous.cancel()
        self._dismiss_timers[message_id] = asyncio.create_task(self._auto_dismiss(message_id, seconds))

    async def _auto_dismiss(self, message_id: str, seconds: float):
        await asyncio.sleep(seconds)
        if not self.active:
            return
        async with self.lock:
            self._dismiss_timers.pop(message_id, None)
            self._remove(message_id, "expired")

    def _remove(self, message_id: str, reason: str) -> bool:
        if self._active_messages.pop(message_id, None) is None:
            return False
        self.publish("dismissed", {"message_id": message_id, "reason": reason})
        return True

    def dismiss(self, message_id: str) -> bool:
        """Remove an active message; unknown or already dismissed ids are ignored"""
        timer = self._dismiss_timers.pop(message_id, None)
        if timer:
            timer.cancel()
        return self._remove(message_id, "dismissed")

    def dismiss_all(self) -> int:
        for timer in self._dismiss_timers.values():
            timer.cancel()
        self._dismiss_timers.clear()
        count = 0
        for message_id in list(self._active_messages):
            if self._remove(message_id, "dismissed"):
                count += 1
        return count

    def get_active_messages(self) -> List[FeedbackMessage]:
        return list(self._active_messages.values())

    # ------------------------------------------------------------------
    # Snooze & lifecycle
    # ------------------------------------------------------------------

    def snooze(self, minutes: float) -> Optional[float]:
        """
        Suppress delivery for a number of minutes

        Returns:
            Epoch seconds at which delivery resumes, or None after shutdown
        """
        if not self.active:
            return None
        seconds = max(0.0, minutes * 60)
        if self._snooze_task:
            self._snooze_task.cancel()

        self._snoozed = True
        self.snoozed_until = self.clock() + seconds
        self._snooze_task = asyncio.create_task(self._end_snooze(seconds))

        logger.log_notify("Notifications Snoozed", {
            "minutes": minutes,
            "until": datetime.fromtimestamp(self.snoozed_until).isoformat()
        })
        return self.snoozed_until

    async def _end_snooze(self, seconds: float):
        await asyncio.sleep(seconds)
        if not self.active:
            return
        async with self.lock:
            self._snoozed = False
            self.snoozed_until = None
            self._snooze_task = None
            logger.log_notify("Snooze Ended", {})

    def resume(self):
        self.active = True
        if self._snooze_task is None or self._snooze_task.done():
            self._snooze_task = None
            self._snoozed = False
            self.snoozed_until = None

    def shutdown(self):
        """Cancel every pending timer and drop active messages"""
        self.active = False
        for timer in self._dismiss_timers.values():
            timer.cancel()
        self._dismiss_timers.clear()
        if self._snooze_task:
            self._snooze_task.cancel()
            self._snooze_task = None
        self._snoozed = False
        self.snoozed_until = None
        self._active_messages.clear()
