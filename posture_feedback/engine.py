# Escalation Engine - per-session state machine turning samples into rate-limited feedback
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Set

from posture_feedback import config
from posture_feedback import logger
from posture_feedback.channels import DeliveryChannel
from posture_feedback.dispatcher import NotificationDispatcher
from posture_feedback.models import (
    Analytics,
    Classification,
    EscalationState,
    FeedbackMessage,
    InterventionLevel,
    NotificationSettings,
    PostureSample,
    UserProfile,
    apply_partial,
)

GOOD = "good"
ADVERSE = "adverse"


class EscalationEngine:
    """
    One monitoring session's decision logic.

    Every mutation of state, analytics or the active-message set happens
    under self.lock: process_sample, stop, reset and all timer callbacks
    acquire it. Run durations are recomputed from sample timestamps on
    every sample; unmeasurable samples pause the current run.
    """

    def __init__(self,
                 settings: Optional[NotificationSettings] = None,
                 profile: Optional[UserProfile] = None,
                 channels: Optional[List[DeliveryChannel]] = None,
                 clock: Callable[[], float] = time.time,
                 follow_up_delay: float = config.FOLLOW_UP_DELAY_SECONDS,
                 channel_timeout: float = config.CHANNEL_TIMEOUT_SECONDS):
        self.lock = asyncio.Lock()
        self.clock = clock
        self.follow_up_delay = follow_up_delay
        self.profile = profile or UserProfile()
        self.state = EscalationState()
        self.analytics = Analytics()
        self.dispatcher = NotificationDispatcher(
            settings=settings,
            channels=channels,
            clock=clock,
            lock=self.lock,
            channel_timeout=channel_timeout
        )

        self._timers: Set[asyncio.Task] = set()
        self._last_sample: Optional[PostureSample] = None
        self._clear_run()

    def _clear_run(self):
        self._run_category: Optional[str] = None
        self._run_started_at: Optional[float] = None
        self._pause_started_at: Optional[float] = None
        self._paused_total = 0.0

    @property
    def settings(self) -> NotificationSettings:
        return self.dispatcher.settings

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> bool:
        """Begin evaluating samples; returns False if already running"""
        async with self.lock:
            if self.state.is_active:
                return False
            self.state = EscalationState(is_active=True)
            self._clear_run()
            self._last_sample = None
            self.dispatcher.resume()
            logger.log_engine("Monitoring Started", {
                "sensitivity": self.profile.sensitivity,
                "mild_duration": self.profile.durations.mild_duration,
                "severe_duration": self.profile.durations.severe_duration
            })
            return True

    async def stop(self) -> bool:
        """Stop evaluating and cancel every pending timer; returns False if not running"""
        async with self.lock:
            if not self.state.is_active:
                return False
            self.state.is_active = False
            self.state.current_level = InterventionLevel.NONE
            self._cancel_timers()
            self.dispatcher.shutdown()

            streaks = self.analytics.streaks
            streaks.longest_good_posture = max(streaks.longest_good_posture, streaks.current_good_posture)

            logger.log_engine("Monitoring Stopped", {
                "total_alerts": self.analytics.total_alerts,
                "improvement_rate": f"{self.analytics.posture_improvement_rate:.3f}"
            })
            return True

    async def reset(self):
        """Clear state and analytics; an active session keeps running"""
        async with self.lock:
            was_active = self.state.is_active
            self._cancel_timers()
            self.dispatcher.dismiss_all()
            self.state = EscalationState(is_active=was_active)
            self.analytics = Analytics()
            self._clear_run()
            self._last_sample = None
            logger.log_engine("State Reset", {"active": was_active})

    def _cancel_timers(self):
        for task in self._timers:
            task.cancel()
        self._timers.clear()

    # ========================================================================
    # SAMPLE EVALUATION
    # ========================================================================

    async def process_sample(self, sample: PostureSample) -> Optional[FeedbackMessage]:
        """
        Evaluate one classified sample

        Args:
            sample: PostureSample from the analyzer

        Returns:
            The FeedbackMessage fired for this sample (escalation first,
            otherwise positive reinforcement), or None
        """
        async with self.lock:
            if not self.state.is_active:
                return None
            return await self._evaluate(sample)

    async def _evaluate(self, sample: PostureSample) -> Optional[FeedbackMessage]:
        timestamp = sample.timestamp
        self.analytics.samples_processed += 1

        if not sample.measurable:
            self.analytics.unmeasurable_samples += 1
            if self._run_started_at is not None and self._pause_started_at is None:
                self._pause_started_at = timestamp
                logger.log_debug("Run Paused", {
                    "reason": sample.unmeasurable_reason,
                    "run": self._run_category
                })
            self._last_sample = sample
            return None

        if self._pause_started_at is not None:
            self._paused_total += max(0.0, timestamp - self._pause_started_at)
            self._pause_started_at = None

        self._update_improvement_rate(sample)
        self._last_sample = sample

        category = ADVERSE if sample.is_adverse else GOOD
        fired = None
        if category != self._run_category:
            fired = await self._change_category(category, timestamp)

        duration = self._run_duration(timestamp)

        if category == GOOD:
            self.state.consecutive_good_seconds = duration
            streaks = self.analytics.streaks
            streaks.current_good_posture = duration
            streaks.longest_good_posture = max(streaks.longest_good_posture, duration)
            return fired

        self.state.consecutive_bad_seconds = duration
        level = self.determine_level(sample.classification, duration)
        if level is None:
            return fired

        if self.should_trigger(level, timestamp):
            return await self._trigger(level, sample, duration)
        return fired

    def _run_duration(self, now: float) -> float:
        if self._run_started_at is None:
            return 0.0
        return max(0.0, now - self._run_started_at - self._paused_total)

    async def _change_category(self, category: str, timestamp: float) -> Optional[FeedbackMessage]:
        previous = self._run_category
        previous_duration = self._run_duration(timestamp)
        fired = None

        if previous == GOOD:
            streaks = self.analytics.streaks
            streaks.longest_good_posture = max(streaks.longest_good_posture, previous_duration)
            streaks.current_good_posture = 0.0
            self.state.consecutive_good_seconds = 0.0

            if (previous_duration > config.LONG_STREAK_SECONDS
                    and self.profile.preferences.positive_reinforcement):
                fired = await self._send_positive(previous_duration)

        elif previous == ADVERSE:
            if self.state.current_level != InterventionLevel.NONE:
                logger.log_engine("Level Reset", {
                    "from": self.state.current_level.value,
                    "adverse_seconds": f"{previous_duration:.1f}"
                })
            self.state.current_level = InterventionLevel.NONE
            self.state.consecutive_bad_seconds = 0.0

        self._run_category = category
        self._run_started_at = timestamp
        self._pause_started_at = None
        self._paused_total = 0.0
        return fired

    def _update_improvement_rate(self, sample: PostureSample):
        good = 1.0 if sample.classification == Classification.NORMAL else 0.0
        self.analytics.posture_improvement_rate = (
            config.IMPROVEMENT_OLD_WEIGHT * self.analytics.posture_improvement_rate
            + config.IMPROVEMENT_NEW_WEIGHT * good
        )

    def determine_level(self, classification: Classification, duration: float) -> Optional[InterventionLevel]:
        """
        Required level for an adverse run of the given length

        Profile values are read on every call so updates apply immediately.
        Returns None while a mild run is still below its threshold.
        """
        multiplier = (11 - self.profile.sensitivity) / 10
        durations = self.profile.durations
        adjusted_mild = durations.mild_duration * multiplier
        adjusted_severe = durations.severe_duration * multiplier
        break_duration = durations.break_reminder * 60

        if duration > break_duration:
            return InterventionLevel.BREAK

        if classification == Classification.SEVERE:
            if duration > adjusted_severe:
                return InterventionLevel.INSISTENT
            if duration > adjusted_severe / 2:
                return InterventionLevel.ACTIVE
            return InterventionLevel.GENTLE

        if classification == Classification.MILD:
            if duration > adjusted_mild * 2:
                return InterventionLevel.ACTIVE
            if duration > adjusted_mild:
                return InterventionLevel.GENTLE

        return None

    def should_trigger(self, level: InterventionLevel, now: float) -> bool:
        if level != self.state.current_level:
            return True
        if self.state.last_trigger_time is None:
            return True
        return now - self.state.last_trigger_time > config.COOLDOWN_SECONDS[level.value]

    # ========================================================================
    # FIRING
    # ========================================================================

    async def _trigger(self, level: InterventionLevel, sample: PostureSample,
                       duration: float) -> FeedbackMessage:
        previous_level = self.state.current_level
        self.state.current_level = level
        self.state.last_trigger_time = sample.timestamp
        self.analytics.total_alerts += 1

        message = self.dispatcher.compose(level, sample.angle, duration)
        outcome = await self.dispatcher.dispatch(message)
        self.dispatcher.publish("feedback", {
            "level": level.value,
            "message_id": message.id,
            "sample": sample.model_dump(mode="json")
        })

        logger.log_engine(f"Fired {level.value.title()} Intervention", {
            "from": previous_level.value,
            "angle": f"{sample.angle:.1f}°",
            "classification": sample.classification.value,
            "duration_s": f"{duration:.1f}",
            "delivery": outcome["status"],
            "total_alerts": self.analytics.total_alerts
        })

        if level == InterventionLevel.INSISTENT:
            self._schedule(self._follow_up_check())

        if level == InterventionLevel.BREAK and self.profile.preferences.exercise_suggestions:
            exercise = self.dispatcher.compose_exercise()
            self.analytics.exercise_suggestions += 1
            await self.dispatcher.dispatch(exercise)

        return message

    async def _send_positive(self, good_seconds: float) -> FeedbackMessage:
        message = self.dispatcher.compose_positive(good_seconds)
        self.analytics.positive_reinforcements += 1
        await self.dispatcher.dispatch(message)
        logger.log_engine("Positive Reinforcement", {
            "good_minutes": int(good_seconds // 60),
            "count": self.analytics.positive_reinforcements
        })
        return message

    def _schedule(self, coroutine):
        task = asyncio.create_task(coroutine)
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _follow_up_check(self):
        await asyncio.sleep(self.follow_up_delay)
        if not self.state.is_active:
            return
        async with self.lock:
            if not self.state.is_active:
                return
            still_insistent = self.state.current_level == InterventionLevel.INSISTENT
            still_adverse = self._run_category == ADVERSE and (
                self._last_sample is None or self._last_sample.is_adverse
            )
            if not (still_insistent and still_adverse):
                return

            self.analytics.follow_ups += 1
            message = self.dispatcher.compose_follow_up()
            outcome = await self.dispatcher.dispatch(message)
            logger.log_engine("Follow-up Fired", {
                "message_id": message.id,
                "delivery": outcome["status"]
            })

    # ========================================================================
    # CONFIGURATION & QUERIES
    # ========================================================================

    def update_settings(self, partial: Dict[str, Any]) -> NotificationSettings:
        settings = apply_partial(self.dispatcher.settings, partial)
        self.dispatcher.update_settings(settings)
        logger.log_notify("Settings Updated", {"fields": list(partial.keys())})
        return settings

    def update_profile(self, partial: Dict[str, Any]) -> UserProfile:
        self.profile = apply_partial(self.profile, partial)
        logger.log_engine("Profile Updated", {
            "fields": list(partial.keys()),
            "sensitivity": self.profile.sensitivity
        })
        return self.profile

    def snooze(self, minutes: float) -> Optional[float]:
        """Suppress delivery (not evaluation); returns the snooze-until epoch, None if stopped"""
        if not self.state.is_active:
            return None
        return self.dispatcher.snooze(minutes)

    def dismiss(self, message_id: str) -> bool:
        removed = self.dispatcher.dismiss(message_id)
        if removed:
            self.analytics.alerts_acknowledged += 1
        return removed

    def dismiss_all(self) -> int:
        count = self.dispatcher.dismiss_all()
        self.analytics.alerts_acknowledged += count
        return count

    def subscribe(self, callback):
        return self.dispatcher.subscribe(callback)

    def get_analytics(self) -> Analytics:
        return self.analytics.model_copy(deep=True)

    def get_active_messages(self) -> List[FeedbackMessage]:
        return self.dispatcher.get_active_messages()

    def get_state(self) -> Dict[str, Any]:
        """Snapshot of the state machine for status displays"""
        return {
            **self.state.model_dump(mode="json"),
            "run_category": self._run_category,
            "paused": self._pause_started_at is not None,
            "snoozed": self.dispatcher.is_snoozed,
            "snoozed_until": self.dispatcher.snoozed_until,
            "active_messages": len(self.dispatcher.get_active_messages())
        }
