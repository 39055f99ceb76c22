# Delivery Channels - audio cue, system notification and haptic adapters
import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional

from posture_feedback import config
from posture_feedback import logger
from posture_feedback.models import FeedbackMessage, NotificationSettings, NotificationType

Sink = Callable[[Dict[str, Any]], Any]


async def _invoke(sink: Sink, payload: Dict[str, Any]) -> Any:
    """Run a sink without blocking the event loop"""
    if inspect.iscoroutinefunction(sink):
        return await sink(payload)
    return await asyncio.to_thread(sink, payload)


class DeliveryChannel:
    """
    A place a composed message can be delivered to.

    Channels only report success (return) or failure (raise); the
    dispatcher owns every piece of shared state.
    """
    name = "channel"
    supports_persistent = False

    def __init__(self):
        self.available = True
        self._setup_done = False

    def setup(self) -> bool:
        """Initialise once; a channel whose setup fails stays disabled"""
        if self._setup_done:
            return self.available
        self._setup_done = True
        try:
            self._setup()
        except Exception as e:
            self.available = False
            logger.log_warning("Channel Unavailable", {
                "channel": self.name,
                "error": str(e)
            })
        return self.available

    def _setup(self):
        pass

    def wants(self, message: FeedbackMessage, settings: NotificationSettings) -> bool:
        return True

    async def deliver(self, message: FeedbackMessage, settings: NotificationSettings) -> None:
        raise NotImplementedError


def _log_tone(tone: Dict[str, Any]):
    logger.log_channel("Audio Cue", tone)


def _log_notification(payload: Dict[str, Any]):
    logger.log_channel("System Notification", payload)


def _log_vibration(payload: Dict[str, Any]):
    logger.log_channel("Vibration", payload)


class AudioCueChannel(DeliveryChannel):
    """Short sine tone whose pitch and length depend on the message type"""
    name = "audio"

    def __init__(self, player: Optional[Sink] = None):
        super().__init__()
        self.player = player or _log_tone

    def wants(self, message, settings):
        return settings.sound

    @staticmethod
    def build_tone(message: FeedbackMessage, settings: NotificationSettings) -> Dict[str, Any]:
        frequency, duration = config.TONES.get(message.type.value, config.TONES["info"])
        return {
            "message_id": message.id,
            "waveform": "sine",
            "frequency_hz": frequency,
            "duration_s": duration,
            "volume": settings.volume / 100,
            "ramp_s": 0.1
        }

    async def deliver(self, message, settings):
        await _invoke(self.player, self.build_tone(message, settings))


class SystemNotificationChannel(DeliveryChannel):
    """OS-level notification; danger messages ask to stay until the user interacts"""
    name = "system"
    supports_persistent = True

    def __init__(self, notifier: Optional[Sink] = None):
        super().__init__()
        self.notifier = notifier or _log_notification

    def wants(self, message, settings):
        return settings.system_notifications

    def build_payload(self, message: FeedbackMessage, settings: NotificationSettings) -> Dict[str, Any]:
        return {
            "title": message.title,
            "body": message.message,
            "icon": config.NOTIFICATION_ICONS.get(message.type.value, config.NOTIFICATION_ICONS["info"]),
            "tag": message.id,
            "require_interaction": self.supports_persistent and message.type == NotificationType.DANGER,
            "silent": not settings.sound,
            "timeout_s": message.duration or config.DEFAULT_DISMISS_SECONDS
        }

    async def deliver(self, message, settings):
        await _invoke(self.notifier, self.build_payload(message, settings))


class HapticChannel(DeliveryChannel):
    """Vibration, used for danger messages only"""
    name = "haptic"

    def __init__(self, vibrator: Optional[Sink] = None):
        super().__init__()
        self.vibrator = vibrator or _log_vibration

    def wants(self, message, settings):
        return message.type == NotificationType.DANGER

    async def deliver(self, message, settings):
        await _invoke(self.vibrator, {
            "message_id": message.id,
            "pattern_ms": list(config.HAPTIC_PATTERN)
        })


def build_default_channels() -> List[DeliveryChannel]:
    """Channels enabled through the environment"""
    channels: List[DeliveryChannel] = []
    if config.ENABLE_AUDIO_CHANNEL:
        channels.append(AudioCueChannel())
    if config.ENABLE_SYSTEM_CHANNEL:
        channels.append(SystemNotificationChannel())
    if config.ENABLE_HAPTIC_CHANNEL:
        channels.append(HapticChannel())
    return channels
