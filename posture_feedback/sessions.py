"""
Session Registry Module
Tracks live monitoring sessions, each wrapping an analyzer configuration
and an escalation engine, plus a bounded log of published events.
"""
import time
import uuid
from collections import deque
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from posture_feedback import analyzer
from posture_feedback import config
from posture_feedback import logger
from posture_feedback.channels import DeliveryChannel
from posture_feedback.engine import EscalationEngine
from posture_feedback.models import (
    Keypoint,
    NotificationSettings,
    PostureSample,
    SideSelection,
    Thresholds,
    UserProfile,
)

# Track live sessions
active_sessions: Dict[str, "MonitoringSession"] = {}


def normalize_thresholds(thresholds: Optional[Thresholds]) -> Thresholds:
    """Swap inverted cut points so severe is always the more negative one"""
    if thresholds is None:
        return Thresholds()
    if thresholds.severe > thresholds.mild:
        logger.log_warning("Thresholds Inverted", {
            "mild": thresholds.mild,
            "severe": thresholds.severe,
            "applied": "swapped"
        })
        return thresholds.normalized()
    return thresholds


class MonitoringSession:
    def __init__(self,
                 session_id: str,
                 side_selection: SideSelection = SideSelection.AUTO,
                 thresholds: Optional[Thresholds] = None,
                 profile: Optional[UserProfile] = None,
                 settings: Optional[NotificationSettings] = None,
                 channels: Optional[List[DeliveryChannel]] = None,
                 clock: Callable[[], float] = time.time,
                 follow_up_delay: float = config.FOLLOW_UP_DELAY_SECONDS):
        self.session_id = session_id
        self.side_selection = side_selection
        self.thresholds = normalize_thresholds(thresholds)
        self.clock = clock
        self.created_at = clock()
        self.frames_received = 0
        self.last_sample: Optional[PostureSample] = None
        self.events: deque = deque(maxlen=config.EVENT_LOG_SIZE)

        self.engine = EscalationEngine(
            settings=settings,
            profile=profile,
            channels=channels,
            clock=clock,
            follow_up_delay=follow_up_delay
        )
        self._unsubscribe = self.engine.subscribe(self._record_event)

    def _record_event(self, event: str, payload: Any):
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        self.events.append({"event": event, "at": self.clock(), "payload": payload})

    @property
    def is_active(self) -> bool:
        return self.engine.state.is_active

    def configure_detection(self, side_selection: Optional[SideSelection] = None,
                            thresholds: Optional[Thresholds] = None):
        """Applies to subsequent frames only"""
        if side_selection is not None:
            self.side_selection = side_selection
        if thresholds is not None:
            self.thresholds = normalize_thresholds(thresholds)
        logger.log_session("Detection Updated", {
            "session_id": self.session_id,
            "side": self.side_selection.value,
            "mild": self.thresholds.mild,
            "severe": self.thresholds.severe
        })

    async def process_frame(self, keypoints: Iterable[Keypoint],
                            timestamp: Optional[float] = None) -> Dict[str, Any]:
        """
        Analyze one frame and feed the result to the engine

        Args:
            keypoints: Keypoints for the frame
            timestamp: Frame time in seconds (defaults to the session clock)

        Returns:
            Dict with the PostureSample and the message fired (or None)
        """
        if timestamp is None:
            timestamp = self.clock()
        sample = analyzer.analyze(keypoints, self.side_selection, self.thresholds, timestamp)
        return await self.process_sample(sample)

    async def process_sample(self, sample: PostureSample) -> Dict[str, Any]:
        previous = self.last_sample
        if previous is not None and previous.measurable != sample.measurable:
            if sample.measurable:
                logger.log_analyzer("Signal Restored", {
                    "session_id": self.session_id,
                    "side": sample.side.value,
                    "angle": f"{sample.angle:.1f}°"
                })
            else:
                logger.log_analyzer("Signal Lost", {
                    "session_id": self.session_id,
                    "reason": sample.unmeasurable_reason
                })

        self.frames_received += 1
        self.last_sample = sample
        message = await self.engine.process_sample(sample)
        return {"sample": sample, "message": message}

    def get_events(self, since: Optional[float] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        events = [e for e in self.events if since is None or e["at"] > since]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def summary(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "active": self.is_active,
            "created_at": self.created_at,
            "frames_received": self.frames_received,
            "side_selection": self.side_selection.value,
            "thresholds": self.thresholds.model_dump()
        }


def new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:8]}"


async def start_session(side_selection: SideSelection = SideSelection.AUTO,
                        thresholds: Optional[Thresholds] = None,
                        profile: Optional[UserProfile] = None,
                        settings: Optional[NotificationSettings] = None,
                        channels: Optional[List[DeliveryChannel]] = None,
                        clock: Callable[[], float] = time.time,
                        follow_up_delay: float = config.FOLLOW_UP_DELAY_SECONDS) -> MonitoringSession:
    """
    Create, start and register a monitoring session

    Returns:
        The running MonitoringSession
    """
    session = MonitoringSession(
        session_id=new_session_id(),
        side_selection=side_selection,
        thresholds=thresholds,
        profile=profile,
        settings=settings,
        channels=channels,
        clock=clock,
        follow_up_delay=follow_up_delay
    )
    await session.engine.start()
    active_sessions[session.session_id] = session

    logger.log_session("Session Started", {
        "session_id": session.session_id,
        "side": session.side_selection.value,
        "channels": [c.name for c in session.engine.dispatcher.channels if c.available]
    })
    return session


def get_session(session_id: str) -> Optional[MonitoringSession]:
    return active_sessions.get(session_id)


async def stop_session(session_id: str) -> Dict[str, Any]:
    """
    Stop a session; it stays registered so its analytics remain readable

    Returns:
        Dict with success flag, message and status
    """
    session = active_sessions.get(session_id)
    if not session:
        return {"success": False, "message": "Session not found", "status": "not_found"}

    stopped = await session.engine.stop()
    if not stopped:
        return {"success": False, "message": "Session already stopped", "status": "stopped"}

    analytics = session.engine.get_analytics()
    logger.log_session("Session Stopped", {
        "session_id": session_id,
        "frames": session.frames_received,
        "total_alerts": analytics.total_alerts
    })
    return {"success": True, "message": "Session stopped", "status": "stopped"}


def remove_session(session_id: str) -> Optional[MonitoringSession]:
    session = active_sessions.pop(session_id, None)
    if session:
        session._unsubscribe()
    return session


async def stop_all() -> int:
    """Stop and unregister every session; returns how many were running"""
    stopped = 0
    for session_id in list(active_sessions):
        result = await stop_session(session_id)
        if result["success"]:
            stopped += 1
        remove_session(session_id)
    return stopped
