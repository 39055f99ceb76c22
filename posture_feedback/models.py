# Data Models - Pydantic schemas shared by the engine, dispatcher and API
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from posture_feedback import config


class KeypointName(str, Enum):
    LEFT_EAR = "LEFT_EAR"
    RIGHT_EAR = "RIGHT_EAR"
    LEFT_SHOULDER = "LEFT_SHOULDER"
    RIGHT_SHOULDER = "RIGHT_SHOULDER"


class SideSelection(str, Enum):
    AUTO = "auto"
    LEFT = "left"
    RIGHT = "right"


class Classification(str, Enum):
    NORMAL = "normal"
    MILD = "mild"
    SEVERE = "severe"


class InterventionLevel(str, Enum):
    NONE = "none"
    GENTLE = "gentle"
    ACTIVE = "active"
    INSISTENT = "insistent"
    BREAK = "break"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"
    SUCCESS = "success"


# ============================================================================
# SIGNAL
# ============================================================================

class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Keypoint(BaseModel):
    """One named body point in normalized [0,1] frame coordinates"""
    model_config = ConfigDict(frozen=True)

    name: KeypointName
    x: float
    y: float
    visibility: float = 0.0


class Thresholds(BaseModel):
    """Signed angle cut points; severe must be more negative than mild"""
    mild: float = config.DEFAULT_MILD_THRESHOLD
    severe: float = config.DEFAULT_SEVERE_THRESHOLD

    def normalized(self) -> "Thresholds":
        """Return a copy with the cut points swapped if they are inverted"""
        if self.severe > self.mild:
            return Thresholds(mild=self.severe, severe=self.mild)
        return self


class PostureSample(BaseModel):
    """
    One classified frame.

    Unmeasurable samples (missing or low-visibility keypoints) carry
    classification=normal with confidence 0 and an unmeasurable_reason,
    so callers can tell them apart from a genuinely normal posture.
    """
    model_config = ConfigDict(frozen=True)

    angle: float = 0.0
    classification: Classification = Classification.NORMAL
    confidence: float = 0.0
    side: SideSelection = SideSelection.AUTO
    timestamp: float
    unmeasurable_reason: Optional[str] = None
    shoulder_center: Optional[Point] = None
    ear_position: Optional[Point] = None

    @property
    def measurable(self) -> bool:
        return self.unmeasurable_reason is None

    @property
    def is_adverse(self) -> bool:
        return self.measurable and self.classification != Classification.NORMAL


# ============================================================================
# CONFIGURATION
# ============================================================================

class ProfileDurations(BaseModel):
    mild_duration: float = config.DEFAULT_PROFILE["durations"]["mild_duration"]
    severe_duration: float = config.DEFAULT_PROFILE["durations"]["severe_duration"]
    break_reminder: float = config.DEFAULT_PROFILE["durations"]["break_reminder"]

    @field_validator("mild_duration", "severe_duration", "break_reminder")
    @classmethod
    def clamp_non_negative(cls, value: float) -> float:
        return max(0.0, value)


class ProfilePreferences(BaseModel):
    positive_reinforcement: bool = True
    contextual_tips: bool = True
    exercise_suggestions: bool = True


class UserProfile(BaseModel):
    work_pattern: str = config.DEFAULT_PROFILE["work_pattern"]
    sensitivity: int = config.DEFAULT_PROFILE["sensitivity"]
    durations: ProfileDurations = Field(default_factory=ProfileDurations)
    preferences: ProfilePreferences = Field(default_factory=ProfilePreferences)

    @field_validator("sensitivity")
    @classmethod
    def clamp_sensitivity(cls, value: int) -> int:
        return max(1, min(10, value))


class NotificationSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = config.DEFAULT_NOTIFICATION_SETTINGS["enabled"]
    sound: bool = config.DEFAULT_NOTIFICATION_SETTINGS["sound"]
    system_notifications: bool = Field(
        default=config.DEFAULT_NOTIFICATION_SETTINGS["system_notifications"],
        validation_alias=AliasChoices("system_notifications", "browser"),
    )
    frequency: str = config.DEFAULT_NOTIFICATION_SETTINGS["frequency"]
    volume: int = config.DEFAULT_NOTIFICATION_SETTINGS["volume"]

    @field_validator("volume")
    @classmethod
    def clamp_volume(cls, value: int) -> int:
        return max(0, min(100, value))


def _deep_merge(base: Dict[str, Any], partial: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_partial(model: BaseModel, partial: Dict[str, Any]) -> BaseModel:
    """Merge a partial (possibly nested) update into a model, revalidating the result"""
    if "browser" in partial and isinstance(model, NotificationSettings):
        partial = dict(partial)
        partial["system_notifications"] = partial.pop("browser")
    merged = _deep_merge(model.model_dump(), partial)
    return type(model).model_validate(merged)


# ============================================================================
# FEEDBACK
# ============================================================================

class FeedbackAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    action: str  # dismiss | snooze | settings | exercise
    payload: Optional[Dict[str, Any]] = None


class FeedbackMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: NotificationType
    title: str
    message: str
    timestamp: float
    duration: Optional[float] = None  # auto-dismiss after N seconds
    actions: List[FeedbackAction] = Field(default_factory=list)
    level: Optional[InterventionLevel] = None
    kind: str = "escalation"  # escalation | follow_up | positive | exercise


class EscalationState(BaseModel):
    current_level: InterventionLevel = InterventionLevel.NONE
    last_trigger_time: Optional[float] = None
    consecutive_bad_seconds: float = 0.0
    consecutive_good_seconds: float = 0.0
    is_active: bool = False


class PostureStreaks(BaseModel):
    longest_good_posture: float = 0.0
    current_good_posture: float = 0.0


class Analytics(BaseModel):
    total_alerts: int = 0
    alerts_acknowledged: int = 0
    posture_improvement_rate: float = 0.0
    streaks: PostureStreaks = Field(default_factory=PostureStreaks)
    positive_reinforcements: int = 0
    follow_ups: int = 0
    exercise_suggestions: int = 0
    samples_processed: int = 0
    unmeasurable_samples: int = 0
