# Signal Analyzer - Keypoints to neck angle, classification and confidence (Procedural)
import math
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from posture_feedback import config
from posture_feedback.models import (
    Classification,
    Keypoint,
    KeypointName,
    Point,
    PostureSample,
    SideSelection,
    Thresholds,
)

NO_SHOULDER = "no_shoulder"
NO_EAR = "no_ear"


def index_keypoints(keypoints: Iterable[Keypoint]) -> Dict[KeypointName, Keypoint]:
    """Map keypoints by name; a later duplicate replaces an earlier one"""
    return {kp.name: kp for kp in keypoints}


def is_visible(keypoint: Optional[Keypoint]) -> bool:
    return keypoint is not None and keypoint.visibility >= config.MIN_VISIBILITY


def select_ear(points: Dict[KeypointName, Keypoint],
               side_selection: SideSelection) -> Tuple[Optional[Keypoint], SideSelection]:
    """
    Resolve which ear to measure against

    Args:
        points: Keypoints indexed by name
        side_selection: auto, left or right

    Returns:
        Tuple of (ear keypoint or None, resolved side). When no ear
        qualifies the side is returned unresolved.
    """
    left_ear = points.get(KeypointName.LEFT_EAR)
    right_ear = points.get(KeypointName.RIGHT_EAR)

    if side_selection == SideSelection.LEFT:
        return (left_ear, SideSelection.LEFT) if is_visible(left_ear) else (None, side_selection)

    if side_selection == SideSelection.RIGHT:
        return (right_ear, SideSelection.RIGHT) if is_visible(right_ear) else (None, side_selection)

    left_valid = is_visible(left_ear)
    right_valid = is_visible(right_ear)

    if left_valid and right_valid:
        # Ties go to the left ear
        if left_ear.visibility >= right_ear.visibility:
            return left_ear, SideSelection.LEFT
        return right_ear, SideSelection.RIGHT
    if left_valid:
        return left_ear, SideSelection.LEFT
    if right_valid:
        return right_ear, SideSelection.RIGHT
    return None, side_selection


def calculate_neck_angle(shoulder_center: Point, ear: Point) -> float:
    """
    Signed angle of the ear relative to the vertical through the shoulder center.

    0 when the ear sits straight above the shoulder center, negative when the
    ear is forward of that line.
    """
    delta_x = shoulder_center.x - ear.x
    delta_y = shoulder_center.y - ear.y
    return math.degrees(math.atan2(delta_x, delta_y))


def classify_angle(angle: float, thresholds: Thresholds) -> Classification:
    """Thresholds are applied in the order given, without validation"""
    if angle <= thresholds.severe:
        return Classification.SEVERE
    if angle <= thresholds.mild:
        return Classification.MILD
    return Classification.NORMAL


def analyze(keypoints: Iterable[Keypoint],
            side_selection: SideSelection = SideSelection.AUTO,
            thresholds: Optional[Thresholds] = None,
            timestamp: Optional[float] = None) -> PostureSample:
    """
    Turn one frame of keypoints into a PostureSample

    Args:
        keypoints: Keypoints for this frame
        side_selection: Which ear to measure (auto resolves per frame)
        thresholds: Mild/severe cut points in signed degrees
        timestamp: Frame time in seconds (defaults to now)

    Returns:
        PostureSample; unmeasurable samples carry unmeasurable_reason
    """
    if thresholds is None:
        thresholds = Thresholds()
    if timestamp is None:
        timestamp = time.time()

    points = index_keypoints(keypoints)
    left_shoulder = points.get(KeypointName.LEFT_SHOULDER)
    right_shoulder = points.get(KeypointName.RIGHT_SHOULDER)

    if not (is_visible(left_shoulder) and is_visible(right_shoulder)):
        return PostureSample(
            side=side_selection,
            timestamp=timestamp,
            unmeasurable_reason=NO_SHOULDER
        )

    shoulder_center = Point(
        x=(left_shoulder.x + right_shoulder.x) / 2,
        y=(left_shoulder.y + right_shoulder.y) / 2
    )

    ear, resolved_side = select_ear(points, side_selection)
    if ear is None:
        return PostureSample(
            side=resolved_side,
            timestamp=timestamp,
            unmeasurable_reason=NO_EAR,
            shoulder_center=shoulder_center
        )

    ear_position = Point(x=ear.x, y=ear.y)
    angle = calculate_neck_angle(shoulder_center, ear_position)
    confidence = (ear.visibility + left_shoulder.visibility + right_shoulder.visibility) / 3

    return PostureSample(
        angle=angle,
        classification=classify_angle(angle, thresholds),
        confidence=confidence,
        side=resolved_side,
        timestamp=timestamp,
        shoulder_center=shoulder_center,
        ear_position=ear_position
    )


def _read(landmark: Any, field: str, default: float = 0.0) -> float:
    if isinstance(landmark, dict):
        value = landmark.get(field, default)
    else:
        value = getattr(landmark, field, default)
    return default if value is None else float(value)


def keypoints_from_landmarks(landmarks: Sequence[Any]) -> List[Keypoint]:
    """
    Pick the ear and shoulder points out of a 33-point pose landmark list

    Landmarks may be dicts or objects exposing x, y and visibility.
    Indices missing from a short list are skipped.
    """
    keypoints = []
    for name, index in config.POSE_LANDMARKS.items():
        if index >= len(landmarks) or landmarks[index] is None:
            continue
        landmark = landmarks[index]
        keypoints.append(Keypoint(
            name=KeypointName(name),
            x=_read(landmark, "x"),
            y=_read(landmark, "y"),
            visibility=_read(landmark, "visibility")
        ))
    return keypoints
