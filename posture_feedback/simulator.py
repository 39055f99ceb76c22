"""
Keypoint Stream Simulator

Streams synthetic pose keypoints to the feedback service
- Neck angle follows a random walk that drifts forward over time
- Occasional occlusion hides the ears (unmeasurable frames)
- Prints every feedback message the service fires

Usage:
    python -m posture_feedback.simulator --auto
    python -m posture_feedback.simulator --session-id session_1a2b3c4d --fps 10
"""

import argparse
import math
import random
import sys
import time
from typing import Dict, List, Optional, Tuple

import requests

from posture_feedback import config

# Neck angle range in signed degrees (negative = head forward)
ANGLE_RANGE = (-15.0, 5.0)
ANGLE_CHANGE_MAX = 0.8     # Max degrees change per frame
FORWARD_DRIFT = 0.05       # Average pull towards forward head per frame
OCCLUSION_PROBABILITY = 0.03
OCCLUSION_FRAMES = (3, 15)

SHOULDER_Y = 0.6
SHOULDER_HALF_WIDTH = 0.1
EAR_HEIGHT = 0.12          # Ear sits this far above the shoulder line


class AngleTracker:
    """Tracks the current neck angle with a drifting random walk"""

    def __init__(self, start: float = 0.0):
        self.current = start

    def next_value(self) -> float:
        delta = random.uniform(-ANGLE_CHANGE_MAX, ANGLE_CHANGE_MAX) - FORWARD_DRIFT
        self.current = max(ANGLE_RANGE[0], min(ANGLE_RANGE[1], self.current + delta))
        return self.current


def build_keypoints(angle: float, occluded: bool = False, center_x: float = 0.5) -> List[Dict]:
    """
    Place shoulders and ears so the measured neck angle equals `angle`

    Args:
        angle: Target signed neck angle in degrees
        occluded: Drop ear visibility below the analyzer's threshold
        center_x: Horizontal position of the shoulder midpoint

    Returns:
        List of keypoint dicts accepted by POST /sessions/{id}/frames
    """
    ear_x = center_x - EAR_HEIGHT * math.tan(math.radians(angle))
    ear_y = SHOULDER_Y - EAR_HEIGHT
    ear_visibility = 0.1 if occluded else random.uniform(0.8, 0.99)

    return [
        {"name": "LEFT_SHOULDER", "x": center_x - SHOULDER_HALF_WIDTH, "y": SHOULDER_Y,
         "visibility": random.uniform(0.85, 0.99)},
        {"name": "RIGHT_SHOULDER", "x": center_x + SHOULDER_HALF_WIDTH, "y": SHOULDER_Y,
         "visibility": random.uniform(0.85, 0.99)},
        {"name": "LEFT_EAR", "x": ear_x, "y": ear_y, "visibility": ear_visibility},
        {"name": "RIGHT_EAR", "x": ear_x, "y": ear_y, "visibility": ear_visibility * 0.9},
    ]


def create_session(base_url: str, sensitivity: int) -> str:
    print(f"\n📝 Creating monitoring session (sensitivity {sensitivity})...")
    try:
        response = requests.post(
            f"{base_url}/sessions/start",
            json={"profile": {"sensitivity": sensitivity}},
            timeout=10
        )
        if response.status_code == 200:
            session_id = response.json()["session_id"]
            print(f"✅ Session created! ID: {session_id}")
            return session_id
        print(f"❌ Session creation failed: {response.status_code}")
        print(f"    Response: {response.text[:200]}")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"❌ Session creation error: {e}")
        sys.exit(1)


def send_frame(base_url: str, session_id: str, keypoints: List[Dict]) -> Tuple[bool, dict]:
    try:
        response = requests.post(
            f"{base_url}/sessions/{session_id}/frames",
            json={"keypoints": keypoints, "timestamp": time.time()},
            timeout=5
        )
        if response.status_code == 200:
            return True, response.json()
        return False, {"error": response.status_code, "detail": response.text[:100]}
    except requests.exceptions.Timeout:
        return False, {"error": "timeout"}
    except requests.exceptions.RequestException as e:
        return False, {"error": str(e)}


def print_summary(base_url: str, session_id: str):
    try:
        response = requests.get(f"{base_url}/sessions/{session_id}/analytics", timeout=5)
        if response.status_code == 200:
            analytics = response.json()
            print(f"Total alerts:      {analytics['total_alerts']}")
            print(f"Improvement rate:  {analytics['posture_improvement_rate']:.3f}")
            print(f"Longest good run:  {analytics['streaks']['longest_good_posture']:.0f}s")
    except requests.exceptions.RequestException as e:
        print(f"❌ Could not fetch analytics: {e}")


def run_stream(base_url: str, session_id: str, target_fps: int, duration: Optional[float]) -> int:
    print(f"\n{'='*80}")
    print(f"🎬 STREAMING KEYPOINTS")
    print(f"{'='*80}")
    print(f"Session ID: {session_id}")
    print(f"Target FPS: {target_fps}")
    print(f"Duration: {'until interrupted' if not duration else f'{duration:.0f}s'}")
    print(f"{'='*80}\n")

    tracker = AngleTracker()
    interval = 1.0 / target_fps
    start_time = time.time()
    frame_count = 0
    total_failed = 0
    occluded_left = 0

    try:
        while not duration or time.time() - start_time < duration:
            loop_start = time.time()

            if occluded_left == 0 and random.random() < OCCLUSION_PROBABILITY:
                occluded_left = random.randint(*OCCLUSION_FRAMES)
            occluded = occluded_left > 0
            occluded_left = max(0, occluded_left - 1)

            angle = tracker.next_value()
            frame_count += 1
            success, result = send_frame(base_url, session_id, build_keypoints(angle, occluded))

            if success:
                message = result.get("message")
                if message:
                    print(f"🔔 [{message['type'].upper():7s}] {message['title']}: {message['message']}")
                if frame_count % (target_fps * 10) == 0:
                    sample = result["sample"]
                    print(f"Frame {frame_count:6d} | "
                          f"angle {sample['angle']:6.1f}° | "
                          f"{sample['classification']:6s} | "
                          f"level {result['level']}")
                if not result.get("active", True):
                    print("\n⚠️  Session is no longer active")
                    break
            else:
                total_failed += 1
                if total_failed <= 10:
                    print(f"❌ Frame {frame_count} FAILED: {result}")

            time.sleep(max(0, interval - (time.time() - loop_start)))

    except KeyboardInterrupt:
        print(f"\n\n⚠️  Stream interrupted by user")

    print(f"\n{'='*80}")
    print(f"Stream ended after {frame_count} frames ({time.time() - start_time:.1f}s)")
    print(f"{'='*80}")
    print_summary(base_url, session_id)
    return frame_count


def main():
    parser = argparse.ArgumentParser(description="Posture keypoint stream simulator")
    parser.add_argument("--session-id", help="Use an existing session ID")
    parser.add_argument("--auto", action="store_true", help="Create a session automatically")
    parser.add_argument("--fps", type=int, default=config.SIMULATOR_FPS, help="Target FPS")
    parser.add_argument("--duration", type=float, default=None, help="Stop after N seconds")
    parser.add_argument("--sensitivity", type=int, default=10, help="Profile sensitivity for --auto")
    parser.add_argument("--base-url", default=config.SIMULATOR_BASE_URL, help="Service URL")

    args = parser.parse_args()

    if args.session_id:
        session_id = args.session_id
        print(f"\n📎 Using existing session ID: {session_id}")
    elif args.auto:
        session_id = create_session(args.base_url, args.sensitivity)
    else:
        print("\n❌ Error: Must specify --session-id or --auto")
        sys.exit(1)

    run_stream(args.base_url, session_id, max(1, args.fps), args.duration)


if __name__ == "__main__":
    main()
