# Configuration Module - Procedural approach with module-level variables
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Server Configuration
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Delivery Channel Configuration
ENABLE_AUDIO_CHANNEL = os.getenv("ENABLE_AUDIO_CHANNEL", "true").lower() == "true"
ENABLE_SYSTEM_CHANNEL = os.getenv("ENABLE_SYSTEM_CHANNEL", "true").lower() == "true"
ENABLE_HAPTIC_CHANNEL = os.getenv("ENABLE_HAPTIC_CHANNEL", "false").lower() == "true"
CHANNEL_TIMEOUT_SECONDS = float(os.getenv("CHANNEL_TIMEOUT_SECONDS", "2.0"))

# Simulator Configuration
SIMULATOR_BASE_URL = os.getenv("SIMULATOR_BASE_URL", "http://localhost:8000")
SIMULATOR_FPS = int(os.getenv("SIMULATOR_FPS", "5"))

# Event log kept per session for GET /sessions/{id}/events
EVENT_LOG_SIZE = 200

# Pose landmark indices (33-point pose model)
POSE_LANDMARKS = {
    "LEFT_EAR": 7,
    "RIGHT_EAR": 8,
    "LEFT_SHOULDER": 11,
    "RIGHT_SHOULDER": 12,
}

# Signal Analysis Thresholds
MIN_VISIBILITY = 0.3
DEFAULT_MILD_THRESHOLD = -1.0     # degrees, negative = head forward
DEFAULT_SEVERE_THRESHOLD = -3.0   # more negative = more severe

# Escalation Configuration
COOLDOWN_SECONDS = {
    "gentle": 60,
    "active": 45,
    "insistent": 30,
    "break": 120
}
FOLLOW_UP_DELAY_SECONDS = float(os.getenv("FOLLOW_UP_DELAY_SECONDS", "30"))
LONG_STREAK_SECONDS = 30 * 60
IMPROVEMENT_OLD_WEIGHT = 0.9
IMPROVEMENT_NEW_WEIGHT = 0.1

# Auto-dismiss durations (seconds)
DISMISS_SECONDS = {
    "gentle": 3,
    "active": 5,
    "insistent": 8,
    "break": 10
}
DEFAULT_DISMISS_SECONDS = 5
POSITIVE_DISMISS_SECONDS = 5
FOLLOW_UP_DISMISS_SECONDS = 6
EXERCISE_DISMISS_SECONDS = 15
SNOOZE_ACTION_MINUTES = 5

# Time-of-day buckets by local hour: [start, end)
TIME_OF_DAY_HOURS = {
    "morning": (6, 12),
    "afternoon": (12, 18),
    "evening": (18, 22)
}

# Default User Profile
DEFAULT_PROFILE = {
    "work_pattern": "office",
    "sensitivity": 5,
    "durations": {
        "mild_duration": 300,     # seconds
        "severe_duration": 180,   # seconds
        "break_reminder": 60      # minutes
    },
    "preferences": {
        "positive_reinforcement": True,
        "contextual_tips": True,
        "exercise_suggestions": True
    }
}

# Default Notification Settings
DEFAULT_NOTIFICATION_SETTINGS = {
    "enabled": True,
    "sound": True,
    "system_notifications": True,
    "frequency": "medium",
    "volume": 70
}

# Audio cue per message type: (frequency Hz, duration seconds)
TONES = {
    "info": (800, 0.3),
    "warning": (1000, 0.5),
    "danger": (1200, 0.8),
    "success": (600, 0.4)
}

# System notification icon per message type
NOTIFICATION_ICONS = {
    "info": "🐢",
    "warning": "⚠️",
    "danger": "🚨",
    "success": "✅"
}

# Vibration pattern in ms: [on, off, on]
HAPTIC_PATTERN = [200, 100, 200]
