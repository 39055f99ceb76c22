# Structured Logging Module - Procedural Approach
from datetime import datetime
from typing import Any, Dict, Optional

from posture_feedback import config

# ANSI Color Codes for Terminal
class Colors:
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    PURPLE = '\033[95m'
    CYAN = '\033[96m'
    WHITE = '\033[97m'
    RESET = '\033[0m'
    BOLD = '\033[1m'

# Step Prefixes with Emojis
STEP_PREFIXES = {
    "ANALYZER": "📐",
    "ENGINE": "⚙️",
    "NOTIFY": "🔔",
    "CHANNEL": "📣",
    "SESSION": "🐢",
    "API": "🌐",
    "SYSTEM": "🔧",
    "DEBUG": "🔍",
    "ERROR": "❌",
    "SUCCESS": "✅",
    "WARNING": "⚠️"
}

# Next Step Suggestions
NEXT_STEPS = {
    "SESSION:STARTED": "Stream frames to POST /sessions/{id}/frames",
    "SESSION:STOPPED": "Fetch GET /sessions/{id}/analytics for the session summary",
    "ENGINE:INTERVENTION": "Dismiss via DELETE /sessions/{id}/messages/{message_id}",
    "NOTIFY:SNOOZED": "Delivery resumes automatically when the snooze elapses",
}

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

STEP_LEVELS = {
    "DEBUG": "DEBUG",
    "WARNING": "WARNING",
    "ERROR": "ERROR"
}


def get_timestamp() -> str:
    """Get formatted timestamp"""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def is_enabled(step: str) -> bool:
    """Check the step against LOG_LEVEL"""
    threshold = LEVELS.get(config.LOG_LEVEL.upper(), 20)
    return LEVELS[STEP_LEVELS.get(step, "INFO")] >= threshold


def log_step(step: str, action: str, data: Optional[Dict[str, Any]] = None, color: str = Colors.CYAN):
    """
    Log a step with structured format

    Args:
        step: Step category (ENGINE, NOTIFY, CHANNEL, API, etc.)
        action: Description of the action
        data: Optional dictionary of data to display
        color: ANSI color code
    """
    if not is_enabled(step):
        return

    prefix = STEP_PREFIXES.get(step, "🔹")
    timestamp = get_timestamp()

    print(f"{color}{Colors.BOLD}[{timestamp}] {prefix} [{step}]{Colors.RESET} {action}")

    if data:
        for key, value in data.items():
            # Truncate long values
            if isinstance(value, str) and len(value) > 100:
                value = value[:97] + "..."
            print(f"   {Colors.WHITE}├─ {key}: {value}{Colors.RESET}")

    # Suggest next step
    next_step_key = f"{step}:{action.split()[-1].upper()}"
    if next_step_key in NEXT_STEPS:
        print(f"   {Colors.YELLOW}└─ >>> Next: {NEXT_STEPS[next_step_key]}{Colors.RESET}")
    print()  # Blank line for readability


def log_analyzer(action: str, data: Optional[Dict[str, Any]] = None):
    """Log signal analyzer events"""
    log_step("ANALYZER", action, data, Colors.BLUE)


def log_engine(action: str, data: Optional[Dict[str, Any]] = None):
    """Log escalation engine events"""
    log_step("ENGINE", action, data, Colors.CYAN)


def log_notify(action: str, data: Optional[Dict[str, Any]] = None):
    """Log notification dispatcher events"""
    log_step("NOTIFY", action, data, Colors.PURPLE)


def log_channel(action: str, data: Optional[Dict[str, Any]] = None):
    """Log delivery channel events"""
    log_step("CHANNEL", action, data, Colors.WHITE)


def log_session(action: str, data: Optional[Dict[str, Any]] = None):
    """Log session lifecycle events"""
    log_step("SESSION", action, data, Colors.GREEN)


def log_api(action: str, data: Optional[Dict[str, Any]] = None):
    """Log API events"""
    log_step("API", action, data, Colors.CYAN)


def log_debug(action: str, data: Optional[Dict[str, Any]] = None):
    """Log high-volume details, hidden unless LOG_LEVEL=DEBUG"""
    log_step("DEBUG", action, data, Colors.WHITE)


def log_error(action: str, error: Exception, data: Optional[Dict[str, Any]] = None):
    """Log errors with the exception type"""
    error_data = dict(data or {})
    error_data["Error"] = str(error)
    error_data["Type"] = type(error).__name__
    log_step("ERROR", action, error_data, Colors.RED)


def log_success(action: str, data: Optional[Dict[str, Any]] = None):
    """Log success events"""
    log_step("SUCCESS", action, data, Colors.GREEN)


def log_warning(action: str, data: Optional[Dict[str, Any]] = None):
    """Log warnings"""
    log_step("WARNING", action, data, Colors.YELLOW)


def log_lifecycle(phase: str, details: str = ""):
    """
    Log major lifecycle events with clear visual separation

    Args:
        phase: Phase name (e.g., "STARTUP", "SHUTDOWN")
        details: Optional details
    """
    separator = "=" * 80
    print(f"\n{Colors.BOLD}{Colors.CYAN}{separator}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.CYAN}>>> {phase} {details}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.CYAN}{separator}{Colors.RESET}\n")
