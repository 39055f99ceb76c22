# Message tables - templates, titles and suggestion pools
# {angle} is replaced with the angle (one decimal), {duration} with whole minutes
from posture_feedback import config


MESSAGE_TEMPLATES = {
    "gentle": {
        "morning": "Good morning! Try drawing your neck back a little ☀️",
        "afternoon": "Feeling drowsy after lunch? Check your posture too 🍽️",
        "evening": "You've worked hard today. Shall we straighten that neck? 🌅",
        "night": "Working late? Finish strong with a healthy posture 🌙",
        "default": "Your head has drifted forward a little. Gently pull it back 😊"
    },
    "active": {
        "morning": "Start the workday with the right posture too! Your neck is at {angle}° 💼",
        "afternoon": "Focus pulled your neck to {angle}°. Time for a quick adjustment? 🎯",
        "evening": "Wrapping up? Wrap up your posture as well ({angle}° for {duration} min) 📝",
        "night": "Late hours at the desk. Your neck is at {angle}°, look after it ⏰",
        "default": "Hold on! Pull your head back. Your neck angle is {angle}° 🚨"
    },
    "insistent": {
        "morning": "Your neck has been at {angle}° for {duration} min! Adjust now ⚡",
        "afternoon": "Your posture is at risk right now ({angle}°)! Straighten your neck immediately 🆘",
        "evening": "Your neck health is in serious danger at {angle}°! 📢",
        "night": "Late-night work has held your neck at {angle}° for {duration} min! Take a break now 🚨",
        "default": "Your neck is at risk! Change your posture now (angle: {angle}°) ⚠️"
    },
    "break": {
        "morning": "{duration} minutes in one posture. How about five minutes of neck exercises? 🧘",
        "afternoon": "{duration} minutes without a break. Kick off the afternoon with a neck stretch 🤸",
        "evening": "{duration} minutes at the desk. Shake off the fatigue with some neck exercises 🏃",
        "night": "{duration} minutes is a long session. Try a few neck exercises 💤",
        "default": "Break time. Try five minutes of neck exercises (held for {duration} min) 🏃"
    }
}

LEVEL_TITLES = {
    "gentle": "Posture reminder",
    "active": "Posture check",
    "insistent": "Posture warning",
    "break": "Break time"
}

LEVEL_TYPES = {
    "gentle": "info",
    "active": "warning",
    "insistent": "danger",
    "break": "info"
}

FALLBACK_TITLE = "Posture reminder"
FALLBACK_MESSAGE = "Please check your posture."

FOLLOW_UP_TITLE = "Posture re-check"
FOLLOW_UP_MESSAGE = "Your head is still forward. Please change your posture right now!"

POSITIVE_TITLE = "Great posture"
POSITIVE_MESSAGES = [
    "Excellent! You kept a good posture for {minutes} minutes! 🎉",
    "Fantastic! {minutes} minutes of perfect posture! ⭐",
    "Impressive! You looked after your neck for {minutes} minutes! 💪",
    "Perfect posture streak! You reached a {minutes}-minute record! 🏆"
]

EXERCISE_TITLE = "Neck stretch guide"
EXERCISES = [
    "Slowly turn your head left and right (5 times each way)",
    "Roll your shoulders back and open your chest (10 times)",
    "Slowly move your head forward and back (5 times)",
    "Shrug your shoulders up and down (10 times)",
    "Tilt your head to one side and hold for 15 seconds"
]

BASE_ACTIONS = [
    {"label": "OK", "action": "dismiss"},
    {"label": "In 5 min", "action": "snooze", "payload": {"minutes": config.SNOOZE_ACTION_MINUTES}}
]

BREAK_ACTIONS = [
    {"label": "Exercise guide", "action": "exercise"},
    {"label": "Settings", "action": "settings"}
]

EXERCISE_ACTIONS = [
    {"label": "Done", "action": "dismiss"},
    {"label": "Another exercise", "action": "exercise"}
]
