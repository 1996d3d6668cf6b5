"""
============================================================
 Focus Companion — Central Configuration
 All tunable thresholds and constants live here.
============================================================
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# ── OpenAI (voice) ──────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_TTS_MODEL = "tts-1"
OPENAI_TTS_VOICE = "onyx"
OPENAI_TTS_TIMEOUT = 3.0  # seconds before falling back to the local voice

# ── Camera ──────────────────────────────────────────────────
CAMERA_INDEX = int(os.getenv("CAMERA_INDEX", 0))
CAMERA_WIDTH = 640
CAMERA_HEIGHT = 480
CAMERA_FPS = 30
CAMERA_RECONNECT_DELAY = 2.0
CAMERA_FLIP_HORIZONTAL = True  # Mirror view, matches what the user sees
CAMERA_WARMUP_TIMEOUT = 5.0    # No frame within this window = access refused

# ── Server ──────────────────────────────────────────────────
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", 8000))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── Perception models ───────────────────────────────────────
FACE_LANDMARKER_MODEL_PATH = os.getenv("FACE_LANDMARKER_MODEL_PATH", "face_landmarker.task")
HAND_LANDMARKER_MODEL_PATH = os.getenv("HAND_LANDMARKER_MODEL_PATH", "hand_landmarker.task")
YOLO_MODEL_PATH = os.getenv("YOLO_MODEL_PATH", "yolov8n.pt")
YOLO_IMAGE_SIZE = 320
PHONE_CONFIDENCE = 0.5
PHONE_LABELS = frozenset({"cell phone", "phone", "mobile phone", "smartphone"})

# ── Poll loop ───────────────────────────────────────────────
DETECTION_INTERVAL = 0.35       # Seconds between processed ticks
FRAME_POLL_INTERVAL = 1 / 60    # Reschedule cadence ("next animation frame")
DEBUG_PUBLISH_INTERVAL = 0.5    # Debug snapshot throttle

# ── Calibration ─────────────────────────────────────────────
CALIBRATION_FRAMES = 12

# ── Head pose thresholds (degrees, relative to baseline) ────
YAW_AWAY_DEG = 24
PITCH_AWAY_DEG = 18
ROLL_SLOUCH_DEG = 18
PITCH_SLOUCH_DEG = 18
PITCH_DOWN_DEG = 20
NOSE_RATIO_DOWN_DELTA = 0.08  # Normalized image-space fraction

# ── Hands ───────────────────────────────────────────────────
HANDS_UP_WRIST_Y = 0.6  # Smaller y = higher on frame

# ── Sustained-condition alerts (seconds) ────────────────────
LOOKING_DOWN_ALERT = 20
GAZE_ALERT = 3 * 60
POSTURE_ALERT = 3 * 60
ALERT_REPEAT = 15

# ── Phone penalty ───────────────────────────────────────────
PHONE_ALERT = 5
PHONE_CLEAR = 2
PHONE_WARNING_REPEAT = 6

# ── Yawning ─────────────────────────────────────────────────
MAR_THRESHOLD = 0.62
YAWN_MIN_DURATION = 1.0
YAWN_WINDOW = 5 * 60
DROWSY_YAWN_COUNT = 3

# ── Mood escalation (seconds between rungs) ─────────────────
SUSPICIOUS_DELAY = 10
ANGRY_DELAY = 10
DEMON_DELAY = 10
ANGRY_NAG_INTERVAL = 12
DEMON_NAG_INTERVAL = 8

# ── Apology ─────────────────────────────────────────────────
APOLOGY_PHRASE = "i will focus"
APOLOGY_MAX_ATTEMPTS = 3

# ── Topic relevance ─────────────────────────────────────────
TOPIC_MIN_NOTES_LENGTH = 20

# ── Page title ──────────────────────────────────────────────
TITLE_DEFAULT = "Focus Companion"
TITLE_HIDDEN = "I SEE YOU"

# ── Voice ───────────────────────────────────────────────────
VOICE_COOLDOWN = 3.0
VOICE_RATE = 180
VOICE_URGENT_RATE_FACTOR = 1.3
VOICE_VOLUME = 0.8
VOICE_URGENT_VOLUME = 1.0

# ── Ledger ──────────────────────────────────────────────────
DATABASE_URI = os.getenv("DATABASE_URI", "sqlite:///focus_companion.db")
XP_PER_FOCUS_MINUTE = 2
XP_PER_LEVEL = 100

# ── Default runtime settings ────────────────────────────────
MONITORING_ENABLED = _env_flag("MONITORING_ENABLED", True)
POSTURE_MONITORING_ENABLED = _env_flag("POSTURE_MONITORING_ENABLED", True)
DEMON_MODE_ENABLED = _env_flag("DEMON_MODE_ENABLED", True)
SOUND_ENABLED = _env_flag("SOUND_ENABLED", True)
POSTURE_DEBUG_ENABLED = _env_flag("POSTURE_DEBUG_ENABLED", False)

# ── Monitor status values ───────────────────────────────────
STATUS_INACTIVE = "inactive"
STATUS_INITIALIZING = "initializing"
STATUS_CALIBRATING = "calibrating"
STATUS_TRACKING = "tracking"
STATUS_NO_FACE = "no-face"
STATUS_ERROR = "error"

# ── Spoken posture alerts ───────────────────────────────────
POSTURE_MESSAGES = {
    "LOOKING_DOWN": "Stop looking down. Eyes on the screen.",
    "GAZE_AWAY": "Look at the screen. Stay locked in.",
    "POSTURE": "Sit up straight. Focus.",
    "PHONE": "Put the phone away.",
    "PHONE_REPEAT": "Phone away. Raise both hands to continue.",
}

# ── Companion dialogue per mood ─────────────────────────────
MOOD_DIALOGUES = {
    "happy": [
        "Keep going! You're doing great!",
        "I'm learning so much!",
        "Focus is your superpower!",
        "You've got this!",
    ],
    "suspicious": [
        "Hey... you still there?",
        "Why did you stop?",
        "I'm watching you...",
        "Don't leave me!",
    ],
    "angry": [
        "DON'T YOU DARE LEAVE!",
        "I'm getting angry...",
        "FOCUS. NOW.",
        "One more second and...",
    ],
    "demon": [
        "YOU LEFT ME.",
        "LOOK AT ME.",
        "APOLOGIZE.",
        "I TRUSTED YOU.",
    ],
}

# ── Version ─────────────────────────────────────────────────
VERSION = "1.0.0"
