"""
Configuration for the attendance server and the capture kiosk.
Every value can be overridden through an environment variable.
"""
import os
from datetime import time

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./attendance.db")

# Recognition
FACE_MODEL_NAME = os.getenv("FACE_MODEL_NAME", "buffalo_l")
USE_GPU = os.getenv("USE_GPU", "1") == "1"
MATCH_THRESHOLD = float(os.getenv("MATCH_THRESHOLD", "0.5"))
ROSTER_BATCH_SIZE = max(1, int(os.getenv("ROSTER_BATCH_SIZE", "10")))

# Liveness heuristic
EAR_THRESHOLD = float(os.getenv("EAR_THRESHOLD", "0.25"))
MOVEMENT_THRESHOLD = float(os.getenv("MOVEMENT_THRESHOLD", "0.8"))  # pixels
STILL_FRAMES_LIMIT = int(os.getenv("STILL_FRAMES_LIMIT", "1"))
NO_BLINK_FRAMES_LIMIT = int(os.getenv("NO_BLINK_FRAMES_LIMIT", "3"))

# Kiosk
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))
SAMPLE_INTERVAL = float(os.getenv("SAMPLE_INTERVAL", "1.0"))  # seconds
NOTIFICATION_HISTORY = int(os.getenv("NOTIFICATION_HISTORY", "50"))


def parse_cutoff(value: str) -> time:
    """Parse an ``HH:MM`` time of day."""
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


# Matches before this local time record an entry, at or after it an exit
EXIT_CUTOFF = parse_cutoff(os.getenv("EXIT_CUTOFF", "20:30"))

# Logging
LOG_FILE = os.getenv("LOG_FILE", "attendance.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_MAX_SIZE = 20 * 1024 * 1024  # 20 MB
LOG_BACKUP_COUNT = 5
