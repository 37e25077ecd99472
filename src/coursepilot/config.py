import os
from pathlib import Path

from dotenv import load_dotenv

# ----------------------------
# Load .env file (if exists)
# ----------------------------
load_dotenv()

# ----------------------------
# Generation backend
# ----------------------------
API_BASE = os.getenv("COURSEPILOT_API_BASE", "http://127.0.0.1:8000").rstrip("/")
API_TOKEN = os.getenv("COURSEPILOT_API_TOKEN", "")

# Generation calls are slow; audio and quiz use the same budget
REQUEST_TIMEOUT = float(os.getenv("COURSEPILOT_TIMEOUT", "120"))

# ----------------------------
# Session defaults
# ----------------------------
DEFAULT_LANGUAGE = os.getenv("COURSEPILOT_LANGUAGE", "English")
LANGUAGES = ["English", "Hindi", "Spanish", "French", "German"]

QUIZ_PASS_PERCENT = 70

LOG_LEVEL = os.getenv("COURSEPILOT_LOG_LEVEL", "WARNING")

# Narration clips are written here so any local player can open them
AUDIO_DIR = Path(os.getenv("COURSEPILOT_AUDIO_DIR", str(Path.home() / ".coursepilot" / "audio")))
