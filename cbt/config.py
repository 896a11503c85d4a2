"""Runtime configuration read from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cbt.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Scoring / clock
SCORE_MATCHING = os.getenv("CBT_SCORE_MATCHING", "0") in ("1", "true", "yes")
TICK_SECONDS = int(os.getenv("CBT_TICK_SECONDS", "1"))
# How long a saved, finished session stays available for its result view
FINISHED_RETENTION_SECONDS = int(os.getenv("CBT_FINISHED_RETENTION_SECONDS", "300"))
DEFAULT_DURATION = int(os.getenv("CBT_DEFAULT_DURATION", "60"))
LOW_TIME_WARNING_SECONDS = 300

# Optional AI essay grading oracle
AI_GRADER_MODEL = os.getenv("AI_GRADER_MODEL", "gemini-2.5-flash")
AI_GRADER_URL = os.getenv(
    "AI_GRADER_URL",
    f"https://generativelanguage.googleapis.com/v1beta/models/{AI_GRADER_MODEL}:generateContent",
)
AI_GRADER_API_KEY = os.getenv("AI_GRADER_API_KEY")
AI_GRADER_TIMEOUT = float(os.getenv("AI_GRADER_TIMEOUT", "20"))
