"""
Runtime settings for the open play capacity engine.

Values come from the environment (a local .env file is loaded first).
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# How often the enforcement scheduler evaluates every facility (seconds)
OPEN_PLAY_POLL_INTERVAL_SECONDS = float(os.getenv("OPEN_PLAY_POLL_INTERVAL_SECONDS", "60"))

# Deadline for one facility's evaluation pass (seconds)
OPEN_PLAY_EVALUATION_TIMEOUT_SECONDS = float(
    os.getenv("OPEN_PLAY_EVALUATION_TIMEOUT_SECONDS", "120")
)

# "facility_batch" (one transaction per facility pass) or "per_session"
OPEN_PLAY_TRANSACTION_SCOPE = os.getenv("OPEN_PLAY_TRANSACTION_SCOPE", "facility_batch")

OPEN_PLAY_SCHEDULER_ENABLED = _env_bool("OPEN_PLAY_SCHEDULER_ENABLED", "true")

# Shared secret for the administrative open play routes. Unset disables them.
OPEN_PLAY_ADMIN_TOKEN = os.getenv("OPEN_PLAY_ADMIN_TOKEN", "")
