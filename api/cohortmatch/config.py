import json
import os
from typing import Any

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/cohortmatch")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
MATCH_TIMEZONE = os.getenv("MATCH_TIMEZONE", "UTC")
# Monday=0 ... Sunday=6; groups are keyed to the most recent Thursday.
MATCH_WEEKDAY = int(os.getenv("MATCH_WEEKDAY", "3"))
SCORER_FUNCTION = os.getenv("SCORER_FUNCTION", "calculate_match_score")
GROUPING_SOURCE = os.getenv("GROUPING_SOURCE", "accepted_matches")

DEFAULT_PIPELINE_CONFIG: dict[str, Any] = {
    "SCORE_BATCH_SIZE": int(os.getenv("SCORE_BATCH_SIZE", "20")),
    "CANDIDACY_MIN_SCORE": float(os.getenv("CANDIDACY_MIN_SCORE", "20")),
    "ACCEPT_MIN_SCORE": float(os.getenv("ACCEPT_MIN_SCORE", "60")),
    "PROMOTE_LIMIT": int(os.getenv("PROMOTE_LIMIT", "20")),
    "GROUP_CAPACITY": int(os.getenv("GROUP_CAPACITY", "5")),
    "PROGRESS_EVERY_PAIRS": int(os.getenv("PROGRESS_EVERY_PAIRS", "100")),
    "SCORER_TIMEOUT_SECONDS": float(os.getenv("SCORER_TIMEOUT_SECONDS", "30")),
}

if os.getenv("PIPELINE_CONFIG_JSON"):
    try:
        DEFAULT_PIPELINE_CONFIG.update(json.loads(os.getenv("PIPELINE_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        pass
