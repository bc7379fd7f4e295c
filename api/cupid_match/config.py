import json
import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_default_questions = Path(__file__).resolve().parent / "questions.json"
QUESTIONS_PATH = Path(os.getenv("QUESTIONS_PATH", str(_default_questions)))

JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", "60"))

# Scores live on a 0-100 scale.
MIN_SCORE = float(os.getenv("MIN_SCORE", "30"))
MUTUALITY_ALPHA = float(os.getenv("MUTUALITY_ALPHA", "0.65"))
MATCH_ALGO_MODE = os.getenv("MATCH_ALGO_MODE", "max_weight")
SCORING_WORKERS = int(os.getenv("SCORING_WORKERS", "1"))

SHORTLIST_SIZE = int(os.getenv("SHORTLIST_SIZE", "25"))
SHORTLIST_VISIBLE_DEFAULT = int(os.getenv("SHORTLIST_VISIBLE_DEFAULT", "5"))
MAX_CUPID_SENT_MATCHES = int(os.getenv("MAX_CUPID_SENT_MATCHES", "2"))
MAX_CUPID_RECEIVED_MATCHES = int(os.getenv("MAX_CUPID_RECEIVED_MATCHES", "2"))

DEFAULT_SCORING_CONFIG: dict[str, Any] = {
    "IMPORTANCE_WEIGHTS": {
        "not_important": 0.0,
        "somewhat_important": 0.5,
        "important": 1.0,
        "very_important": 2.0,
        "dealbreaker": 2.0,
    },
    "DEFAULT_IMPORTANCE": os.getenv("DEFAULT_IMPORTANCE", "important"),
    "MAX_IMPORTANCE_WEIGHT": float(os.getenv("MAX_IMPORTANCE_WEIGHT", "2.0")),
    "DIRECTIONAL_EQUAL": float(os.getenv("DIRECTIONAL_EQUAL", "0.5")),
    "DIRECTIONAL_CONFLICT": float(os.getenv("DIRECTIONAL_CONFLICT", "0.3")),
    "DEFAULT_SCALE_TOLERANCE": float(os.getenv("DEFAULT_SCALE_TOLERANCE", "1.0")),
}

if os.getenv("SCORING_CONFIG_JSON"):
    try:
        DEFAULT_SCORING_CONFIG.update(json.loads(os.getenv("SCORING_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        logger.warning("Ignoring SCORING_CONFIG_JSON: not valid JSON")
