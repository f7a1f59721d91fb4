"""
databroker/core/config.py  ── SM Data Broker
═══════════════════════════════════════════════════════════════════════════════
STORE ASSIGNMENT:

  CMS Supabase      →  PRIMARY content store (system of record)
                         sm_posts, sm_categories

  DataLab Supabase  →  SECONDARY store (derived / display-only rows)
                         headlines_metadata, engagement_pulse
                         not configured → in-process MemoryStore

  Everything the broker derives can be rebuilt from the CMS at any time,
  so DataLab rows are advisory and last-write-wins.
═══════════════════════════════════════════════════════════════════════════════
"""

import logging
import os
from datetime import timedelta

import pytz

log = logging.getLogger("config")

LOCAL_TZ = pytz.timezone("America/Chicago")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        log.warning(f"{name}={raw!r} is not an integer — using {default}")
        return default


# ── CMS Supabase (primary) ────────────────────────────────────────────────────
# SECURITY: service keys come from the environment, never from source.
CMS_SUPABASE_URL = os.environ.get("CMS_SUPABASE_URL", "").rstrip("/")
CMS_SUPABASE_KEY = os.environ.get("CMS_SUPABASE_KEY", "")
if not CMS_SUPABASE_URL or not CMS_SUPABASE_KEY:
    log.warning(
        "CMS_SUPABASE_URL / CMS_SUPABASE_KEY not set — primary reads will fail "
        "and only cached data can be served"
    )

# ── DataLab Supabase (secondary) ──────────────────────────────────────────────
DATALAB_SUPABASE_URL = os.environ.get("DATALAB_SUPABASE_URL", "").rstrip("/")
DATALAB_SUPABASE_KEY = os.environ.get("DATALAB_SUPABASE_KEY", "")

# ── Tables ────────────────────────────────────────────────────────────────────
POSTS_TABLE      = "sm_posts"
CATEGORIES_TABLE = "sm_categories"
HEADLINES_TABLE  = "headlines_metadata"
PULSE_TABLE      = "engagement_pulse"

# ── Broker behaviour ──────────────────────────────────────────────────────────
STALE_THRESHOLD  = timedelta(minutes=_env_int("BROKER_STALE_MINUTES", 15))
HEADLINES_LIMIT  = _env_int("BROKER_HEADLINES_LIMIT", 12)
BRIEFING_LIMIT   = _env_int("BROKER_BRIEFING_LIMIT", 20)
PULSE_WINDOW     = timedelta(hours=1)
PULSE_TOP_POSTS  = 5
MAX_KEY_STATS    = 3
CMS_RELIABILITY  = 100   # CMS content is editorially reviewed
DEFAULT_PULSE_SCORE = 50

# ── Cache warmer ──────────────────────────────────────────────────────────────
WARMER_ENABLED      = _env_bool("BROKER_WARMER_ENABLED")
WARMER_ACTIVE_S     = _env_int("BROKER_WARMER_ACTIVE_S", 5 * 60)
WARMER_OFFPEAK_S    = _env_int("BROKER_WARMER_OFFPEAK_S", 15 * 60)
ACTIVE_HOURS_START  = 16     # local time; games and post-game coverage
ACTIVE_HOURS_END    = 1

# ── Stat patterns (order matters: first match of each type wins) ──────────────
STAT_PATTERNS: list[tuple[str, str]] = [
    # "24-17 win", "3-2 loss"
    ("score",      r"(\d+)-(\d+)\s*(win|loss|victory|defeat)"),
    # "rushed for 142 yards", "hit 3 home runs"
    ("stat",       r"(\d+(?:\.\d+)?)\s*(yards?|points?|goals?|assists?|rebounds?|home runs?"
                   r"|strikeouts?|touchdowns?|TDs?|RBIs?|saves?|hits?|sacks?)"),
    # "$24.5 million", "$140M"
    ("money",      r"\$(\d+(?:\.\d+)?)\s*(million|M|billion|B)"),
    # "11-6", "23-22-8"
    ("record",     r"\b(\d{1,3}-\d{1,3}(?:-\d{1,3})?)\b"),
    # "1st overall", "4th pick"
    ("draft",      r"(1st|2nd|3rd|\d+th)\s*(overall|pick|round)"),
    # "shooting 48.5%"
    ("percentage", r"(\d+(?:\.\d+)?)\s*%"),
]

# ── Team detection ────────────────────────────────────────────────────────────
# category slug fragment → team key (checked before title keywords)
CATEGORY_TEAMS: list[tuple[str, str]] = [
    ("bears",      "bears"),
    ("bulls",      "bulls"),
    ("blackhawks", "blackhawks"),
    ("cubs",       "cubs"),
    ("white-sox",  "white-sox"),
    ("whitesox",   "white-sox"),
]

# team key → title keywords (lower-case, substring match, dict order = priority)
TEAM_KEYWORDS: dict[str, list[str]] = {
    "bears":      ["bears", "nfl", "caleb williams", "soldier field"],
    "bulls":      ["bulls", "nba", "united center"],
    "blackhawks": ["blackhawks", "hawks", "nhl", "bedard"],
    "cubs":       ["cubs", "wrigley", "mlb"],
    "white-sox":  ["white sox", "whitesox", "sox", "guaranteed rate"],
}

GENERAL_TEAM = "general"
