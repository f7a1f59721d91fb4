"""
databroker/enrich.py
═══════════════════════════════════════════════════════════════════════════════
Pure record shaping for the broker. No I/O in here.

  extract_stats()    → up to 3 {label, value, type} stats from free text
  detect_team_key()  → team tag from category slug, then title keywords
  is_fresh()         → cached timestamp within the freshness threshold?
  build_headline()   → sm_posts row  → enriched headline
  headline_row()     → enriched headline → headlines_metadata row
  map_headline_row() → headlines_metadata row → enriched headline
  compute_pulse()    → last-hour posts (+ previous pulse) → pulse record
  build_briefing()   → headlines → one briefing item per team
═══════════════════════════════════════════════════════════════════════════════
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from databroker.core.config import (
    CATEGORY_TEAMS, CMS_RELIABILITY, DEFAULT_PULSE_SCORE, GENERAL_TEAM,
    MAX_KEY_STATS, STAT_PATTERNS, TEAM_KEYWORDS,
)

_COMPILED = [(kind, re.compile(rx, re.IGNORECASE | re.ASCII)) for kind, rx in STAT_PATTERNS]


# ── Classification ────────────────────────────────────────────────────────────

def extract_stats(title: str, excerpt: Optional[str] = None) -> list[dict]:
    text  = f"{title or ''} {excerpt or ''}"
    stats = []
    for kind, rx in _COMPILED:
        m = rx.search(text)
        if m:
            stats.append({"label": kind, "value": m.group(0), "type": kind})
    return stats[:MAX_KEY_STATS]


def detect_team_key(title: str, category_slug: Optional[str] = None) -> Optional[str]:
    if category_slug:
        slug = category_slug.lower()
        for fragment, team in CATEGORY_TEAMS:
            if fragment in slug:
                return team

    lower = (title or "").lower()
    for team, keywords in TEAM_KEYWORDS.items():
        if any(kw in lower for kw in keywords):
            return team
    return None


# ── Freshness ─────────────────────────────────────────────────────────────────

def parse_ts(value: Any) -> Optional[datetime]:
    """ISO-8601 string / datetime → aware UTC datetime. Naive means UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_fresh(value: Any, now: datetime, threshold: timedelta) -> bool:
    ts = parse_ts(value)
    if ts is None:
        return False
    return now - ts < threshold


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat()


# ── Headlines ─────────────────────────────────────────────────────────────────

def build_headline(post: dict, category_slug: Optional[str]) -> dict:
    title   = post.get("title") or ""
    excerpt = post.get("excerpt")
    return {
        "post_id":             str(post.get("id")),
        "title":               title,
        "excerpt":             excerpt,
        "category":            category_slug,
        "team_key":            detect_team_key(title, category_slug),
        "key_stats":           extract_stats(title, excerpt),
        "reliability_score":   CMS_RELIABILITY,
        "engagement_velocity": 0,
        "featured_image":      post.get("featured_image"),
        "published_at":        post.get("published_at"),
        "source":              "cms",
    }


def headline_row(headline: dict, fetched_at: str) -> dict:
    return {**headline, "fetched_at": fetched_at, "updated_at": fetched_at}


def _number(value: Any, default: float) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return default
    # keep integers integral so cached rows compare equal to fresh ones
    return int(n) if n.is_integer() else n


def _int(value: Any) -> int:
    """Lenient count coercion: "12", "12.0", 12.7 → 12; junk, NaN, inf → 0."""
    try:
        return int(_number(value, 0))
    except (ValueError, OverflowError):
        return 0


def map_headline_row(row: dict) -> dict:
    return {
        "post_id":             str(row.get("post_id")),
        "title":               str(row.get("title") or ""),
        "excerpt":             row.get("excerpt"),
        "category":            row.get("category"),
        "team_key":            row.get("team_key"),
        "key_stats":           row.get("key_stats") or [],
        "reliability_score":   _number(row.get("reliability_score"), CMS_RELIABILITY) or CMS_RELIABILITY,
        "engagement_velocity": _number(row.get("engagement_velocity"), 0),
        "featured_image":      row.get("featured_image"),
        "published_at":        row.get("published_at"),
        "source":              str(row.get("source") or "cache"),
    }


# ── Engagement pulse ──────────────────────────────────────────────────────────

def compute_pulse(recent_posts: list[dict], previous: Optional[dict], computed_at: str) -> dict:
    """
    recent_posts: most-viewed published posts of the last hour (views desc).
    previous:     the cached engagement_pulse row, if any (stale or not).
    """
    prev   = previous or {}
    views  = sum(_int(p.get("views")) for p in recent_posts)
    # 100 views/hr ≈ score of 80; a zero score falls back to the last known one
    score  = min(100, int(views * 0.8 + 0.5)) or prev.get("engagement_score") or DEFAULT_PULSE_SCORE
    topic  = None
    if recent_posts and recent_posts[0].get("title"):
        topic = recent_posts[0]["title"][:60]
    return {
        "engagement_score": _number(score, DEFAULT_PULSE_SCORE),
        "views_last_hour":  views,
        "views_delta":      views - _int(prev.get("views_last_hour")),
        "active_readers":   len(recent_posts),
        "trending_topic":   topic or prev.get("trending_topic"),
        "computed_at":      computed_at,
    }


def map_pulse_row(row: dict) -> dict:
    return {
        "engagement_score": _number(row.get("engagement_score"), DEFAULT_PULSE_SCORE) or DEFAULT_PULSE_SCORE,
        "views_last_hour":  _int(row.get("views_last_hour")),
        "views_delta":      _int(row.get("views_delta")),
        "active_readers":   _int(row.get("active_readers")),
        "trending_topic":   row.get("trending_topic"),
        "computed_at":      row.get("computed_at"),
    }


# ── Briefing ──────────────────────────────────────────────────────────────────

def _trend(velocity: Any) -> str:
    v = _number(velocity, 0)
    if v > 0:
        return "up"
    if v < 0:
        return "down"
    return "neutral"


def build_briefing(headlines: list[dict]) -> list[dict]:
    """First (most recent) headline per team; untagged ones group as 'general'."""
    by_team: dict[str, dict] = {}
    for h in headlines:
        team = h.get("team_key") or GENERAL_TEAM
        if team in by_team:
            continue
        stats = h.get("key_stats")
        first = stats[0] if isinstance(stats, list) and stats else None
        by_team[team] = {
            "team":     team,
            "headline": h.get("title") or "",
            "stat":     first.get("value") if isinstance(first, dict) else None,
            "trend":    _trend(h.get("engagement_velocity")),
        }
    return list(by_team.values())
