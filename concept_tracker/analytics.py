"""
Concept Tracker — Analytics

Read-only rollups over the in-memory demo list for the Analytics tab, plus
best-effort summaries of activity logs and sessions.

Every rollup here is a pure function of its arguments (pass `now` to pin
the clock); nothing is cached between calls. Rounding is half-up
(.5 goes toward +infinity), not banker's rounding.

VERSION HISTORY:
----------------
v1.0.0: Initial release
  - Overview metrics: totals, averages, growth, engagement score
  - Tag rollup, owner leaderboard, performance tiers, 30-day daily series
  - Activity feed / breakdown, session summary, per-user engagement
  - Per-user engagement reads the user's own log, not the global feed
  - Demo health scores with labels and a best-effort refresh
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pandas as pd

from . import config as cfg
from .models import ActivityLogEntry, ActivityType, Demo, DemoHealthScore, UserSession, utcnow

logger = logging.getLogger(__name__)

TAG_COLUMNS = ["tag", "count", "total_views", "avg_views"]
OWNER_COLUMNS = ["owner", "demos", "total_views", "avg_views", "featured", "top_demo", "top_demo_views"]
DAILY_COLUMNS = ["date", "demos", "views"]


def js_round(value: float) -> int:
    """Nearest integer, .5 goes toward +infinity."""
    return int(math.floor(value + 0.5))


# =============================================================================
# Overview Metrics
# =============================================================================

@dataclass
class OverviewMetrics:
    total_demos: int = 0
    total_views: int = 0
    average_views: int = 0
    featured_count: int = 0
    high_performers: int = 0
    created_last_30_days: int = 0
    created_last_7_days: int = 0
    growth_rate: int = 0
    weekly_growth: int = 0
    engagement_score: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def total_views(demos: List[Demo]) -> int:
    return sum(d.page_views for d in demos)


def average_views(demos: List[Demo]) -> int:
    if not demos:
        return 0
    return js_round(total_views(demos) / len(demos))


def created_within(demos: List[Demo], days: int, now: datetime = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=days)
    return sum(1 for d in demos if d.created_at and d.created_at > cutoff)


def growth_rate(demos: List[Demo], now: datetime = None) -> int:
    """Share of the catalog created in the last 30 days, as a percentage."""
    if not demos:
        return 0
    return js_round(100 * created_within(demos, cfg.GROWTH_WINDOW_DAYS, now) / len(demos))


def weekly_growth(demos: List[Demo], now: datetime = None) -> int:
    """Share of the last 30 days' demos that arrived in the last 7."""
    month = created_within(demos, cfg.GROWTH_WINDOW_DAYS, now)
    if month == 0:
        return 0
    return js_round(100 * created_within(demos, cfg.WEEKLY_WINDOW_DAYS, now) / month)


def high_performers(demos: List[Demo]) -> int:
    avg = average_views(demos)
    return sum(1 for d in demos if d.page_views > avg)


def engagement_score(demos: List[Demo], now: datetime = None) -> int:
    """
    0-100 blend: 40 x high-performer ratio + 30 x featured ratio
    + 10 x min(growth_rate / 10, 3).
    """
    total = len(demos)
    if total == 0:
        return 0
    featured = sum(1 for d in demos if d.is_featured)
    growth = growth_rate(demos, now)
    return js_round(
        cfg.ENGAGEMENT_WEIGHT_HIGH_PERFORMERS * (high_performers(demos) / total)
        + cfg.ENGAGEMENT_WEIGHT_FEATURED * (featured / total)
        + cfg.ENGAGEMENT_WEIGHT_GROWTH * min(growth / 10, cfg.ENGAGEMENT_GROWTH_CAP)
    )


def compute_overview(demos: List[Demo], now: datetime = None) -> OverviewMetrics:
    now = now or utcnow()
    if not demos:
        return OverviewMetrics()
    return OverviewMetrics(
        total_demos=len(demos),
        total_views=total_views(demos),
        average_views=average_views(demos),
        featured_count=sum(1 for d in demos if d.is_featured),
        high_performers=high_performers(demos),
        created_last_30_days=created_within(demos, cfg.GROWTH_WINDOW_DAYS, now),
        created_last_7_days=created_within(demos, cfg.WEEKLY_WINDOW_DAYS, now),
        growth_rate=growth_rate(demos, now),
        weekly_growth=weekly_growth(demos, now),
        engagement_score=engagement_score(demos, now),
    )


def top_demos(demos: List[Demo], n: int = cfg.TOP_N_DEMOS) -> List[Demo]:
    return sorted(demos, key=lambda d: d.page_views, reverse=True)[:n]


# =============================================================================
# Rollups
# =============================================================================

def tag_rollup(demos: List[Demo]) -> pd.DataFrame:
    """
    One row per tag: demos carrying it, their summed views, rounded average.

    A demo with N tags counts toward N rows. Sorted by total views, highest
    first; ties keep first-seen order.
    """
    rows = [(tag, d.page_views) for d in demos for tag in d.tags]
    if not rows:
        return pd.DataFrame(columns=TAG_COLUMNS)

    df = pd.DataFrame(rows, columns=["tag", "page_views"])
    grouped = (
        df.groupby("tag", sort=False)
        .agg(count=("page_views", "size"), total_views=("page_views", "sum"))
        .reset_index()
    )
    grouped["avg_views"] = [
        js_round(views / count) for views, count in zip(grouped["total_views"], grouped["count"])
    ]
    return grouped.sort_values("total_views", ascending=False, kind="stable").reset_index(drop=True)[TAG_COLUMNS]


def owner_leaderboard(demos: List[Demo], limit: Optional[int] = None) -> pd.DataFrame:
    """Owners ranked by total views, with their best single demo."""
    if not demos:
        return pd.DataFrame(columns=OWNER_COLUMNS)

    df = pd.DataFrame({
        "owner": [d.owner for d in demos],
        "title": [d.title for d in demos],
        "page_views": [d.page_views for d in demos],
        "is_featured": [d.is_featured for d in demos],
    })

    records = []
    for owner, group in df.groupby("owner", sort=False):
        # idxmax keeps the first demo on ties
        best = group.loc[group["page_views"].idxmax()]
        views = int(group["page_views"].sum())
        records.append({
            "owner": owner,
            "demos": len(group),
            "total_views": views,
            "avg_views": js_round(views / len(group)),
            "featured": int(group["is_featured"].sum()),
            "top_demo": best["title"],
            "top_demo_views": int(best["page_views"]),
        })

    board = pd.DataFrame(records, columns=OWNER_COLUMNS)
    board = board.sort_values("total_views", ascending=False, kind="stable").reset_index(drop=True)
    return board.head(limit) if limit else board


def assign_tier(page_views: int) -> str:
    for label, low, high in cfg.PERFORMANCE_TIERS:
        if page_views >= low and (high is None or page_views <= high):
            return label
    # Negative counts never come from the backend; file them with the lowest tier
    return cfg.PERFORMANCE_TIERS[-1][0]


def performance_tiers(demos: List[Demo]) -> Dict[str, int]:
    """Count of demos per page-view tier, highest tier first."""
    counts = cfg.tier_labels()
    for demo in demos:
        counts[assign_tier(demo.page_views)] += 1
    return counts


def daily_activity(demos: List[Demo], now: datetime = None, days: int = cfg.DAILY_SERIES_DAYS) -> pd.DataFrame:
    """
    Demos created and their views, per calendar day, for the last `days`
    days including today (oldest first).
    """
    today = (now or utcnow()).date()
    dates = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    per_day = {d: [0, 0] for d in dates}
    for demo in demos:
        if not demo.created_at:
            continue
        day = demo.created_at.date()
        if day in per_day:
            per_day[day][0] += 1
            per_day[day][1] += demo.page_views
    return pd.DataFrame(
        [(d, per_day[d][0], per_day[d][1]) for d in dates],
        columns=DAILY_COLUMNS,
    )


# =============================================================================
# Activity & Sessions (best-effort)
# =============================================================================

def fetch_recent_activity(gateway, limit: int = cfg.RECENT_ACTIVITY_LIMIT) -> List[ActivityLogEntry]:
    """Recent activity, or [] when the feed is unavailable."""
    try:
        return gateway.list_recent_activity(limit)
    except Exception as e:
        logger.warning(f"Real-time activities not available: {e}")
        return []


def fetch_user_activity(gateway, user_id: str, now: datetime = None) -> List[ActivityLogEntry]:
    """
    The user's own events over the engagement window, or [] when
    unavailable. Read separately from the global feed so other users'
    traffic never crowds this user's history out.
    """
    since = (now or utcnow()) - timedelta(days=cfg.USER_ACTIVITY_WINDOW_DAYS)
    try:
        return gateway.list_user_activity(user_id, since.isoformat())
    except Exception as e:
        logger.warning(f"User activity not available: {e}")
        return []


def fetch_sessions(gateway, since: datetime = None) -> List[UserSession]:
    """Sessions started since `since`, or [] when unavailable."""
    try:
        return gateway.list_sessions(since.isoformat() if since else None)
    except Exception as e:
        logger.warning(f"Session data not available: {e}")
        return []


def activity_breakdown(entries: List[ActivityLogEntry]) -> Dict[str, int]:
    """Event count per activity type, most frequent first."""
    return dict(Counter(e.activity_type for e in entries).most_common())


def describe_activity(entry: ActivityLogEntry) -> str:
    """One-line human description for the activity feed."""
    data = entry.activity_data or {}
    title = entry.resource_title or data.get("title") or "a demo"
    kind = entry.activity_type
    if kind == ActivityType.VIEW_DEMO.value:
        return f'viewed "{title}"'
    if kind == ActivityType.FAVORITE_DEMO.value:
        verb = "favorited" if data.get("action") == "add" else "unfavorited"
        return f'{verb} "{title}"'
    if kind == ActivityType.TRY_APP.value:
        return f'tried app "{title}"'
    if kind == ActivityType.SEARCH.value:
        return f'searched for "{data.get("query", "")}" ({data.get("results", 0)} results)'
    if kind == ActivityType.FILTER.value:
        return f'filtered by {data.get("type")}: "{data.get("value")}"'
    if kind == ActivityType.CLICK.value:
        return f'clicked on {data.get("elementType", "element")}'
    if kind == ActivityType.TAB_CHANGE.value:
        return f'switched to {data.get("tab")} tab'
    if kind == ActivityType.PAGE_FOCUS.value:
        return "returned to page"
    if kind == ActivityType.PAGE_BLUR.value:
        return "switched away from page"
    return kind.replace("_", " ")


@dataclass
class SessionSummary:
    total_sessions: int = 0
    open_sessions: int = 0
    unique_users: int = 0
    average_duration_seconds: Optional[float] = None


def session_summary(sessions: List[UserSession]) -> SessionSummary:
    """
    Session counts and mean duration of closed sessions.

    Sessions never closed (browser quit without cleanup) are counted as open
    and left out of the duration average.
    """
    if not sessions:
        return SessionSummary()
    durations = [s.duration_seconds for s in sessions if s.duration_seconds is not None]
    return SessionSummary(
        total_sessions=len(sessions),
        open_sessions=sum(1 for s in sessions if s.is_open),
        unique_users=len({s.user_id for s in sessions}),
        average_duration_seconds=sum(durations) / len(durations) if durations else None,
    )


@dataclass
class UserEngagement:
    """
    A user's own engagement, computed from their activity log.

    Fields are None when there is no data to compute them from.
    """
    views: int = 0
    favorites_added: int = 0
    searches: int = 0
    active_days: int = 0
    current_streak_days: Optional[int] = None
    favorite_tag: Optional[str] = None
    tags_seen: List[str] = field(default_factory=list)


def user_engagement(entries: List[ActivityLogEntry], demos: List[Demo], user_id: str = None, today: date = None) -> UserEngagement:
    mine = [e for e in entries if user_id is None or e.user_id == user_id]
    if not mine:
        return UserEngagement()

    views = [e for e in mine if e.activity_type == ActivityType.VIEW_DEMO.value]
    tags_by_demo = {d.id: d.tags for d in demos}
    tag_counts = Counter(tag for e in views for tag in tags_by_demo.get(e.resource_id, []))

    days = {e.created_at.date() for e in mine if e.created_at}
    streak = None
    if days:
        streak = 0
        cursor = today or utcnow().date()
        while cursor in days:
            streak += 1
            cursor -= timedelta(days=1)

    return UserEngagement(
        views=len(views),
        favorites_added=sum(
            1 for e in mine
            if e.activity_type == ActivityType.FAVORITE_DEMO.value and (e.activity_data or {}).get("action") == "add"
        ),
        searches=sum(1 for e in mine if e.activity_type == ActivityType.SEARCH.value),
        active_days=len(days),
        current_streak_days=streak,
        favorite_tag=tag_counts.most_common(1)[0][0] if tag_counts else None,
        tags_seen=[tag for tag, _ in tag_counts.most_common()],
    )


# =============================================================================
# Demo Health (best-effort)
# =============================================================================

HEALTH_COLUMNS = [
    "title", "owner", "health_score", "status", "view_score", "engagement_score",
    "recency_score", "favorite_score", "conversion_score", "last_calculated",
]


def health_label(score: float) -> str:
    for label, low in cfg.HEALTH_LABELS:
        if score >= low:
            return label
    return cfg.HEALTH_LABEL_FLOOR


def fetch_health_scores(gateway) -> List[DemoHealthScore]:
    """Per-demo health scores, or [] when the backend has none."""
    try:
        return gateway.list_health_scores()
    except Exception as e:
        logger.warning(f"Health scores not available: {e}")
        return []


def refresh_health_scores(gateway) -> bool:
    """Recompute every demo's health score; False when the backend can't."""
    try:
        gateway.refresh_health_scores()
    except Exception as e:
        logger.warning(f"Health score refresh failed: {e}")
        return False
    logger.info("Health scores refreshed")
    return True


def health_table(scores: List[DemoHealthScore]) -> pd.DataFrame:
    if not scores:
        return pd.DataFrame(columns=HEALTH_COLUMNS)
    return pd.DataFrame([
        {
            "title": s.title,
            "owner": s.owner,
            "health_score": js_round(s.health_score),
            "status": health_label(s.health_score),
            "view_score": js_round(s.view_score),
            "engagement_score": js_round(s.engagement_score),
            "recency_score": js_round(s.recency_score),
            "favorite_score": js_round(s.favorite_score),
            "conversion_score": js_round(s.conversion_score),
            "last_calculated": s.last_calculated,
        }
        for s in scores
    ], columns=HEALTH_COLUMNS)


# =============================================================================
# Dashboard Bundle
# =============================================================================

@dataclass
class AnalyticsSnapshot:
    overview: OverviewMetrics
    tags: pd.DataFrame
    owners: pd.DataFrame
    tiers: Dict[str, int]
    daily: pd.DataFrame
    top: List[Demo]
    activity: List[ActivityLogEntry]
    sessions: SessionSummary
    engagement: UserEngagement = field(default_factory=UserEngagement)
    health: List[DemoHealthScore] = field(default_factory=list)


def build_snapshot(demos: List[Demo], gateway=None, now: datetime = None, user_id: str = None) -> AnalyticsSnapshot:
    """
    Everything the Analytics tab shows, recomputed from scratch.

    With a user_id, `engagement` covers that user's own activity log.
    """
    now = now or utcnow()
    activity = fetch_recent_activity(gateway) if gateway else []
    sessions = fetch_sessions(gateway, now - timedelta(days=cfg.GROWTH_WINDOW_DAYS)) if gateway else []
    mine = fetch_user_activity(gateway, user_id, now) if gateway and user_id else []
    health = fetch_health_scores(gateway) if gateway else []
    return AnalyticsSnapshot(
        overview=compute_overview(demos, now),
        tags=tag_rollup(demos),
        owners=owner_leaderboard(demos, cfg.TOP_N_OWNERS),
        tiers=performance_tiers(demos),
        daily=daily_activity(demos, now),
        top=top_demos(demos),
        activity=activity,
        sessions=session_summary(sessions),
        engagement=user_engagement(mine, demos, user_id, now.date()) if user_id else UserEngagement(),
        health=health,
    )
