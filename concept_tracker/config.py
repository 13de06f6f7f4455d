"""
Concept Tracker — Configuration

Single source of truth for connection settings, table names, thresholds and
analytics constants. Used by: gateway, stores, aggregators, dashboard.

Connection settings are read from environment variables first, then from
Streamlit secrets:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

Version: 1.0.0
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# =============================================================================
# App Metadata
# =============================================================================
APP_NAME = "Lyzr Concept Tracker"
APP_VERSION = "1.0.0"

# =============================================================================
# Connection Variables
# =============================================================================
# Preferred names first, legacy (Vite build) names second
URL_ENV_VARS = ("SUPABASE_URL", "VITE_SUPABASE_URL")
KEY_ENV_VARS = ("SUPABASE_KEY", "VITE_SUPABASE_ANON_KEY")

LOG_LEVEL_ENV_VAR = "CONCEPT_TRACKER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# =============================================================================
# Backend Tables / Buckets / RPCs
# =============================================================================
DEMOS_TABLE = "demos"
FAVORITES_TABLE = "user_favorites"
FOLDERS_TABLE = "favorite_folders"
PROFILES_TABLE = "user_profiles"
AUDIT_LOG_TABLE = "activity_logs"
SESSIONS_TABLE = "user_sessions"
ACTIVITY_TABLE = "user_activity_logs"
HEALTH_SCORES_TABLE = "demo_health_scores"

SCREENSHOT_BUCKET = "demo-screenshots"

RPC_INCREMENT_PAGE_VIEWS = "increment_page_views"
RPC_LOG_AUDIT = "log_user_activity"
RPC_START_SESSION = "start_user_session"
RPC_END_SESSION = "end_user_session"
RPC_LOG_ACTIVITY = "log_user_activity_detailed"
RPC_UPDATE_HEALTH_SCORES = "update_all_demo_health_scores"

# =============================================================================
# Roles
# =============================================================================
ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SUPER_ADMIN)

# =============================================================================
# Favorites
# =============================================================================
UNORGANIZED_FOLDER_ID = "unorganized"
UNORGANIZED_FOLDER_NAME = "Unorganized"
DEFAULT_FOLDER_COLOR = "#6B7280"
GLOBAL_FOLDER_COLOR = "#8B5CF6"

# =============================================================================
# Analytics Windows
# =============================================================================
GROWTH_WINDOW_DAYS = 30
WEEKLY_WINDOW_DAYS = 7
DAILY_SERIES_DAYS = 30

# Engagement score weights (max 40 + 30 + 30 = 100)
ENGAGEMENT_WEIGHT_HIGH_PERFORMERS = 40
ENGAGEMENT_WEIGHT_FEATURED = 30
ENGAGEMENT_WEIGHT_GROWTH = 10
ENGAGEMENT_GROWTH_CAP = 3

# Performance tiers on page_views: (label, min_inclusive, max_inclusive or None)
PERFORMANCE_TIERS = [
    ("1000+", 1000, None),
    ("500-999", 500, 999),
    ("100-499", 100, 499),
    ("50-99", 50, 99),
    ("0-49", 0, 49),
]

TOP_N_DEMOS = 5
TOP_N_OWNERS = 10
RECENT_ACTIVITY_LIMIT = 50

# "Your Engagement" reads the caller's own log, bounded
USER_ACTIVITY_WINDOW_DAYS = 90
USER_ACTIVITY_LIMIT = 1000

# Demo health labels on the 0-100 health_score: (label, min_inclusive)
HEALTH_LABELS = [
    ("Excellent", 80),
    ("Good", 60),
    ("Fair", 40),
]
HEALTH_LABEL_FLOOR = "Needs Attention"

# =============================================================================
# Catalog Views
# =============================================================================
RECENT_DEMO_DAYS = 7
TRENDING_MIN_VIEWS = 10
TRENDING_LIMIT = 6
SORT_OPTIONS = ("recent", "popular", "alphabetical")

# =============================================================================
# Startup Verification Timeouts (seconds)
# =============================================================================
AUTH_PROBE_TIMEOUT = 3
TABLE_PROBE_TIMEOUT = 5
VERIFY_TOTAL_TIMEOUT = 10


# =============================================================================
# Settings
# =============================================================================

@dataclass(frozen=True)
class Settings:
    """Backend connection settings."""
    supabase_url: str
    supabase_key: str


def _from_env(names) -> Optional[str]:
    for name in names:
        value = os.environ.get(name)
        if value and value.strip():
            return value.strip()
    return None


def _from_secrets(field_name: str, secrets=None) -> Optional[str]:
    """Read [supabase] <field_name> from Streamlit secrets, if available."""
    if secrets is None:
        try:
            import streamlit as st
            secrets = st.secrets
        except ImportError:
            return None
    try:
        value = secrets["supabase"][field_name]
    except (KeyError, FileNotFoundError):
        return None
    except Exception as e:
        # st.secrets raises its own error type when no secrets.toml exists
        logger.warning(f"Streamlit secrets unreadable for supabase.{field_name}: {e}")
        return None
    return str(value).strip() or None


def load_settings(secrets=None) -> Settings:
    """
    Resolve connection settings.

    Raises:
        ConfigurationError: listing every missing variable.
    """
    url = _from_env(URL_ENV_VARS) or _from_secrets("url", secrets)
    key = _from_env(KEY_ENV_VARS) or _from_secrets("key", secrets)

    missing = []
    if not url:
        missing.append(URL_ENV_VARS[0])
    if not key:
        missing.append(KEY_ENV_VARS[0])
    if missing:
        raise ConfigurationError(missing)

    return Settings(supabase_url=url, supabase_key=key)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once for the dashboard process."""
    level_name = (level or os.environ.get(LOG_LEVEL_ENV_VAR) or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def tier_labels() -> Dict[str, int]:
    """Tier label → empty count, in display order."""
    return {label: 0 for label, _, _ in PERFORMANCE_TIERS}
