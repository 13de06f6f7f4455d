"""
Concept Tracker — Session & Activity Tracking

Opens one session per signed-in dashboard visit and records discrete user
interactions against it. Every write is fire-and-forget: a failure is
logged and dropped so the action being tracked (favoriting, searching,
switching tabs) always goes through.

USAGE:
------
    tracker = ActivityTracker(gateway, user_id)
    tracker.start_session(user_agent="...", referrer="...")
    tracker.track_demo_view(demo.id, demo.title)
    tracker.end_session()
"""

import logging
import time
from typing import Dict, Optional

from .gateway import ConceptGateway
from .models import ActivityType

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ActivityTracker:
    """Session lifecycle plus fire-and-forget activity events."""

    def __init__(self, gateway: ConceptGateway, user_id: Optional[str]):
        self.gateway = gateway
        self.user_id = user_id
        self.session_id: Optional[str] = None
        self.is_tracking = False
        self._session_started_ms: Optional[int] = None
        self._focus_started_ms: int = _now_ms()

    # =========================================================================
    # Session Lifecycle
    # =========================================================================

    def start_session(self, user_agent: str = None, referrer: str = None, ip_address: str = None) -> Optional[str]:
        """Open a session for the signed-in user. No-op when already tracking."""
        if not self.user_id or self.is_tracking:
            return self.session_id
        self.is_tracking = True
        try:
            self.session_id = self.gateway.start_session(user_agent, ip_address, referrer)
        except Exception as e:
            logger.warning(f"Failed to start session: {e}")
            self.is_tracking = False
            return None
        self._session_started_ms = _now_ms()
        logger.info(f"Session started: {self.session_id}")
        return self.session_id

    def end_session(self) -> None:
        """
        Close the session. Browsers that quit without reaching this leave the
        session open in the backend.
        """
        if not self.session_id:
            return
        duration = _now_ms() - (self._session_started_ms or _now_ms())
        self.log_activity(
            ActivityType.SESSION_END, "session",
            activity_data={"duration": duration, "endTime": _now_ms()},
        )
        try:
            self.gateway.end_session(self.session_id)
            logger.info(f"Session ended: {self.session_id}")
        except Exception as e:
            logger.warning(f"Failed to end session: {e}")
        self.session_id = None
        self.is_tracking = False

    # =========================================================================
    # Raw Logging
    # =========================================================================

    def log_activity(
        self,
        activity_type,
        resource_type: str,
        resource_id: str = None,
        activity_data: Dict = None,
        duration_ms: int = None,
    ) -> bool:
        """
        Record one event. Returns True when written; False when there is no
        session or the write failed.
        """
        if not self.session_id:
            return False
        kind = activity_type.value if isinstance(activity_type, ActivityType) else str(activity_type)
        try:
            self.gateway.log_activity(self.session_id, kind, resource_type, resource_id, activity_data, duration_ms)
            return True
        except Exception as e:
            logger.warning(f"Failed to log activity {kind}: {e}")
            return False

    # =========================================================================
    # Tracked Actions
    # =========================================================================

    def track_demo_view(self, demo_id: str, demo_title: str) -> bool:
        return self.log_activity(ActivityType.VIEW_DEMO, "demo", demo_id, {
            "title": demo_title,
            "timestamp": _now_ms(),
        })

    def track_demo_favorite(self, demo_id: str, demo_title: str, is_favorited: bool) -> bool:
        return self.log_activity(ActivityType.FAVORITE_DEMO, "demo", demo_id, {
            "title": demo_title,
            "action": "add" if is_favorited else "remove",
            "timestamp": _now_ms(),
        })

    def track_try_app(self, demo_id: str, demo_title: str, url: str) -> bool:
        return self.log_activity(ActivityType.TRY_APP, "demo", demo_id, {
            "title": demo_title,
            "url": url,
            "timestamp": _now_ms(),
        })

    def track_search(self, search_term: str, results_count: int) -> bool:
        return self.log_activity(ActivityType.SEARCH, "search", activity_data={
            "query": search_term,
            "results": results_count,
            "timestamp": _now_ms(),
        })

    def track_filter(self, filter_type: str, filter_value: str) -> bool:
        return self.log_activity(ActivityType.FILTER, "filter", activity_data={
            "type": filter_type,
            "value": filter_value,
            "timestamp": _now_ms(),
        })

    def track_tab_change(self, tab_name: str) -> bool:
        return self.log_activity(ActivityType.TAB_CHANGE, "navigation", activity_data={
            "tab": tab_name,
            "timestamp": _now_ms(),
        })

    def track_page_blur(self) -> bool:
        return self.log_activity(ActivityType.PAGE_BLUR, "page", activity_data={
            "timeSpent": _now_ms() - self._focus_started_ms,
        })

    def track_page_focus(self) -> bool:
        self._focus_started_ms = _now_ms()
        return self.log_activity(ActivityType.PAGE_FOCUS, "page")

    def track_click(self, element_type: str, element_id: str = "", element_class: str = "") -> bool:
        return self.log_activity(ActivityType.CLICK, "interaction", activity_data={
            "elementType": element_type,
            "elementId": element_id,
            "elementClass": element_class,
            "timestamp": _now_ms(),
        })

    def track_mouse_idle(self, idle_duration_ms: int) -> bool:
        return self.log_activity(ActivityType.MOUSE_IDLE, "interaction", activity_data={
            "idleDuration": idle_duration_ms,
        })
