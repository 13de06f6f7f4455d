"""
Concept Tracker — Demo Catalog Store

Holds the in-memory list of demos fetched through the gateway and applies
add / update / delete / feature / view-count changes to it after each
backend round trip. Also provides the pure catalog views the dashboard tabs
render (search, tag filter, featured / recent / trending, sort orders).

USAGE:
------
    catalog = DemoCatalog(gateway)
    demos, error = catalog.fetch()
    demo, error = catalog.add_demo({"title": "...", "tags": ["rag"], ...})
    catalog.increment_page_views(demo.id)
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from . import config as cfg
from .errors import ConceptTrackerError, GatewayError
from .gateway import ConceptGateway
from .models import Demo, Mutation, utcnow

logger = logging.getLogger(__name__)


class DemoCatalog:
    """In-memory demo catalog backed by the gateway."""

    def __init__(self, gateway: ConceptGateway):
        self.gateway = gateway
        self.demos: List[Demo] = []
        self.error: Optional[str] = None
        self.loaded = False
        self.mutations: List[Mutation] = []
        self._lock = threading.Lock()

    # =========================================================================
    # Loading
    # =========================================================================

    def fetch(self) -> Tuple[List[Demo], Optional[str]]:
        """
        Load published demos.

        On failure the previous list is kept and the error is returned for
        an inline retry card.
        """
        try:
            demos = self.gateway.list_demos()
        except GatewayError as e:
            self.error = str(e)
            return self.demos, self.error
        logger.info(f"Demos fetched: {len(demos)}")
        self.demos = demos
        self.error = None
        self.loaded = True
        return self.demos, None

    def refetch(self) -> Tuple[List[Demo], Optional[str]]:
        return self.fetch()

    def get(self, demo_id: str) -> Optional[Demo]:
        for demo in self.demos:
            if demo.id == demo_id:
                return demo
        return None

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_demo(self, data: Dict) -> Tuple[Optional[Demo], Optional[str]]:
        """Insert a demo (admin only) and prepend it locally."""
        error = validate_demo(data)
        if error:
            return None, error
        try:
            self.gateway.require_role(cfg.ROLE_ADMIN, cfg.ROLE_SUPER_ADMIN)
            demo = self.gateway.insert_demo(data)
        except ConceptTrackerError as e:
            return None, str(e)

        self.demos = [demo] + self.demos
        self.gateway.log_audit("create", "demo", demo.id, {"title": demo.title})
        return demo, None

    def update_demo(self, demo_id: str, changes: Dict) -> Tuple[Optional[Demo], Optional[str]]:
        try:
            self.gateway.require_role(cfg.ROLE_ADMIN, cfg.ROLE_SUPER_ADMIN)
            updated = self.gateway.update_demo(demo_id, changes)
        except ConceptTrackerError as e:
            return None, str(e)

        self._replace(updated)
        self.gateway.log_audit("update", "demo", demo_id, {"updates": sorted(changes)})
        return updated, None

    def toggle_featured(self, demo_id: str) -> Tuple[Optional[Demo], Optional[str]]:
        demo = self.get(demo_id)
        if not demo:
            return None, f"Demo {demo_id} not found"
        return self.update_demo(demo_id, {"is_featured": not demo.is_featured})

    def delete_demo(self, demo_id: str) -> Tuple[bool, Optional[str]]:
        """Hard delete (admin only). Favorite links cascade in the backend."""
        try:
            self.gateway.require_role(cfg.ROLE_ADMIN, cfg.ROLE_SUPER_ADMIN)
            self.gateway.delete_demo(demo_id)
        except ConceptTrackerError as e:
            return False, str(e)

        self.demos = [d for d in self.demos if d.id != demo_id]
        self.gateway.log_audit("delete", "demo", demo_id)
        return True, None

    def increment_page_views(self, demo_id: str) -> Mutation:
        """
        Count a view: +1 locally right away, then the atomic backend increment.

        The local bump is reverted if the backend call fails.
        """
        mutation = Mutation(kind="increment_page_views", target_id=demo_id)
        self.mutations.append(mutation)
        self._bump_views(demo_id, 1)
        try:
            self.gateway.increment_page_views(demo_id)
        except GatewayError as e:
            self._bump_views(demo_id, -1)
            logger.warning(f"Page view increment reverted for {demo_id}: {e}")
            return mutation.fail(str(e))
        return mutation.confirm()

    def upload_screenshot(self, file_bytes: bytes, demo_key: str, content_type: str = "image/png") -> Tuple[Optional[str], Optional[str]]:
        try:
            return self.gateway.upload_screenshot(file_bytes, demo_key, content_type), None
        except GatewayError as e:
            return None, str(e)

    def delete_screenshot(self, screenshot_url: str) -> Tuple[bool, Optional[str]]:
        try:
            self.gateway.delete_screenshot(screenshot_url)
            return True, None
        except GatewayError as e:
            return False, str(e)

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _replace(self, updated: Demo):
        self.demos = [updated if d.id == updated.id else d for d in self.demos]

    def _bump_views(self, demo_id: str, delta: int):
        with self._lock:
            for demo in self.demos:
                if demo.id == demo_id:
                    demo.page_views = max(0, demo.page_views + delta)


# =============================================================================
# Validation
# =============================================================================

def validate_demo(data: Dict) -> Optional[str]:
    """Return an error message for an incomplete Add form, else None."""
    for required in ("title", "description", "owner", "netlify_url"):
        if not str(data.get(required) or "").strip():
            return f"Missing required field: {required}"
    if not data.get("tags"):
        return "At least one tag is required"
    return None


# =============================================================================
# Catalog Views
# =============================================================================

def all_tags(demos: List[Demo]) -> List[str]:
    """Every distinct tag, sorted."""
    return sorted({tag for demo in demos for tag in demo.tags})


def filter_demos(demos: List[Demo], search: str = "", tag: Optional[str] = None) -> List[Demo]:
    """Case-insensitive search over title / description / owner plus an exact tag filter."""
    term = (search or "").lower()
    result = []
    for demo in demos:
        matches_search = (
            term in demo.title.lower()
            or term in demo.description.lower()
            or term in demo.owner.lower()
        )
        matches_tag = not tag or tag in demo.tags
        if matches_search and matches_tag:
            result.append(demo)
    return result


def featured_demos(demos: List[Demo]) -> List[Demo]:
    return [d for d in demos if d.is_featured]


def recent_demos(demos: List[Demo], now: datetime = None, days: int = cfg.RECENT_DEMO_DAYS) -> List[Demo]:
    cutoff = (now or utcnow()) - timedelta(days=days)
    return [d for d in demos if d.created_at and d.created_at > cutoff]


def trending_demos(demos: List[Demo], limit: int = cfg.TRENDING_LIMIT) -> List[Demo]:
    """High-view demos, newer ones nudged up: score = views + created_at(ms) / 1e6."""
    def score(demo: Demo) -> float:
        created_ms = demo.created_at.timestamp() * 1000 if demo.created_at else 0
        return demo.page_views + created_ms / 1_000_000

    candidates = [d for d in demos if d.page_views > cfg.TRENDING_MIN_VIEWS]
    return sorted(candidates, key=score, reverse=True)[:limit]


def sort_demos(demos: List[Demo], by: str = "recent") -> List[Demo]:
    if by == "popular":
        return sorted(demos, key=lambda d: d.page_views, reverse=True)
    if by == "alphabetical":
        return sorted(demos, key=lambda d: d.title.lower())
    return sorted(
        demos,
        key=lambda d: d.created_at.timestamp() if d.created_at else 0,
        reverse=True,
    )
