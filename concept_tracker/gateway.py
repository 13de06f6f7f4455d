"""
Concept Tracker — Supabase Gateway

Thin wrapper over supabase-py. Every table read/write, RPC, auth call and
storage call the dashboard makes goes through ConceptGateway. It owns no
aggregation logic; it translates backend failures into GatewayError /
ForbiddenError and rows into model dataclasses.

Usage:
    from concept_tracker.gateway import ConceptGateway

    gateway = ConceptGateway.from_settings(load_settings())
    ok, error = gateway.login(email, password)
    demos = gateway.list_demos()

VERSION HISTORY:
----------------
v1.0.0: Initial implementation
  - Auth: login, signup, logout, get_user, password reset, auth listener
  - Profiles: get, list, update, role checks against fresh profile rows
  - Demos: list, insert, update, delete, atomic page view RPC
  - Favorites & folders: personal + global folder queries
  - Telemetry: audit log RPC, sessions, activity events, per-user activity
  - Demo health: score rows, recompute RPC
  - Storage: screenshot upload/delete
"""

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from supabase import Client, create_client

from . import config as cfg
from .config import Settings
from .errors import (
    ACCESS_DENIED,
    ForbiddenError,
    GatewayError,
    NotAuthenticatedError,
    is_permission_error,
)
from .models import (
    ActivityLogEntry,
    Demo,
    DemoHealthScore,
    FavoriteLink,
    Folder,
    UserProfile,
    UserSession,
    demo_record,
    utcnow,
)

logger = logging.getLogger(__name__)

# Favorite link rows with the demo embedded through the demo_id foreign key
FAVORITE_WITH_DEMO = "id, user_id, demo_id, folder_id, created_at, demos(*)"

# Health score rows with the scored demo embedded
HEALTH_WITH_DEMO = "*, demos(*)"


class ConceptGateway:
    """
    Supabase client wrapper for the concept tracker.

    Handles authentication and all database, RPC and storage operations.
    """

    def __init__(self, client: Client):
        self.client = client
        self._user = None

    @classmethod
    def from_settings(cls, settings: Settings) -> 'ConceptGateway':
        return cls(create_client(settings.supabase_url, settings.supabase_key))

    # =========================================================================
    # Query Execution
    # =========================================================================

    def _execute(self, query, action: str):
        """Run a built query, mapping backend failures onto the error taxonomy."""
        try:
            return query.execute()
        except Exception as e:
            code = getattr(e, "code", None)
            if is_permission_error(e):
                logger.warning(f"Permission denied while {action}: {e}")
                raise ForbiddenError(ACCESS_DENIED, code=code, cause=e) from e
            logger.error(f"Error {action}: {e}")
            raise GatewayError(f"Error {action}: {e}", code=code, cause=e) from e

    @staticmethod
    def _rows(response) -> List[Dict]:
        # maybe_single() yields no response at all when nothing matched
        if response is None:
            return []
        data = response.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    # =========================================================================
    # Authentication
    # =========================================================================

    def login(self, email: str, password: str) -> Tuple[bool, Optional[str]]:
        """
        Log in with email and password, stamping last_login on the profile.

        Returns:
            Tuple of (success, error_message)
        """
        try:
            response = self.client.auth.sign_in_with_password({
                "email": email,
                "password": password
            })
        except Exception as e:
            logger.warning(f"Login failed: {e}")
            return False, str(e)

        if not response.user:
            return False, "Login failed"

        self._user = response.user
        try:
            self.client.table(cfg.PROFILES_TABLE).update(
                {"last_login": utcnow().isoformat()}
            ).eq("user_id", response.user.id).execute()
        except Exception as e:
            logger.warning(f"Could not update last_login: {e}")
        return True, None

    def signup(self, email: str, password: str, display_name: str = None) -> Tuple[bool, Optional[str]]:
        """
        Create new account. May require email confirmation depending on Supabase settings.

        Returns:
            Tuple of (success, error_message)
        """
        try:
            response = self.client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"data": {"display_name": display_name or email.split("@")[0]}},
            })
        except Exception as e:
            logger.warning(f"Signup failed: {e}")
            return False, str(e)
        if response.user:
            return True, None
        return False, "Signup failed"

    def logout(self):
        """Log out current user."""
        try:
            self.client.auth.sign_out()
        except Exception as e:
            logger.warning(f"Sign out failed: {e}")
        self._user = None

    def reset_password(self, email: str) -> Tuple[bool, Optional[str]]:
        try:
            self.client.auth.reset_password_for_email(email)
            return True, None
        except Exception as e:
            logger.warning(f"Password reset failed: {e}")
            return False, str(e)

    def get_user(self) -> Optional[Dict]:
        """Get current authenticated user, or None if not logged in."""
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            # A missing session is the normal unauthenticated state
            if "session missing" not in str(e).lower():
                logger.warning(f"Error getting user: {e}")
            return None
        self._user = response.user if response else None
        if not self._user:
            return None
        return {
            "id": self._user.id,
            "email": self._user.email,
            "created_at": self._user.created_at,
        }

    @property
    def user_id(self) -> Optional[str]:
        user = self.get_user()
        return user["id"] if user else None

    @property
    def is_authenticated(self) -> bool:
        return self.get_user() is not None

    def on_auth_state_change(self, callback: Callable[[Optional[Any]], None]):
        """Subscribe to auth changes; callback receives the session user or None."""
        def _handler(event, session):
            callback(session.user if session else None)
        return self.client.auth.on_auth_state_change(_handler)

    def _require_user_id(self) -> str:
        uid = self.user_id
        if not uid:
            raise NotAuthenticatedError()
        return uid

    # =========================================================================
    # Profiles & Roles
    # =========================================================================

    def get_profile(self, user_id: str = None) -> Optional[UserProfile]:
        """Fetch a profile row fresh from the backend (never cached)."""
        uid = user_id or self.user_id
        if not uid:
            return None
        response = self._execute(
            self.client.table(cfg.PROFILES_TABLE).select("*").eq("user_id", uid).maybe_single(),
            "fetching user profile",
        )
        rows = self._rows(response)
        return UserProfile.from_dict(rows[0]) if rows else None

    def list_profiles(self) -> List[UserProfile]:
        response = self._execute(
            self.client.table(cfg.PROFILES_TABLE).select("*").order("created_at", desc=True),
            "listing user profiles",
        )
        return [UserProfile.from_dict(r) for r in self._rows(response)]

    def update_profile(self, user_id: str, **updates) -> Optional[UserProfile]:
        updates["updated_at"] = utcnow().isoformat()
        response = self._execute(
            self.client.table(cfg.PROFILES_TABLE).update(updates).eq("user_id", user_id),
            "updating user profile",
        )
        rows = self._rows(response)
        return UserProfile.from_dict(rows[0]) if rows else None

    def require_role(self, *roles: str) -> UserProfile:
        """
        Capability check for mutating calls.

        Re-reads the caller's profile on every call; a role held at page load
        is not trusted.

        Raises:
            NotAuthenticatedError: no signed-in user
            ForbiddenError: profile missing, inactive, or role not in roles
        """
        uid = self._require_user_id()
        profile = self.get_profile(uid)
        if not profile or not profile.is_active or profile.role not in roles:
            logger.warning(f"Role check failed for {uid}: need one of {roles}")
            raise ForbiddenError(ACCESS_DENIED)
        return profile

    # =========================================================================
    # Demos
    # =========================================================================

    def list_demos(self) -> List[Demo]:
        """Published demos, newest first."""
        response = self._execute(
            self.client.table(cfg.DEMOS_TABLE)
            .select("*")
            .eq("status", "published")
            .order("created_at", desc=True),
            "fetching demos",
        )
        return [Demo.from_dict(r) for r in self._rows(response)]

    def get_demo(self, demo_id: str) -> Optional[Demo]:
        response = self._execute(
            self.client.table(cfg.DEMOS_TABLE).select("*").eq("id", demo_id).maybe_single(),
            "fetching demo",
        )
        rows = self._rows(response)
        return Demo.from_dict(rows[0]) if rows else None

    def insert_demo(self, data: Dict) -> Demo:
        record = demo_record(data)
        record["page_views"] = 0
        record["status"] = "published"
        response = self._execute(
            self.client.table(cfg.DEMOS_TABLE).insert(record),
            "adding demo",
        )
        rows = self._rows(response)
        if not rows:
            raise GatewayError("Database insert returned no rows")
        return Demo.from_dict(rows[0])

    def update_demo(self, demo_id: str, changes: Dict) -> Demo:
        record = demo_record(changes)
        record["updated_at"] = utcnow().isoformat()
        response = self._execute(
            self.client.table(cfg.DEMOS_TABLE).update(record).eq("id", demo_id),
            "updating demo",
        )
        rows = self._rows(response)
        if not rows:
            raise GatewayError(f"Demo {demo_id} not found")
        return Demo.from_dict(rows[0])

    def delete_demo(self, demo_id: str) -> None:
        """Hard delete; favorite links cascade through the foreign key."""
        self._execute(
            self.client.table(cfg.DEMOS_TABLE).delete().eq("id", demo_id),
            "deleting demo",
        )

    def increment_page_views(self, demo_id: str) -> None:
        """Single server-side increment; never read-modify-write."""
        self._execute(
            self.client.rpc(cfg.RPC_INCREMENT_PAGE_VIEWS, {"demo_id": demo_id}),
            "incrementing page views",
        )

    # =========================================================================
    # Favorites
    # =========================================================================

    def list_favorites(self, user_id: str) -> List[Tuple[FavoriteLink, Optional[Demo]]]:
        """This user's favorite links, each with its demo."""
        response = self._execute(
            self.client.table(cfg.FAVORITES_TABLE)
            .select(FAVORITE_WITH_DEMO)
            .eq("user_id", user_id)
            .order("created_at", desc=True),
            "fetching favorites",
        )
        return [_link_with_demo(r) for r in self._rows(response)]

    def list_global_folder_favorites(self, folder_ids: Iterable[str]) -> List[Tuple[FavoriteLink, Optional[Demo]]]:
        """Favorite links from ANY user that sit in one of the given global folders."""
        ids = list(folder_ids)
        if not ids:
            return []
        response = self._execute(
            self.client.table(cfg.FAVORITES_TABLE)
            .select(FAVORITE_WITH_DEMO)
            .in_("folder_id", ids)
            .order("created_at", desc=True),
            "fetching global folder favorites",
        )
        return [_link_with_demo(r) for r in self._rows(response)]

    def get_favorite(self, user_id: str, demo_id: str) -> Optional[FavoriteLink]:
        response = self._execute(
            self.client.table(cfg.FAVORITES_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("demo_id", demo_id),
            "checking favorite",
        )
        rows = self._rows(response)
        return FavoriteLink.from_dict(rows[0]) if rows else None

    def add_favorite(self, user_id: str, demo_id: str, folder_id: str = None) -> FavoriteLink:
        response = self._execute(
            self.client.table(cfg.FAVORITES_TABLE).insert({
                "user_id": user_id,
                "demo_id": demo_id,
                "folder_id": folder_id,
            }),
            "adding favorite",
        )
        rows = self._rows(response)
        return FavoriteLink.from_dict(rows[0]) if rows else FavoriteLink(user_id, demo_id, folder_id)

    def remove_favorite(self, user_id: str, demo_id: str) -> None:
        self._execute(
            self.client.table(cfg.FAVORITES_TABLE).delete().eq("user_id", user_id).eq("demo_id", demo_id),
            "removing favorite",
        )

    def toggle_favorite(self, user_id: str, demo_id: str) -> bool:
        """Returns True when the demo is now favorited, False when removed."""
        if self.get_favorite(user_id, demo_id):
            self.remove_favorite(user_id, demo_id)
            return False
        self.add_favorite(user_id, demo_id)
        return True

    def set_favorite_folder(self, user_id: str, demo_id: str, folder_id: Optional[str]) -> None:
        self._execute(
            self.client.table(cfg.FAVORITES_TABLE)
            .update({"folder_id": folder_id})
            .eq("user_id", user_id)
            .eq("demo_id", demo_id),
            "moving favorite",
        )

    def detach_folder_links(self, folder_id: str) -> None:
        """Null out folder_id on every link (any user) pointing at folder_id."""
        self._execute(
            self.client.table(cfg.FAVORITES_TABLE).update({"folder_id": None}).eq("folder_id", folder_id),
            "detaching folder favorites",
        )

    # =========================================================================
    # Folders
    # =========================================================================

    def list_personal_folders(self, user_id: str) -> List[Folder]:
        response = self._execute(
            self.client.table(cfg.FOLDERS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("is_global", False)
            .order("sort_order"),
            "fetching folders",
        )
        return [Folder.from_dict(r) for r in self._rows(response)]

    def list_global_folders(self) -> List[Folder]:
        response = self._execute(
            self.client.table(cfg.FOLDERS_TABLE)
            .select("*")
            .eq("is_global", True)
            .order("sort_order"),
            "fetching global folders",
        )
        return [Folder.from_dict(r) for r in self._rows(response)]

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        response = self._execute(
            self.client.table(cfg.FOLDERS_TABLE).select("*").eq("id", folder_id).maybe_single(),
            "fetching folder",
        )
        rows = self._rows(response)
        return Folder.from_dict(rows[0]) if rows else None

    def insert_folder(
        self,
        name: str,
        description: str = None,
        color: str = None,
        is_global: bool = False,
        sort_order: int = 0,
    ) -> Folder:
        """
        Create a folder owned by the current user.

        Global folders require the super-admin role, checked here against a
        freshly read profile before anything is written.
        """
        if is_global:
            profile = self.require_role(cfg.ROLE_SUPER_ADMIN)
            uid = profile.user_id
        else:
            uid = self._require_user_id()

        record = {
            "name": name,
            "description": description,
            "color": color or (cfg.GLOBAL_FOLDER_COLOR if is_global else cfg.DEFAULT_FOLDER_COLOR),
            "is_global": is_global,
            "created_by": uid,
            "user_id": None if is_global else uid,
            "sort_order": sort_order,
        }
        response = self._execute(
            self.client.table(cfg.FOLDERS_TABLE).insert(record),
            "creating folder",
        )
        rows = self._rows(response)
        if not rows:
            raise GatewayError("Folder insert returned no rows")
        return Folder.from_dict(rows[0])

    def update_folder(self, folder_id: str, changes: Dict) -> Folder:
        folder = self.get_folder(folder_id)
        if not folder:
            raise GatewayError(f"Folder {folder_id} not found")
        if folder.is_global:
            self.require_role(cfg.ROLE_SUPER_ADMIN)
        allowed = {k: v for k, v in changes.items() if k in ("name", "description", "color", "sort_order")}
        response = self._execute(
            self.client.table(cfg.FOLDERS_TABLE).update(allowed).eq("id", folder_id),
            "updating folder",
        )
        rows = self._rows(response)
        return Folder.from_dict(rows[0]) if rows else folder

    def delete_folder(self, folder_id: str) -> Folder:
        """
        Delete a folder after moving its favorites back to unorganized.

        The cascade update runs to completion before the folder row is
        deleted so no link is left pointing at a missing folder.
        """
        folder = self.get_folder(folder_id)
        if not folder:
            raise GatewayError(f"Folder {folder_id} not found")
        if folder.is_global:
            self.require_role(cfg.ROLE_SUPER_ADMIN)

        self.detach_folder_links(folder_id)
        self._execute(
            self.client.table(cfg.FOLDERS_TABLE).delete().eq("id", folder_id),
            "deleting folder",
        )
        return folder

    # =========================================================================
    # Audit Log
    # =========================================================================

    def log_audit(self, action: str, resource_type: str, resource_id: str = None, details: Dict = None) -> None:
        """Write an audit entry. Best-effort: failures are logged, never raised."""
        try:
            self.client.rpc(cfg.RPC_LOG_AUDIT, {
                "p_action": action,
                "p_resource_type": resource_type,
                "p_resource_id": resource_id,
                "p_details": details,
            }).execute()
        except Exception as e:
            logger.warning(f"Failed to log activity {action}: {e}")

    # =========================================================================
    # Sessions & Activity
    # =========================================================================

    def start_session(self, user_agent: str = None, ip_address: str = None, referrer: str = None) -> str:
        response = self._execute(
            self.client.rpc(cfg.RPC_START_SESSION, {
                "p_user_agent": user_agent,
                "p_ip_address": ip_address,
                "p_referrer": referrer,
            }),
            "starting session",
        )
        session_id = response.data if response is not None else None
        if isinstance(session_id, list):
            session_id = session_id[0] if session_id else None
        if isinstance(session_id, dict):
            session_id = session_id.get("id")
        if not session_id:
            raise GatewayError("Session start returned no id")
        return str(session_id)

    def end_session(self, session_id: str) -> None:
        self._execute(
            self.client.rpc(cfg.RPC_END_SESSION, {"p_session_id": session_id}),
            "ending session",
        )

    def log_activity(
        self,
        session_id: str,
        activity_type: str,
        resource_type: str,
        resource_id: str = None,
        activity_data: Dict = None,
        duration_ms: int = None,
    ) -> None:
        self._execute(
            self.client.rpc(cfg.RPC_LOG_ACTIVITY, {
                "p_session_id": session_id,
                "p_activity_type": activity_type,
                "p_resource_type": resource_type,
                "p_resource_id": resource_id,
                "p_activity_data": activity_data or {},
                "p_duration_ms": duration_ms,
            }),
            "logging activity",
        )

    def list_recent_activity(self, limit: int = cfg.RECENT_ACTIVITY_LIMIT) -> List[ActivityLogEntry]:
        response = self._execute(
            self.client.table(cfg.ACTIVITY_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .limit(limit),
            "fetching activity",
        )
        return [ActivityLogEntry.from_dict(r) for r in self._rows(response)]

    def list_user_activity(
        self,
        user_id: str,
        since: str = None,
        limit: int = cfg.USER_ACTIVITY_LIMIT,
    ) -> List[ActivityLogEntry]:
        """One user's own activity events, newest first."""
        query = self.client.table(cfg.ACTIVITY_TABLE).select("*").eq("user_id", user_id)
        if since:
            query = query.gte("created_at", since)
        response = self._execute(
            query.order("created_at", desc=True).limit(limit),
            "fetching user activity",
        )
        return [ActivityLogEntry.from_dict(r) for r in self._rows(response)]

    def list_sessions(self, since: str = None) -> List[UserSession]:
        query = self.client.table(cfg.SESSIONS_TABLE).select("*")
        if since:
            query = query.gte("session_start", since)
        response = self._execute(query.order("session_start", desc=True), "fetching sessions")
        return [UserSession.from_dict(r) for r in self._rows(response)]

    # =========================================================================
    # Demo Health
    # =========================================================================

    def list_health_scores(self) -> List[DemoHealthScore]:
        """Health score rows, healthiest first, each with its demo."""
        response = self._execute(
            self.client.table(cfg.HEALTH_SCORES_TABLE)
            .select(HEALTH_WITH_DEMO)
            .order("health_score", desc=True),
            "fetching health scores",
        )
        return [DemoHealthScore.from_dict(r) for r in self._rows(response)]

    def refresh_health_scores(self) -> None:
        """Ask the backend to recompute every demo's health score."""
        self._execute(
            self.client.rpc(cfg.RPC_UPDATE_HEALTH_SCORES, {}),
            "refreshing health scores",
        )

    # =========================================================================
    # Storage
    # =========================================================================

    def upload_screenshot(self, file_bytes: bytes, demo_key: str, content_type: str = "image/png") -> str:
        """Upload a screenshot under a caller-supplied key; returns its public URL."""
        extension = content_type.split("/")[-1] if "/" in content_type else "png"
        path = f"{demo_key}/{uuid.uuid4().hex}.{extension}"
        bucket = self.client.storage.from_(cfg.SCREENSHOT_BUCKET)
        try:
            bucket.upload(path, file_bytes, file_options={"content-type": content_type, "upsert": "false"})
        except Exception as e:
            logger.error(f"Storage upload failed: {e}")
            raise GatewayError(f"Storage upload failed: {e}", cause=e) from e
        return bucket.get_public_url(path)

    def delete_screenshot(self, screenshot_url: str) -> None:
        path = screenshot_path(screenshot_url)
        try:
            self.client.storage.from_(cfg.SCREENSHOT_BUCKET).remove([path])
        except Exception as e:
            logger.error(f"Storage delete failed: {e}")
            raise GatewayError(f"Storage delete failed: {e}", cause=e) from e

    def list_buckets(self) -> List[str]:
        try:
            buckets = self.client.storage.list_buckets()
        except Exception as e:
            raise GatewayError(f"Storage access failed: {e}", cause=e) from e
        return [getattr(b, "id", None) or getattr(b, "name", None) or b.get("id") for b in buckets or []]

    # =========================================================================
    # Probes
    # =========================================================================

    def count_rows(self, table: str) -> int:
        response = self._execute(
            self.client.table(table).select("*", count="exact", head=True),
            f"probing {table}",
        )
        return int(getattr(response, "count", 0) or 0)

    def fetch_sample_demo(self) -> List[Dict]:
        response = self._execute(
            self.client.table(cfg.DEMOS_TABLE).select("*").limit(1),
            "fetching sample demo",
        )
        return self._rows(response)

    def call_probe_function(self) -> None:
        self._execute(self.client.rpc("uid", {}), "calling database function")


# =============================================================================
# Helpers
# =============================================================================

def _link_with_demo(row: Dict) -> Tuple[FavoriteLink, Optional[Demo]]:
    demo_row = row.get("demos")
    return FavoriteLink.from_dict(row), Demo.from_dict(demo_row) if demo_row else None


def screenshot_path(screenshot_url: str) -> str:
    """Object path inside the screenshot bucket for a public URL (or a bare path)."""
    marker = f"/{cfg.SCREENSHOT_BUCKET}/"
    if marker in screenshot_url:
        return screenshot_url.split(marker, 1)[1].split("?", 1)[0]
    return screenshot_url
