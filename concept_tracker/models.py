"""
Concept Tracker — Data Models

Dataclasses for the rows the dashboard reads from Supabase, plus the
mutation-status record used for optimistic updates.

VERSION HISTORY:
----------------
v1.0.0: Initial release
  - Demo, FavoriteLink, Folder, UserProfile, UserSession, ActivityLogEntry
  - DemoHealthScore (backend-computed, read-only)
  - ActivityType enum
  - Mutation with pending/confirmed/failed status
"""

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd

from .config import (
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    ROLE_USER,
    DEFAULT_FOLDER_COLOR,
    UNORGANIZED_FOLDER_ID,
    UNORGANIZED_FOLDER_NAME,
)


# =============================================================================
# Helpers
# =============================================================================

def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a Supabase timestamp (ISO string or datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    ts = pd.to_datetime(value, utc=True, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.to_pydatetime()


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Demos
# =============================================================================

# Columns a caller may write on insert/update
DEMO_WRITABLE_FIELDS = (
    "title", "description", "tags", "owner", "is_featured", "status",
    "netlify_url", "excalidraw_url", "supabase_url", "admin_url",
    "screenshot_url", "video_url",
)


@dataclass
class Demo:
    """A catalog entry for a showcased application."""
    id: str
    title: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    owner: str = ""
    page_views: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_featured: bool = False
    status: str = "published"
    netlify_url: Optional[str] = None      # app link
    excalidraw_url: Optional[str] = None   # design link
    supabase_url: Optional[str] = None     # docs / backend link
    admin_url: Optional[str] = None        # resource link
    screenshot_url: Optional[str] = None
    video_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'Demo':
        return cls(
            id=str(data.get('id', '')),
            title=data.get('title') or '',
            description=data.get('description') or '',
            tags=list(data.get('tags') or []),
            owner=data.get('owner') or '',
            page_views=int(data.get('page_views') or 0),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
            is_featured=bool(data.get('is_featured', False)),
            status=data.get('status') or 'published',
            netlify_url=data.get('netlify_url'),
            excalidraw_url=data.get('excalidraw_url'),
            supabase_url=data.get('supabase_url'),
            admin_url=data.get('admin_url'),
            screenshot_url=data.get('screenshot_url'),
            video_url=data.get('video_url'),
        )

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['created_at'] = format_timestamp(self.created_at)
        data['updated_at'] = format_timestamp(self.updated_at)
        return data


def demo_record(data: Dict) -> Dict:
    """Keep only writable demo columns (drops id, page_views, timestamps)."""
    return {k: v for k, v in data.items() if k in DEMO_WRITABLE_FIELDS}


# =============================================================================
# Favorites & Folders
# =============================================================================

@dataclass
class FavoriteLink:
    """A user's bookmark of a demo, optionally placed in a folder."""
    user_id: str
    demo_id: str
    folder_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'FavoriteLink':
        return cls(
            user_id=str(data.get('user_id', '')),
            demo_id=str(data.get('demo_id', '')),
            folder_id=data.get('folder_id'),
            id=data.get('id'),
            created_at=parse_timestamp(data.get('created_at')),
        )


@dataclass
class Folder:
    """A named grouping of favorites, personal or global."""
    id: str
    name: str
    description: Optional[str] = None
    color: str = DEFAULT_FOLDER_COLOR
    is_global: bool = False
    created_by: Optional[str] = None
    user_id: Optional[str] = None
    sort_order: int = 0
    created_at: Optional[datetime] = None
    demos: List[Demo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Folder':
        return cls(
            id=str(data.get('id', '')),
            name=data.get('name') or '',
            description=data.get('description'),
            color=data.get('color') or DEFAULT_FOLDER_COLOR,
            is_global=bool(data.get('is_global', False)),
            created_by=data.get('created_by'),
            user_id=data.get('user_id'),
            sort_order=int(data.get('sort_order') or 0),
            created_at=parse_timestamp(data.get('created_at')),
        )

    @classmethod
    def unorganized(cls, demos: List[Demo]) -> 'Folder':
        """The synthetic bucket holding favorites with no folder."""
        return cls(
            id=UNORGANIZED_FOLDER_ID,
            name=UNORGANIZED_FOLDER_NAME,
            description="Favorites not yet placed in a folder",
            sort_order=-1,
            demos=list(demos),
        )

    @property
    def is_unorganized(self) -> bool:
        return self.id == UNORGANIZED_FOLDER_ID

    def with_demos(self, demos: List[Demo]) -> 'Folder':
        return replace(self, demos=list(demos))

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "is_global": self.is_global,
            "created_by": self.created_by,
            "sort_order": self.sort_order,
            "demo_count": len(self.demos),
        }


# =============================================================================
# Users
# =============================================================================

@dataclass
class UserProfile:
    id: str
    user_id: str
    email: str
    display_name: Optional[str] = None
    role: str = ROLE_USER
    is_active: bool = True
    avatar_url: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'UserProfile':
        email = data.get('email') or ''
        return cls(
            id=str(data.get('id', '')),
            user_id=str(data.get('user_id', '')),
            email=email,
            display_name=data.get('display_name') or (email.split('@')[0] if email else None),
            role=data.get('role') or ROLE_USER,
            is_active=bool(data.get('is_active', True)),
            avatar_url=data.get('avatar_url'),
            last_login=parse_timestamp(data.get('last_login')),
            created_at=parse_timestamp(data.get('created_at')),
            updated_at=parse_timestamp(data.get('updated_at')),
        )

    @property
    def is_admin(self) -> bool:
        return self.role in (ROLE_ADMIN, ROLE_SUPER_ADMIN)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN


# =============================================================================
# Sessions & Activity
# =============================================================================

class ActivityType(str, Enum):
    VIEW_DEMO = "view_demo"
    FAVORITE_DEMO = "favorite_demo"
    TRY_APP = "try_app"
    SEARCH = "search"
    FILTER = "filter"
    TAB_CHANGE = "tab_change"
    PAGE_FOCUS = "page_focus"
    PAGE_BLUR = "page_blur"
    CLICK = "click"
    MOUSE_IDLE = "mouse_idle"
    SESSION_END = "session_end"


@dataclass
class UserSession:
    id: str
    user_id: str
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'UserSession':
        return cls(
            id=str(data.get('id', '')),
            user_id=str(data.get('user_id', '')),
            session_start=parse_timestamp(data.get('session_start')),
            session_end=parse_timestamp(data.get('session_end')),
            user_agent=data.get('user_agent'),
            referrer=data.get('referrer'),
            ip_address=data.get('ip_address'),
        )

    @property
    def is_open(self) -> bool:
        # Abandoned sessions (browser closed) stay open forever
        return self.session_end is None

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.session_start or not self.session_end:
            return None
        return (self.session_end - self.session_start).total_seconds()


@dataclass
class ActivityLogEntry:
    session_id: str
    activity_type: str
    resource_type: str
    resource_id: Optional[str] = None
    activity_data: Dict = field(default_factory=dict)
    duration_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    user_id: Optional[str] = None
    resource_title: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict) -> 'ActivityLogEntry':
        # Joined demo title comes back as {"demos": {"title": ...}} when embedded
        joined = data.get('demos') or {}
        return cls(
            session_id=str(data.get('session_id', '')),
            activity_type=data.get('activity_type') or '',
            resource_type=data.get('resource_type') or '',
            resource_id=data.get('resource_id'),
            activity_data=data.get('activity_data') or {},
            duration_ms=data.get('duration_ms'),
            created_at=parse_timestamp(data.get('created_at') or data.get('timestamp')),
            user_id=data.get('user_id'),
            resource_title=data.get('resource_title') or joined.get('title'),
        )


@dataclass
class DemoHealthScore:
    """Backend-computed health of one demo; every score is on 0-100."""
    demo_id: str
    health_score: float = 0
    view_score: float = 0
    engagement_score: float = 0
    recency_score: float = 0
    favorite_score: float = 0
    conversion_score: float = 0
    last_calculated: Optional[datetime] = None
    title: str = ''
    owner: str = ''
    page_views: int = 0
    is_featured: bool = False

    @classmethod
    def from_dict(cls, data: Dict) -> 'DemoHealthScore':
        joined = data.get('demos') or {}
        return cls(
            demo_id=str(data.get('demo_id', '')),
            health_score=float(data.get('health_score') or 0),
            view_score=float(data.get('view_score') or 0),
            engagement_score=float(data.get('engagement_score') or 0),
            recency_score=float(data.get('recency_score') or 0),
            favorite_score=float(data.get('favorite_score') or 0),
            conversion_score=float(data.get('conversion_score') or 0),
            last_calculated=parse_timestamp(data.get('last_calculated')),
            title=joined.get('title') or '',
            owner=joined.get('owner') or '',
            page_views=int(joined.get('page_views') or 0),
            is_featured=bool(joined.get('is_featured', False)),
        )


# =============================================================================
# Optimistic Mutations
# =============================================================================

class MutationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class Mutation:
    """One optimistic local change awaiting backend confirmation."""
    kind: str
    target_id: str
    status: MutationStatus = MutationStatus.PENDING
    error: Optional[str] = None

    def confirm(self) -> 'Mutation':
        self.status = MutationStatus.CONFIRMED
        return self

    def fail(self, error: str) -> 'Mutation':
        self.status = MutationStatus.FAILED
        self.error = error
        return self
