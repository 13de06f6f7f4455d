"""Shared test fixtures: an in-memory stand-in for the Supabase client."""

import copy
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from postgrest.exceptions import APIError

from concept_tracker import config as cfg
from concept_tracker.gateway import ConceptGateway
from concept_tracker.models import Demo


BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def permission_denied(message="permission denied for table"):
    """A PostgREST error the way RLS rejections come back."""
    return APIError({"message": message, "code": "42501", "hint": None, "details": None})


def backend_down(message="connection reset by peer"):
    return APIError({"message": message, "code": "08006", "hint": None, "details": None})


# --- Query builder ---

class FakeQuery:
    """Enough of the postgrest request builder for the gateway's queries."""

    def __init__(self, backend, table):
        self.backend = backend
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.payload = None
        self.filters = []
        self.ordering = []
        self.row_limit = None
        self.single_mode = None
        self.count = None
        self.head = False

    def select(self, columns="*", count=None, head=False):
        self.op = "select"
        self.columns = columns
        self.count = count
        self.head = head
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) >= value)
        return self

    def order(self, column, desc=False):
        self.ordering.append((column, desc))
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def maybe_single(self):
        self.single_mode = "maybe"
        return self

    def execute(self):
        return self.backend.run(self)


class FakeRpc:
    def __init__(self, backend, name, params):
        self.backend = backend
        self.name = name
        self.params = params

    def execute(self):
        return self.backend.run_rpc(self.name, self.params)


# --- Auth / storage ---

class FakeAuth:
    def __init__(self, backend):
        self.backend = backend
        self.listeners = []

    def sign_in_with_password(self, credentials):
        account = self.backend.accounts.get(credentials["email"])
        if not account or account["password"] != credentials["password"]:
            raise Exception("Invalid login credentials")
        self.backend.current_user = account["user"]
        self._notify("SIGNED_IN")
        return SimpleNamespace(user=account["user"], session=SimpleNamespace(user=account["user"]))

    def sign_up(self, credentials):
        display_name = credentials.get("options", {}).get("data", {}).get("display_name")
        user_id = self.backend.add_user(credentials["email"], password=credentials["password"], display_name=display_name)
        return SimpleNamespace(user=self.backend.accounts[credentials["email"]]["user"], session=None, user_id=user_id)

    def sign_out(self):
        self.backend.current_user = None
        self._notify("SIGNED_OUT")

    def get_user(self):
        if not self.backend.current_user:
            raise Exception("Auth session missing!")
        return SimpleNamespace(user=self.backend.current_user)

    def reset_password_for_email(self, email):
        self.backend.password_resets.append(email)

    def on_auth_state_change(self, callback):
        self.listeners.append(callback)
        return SimpleNamespace(unsubscribe=lambda: self.listeners.remove(callback))

    def _notify(self, event):
        user = self.backend.current_user
        for callback in list(self.listeners):
            callback(event, SimpleNamespace(user=user) if user else None)


class FakeBucket:
    def __init__(self, backend, name):
        self.backend = backend
        self.name = name

    def upload(self, path, file, file_options=None):
        if self.backend.storage_error:
            raise self.backend.storage_error
        self.backend.objects[(self.name, path)] = file
        return SimpleNamespace(path=path)

    def remove(self, paths):
        if self.backend.storage_error:
            raise self.backend.storage_error
        for path in paths:
            self.backend.objects.pop((self.name, path), None)
        return []

    def get_public_url(self, path):
        return f"https://fake.supabase.co/storage/v1/object/public/{self.name}/{path}"


class FakeStorage:
    def __init__(self, backend):
        self.backend = backend

    def from_(self, bucket):
        return FakeBucket(self.backend, bucket)

    def list_buckets(self):
        return [SimpleNamespace(id=b, name=b) for b in self.backend.buckets]


# --- Client ---

class FakeSupabase:
    """
    In-memory Supabase client.

    Tables are lists of dict rows. Failures are injected per (table, op) or
    per RPC name through `fail`; `delay` slows a table or RPC down.
    """

    def __init__(self):
        self.tables = {name: [] for name in (
            cfg.DEMOS_TABLE, cfg.FAVORITES_TABLE, cfg.FOLDERS_TABLE, cfg.PROFILES_TABLE,
            cfg.AUDIT_LOG_TABLE, cfg.SESSIONS_TABLE, cfg.ACTIVITY_TABLE, cfg.HEALTH_SCORES_TABLE,
        )}
        self.accounts = {}
        self.current_user = None
        self.password_resets = []
        self.buckets = [cfg.SCREENSHOT_BUCKET]
        self.objects = {}
        self.storage_error = None
        self.failures = {}
        self.delays = {}
        self.calls = []
        self.lock = threading.Lock()
        self._tick = 0

        self.auth = FakeAuth(self)
        self.storage = FakeStorage(self)

    # -- fixtures helpers --

    def timestamp(self):
        self._tick += 1
        return (BASE_TIME + timedelta(seconds=self._tick)).isoformat()

    def fail(self, key, exc):
        """key is a (table, op) pair or an RPC name."""
        self.failures[key] = exc

    def heal(self):
        self.failures.clear()

    def add_user(self, email, role=cfg.ROLE_USER, is_active=True, password="secret", display_name=None):
        user_id = str(uuid.uuid4())
        user = SimpleNamespace(id=user_id, email=email, created_at=self.timestamp())
        self.accounts[email] = {"password": password, "user": user}
        self.tables[cfg.PROFILES_TABLE].append({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "email": email,
            "display_name": display_name or email.split("@")[0],
            "role": role,
            "is_active": is_active,
            "created_at": self.timestamp(),
        })
        return user_id

    def login_as(self, user_id):
        self.current_user = next(a["user"] for a in self.accounts.values() if a["user"].id == user_id)

    def seed_demo(self, title, page_views=0, owner="Owner", tags=None, is_featured=False, created_at=None, status="published"):
        row = {
            "id": str(uuid.uuid4()),
            "title": title,
            "description": f"{title} description",
            "owner": owner,
            "tags": list(tags or []),
            "page_views": page_views,
            "is_featured": is_featured,
            "status": status,
            "netlify_url": f"https://{title.lower().replace(' ', '-')}.netlify.app",
            "created_at": created_at or self.timestamp(),
        }
        self.tables[cfg.DEMOS_TABLE].append(row)
        return row["id"]

    def seed_folder(self, name, user_id, is_global=False):
        row = {
            "id": str(uuid.uuid4()),
            "name": name,
            "description": None,
            "color": cfg.GLOBAL_FOLDER_COLOR if is_global else cfg.DEFAULT_FOLDER_COLOR,
            "is_global": is_global,
            "created_by": user_id,
            "user_id": None if is_global else user_id,
            "sort_order": 0,
            "created_at": self.timestamp(),
        }
        self.tables[cfg.FOLDERS_TABLE].append(row)
        return row["id"]

    def seed_favorite(self, user_id, demo_id, folder_id=None):
        self.tables[cfg.FAVORITES_TABLE].append({
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "demo_id": demo_id,
            "folder_id": folder_id,
            "created_at": self.timestamp(),
        })

    def seed_health_score(self, demo_id, health_score, **scores):
        self.tables[cfg.HEALTH_SCORES_TABLE].append({
            "id": str(uuid.uuid4()),
            "demo_id": demo_id,
            "health_score": health_score,
            "view_score": scores.get("view_score", 0),
            "engagement_score": scores.get("engagement_score", 0),
            "recency_score": scores.get("recency_score", 0),
            "favorite_score": scores.get("favorite_score", 0),
            "conversion_score": scores.get("conversion_score", 0),
            "last_calculated": self.timestamp(),
        })

    def log_event(self, user_id, activity_type, created_at, resource_id=None):
        self.tables[cfg.ACTIVITY_TABLE].append({
            "session_id": "s1",
            "user_id": user_id,
            "activity_type": activity_type,
            "resource_type": "demo",
            "resource_id": resource_id,
            "activity_data": {},
            "created_at": created_at.isoformat(),
        })

    def row(self, table, **match):
        for row in self.tables[table]:
            if all(row.get(k) == v for k, v in match.items()):
                return row
        return None

    # -- client surface --

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params or {})

    # -- execution --

    def run(self, query):
        self.calls.append((query.table, query.op))
        self._maybe_fail((query.table, query.op))
        self._maybe_delay(query.table)
        rows = self.tables[query.table]

        if query.op == "insert":
            records = query.payload if isinstance(query.payload, list) else [query.payload]
            inserted = []
            for record in records:
                row = {"id": str(uuid.uuid4()), "created_at": self.timestamp(), **copy.deepcopy(record)}
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return SimpleNamespace(data=inserted, count=None)

        matched = [r for r in rows if all(f(r) for f in query.filters)]

        if query.op == "update":
            for row in matched:
                row.update(copy.deepcopy(query.payload))
            return SimpleNamespace(data=copy.deepcopy(matched), count=None)

        if query.op == "delete":
            self.tables[query.table] = [r for r in rows if r not in matched]
            if query.table == cfg.DEMOS_TABLE:
                # ON DELETE CASCADE
                gone = {r["id"] for r in matched}
                self.tables[cfg.FAVORITES_TABLE] = [
                    f for f in self.tables[cfg.FAVORITES_TABLE] if f["demo_id"] not in gone
                ]
            return SimpleNamespace(data=copy.deepcopy(matched), count=None)

        result = [self._embed(copy.deepcopy(r), query.columns) for r in matched]
        for column, desc in reversed(query.ordering):
            result.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if query.row_limit is not None:
            result = result[:query.row_limit]

        count = len(matched) if query.count else None
        if query.head:
            return SimpleNamespace(data=[], count=count)
        if query.single_mode == "maybe":
            return SimpleNamespace(data=result[0], count=count) if result else None
        if query.single_mode == "single":
            if len(result) != 1:
                raise APIError({"message": "JSON object requested, multiple (or no) rows returned", "code": "PGRST116"})
            return SimpleNamespace(data=result[0], count=count)
        return SimpleNamespace(data=result, count=count)

    def run_rpc(self, name, params):
        self.calls.append(("rpc", name))
        self._maybe_fail(name)

        if name == cfg.RPC_INCREMENT_PAGE_VIEWS:
            with self.lock:
                row = self.row(cfg.DEMOS_TABLE, id=params["demo_id"])
                current = row["page_views"]
                self._maybe_delay(name)
                row["page_views"] = current + 1
            return SimpleNamespace(data=None)

        if name == cfg.RPC_START_SESSION:
            session_id = str(uuid.uuid4())
            self.tables[cfg.SESSIONS_TABLE].append({
                "id": session_id,
                "user_id": self.current_user.id if self.current_user else None,
                "session_start": self.timestamp(),
                "session_end": None,
                "user_agent": params.get("p_user_agent"),
                "ip_address": params.get("p_ip_address"),
                "referrer": params.get("p_referrer"),
            })
            return SimpleNamespace(data=session_id)

        if name == cfg.RPC_END_SESSION:
            row = self.row(cfg.SESSIONS_TABLE, id=params["p_session_id"])
            if row:
                row["session_end"] = self.timestamp()
            return SimpleNamespace(data=None)

        if name == cfg.RPC_LOG_AUDIT:
            self.tables[cfg.AUDIT_LOG_TABLE].append({
                "user_id": self.current_user.id if self.current_user else None,
                "action": params["p_action"],
                "resource_type": params["p_resource_type"],
                "resource_id": params["p_resource_id"],
                "details": params["p_details"],
            })
            return SimpleNamespace(data=None)

        if name == cfg.RPC_LOG_ACTIVITY:
            self.tables[cfg.ACTIVITY_TABLE].append({
                "user_id": self.current_user.id if self.current_user else None,
                "session_id": params["p_session_id"],
                "activity_type": params["p_activity_type"],
                "resource_type": params["p_resource_type"],
                "resource_id": params["p_resource_id"],
                "activity_data": params["p_activity_data"],
                "duration_ms": params["p_duration_ms"],
                "created_at": self.timestamp(),
            })
            return SimpleNamespace(data=None)

        if name == cfg.RPC_UPDATE_HEALTH_SCORES:
            # Stand-in scoring: views only, capped at 100
            self.tables[cfg.HEALTH_SCORES_TABLE] = []
            for demo in self.tables[cfg.DEMOS_TABLE]:
                self.seed_health_score(demo["id"], min(demo["page_views"], 100))
            return SimpleNamespace(data=None)

        if name == "uid":
            return SimpleNamespace(data=self.current_user.id if self.current_user else None)

        raise APIError({"message": f"function {name} does not exist", "code": "42883"})

    def _maybe_fail(self, key):
        exc = self.failures.get(key)
        if exc:
            raise exc

    def _maybe_delay(self, key):
        seconds = self.delays.get(key)
        if seconds:
            time.sleep(seconds)

    def _embed(self, row, columns):
        if "demos(*)" in columns:
            demo = self.row(cfg.DEMOS_TABLE, id=row.get("demo_id"))
            row["demos"] = copy.deepcopy(demo) if demo else None
        return row


# --- Fixtures ---

@pytest.fixture()
def fake():
    return FakeSupabase()


@pytest.fixture()
def gateway(fake):
    return ConceptGateway(fake)


@pytest.fixture()
def users(fake):
    """One account per role."""
    return {
        "user": fake.add_user("user@lyzr.ai"),
        "other": fake.add_user("other@lyzr.ai"),
        "admin": fake.add_user("admin@lyzr.ai", role=cfg.ROLE_ADMIN),
        "super_admin": fake.add_user("root@lyzr.ai", role=cfg.ROLE_SUPER_ADMIN),
    }


@pytest.fixture()
def make_demo():
    """Factory for Demo objects used by the pure catalog / analytics functions."""
    counter = {"n": 0}

    def _make(page_views=0, title=None, owner="Owner", tags=None, is_featured=False, created_at=None):
        counter["n"] += 1
        return Demo(
            id=f"demo-{counter['n']}",
            title=title or f"Demo {counter['n']}",
            description="",
            tags=list(tags or []),
            owner=owner,
            page_views=page_views,
            created_at=created_at or NOW - timedelta(days=60),
            is_featured=is_featured,
        )

    return _make
