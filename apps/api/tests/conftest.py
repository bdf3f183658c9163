from __future__ import annotations

import os
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")

from familysafe.supabase import AuthContext, SupabaseError  # noqa: E402

ALREADY_REGISTERED = "A user with this email address has already been registered"


def _eq(params: Dict[str, Any], key: str) -> Optional[str]:
    value = params.get(key)
    return value[len("eq."):] if value else None


class FakeAdminClient:
    """In-memory stand-in for the service-role client: auth users, profiles and relations."""

    def __init__(self) -> None:
        self.users: List[Dict[str, Any]] = []
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.relations: List[Dict[str, Any]] = []
        self.invite_error: Optional[SupabaseError] = None
        self.lookup_error: Optional[SupabaseError] = None
        self.select_errors: List[SupabaseError] = []
        self.insert_errors: List[SupabaseError] = []
        # GoTrue answers 200 and re-sends the email for invited-but-unconfirmed users.
        self.reinvite_unconfirmed = False
        # Lookups that miss, as if the account was registered right after them.
        self.lookup_misses = 0
        self.calls: List[tuple] = []

    def add_user(self, email: str, *, profile: Optional[Dict[str, Any]] = None) -> str:
        user_id = str(uuid4())
        self.users.append({"id": user_id, "email": email})
        if profile is not None:
            self.profiles[user_id] = {"id": user_id, "avatar_url": None, **profile}
        return user_id

    @property
    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in {"invite", "insert", "update"}]

    async def invite_user_by_email(self, email, *, data=None, redirect_to=None):
        self.calls.append(("invite", email, data, redirect_to))
        if self.invite_error:
            raise self.invite_error
        known = [user for user in self.users if user["email"].lower() == email.lower()]
        if known and self.reinvite_unconfirmed:
            return dict(known[0])
        if known:
            raise SupabaseError(
                "invite",
                status_code=422,
                code="email_exists",
                message=ALREADY_REGISTERED,
            )
        user_id = self.add_user(
            email,
            profile={"full_name": data["full_name"], "user_role": data["user_role"]},
        )
        return {"id": user_id, "email": email}

    async def find_users_by_email(self, email):
        self.calls.append(("find_users", email))
        if self.lookup_error:
            raise self.lookup_error
        if self.lookup_misses:
            self.lookup_misses -= 1
            return []
        target = email.strip().lower()
        return [user for user in self.users if user["email"].lower() == target]

    async def select(self, table, params):
        self.calls.append(("select", table, params))
        if self.select_errors:
            raise self.select_errors.pop(0)
        if table == "profiles":
            profile = self.profiles.get(_eq(params, "id"))
            return [dict(profile)] if profile else []
        parent_id, child_id = _eq(params, "parent_id"), _eq(params, "child_id")
        return [
            dict(row)
            for row in self.relations
            if row["parent_id"] == parent_id and row["child_id"] == child_id
        ]

    async def insert(self, table, payload, *, params=None):
        self.calls.append(("insert", table, payload))
        if self.insert_errors:
            raise self.insert_errors.pop(0)
        if payload in self.relations:
            raise SupabaseError(
                "insert",
                status_code=409,
                code="23505",
                message="duplicate key value violates unique constraint",
            )
        self.relations.append(dict(payload))
        return [dict(payload)]

    async def update(self, table, payload, params):
        self.calls.append(("update", table, payload, params))
        profile = self.profiles.get(_eq(params, "id"))
        if profile is None:
            return []
        profile.update(payload)
        return [dict(profile)]


class FakeSupabase:
    """Queue-driven user-scoped client: each call pops the next canned result for its table."""

    def __init__(self, *, select_queue=None, insert_queue=None, update_queue=None, delete_queue=None, rpc_results=None):
        self.select_queue = {table: list(items) for table, items in (select_queue or {}).items()}
        self.insert_queue = {table: list(items) for table, items in (insert_queue or {}).items()}
        self.update_queue = {table: list(items) for table, items in (update_queue or {}).items()}
        self.delete_queue = {table: list(items) for table, items in (delete_queue or {}).items()}
        self.rpc_results = dict(rpc_results or {})
        self.calls = []

    @staticmethod
    def _pop(queues, table):
        queue = queues.get(table)
        if queue:
            return queue.pop(0)
        return []

    async def select(self, table, params):
        self.calls.append(("select", table, params))
        return self._pop(self.select_queue, table)

    async def insert(self, table, payload, *, params=None):
        self.calls.append(("insert", table, payload, params))
        return self._pop(self.insert_queue, table)

    async def update(self, table, payload, params):
        self.calls.append(("update", table, payload, params))
        return self._pop(self.update_queue, table)

    async def delete(self, table, params):
        self.calls.append(("delete", table, params))
        return self._pop(self.delete_queue, table)

    async def rpc(self, fn, payload=None):
        self.calls.append(("rpc", fn, payload))
        return self.rpc_results.get(fn)


@pytest.fixture
def admin() -> FakeAdminClient:
    return FakeAdminClient()


@pytest.fixture
def parent_id() -> str:
    return str(uuid4())


@pytest.fixture
def make_auth(parent_id):
    def _make(**queues) -> AuthContext:
        return AuthContext(
            user_id=parent_id,
            user_email="parent@example.com",
            access_token="test-token",
            supabase=FakeSupabase(**queues),
        )

    return _make
