"""
In-memory stand-in for the Supabase client.

Implements the slice of the postgrest query builder the services use, the
generated phone_normalized columns and the seat-counter functions. Every
operation runs under one lock, so claim_seat is atomic the way the database
function is.
"""

import copy
import re
import threading
import uuid
from datetime import date, datetime, timedelta
from enum import Enum
from types import SimpleNamespace

import pytest

from workshop_engine.config.settings import settings
from workshop_engine.core.clock import academy_today

STAFF_TOKEN = "staff-token"

TABLE_DEFAULTS = {
    "workshop_templates": {"is_active": True, "description": None, "target_audience": None},
    "workshop_slots": {"booked_count": 0, "status": "available"},
    "bookings": {
        "status": "confirmed",
        "payment_status": "pending",
        "source": "public",
        "lead_id": None,
        "conversion_payload": None,
        "lead_synced_at": None,
        "lead_sync_claimed_at": None,
        "seat_released": False,
        "notes": None,
    },
    "leads": {"status": "new", "interests": [], "tags": [], "timeline": []},
    "outbound_messages": {"status": "pending", "attempts": 0},
}

GENERATED_PHONE_COLUMN = {"bookings": "phone_number", "leads": "phone"}


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.orders = []
        self.row_limit = None
        self.single = False
        self.on_conflict = None
        self.ignore_duplicates = False

    # ---- verbs

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict=None, ignore_duplicates=False):
        self.op, self.payload = "upsert", payload
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def delete(self):
        self.op = "delete"
        return self

    # ---- filters and modifiers

    def eq(self, column, value):
        self.filters.append(lambda row: _cmp(row.get(column)) == _cmp(value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: _cmp(row.get(column)) != _cmp(value))
        return self

    def in_(self, column, values):
        wanted = {_cmp(v) for v in values}
        self.filters.append(lambda row: _cmp(row.get(column)) in wanted)
        return self

    def gte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _cmp(row.get(column)) >= _cmp(value))
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _cmp(row.get(column)) <= _cmp(value))
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and _cmp(row.get(column)) < _cmp(value))
        return self

    def is_(self, column, value):
        if value == "null":
            self.filters.append(lambda row: row.get(column) is None)
        else:
            self.filters.append(lambda row: row.get(column) is value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.row_limit = n
        return self

    def maybe_single(self):
        self.single = True
        return self

    def execute(self):
        with self.db.lock:
            self.db.check_failure(self.table, self.op)
            rows = self.db.tables.setdefault(self.table, [])
            if self.op == "insert":
                data = [self.db.insert_row(self.table, p) for p in _as_list(self.payload)]
            elif self.op == "upsert":
                data = self._upsert(rows)
            elif self.op == "update":
                data = []
                for row in self._matching(rows):
                    row.update(copy.deepcopy(self.payload))
                    self.db.compute_generated(self.table, row)
                    data.append(copy.deepcopy(row))
            elif self.op == "delete":
                doomed = self._matching(rows)
                self.db.tables[self.table] = [r for r in rows if r not in doomed]
                data = [copy.deepcopy(r) for r in doomed]
            else:
                data = [copy.deepcopy(r) for r in self._sorted(self._matching(rows))]
                if self.row_limit is not None:
                    data = data[:self.row_limit]
            if self.single:
                # postgrest-py returns None for maybe_single() with no row
                return FakeResponse(data[0]) if data else None
            return FakeResponse(data)

    def _matching(self, rows):
        return [r for r in rows if all(f(r) for f in self.filters)]

    def _sorted(self, rows):
        for column, desc in reversed(self.orders):
            rows = sorted(rows, key=lambda r: (r.get(column) is None, _cmp(r.get(column)) or ""), reverse=desc)
        return rows

    def _upsert(self, rows):
        keys = [k.strip() for k in (self.on_conflict or "id").split(",")]
        data = []
        for payload in _as_list(self.payload):
            existing = next(
                (r for r in rows if all(_cmp(r.get(k)) == _cmp(payload.get(k)) for k in keys)),
                None,
            )
            if existing is None:
                data.append(self.db.insert_row(self.table, payload))
            elif not self.ignore_duplicates:
                existing.update(copy.deepcopy(payload))
                data.append(copy.deepcopy(existing))
        return data


class FakeRpc:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    def execute(self):
        with self.db.lock:
            self.db.check_failure("rpc", self.name)
            self.db.rpc_calls.append((self.name, dict(self.params)))
            if self.name == "release_booking_seat":
                return FakeResponse(self._release_booking_seat())
            slot = self._slot(self.params["p_slot_id"])
            if self.name == "claim_seat":
                if slot is None or slot["status"] != "available" or slot["booked_count"] >= slot["capacity"]:
                    return FakeResponse(False)
                slot["booked_count"] += 1
                return FakeResponse(True)
            if self.name == "release_seat":
                if slot is None or slot["booked_count"] <= 0:
                    return FakeResponse(False)
                slot["booked_count"] -= 1
                return FakeResponse(True)
            raise ValueError(f"Unknown function {self.name}")

    def _slot(self, slot_id):
        return next((s for s in self.db.tables.get("workshop_slots", []) if s["id"] == slot_id), None)

    def _release_booking_seat(self):
        booking = next(
            (b for b in self.db.tables.get("bookings", []) if b["id"] == self.params["p_booking_id"]),
            None,
        )
        if booking is None or booking["status"] != "cancelled" or booking["seat_released"]:
            return False
        booking["seat_released"] = True
        slot = self._slot(booking["workshop_slot_id"])
        if slot is not None and slot["booked_count"] > 0:
            slot["booked_count"] -= 1
        return True


class FakeAuth:
    def get_user(self, jwt=None):
        if jwt != STAFF_TOKEN:
            raise ValueError("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(
            id="staff-1",
            email="coach@makerlab.test",
            user_metadata={"full_name": "Coach Dana"},
        ))


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.lock = threading.RLock()
        self.rpc_calls = []
        self.failures = {}
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)

    def fail(self, table, op, exc, times=1, after=0):
        """Let `after` calls of op on table through, then make the next `times` raise exc"""
        self.failures[(table, op)] = [None] * after + [exc] * times

    def check_failure(self, table, op):
        pending = self.failures.get((table, op))
        if pending:
            exc = pending.pop(0)
            if exc is not None:
                raise exc

    def insert_row(self, table, payload):
        row = copy.deepcopy(TABLE_DEFAULTS.get(table, {}))
        row.update({"id": str(uuid.uuid4()), "created_at": datetime.utcnow().isoformat()})
        row.update({k: v for k, v in copy.deepcopy(payload).items() if v is not None or k not in row})
        self.compute_generated(table, row)
        self.tables.setdefault(table, []).append(row)
        return copy.deepcopy(row)

    def compute_generated(self, table, row):
        source = GENERATED_PHONE_COLUMN.get(table)
        if source:
            row["phone_normalized"] = re.sub(r"\D", "", row.get(source) or "")

    def rows(self, table):
        return copy.deepcopy(self.tables.get(table, []))

    def add(self, table, **fields):
        with self.lock:
            return self.insert_row(table, fields)


def _cmp(value):
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _as_list(payload):
    return payload if isinstance(payload, list) else [payload]


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "outbound_retry_backoff_sec", 0)
    monkeypatch.setattr(settings, "crm_sync_retry_backoff_sec", 0)
    monkeypatch.setattr(settings, "seat_release_retry_backoff_sec", 0)
    monkeypatch.setattr(settings, "twilio_account_sid", None)
    monkeypatch.setattr(settings, "twilio_auth_token", None)
    monkeypatch.setattr(settings, "twilio_whatsapp_from", None)


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def today():
    return academy_today()


def next_weekday(start, weekday_index):
    """First date on or after start with weekday 0=Sunday .. 6=Saturday"""
    offset = (weekday_index - (start.weekday() + 1) % 7) % 7
    return start + timedelta(days=offset)


@pytest.fixture
def weekly_template(supabase):
    """Tue/Thu 16:00, 90 minutes, 3 seats"""
    return supabase.add(
        "workshop_templates",
        title="Intro to Robotics",
        duration=90,
        recurrence_type="weekly",
        recurrence_pattern={"days": [2, 4], "time": "16:00"},
        capacity_per_slot=3,
        is_active=True,
        shareable_slug="intro-to-robotics-ab12c",
    )


@pytest.fixture
def one_time_template(supabase, today):
    return supabase.add(
        "workshop_templates",
        title="Drone Day",
        duration=120,
        recurrence_type="one-time",
        recurrence_pattern={"date": (today + timedelta(days=10)).isoformat(), "time": "10:00"},
        capacity_per_slot=2,
        is_active=True,
        shareable_slug="drone-day-x9y8z",
    )
