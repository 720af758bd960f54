"""
Test doubles and constants shared across the suite.

FakeSupabase is an in-memory table store that speaks the subset of the
postgrest query builder the repositories use.
"""

import asyncio
import copy
import io
import operator
from dataclasses import dataclass
from datetime import datetime

from PIL import Image

from app.domain.models import parse_datetime
from app.services.pass_bundle import PassBundleBuilder

PASS_TYPE_ID = "pass.com.example.loyalty"
SERIAL = "CARD-0001"
AUTH_TOKEN = "a" * 32
DEVICE_ID = "device-library-0001"
PUSH_TOKEN = "push-token-0001"
BUSINESS_ID = "business-1"
CUSTOMER_ID = "customer-1"

REPOSITORY_MODULES = (
    "app.repositories.device",
    "app.repositories.wallet_pass",
    "app.repositories.loyalty_card",
    "app.repositories.passkit_config",
)


# =============================================================================
# IN-MEMORY SUPABASE
# =============================================================================

def _comparable(value):
    if isinstance(value, str):
        parsed = parse_datetime(value)
        if parsed is not None:
            return parsed
    return value


OPERATORS = {"lt": operator.lt, "gt": operator.gt, "eq": operator.eq}


@dataclass
class FakeResult:
    data: list


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.payload = None
        self.on_conflict = ""
        self.ignore_duplicates = False
        self.filters = []
        self.any_of = []
        self._limit = None
        self._order = None

    def select(self, *columns):
        self.action = "select"
        return self

    def insert(self, data):
        self.action, self.payload = "insert", data
        return self

    def upsert(self, data, on_conflict: str = "", ignore_duplicates: bool = False):
        self.action, self.payload, self.on_conflict = "upsert", data, on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, data):
        self.action, self.payload = "update", data
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, operator.eq, value))
        return self

    def gt(self, column, value):
        self.filters.append((column, operator.gt, value))
        return self

    def lt(self, column, value):
        self.filters.append((column, operator.lt, value))
        return self

    def or_(self, filters: str):
        """Only the `col.is.null` and `col.lt|gt.value` forms are understood."""
        group = []
        for part in filters.split(","):
            column, op, value = part.split(".", 2)
            if op == "is" and value == "null":
                group.append((column, None, None))
            else:
                group.append((column, OPERATORS[op], value))
        self.any_of.append(group)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    @staticmethod
    def _matches_any(row: dict, group) -> bool:
        for column, op, value in group:
            current = row.get(column)
            if op is None:
                if current is None:
                    return True
            elif current is not None and op(_comparable(current), _comparable(value)):
                return True
        return False

    def _matches(self, row: dict) -> bool:
        if not all(self._matches_any(row, group) for group in self.any_of):
            return False
        for column, op, value in self.filters:
            current = row.get(column)
            if current is None:
                return False
            if op is operator.eq:
                if current != value:
                    return False
            elif not op(_comparable(current), _comparable(value)):
                return False
        return True

    def execute(self) -> FakeResult:
        self.db.calls.append((self.table_name, self.action))
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.action == "insert":
            rows.append(dict(self.payload))
            return FakeResult([dict(self.payload)])

        if self.action == "upsert":
            keys = [k for k in self.on_conflict.split(",") if k]
            for row in rows:
                if keys and all(row.get(k) == self.payload.get(k) for k in keys):
                    if self.ignore_duplicates:
                        return FakeResult([])
                    row.update(self.payload)
                    return FakeResult([dict(row)])
            rows.append(dict(self.payload))
            return FakeResult([dict(self.payload)])

        matched = [row for row in rows if self._matches(row)]

        if self.action == "update":
            for row in matched:
                row.update(self.payload)
            return FakeResult([dict(row) for row in matched])

        if self.action == "delete":
            self.db.tables[self.table_name] = [row for row in rows if row not in matched]
            return FakeResult([dict(row) for row in matched])

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: _comparable(r.get(column)), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        return FakeResult(copy.deepcopy(matched))


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.get(name, [])


def iso(dt: datetime) -> str:
    return dt.isoformat()


def apple_pass_auth(token: str = AUTH_TOKEN) -> dict:
    return {"Authorization": f"ApplePass {token}"}


# =============================================================================
# IMAGES, BUNDLES AND PUSH
# =============================================================================

def png_bytes(color=(255, 0, 0), size=(4, 4)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class UnsignedBundleBuilder(PassBundleBuilder):
    """Skips the openssl call; everything else is the real archive."""

    def __init__(self):
        super().__init__(cert_path="", key_path="", wwdr_path="")

    def _sign_manifest(self, manifest_data: bytes) -> bytes:
        return b"signature"


@dataclass
class FakeAPNsResult:
    status: str = "200"
    description: str | None = None

    @property
    def is_successful(self) -> bool:
        return self.status == "200"


class FakeAPNsClient:
    """Records every request. Tokens in `fail` are rejected, tokens in `hang` never answer."""

    def __init__(self, fail: dict | None = None, hang: set | None = None):
        self.fail = fail or {}
        self.hang = hang or set()
        self.requests = []

    async def send_notification(self, request):
        self.requests.append(request)
        if request.device_token in self.hang:
            await asyncio.sleep(60)
        if request.device_token in self.fail:
            return FakeAPNsResult(status="410", description=self.fail[request.device_token])
        return FakeAPNsResult()
