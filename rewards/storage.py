import threading
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional
from uuid import uuid4


TABLES = (
    "apps",
    "clicks",
    "profiles",
    "payouts",
    "user_roles",
    "auth_tokens",
    "referral_submissions",
)


class StorageError(Exception):
    pass


class InMemoryStorage:
    """Row store with create/read/update/delete and filtered queries per named table.

    Rows are plain dicts keyed by ``id``. Every public call holds the store
    lock; ``transaction()`` lets a caller hold it across several calls.
    """

    def __init__(self, seed: bool = False):
        self._lock = threading.RLock()
        self.tables: dict[str, dict[str, dict]] = {name: {} for name in TABLES}
        if seed:
            self._seed_data()

    def _seed_data(self):
        now = datetime.now(timezone.utc)
        admin_id = "00000000-0000-0000-0000-00000000a0a0"
        demo_user_id = "550e8400-e29b-41d4-a716-446655440000"

        self.insert("profiles", {
            "id": admin_id, "email": "admin@example.com",
            "full_name": "Site Admin", "upi_id": None,
        })
        self.insert("profiles", {
            "id": demo_user_id, "email": "earner@example.com",
            "full_name": "Demo Earner", "upi_id": None,
        })
        self.insert("user_roles", {"user_id": admin_id, "role": "admin"})
        self.insert("auth_tokens", {"id": "demo-admin-token", "user_id": admin_id})
        self.insert("auth_tokens", {"id": "demo-user-token", "user_id": demo_user_id})

        self.insert("apps", {
            "id": "11111111-1111-1111-1111-111111111111",
            "name": "Paytm", "description": "UPI payments with a signup bonus",
            "category": "payments", "bonus_amount": 200,
            "commission_rate": Decimal("0.30"), "my_commission_rate": Decimal("0.50"),
            "payout_time": "24 hours", "task_description": "Sign up and complete KYC",
            "referral_link": "https://paytm.example.com/ref/demo", "image_url": None,
            "is_featured": True, "sort_order": 1, "created_at": now,
        })
        self.insert("apps", {
            "id": "22222222-2222-2222-2222-222222222222",
            "name": "Dream11", "description": "Fantasy sports with a first deposit bonus",
            "category": "gaming", "bonus_amount": 500,
            "commission_rate": Decimal("0.30"), "my_commission_rate": Decimal("0.50"),
            "payout_time": "3-5 days", "task_description": "Join a paid contest",
            "referral_link": "https://dream11.example.com/ref/demo", "image_url": None,
            "is_featured": True, "sort_order": 2, "created_at": now,
        })

    @contextmanager
    def transaction(self) -> Iterator["InMemoryStorage"]:
        with self._lock:
            yield self

    def _table(self, table: str) -> dict[str, dict]:
        try:
            return self.tables[table]
        except KeyError:
            raise StorageError(f"Unknown table: {table}")

    def insert(self, table: str, row: dict) -> dict:
        with self._lock:
            rows = self._table(table)
            row = dict(row)
            row.setdefault("id", str(uuid4()))
            if row["id"] in rows:
                raise StorageError(f"Duplicate id {row['id']} in {table}")
            rows[row["id"]] = row
            return deepcopy(row)

    def get(self, table: str, row_id: str) -> Optional[dict]:
        with self._lock:
            row = self._table(table).get(row_id)
            return deepcopy(row) if row is not None else None

    def update(
        self,
        table: str,
        row_id: str,
        changes: dict,
        expected: Optional[dict] = None,
    ) -> Optional[dict]:
        """Apply ``changes`` and return the new row.

        With ``expected``, the update only applies when every listed column
        still holds the given value; otherwise nothing changes and None is
        returned, as for a missing row.
        """
        with self._lock:
            row = self._table(table).get(row_id)
            if row is None:
                return None
            if expected and any(row.get(k) != v for k, v in expected.items()):
                return None
            row.update(changes)
            return deepcopy(row)

    def delete(self, table: str, row_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(row_id, None) is not None

    def select(
        self,
        table: str,
        where: Optional[dict] = None,
        predicate: Optional[Callable[[dict], bool]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        with self._lock:
            rows = [
                r for r in self._table(table).values()
                if all(r.get(k) == v for k, v in (where or {}).items())
                and (predicate is None or predicate(r))
            ]
            if order_by:
                rows.sort(key=lambda r: _sort_key(r.get(order_by)), reverse=descending)
            if limit is not None:
                rows = rows[:max(limit, 0)]
            return deepcopy(rows)


def _sort_key(value: Any):
    # None sorts first ascending
    return (value is not None, value)


def page_limit(requested: Optional[int], default: int, maximum: int) -> int:
    """Clamp a caller-supplied page size to ``1..maximum``; None means ``default``."""
    if requested is None:
        requested = default
    return max(1, min(requested, maximum))
