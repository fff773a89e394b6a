"""Read-only data store interface and an in-memory adapter."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol

from infra_analyst.types import Account, Alert, CostRecord, Resource

DateRange = tuple[datetime | None, datetime | None]

_RESOURCE_FILTER_KEYS = ("provider", "type", "status", "region")


class DataStore(Protocol):
    """Query contract consumed by the tools. Implementations never mutate.

    Implementations raise `DataStoreUnavailableError` when the backing store
    cannot be reached after their own retry policy.
    """

    def list_accounts(self) -> list[Account]:
        """Return all configured accounts."""

    def list_resources(
        self,
        account_ids: list[int] | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[Resource]:
        """Return resources, optionally restricted to accounts and field filters."""

    def list_costs(
        self,
        account_ids: list[int] | None = None,
        date_range: DateRange | None = None,
    ) -> list[CostRecord]:
        """Return cost records, newest first."""

    def list_alerts(
        self,
        account_ids: list[int] | None = None,
        unread_only: bool = False,
    ) -> list[Alert]:
        """Return alerts, newest first."""


class InMemoryDataStore:
    """Deterministic store used for tests and local prototyping.

    `query_counts` records how many times each query method was called so the
    caching behaviour of the tool layer can be observed.
    """

    def __init__(
        self,
        *,
        accounts: Iterable[Account] = (),
        resources: Iterable[Resource] = (),
        costs: Iterable[CostRecord] = (),
        alerts: Iterable[Alert] = (),
    ) -> None:
        self._accounts = list(accounts)
        self._resources = list(resources)
        self._costs = list(costs)
        self._alerts = list(alerts)
        self.query_counts: Counter[str] = Counter()

    def list_accounts(self) -> list[Account]:
        self.query_counts["list_accounts"] += 1
        return list(self._accounts)

    def list_resources(
        self,
        account_ids: list[int] | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[Resource]:
        self.query_counts["list_resources"] += 1
        items = [r for r in self._resources if _in_scope(r.account_id, account_ids)]
        for key in _RESOURCE_FILTER_KEYS:
            wanted = (filters or {}).get(key)
            if wanted is None:
                continue
            allowed = set(wanted) if isinstance(wanted, (list, tuple, set)) else {wanted}
            items = [r for r in items if getattr(r, key) in allowed]
        return items

    def list_costs(
        self,
        account_ids: list[int] | None = None,
        date_range: DateRange | None = None,
    ) -> list[CostRecord]:
        self.query_counts["list_costs"] += 1
        start, end = date_range or (None, None)
        items = [
            c
            for c in self._costs
            if _in_scope(c.account_id, account_ids)
            and (start is None or c.date >= start)
            and (end is None or c.date <= end)
        ]
        return sorted(items, key=lambda c: c.date, reverse=True)

    def list_alerts(
        self,
        account_ids: list[int] | None = None,
        unread_only: bool = False,
    ) -> list[Alert]:
        self.query_counts["list_alerts"] += 1
        items = [
            a
            for a in self._alerts
            if (account_ids is None or a.account_id is None or a.account_id in account_ids)
            and (not unread_only or not a.is_read)
        ]
        return sorted(items, key=lambda a: a.created_at, reverse=True)


def _in_scope(account_id: int, account_ids: list[int] | None) -> bool:
    return account_ids is None or account_id in account_ids


_DATETIME_FIELDS = ("last_sync_at", "last_updated", "date", "created_at")


def load_store(path: str | Path) -> InMemoryDataStore:
    """Build an `InMemoryDataStore` from a JSON fixture.

    The file holds `accounts`, `resources`, `costs` and `alerts` lists whose
    objects use the record field names; timestamps are ISO 8601 strings.
    """
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return InMemoryDataStore(
        accounts=[Account(**_with_datetimes(row)) for row in payload.get("accounts", [])],
        resources=[Resource(**_with_datetimes(row)) for row in payload.get("resources", [])],
        costs=[CostRecord(**_with_datetimes(row)) for row in payload.get("costs", [])],
        alerts=[Alert(**_with_datetimes(row)) for row in payload.get("alerts", [])],
    )


def _with_datetimes(row: dict[str, Any]) -> dict[str, Any]:
    converted = dict(row)
    for key in _DATETIME_FIELDS:
        value = converted.get(key)
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            converted[key] = parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return converted
