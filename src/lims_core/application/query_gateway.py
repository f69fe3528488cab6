"""Query Gateway — single entry point for reading laboratory information.

The Query Gateway exposes store state and the dashboard to external
clients. It is the read-side counterpart to the Command Gateway.

Rules enforced:
- Gateway never mutates state.
- Gateway contains no business logic.

No framework coupling — queries are plain dicts, responses are QueryResult.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable

from lims_core.domain.records import to_record


@dataclass(frozen=True)
class QueryResult:
    """Result of a query gateway invocation.

    Always returned — the gateway never throws exceptions.
    """
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str = ""


@dataclass
class _QueryRegistration:
    """Internal: maps a query_type to its source and response mapper."""
    source: Callable[[dict[str, Any]], Any]
    mapper: Callable[[Any, dict[str, Any]], dict[str, Any]]


class QueryGateway:
    """Gateway that receives raw query dicts and returns read-side data.

    Usage:
        gateway = QueryGateway()
        gateway.register("Dashboard", source=fetch, mapper=my_mapper)
        result = gateway.handle({"query_type": "Dashboard", "params": {...}})
    """

    def __init__(self) -> None:
        self._registrations: dict[str, _QueryRegistration] = {}

    def register(
        self,
        query_type: str,
        source: Callable[[dict[str, Any]], Any],
        mapper: Callable[[Any, dict[str, Any]], dict[str, Any]] | None = None,
    ) -> None:
        """Register a query type with its source and response mapper."""
        self._registrations[query_type] = _QueryRegistration(
            source=source,
            mapper=mapper or _default_mapper,
        )

    def handle(self, request: Any) -> QueryResult:
        """Process a raw query request and return a QueryResult.

        Never raises exceptions — all errors are returned as QueryResult.
        """
        try:
            return self._handle_inner(request)
        except Exception as e:
            return QueryResult(success=False, error=str(e))

    def _handle_inner(self, request: Any) -> QueryResult:
        # Step 1: Validate request envelope
        if not isinstance(request, dict):
            return QueryResult(success=False, error="Request must be a dict")

        if "query_type" not in request:
            return QueryResult(success=False, error="Missing required field: query_type")

        query_type = request["query_type"]

        if not isinstance(query_type, str):
            return QueryResult(
                success=False,
                error=f"query_type must be a string, got {type(query_type).__name__}",
            )

        # Step 2: Check query type is registered
        if query_type not in self._registrations:
            return QueryResult(success=False, error=f"Unknown query type: {query_type}")

        reg = self._registrations[query_type]
        params = request.get("params", {})
        if not isinstance(params, dict):
            params = {}

        # Step 3: Fetch state and map to response
        state = reg.source(params)
        if state is None:
            return QueryResult(success=False, error=f"Not found: {query_type}")

        # Step 4: Return result
        return QueryResult(success=True, data=reg.mapper(state, params))


def _default_mapper(state: Any, params: dict[str, Any]) -> dict[str, Any]:
    if isinstance(state, list):
        return {"items": [to_record(item) for item in state]}
    if dataclasses.is_dataclass(state) and not isinstance(state, type):
        return to_record(state)
    return {"result": state}


def _limited(params: dict[str, Any], items: list[Any]) -> list[Any]:
    limit = params.get("limit")
    return items[: int(limit)] if limit is not None else items


# ---------------------------------------------------------------------------
# Default registrations
# ---------------------------------------------------------------------------

def build_query_gateway(service: Any) -> QueryGateway:
    """Register the standard read queries over a LabService."""
    s = service
    store = service.store
    gateway = QueryGateway()
    gateway.register("Dashboard", lambda p: s.get_dashboard(p.get("center_id")))
    gateway.register("Test", lambda p: store.get("tests", p.get("test_id", "")))
    gateway.register(
        "Tests",
        lambda p: [t for t in store.all("tests") if t.is_active or p.get("include_inactive")],
    )
    gateway.register("Invoice", lambda p: store.get("invoices", p.get("invoice_id", "")))
    gateway.register("Report", lambda p: store.get("reports", p.get("report_id", "")))
    gateway.register(
        "ReportForInvoice", lambda p: s.invoices.report_for(p.get("invoice_id", "")),
    )
    gateway.register(
        "Notifications", lambda p: _limited(p, s.notifications(bool(p.get("unread_only")))),
    )
    gateway.register(
        "AuditTrail",
        lambda p: _limited(
            p, sorted(store.all("audit_logs"), key=lambda log: log.timestamp, reverse=True),
        ),
    )
    return gateway
