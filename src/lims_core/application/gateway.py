"""Command Gateway — single entry point for mutating requests.

The gateway accepts raw request dicts, validates input shape, checks the
optional permission collaborator, routes to the LabService and returns a
GatewayResult. It never throws exceptions to the caller.

Request shape:
    {"command_type": "UpdateInvoice",
     "payload": {"invoice_id": "...", "patch": {...}},
     "user_id": "u-1"}            # optional acting user

Rules enforced:
- Gateway performs validation of input shape only.
- Gateway contains no business logic.
- An update addressed to an unknown id is a failure (not found); a delete
  addressed to an unknown id succeeds with {"deleted": False}.
- A None result carrying a rejection reason (from the rejection callable)
  is reported with that reason instead of "Not found".

No framework coupling — requests are plain dicts.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable

from lims_core.domain.ports import PermissionChecker
from lims_core.domain.records import to_record
from lims_core.domain.report_workflow import DomainError

Handler = Callable[[dict[str, Any], "str | None"], Any]


@dataclass(frozen=True)
class GatewayResult:
    """Result of a gateway command invocation.

    Always returned — the gateway never throws exceptions.
    """
    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str = ""


@dataclass
class _CommandRegistration:
    """Internal: maps a command_type to its handler and config."""
    handler: Handler
    required_fields: list[str]
    permission: tuple[str, str] | None
    id_field: str | None


class CommandGateway:
    """Gateway that receives raw request dicts and routes to handlers.

    Usage:
        gateway = build_command_gateway(service, permissions=auth)
        result = gateway.handle({"command_type": "RecordPayment", "payload": {...}})
    """

    def __init__(
        self,
        permissions: PermissionChecker | None = None,
        rejection: Callable[[], "str | None"] | None = None,
    ) -> None:
        self._registrations: dict[str, _CommandRegistration] = {}
        self._permissions = permissions
        self._rejection = rejection

    def register(
        self,
        command_type: str,
        handler: Handler,
        required_fields: list[str] | None = None,
        permission: tuple[str, str] | None = None,
        id_field: str | None = None,
    ) -> None:
        """Register a command type.

        permission is (module, action); module may reference payload
        fields, e.g. "{collection}". id_field names the payload field
        reported when the handler returns None.
        """
        self._registrations[command_type] = _CommandRegistration(
            handler=handler,
            required_fields=required_fields or [],
            permission=permission,
            id_field=id_field,
        )

    def handle(self, request: dict[str, Any]) -> GatewayResult:
        """Process a raw request dict and return a GatewayResult.

        Never raises exceptions — all errors are returned as GatewayResult.
        """
        try:
            return self._handle_inner(request)
        except Exception as e:
            return GatewayResult(success=False, error=str(e))

    def _handle_inner(self, request: dict[str, Any]) -> GatewayResult:
        # Step 1: Validate request envelope
        if not isinstance(request, dict):
            return GatewayResult(success=False, error="Request must be a dict")
        if "command_type" not in request:
            return GatewayResult(success=False, error="Missing required field: command_type")
        if "payload" not in request:
            return GatewayResult(success=False, error="Missing required field: payload")

        command_type = request["command_type"]
        payload = request["payload"]
        user_id = request.get("user_id")

        if not isinstance(payload, dict):
            return GatewayResult(success=False, error="payload must be a dict")

        # Step 2: Check command type is registered
        if command_type not in self._registrations:
            return GatewayResult(success=False, error=f"Unknown command type: {command_type}")

        reg = self._registrations[command_type]

        # Step 3: Validate input shape (required fields)
        for field_name in reg.required_fields:
            if field_name not in payload:
                return GatewayResult(
                    success=False,
                    error=f"Missing required field in payload: {field_name}",
                )
        for field_name in ("patch", "payment", "record"):
            if field_name in payload and not isinstance(payload[field_name], dict):
                return GatewayResult(success=False, error=f"{field_name} must be a dict")

        # Step 4: Capability check
        if reg.permission is not None and self._permissions is not None:
            module, action = reg.permission
            module = module.format(**payload)
            if not self._permissions.has_permission(module, action):
                return GatewayResult(
                    success=False,
                    error=f"Permission denied: {action} on {module}",
                )

        # Step 5: Route to handler
        try:
            result = reg.handler(payload, user_id)
        except DomainError as e:
            return GatewayResult(success=False, error=str(e))

        # Step 6: Map result
        if result is None:
            reason = self._rejection() if self._rejection is not None else None
            if reason:
                return GatewayResult(success=False, error=reason)
            target = payload.get(reg.id_field, "") if reg.id_field else ""
            return GatewayResult(success=False, error=f"Not found: {target}".strip())
        return GatewayResult(success=True, data=_to_data(result))


def _to_data(result: Any) -> dict[str, Any]:
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        return to_record(result)
    if isinstance(result, bool):
        return {"deleted": result}
    return {"result": result}


# ---------------------------------------------------------------------------
# Default registrations
# ---------------------------------------------------------------------------

def build_command_gateway(service: Any, permissions: PermissionChecker | None = None) -> CommandGateway:
    """Register every LabService mutation under its command type."""
    s = service
    gateway = CommandGateway(permissions, rejection=lambda: s.last_error)
    routes: list[tuple[str, Handler, list[str], tuple[str, str] | None, str | None]] = [
        # Test catalog
        ("CreateTest", lambda p, u: s.create_test(p, u),
         ["name"], ("tests", "create"), None),
        ("UpdateTest", lambda p, u: s.update_test(p["test_id"], p["patch"], u),
         ["test_id", "patch"], ("tests", "edit"), "test_id"),
        ("DeleteTest", lambda p, u: s.delete_test(p["test_id"], u),
         ["test_id"], ("tests", "delete"), "test_id"),
        # Invoices
        ("CreateInvoice", lambda p, u: s.create_invoice(p, u),
         ["patient_id", "tests"], ("invoices", "create"), None),
        ("UpdateInvoice", lambda p, u: s.update_invoice(p["invoice_id"], p["patch"], u),
         ["invoice_id", "patch"], ("invoices", "edit"), "invoice_id"),
        ("DeleteInvoice", lambda p, u: s.delete_invoice(p["invoice_id"], u),
         ["invoice_id"], ("invoices", "delete"), "invoice_id"),
        ("RecordPayment", lambda p, u: s.record_payment(p["invoice_id"], p["payment"], u),
         ["invoice_id", "payment"], ("invoices", "edit"), "invoice_id"),
        # Reports
        ("CreateReport", lambda p, u: s.create_report(p, u),
         ["invoice_id", "patient_id"], ("reports", "create"), None),
        ("UpdateReport", lambda p, u: s.update_report(p["report_id"], p["patch"], u),
         ["report_id", "patch"], ("reports", "edit"), "report_id"),
        ("StartReport", lambda p, u: s.mark_in_progress(p["report_id"], u),
         ["report_id"], ("reports", "edit"), "report_id"),
        ("CompleteReport", lambda p, u: s.mark_completed(p["report_id"], u),
         ["report_id"], ("reports", "edit"), "report_id"),
        ("VerifyReport", lambda p, u: s.verify_report(p["report_id"], u),
         ["report_id"], ("reports", "verify"), "report_id"),
        ("DeclineReport", lambda p, u: s.decline_report(p["report_id"], p["reason"], u),
         ["report_id", "reason"], ("reports", "verify"), "report_id"),
        ("UndoReport", lambda p, u: s.undo_report(p["report_id"], u),
         ["report_id"], ("reports", "verify"), "report_id"),
        ("LockReport", lambda p, u: s.lock_report(p["report_id"], u),
         ["report_id"], ("reports", "lock"), "report_id"),
        ("AddReportComment", lambda p, u: s.add_report_comment(p["report_id"], p["comment"], u),
         ["report_id", "comment"], ("reports", "edit"), "report_id"),
        ("AddReportAttachment",
         lambda p, u: s.add_report_attachment(p["report_id"], p["file_id"], u),
         ["report_id", "file_id"], ("reports", "edit"), "report_id"),
        # Directory
        ("CreateRecord", lambda p, u: s.create_record(p["collection"], p["record"], u),
         ["collection", "record"], ("{collection}", "create"), None),
        ("UpdateRecord",
         lambda p, u: s.update_record(p["collection"], p["record_id"], p["patch"], u),
         ["collection", "record_id", "patch"], ("{collection}", "edit"), "record_id"),
        ("DeleteRecord", lambda p, u: s.delete_record(p["collection"], p["record_id"], u),
         ["collection", "record_id"], ("{collection}", "delete"), "record_id"),
        # Notifications
        ("MarkNotificationRead", lambda p, u: s.mark_notification_read(p["notification_id"]),
         ["notification_id"], None, "notification_id"),
        ("MarkAllNotificationsRead", lambda p, u: s.mark_all_notifications_read(),
         [], None, None),
        ("DeleteNotification", lambda p, u: s.delete_notification(p["notification_id"]),
         ["notification_id"], None, "notification_id"),
    ]
    for command_type, handler, required, permission, id_field in routes:
        gateway.register(command_type, handler, required, permission, id_field)
    return gateway
