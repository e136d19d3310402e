"""
Engine-wide exception hierarchy.

Every service raises one of these types. Each carries the machine-readable
``code`` and the HTTP status it maps to, so a single app-level error handler
renders all of them. A raised error always means nothing was changed: the
command runner rolls the transaction back before the response is built.

Usage:
    from civicworks.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="InventoryItem", resource_id="BULB-01")
    raise ValidationError("reason is required", details={"reason": "required"})
"""


class DomainError(Exception):
    """Base class for all errors surfaced to callers of the engine."""

    code = "INTERNAL"
    http_status = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthenticationRequired(DomainError):
    """No resolvable actor identity on the request."""

    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class PermissionDenied(DomainError):
    """Raised when the actor's role may not perform an action in the entity's state."""

    code = "PERMISSION_DENIED"
    http_status = 403

    def __init__(self, actor_id: str, role: str, action: str, state: str | None = None) -> None:
        state_msg = f" in state {state}" if state else ""
        super().__init__(
            f"Role {role} (actor {actor_id}) may not perform '{action}'{state_msg}",
            details={"role": role, "action": action, "state": state},
        )
        self.actor_id = actor_id
        self.role = role
        self.action = action
        self.state = state


class InvalidTransitionError(DomainError):
    """Raised when an action is not defined for the entity's current status."""

    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, entity: str, ref: str, action: str, current: str, reason: str | None = None) -> None:
        msg = f"Cannot '{action}' {entity} {ref} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, details={"entity": entity, "action": action, "current_status": current})
        self.entity = entity
        self.ref = ref
        self.action = action
        self.current_status = current
        self.reason = reason


class InsufficientStockError(DomainError):
    """Raised by the ledger when an issue would drive stock below zero."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, item_code: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for {item_code}: requested {requested}, available {available}",
            details={"item_code": item_code, "requested": requested, "available": available},
        )
        self.item_code = item_code
        self.requested = requested
        self.available = available


class ValidationError(DomainError):
    """Raised when input is well-formed JSON but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(DomainError):
    """Raised when a referenced entity or inventory item does not exist.

    Soft-deleted inventory items count as missing.

    Args:
        resource: Human-readable model name (e.g. "InventoryItem", "Incident").
        resource_id: The key that was looked up.
    """

    code = "ITEM_NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg, details={"resource": resource, "id": resource_id})


class ConflictError(DomainError):
    """Raised when a concurrent writer won the race or a unique key already exists.

    Maps to HTTP 409. Safe to retry with a fresh request id.
    """

    code = "CONFLICT"
    http_status = 409
