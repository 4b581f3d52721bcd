# Overview: Typed domain errors shared by every lifecycle engine.

"""
Domain error taxonomy.

Every engine raises one of these instead of a bare string so callers can
branch on ``kind``. Routes translate them into JSON with ``http_status``.

A raised error always means the entity was left exactly as it was loaded:
validation happens before any mutation, and the surrounding transaction is
never committed on failure.
"""

from __future__ import annotations


class RepairFlowError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RepairFlowError, ValueError):
    """400-level input problem (bad shape or out-of-range value)."""

    kind = "validation_error"
    http_status = 400


class NotFound(RepairFlowError, LookupError):
    kind = "not_found"
    http_status = 404


class InvalidTransition(RepairFlowError):
    """State machine rule violation, including a lost compare-and-set race."""

    kind = "invalid_transition"
    http_status = 409


class AlreadyConverted(RepairFlowError):
    """
    Estimate was already converted.

    Recoverable: ``ticket_id`` points at the ticket created by the first
    conversion, so a retrying caller can continue with it.
    """

    kind = "already_converted"
    http_status = 409

    def __init__(self, message: str, ticket_id: int, ticket_number: str | None = None):
        super().__init__(message, details={"ticket_id": ticket_id, "ticket_number": ticket_number})
        self.ticket_id = ticket_id
        self.ticket_number = ticket_number


class ClaimInProgress(RepairFlowError):
    """A ticket already has an open warranty claim (``claim_id``)."""

    kind = "claim_in_progress"
    http_status = 409

    def __init__(self, message: str, claim_id: int):
        super().__init__(message, details={"claim_id": claim_id})
        self.claim_id = claim_id


class ExceedsBalance(RepairFlowError):
    kind = "exceeds_balance"
    http_status = 422


class WarrantyExpired(RepairFlowError):
    kind = "warranty_expired"
    http_status = 422


class NotEligible(RepairFlowError):
    kind = "not_eligible"
    http_status = 422


class Expired(RepairFlowError):
    """Estimate is past its valid_until date."""

    kind = "expired"
    http_status = 422


class StillReferenced(RepairFlowError):
    """Delete refused because another record points at this one."""

    kind = "still_referenced"
    http_status = 409
