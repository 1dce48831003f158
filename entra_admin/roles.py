"""Privileged role eligibility, expiry classification and self-activation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

import requests

from .directory import Directory
from .graph_client import GraphClientError
from .models import (
    ActivationRequest,
    ExpiryKind,
    ExpiryStatus,
    RoleAssignmentSchedule,
    RoleEligibility,
)

ACTIVATION_DURATION = "PT4H"

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------- #
# Eligible and active roles                                              #
# ---------------------------------------------------------------------- #
def list_eligible_roles(directory: Directory, principal_id: str) -> List[RoleEligibility]:
    """Fetch eligibility schedules in service order, resolving role names when not expanded."""

    roles: List[RoleEligibility] = []
    for item in directory.list_role_eligibility_schedules(principal_id):
        if not (item.get("roleDefinition") or {}).get("displayName") and item.get("roleDefinitionId"):
            item = dict(item, roleDefinition=directory.get_role_definition(item["roleDefinitionId"]))
        roles.append(RoleEligibility.from_graph(item))
    return roles


def build_role_menu(eligible: Iterable[RoleEligibility]) -> Dict[int, RoleEligibility]:
    """Number eligible roles from 1, keeping fetch order."""

    return {index: role for index, role in enumerate(eligible, start=1)}


def list_active_roles(directory: Directory, principal_id: str) -> List[RoleAssignmentSchedule]:
    return [
        RoleAssignmentSchedule.from_graph(item)
        for item in directory.list_role_assignment_schedules(principal_id)
    ]


def classify_expiry(schedule: RoleAssignmentSchedule, now: Optional[datetime] = None) -> ExpiryStatus:
    """Classify an active assignment as permanent, expiring at a time, or unknown."""

    expiration = schedule.expiration_type.lower()
    if schedule.assignment_type.lower() == "assigned" and expiration == "noexpiration":
        return ExpiryStatus(ExpiryKind.PERMANENT)
    if expiration == "afterdatetime" and schedule.end_date_time is not None:
        now = now or _utc_now()
        minutes = round((schedule.end_date_time - now).total_seconds() / 60)
        return ExpiryStatus(ExpiryKind.EXPIRES_AT, schedule.end_date_time, int(minutes))
    return ExpiryStatus(ExpiryKind.UNKNOWN, schedule.end_date_time)


def is_role_active(role_definition_id: str, active: Iterable[RoleAssignmentSchedule]) -> bool:
    return any(schedule.role_definition_id == role_definition_id for schedule in active)


# ---------------------------------------------------------------------- #
# Activation                                                             #
# ---------------------------------------------------------------------- #
class ActivationResult(str, Enum):
    ACTIVATED = "activated"
    ALREADY_EXISTS = "already_exists"
    PENDING_REQUEST = "pending_request"
    FAILED = "failed"


@dataclass(frozen=True)
class ActivationOutcome:
    result: ActivationResult
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.result is ActivationResult.ACTIVATED


# Graph error codes first, then message fragments for services that only
# report the condition in text.
_KNOWN_CONFLICT_CODES = {
    "roleassignmentexists": ActivationResult.ALREADY_EXISTS,
    "pendingroleassignmentrequest": ActivationResult.PENDING_REQUEST,
}
_KNOWN_CONFLICT_TEXT = (
    ("pending role assignment request already exists", ActivationResult.PENDING_REQUEST),
    ("role assignment already exists", ActivationResult.ALREADY_EXISTS),
)


def classify_activation_error(error: Exception) -> ActivationOutcome:
    """Translate an activation failure into a known conflict or a generic failure."""

    code = str(getattr(error, "code", "") or "").lower()
    if code in _KNOWN_CONFLICT_CODES:
        return ActivationOutcome(_KNOWN_CONFLICT_CODES[code], str(error))
    text = str(error).lower()
    for fragment, result in _KNOWN_CONFLICT_TEXT:
        if fragment in text:
            return ActivationOutcome(result, str(error))
    return ActivationOutcome(ActivationResult.FAILED, str(error))


def build_activation_request(
    principal_id: str,
    role: RoleEligibility,
    justification: str,
    default_scope_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ActivationRequest:
    cleaned = (justification or "").strip()
    if not cleaned:
        raise ValueError("A justification is required to activate a role.")
    return ActivationRequest(
        principal_id=principal_id,
        role_definition_id=role.role_definition_id,
        directory_scope_id=role.directory_scope_id or default_scope_id or "/",
        justification=cleaned,
        start_date_time=now or _utc_now(),
        duration=ACTIVATION_DURATION,
    )


def activate_role(directory: Directory, request: ActivationRequest) -> ActivationOutcome:
    """Submit a self-activation request. Failures are classified, never retried."""

    try:
        directory.request_role_activation(request.to_graph())
    except (GraphClientError, requests.RequestException) as exc:
        outcome = classify_activation_error(exc)
        logger.warning("Activation of %s failed (%s): %s", request.role_definition_id, outcome.result.value, exc)
        return outcome
    logger.info("Activated role %s for %s", request.role_definition_id, request.principal_id)
    return ActivationOutcome(ActivationResult.ACTIVATED)


__all__ = [
    "ACTIVATION_DURATION",
    "ActivationOutcome",
    "ActivationResult",
    "activate_role",
    "build_activation_request",
    "build_role_menu",
    "classify_activation_error",
    "classify_expiry",
    "is_role_active",
    "list_active_roles",
    "list_eligible_roles",
]
