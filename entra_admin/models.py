"""Data models for directory groups and privileged role schedules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def parse_graph_datetime(raw: Any) -> Optional[datetime]:
    """Parse a Graph ISO-8601 timestamp into an aware UTC datetime."""

    if not raw:
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        text = str(raw).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_graph_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class DirectoryGroup:
    """A group as returned by the directory."""

    id: str
    display_name: str
    mail_enabled: bool = False
    security_enabled: bool = False
    group_types: tuple[str, ...] = ()
    mail: Optional[str] = None
    mail_nickname: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "DirectoryGroup":
        return cls(
            id=str(data["id"]),
            display_name=str(data.get("displayName") or ""),
            mail_enabled=bool(data.get("mailEnabled")),
            security_enabled=bool(data.get("securityEnabled")),
            group_types=tuple(data.get("groupTypes") or ()),
            mail=data.get("mail") or None,
            mail_nickname=data.get("mailNickname") or None,
        )

    @property
    def likely_source(self) -> bool:
        """Plain security groups have no mail address and no group type tags."""

        return not self.mail_enabled and not self.group_types

    @property
    def kind(self) -> str:
        if "Unified" in self.group_types:
            return "Unified"
        if self.mail_enabled and self.security_enabled:
            return "Mail-enabled security"
        if self.mail_enabled:
            return "Distribution"
        return "Security"


@dataclass(frozen=True)
class MembershipDiff:
    """Membership comparison between a source group and a target group."""

    only_in_source: List[str] = field(default_factory=list)
    only_in_target: List[str] = field(default_factory=list)
    common: List[str] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.only_in_source and not self.only_in_target


@dataclass(frozen=True)
class ChangeReportRow:
    action: str
    target_group: str
    principal_id: str


@dataclass(frozen=True)
class RoleEligibility:
    """A standing entitlement for a principal to activate a directory role."""

    principal_id: str
    role_definition_id: str
    role_name: str
    directory_scope_id: str = ""

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "RoleEligibility":
        definition = data.get("roleDefinition") or {}
        role_id = str(data.get("roleDefinitionId") or definition.get("id") or "")
        return cls(
            principal_id=str(data.get("principalId") or ""),
            role_definition_id=role_id,
            role_name=str(definition.get("displayName") or role_id),
            directory_scope_id=str(data.get("directoryScopeId") or ""),
        )


class ExpiryKind(str, Enum):
    PERMANENT = "permanent"
    EXPIRES_AT = "expires_at"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ExpiryStatus:
    kind: ExpiryKind
    end_date_time: Optional[datetime] = None
    minutes_remaining: Optional[int] = None


@dataclass(frozen=True)
class RoleAssignmentSchedule:
    """An active role grant, either standing or from an activation."""

    principal_id: str
    role_definition_id: str
    role_name: str
    assignment_type: str = ""
    expiration_type: str = ""
    end_date_time: Optional[datetime] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "RoleAssignmentSchedule":
        definition = data.get("roleDefinition") or {}
        role_id = str(data.get("roleDefinitionId") or definition.get("id") or "")
        schedule = data.get("scheduleInfo") or {}
        expiration = schedule.get("expiration") or {}
        return cls(
            principal_id=str(data.get("principalId") or ""),
            role_definition_id=role_id,
            role_name=str(definition.get("displayName") or role_id),
            assignment_type=str(data.get("assignmentType") or ""),
            expiration_type=str(expiration.get("type") or ""),
            end_date_time=parse_graph_datetime(expiration.get("endDateTime")),
        )


@dataclass(frozen=True)
class ActivationRequest:
    """A self-activation request for an eligible directory role."""

    principal_id: str
    role_definition_id: str
    directory_scope_id: str
    justification: str
    start_date_time: datetime
    duration: str = "PT4H"
    action: str = "SelfActivate"

    def to_graph(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "principalId": self.principal_id,
            "roleDefinitionId": self.role_definition_id,
            "directoryScopeId": self.directory_scope_id,
            "justification": self.justification,
            "scheduleInfo": {
                "startDateTime": format_graph_datetime(self.start_date_time),
                "expiration": {
                    "type": "AfterDuration",
                    "duration": self.duration,
                },
            },
        }


__all__ = [
    "ActivationRequest",
    "ChangeReportRow",
    "DirectoryGroup",
    "ExpiryKind",
    "ExpiryStatus",
    "MembershipDiff",
    "RoleAssignmentSchedule",
    "RoleEligibility",
    "format_graph_datetime",
    "parse_graph_datetime",
]
