from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest
import yaml
from typer.testing import CliRunner

from entra_admin import cli
from entra_admin.graph_client import GraphError

MUTATING_CALLS = {"create_group", "add_group_member", "request_role_activation"}


def make_group(group_id: str, name: str, **fields: Any) -> Dict[str, Any]:
    group = {
        "id": group_id,
        "displayName": name,
        "groupTypes": [],
        "mail": None,
        "mailNickname": None,
        "mailEnabled": False,
        "securityEnabled": True,
    }
    group.update(fields)
    return group


class FakeDirectory:
    """In-memory stand-in for the Graph client."""

    def __init__(
        self,
        groups: Iterable[Dict[str, Any]] = (),
        members: Optional[Dict[str, List[str]]] = None,
        eligibility: Iterable[Dict[str, Any]] = (),
        active: Iterable[Dict[str, Any]] = (),
    ) -> None:
        self.groups = [dict(group) for group in groups]
        self.members = {key: list(value) for key, value in (members or {}).items()}
        self.eligibility = list(eligibility)
        self.active = list(active)
        self.role_names: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.nickname_queries: List[tuple] = []
        self.fail_adds: set[str] = set()
        self.add_errors: Dict[str, Exception] = {}
        self.read_errors: Dict[str, Exception] = {}
        self.create_error: Optional[Exception] = None
        self.activation_error: Optional[Exception] = None

    def _read(self, operation: str) -> None:
        if operation in self.read_errors:
            raise self.read_errors[operation]

    @property
    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def find_groups_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        self.calls.append(("find_groups_by_display_name", display_name))
        self._read("find_groups_by_display_name")
        return [dict(group) for group in self.groups if group["displayName"] == display_name]

    def find_groups_by_mail_nickname(
        self, mail_nickname: str, mail_enabled: bool, security_enabled: bool
    ) -> List[Dict[str, Any]]:
        self.nickname_queries.append((mail_nickname, mail_enabled, security_enabled))
        self._read("find_groups_by_mail_nickname")
        return [
            dict(group)
            for group in self.groups
            if group.get("mailNickname") == mail_nickname
            and bool(group.get("mailEnabled")) == mail_enabled
            and bool(group.get("securityEnabled")) == security_enabled
        ]

    def create_group(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_group", payload))
        if self.create_error is not None:
            raise self.create_error
        group = {"id": f"new-{len(self.groups) + 1}", "mail": f"{payload['mailNickname']}@contoso.com", **payload}
        self.groups.append(group)
        self.members[group["id"]] = []
        return dict(group)

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        self.calls.append(("list_group_members", group_id))
        self._read("list_group_members")
        return [{"id": member} for member in self.members.get(group_id, [])]

    def add_group_member(self, group_id: str, principal_id: str) -> None:
        self.calls.append(("add_group_member", group_id, principal_id))
        if principal_id in self.add_errors:
            raise self.add_errors[principal_id]
        if principal_id in self.fail_adds:
            raise GraphError(400, "Request_BadRequest", "One or more added object references already exist.")
        self.members.setdefault(group_id, []).append(principal_id)

    def get_current_user(self) -> Dict[str, Any]:
        return {"id": "user-1", "userPrincipalName": "admin@contoso.com", "displayName": "Admin"}

    def get_tenant_id(self) -> str:
        return "tenant-1"

    def list_role_eligibility_schedules(self, principal_id: str) -> List[Dict[str, Any]]:
        self._read("list_role_eligibility_schedules")
        return [dict(item) for item in self.eligibility]

    def get_role_definition(self, role_definition_id: str) -> Dict[str, Any]:
        self.calls.append(("get_role_definition", role_definition_id))
        return {"id": role_definition_id, "displayName": self.role_names.get(role_definition_id, role_definition_id)}

    def list_role_assignment_schedules(
        self, principal_id: str, role_definition_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        self.calls.append(("list_role_assignment_schedules", principal_id))
        self._read("list_role_assignment_schedules")
        return [
            dict(item)
            for item in self.active
            if role_definition_id is None or item["roleDefinitionId"] == role_definition_id
        ]

    def request_role_activation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("request_role_activation", body))
        if self.activation_error is not None:
            raise self.activation_error
        end = datetime.now(timezone.utc) + timedelta(hours=4)
        self.active.append(
            active_schedule(body["roleDefinitionId"], "Activated", "afterDateTime", end.strftime("%Y-%m-%dT%H:%M:%SZ"))
        )
        return {"id": "request-1", "status": "Provisioned"}


def eligible_role(role_id: str, name: str) -> Dict[str, Any]:
    return {
        "principalId": "user-1",
        "roleDefinitionId": role_id,
        "directoryScopeId": "/",
        "roleDefinition": {"id": role_id, "displayName": name},
    }


def active_schedule(
    role_id: str, assignment_type: str, expiration_type: str, end: Optional[str] = None, name: Optional[str] = None
) -> Dict[str, Any]:
    return {
        "principalId": "user-1",
        "roleDefinitionId": role_id,
        "assignmentType": assignment_type,
        "roleDefinition": {"id": role_id, "displayName": name or role_id},
        "scheduleInfo": {"expiration": {"type": expiration_type, "endDateTime": end}},
    }


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "settings.yaml"
    payload = {
        "graph": {"tenant_id": "tenant-1", "client_id": "client-1"},
        "reports": {"directory": str(tmp_path / "reports")},
    }
    path.write_text(yaml.safe_dump(payload), encoding="utf-8")
    return path


@pytest.fixture()
def run_cli(monkeypatch: pytest.MonkeyPatch, config_file: Path):
    def _run(directory: FakeDirectory, args: List[str], input: Optional[str] = None):
        monkeypatch.setattr(cli, "_build_client", lambda config: directory)
        return CliRunner().invoke(cli.app, [*args, "--config", str(config_file)], input=input)

    return _run
