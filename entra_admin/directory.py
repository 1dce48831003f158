"""Directory capability consumed by the group conversion and role activation flows."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class Directory(Protocol):
    """Directory operations the group and role flows depend on.

    :class:`entra_admin.graph_client.GraphClient` is the production
    implementation; any object with these methods can stand in for it.
    """

    def find_groups_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        ...

    def find_groups_by_mail_nickname(
        self, mail_nickname: str, mail_enabled: bool, security_enabled: bool
    ) -> List[Dict[str, Any]]:
        ...

    def create_group(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        ...

    def add_group_member(self, group_id: str, principal_id: str) -> None:
        ...

    def get_current_user(self) -> Dict[str, Any]:
        ...

    def get_tenant_id(self) -> str:
        ...

    def list_role_eligibility_schedules(self, principal_id: str) -> List[Dict[str, Any]]:
        ...

    def get_role_definition(self, role_definition_id: str) -> Dict[str, Any]:
        ...

    def list_role_assignment_schedules(
        self, principal_id: str, role_definition_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        ...

    def request_role_activation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        ...
