from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import pytest
import requests

from entra_admin import graph_client
from entra_admin.config import GraphConfig
from entra_admin.graph_client import (
    GRAPH_BASE_URL,
    TRANSPORT_ERROR,
    GraphClient,
    GraphConfigurationError,
    GraphError,
)


class FakeResponse:
    def __init__(self, status_code: int, payload: Optional[Dict[str, Any]] = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if payload is None else json.dumps(payload)
        self.content = self.text.encode("utf-8")

    def json(self) -> Dict[str, Any]:
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


class FakeSession:
    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakePublicApp:
    def __init__(self, client_id: str, authority: str, token_cache: Any) -> None:
        self.client_id = client_id
        self.authority = authority

    def get_accounts(self) -> List[Dict[str, str]]:
        return [{"username": "admin@contoso.com"}]

    def acquire_token_silent(self, scopes: List[str], account: Any) -> Dict[str, str]:
        return {"access_token": "token-123"}


@pytest.fixture()
def make_client(monkeypatch, tmp_path):
    monkeypatch.setattr(graph_client.msal, "PublicClientApplication", FakePublicApp)

    def _make(responses: List[FakeResponse], **overrides: Any):
        config = GraphConfig(
            tenant_id="tenant-1",
            client_id="client-1",
            token_cache_file=tmp_path / "token_cache.json",
            **overrides,
        )
        session = FakeSession(responses)
        return GraphClient(config, session=session), session

    return _make


def test_collections_follow_next_links(make_client):
    client, session = make_client(
        [
            FakeResponse(200, {"value": [{"id": "a"}], "@odata.nextLink": f"{GRAPH_BASE_URL}/groups/g1/members?$skiptoken=x"}),
            FakeResponse(200, {"value": [{"id": "b"}]}),
        ]
    )

    members = client.list_group_members("g1")

    assert [member["id"] for member in members] == ["a", "b"]
    assert session.requests[0]["url"] == f"{GRAPH_BASE_URL}/groups/g1/members"
    assert session.requests[1]["url"].endswith("$skiptoken=x")
    assert session.requests[0]["headers"]["Authorization"] == "Bearer token-123"


def test_display_name_filter_escapes_quotes(make_client):
    client, session = make_client([FakeResponse(200, {"value": []})])

    client.find_groups_by_display_name("O'Brien Team")

    assert session.requests[0]["params"]["$filter"] == "displayName eq 'O''Brien Team'"


def test_nickname_filter_includes_both_flags(make_client):
    client, session = make_client([FakeResponse(200, {"value": []})])

    client.find_groups_by_mail_nickname("Sales.Team", mail_enabled=True, security_enabled=False)

    assert session.requests[0]["params"]["$filter"] == (
        "mailNickname eq 'Sales.Team' and mailEnabled eq true and securityEnabled eq false"
    )


def test_add_member_posts_directory_object_reference(make_client):
    client, session = make_client([FakeResponse(204)])

    client.add_group_member("g1", "user-a")

    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == f"{GRAPH_BASE_URL}/groups/g1/members/$ref"
    assert request["json"] == {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/user-a"}


def test_error_payload_becomes_graph_error(make_client):
    client, _ = make_client(
        [
            FakeResponse(
                400,
                {"error": {"code": "RoleAssignmentExists", "message": "The Role assignment already exists."}},
            )
        ]
    )

    with pytest.raises(GraphError) as excinfo:
        client.request_role_activation({"action": "SelfActivate"})

    assert excinfo.value.status_code == 400
    assert excinfo.value.code == "RoleAssignmentExists"
    assert excinfo.value.message == "The Role assignment already exists."


def test_non_json_error_keeps_response_text(make_client):
    client, _ = make_client([FakeResponse(502, text="Bad gateway")])

    with pytest.raises(GraphError) as excinfo:
        client.get_tenant_id()

    assert excinfo.value.code == "GraphError"
    assert excinfo.value.message == "Bad gateway"



def test_connection_failure_becomes_graph_error(make_client):
    client, _ = make_client([requests.ConnectionError("connection reset by peer")])

    with pytest.raises(GraphError) as excinfo:
        client.add_group_member("g1", "user-a")

    assert excinfo.value.status_code == 0
    assert excinfo.value.code == TRANSPORT_ERROR
    assert "connection reset by peer" in str(excinfo.value)


def test_token_endpoint_timeout_becomes_graph_error(monkeypatch, tmp_path):
    class UnreachableApp(FakePublicApp):
        def acquire_token_silent(self, scopes: List[str], account: Any) -> Dict[str, str]:
            raise requests.Timeout("login.microsoftonline.com timed out")

    monkeypatch.setattr(graph_client.msal, "PublicClientApplication", UnreachableApp)
    config = GraphConfig(tenant_id="tenant-1", client_id="client-1", token_cache_file=tmp_path / "cache.json")
    session = FakeSession([])

    with pytest.raises(GraphError) as excinfo:
        GraphClient(config, session=session).get_tenant_id()

    assert excinfo.value.code == TRANSPORT_ERROR
    assert session.requests == []


def test_assignment_schedule_filter_can_narrow_to_one_role(make_client):
    client, session = make_client([FakeResponse(200, {"value": []})])

    client.list_role_assignment_schedules("user-1", role_definition_id="r-1")

    assert session.requests[0]["params"]["$filter"] == "principalId eq 'user-1' and roleDefinitionId eq 'r-1'"


def test_app_only_sign_in_has_no_current_user(monkeypatch, tmp_path):
    monkeypatch.setattr(graph_client.msal, "ConfidentialClientApplication", lambda **kwargs: object())
    config = GraphConfig(
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret",
        token_cache_file=tmp_path / "token_cache.json",
    )

    with pytest.raises(GraphConfigurationError):
        GraphClient(config, session=FakeSession([])).get_current_user()
