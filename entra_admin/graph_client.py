"""Microsoft Graph client for group and privileged role operations."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

import msal
import requests

from .config import GraphConfig


GRAPH_APP_SCOPE = ["https://graph.microsoft.com/.default"]
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
REQUEST_TIMEOUT = 30
TRANSPORT_ERROR = "TransportError"
GROUP_SELECT = "id,displayName,groupTypes,mail,mailNickname,securityEnabled,mailEnabled"

logger = logging.getLogger(__name__)


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class GraphConfigurationError(GraphClientError):
    """Raised when the Graph sign-in mode cannot serve the requested operation."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(f"{status_code}: {code} - {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


def _escape(value: str) -> str:
    return value.replace("'", "''")


class GraphClient:
    """Lightweight Microsoft Graph client.

    Delegated sign-in uses the device code flow and keeps a token cache on disk
    so repeated runs do not prompt again. When a client secret is configured the
    client signs in as the application instead, which is enough for group
    conversion but has no signed-in user for role activation.
    """

    def __init__(
        self,
        config: GraphConfig,
        session: Optional[requests.Session] = None,
        notify: Callable[[str], None] = print,
    ) -> None:
        self._config = config
        self._notify = notify
        self._token_lock = threading.Lock()
        self._session = session or requests.Session()
        self._cache = msal.SerializableTokenCache()
        self._load_token_cache()
        if config.app_only:
            self._app: Any = msal.ConfidentialClientApplication(
                client_id=config.client_id,
                client_credential=config.client_secret,
                authority=config.authority,
                token_cache=self._cache,
            )
        else:
            self._app = msal.PublicClientApplication(
                client_id=config.client_id,
                authority=config.authority,
                token_cache=self._cache,
            )

    # ------------------------------------------------------------------ #
    # Token handling / HTTP helpers                                      #
    # ------------------------------------------------------------------ #
    @property
    def token_cache_path(self) -> Path:
        return self._config.token_cache_file

    def _load_token_cache(self) -> None:
        path = self.token_cache_path
        if not path.exists():
            return
        try:
            self._cache.deserialize(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable token cache %s: %s", path, exc)

    def _save_token_cache(self) -> None:
        if not self._cache.has_state_changed:
            return
        path = self.token_cache_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self._cache.serialize(), encoding="utf-8")

    def _acquire_token(self) -> str:
        with self._token_lock:
            try:
                if self._config.app_only:
                    result = self._app.acquire_token_silent(GRAPH_APP_SCOPE, account=None)
                    if not result:
                        result = self._app.acquire_token_for_client(scopes=GRAPH_APP_SCOPE)
                else:
                    result = self._acquire_delegated_token()
            except requests.RequestException as exc:
                raise GraphError(0, TRANSPORT_ERROR, str(exc)) from exc
            self._save_token_cache()

        if not result or "access_token" not in result:
            result = result or {}
            raise GraphError(
                status_code=0,
                code=result.get("error", "token_error"),
                message=result.get("error_description", "Unable to acquire Graph token."),
            )
        return str(result["access_token"])

    def _acquire_delegated_token(self) -> Optional[Dict[str, Any]]:
        scopes = list(self._config.scopes)
        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent(scopes, account=accounts[0])
            if result:
                return result

        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise GraphError(
                status_code=0,
                code=flow.get("error", "device_flow_error"),
                message=flow.get("error_description", "Unable to start device code sign-in."),
            )
        self._notify(flow["message"])
        return self._app.acquire_token_by_device_flow(flow)

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else GRAPH_BASE_URL + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._acquire_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        logger.debug("Graph %s %s", method, url)
        try:
            response = self._session.request(
                method,
                url,
                timeout=REQUEST_TIMEOUT,
                headers=headers,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise GraphError(0, TRANSPORT_ERROR, str(exc)) from exc
        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def _paged(self, path: str, params: Optional[Dict[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a collection, following ``@odata.nextLink``."""

        result = self._request("GET", path, params=params)
        while True:
            yield from result.get("value", [])
            next_link = result.get("@odata.nextLink")
            if not next_link:
                return
            result = self._request("GET", next_link)

    # ------------------------------------------------------------------ #
    # Identity                                                           #
    # ------------------------------------------------------------------ #
    def get_current_user(self) -> Dict[str, Any]:
        if self._config.app_only:
            raise GraphConfigurationError(
                "No signed-in user: remove graph.client_secret to use interactive sign-in."
            )
        return self._request("GET", "/me", params={"$select": "id,userPrincipalName,displayName"})

    def get_tenant_id(self) -> str:
        result = self._request("GET", "/organization", params={"$select": "id"})
        values = result.get("value") or []
        return str(values[0]["id"]) if values else self._config.tenant_id

    # ------------------------------------------------------------------ #
    # Group helpers                                                      #
    # ------------------------------------------------------------------ #
    def find_groups_by_display_name(self, display_name: str) -> List[Dict[str, Any]]:
        params = {
            "$filter": f"displayName eq '{_escape(display_name)}'",
            "$select": GROUP_SELECT,
        }
        return list(self._paged("/groups", params))

    def find_groups_by_mail_nickname(
        self, mail_nickname: str, mail_enabled: bool, security_enabled: bool
    ) -> List[Dict[str, Any]]:
        params = {
            "$filter": (
                f"mailNickname eq '{_escape(mail_nickname)}'"
                f" and mailEnabled eq {str(mail_enabled).lower()}"
                f" and securityEnabled eq {str(security_enabled).lower()}"
            ),
            "$select": GROUP_SELECT,
        }
        return list(self._paged("/groups", params))

    def create_group(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/groups", json=payload)

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        return list(self._paged(f"/groups/{group_id}/members", {"$select": "id"}))

    def add_group_member(self, group_id: str, principal_id: str) -> None:
        payload = {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{principal_id}"}
        self._request("POST", f"/groups/{group_id}/members/$ref", json=payload)

    # ------------------------------------------------------------------ #
    # Privileged role helpers                                            #
    # ------------------------------------------------------------------ #
    def list_role_eligibility_schedules(self, principal_id: str) -> List[Dict[str, Any]]:
        params = {
            "$filter": f"principalId eq '{_escape(principal_id)}'",
            "$expand": "roleDefinition",
        }
        return list(self._paged("/roleManagement/directory/roleEligibilitySchedules", params))

    def get_role_definition(self, role_definition_id: str) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/roleManagement/directory/roleDefinitions/{role_definition_id}",
            params={"$select": "id,displayName,description"},
        )

    def list_role_assignment_schedules(
        self, principal_id: str, role_definition_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        filters = [f"principalId eq '{_escape(principal_id)}'"]
        if role_definition_id:
            filters.append(f"roleDefinitionId eq '{_escape(role_definition_id)}'")
        params = {"$filter": " and ".join(filters), "$expand": "roleDefinition"}
        return list(self._paged("/roleManagement/directory/roleAssignmentSchedules", params))

    def request_role_activation(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(
            "POST", "/roleManagement/directory/roleAssignmentScheduleRequests", json=body
        )


__all__ = [
    "GraphClient",
    "GraphClientError",
    "GraphConfigurationError",
    "GraphError",
]
