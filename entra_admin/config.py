"""Configuration loading utilities for the Entra admin toolkit."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "ENTRA_ADMIN_CONFIG"
ENV_PREFIX = "ENTRA_ADMIN_"
DEFAULT_TOKEN_CACHE = Path("data/token_cache.json")
DEFAULT_REPORTS_DIR = Path("reports")
DEFAULT_SCOPE_ID = "/"

DEFAULT_SCOPES = (
    "https://graph.microsoft.com/User.Read",
    "https://graph.microsoft.com/Group.ReadWrite.All",
    "https://graph.microsoft.com/GroupMember.ReadWrite.All",
    "https://graph.microsoft.com/RoleEligibilitySchedule.Read.Directory",
    "https://graph.microsoft.com/RoleAssignmentSchedule.ReadWrite.Directory",
    "https://graph.microsoft.com/RoleManagement.Read.Directory",
)


@dataclass
class GraphConfig:
    """Settings for signing in to Microsoft Graph."""

    tenant_id: str
    client_id: str
    client_secret: Optional[str] = None
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    token_cache_file: Path = DEFAULT_TOKEN_CACHE

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @property
    def app_only(self) -> bool:
        """App-only (client credential) sign-in has no signed-in user."""

        return bool(self.client_secret)


@dataclass
class ReportConfig:
    """Where conversion change reports are written."""

    directory: Path = DEFAULT_REPORTS_DIR


@dataclass
class PIMConfig:
    """Settings for privileged role activation."""

    directory_scope_id: str = DEFAULT_SCOPE_ID


@dataclass
class AppConfig:
    """Aggregate configuration for the toolkit."""

    graph: GraphConfig
    reports: ReportConfig = field(default_factory=ReportConfig)
    pim: PIMConfig = field(default_factory=PIMConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or set environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        return yaml.safe_load(file) or {}


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with ``ENTRA_ADMIN_<SECTION>__<KEY>`` variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = _resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigurationError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(resolved_path)

    config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _get_required(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    try:
        return config_dict[key] or {}
    except KeyError as exc:
        raise ConfigurationError(f"Missing required configuration section: '{key}'.") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _parse_scopes(value: Any) -> Tuple[str, ...]:
    """Accept a YAML list or a comma separated string (as set from the environment)."""

    entries = value.split(",") if isinstance(value, str) else list(value or ())
    return tuple(scope for scope in (_optional_str(entry) for entry in entries) if scope) or DEFAULT_SCOPES


def _path_setting(section: Dict[str, Any], key: str, default: Path) -> Path:
    raw = _optional_str(section.get(key))
    return Path(raw) if raw else default


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load toolkit configuration from disk and environment variables."""

    config_dict = _load_config_dict(path)
    graph_section = _get_required(config_dict, "graph")

    tenant_id = _optional_str(graph_section.get("tenant_id"))
    client_id = _optional_str(graph_section.get("client_id"))
    if not tenant_id or not client_id:
        raise ConfigurationError(
            "Microsoft Graph is not configured. Provide graph.tenant_id and graph.client_id."
        )

    graph_config = GraphConfig(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=_optional_str(graph_section.get("client_secret")),
        scopes=_parse_scopes(graph_section.get("scopes")),
        token_cache_file=_path_setting(graph_section, "token_cache_file", DEFAULT_TOKEN_CACHE),
    )

    reports_section = config_dict.get("reports") or {}
    pim_section = config_dict.get("pim") or {}
    return AppConfig(
        graph=graph_config,
        reports=ReportConfig(directory=_path_setting(reports_section, "directory", DEFAULT_REPORTS_DIR)),
        pim=PIMConfig(
            directory_scope_id=_optional_str(pim_section.get("directory_scope_id")) or DEFAULT_SCOPE_ID
        ),
    )


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DEFAULT_SCOPES",
    "GraphConfig",
    "PIMConfig",
    "ReportConfig",
    "ensure_default_config",
    "load_config",
]
