"""Group resolution, conflict detection and membership reconciliation."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import requests

from .directory import Directory
from .errors import (
    AmbiguousConflictError,
    GroupCreationError,
    GroupNotFoundError,
    InvalidSelectionError,
)
from .graph_client import GraphClientError
from .models import DirectoryGroup, MembershipDiff
from .reports import ChangeReport

ACTION_ADDED = "Added"
ACTION_FAILED = "Failed"
ACTION_DRY_RUN = "DryRunAdd"
DRY_RUN_GROUP_ID = "dry-run"

logger = logging.getLogger(__name__)


class TargetType(str, Enum):
    """The kind of group a security group is converted into."""

    MESG = "mesg"
    UNIFIED = "unified"

    @property
    def security_enabled(self) -> bool:
        return self is TargetType.MESG

    @property
    def group_types(self) -> List[str]:
        return ["Unified"] if self is TargetType.UNIFIED else []

    @property
    def label(self) -> str:
        return "mail-enabled security group" if self is TargetType.MESG else "Microsoft 365 group"


# ---------------------------------------------------------------------- #
# Resolution                                                             #
# ---------------------------------------------------------------------- #
def find_groups_by_display_name(directory: Directory, display_name: str) -> List[DirectoryGroup]:
    """Return every group whose display name matches exactly.

    Raises :class:`GroupNotFoundError` when nothing matches.
    """

    groups = [DirectoryGroup.from_graph(item) for item in directory.find_groups_by_display_name(display_name)]
    if not groups:
        raise GroupNotFoundError(display_name)
    logger.debug("Found %s group(s) named %r", len(groups), display_name)
    return groups


def parse_selection(raw: Any, count: int) -> int:
    """Convert a 1-based menu choice into a list index."""

    text = str(raw if raw is not None else "").strip()
    try:
        choice = int(text)
    except ValueError as exc:
        raise InvalidSelectionError(text, count) from exc
    if choice < 1 or choice > count:
        raise InvalidSelectionError(text, count)
    return choice - 1


def choose_group(candidates: List[DirectoryGroup], selection: Any) -> DirectoryGroup:
    if len(candidates) == 1:
        return candidates[0]
    return candidates[parse_selection(selection, len(candidates))]


# ---------------------------------------------------------------------- #
# Conflict detection                                                     #
# ---------------------------------------------------------------------- #
def find_conflicting_group(
    directory: Directory, mail_nickname: str, target: TargetType
) -> Optional[DirectoryGroup]:
    """Look for an existing mail-enabled group of the target kind using ``mail_nickname``."""

    matches = directory.find_groups_by_mail_nickname(
        mail_nickname, mail_enabled=True, security_enabled=target.security_enabled
    )
    groups = [DirectoryGroup.from_graph(item) for item in matches]
    if len(groups) > 1:
        raise AmbiguousConflictError(mail_nickname, [group.id for group in groups])
    return groups[0] if groups else None


# ---------------------------------------------------------------------- #
# Membership                                                             #
# ---------------------------------------------------------------------- #
def list_member_ids(directory: Directory, group_id: str) -> List[str]:
    ids = [str(member.get("id")) for member in directory.list_group_members(group_id) if member.get("id")]
    return list(dict.fromkeys(ids))


def compare_membership(source_ids: Iterable[str], target_ids: Iterable[str]) -> MembershipDiff:
    """Split two member lists into source-only, target-only and shared identifiers."""

    source = list(dict.fromkeys(source_ids))
    target = list(dict.fromkeys(target_ids))
    source_set = set(source)
    target_set = set(target)
    return MembershipDiff(
        only_in_source=[member for member in source if member not in target_set],
        only_in_target=[member for member in target if member not in source_set],
        common=[member for member in source if member in target_set],
    )


def copy_members(
    directory: Directory,
    member_ids: Iterable[str],
    target: DirectoryGroup,
    report: ChangeReport,
    dry_run: bool = False,
) -> List[str]:
    """Add each member to ``target`` independently.

    A failed add is logged and recorded; the remaining members are still
    processed. Returns the identifiers whose add failed.
    """

    failed: List[str] = []
    for member_id in member_ids:
        if dry_run:
            logger.info("[dry run] Would add %s to %s", member_id, target.display_name)
            report.record(ACTION_DRY_RUN, target.display_name, member_id)
            continue
        try:
            directory.add_group_member(target.id, member_id)
        except (GraphClientError, requests.RequestException) as exc:
            logger.error("Failed to add %s to %s: %s", member_id, target.display_name, exc)
            report.record(ACTION_FAILED, target.display_name, member_id)
            failed.append(member_id)
            continue
        logger.info("Added %s to %s", member_id, target.display_name)
        report.record(ACTION_ADDED, target.display_name, member_id)
    return failed


# ---------------------------------------------------------------------- #
# Creation                                                               #
# ---------------------------------------------------------------------- #
def build_group_payload(source: DirectoryGroup, mail_nickname: str, target: TargetType) -> Dict[str, Any]:
    return {
        "displayName": source.display_name,
        "mailNickname": mail_nickname,
        "mailEnabled": True,
        "securityEnabled": target.security_enabled,
        "groupTypes": target.group_types,
        "visibility": "Private",
    }


def create_target_group(
    directory: Directory,
    source: DirectoryGroup,
    mail_nickname: str,
    target: TargetType,
    dry_run: bool = False,
) -> DirectoryGroup:
    """Create the converted group, or describe it without creating it in a dry run."""

    payload = build_group_payload(source, mail_nickname, target)
    if dry_run:
        logger.info("[dry run] Would create %s %r (%s)", target.label, source.display_name, mail_nickname)
        return DirectoryGroup.from_graph({"id": DRY_RUN_GROUP_ID, **payload})

    try:
        created = directory.create_group(payload)
    except (GraphClientError, requests.RequestException) as exc:
        raise GroupCreationError(f"Unable to create {target.label} '{source.display_name}': {exc}") from exc
    group = DirectoryGroup.from_graph(created)
    logger.info("Created %s %r with id %s", target.label, group.display_name, group.id)
    return group


__all__ = [
    "ACTION_ADDED",
    "ACTION_DRY_RUN",
    "ACTION_FAILED",
    "TargetType",
    "build_group_payload",
    "choose_group",
    "compare_membership",
    "copy_members",
    "create_target_group",
    "find_conflicting_group",
    "find_groups_by_display_name",
    "list_member_ids",
    "parse_selection",
]
