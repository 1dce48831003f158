"""Exception types shared by the group conversion and role activation flows."""
from __future__ import annotations

from typing import Iterable, List


class EntraAdminError(RuntimeError):
    """Base exception for toolkit operations."""


class GroupNotFoundError(EntraAdminError):
    """Raised when no directory group matches the requested display name."""

    def __init__(self, display_name: str) -> None:
        super().__init__(f"No group found with display name '{display_name}'.")
        self.display_name = display_name


class InvalidSelectionError(EntraAdminError):
    """Raised when a menu selection is not a number within range."""

    def __init__(self, raw: str, count: int) -> None:
        super().__init__(f"Invalid selection '{raw}'. Choose a number between 1 and {count}.")
        self.raw = raw
        self.count = count


class AmbiguousConflictError(EntraAdminError):
    """Raised when more than one existing group claims the target mail nickname."""

    def __init__(self, mail_nickname: str, group_ids: Iterable[str]) -> None:
        self.mail_nickname = mail_nickname
        self.group_ids: List[str] = list(group_ids)
        super().__init__(
            f"{len(self.group_ids)} existing groups use mail nickname '{mail_nickname}': "
            + ", ".join(self.group_ids)
        )


class GroupCreationError(EntraAdminError):
    """Raised when the directory rejects a group creation request."""


__all__ = [
    "AmbiguousConflictError",
    "EntraAdminError",
    "GroupCreationError",
    "GroupNotFoundError",
    "InvalidSelectionError",
]
