"""Command line interface for the Entra admin toolkit."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import typer

from .config import AppConfig, ConfigurationError, load_config
from .directory import Directory
from .errors import (
    AmbiguousConflictError,
    GroupCreationError,
    GroupNotFoundError,
    InvalidSelectionError,
)
from .graph_client import GraphClient, GraphClientError, GraphConfigurationError
from .groups import (
    TargetType,
    choose_group,
    compare_membership,
    copy_members,
    create_target_group,
    find_conflicting_group,
    find_groups_by_display_name,
    list_member_ids,
    parse_selection,
)
from .models import DirectoryGroup, ExpiryKind, RoleAssignmentSchedule, RoleEligibility
from .naming import normalize_mail_nickname
from .reports import ChangeReport
from .roles import (
    ActivationResult,
    activate_role,
    build_activation_request,
    build_role_menu,
    classify_expiry,
    is_role_active,
    list_active_roles,
    list_eligible_roles,
)

app = typer.Typer(help="Administrative helpers for Microsoft Entra ID groups and privileged roles.")

PACKAGE_LOGGER = "entra_admin"


def configure_logging(verbose: bool = False) -> None:
    """Route package log records to stderr, replacing any handler installed earlier."""

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _build_client(config: AppConfig) -> Directory:
    return GraphClient(config.graph, notify=typer.echo)


# ---------------------------------------------------------------------- #
# convert-group                                                          #
# ---------------------------------------------------------------------- #
def _describe_group(group: DirectoryGroup) -> str:
    mail = group.mail or "no mail"
    types = ", ".join(group.group_types) or "none"
    return f"{group.display_name} [{group.kind}] id={group.id} mail={mail} groupTypes={types}"


def _select_source_group(candidates: List[DirectoryGroup]) -> DirectoryGroup:
    if len(candidates) == 1:
        return candidates[0]

    typer.echo(f"Found {len(candidates)} groups with this name:")
    for index, group in enumerate(candidates, start=1):
        marker = "  <- likely original security group" if group.likely_source else ""
        typer.echo(f"  {index}. {_describe_group(group)}{marker}")
    selection = typer.prompt("Select the group to convert")
    try:
        return choose_group(candidates, selection)
    except InvalidSelectionError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _confirm(message: str, assume_yes: bool) -> bool:
    if assume_yes:
        typer.echo(f"{message} [auto-confirmed]")
        return True
    return typer.confirm(message, default=False)


def _copy_with_summary(
    client: Directory,
    member_ids: List[str],
    target: DirectoryGroup,
    report: ChangeReport,
    dry_run: bool,
) -> None:
    failed = copy_members(client, member_ids, target, report, dry_run=dry_run)
    if dry_run:
        typer.echo(f"Dry run: {len(member_ids)} member(s) would be added to '{target.display_name}'.")
        return
    added = len(member_ids) - len(failed)
    typer.echo(f"Added {added} member(s) to '{target.display_name}', {len(failed)} failed.")


def _write_report(report: ChangeReport, config: AppConfig, target: DirectoryGroup) -> None:
    path = report.write(config.reports.directory, target.id)
    if path:
        typer.echo(f"Change report written to {path}")


@app.command("convert-group")
def convert_group(
    name: str = typer.Argument(..., help="Display name of the security group to convert."),
    target: TargetType = typer.Option(
        ...,
        "--target",
        prompt="Target group type (mesg, unified)",
        case_sensitive=False,
        help="Convert into a mail-enabled security group (mesg) or a Microsoft 365 group (unified).",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would change without changing anything."),
    assume_yes: bool = typer.Option(False, "--yes", "-y", help="Answer yes to every confirmation."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Convert a security group into a mail-enabled security group or a Microsoft 365 group."""

    config = _load_configuration(config_path)
    configure_logging(verbose)
    client = _build_client(config)

    if dry_run:
        typer.echo("Dry run: no groups will be created and no members will be added.")

    try:
        _convert(client, config, name, target, dry_run, assume_yes)
    except GraphClientError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _convert(
    client: Directory,
    config: AppConfig,
    name: str,
    target: TargetType,
    dry_run: bool,
    assume_yes: bool,
) -> None:
    try:
        candidates = find_groups_by_display_name(client, name)
    except GroupNotFoundError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    source = _select_source_group(candidates)
    mail_nickname = normalize_mail_nickname(source.display_name)
    typer.echo(f"Source group: {_describe_group(source)}")
    typer.echo(f"Mail nickname for the {target.label}: {mail_nickname}")

    try:
        existing = find_conflicting_group(client, mail_nickname, target)
    except AmbiguousConflictError as exc:
        typer.echo(f"Error: {exc}. Resolve the duplicates before converting.")
        raise typer.Exit(code=1)

    report = ChangeReport()

    if existing is not None:
        typer.echo(f"An existing {target.label} already uses this nickname: {_describe_group(existing)}")
        source_ids = list_member_ids(client, source.id)
        diff = compare_membership(source_ids, list_member_ids(client, existing.id))
        typer.echo(f"Members only in source group: {len(diff.only_in_source)}")
        typer.echo(f"Members only in existing group: {len(diff.only_in_target)}")
        if not diff.only_in_source:
            typer.echo("Every source member is already in the existing group.")
        elif _confirm(
            f"Add {len(diff.only_in_source)} missing member(s) to '{existing.display_name}'?", assume_yes
        ):
            _copy_with_summary(client, diff.only_in_source, existing, report, dry_run)
        else:
            typer.echo("Skipped membership sync.")
        _write_report(report, config, existing)
        return

    if not _confirm(f"Create {target.label} '{source.display_name}' ({mail_nickname})?", assume_yes):
        typer.echo("Cancelled.")
        raise typer.Exit(code=1)

    try:
        created = create_target_group(client, source, mail_nickname, target, dry_run=dry_run)
    except GroupCreationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    if not dry_run:
        typer.echo(f"Created {target.label}: {_describe_group(created)}")

    source_ids = list_member_ids(client, source.id)
    typer.echo(f"Source group has {len(source_ids)} member(s).")
    if source_ids and _confirm(f"Copy {len(source_ids)} member(s) to the new group?", assume_yes):
        _copy_with_summary(client, source_ids, created, report, dry_run)
    _write_report(report, config, created)


# ---------------------------------------------------------------------- #
# activate-role                                                          #
# ---------------------------------------------------------------------- #
def _show_active_roles(active: List[RoleAssignmentSchedule]) -> None:
    if not active:
        typer.echo("No active role assignments.")
        return
    typer.echo("Active role assignments:")
    for schedule in active:
        status = classify_expiry(schedule)
        if status.kind is ExpiryKind.PERMANENT:
            detail = "permanent"
        elif status.kind is ExpiryKind.EXPIRES_AT and status.end_date_time is not None:
            stamp = status.end_date_time.strftime("%Y-%m-%d %H:%M UTC")
            minutes = status.minutes_remaining or 0
            if minutes >= 0:
                detail = f"expires {stamp} ({minutes} minute(s) remaining)"
            else:
                detail = f"expired {stamp} ({-minutes} minute(s) ago)"
        else:
            detail = "expiry unknown"
        typer.echo(f"  - {schedule.role_name}: {detail}")


def _load_active_roles(client: Directory, principal_id: str) -> List[RoleAssignmentSchedule]:
    """Fetch active assignments; a failed fetch is reported and treated as none."""

    try:
        return list_active_roles(client, principal_id)
    except GraphClientError as exc:
        typer.echo(f"Error: unable to load active roles: {exc}")
        return []


def _show_menu(menu: Dict[int, RoleEligibility]) -> None:
    typer.echo("Eligible roles:")
    for index, role in menu.items():
        typer.echo(f"  {index}. {role.role_name}")
    typer.echo("  0. Exit")


def _prompt_menu_choice(menu: Dict[int, RoleEligibility]) -> int:
    while True:
        raw = typer.prompt("Select a role to activate", default="", show_default=False)
        if raw.strip() == "0":
            return 0
        try:
            return parse_selection(raw, len(menu)) + 1
        except InvalidSelectionError as exc:
            typer.echo(str(exc))


def _prompt_justification() -> str:
    while True:
        justification = typer.prompt("Justification", default="", show_default=False).strip()
        if justification:
            return justification
        typer.echo("A justification is required.")


@app.command("activate-role")
def activate_role_command(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Activate one of your eligible directory roles for four hours."""

    config = _load_configuration(config_path)
    configure_logging(verbose)
    client = _build_client(config)

    try:
        me = client.get_current_user()
        tenant_id = client.get_tenant_id()
    except GraphConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)
    except GraphClientError as exc:
        typer.echo(f"Error: unable to determine the signed-in user: {exc}")
        raise typer.Exit(code=1)

    principal_id = str(me["id"])
    typer.echo(f"Signed in as {me.get('userPrincipalName') or principal_id} (tenant {tenant_id}).")

    try:
        menu = build_role_menu(list_eligible_roles(client, principal_id))
    except GraphClientError as exc:
        typer.echo(f"Error: unable to load eligible roles: {exc}")
        raise typer.Exit(code=1)
    if not menu:
        typer.echo("You have no eligible roles to activate.")
        raise typer.Exit(code=0)

    while True:
        active = _load_active_roles(client, principal_id)
        _show_active_roles(active)
        _show_menu(menu)
        choice = _prompt_menu_choice(menu)
        if choice == 0:
            typer.echo("Exiting.")
            return

        role = menu[choice]
        if is_role_active(role.role_definition_id, active):
            typer.echo(f"'{role.role_name}' is already active.")
            continue

        request = build_activation_request(
            principal_id, role, _prompt_justification(), default_scope_id=config.pim.directory_scope_id
        )
        outcome = activate_role(client, request)
        if outcome.succeeded:
            typer.secho(f"Activated '{role.role_name}' for 4 hours.", fg=typer.colors.GREEN)
            _show_active_roles(_load_active_roles(client, principal_id))
        elif outcome.result is ActivationResult.ALREADY_EXISTS:
            typer.secho(f"'{role.role_name}' already has an active assignment.", fg=typer.colors.YELLOW)
        elif outcome.result is ActivationResult.PENDING_REQUEST:
            typer.secho(
                f"An activation request for '{role.role_name}' is already pending.", fg=typer.colors.YELLOW
            )
        else:
            typer.secho(f"Activation failed: {outcome.message}", fg=typer.colors.RED)

        again = typer.prompt("Activate another role? (yes/no)", default="yes", show_default=False)
        if again.strip().lower() == "no":
            typer.echo("Exiting.")
            return


def run():
    app()


if __name__ == "__main__":
    run()
