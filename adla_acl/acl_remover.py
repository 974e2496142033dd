#!/usr/bin/env python3
"""
ADLA ACL Remover - Revoke a user's or group's access from a Data Lake Analytics account.

This script removes Access Control Entries (ACEs) from the Data Lake Store account
that backs an Azure Data Lake Analytics (ADLA) account:
1. Export the Azure CLI login into a session file (once, reused afterwards)
2. Find the Data Lake Store account behind the ADLA account
3. Remove the entity's ACEs from the job service folders (fast)
4. Remove the entity's ACEs from every job in the job history (full replication)

By default step 4 runs in the background after step 3 finishes. With
--full-replication only step 4 runs, in the foreground.

Prerequisites:
- Azure CLI installed and logged in (az login)
- requests library (pip install requests)
- Owner rights on the ADLA account, and owner or super-user on its store

Usage:
    python -m adla_acl.acl_remover <command> [options]

Commands:
    remove <account> <entity_id> --entity-type {User,Group} [--full-replication] [--dry-run]
        - Remove the entity's ACEs from the account's job service folders
    list <account> <path>...
        - Show the ACL of the given path(s) in the account's store

    Both commands also take --config PATH and --refresh-session.

Examples:
    python -m adla_acl.acl_remover remove myadla 2b3c...9f --entity-type User
    python -m adla_acl.acl_remover remove myadla 7d1e...04 --entity-type Group --full-replication
    python -m adla_acl.acl_remover list myadla / /system/jobservice
"""

import argparse
import sys
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import List, Optional, Tuple

import requests

from .azure_api import (
    get_acl_status,
    get_store_account,
    join_path,
    list_status,
    path_exists,
    remove_acl_entries,
)
from .config_utils import Settings, load_settings
from .errors import InvalidNodeTypeError
from .jobs import BackgroundJob, JobPool, RemovalSummary
from .session import SessionContext, ensure_session, load_session, session_path

JOB_HISTORY_ROOT = "/system/jobservice/jobs/Usql"

# Folders every job submission needs to traverse, top down
JOB_SERVICE_PATHS = (
    "/",
    "/system",
    "/system/jobservice",
    "/system/jobservice/jobs",
    JOB_HISTORY_ROOT,
)

EMPTY_PERMISSIONS = "---"

# A full replication that outlives its token fails partway through
TOKEN_EXPIRY_WARNING = timedelta(minutes=30)


class EntityType(Enum):
    USER = "user"
    GROUP = "group"

    @classmethod
    def parse(cls, value: str) -> "EntityType":
        """Parse 'User' or 'Group' (any case)."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Entity type must be User or Group, not '{value}'") from None


@dataclass(frozen=True)
class Entity:
    id: str
    type: EntityType

    def __str__(self) -> str:
        return f"{self.type.value} {self.id}"


@dataclass
class RemovalOutcome:
    exit_code: int
    summary: Optional[RemovalSummary] = None
    job: Optional[BackgroundJob] = None


def build_acl_spec(entity: Entity, remove_default: bool = False) -> str:
    """
    Build the ACL spec naming the entity's entries.

    With remove_default the default (inherited by new children) entry is
    named as well, which only applies to directories.
    """
    entry = f"{entity.type.value}:{entity.id}:{EMPTY_PERMISSIONS}"
    if remove_default:
        return f"default:{entry},{entry}"
    return entry


def _remove_ace_unit(session: SessionContext, store_account: str, path: str, acl_spec: str,
                     settings: Settings, dry_run: bool) -> str:
    """Run one ACE removal. Executed on a pool worker."""
    if dry_run:
        print(f"   Would remove {acl_spec} from: {path}")
        return path

    try:
        remove_acl_entries(session, store_account, path, acl_spec, settings)
    except requests.exceptions.RequestException as e:
        print(f"❌ Network error removing ACL entries from {path}: {e}")
        raise
    return path


def remove_ace(session: SessionContext, store_account: str, path: str, entity: Entity,
               remove_default: bool, pool: JobPool, settings: Settings = Settings(),
               dry_run: bool = False) -> Future:
    """
    Submit the removal of an entity's ACEs from one path.

    Args:
        session: Loaded session
        store_account: Data Lake Store account name
        path: Path to remove the entries from
        entity: User or group to remove
        remove_default: Also remove the default entry (directories only)
        pool: Pool to run the removal on
        settings: Endpoint and timeout settings
        dry_run: Only report what would be removed

    Returns:
        Future of the removal. Failures stay in the future and surface when
        the pool is joined.
    """
    acl_spec = build_acl_spec(entity, remove_default)
    return pool.submit(path, _remove_ace_unit, session, store_account, path, acl_spec, settings, dry_run)


def remove_acl_recursive(session: SessionContext, store_account: str, path: str, entity: Entity,
                         pool: JobPool, settings: Settings = Settings(), dry_run: bool = False) -> None:
    """
    Walk everything under path depth-first and submit an ACE removal for each entry.

    Files get the access entry removed, directories get the access and the
    default entry removed. Removals are submitted, not awaited; join the pool
    to wait for them.

    Raises:
        InvalidNodeTypeError: a listed entry is neither FILE nor DIRECTORY.
            Entries after it are not processed.
    """
    for child in list_status(session, store_account, path, settings):
        child_path = join_path(path, child.get("pathSuffix", ""))
        node_type = child.get("type")

        if node_type == "FILE":
            remove_ace(session, store_account, child_path, entity, False, pool, settings, dry_run)
        elif node_type == "DIRECTORY":
            remove_ace(session, store_account, child_path, entity, True, pool, settings, dry_run)
            remove_acl_recursive(session, store_account, child_path, entity, pool, settings, dry_run)
        else:
            raise InvalidNodeTypeError(child_path, node_type)


def remove_fast(session: SessionContext, adla_account: str, entity: Entity, pool: JobPool,
                settings: Settings = Settings(), dry_run: bool = False,
                store_account: Optional[str] = None) -> RemovalSummary:
    """
    Remove the entity's ACEs from the job service folders that exist.

    Returns:
        Summary of the removals, after all of them finished
    """
    store_account = store_account or get_store_account(session, adla_account, settings)

    for path in JOB_SERVICE_PATHS:
        if path_exists(session, store_account, path, settings):
            remove_ace(session, store_account, path, entity, True, pool, settings, dry_run)
        else:
            print(f"ℹ️  {path} does not exist, skipping")

    return pool.join()


def remove_full(session: SessionContext, adla_account: str, entity: Entity, pool: JobPool,
                settings: Settings = Settings(), dry_run: bool = False,
                store_account: Optional[str] = None) -> RemovalSummary:
    """
    Remove the entity's ACEs from the job history folder and everything under it.

    Blocks for the whole walk. Running it again after a successful run issues
    the same removals; entries that are already gone are ignored by the store.

    Returns:
        Summary of the removals, after all of them finished
    """
    store_account = store_account or get_store_account(session, adla_account, settings)

    try:
        remove_ace(session, store_account, JOB_HISTORY_ROOT, entity, True, pool, settings, dry_run)
        remove_acl_recursive(session, store_account, JOB_HISTORY_ROOT, entity, pool, settings, dry_run)
    finally:
        # Removals already submitted still run to completion
        summary = pool.join()
    return summary


def _full_replication_job(session: SessionContext, adla_account: str, entity: Entity,
                          settings: Settings, dry_run: bool, store_account: Optional[str]) -> RemovalSummary:
    with JobPool(settings.max_workers, settings.max_pending) as pool:
        return remove_full(session, adla_account, entity, pool, settings, dry_run, store_account)


def start_full_replication(session: SessionContext, adla_account: str, entity: Entity,
                           settings: Settings = Settings(), dry_run: bool = False,
                           store_account: Optional[str] = None) -> BackgroundJob:
    """Start remove_full on a background thread with its own pool and return its handle."""
    job = BackgroundJob("full-replication", _full_replication_job, session, adla_account, entity,
                        settings, dry_run, store_account)
    return job.start()


def run_fast_mode(session: SessionContext, adla_account: str, entity: Entity,
                  settings: Settings = Settings(), dry_run: bool = False) -> Tuple[RemovalSummary, BackgroundJob]:
    """
    Remove the entity from the job service folders, then start the full
    replication in the background.

    Returns:
        (summary of the fast removals, handle of the background full replication)
    """
    store_account = get_store_account(session, adla_account, settings)
    print(f"✅ Data Lake Store account: {store_account}")

    with JobPool(settings.max_workers, settings.max_pending) as pool:
        summary = remove_fast(session, adla_account, entity, pool, settings, dry_run, store_account)

    job = start_full_replication(session, adla_account, entity, settings, dry_run, store_account)
    return summary, job


def print_summary(summary: RemovalSummary, operation_name: str) -> None:
    """Print the result of a batch of removals."""
    print(f"\n{'='*80}")
    print(f"=== {operation_name.title()} Summary ===")
    print(f"Total paths processed: {summary.submitted}")
    print(f"Successful: {summary.successful}")
    print(f"Failed: {summary.failed}")

    if summary.successful > 0:
        print(f"✅ Successfully processed {summary.successful} path(s)")
    if summary.failed > 0:
        print(f"❌ Failed to process {summary.failed} path(s):")
        for path, error in summary.errors:
            print(f"   {path}: {error}")


def _open_session(settings: Settings, refresh: bool) -> SessionContext:
    path = session_path(settings)
    if not ensure_session(path, settings, refresh):
        print(f"✅ Reusing session from {path}")
    return load_session(path)


def warn_if_expiring(session: SessionContext, margin: timedelta = TOKEN_EXPIRY_WARNING) -> List[str]:
    """Warn when a session token will expire before a long walk is likely to finish."""
    expiring = session.expiring_tokens(margin)
    for kind in expiring:
        expiry = session.management_expiry if kind == "management" else session.datalake_expiry
        print(f"⚠️  The {kind} token expires at {expiry}; removals after that will fail.")
    if expiring:
        print("   Run 'az login' and rerun with --refresh-session to start with a fresh session.")
    return expiring


def remove_entity_access(adla_account: str, entity_id: str, entity_type: str,
                         full_replication: bool = False, settings: Optional[Settings] = None,
                         dry_run: bool = False, refresh_session: bool = False) -> RemovalOutcome:
    """
    Remove a user's or group's ACEs from a Data Lake Analytics account.

    Without full_replication the job service folders are handled right away
    and the full replication is started in the background; its handle is
    returned in the outcome. With full_replication only the full replication
    runs, and this call blocks until it is done.

    Args:
        adla_account: Name of the Data Lake Analytics account
        entity_id: Azure AD object id of the user or group
        entity_type: 'User' or 'Group'
        full_replication: Run the recursive removal in the foreground only
        settings: Settings to use (default: loaded from the config file)
        dry_run: Only report what would be removed
        refresh_session: Export a new session even if one exists

    Returns:
        RemovalOutcome with the exit code, the summary and, in the default
        mode, the background job handle
    """
    mode = "full replication" if full_replication else "job service folders + background full replication"
    print(f"=== ADLA ACL Remover ===")
    print(f"Account: {adla_account}")
    print(f"Entity: {entity_type} {entity_id}")
    print(f"Mode: {mode}")
    if dry_run:
        print("🔍 DRY RUN MODE - No changes will be made")
    print()

    try:
        settings = settings or load_settings()
        entity = Entity(entity_id, EntityType.parse(entity_type))
        session = _open_session(settings, refresh_session)
        warn_if_expiring(session)

        if full_replication:
            print(f"🔍 Removing {entity} from everything under {JOB_HISTORY_ROOT}...")
            print("   This can take a long time for accounts with a large job history.")
            with JobPool(settings.max_workers, settings.max_pending) as pool:
                summary = remove_full(session, adla_account, entity, pool, settings, dry_run)
            print_summary(summary, "full replication")
            return RemovalOutcome(0 if summary.ok else 1, summary)

        print(f"🔍 Removing {entity} from the job service folders...")
        summary, job = run_fast_mode(session, adla_account, entity, settings, dry_run)
        print_summary(summary, "job service folders")
        print(f"\n🚀 Full replication started as background job {job.id}")
        print("⚠️  Keep this terminal open until it finishes; closing it cancels the propagation.")
        return RemovalOutcome(0 if summary.ok else 1, summary, job)

    except Exception as e:
        print(f"❌ Error: {e}")
        return RemovalOutcome(1)


def wait_for_background(job: BackgroundJob) -> int:
    """Wait for a background full replication and report how it went."""
    print(f"⏳ Waiting for background job {job.id}...")
    job.wait()

    if job.error is not None:
        print(f"❌ Background job {job.id} failed: {job.error}")
        return 1

    print_summary(job.result, "full replication")
    return 0 if job.result.ok else 1


def _print_acl(acl_status: dict, entity_filter: Optional[str] = None) -> None:
    entries = acl_status.get("entries", [])
    print(f"  Owner: {acl_status.get('owner', 'N/A')}")
    print(f"  Group: {acl_status.get('group', 'N/A')}")
    print(f"  Permission: {acl_status.get('permission', 'N/A')}")

    if not entries:
        print("ℹ️  No ACL entries beyond the owner/group/other bits")
        return

    print(f"\n✅ Found {len(entries)} ACL entr{'y' if len(entries) == 1 else 'ies'}:")
    for entry in entries:
        marker = "  👉 " if entity_filter and entity_filter in entry else "     "
        print(f"{marker}{entry}")


def list_acl(adla_account: str, paths: List[str], settings: Optional[Settings] = None,
             refresh_session: bool = False, entity_filter: Optional[str] = None) -> int:
    """
    List the ACL of one or more paths in the account's Data Lake Store.

    Args:
        adla_account: Name of the Data Lake Analytics account
        paths: Paths to show
        settings: Settings to use (default: loaded from the config file)
        refresh_session: Export a new session even if one exists
        entity_filter: Highlight entries containing this object id

    Returns:
        Exit code (0 if every path was listed)
    """
    print(f"=== ADLA ACL Lister ===")
    print(f"Account: {adla_account}")
    print(f"Paths: {', '.join(paths)}")
    print()

    try:
        settings = settings or load_settings()
        session = _open_session(settings, refresh_session)
        store_account = get_store_account(session, adla_account, settings)
    except Exception as e:
        print(f"❌ Error: {e}")
        return 1

    print(f"✅ Data Lake Store account: {store_account}")

    failed = 0
    for i, path in enumerate(paths, 1):
        print(f"\n{'='*80}")
        print(f"Processing path {i}/{len(paths)}: {path}")
        print(f"{'='*80}")

        try:
            acl_status = get_acl_status(session, store_account, path, settings)
        except Exception as e:
            print(f"❌ Error processing {path}: {e}")
            failed += 1
            continue

        if acl_status is None:
            print(f"❌ Path not found: {path}")
            failed += 1
            continue

        _print_acl(acl_status, entity_filter)

    return 0 if failed == 0 else 1


def _entity_type_arg(value: str) -> str:
    try:
        EntityType.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))
    return value


def _object_id_arg(value: str) -> str:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not an Azure AD object id (GUID)")


def build_parser() -> argparse.ArgumentParser:
    # Options every subcommand accepts, after the subcommand name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None, help="Path to the config file (default: ~/.config/adla_acl/adla_acl.conf)")
    common.add_argument("--refresh-session", action="store_true", help="Export a new session from the Azure CLI even if one exists")

    parser = argparse.ArgumentParser(
        prog="adla-acl",
        description="Remove a user's or group's ACL entries from a Data Lake Analytics account")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Remove command
    remove_parser = subparsers.add_parser('remove', parents=[common], help="Remove the entity's ACEs from the account")
    remove_parser.add_argument("account", help="Name of the Data Lake Analytics account")
    remove_parser.add_argument("entity_id", type=_object_id_arg, help="Azure AD object id of the user or group")
    remove_parser.add_argument("--entity-type", required=True, type=_entity_type_arg, metavar="{User,Group}",
                               help="Whether entity_id is a user or a group")
    remove_parser.add_argument("--full-replication", action="store_true",
                               help="Only run the recursive removal over the whole job history, in the foreground")
    remove_parser.add_argument("--dry-run", action="store_true", help="Show what would be removed without making changes")

    # List command
    list_parser = subparsers.add_parser('list', parents=[common], help='Show the ACL of the specified path(s)')
    list_parser.add_argument("account", help="Name of the Data Lake Analytics account")
    list_parser.add_argument("paths", nargs="+", help="One or more paths in the account's Data Lake Store")
    list_parser.add_argument("--entity-id", default=None, help="Highlight entries for this object id")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f"❌ Error: {e}")
        return 1

    if args.command == 'list':
        return list_acl(args.account, args.paths, settings, args.refresh_session, args.entity_id)

    outcome = remove_entity_access(args.account, args.entity_id, args.entity_type, args.full_replication,
                                   settings, args.dry_run, args.refresh_session)
    exit_code = outcome.exit_code
    if outcome.job is not None:
        exit_code = max(exit_code, wait_for_background(outcome.job))
        if outcome.summary is not None and outcome.job.result is not None:
            print_summary(outcome.summary.merge(outcome.job.result), "all removals")

    print("\n=== ACL Removal Complete ===")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
