#!/usr/bin/env python3
"""
Session bootstrap for the ADLA ACL tools.

The first run exports the current Azure CLI login into a session file in the
temp directory: one bearer token for Azure Resource Manager (account lookup)
and one for the Data Lake filesystem (ACL calls). Every later run, and every
background worker, reuses that file instead of logging in again.

Prerequisites:
- Azure CLI installed and logged in (az login)
"""

import json
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from .config_utils import Settings, is_expired
from .errors import SessionError, SessionExpiredError

SESSION_VERSION = 1
TOKEN_KINDS = ("management", "datalake")


@dataclass(frozen=True)
class SessionContext:
    """Credentials loaded once from the session file and shared by all workers."""
    subscription: str
    tenant: Optional[str]
    management_token: str
    datalake_token: str
    management_expiry: Optional[str] = None
    datalake_expiry: Optional[str] = None

    def management_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.management_token}"}

    def datalake_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.datalake_token}"}

    def expiring_tokens(self, margin: timedelta, now: Optional[datetime] = None) -> List[str]:
        """Names of the tokens that expire within margin from now."""
        expiries = (("management", self.management_expiry), ("datalake", self.datalake_expiry))
        return [kind for kind, expiry in expiries if is_expired(expiry, now, margin)]


def session_path(settings: Settings) -> str:
    return os.path.expanduser(settings.session_path)


def export_access_token(resource: str, settings: Settings) -> Dict:
    """
    Export a token for one resource from the Azure CLI login context.

    Args:
        resource: Resource URI to request a token for
        settings: Settings providing the az command and optional subscription

    Returns:
        Parsed JSON output of `az account get-access-token`
    """
    cmd = [settings.az_command, "account", "get-access-token", "--resource", resource, "--output", "json"]
    if settings.subscription:
        cmd += ["--subscription", settings.subscription]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=120)
    except FileNotFoundError as e:
        raise SessionError(f"Azure CLI not found ({settings.az_command}); install it and run 'az login'") from e
    except subprocess.TimeoutExpired as e:
        raise SessionError(f"Timed out exporting a token for {resource}") from e

    if result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip()
        raise SessionError(f"Could not export a token for {resource}: {message}. Run 'az login' first.")

    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise SessionError(f"Could not parse token JSON from the Azure CLI: {e}") from e


def _token_entry(token: Dict) -> Dict:
    access_token = token.get("accessToken")
    if not access_token:
        raise SessionError("No accessToken in Azure CLI output")

    # Prefer the POSIX timestamp, expiresOn is local time without an offset
    expires_on = token.get("expires_on")
    if expires_on:
        expiry = datetime.fromtimestamp(int(expires_on), tz=timezone.utc).isoformat()
    else:
        expiry = token.get("expiresOn")

    return {"access_token": access_token, "expiry": expiry}


def ensure_session(path: str, settings: Settings, refresh: bool = False) -> bool:
    """
    Make sure a session file exists at path, creating it from the Azure CLI if absent.

    Args:
        path: Location of the session file
        settings: Settings used to export the tokens
        refresh: Re-export even if the file already exists

    Returns:
        True if a new session file was written, False if an existing one was kept
    """
    if os.path.exists(path) and not refresh:
        return False

    print("🔑 Exporting Azure CLI login context...")
    management = export_access_token(settings.management_resource, settings)
    datalake = export_access_token(settings.datalake_resource, settings)

    subscription = settings.subscription or management.get("subscription")
    if not subscription:
        raise SessionError("Could not determine the subscription; set 'subscription' in the config file")

    contents = {
        "version": SESSION_VERSION,
        "subscription": subscription,
        "tenant": management.get("tenant"),
        "tokens": {
            "management": _token_entry(management),
            "datalake": _token_entry(datalake),
        },
    }

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    tmp_path = f"{path}.tmp"
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as store:
        json.dump(contents, store, indent=2)
    os.replace(tmp_path, path)

    print(f"✅ Session saved to {path}")
    return True


def load_session(path: str, now: Optional[datetime] = None) -> SessionContext:
    """
    Load the session file into a SessionContext.

    Raises:
        SessionError: file missing or malformed
        SessionExpiredError: a token has expired
    """
    if not os.path.isfile(path):
        raise SessionError(f"Session file not found: {path}")

    try:
        with open(path) as store:
            contents = json.load(store)
    except (json.JSONDecodeError, OSError) as e:
        raise SessionError(f"Could not read session file {path}: {e}") from e

    if contents.get("version") != SESSION_VERSION:
        raise SessionError(f"Unsupported session file version in {path}; rerun with --refresh-session")

    tokens = contents.get("tokens") or {}
    for kind in TOKEN_KINDS:
        entry = tokens.get(kind) or {}
        if not entry.get("access_token"):
            raise SessionError(f"No {kind} token in session file {path}")
        if is_expired(entry.get("expiry"), now):
            raise SessionExpiredError(
                f"The {kind} token in {path} expired on {entry['expiry']}. "
                "Run 'az login' and rerun with --refresh-session."
            )

    subscription = contents.get("subscription")
    if not subscription:
        raise SessionError(f"No subscription in session file {path}")

    return SessionContext(
        subscription=subscription,
        tenant=contents.get("tenant"),
        management_token=tokens["management"]["access_token"],
        datalake_token=tokens["datalake"]["access_token"],
        management_expiry=tokens["management"].get("expiry"),
        datalake_expiry=tokens["datalake"].get("expiry"),
    )
