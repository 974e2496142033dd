#!/usr/bin/env python3
"""
Azure REST calls used by the ADLA ACL tools.

Two APIs are involved:
1. Azure Resource Manager, to find the Data Lake Store account backing a
   Data Lake Analytics account
2. The Data Lake Store WebHDFS endpoint, to list directories, check paths and
   read or remove ACL entries

Tokens come from the SessionContext; nothing here reads the session file.
"""

from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from .config_utils import Settings
from .errors import AccountNotFoundError, ApiError
from .session import SessionContext

ADLA_API_VERSION = "2016-11-01"
DEFAULT_SETTINGS = Settings()


def _handle_api_error(status_code: int, response_text: str, operation: str) -> None:
    """
    Handle Azure API errors with helpful user guidance.

    Args:
        status_code: HTTP status code from the API response
        response_text: Raw response text from the API
        operation: Description of what operation failed (for user context)
    """
    print(f"❌ Failed to {operation}: {status_code}")

    if status_code == 401:
        print("\n🔑 Token expired or invalid")
        print("Refresh with: az login, then rerun with --refresh-session")
    elif status_code == 403:
        print("❌ Access denied - you may not have permission for this operation")
        print("This could be due to:")
        print("  - Missing Owner/Contributor role on the Data Lake Analytics account")
        print("  - Missing execute (x) permission on a parent folder")
        print("  - Not being the owner or a super-user of the Data Lake Store")
    elif status_code == 404:
        print("❌ Not found - check the account name and path")
    else:
        print(f"Response: {response_text}")


def _raise_for_status(resp: requests.Response, expected: int, operation: str) -> None:
    if resp.status_code != expected:
        _handle_api_error(resp.status_code, resp.text, operation)
        raise ApiError(operation, resp.status_code, resp.text)


def webhdfs_url(store_account: str, path: str, settings: Settings = DEFAULT_SETTINGS) -> str:
    """Build the WebHDFS URL for a path in a Data Lake Store account."""
    if not path.startswith("/"):
        path = "/" + path
    return f"https://{store_account}.{settings.adls_suffix}/webhdfs/v1{quote(path, safe='/')}"


def join_path(parent: str, suffix: str) -> str:
    """Join a directory path and a child's pathSuffix."""
    if parent.endswith("/"):
        return parent + suffix
    return f"{parent}/{suffix}"


def get_store_account(session: SessionContext, adla_account: str, settings: Settings = DEFAULT_SETTINGS) -> str:
    """
    Get the default Data Lake Store account of a Data Lake Analytics account.

    Args:
        session: Loaded session
        adla_account: Name of the Data Lake Analytics account
        settings: Endpoint and timeout settings

    Returns:
        Data Lake Store account name
    """
    headers = session.management_headers()
    url = (f"{settings.management_endpoint}/subscriptions/{session.subscription}"
           f"/providers/Microsoft.DataLakeAnalytics/accounts")
    params = {"api-version": ADLA_API_VERSION}

    account_id = None
    while url and not account_id:
        resp = requests.get(url, headers=headers, params=params, timeout=settings.timeout)
        _raise_for_status(resp, 200, "list Data Lake Analytics accounts")

        data = resp.json()
        for account in data.get("value", []):
            if account.get("name", "").lower() == adla_account.lower():
                account_id = account.get("id")
                break

        # nextLink already carries the api-version
        url = data.get("nextLink")
        params = None

    if not account_id:
        raise AccountNotFoundError(adla_account, session.subscription)

    resp = requests.get(f"{settings.management_endpoint}{account_id}", headers=headers,
                        params={"api-version": ADLA_API_VERSION}, timeout=settings.timeout)
    _raise_for_status(resp, 200, "get Data Lake Analytics account")

    properties = resp.json().get("properties", {})
    store_account = properties.get("defaultDataLakeStoreAccount")
    if not store_account:
        raise AccountNotFoundError(adla_account, session.subscription)
    return store_account


def list_status(session: SessionContext, store_account: str, path: str,
                settings: Settings = DEFAULT_SETTINGS) -> List[Dict]:
    """
    List the immediate children of a directory.

    The store returns listings in pages of at most list_page_size entries;
    pages are requested with listAfter until a short page comes back.

    Returns:
        WebHDFS FileStatus dicts, each with at least 'pathSuffix' and 'type'
    """
    url = webhdfs_url(store_account, path, settings)
    page_size = settings.list_page_size
    children = []
    list_after = None

    while True:
        params = {"op": "LISTSTATUS", "listSize": page_size}
        if list_after is not None:
            params["listAfter"] = list_after

        resp = requests.get(url, headers=session.datalake_headers(), params=params, timeout=settings.timeout)
        _raise_for_status(resp, 200, f"list {path}")

        page = resp.json().get("FileStatuses", {}).get("FileStatus", [])
        children.extend(page)
        if len(page) < page_size:
            return children
        list_after = page[-1].get("pathSuffix")


def path_exists(session: SessionContext, store_account: str, path: str,
                settings: Settings = DEFAULT_SETTINGS) -> bool:
    """Check whether a path exists in the store."""
    resp = requests.get(webhdfs_url(store_account, path, settings), headers=session.datalake_headers(),
                        params={"op": "GETFILESTATUS"}, timeout=settings.timeout)
    if resp.status_code == 404:
        return False
    _raise_for_status(resp, 200, f"get status of {path}")
    return True


def remove_acl_entries(session: SessionContext, store_account: str, path: str, acl_spec: str,
                       settings: Settings = DEFAULT_SETTINGS) -> None:
    """
    Remove the given ACL entries from a path.

    Entries that are not present are ignored by the service.
    """
    resp = requests.put(webhdfs_url(store_account, path, settings), headers=session.datalake_headers(),
                        params={"op": "REMOVEACLENTRIES", "aclspec": acl_spec}, timeout=settings.timeout)
    _raise_for_status(resp, 200, f"remove ACL entries from {path}")


def get_acl_status(session: SessionContext, store_account: str, path: str,
                   settings: Settings = DEFAULT_SETTINGS) -> Optional[Dict]:
    """Get the ACL of a path. Returns None if the path does not exist."""
    resp = requests.get(webhdfs_url(store_account, path, settings), headers=session.datalake_headers(),
                        params={"op": "GETACLSTATUS"}, timeout=settings.timeout)
    if resp.status_code == 404:
        return None
    _raise_for_status(resp, 200, f"get ACL of {path}")
    return resp.json().get("AclStatus", {})
