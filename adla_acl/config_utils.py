#!/usr/bin/env python3
"""
Shared configuration utilities for the ADLA ACL tools.

This module provides shared functions for:
- Locating and reading the adla_acl configuration file
- Filling in defaults for anything the file leaves out
- Checking token expiry times
"""

import configparser
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

CONFIG_ENV_VAR = "ADLA_ACL_CONFIG"
DEFAULT_CONFIG_PATH = "~/.config/adla_acl/adla_acl.conf"
CONFIG_SECTION = "adla_acl"
SESSION_FILENAME = "adla_acl_session.json"


@dataclass(frozen=True)
class Settings:
    session_path: str = os.path.join(tempfile.gettempdir(), SESSION_FILENAME)
    subscription: Optional[str] = None
    max_workers: int = 16
    max_pending: int = 256
    timeout: float = 30.0
    list_page_size: int = 4000
    management_endpoint: str = "https://management.azure.com"
    management_resource: str = "https://management.core.windows.net/"
    datalake_resource: str = "https://datalake.azure.net/"
    adls_suffix: str = "azuredatalakestore.net"
    az_command: str = "az"


def find_config_file(config_path: Optional[str] = None) -> Optional[str]:
    """
    Find the configuration file to use.

    Lookup order: explicit path, $ADLA_ACL_CONFIG, ~/.config/adla_acl/adla_acl.conf.

    Returns:
        Path of an existing config file, or None when only defaults apply
    """
    if config_path:
        path = os.path.expanduser(config_path)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")
        return path

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = os.path.expanduser(env_path)
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file from ${CONFIG_ENV_VAR} not found: {path}")
        return path

    path = os.path.expanduser(DEFAULT_CONFIG_PATH)
    if os.path.exists(path):
        return path
    return None


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from the configuration file, falling back to defaults.

    Args:
        config_path: Optional explicit path to an INI file

    Returns:
        Settings instance
    """
    path = find_config_file(config_path)
    if path is None:
        return Settings()

    config = configparser.ConfigParser()
    config.read(path)

    if CONFIG_SECTION not in config:
        return Settings()

    section = config[CONFIG_SECTION]
    defaults = Settings()

    max_workers = section.getint("max_workers", fallback=defaults.max_workers)
    max_pending = section.getint("max_pending", fallback=defaults.max_pending)
    list_page_size = section.getint("list_page_size", fallback=defaults.list_page_size)
    if max_workers < 1 or max_pending < 1:
        raise ValueError(f"max_workers and max_pending must be positive in {path}")
    if list_page_size < 1:
        raise ValueError(f"list_page_size must be positive in {path}")

    return Settings(
        session_path=os.path.expanduser(section.get("session_path", defaults.session_path)),
        subscription=section.get("subscription", defaults.subscription) or None,
        max_workers=max_workers,
        max_pending=max_pending,
        timeout=section.getfloat("timeout", fallback=defaults.timeout),
        list_page_size=list_page_size,
        management_endpoint=section.get("management_endpoint", defaults.management_endpoint).rstrip("/"),
        management_resource=section.get("management_resource", defaults.management_resource),
        datalake_resource=section.get("datalake_resource", defaults.datalake_resource),
        adls_suffix=section.get("adls_suffix", defaults.adls_suffix),
        az_command=section.get("az_command", defaults.az_command),
    )


def parse_expiry(expiry_str: str) -> datetime:
    """
    Parse a token expiry time into an aware UTC datetime.

    Accepts ISO 8601 ("2025-07-23T15:50:44.457921+10:00") as well as the
    Azure CLI "expiresOn" format ("2025-07-23 15:50:44.457921"), which is
    local time without an offset.
    """
    expiry_time = datetime.fromisoformat(expiry_str.strip())

    if expiry_time.tzinfo is not None:
        return expiry_time.astimezone(timezone.utc)
    return expiry_time.astimezone().astimezone(timezone.utc)


def is_expired(expiry_str: Optional[str], now: Optional[datetime] = None,
               margin: timedelta = timedelta(0)) -> bool:
    """
    Check whether a token expiry time has passed, or will within margin.

    Returns False when no expiry is recorded or it cannot be parsed.
    """
    if not expiry_str:
        return False

    try:
        expiry_time_utc = parse_expiry(expiry_str)
    except ValueError as e:
        print(f"Warning: Could not parse token expiry time '{expiry_str}': {e}")
        # Continue anyway in case the expiry format is different
        return False

    current_time = now or datetime.now(timezone.utc)
    return current_time + margin >= expiry_time_utc
