"""Exceptions raised by the ADLA ACL tools."""

from typing import Optional


class AclToolError(Exception):
    """Base class for errors raised by adla_acl."""


class SessionError(AclToolError):
    """The session artifact could not be created or read."""


class SessionExpiredError(SessionError):
    """A token in the session artifact has expired."""


class ApiError(AclToolError):
    """An Azure REST call returned an unexpected status."""

    def __init__(self, operation: str, status_code: int, response_text: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.response_text = response_text
        super().__init__(f"Failed to {operation}: {status_code}")


class AccountNotFoundError(AclToolError):
    """The Data Lake Analytics account does not exist in the subscription."""

    def __init__(self, account: str, subscription: Optional[str] = None):
        self.account = account
        self.subscription = subscription
        where = f" in subscription {subscription}" if subscription else ""
        super().__init__(f"Data Lake Analytics account '{account}' not found{where}")


class InvalidNodeTypeError(AclToolError):
    """A directory listing returned an entry that is neither FILE nor DIRECTORY."""

    def __init__(self, path: str, node_type: Optional[str]):
        self.path = path
        self.node_type = node_type
        super().__init__(f"Invalid type '{node_type}' for path {path}")
