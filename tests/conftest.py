import sys
from pathlib import Path
from unittest import mock

import pytest

# allow importing the package without installing it
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from adla_acl.config_utils import Settings
from adla_acl.session import SessionContext


def make_response(status_code, payload=None, text=""):
    resp = mock.Mock()
    resp.status_code = status_code
    resp.json.return_value = payload if payload is not None else {}
    resp.text = text
    return resp


def file_status(suffix, node_type):
    return {"pathSuffix": suffix, "type": node_type}


class RecordingPool:
    """Stands in for JobPool: records submissions and runs nothing."""

    def __init__(self):
        self.submitted = []
        self.joins = 0

    def submit(self, label, fn, *args, **kwargs):
        self.submitted.append((label, args))
        return mock.Mock()

    def join(self):
        from adla_acl.jobs import RemovalSummary
        self.joins += 1
        return RemovalSummary(submitted=len(self.submitted), successful=len(self.submitted))

    @property
    def paths(self):
        return [label for label, _ in self.submitted]

    @property
    def acl_specs(self):
        # args: session, store_account, path, acl_spec, settings, dry_run
        return [args[3] for _, args in self.submitted]


@pytest.fixture
def settings(tmp_path):
    return Settings(session_path=str(tmp_path / "session.json"), max_workers=4, max_pending=8)


@pytest.fixture
def session_ctx():
    return SessionContext(
        subscription="sub-123",
        tenant="tenant-456",
        management_token="mgmt-token",
        datalake_token="lake-token",
    )


@pytest.fixture
def pool():
    return RecordingPool()
