import json
import os
import subprocess
from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest

from adla_acl.errors import SessionError, SessionExpiredError
from adla_acl.session import ensure_session, export_access_token, load_session, session_path

EXPIRES_ON = 1893456000  # 2030-01-01T00:00:00Z


def az_output(token, subscription="sub-123", tenant="tenant-456"):
    return json.dumps({
        "accessToken": token,
        "expiresOn": "2030-01-01 00:00:00.000000",
        "expires_on": EXPIRES_ON,
        "subscription": subscription,
        "tenant": tenant,
        "tokenType": "Bearer",
    })


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def fake_az(cmd, **kwargs):
    resource = cmd[cmd.index("--resource") + 1]
    token = "lake-token" if "datalake" in resource else "mgmt-token"
    return completed(az_output(token))


def test_session_path_uses_settings(settings):
    assert session_path(settings) == settings.session_path


def test_ensure_session_creates_artifact(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az) as run:
        created = ensure_session(settings.session_path, settings)

    assert created is True
    assert run.call_count == 2
    with open(settings.session_path) as f:
        contents = json.load(f)
    assert contents["subscription"] == "sub-123"
    assert contents["tokens"]["management"]["access_token"] == "mgmt-token"
    assert contents["tokens"]["datalake"]["access_token"] == "lake-token"
    assert contents["tokens"]["datalake"]["expiry"] == "2030-01-01T00:00:00+00:00"
    assert oct(os.stat(settings.session_path).st_mode & 0o777) == oct(0o600)


def test_ensure_session_skips_existing_artifact(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az) as run:
        assert ensure_session(settings.session_path, settings) is True
        assert ensure_session(settings.session_path, settings) is False
    assert run.call_count == 2


def test_ensure_session_refresh_rewrites(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az) as run:
        ensure_session(settings.session_path, settings)
        assert ensure_session(settings.session_path, settings, refresh=True) is True
    assert run.call_count == 4


def test_export_passes_subscription(settings):
    from dataclasses import replace
    settings = replace(settings, subscription="sub-999")
    with mock.patch("adla_acl.session.subprocess.run", return_value=completed(az_output("t"))) as run:
        export_access_token("https://datalake.azure.net/", settings)
    cmd = run.call_args[0][0]
    assert cmd[:3] == ["az", "account", "get-access-token"]
    assert cmd[cmd.index("--subscription") + 1] == "sub-999"


def test_export_failure_raises(settings):
    with mock.patch("adla_acl.session.subprocess.run",
                    return_value=completed(returncode=1, stderr="Please run 'az login'")):
        with pytest.raises(SessionError, match="az login"):
            export_access_token("https://datalake.azure.net/", settings)


def test_missing_az_cli_raises(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=FileNotFoundError("az")):
        with pytest.raises(SessionError, match="Azure CLI not found"):
            ensure_session(settings.session_path, settings)
    assert not os.path.exists(settings.session_path)


def test_load_session_round_trip(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az):
        ensure_session(settings.session_path, settings)

    ctx = load_session(settings.session_path, now=datetime(2025, 1, 1, tzinfo=timezone.utc))
    assert ctx.subscription == "sub-123"
    assert ctx.tenant == "tenant-456"
    assert ctx.datalake_headers() == {"Authorization": "Bearer lake-token"}
    assert ctx.management_headers() == {"Authorization": "Bearer mgmt-token"}


def test_load_session_expired(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az):
        ensure_session(settings.session_path, settings)

    with pytest.raises(SessionExpiredError):
        load_session(settings.session_path, now=datetime(2031, 1, 1, tzinfo=timezone.utc))


def test_load_session_missing_file(tmp_path):
    with pytest.raises(SessionError, match="not found"):
        load_session(str(tmp_path / "missing.json"))


def test_load_session_malformed(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(SessionError):
        load_session(str(path))


def test_load_session_missing_token(tmp_path):
    path = tmp_path / "partial.json"
    path.write_text(json.dumps({
        "version": 1,
        "subscription": "sub",
        "tokens": {"management": {"access_token": "m"}},
    }))
    with pytest.raises(SessionError, match="datalake"):
        load_session(str(path))


def test_expiring_tokens(settings):
    with mock.patch("adla_acl.session.subprocess.run", side_effect=fake_az):
        ensure_session(settings.session_path, settings)
    ctx = load_session(settings.session_path, now=datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert ctx.expiring_tokens(timedelta(minutes=30), now=datetime(2025, 1, 1, tzinfo=timezone.utc)) == []
    assert ctx.expiring_tokens(timedelta(minutes=30), now=datetime(2029, 12, 31, 23, 45, tzinfo=timezone.utc)) == \
        ["management", "datalake"]
