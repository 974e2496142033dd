from datetime import datetime, timedelta, timezone

import pytest

from adla_acl.config_utils import Settings, find_config_file, is_expired, load_settings


def write_config(path, body):
    path.write_text("[adla_acl]\n" + body)
    return str(path)


def test_defaults_when_no_config(tmp_path, monkeypatch):
    monkeypatch.delenv("ADLA_ACL_CONFIG", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert find_config_file() is None
    assert load_settings() == Settings()


def test_explicit_config_overrides_defaults(tmp_path):
    path = write_config(tmp_path / "adla.conf",
                        "max_workers = 3\n"
                        "max_pending = 10\n"
                        "timeout = 5\n"
                        "subscription = sub-abc\n"
                        "management_endpoint = https://management.example.com/\n"
                        f"session_path = {tmp_path / 's.json'}\n")
    settings = load_settings(path)
    assert settings.max_workers == 3
    assert settings.max_pending == 10
    assert settings.timeout == 5.0
    assert settings.subscription == "sub-abc"
    assert settings.management_endpoint == "https://management.example.com"
    assert settings.session_path == str(tmp_path / "s.json")
    assert settings.adls_suffix == "azuredatalakestore.net"


def test_env_var_config(tmp_path, monkeypatch):
    path = write_config(tmp_path / "env.conf", "max_workers = 2\n")
    monkeypatch.setenv("ADLA_ACL_CONFIG", path)
    assert load_settings().max_workers == 2


def test_missing_explicit_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "nope.conf"))


def test_non_positive_pool_size_rejected(tmp_path):
    path = write_config(tmp_path / "bad.conf", "max_workers = 0\n")
    with pytest.raises(ValueError):
        load_settings(path)


def test_config_without_section_uses_defaults(tmp_path):
    path = tmp_path / "other.conf"
    path.write_text("[something_else]\nkey = value\n")
    assert load_settings(str(path)) == Settings()


def test_is_expired():
    now = datetime(2025, 7, 23, 12, 0, tzinfo=timezone.utc)
    assert is_expired("2025-07-23T11:00:00+00:00", now)
    assert not is_expired("2025-07-23T13:00:00+00:00", now)
    # +10:00 offset: 21:00 local is 11:00 UTC
    assert is_expired("2025-07-23T21:00:00+10:00", now)


def test_missing_or_unparseable_expiry_is_not_expired():
    assert not is_expired(None)
    assert not is_expired("")
    assert not is_expired("next tuesday")


def test_is_expired_with_margin():
    now = datetime(2025, 7, 23, 12, 0, tzinfo=timezone.utc)
    assert is_expired("2025-07-23T12:20:00+00:00", now, margin=timedelta(minutes=30))
    assert not is_expired("2025-07-23T12:40:00+00:00", now, margin=timedelta(minutes=30))


def test_list_page_size_setting(tmp_path):
    assert load_settings(write_config(tmp_path / "a.conf", "list_page_size = 500\n")).list_page_size == 500
    with pytest.raises(ValueError):
        load_settings(write_config(tmp_path / "b.conf", "list_page_size = 0\n"))
