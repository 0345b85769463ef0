"""
tests/test_config.py — YAML Config Loader
==========================================
"""

from __future__ import annotations

import pytest

from madina.config import load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_loads_and_normalizes(tmp_path):
    cfg = load_config(_write(tmp_path, (
        "site_name: Madina\n"
        "site_tagline: Hello\n"
        "api_port: 9000\n"
        "session_hours: 6\n"
        "bootstrap_admin_email: ' Boss@Example.com '\n"
    )))
    assert cfg.api_port == 9000
    assert cfg.session_hours == 6
    assert cfg.withdrawal_hold_hours == 24
    assert cfg.bootstrap_admin_email == "boss@example.com"


def test_env_points_at_file(tmp_path, monkeypatch):
    path = _write(tmp_path, "site_name: X\napi_port: 1\nsession_hours: 1\n")
    monkeypatch.setenv("MADINA_CONFIG", str(path))
    cfg = load_config()
    assert cfg.site_name == "X"
    assert cfg.bootstrap_admin_email is None


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_missing_keys(tmp_path):
    with pytest.raises(ValueError, match="api_port"):
        load_config(_write(tmp_path, "site_name: X\nsession_hours: 1\n"))


def test_non_positive_hours(tmp_path):
    with pytest.raises(ValueError, match="must be positive"):
        load_config(_write(tmp_path, "site_name: X\napi_port: 1\nsession_hours: 0\n"))
