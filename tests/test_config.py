"""Tests for nodelab.core.config environment overrides."""

from __future__ import annotations

import importlib

import pytest

from nodelab.core import config
from nodelab.core.exceptions import ConfigError


@pytest.fixture
def reload_config(monkeypatch):
    yield lambda: importlib.reload(config)
    monkeypatch.undo()
    importlib.reload(config)


def test_defaults(reload_config, monkeypatch):
    for key in (
        "NODELAB_OVERLAY_DIR",
        "GUACAMOLE_URL",
        "GUAC_EMBED_CREDENTIALS",
        "NODELAB_VM_MEMORY_MB",
        "NODELAB_VNC_BASE_PORT",
    ):
        monkeypatch.delenv(key, raising=False)
    cfg = reload_config()
    assert cfg.OVERLAY_DIR == "/app/overlays"
    assert cfg.GUACAMOLE_URL == "http://guacamole:8080/guacamole"
    assert cfg.GUAC_EMBED_CREDENTIALS is True
    assert cfg.VM_MEMORY_MB == 512
    assert cfg.VNC_BASE_PORT == 5900


def test_overrides(reload_config, monkeypatch):
    monkeypatch.setenv("NODELAB_OVERLAY_DIR", "/srv/overlays")
    monkeypatch.setenv("NODELAB_VM_MEMORY_MB", "2048")
    monkeypatch.setenv("GUAC_EMBED_CREDENTIALS", "no")
    monkeypatch.setenv("GUAC_HTTP_TIMEOUT", "1.5")
    monkeypatch.setenv("NODELAB_CORS_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("NODELAB_VNC_BASE_PORT", "6000")
    cfg = reload_config()
    assert cfg.OVERLAY_DIR == "/srv/overlays"
    assert cfg.VM_MEMORY_MB == 2048
    assert cfg.GUAC_EMBED_CREDENTIALS is False
    assert cfg.GUAC_HTTP_TIMEOUT == 1.5
    assert cfg.CORS_ORIGINS == ["http://a.test", "http://b.test"]
    assert cfg.VNC_BASE_PORT == 6000


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("NODELAB_VM_MEMORY_MB", "lots", "must be an integer"),
        ("NODELAB_VM_MEMORY_MB", "16", "must be >= 64"),
        ("GUAC_HTTP_TIMEOUT", "soon", "must be a number"),
        ("NODELAB_VNC_READY_TIMEOUT", "-1", "must not be negative"),
    ],
)
def test_invalid_values(reload_config, monkeypatch, key, value, message):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigError, match=message):
        reload_config()
