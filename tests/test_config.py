"""
Tests for config loading and Settings.
"""

import pytest

from portalassist import config as cfg_mod
from portalassist.config import DEFAULT_ALLOWED_ORIGINS, Settings
from portalassist.errors import ConfigurationError


@pytest.fixture(autouse=True)
def fresh_config():
    orig = cfg_mod._config
    cfg_mod._config = None
    yield
    cfg_mod._config = orig


def test_load_config_resolves_env(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")
    monkeypatch.delenv("OPENAI_ASSISTANT_ID", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        "openai:\n"
        "  api_key: ${OPENAI_API_KEY}\n"
        "  assistant_id: ${OPENAI_ASSISTANT_ID}\n"
        "portal:\n"
        "  allowed_origins:\n"
        "    - https://a.example\n"
        "    - key-${OPENAI_API_KEY}\n"
    )

    cfg = cfg_mod.load_config(path)

    assert cfg["openai"]["api_key"] == "sk-from-env"
    assert cfg["openai"]["assistant_id"] == ""
    assert cfg["portal"]["allowed_origins"][1] == "key-sk-from-env"
    assert cfg_mod.get_config() is cfg


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        cfg_mod.load_config(tmp_path / "nope.yaml")


def test_settings_defaults():
    s = Settings.from_config({})
    assert s.api_base_url == "https://api.openai.com/v1"
    assert s.poll_interval == 1.0
    assert s.max_polls == 60
    assert s.allowed_origins == DEFAULT_ALLOWED_ORIGINS
    assert s.port == 8000


def test_settings_from_config():
    s = Settings.from_config({
        "openai": {
            "api_key": "sk-1",
            "organization": "org_1",
            "assistant_id": "asst_1",
            "base_url": "https://proxy.example/v1/",
            "timeout": 12,
        },
        "polling": {"interval": 2, "max_polls": 10},
        "portal": {"url": "https://gea.gov.gd/", "allowed_origins": "https://a.example, http://localhost:5173 ,"},
        "chat": {"welcome_message": "Hello!"},
        "storage": {"path": "/tmp/x.db"},
        "server": {"port": "9000"},
    })
    assert s.api_base_url == "https://proxy.example/v1"
    assert s.api_timeout == 12.0
    assert s.poll_interval == 2.0
    assert s.max_polls == 10
    assert s.portal_url == "https://gea.gov.gd"
    assert s.allowed_origins == ["https://a.example", "http://localhost:5173"]
    assert s.welcome_message == "Hello!"
    assert s.storage_path == "/tmp/x.db"
    assert s.port == 9000


def test_require_openai():
    s = Settings(api_key="", assistant_id="asst_1")
    assert s.missing_openai() == ["OPENAI_API_KEY"]
    with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
        s.require_openai()

    Settings(api_key="sk", assistant_id="asst").require_openai()
