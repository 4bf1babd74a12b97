"""
Config loader for PortalAssist.
Reads config.yaml once at startup. All other modules receive an explicit
Settings object built from it, never the raw environment.

${ENV_VAR} references anywhere in the YAML are resolved after .env is loaded,
so secrets stay out of the file:

    openai:
      api_key: ${OPENAI_API_KEY}
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from dotenv import load_dotenv

from portalassist.errors import ConfigurationError

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

DEFAULT_ALLOWED_ORIGINS = [
    "https://gea.abhirup.app",
    "https://gea.gov.gd",
    "http://localhost:3000",
    "http://localhost:3001",
]

DEFAULT_WELCOME = (
    "Hi! I'm the portal assistant. Ask me anything about the page you're on "
    "or what you'd like to get done."
)


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None:
        return _config

    config_path = path or _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _walk_and_resolve(raw)
    return _config


def get_config() -> dict:
    """Return cached base config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def _parse_origins(value) -> list[str]:
    """Allow-list may be a YAML list or a comma-separated string."""
    if not value:
        return list(DEFAULT_ALLOWED_ORIGINS)
    if isinstance(value, str):
        origins = [o.strip() for o in value.split(",")]
    else:
        origins = [str(o).strip() for o in value]
    return [o for o in origins if o] or list(DEFAULT_ALLOWED_ORIGINS)


@dataclass
class Settings:
    """Everything the orchestrator, transport and context channel need."""
    api_key: str = ""
    organization: str = ""
    assistant_id: str = ""
    api_base_url: str = "https://api.openai.com/v1"
    api_timeout: float = 30.0

    poll_interval: float = 1.0
    max_polls: int = 60

    portal_url: str = "https://gea.abhirup.app"
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    welcome_message: str = DEFAULT_WELCOME

    tools: dict = field(default_factory=dict)

    storage_path: str = "./data/portalassist.db"
    wiretap_path: str = "./data/wire.jsonl"

    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_config(cls, cfg: dict) -> "Settings":
        """Build settings from the (env-resolved) config dict."""
        openai_cfg = cfg.get("openai", {}) or {}
        poll_cfg = cfg.get("polling", {}) or {}
        portal_cfg = cfg.get("portal", {}) or {}
        chat_cfg = cfg.get("chat", {}) or {}
        server_cfg = cfg.get("server", {}) or {}

        return cls(
            api_key=openai_cfg.get("api_key", "") or "",
            organization=openai_cfg.get("organization", "") or "",
            assistant_id=openai_cfg.get("assistant_id", "") or "",
            api_base_url=(openai_cfg.get("base_url") or "https://api.openai.com/v1").rstrip("/"),
            api_timeout=float(openai_cfg.get("timeout", 30)),
            poll_interval=float(poll_cfg.get("interval", 1.0)),
            max_polls=int(poll_cfg.get("max_polls", 60)),
            portal_url=(portal_cfg.get("url") or "https://gea.abhirup.app").rstrip("/"),
            allowed_origins=_parse_origins(portal_cfg.get("allowed_origins")),
            welcome_message=chat_cfg.get("welcome_message") or DEFAULT_WELCOME,
            tools=cfg.get("tools", {}) or {},
            storage_path=cfg.get("storage", {}).get("path", "./data/portalassist.db"),
            wiretap_path=cfg.get("wiretap", {}).get("path", "./data/wire.jsonl"),
            host=server_cfg.get("host", "0.0.0.0"),
            port=int(server_cfg.get("port", 8000)),
        )

    def missing_openai(self) -> list[str]:
        missing = []
        if not self.api_key:
            missing.append("OPENAI_API_KEY")
        if not self.assistant_id:
            missing.append("OPENAI_ASSISTANT_ID")
        return missing

    def require_openai(self) -> None:
        """Raise ConfigurationError before any remote call can be attempted."""
        missing = self.missing_openai()
        if missing:
            raise ConfigurationError(
                "Missing OpenAI configuration: " + ", ".join(missing)
            )


def get_settings() -> Settings:
    """Settings built from the cached config.yaml."""
    return Settings.from_config(get_config())
