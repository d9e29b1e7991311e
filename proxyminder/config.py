"""
Configuration for the proxyminder service.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.proxyminder/ unless PROXYMINDER_DATA_DIR
points elsewhere. The proxy's own settings blob (settings.json) is loaded
separately with load_settings().
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Proxyminder configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("PROXYMINDER_DATA_DIR", str(Path.home() / ".proxyminder")))
    db_path: Path = None
    logs_dir: Path = None
    app_log: Path = None
    proxy_log: Path = None
    proxy_config_path: Path = None
    settings_path: Path = None
    history_path: Path = None

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Server
    host: str = os.environ.get("PROXYMINDER_HOST", "127.0.0.1")
    port: int = int(os.environ.get("PROXYMINDER_PORT", "9917"))

    # Supervised proxy
    proxy_binary: str = os.environ.get("PROXY_BINARY", "cliproxyapi")
    management_key: str = os.environ.get("PROXY_MANAGEMENT_KEY", "proxyminder-mgmt-key")
    settle_delay: float = float(os.environ.get("SETTLE_DELAY", "0.5"))
    port_release_delay: float = float(os.environ.get("PORT_RELEASE_DELAY", "0.3"))
    usage_sync_delay: float = float(os.environ.get("USAGE_SYNC_DELAY", "2.0"))

    # Log tailing
    tailer_poll_interval: float = float(os.environ.get("TAILER_POLL_INTERVAL", "0.5"))
    tailer_wait_attempts: int = int(os.environ.get("TAILER_WAIT_ATTEMPTS", "30"))
    tailer_handoff_delay: float = float(os.environ.get("TAILER_HANDOFF_DELAY", "0.1"))

    # Retention
    history_limit: int = int(os.environ.get("HISTORY_LIMIT", "500"))
    output_retention_days: int = int(os.environ.get("OUTPUT_RETENTION_DAYS", "7"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(self.data_dir)
        self.db_path = self.data_dir / "proxyminder.db"
        self.logs_dir = self.data_dir / "logs"
        self.app_log = self.data_dir / "proxyminder.log"
        # The proxy is started with WRITABLE_PATH=data_dir and logs here
        self.proxy_log = self.logs_dir / "main.log"
        self.proxy_config_path = self.data_dir / "proxy-config.yaml"
        self.settings_path = self.data_dir / "settings.json"
        self.history_path = self.data_dir / "history.json"

        # Create directories
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


class ModelMapping(BaseModel):
    """Route requests for one model name to another."""

    source: str = Field(..., alias="from")
    target: str = Field(..., alias="to")
    enabled: bool = True

    model_config = {"populate_by_name": True}


class ProxySettings(BaseModel):
    """User settings for the supervised proxy, read once at startup."""

    port: int = Field(8317, ge=1, le=65535)
    auto_start: bool = True
    debug: bool = False
    proxy_url: str = ""
    request_retry: int = Field(0, ge=0)
    usage_stats_enabled: bool = True
    logging_to_file: bool = True
    force_model_mappings: bool = False
    amp_api_key: str = ""
    amp_model_mappings: list[ModelMapping] = []


def load_settings(path: Path) -> ProxySettings:
    """Load the settings blob, falling back to defaults if missing or invalid."""
    try:
        with open(path) as f:
            data = json.load(f)
        return ProxySettings.model_validate(data)
    except FileNotFoundError:
        return ProxySettings()
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable settings file {path}: {e}")
        return ProxySettings()


config = Config()
