"""Configuration handling for the NIMB proxy."""

import yaml
import logging
import os
from pathlib import Path
from typing import Dict, Any

from dotenv import load_dotenv

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

request_logger = logging.getLogger("nimb.requests")
request_logger.setLevel(logging.INFO)

load_dotenv()

PROJECT_ROOT = Path(__file__).parent.parent.parent

DEFAULT_CONFIG: Dict[str, Any] = {
    "upstream": {
        "url": "https://integrate.api.nvidia.com/v1",
        "default_model": "deepseek-ai/deepseek-v3.2",
    },
    "server": {"host": "0.0.0.0", "port": 3000},
    "settings": {"timeout": 120, "settings_file": "~/.nimb/settings.json"},
    "tunnel": {
        "command": ["cloudflared", "tunnel", "--url", "{local_url}"],
        "url_pattern": r"https://[a-z0-9-]+\.trycloudflare\.com",
    },
    "defaults": {},
}


def configure_logging(log_dir: Path = PROJECT_ROOT / "logs") -> None:
    """Attach a file handler to the request logger, writing to log_dir/requests.log."""
    os.makedirs(log_dir, exist_ok=True)
    request_log_file = log_dir / "requests.log"
    file_handler = logging.FileHandler(str(request_log_file), mode="a")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    request_logger.addHandler(file_handler)
    request_logger.propagate = True
    logger.info(f"Request log file at {request_log_file}")


def load_config() -> Dict[str, Any]:
    """
    Load configuration from config.yaml file.
    Returns a dictionary containing the configuration, with every section
    present. Missing sections fall back to DEFAULT_CONFIG.
    """
    try:
        config_path = PROJECT_ROOT / "config.yaml"
        config_yaml = config_path.read_text()
        loaded = yaml.safe_load(config_yaml) or {}
        logger.info("Successfully loaded configuration from config.yaml")
    except Exception as e:
        logger.error(f"Error loading config.yaml: {str(e)}")
        loaded = {}

    config = {}
    for section, defaults in DEFAULT_CONFIG.items():
        value = loaded.get(section) or {}
        config[section] = {**defaults, **value}
    return config


def settings_file_path(config: Dict[str, Any]) -> Path:
    """Resolve where the runtime settings are persisted; NIMB_DATA_PATH wins."""
    data_path = os.environ.get("NIMB_DATA_PATH")
    if data_path:
        return Path(data_path) / "settings.json"
    return Path(config["settings"]["settings_file"]).expanduser()


config = load_config()

UPSTREAM_API_BASE = os.environ.get("NIM_API_BASE") or config["upstream"]["url"]
DEFAULT_MODEL = config["upstream"].get("default_model") or "deepseek-ai/deepseek-v3.2"

if not UPSTREAM_API_BASE:
    logger.warning("Upstream URL not set in config.yaml, using default value")
    UPSTREAM_API_BASE = DEFAULT_CONFIG["upstream"]["url"]

TIMEOUT = config["settings"].get("timeout", 120)
HOST = config["server"].get("host", "0.0.0.0")
PORT = int(os.environ.get("PORT") or config["server"].get("port", 3000))
SETTINGS_FILE = settings_file_path(config)
