"""
The proxy application as configured for this machine.

Built from config.yaml, the environment and the persisted settings file, so
importing this module reads them. Run it with ``uvicorn nimb.server:app`` or
``python -m nimb``.
"""

from .api import create_app
from .config import config, PORT, SETTINGS_FILE, TIMEOUT, UPSTREAM_API_BASE
from .state import AppState

app = create_app(
    AppState.from_config(config, UPSTREAM_API_BASE, TIMEOUT, SETTINGS_FILE, PORT)
)
