"""Application state shared by the request handlers."""

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from .models import ProxySettings
from .settings import SettingsStore, apply_settings_update
from .stats import UsageAccumulator
from .tunnel import DEFAULT_URL_PATTERN, TunnelSupervisor

logger = logging.getLogger(__name__)


class AppState:
    """
    Everything the handlers read or mutate, owned by one FastAPI app.

    Handlers get it through a dependency rather than module globals, so tests
    can build as many independent instances as they need.
    """

    def __init__(
        self,
        settings: ProxySettings,
        store: SettingsStore,
        tunnel: TunnelSupervisor,
        upstream_url: str,
        timeout: float,
        setup_complete: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.store = store
        self.tunnel = tunnel
        self.upstream_url = upstream_url
        self.timeout = timeout
        self.setup_complete = setup_complete
        self.transport = transport
        self.stats = UsageAccumulator()
        self.started_at = time.monotonic()

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        upstream_url: str,
        timeout: float,
        settings_file: Path,
        port: int,
    ) -> "AppState":
        """Build the state from config.yaml, the settings file and the environment."""
        settings = ProxySettings()
        apply_settings_update(settings, config.get("defaults") or {})

        store = SettingsStore(settings_file)
        setup_complete = store.load(settings)

        env_key = os.environ.get("NIM_API_KEY", "").strip()
        if env_key and not settings.api_key:
            settings.api_key = env_key

        tunnel_config = config.get("tunnel") or {}
        local_url = f"http://localhost:{port}"
        command = [
            part.format(local_url=local_url, port=port)
            for part in tunnel_config.get("command") or []
        ]
        tunnel = TunnelSupervisor(
            command or ["cloudflared", "tunnel", "--url", local_url],
            tunnel_config.get("url_pattern") or DEFAULT_URL_PATTERN,
        )

        return cls(
            settings=settings,
            store=store,
            tunnel=tunnel,
            upstream_url=upstream_url,
            timeout=timeout,
            setup_complete=bool(setup_complete) or bool(settings.api_key),
        )

    @property
    def uptime_seconds(self) -> int:
        return int(time.monotonic() - self.started_at)

    def persist(self) -> bool:
        """Rewrite the settings file with the current settings."""
        return self.store.save(self.settings, self.setup_complete)
