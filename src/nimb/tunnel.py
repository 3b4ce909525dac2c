"""Supervision of the external tunnel process that exposes the proxy publicly."""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STOPPED = "stopped"
STARTING = "starting"
RUNNING = "running"

DEFAULT_URL_PATTERN = r"https://[a-z0-9-]+\.trycloudflare\.com"


class TunnelError(Exception):
    """Raised when the tunnel process cannot be started."""


class TunnelSupervisor:
    """
    Owns at most one tunnel subprocess.

    States: stopped -> starting -> running -> stopped. The process output is
    scanned for the public URL; the first match moves the tunnel to running.
    Whenever the process exits, for whatever reason, the state goes back to
    stopped and the URL is cleared.
    """

    def __init__(
        self,
        command: List[str],
        url_pattern: str = DEFAULT_URL_PATTERN,
        stop_grace_period: float = 5.0,
    ):
        self.command = list(command)
        self.url_pattern = re.compile(url_pattern)
        self.stop_grace_period = stop_grace_period
        self.url: Optional[str] = None
        self.status = STOPPED
        self.process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._url_found = asyncio.Event()
        # Bumped by every start and stop; a spawn finishing under an older
        # generation was cancelled by stop() and must not be adopted.
        self._generation = 0

    def state(self) -> Dict[str, Any]:
        return {"url": self.url, "status": self.status}

    async def start(self) -> Dict[str, Any]:
        """
        Spawn the tunnel process unless one is already starting or running.

        Raises TunnelError when the command cannot be executed.
        """
        if self.status != STOPPED:
            return self.state()

        self.status = STARTING
        self._url_found = asyncio.Event()
        self._generation += 1
        generation = self._generation
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            if generation == self._generation:
                self._reset()
            logger.error(f"Failed to start tunnel {self.command[0]!r}: {str(e)}")
            raise TunnelError(f"Failed to start tunnel: {str(e)}") from e

        if generation != self._generation:
            logger.info(f"Tunnel stopped while starting, discarding pid {process.pid}")
            await self._terminate(process)
            return self.state()

        logger.info(f"Started tunnel process (pid {process.pid})")
        self.process = process
        self._watcher = asyncio.create_task(self._watch(process))
        return self.state()

    async def wait_for_url(self, timeout: float) -> Optional[str]:
        """Wait up to timeout seconds for the public URL; None if it never showed."""
        try:
            await asyncio.wait_for(self._url_found.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.url

    async def stop(self) -> Dict[str, Any]:
        """Terminate the owned process, if any. Safe to call repeatedly."""
        process = self.process
        watcher = self._watcher
        self._generation += 1
        self._reset()
        if process is None:
            return self.state()

        await self._terminate(process)
        if watcher is not None:
            await watcher
        logger.info("Tunnel stopped")
        return self.state()

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            # Exited but not reaped yet.
            pass
        try:
            await asyncio.wait_for(process.wait(), self.stop_grace_period)
        except asyncio.TimeoutError:
            logger.warning("Tunnel process ignored SIGTERM, killing it")
            process.kill()
            await process.wait()

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        async for raw in process.stdout:
            line = raw.decode(errors="replace").rstrip()
            logger.debug(f"tunnel: {line}")
            if self.process is not process or self.url is not None:
                continue
            match = self.url_pattern.search(line)
            if match:
                self.url = match.group(0)
                self.status = RUNNING
                self._url_found.set()
                logger.info(f"Tunnel running at {self.url}")

        returncode = await process.wait()
        logger.info(f"Tunnel process exited with code {returncode}")
        if self.process is process:
            self._reset()

    def _reset(self) -> None:
        self.process = None
        self._watcher = None
        self.status = STOPPED
        self.url = None
