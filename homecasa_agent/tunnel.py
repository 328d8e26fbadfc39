"""Supervisor for the `cloudflared` tunnel sibling process."""

from __future__ import annotations

import asyncio
import contextlib
import logging

LOG = logging.getLogger(__name__)


class TunnelSupervisor:
    """Run `cloudflared tunnel run` and restart it whenever it exits."""

    def __init__(
        self,
        *,
        token: str,
        command: str = "cloudflared",
        restart_delay_seconds: float = 5.0,
        stop_timeout_seconds: float = 5.0,
    ) -> None:
        self._token = token
        self._command = command
        self._restart_delay_seconds = restart_delay_seconds
        self._stop_timeout_seconds = stop_timeout_seconds
        self._proc: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task[None] | None = None

    def build_command(self) -> list[str]:
        return [self._command, "tunnel", "run", "--token", self._token]

    async def start(self) -> None:
        """Start the restart loop in the background."""
        if self._task is not None:
            return
        LOG.info("Starting Cloudflare Tunnel using %s", self._command)
        self._task = asyncio.create_task(self._run_forever())

    async def close(self) -> None:
        """Stop the restart loop and terminate the running tunnel process."""
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        proc = self._proc
        self._proc = None
        if proc is None or proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._stop_timeout_seconds)
        except asyncio.TimeoutError:
            LOG.warning("cloudflared did not exit after terminate, killing it")
            proc.kill()
            await proc.wait()

    async def _run_once(self) -> int:
        """Run one tunnel process to completion, forwarding its output to the log."""
        self._proc = await asyncio.create_subprocess_exec(
            *self.build_command(),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        LOG.info("Cloudflare Tunnel started (pid=%s)", self._proc.pid)
        stdout = self._proc.stdout
        if stdout is None:
            raise RuntimeError("cloudflared started without a stdout pipe")
        while True:
            line = await stdout.readline()
            if not line:
                break
            LOG.info("[cloudflared] %s", line.decode("utf-8", errors="replace").rstrip())
        return await self._proc.wait()

    async def _run_forever(self) -> None:
        while True:
            try:
                exit_code = await self._run_once()
                LOG.warning(
                    "Cloudflare Tunnel exited with code %s. Restarting in %.0f seconds...",
                    exit_code,
                    self._restart_delay_seconds,
                )
            except asyncio.CancelledError:
                raise
            except OSError as exc:
                LOG.error(
                    "Failed to start cloudflared (%s), retrying in %.0f seconds",
                    exc,
                    self._restart_delay_seconds,
                )
            await asyncio.sleep(self._restart_delay_seconds)
