"""
Connection manager: one WebSocket link to the orchestrator.

Keeps the link up forever: on every drop or failed attempt it waits a
fixed ``reconnect_delay`` and tries again (no backoff, no giving up).
While connected it sends a ``__ping`` heartbeat. Each state transition is
published through the relay to its status observers.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from drawio_bridge.config import BridgeConfig, load_config, save_config
from drawio_bridge.host import InMemoryGraphHost
from drawio_bridge.protocol import (
    EVENT_KEY,
    PING_EVENT,
    ConnectionStatus,
    MalformedCommand,
    parse_command,
)
from drawio_bridge.relay import Relay
from drawio_bridge.validation import validate_port

logger = logging.getLogger("drawio-bridge")


class ConnectionManager:
    """Maintains the orchestrator connection and feeds the relay."""

    def __init__(
        self,
        relay: Relay,
        config: Optional[BridgeConfig] = None,
        config_path: Optional[Path] = None,
    ) -> None:
        self.relay = relay
        self.config = config or BridgeConfig()
        self.config_path = config_path
        self._ws: ClientConnection | None = None
        self._stopping = False
        self._wakeup = asyncio.Event()
        relay.attach(self)

    # -- state --

    @property
    def status(self) -> ConnectionStatus:
        return self.relay.status

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self.relay.status is ConnectionStatus.CONNECTED

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is not self.relay.status:
            logger.info("Connection status: %s", status.value)
            self.relay.publish_status(status)

    # -- outbound --

    async def send(self, message: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None:
            raise ConnectionError("not connected to the orchestrator")
        await ws.send(json.dumps(message))

    # -- inbound --

    def handle_message(self, raw: str | bytes) -> int:
        """Decode one inbound frame and broadcast it; malformed frames are dropped."""
        try:
            command = parse_command(raw)
        except MalformedCommand as exc:
            logger.error("Failed to parse message from orchestrator: %s", exc)
            return 0
        logger.debug("Received from orchestrator: %s", command.event)
        return self.relay.dispatch(command)

    # -- lifecycle --

    async def run(self) -> None:
        """Connect, serve, and reconnect until :meth:`stop` is called."""
        while not self._stopping:
            await self._connect_once()
            if self._stopping:
                break
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.config.reconnect_delay)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()

    async def _connect_once(self) -> None:
        url = self.config.url
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            async with connect(url) as ws:
                if self.config.url != url:
                    # set_port ran while the handshake was in flight
                    logger.info("Endpoint changed during handshake, dropping %s", url)
                    return
                self._ws = ws
                self._set_status(ConnectionStatus.CONNECTED)
                logger.info("Connected to orchestrator at %s", url)
                heartbeat = asyncio.create_task(self._heartbeat(ws))
                try:
                    async for raw in ws:
                        self.handle_message(raw)
                finally:
                    heartbeat.cancel()
            logger.info("Disconnected from %s", url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            logger.warning("Connection to %s lost or refused: %s", url, exc)
        finally:
            self._ws = None
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def _heartbeat(self, ws: ClientConnection) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            try:
                await ws.send(json.dumps({EVENT_KEY: PING_EVENT}))
            except ConnectionClosed:
                return

    async def stop(self) -> None:
        self._stopping = True
        self._wakeup.set()
        if self._ws is not None:
            await self._ws.close()

    async def set_port(self, port: Any) -> int:
        """Validate and persist a new port, then reconnect to it.

        Raises :class:`~drawio_bridge.validation.ValidationError` for
        anything outside 1..65535; the current connection is untouched then.
        """
        new_port = validate_port(port)
        self.config = dataclasses.replace(self.config, port=new_port)
        save_config(self.config, self.config_path)
        logger.info("Port updated to %d", new_port)
        self._wakeup.set()
        if self._ws is not None:
            await self._ws.close()
        return new_port


# ===================================================================
# Entry point
# ===================================================================

async def run_bridge(config: BridgeConfig, config_path: Optional[Path] = None) -> None:
    """Serve one in-memory diagram session to the configured orchestrator."""
    relay = Relay(config.session_selector)
    relay.open_session(InMemoryGraphHost(), url="memory://default")
    manager = ConnectionManager(relay, config, config_path)
    try:
        await manager.run()
    finally:
        await relay.close()


def main() -> None:
    """Run the bridge until interrupted."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    config = load_config()
    try:
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        logger.info("Bridge stopped")


if __name__ == "__main__":
    main()
