"""
Relay between the orchestrator connection and live diagram sessions.

Every session runs in its own asyncio task with its own inbox, engine and
document; the relay only ever hands it a private copy of each command.
Inbound commands are broadcast to all sessions matching the selector,
replies flow back through the attached outbound connection, and
connection-state changes are pushed to status observers.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from fnmatch import fnmatchcase
from typing import Any, Callable, Mapping, Optional, Protocol

from drawio_bridge.engine import GraphMutationEngine
from drawio_bridge.host import GraphHost
from drawio_bridge.protocol import Command, ConnectionStatus, build_reply, status_message

logger = logging.getLogger("drawio-bridge")

StatusObserver = Callable[[dict[str, str]], None]


class Outbound(Protocol):
    """The connection replies are written to."""

    @property
    def is_connected(self) -> bool: ...

    async def send(self, message: dict[str, Any]) -> None: ...


class DiagramSession:
    """One live document, its engine and the task that serializes commands."""

    def __init__(
        self,
        session_id: str,
        host: GraphHost,
        url: str = "",
        layouts: Optional[Mapping[str, Mapping[str, float]]] = None,
    ) -> None:
        self.id = session_id
        self.url = url
        self.host = host
        self.engine = GraphMutationEngine(host, layouts)
        self._inbox: asyncio.Queue[Command | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def ready(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, relay: Relay) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._run(relay), name=f"drawio-session-{self.id}",
        )

    def submit(self, command: Command) -> None:
        self._inbox.put_nowait(command)

    async def drain(self) -> None:
        """Wait until every submitted command has been answered."""
        await self._inbox.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._inbox.put_nowait(None)
        await self._task
        self._task = None

    async def _run(self, relay: Relay) -> None:
        while True:
            command = await self._inbox.get()
            try:
                if command is None:
                    return
                # Runs to completion before the next command is taken
                result = self.engine.handle(command)
                await relay.deliver(self.id, build_reply(command, result))
            finally:
                self._inbox.task_done()


class Relay:
    """Fan-out of commands to sessions and fan-in of their replies."""

    def __init__(self, session_selector: str = "*") -> None:
        self.session_selector = session_selector
        self.status = ConnectionStatus.DISCONNECTED
        self._sessions: dict[str, DiagramSession] = {}
        self._observers: list[StatusObserver] = []
        self._outbound: Outbound | None = None
        self._ids = itertools.count(1)

    # -- wiring --

    def attach(self, outbound: Outbound | None) -> None:
        self._outbound = outbound

    def open_session(
        self,
        host: GraphHost,
        url: str = "",
        layouts: Optional[Mapping[str, Mapping[str, float]]] = None,
    ) -> DiagramSession:
        """Register a session and start its worker (needs a running loop)."""
        session = DiagramSession(f"session-{next(self._ids)}", host, url, layouts)
        self._sessions[session.id] = session
        session.start(self)
        logger.info("Opened diagram session %s (%s)", session.id, url or "no url")
        return session

    def add_session(self, session: DiagramSession) -> None:
        """Register a session without starting it; it stays not-ready."""
        self._sessions[session.id] = session

    async def close_session(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.stop()
            logger.info("Closed diagram session %s", session_id)

    async def close(self) -> None:
        for session_id in list(self._sessions):
            await self.close_session(session_id)

    @property
    def sessions(self) -> list[DiagramSession]:
        return list(self._sessions.values())

    def matching_sessions(self) -> list[DiagramSession]:
        return [s for s in self._sessions.values() if fnmatchcase(s.url, self.session_selector)]

    # -- commands --

    def dispatch(self, command: Command) -> int:
        """Broadcast *command* to every matching, ready session.

        Returns how many sessions received it. Missing or not-ready
        sessions are logged and skipped.
        """
        if command.is_control:
            logger.debug("Ignoring control message %s", command.event)
            return 0
        targets = self.matching_sessions()
        if not targets:
            logger.warning("No diagram session open, dropping %s", command.event)
            return 0
        sent = 0
        for session in targets:
            if not session.ready:
                logger.warning("Session %s not ready, could not send %s", session.id, command.event)
                continue
            session.submit(command.copy())
            sent += 1
        return sent

    async def deliver(self, session_id: str, reply: dict[str, Any]) -> bool:
        """Forward one reply; dropped when the connection is not open."""
        outbound = self._outbound
        if outbound is None or not outbound.is_connected:
            logger.debug("Not connected, dropping reply %s from %s", reply.get("__event"), session_id)
            return False
        try:
            await outbound.send(reply)
        except Exception:
            logger.exception("Failed to send reply %s from %s", reply.get("__event"), session_id)
            return False
        return True

    # -- status --

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        """Register a status observer; returns a function that removes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish_status(self, status: ConnectionStatus) -> None:
        self.status = status
        message = status_message(status)
        for observer in list(self._observers):
            try:
                observer(dict(message))
            except Exception:
                logger.exception("Status observer failed")
