from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional, Set
import json
import time
import asyncio
import logging

import config
from commands import parse_command
from errors import SessionError
from room_registry import RoomRegistry
from room_session import RoomSession
from snapshot import RoomSnapshot

logger = logging.getLogger(__name__)


class Connection:
    """One live socket. Outbound messages go through a queue drained by a
    writer task, so pushing never blocks the caller and each connection
    sees messages in the order they were pushed."""

    def __init__(self, client_id: str, websocket: WebSocket):
        self.client_id = client_id
        self.websocket = websocket
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=config.MAX_OUTBOX_SIZE)
        self.msg_timestamps: List[float] = []
        self.closed = False
        self._writer: Optional[asyncio.Task] = None

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def send(self, message: dict):
        if self.closed:
            return
        if self.outbox.full():
            self._drop_stale_states(message)
        if self.outbox.full():
            logger.warning("Client %s is not reading, dropping connection", self.client_id)
            self.close()
            asyncio.create_task(self._abort())
            return
        self.outbox.put_nowait(message)

    def _drop_stale_states(self, incoming: dict):
        """Collapse queued STATE messages. Each one is a full snapshot, so the
        newest (or the incoming one) supersedes the rest."""
        kept = []
        latest = None
        while not self.outbox.empty():
            message = self.outbox.get_nowait()
            if message.get("type") == "STATE":
                latest = message
            else:
                kept.append(message)
        if latest is not None and incoming.get("type") != "STATE":
            kept.append(latest)
        for message in kept:
            self.outbox.put_nowait(message)

    async def _abort(self):
        try:
            await self.websocket.close(code=1013)
        except Exception:
            logger.debug("Close of stalled client %s failed", self.client_id)

    async def _drain(self):
        try:
            while True:
                message = await self.outbox.get()
                await self.websocket.send_json(message)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.info("Send to client %s failed, dropping its outbound queue", self.client_id)
            self.closed = True

    def close(self):
        self.closed = True
        if self._writer:
            self._writer.cancel()
            self._writer = None

    def allow_message(self, now: float) -> bool:
        """Per-client rate limiting over a one-second window."""
        self.msg_timestamps[:] = [t for t in self.msg_timestamps if now - t < 1.0]
        if len(self.msg_timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        self.msg_timestamps.append(now)
        return True


class SocketManager:
    def __init__(self):
        self.registry = RoomRegistry()
        self.connections: Dict[str, Connection] = {}
        self.subscribers: Dict[str, Set[str]] = {}  # room code -> client ids
        self.allowed_origins: List[str] = []

    @property
    def rooms(self) -> Dict[str, RoomSession]:
        return self.registry.rooms

    def reset(self):
        """Drop every room and connection (used on shutdown and by tests)."""
        self.registry.clear()
        for conn in self.connections.values():
            conn.close()
        self.connections.clear()
        self.subscribers.clear()

    # ------------------------------------------------------------------
    # Subscriptions & delivery
    # ------------------------------------------------------------------

    def _subscribe(self, code: str, client_id: str):
        self.subscribers.setdefault(code, set()).add(client_id)

    def _unsubscribe(self, code: str, client_id: str):
        subs = self.subscribers.get(code)
        if subs is not None:
            subs.discard(client_id)

    def broadcast(self, code: str, message: dict, exclude: Optional[str] = None):
        for client_id in sorted(self.subscribers.get(code, ())):
            if client_id == exclude:
                continue
            conn = self.connections.get(client_id)
            if conn:
                conn.send(message)

    def _publisher(self, code: str):
        def publish(snapshot: RoomSnapshot):
            self.broadcast(code, {"type": "STATE", "state": snapshot.model_dump(mode="json")})
        return publish

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket, client_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        if client_id in self.connections:
            await websocket.send_json({"type": "ERROR", "error": "conflict",
                                       "message": "Connection id already in use"})
            await websocket.close()
            return

        conn = Connection(client_id, websocket)
        self.connections[client_id] = conn
        conn.start()
        conn.send({"type": "CONNECTED", "connection_id": client_id})

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    logger.warning("Oversized message from client %s (%d bytes)", client_id, len(data))
                    conn.send({"type": "ERROR", "error": "invalid_input", "message": "Message too large"})
                    continue

                if not conn.allow_message(time.time()):
                    logger.warning("Rate limit hit by client %s", client_id)
                    conn.send({"type": "ERROR", "error": "conflict", "message": "Too many messages"})
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    conn.send({"type": "ERROR", "error": "invalid_input", "message": "Invalid message format"})
                    continue

                await self.handle_message(conn, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            self.disconnect(client_id)

    def disconnect(self, client_id: str):
        """Remove a connection from every room it is in. Never awaits."""
        conn = self.connections.pop(client_id, None)
        if conn:
            conn.close()
        for room in self.registry.rooms_for(client_id):
            was_host = room.remove_player(client_id)
            self._unsubscribe(room.code, client_id)
            if was_host:
                self.registry.remove(room.code)
                self.broadcast(room.code, {
                    "type": "ROOM_CLOSED",
                    "code": room.code,
                    "message": "Host disconnected. Room closed.",
                })
                self.subscribers.pop(room.code, None)
        for subs in self.subscribers.values():
            subs.discard(client_id)

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    async def handle_message(self, conn: Connection, message: dict):
        try:
            command = parse_command(message)
            await self.dispatch(conn, command)
        except SessionError as exc:
            logger.debug("Rejected %s from client %s: %s (%s)",
                         message.get("type") if isinstance(message, dict) else None,
                         conn.client_id, exc.message, exc.kind)
            conn.send(exc.to_message())

    async def dispatch(self, conn: Connection, command):
        client_id = conn.client_id
        msg_type = command.type

        if msg_type == "CREATE_ROOM":
            room = self.registry.create(
                client_id, command.host_name, command.room_name, command.num_teams,
                publish_factory=self._publisher,
            )
            self._subscribe(room.code, client_id)
            conn.send({"type": "ROOM_CREATED", "code": room.code})
            await room.publish_state()
            return

        room = self.registry.get(command.code)

        if msg_type == "JOIN_ROOM":
            already_member = client_id in room.players
            self._subscribe(room.code, client_id)
            try:
                await room.join(client_id, command.name, command.team_id, command.spectate)
            except SessionError:
                if not already_member:
                    self._unsubscribe(room.code, client_id)
                raise

        elif msg_type == "SET_ROOM_NAME":
            await room.set_room_name(client_id, command.room_name)

        elif msg_type == "SET_TEAM_NAME":
            await room.set_team_name(client_id, command.team_id, command.name)

        elif msg_type == "START_TOSSUP_READING":
            await room.start_tossup_reading(client_id)

        elif msg_type == "DONE_READING_TOSSUP":
            await room.done_reading_tossup(client_id)

        elif msg_type == "BUZZ":
            await room.buzz_in(client_id)

        elif msg_type == "CLEAR_BUZZ":
            await room.clear_buzz(client_id)

        elif msg_type == "SET_INTERRUPT_CHOICE":
            await room.set_interrupt_choice(client_id, command.interrupt)

        elif msg_type == "MARK_ANSWER":
            await room.mark_answer(client_id, command.correct)

        elif msg_type == "DONE_READING_BONUS":
            await room.done_reading_bonus(client_id)

        elif msg_type == "AWARD_BONUS":
            await room.award_bonus(client_id, command.points)

        elif msg_type == "SKIP_BONUS":
            await room.skip_bonus(client_id)

        elif msg_type == "DELETE_LEDGER_ROW":
            await room.delete_ledger_row(client_id, command.num)


socket_manager = SocketManager()
