"""Process-wide map of room code -> RoomSession.

Lives on the single event loop: create/get/remove never await, so the
collision check and the insert cannot interleave with another creation.
"""
import logging
import random
from typing import Callable, Dict, List, Optional

import config
from errors import Conflict, NotFound
from models import Settings
from room_session import RoomSession
from snapshot import RoomSnapshot

logger = logging.getLogger(__name__)


def generate_code() -> str:
    return "".join(random.choices(config.ROOM_CODE_ALPHABET, k=config.ROOM_CODE_LENGTH))


def clamp_team_count(team_count) -> int:
    return min(config.MAX_TEAMS, max(config.MIN_TEAMS, int(round(team_count))))


class RoomRegistry:
    def __init__(self, code_factory: Callable[[], str] = generate_code):
        self.rooms: Dict[str, RoomSession] = {}
        self._code_factory = code_factory

    def _unique_code(self) -> str:
        """Generate a room code, checking for collisions with live rooms."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = self._code_factory()
            if code not in self.rooms:
                return code
        raise Conflict("Could not allocate a room code. Please try again.")

    def create(self, host_connection_id: str, host_name: str, room_name: str, team_count: int,
               publish_factory: Optional[Callable[[str], Callable[[RoomSnapshot], None]]] = None,
               settings: Optional[Settings] = None) -> RoomSession:
        if len(self.rooms) >= config.MAX_ROOMS:
            raise Conflict("Too many active rooms. Please try again later.")
        code = self._unique_code()
        room = RoomSession(
            code,
            room_name or f"Room {code}",
            host_connection_id,
            host_name or "Host",
            clamp_team_count(team_count),
            settings=settings,
            publish=publish_factory(code) if publish_factory else None,
        )
        self.rooms[code] = room
        logger.info("Room created: %s ('%s', %d teams)", code, room.room_name, len(room.teams))
        return room

    def get(self, code: str) -> RoomSession:
        room = self.rooms.get(code)
        if room is None:
            raise NotFound("Room not found.")
        return room

    def remove(self, code: str) -> Optional[RoomSession]:
        room = self.rooms.pop(code, None)
        if room is not None:
            room.close()
            logger.info("Room %s closed", code)
        return room

    def rooms_for(self, connection_id: str) -> List[RoomSession]:
        return [room for room in self.rooms.values() if connection_id in room.players]

    def clear(self):
        for code in list(self.rooms):
            self.remove(code)
