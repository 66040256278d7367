from dataclasses import dataclass
from typing import Optional

import config

LOBBY = "lobby"
TOSSUP_READING = "tossup_reading"
TOSSUP_LIVE = "tossup_live"
TOSSUP_CLOSED = "tossup_closed"
BONUS_READING = "bonus_reading"
BONUS_LIVE = "bonus_live"

BONUS_PHASES = (BONUS_READING, BONUS_LIVE)
BUZZABLE_PHASES = (TOSSUP_READING, TOSSUP_LIVE)


@dataclass
class Settings:
    tossup_seconds: int = config.DEFAULT_TOSSUP_SECONDS
    bonus_seconds: int = config.DEFAULT_BONUS_SECONDS


@dataclass
class Team:
    id: str
    name: str
    score: int = 0


@dataclass
class Player:
    connection_id: str
    name: str
    team_id: Optional[str] = None
    is_host: bool = False
    is_spectator: bool = False

    @property
    def can_buzz(self) -> bool:
        return not self.is_host and not self.is_spectator and self.team_id is not None
