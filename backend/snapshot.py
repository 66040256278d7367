"""Fixed-shape room snapshot pushed to every subscriber after a mutation."""
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel

SCHEMA_VERSION = 1


class SettingsView(BaseModel):
    tossup_seconds: Union[int, float]
    bonus_seconds: Union[int, float]


class TeamView(BaseModel):
    id: str
    name: str
    score: int


class PlayerView(BaseModel):
    connection_id: str
    name: str
    team_id: Optional[str]
    is_host: bool
    is_spectator: bool


class BuzzUnlocked(BaseModel):
    locked: Literal[False] = False


class BuzzLocked(BaseModel):
    locked: Literal[True] = True
    winner_connection_id: str
    winner_name: str
    winner_team_id: str
    timestamp: int
    interrupt_choice: Optional[bool]


class TimerView(BaseModel):
    mode: str
    running: bool
    remaining_ms: int
    ends_at_ms: int


class LedgerCell(BaseModel):
    p: int
    tu: int
    b: int
    score: int


class LedgerRowView(BaseModel):
    num: int
    teams: Dict[str, LedgerCell]


class LedgerView(BaseModel):
    tossup_number: int
    rows: List[LedgerRowView]


class RoomSnapshot(BaseModel):
    schema_version: int = SCHEMA_VERSION
    revision: int
    code: str
    room_name: str
    host_connection_id: str
    settings: SettingsView
    teams: List[TeamView]
    players: List[PlayerView]
    phase: str
    active_bonus_team_id: Optional[str]
    buzz: Union[BuzzLocked, BuzzUnlocked]
    timer: TimerView
    tossup_locked_teams: List[str]
    ledger: LedgerView


def project(room) -> RoomSnapshot:
    """Build the snapshot of ``room`` deterministically; never mutates it."""
    arbiter = room.buzz
    if arbiter.lock is not None:
        buzz: Union[BuzzLocked, BuzzUnlocked] = BuzzLocked(
            winner_connection_id=arbiter.lock.winner_connection_id,
            winner_name=arbiter.lock.winner_name,
            winner_team_id=arbiter.lock.winner_team_id,
            timestamp=arbiter.lock.timestamp,
            interrupt_choice=arbiter.interrupt_choice,
        )
    else:
        buzz = BuzzUnlocked()

    timer = room.timer.snapshot()
    return RoomSnapshot(
        revision=room.revision,
        code=room.code,
        room_name=room.room_name,
        host_connection_id=room.host_connection_id,
        settings=SettingsView(
            tossup_seconds=room.settings.tossup_seconds,
            bonus_seconds=room.settings.bonus_seconds,
        ),
        teams=[TeamView(id=t.id, name=t.name, score=t.score) for t in room.teams.values()],
        players=[
            PlayerView(
                connection_id=p.connection_id,
                name=p.name,
                team_id=p.team_id,
                is_host=p.is_host,
                is_spectator=p.is_spectator,
            )
            for p in room.players.values()
        ],
        phase=room.phase,
        active_bonus_team_id=room.active_bonus_team_id,
        buzz=buzz,
        timer=TimerView(
            mode=timer.mode,
            running=timer.running,
            remaining_ms=timer.remaining_ms,
            ends_at_ms=timer.ends_at_ms,
        ),
        # Keep team order so the list is deterministic.
        tossup_locked_teams=[tid for tid in room.teams if tid in arbiter.locked_teams],
        ledger=LedgerView.model_validate(room.ledger.to_dict()),
    )
