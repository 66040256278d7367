"""Per-room session engine: phase state machine, buzz handling and scoring.

All mutations of a room go through ``RoomSession.lock``. Critical sections
never await, so a mutation always runs to completion before the next one
(a command or the toss-up end callback) is applied. Every accepted
mutation publishes a full snapshot through the ``publish`` hook; a rejected
one raises a ``SessionError`` before touching any state.
"""
import asyncio
import logging
import uuid
from typing import Callable, Dict, Optional

import config
from buzz_arbiter import BuzzArbiter
from errors import Conflict, InvalidInput, InvalidPhase, NotFound, Unauthorized
from models import (
    BONUS_LIVE, BONUS_PHASES, BONUS_READING, BUZZABLE_PHASES, LOBBY,
    TOSSUP_CLOSED, TOSSUP_LIVE, TOSSUP_READING, Player, Settings, Team,
)
from scoring_ledger import ScoringLedger
from snapshot import RoomSnapshot, project
from timer_engine import ScheduledEvent, Timer, now_ms

logger = logging.getLogger(__name__)


def team_name(index: int) -> str:
    return f"Team {chr(ord('A') + index)}"


class RoomSession:
    def __init__(self, code: str, room_name: str, host_connection_id: str, host_name: str,
                 team_count: int, settings: Optional[Settings] = None,
                 publish: Optional[Callable[[RoomSnapshot], None]] = None,
                 clock: Callable[[], int] = now_ms):
        self.code = code
        self.room_name = room_name
        self.host_connection_id = host_connection_id
        self.settings = settings or Settings()
        self.teams: Dict[str, Team] = {}
        for i in range(team_count):
            team_id = uuid.uuid4().hex[:6]
            self.teams[team_id] = Team(id=team_id, name=team_name(i))
        self.players: Dict[str, Player] = {
            host_connection_id: Player(connection_id=host_connection_id, name=host_name, is_host=True),
        }
        self.phase = LOBBY
        self.active_bonus_team_id: Optional[str] = None
        self.buzz = BuzzArbiter()
        self.timer = Timer("tossup", self.settings.tossup_seconds, clock=clock)
        self.ledger = ScoringLedger()
        self.revision = 0
        self.closed = False
        self.lock = asyncio.Lock()
        self._tossup_end: Optional[ScheduledEvent] = None
        self._publish_hook = publish

    # ------------------------------------------------------------------
    # Snapshot / publishing
    # ------------------------------------------------------------------

    def snapshot(self) -> RoomSnapshot:
        return project(self)

    def _publish(self):
        self.revision += 1
        if self._publish_hook is None:
            return
        try:
            self._publish_hook(self.snapshot())
        except Exception:
            # Delivery problems never undo or fail a committed mutation.
            logger.exception("Failed to publish state for room %s", self.code)

    async def publish_state(self):
        async with self.lock:
            self._publish()

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _require_open(self):
        if self.closed:
            raise NotFound("Room not found.")

    def _require_host(self, connection_id: str):
        self._require_open()
        if connection_id != self.host_connection_id:
            raise Unauthorized("Host only.")

    def _require_bonus_phase(self):
        if self.phase not in BONUS_PHASES:
            raise InvalidPhase("No bonus in progress.")

    # ------------------------------------------------------------------
    # Toss-up end callback
    # ------------------------------------------------------------------

    def _cancel_tossup_end(self):
        if self._tossup_end is not None:
            self._tossup_end.cancel()
            self._tossup_end = None

    def _schedule_tossup_end(self):
        self._cancel_tossup_end()
        delay = self.timer.live_remaining_ms() + config.TOSSUP_END_GRACE_MS
        self._tossup_end = ScheduledEvent(delay, self._on_tossup_end)

    async def _on_tossup_end(self, event: ScheduledEvent):
        async with self.lock:
            # Only the most recent schedule may act, and only if nothing moved on.
            if event is not self._tossup_end or event.cancelled:
                return
            self._tossup_end = None
            if self.closed or self.phase != TOSSUP_LIVE or self.buzz.locked:
                return
            if self.timer.live_remaining_ms() != 0:
                # Woke early (the wall clock moved back); wait out the rest.
                self._schedule_tossup_end()
                return
            self._close_tossup()
            self._publish()

    def _close_tossup(self):
        self.phase = TOSSUP_CLOSED
        self.timer.expire()
        self.buzz.clear()
        logger.info("Toss-up #%d closed by timer in room %s", self.ledger.tossup_number, self.code)

    @property
    def tossup_end_pending(self) -> bool:
        return self._tossup_end is not None and self._tossup_end.pending

    def _reset_timer(self, mode: str, running: bool):
        seconds = self.settings.tossup_seconds if mode == "tossup" else self.settings.bonus_seconds
        self.timer.reset(mode, seconds, running)

    # ------------------------------------------------------------------
    # Room setup
    # ------------------------------------------------------------------

    async def set_room_name(self, connection_id: str, room_name: str):
        async with self.lock:
            self._require_host(connection_id)
            if not room_name:
                raise InvalidInput("Room name cannot be empty.")
            self.room_name = room_name
            self._publish()

    async def set_team_name(self, connection_id: str, team_id: str, name: str):
        async with self.lock:
            self._require_host(connection_id)
            team = self.teams.get(team_id)
            if team is None:
                raise InvalidInput("Unknown team.")
            if not name:
                raise InvalidInput("Team name cannot be empty.")
            team.name = name
            self._publish()

    async def join(self, connection_id: str, name: str, team_id: Optional[str] = None,
                   spectate: bool = False) -> Player:
        async with self.lock:
            self._require_open()
            if connection_id in self.players:
                raise Conflict("Already in this room.")
            if spectate:
                player = Player(connection_id=connection_id, name=name, is_spectator=True)
            else:
                if not team_id or team_id not in self.teams:
                    raise InvalidInput("Choose a team before joining.")
                player = Player(connection_id=connection_id, name=name, team_id=team_id)
            self.players[connection_id] = player
            logger.info("Player '%s' joined room %s (%s)", name, self.code,
                        "spectator" if spectate else self.teams[team_id].name)
            self._publish()
            return player

    def remove_player(self, connection_id: str) -> bool:
        """Drop a participant immediately. Returns True if it was the host.

        Runs without awaiting so it can never wait on other work. Host
        removal closes the session; the registry discards it.
        """
        player = self.players.pop(connection_id, None)
        if player is None:
            return False
        if connection_id == self.host_connection_id:
            self.close()
            return True
        logger.info("Player '%s' left room %s", player.name, self.code)
        self._publish()
        return False

    def close(self):
        self.closed = True
        self._cancel_tossup_end()

    # ------------------------------------------------------------------
    # Toss-up
    # ------------------------------------------------------------------

    async def start_tossup_reading(self, connection_id: str):
        async with self.lock:
            self._require_host(connection_id)
            if self.phase in BONUS_PHASES:
                raise InvalidPhase("Finish the bonus before starting a toss-up.")
            self._cancel_tossup_end()
            self.phase = TOSSUP_READING
            self.active_bonus_team_id = None
            self.buzz.reset_lockouts()
            self.buzz.clear()
            self._reset_timer("tossup", running=False)
            self.ledger.start_row(self.teams.values())
            self._publish()

    async def done_reading_tossup(self, connection_id: str):
        async with self.lock:
            self._require_host(connection_id)
            if self.phase in BONUS_PHASES:
                raise InvalidPhase("A bonus is in progress.")
            self.phase = TOSSUP_LIVE
            self.buzz.clear()
            self._reset_timer("tossup", running=True)
            self._schedule_tossup_end()
            self._publish()

    async def buzz_in(self, connection_id: str):
        async with self.lock:
            self._require_open()
            player = self.players.get(connection_id)
            if player is None or not player.can_buzz:
                raise InvalidInput("Only team players can buzz.")
            if self.phase not in BUZZABLE_PHASES:
                raise InvalidPhase("Buzzing is closed.")
            self.buzz.check_available(player.team_id)
            if self.phase == TOSSUP_LIVE:
                self.timer.stop()
                self._cancel_tossup_end()
            self.buzz.try_lock(connection_id, player.name, player.team_id)
            self._publish()

    async def clear_buzz(self, connection_id: str):
        async with self.lock:
            self._require_host(connection_id)
            if not self.buzz.locked:
                raise Conflict("No active buzz.")
            self.buzz.clear()
            if self.phase == TOSSUP_LIVE:
                if self.timer.resume():
                    self._schedule_tossup_end()
                elif self.timer.live_remaining_ms() == 0:
                    # The buzz landed after the deadline, before the end callback.
                    self._close_tossup()
            self._publish()

    async def set_interrupt_choice(self, connection_id: str, interrupt: bool):
        async with self.lock:
            self._require_host(connection_id)
            self.buzz.set_interrupt_choice(interrupt)
            self._publish()

    def _other_team_id(self, team_id: str) -> Optional[str]:
        return next((tid for tid in self.teams if tid != team_id), None)

    def _score(self, team_id: str, field: str, points: int):
        self.teams[team_id].score += points
        self.ledger.add_delta(team_id, field, points)
        self.ledger.refresh_scores(self.teams.values())

    async def mark_answer(self, connection_id: str, correct: bool):
        async with self.lock:
            self._require_host(connection_id)
            lock = self.buzz.lock
            if lock is None:
                raise Conflict("No active buzz.")
            interrupt = self.buzz.interrupt_choice
            if interrupt is None:
                raise InvalidPhase("Choose interrupt or not before marking the answer.")
            team_id = lock.winner_team_id

            if correct:
                self._score(team_id, "tu", config.TOSSUP_POINTS)
                self._cancel_tossup_end()
                self.phase = BONUS_READING
                self.active_bonus_team_id = team_id
                self.buzz.clear()
                self._reset_timer("bonus", running=False)
                self._publish()
                return

            # A wrong answer always costs the team its chance on this toss-up.
            self.buzz.lock_out(team_id)
            self.buzz.clear()
            if interrupt:
                other_id = self._other_team_id(team_id)
                if other_id is not None:
                    self._score(other_id, "p", config.INTERRUPT_POINTS)
                self._cancel_tossup_end()
                self.phase = TOSSUP_READING
                self._reset_timer("tossup", running=False)
            else:
                self.phase = TOSSUP_LIVE
                self._reset_timer("tossup", running=True)
                self._schedule_tossup_end()
            self._publish()

    # ------------------------------------------------------------------
    # Bonus
    # ------------------------------------------------------------------

    async def done_reading_bonus(self, connection_id: str):
        async with self.lock:
            self._require_host(connection_id)
            self._require_bonus_phase()
            self.phase = BONUS_LIVE
            self._reset_timer("bonus", running=True)
            self._publish()

    def _finish_bonus(self):
        self.phase = LOBBY
        self.active_bonus_team_id = None
        self.buzz.reset_lockouts()
        self.buzz.clear()
        self._reset_timer("tossup", running=False)

    async def award_bonus(self, connection_id: str, points: int):
        async with self.lock:
            self._require_host(connection_id)
            self._require_bonus_phase()
            if not config.MIN_BONUS_POINTS <= points <= config.MAX_BONUS_POINTS:
                raise InvalidInput(
                    f"Bonus points must be {config.MIN_BONUS_POINTS}-{config.MAX_BONUS_POINTS}."
                )
            team_id = self.active_bonus_team_id
            if team_id not in self.teams:
                raise InvalidInput("No team is playing this bonus.")
            self._score(team_id, "b", points)
            self._finish_bonus()
            self._publish()

    async def skip_bonus(self, connection_id: str):
        async with self.lock:
            self._require_host(connection_id)
            self._require_bonus_phase()
            self._finish_bonus()
            self._publish()

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def delete_ledger_row(self, connection_id: str, num: int):
        async with self.lock:
            self._require_host(connection_id)
            self.ledger.delete_row(num)
            self._publish()
