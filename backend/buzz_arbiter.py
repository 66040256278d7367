"""First-to-respond buzz lock for a single room."""
from dataclasses import dataclass
from typing import Optional, Set

from errors import Conflict
from timer_engine import now_ms


@dataclass(frozen=True)
class BuzzLock:
    winner_connection_id: str
    winner_name: str
    winner_team_id: str
    timestamp: int


class BuzzArbiter:
    def __init__(self):
        self.lock: Optional[BuzzLock] = None
        self.interrupt_choice: Optional[bool] = None
        self.locked_teams: Set[str] = set()  # excluded for the current toss-up only

    @property
    def locked(self) -> bool:
        return self.lock is not None

    def check_available(self, team_id: str):
        """Raise Conflict unless ``team_id`` could take the lock right now."""
        if team_id in self.locked_teams:
            raise Conflict("Your team is locked out of this toss-up.")
        if self.lock is not None:
            raise Conflict("Buzz already locked.")

    def try_lock(self, connection_id: str, name: str, team_id: str) -> BuzzLock:
        """First writer wins until ``clear()``."""
        self.check_available(team_id)
        self.lock = BuzzLock(connection_id, name, team_id, now_ms())
        self.interrupt_choice = None
        return self.lock

    def clear(self):
        self.lock = None
        self.interrupt_choice = None

    def set_interrupt_choice(self, interrupt: bool):
        if self.lock is None:
            raise Conflict("No active buzz.")
        self.interrupt_choice = bool(interrupt)

    def lock_out(self, team_id: str):
        self.locked_teams.add(team_id)

    def reset_lockouts(self):
        self.locked_teams = set()
