"""Per-toss-up score deltas for a room.

Each row holds, for every team, the points gained on that toss-up under
``p`` (benefit of an opponent's interrupt), ``tu`` (toss-up correct) and
``b`` (bonus), plus the team's running score as of the row.
"""
from typing import Dict, Iterable, List, Optional

from errors import InvalidInput

DELTA_FIELDS = ("p", "tu", "b")


class LedgerRow:
    def __init__(self, num: int, teams: Iterable):
        self.num = num
        self.teams: Dict[str, Dict[str, int]] = {
            team.id: {"p": 0, "tu": 0, "b": 0, "score": team.score} for team in teams
        }

    def to_dict(self) -> dict:
        return {"num": self.num, "teams": {tid: dict(cell) for tid, cell in self.teams.items()}}


class ScoringLedger:
    def __init__(self):
        self.tossup_number = 0
        self.rows: List[LedgerRow] = []
        self._current: Optional[LedgerRow] = None

    @property
    def current_row(self) -> Optional[LedgerRow]:
        return self._current

    def start_row(self, teams: Iterable) -> LedgerRow:
        self.tossup_number += 1
        row = LedgerRow(self.tossup_number, teams)
        self.rows.append(row)
        self._current = row
        return row

    def add_delta(self, team_id: str, field: str, points: int):
        if field not in DELTA_FIELDS:
            raise ValueError(f"Unknown ledger field: {field}")
        # A deleted current row swallows further deltas; team totals still move.
        if self._current is None or team_id not in self._current.teams:
            return
        self._current.teams[team_id][field] += points

    def refresh_scores(self, teams: Iterable):
        if self._current is None:
            return
        for team in teams:
            if team.id in self._current.teams:
                self._current.teams[team.id]["score"] = team.score

    def delete_row(self, num: int) -> LedgerRow:
        """Drop a row. Numbering and historical scores are left as they are."""
        for i, row in enumerate(self.rows):
            if row.num == num:
                del self.rows[i]
                if row is self._current:
                    self._current = None
                return row
        raise InvalidInput(f"No ledger row #{num}.")

    def to_dict(self) -> dict:
        return {"tossup_number": self.tossup_number, "rows": [row.to_dict() for row in self.rows]}
