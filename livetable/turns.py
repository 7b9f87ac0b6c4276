"""Strict turn order over the current session's roster.

States: TURN_ACTIVE(current_turn) within ROUND(round_number), plus the
system-wide ``enabled`` flag.

    advance()        mark current as played, move to (current + 1) % n;
                     wrapping to 0 is a rollover: round += 1, played set
                     cleared, clock += 5 minutes.
    set_turn(i)      jump to a valid index; otherwise no-op.
    reset()          turn 0, round 1, nobody played, enabled.
    toggle_enabled() flip the flag.

The engine never looks at ``enabled`` itself. Gating nextTurn/skipTurn on
it is the command layer's job; setTurn/reset keep working while it is off.

An empty roster is not an error: advance() returns None and leaves the
state untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from livetable.models import ROUND_CLOCK_STEP, TurnSystem
from livetable.session import SessionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvanceResult:
    new_round: bool
    current_character: dict[str, Any]
    round_number: int


class TurnEngine:
    def __init__(self, store: SessionStore) -> None:
        self._store = store

    @property
    def state(self) -> TurnSystem:
        return self._store.turn_system

    def current_character(self) -> dict[str, Any] | None:
        return self._store.character_at(self.state.current_turn)

    def advance(self) -> AdvanceResult | None:
        roster = self._store.roster()
        if not roster:
            return None

        ts = self.state
        if ts.current_turn not in ts.played_this_round:
            ts.played_this_round = sorted([*ts.played_this_round, ts.current_turn])

        ts.current_turn = (ts.current_turn + 1) % len(roster)

        new_round = ts.current_turn == 0
        if new_round:
            ts.round_number += 1
            ts.played_this_round = []
            clock = self._store.clock.advance(ROUND_CLOCK_STEP, round=ts.round_number)
            self._store.set_clock(clock)
            logger.info("Round %d begins (clock %s)", ts.round_number, clock.date.isoformat())

        return AdvanceResult(
            new_round=new_round,
            current_character=roster[ts.current_turn],
            round_number=ts.round_number,
        )

    def set_turn(self, index: Any) -> bool:
        if self._store.character_at(index) is None:
            return False
        self.state.current_turn = index
        return True

    def reset(self) -> None:
        self._store.turn_system = TurnSystem()

    def toggle_enabled(self) -> bool:
        ts = self.state
        ts.enabled = not ts.enabled
        return ts.enabled
