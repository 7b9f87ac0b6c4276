"""Durable snapshot storage.

The whole game is persisted as one record:

    {
      "sessionsById":     {<session id>: <session dict>, ...},
      "currentSessionId": "<session id>",
      "chatLog":          [<message>, ...],   # at most 500
      "oocLog":           [<message>, ...],   # at most 200
      "turnSystem":       {"enabled", "currentTurn", "roundNumber", "playedThisRound"},
      "clock":            {"date", "round"}
    }

Backends:
  FileSnapshotStore   data/rp.json, written atomically (temp file + rename).
  RedisSnapshotStore  one JSON string under "livetable:snapshot"; chosen
                      when REDIS_URL is set.

Legacy records holding only the sessions map (no wrapper) still load:
parse_record() treats them as sessionsById with empty logs and default
turn/clock state.
"""

# Adapters and record helpers used by the session store.

from .core import (  # noqa: F401
    SNAPSHOT_FILENAME,
    SNAPSHOT_KEY,
    SnapshotStore,
    default_record,
    open_snapshot_store,
    parse_record,
)

from .files import FileSnapshotStore  # noqa: F401
