"""Client-side board controller.

Holds the optimistic board cache and talks to the move coordinator over HTTP.
"""

from .board import BoardState, DropEvent, MoveIntent, translate_drop
from .controller import BoardController, BoardNotice, GestureState, MoveOutcome
from .transport import MoveClient, MoveRejected

__all__ = [
    "BoardController",
    "BoardNotice",
    "BoardState",
    "DropEvent",
    "GestureState",
    "MoveClient",
    "MoveIntent",
    "MoveOutcome",
    "MoveRejected",
    "translate_drop",
]
