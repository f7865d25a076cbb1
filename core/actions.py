"""
Action System - Action kinds, geometry and index mapping.

An action is a tagged variant over the touch/key gestures the execution
layer can inject. RL algorithms work with integer action indices; the
ActionSpace translates indices onto a fixed 12-slot screen layout:

  0  center tap      4  left tap        8  swipe left
  1  top tap         5  swipe up        9  long-press center
  2  right tap       6  swipe right    10  back
  3  bottom tap      7  swipe down     11  home

Indices beyond 11 wrap around modulo 12.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Tuple, Dict, Any

from core.state import GameState, DEFAULT_SCREEN_WIDTH, DEFAULT_SCREEN_HEIGHT


class ActionType(IntEnum):
    TAP = 0
    LONG_PRESS = 1
    SWIPE = 2
    KEY_PRESS = 3
    MULTI_TOUCH = 4
    BACK = 5
    HOME = 6


DEFAULT_SWIPE_MS = 300
DEFAULT_LONG_PRESS_MS = 500
NUM_LAYOUT_SLOTS = 12


def _new_action_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True, eq=False)
class GameAction:
    """
    An immutable action plus its ranking metadata.

    Identity is the action_id: two actions with the same geometry are
    still different actions for de-duplication purposes. Use
    is_similar() to compare gestures.
    """
    action_type: ActionType
    x: int = 0
    y: int = 0
    end_x: int = 0
    end_y: int = 0
    duration_ms: int = 0
    key_code: int = 0
    points: Tuple[Tuple[int, int], ...] = ()

    # Metadata
    confidence: float = 0.0
    expected_reward: Optional[float] = None
    source: str = ""
    rank: int = 0
    action_index: Optional[int] = None
    algorithm_type: Optional[int] = None
    action_id: str = field(default_factory=_new_action_id)
    timestamp: float = field(default_factory=time.time)

    def __eq__(self, other):
        if not isinstance(other, GameAction):
            return NotImplemented
        return self.action_id == other.action_id

    def __hash__(self):
        return hash(self.action_id)

    # ── Factories ────────────────────────────────────────────────────────

    @classmethod
    def tap(cls, x: int, y: int, **meta) -> 'GameAction':
        return cls(ActionType.TAP, x=x, y=y, **meta)

    @classmethod
    def long_press(cls, x: int, y: int, duration_ms: int = DEFAULT_LONG_PRESS_MS,
                   **meta) -> 'GameAction':
        return cls(ActionType.LONG_PRESS, x=x, y=y, duration_ms=duration_ms, **meta)

    @classmethod
    def swipe(cls, x: int, y: int, end_x: int, end_y: int,
              duration_ms: int = DEFAULT_SWIPE_MS, **meta) -> 'GameAction':
        return cls(ActionType.SWIPE, x=x, y=y, end_x=end_x, end_y=end_y,
                   duration_ms=duration_ms, **meta)

    @classmethod
    def key_press(cls, key_code: int, **meta) -> 'GameAction':
        return cls(ActionType.KEY_PRESS, key_code=key_code, **meta)

    @classmethod
    def multi_touch(cls, points, **meta) -> 'GameAction':
        pts = tuple((int(px), int(py)) for px, py in points)
        return cls(ActionType.MULTI_TOUCH, points=pts, **meta)

    @classmethod
    def back(cls, **meta) -> 'GameAction':
        return cls(ActionType.BACK, **meta)

    @classmethod
    def home(cls, **meta) -> 'GameAction':
        return cls(ActionType.HOME, **meta)

    # ── Metadata ─────────────────────────────────────────────────────────

    @property
    def score(self) -> float:
        """Ranking score: expected reward when known, else confidence."""
        if self.expected_reward is not None:
            return self.expected_reward
        return self.confidence

    def with_metadata(self, **changes) -> 'GameAction':
        """Copy with updated metadata; keeps the action id."""
        return replace(self, **changes)

    def geometry(self) -> Tuple:
        return (int(self.action_type), self.x, self.y, self.end_x, self.end_y,
                self.duration_ms, self.key_code, self.points)

    def is_similar(self, other: Optional['GameAction'], tolerance: int = 20) -> bool:
        """Same gesture kind with coordinates within tolerance pixels."""
        if other is None or self.action_type != other.action_type:
            return False
        if self.key_code != other.key_code or len(self.points) != len(other.points):
            return False
        coords = [(self.x, other.x), (self.y, other.y),
                  (self.end_x, other.end_x), (self.end_y, other.end_y)]
        for (ax, ay), (bx, by) in zip(self.points, other.points):
            coords.extend([(ax, bx), (ay, by)])
        return all(abs(a - b) <= tolerance for a, b in coords)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action_id': self.action_id,
            'action_type': self.action_type.name,
            'x': self.x, 'y': self.y,
            'end_x': self.end_x, 'end_y': self.end_y,
            'duration_ms': self.duration_ms,
            'key_code': self.key_code,
            'points': [list(p) for p in self.points],
            'confidence': self.confidence,
            'expected_reward': self.expected_reward,
            'source': self.source,
            'rank': self.rank,
            'action_index': self.action_index,
            'algorithm_type': self.algorithm_type,
        }


class ActionSpace:
    """Bidirectional mapping between action indices and screen gestures."""

    def __init__(self, action_size: int):
        self.action_size = action_size

    def action_for_index(self, index: int, state: Optional[GameState] = None,
                         **meta) -> GameAction:
        w = state.screen_width if state is not None else DEFAULT_SCREEN_WIDTH
        h = state.screen_height if state is not None else DEFAULT_SCREEN_HEIGHT
        slot = index % NUM_LAYOUT_SLOTS
        meta.setdefault('action_index', index)

        if slot == 0:
            return GameAction.tap(w // 2, h // 2, **meta)
        if slot == 1:
            return GameAction.tap(w // 2, h // 4, **meta)
        if slot == 2:
            return GameAction.tap(w * 3 // 4, h // 2, **meta)
        if slot == 3:
            return GameAction.tap(w // 2, h * 3 // 4, **meta)
        if slot == 4:
            return GameAction.tap(w // 4, h // 2, **meta)
        if slot == 5:
            return GameAction.swipe(w // 2, h * 3 // 4, w // 2, h // 4, **meta)
        if slot == 6:
            return GameAction.swipe(w // 4, h // 2, w * 3 // 4, h // 2, **meta)
        if slot == 7:
            return GameAction.swipe(w // 2, h // 4, w // 2, h * 3 // 4, **meta)
        if slot == 8:
            return GameAction.swipe(w * 3 // 4, h // 2, w // 4, h // 2, **meta)
        if slot == 9:
            return GameAction.long_press(w // 2, h // 2, **meta)
        if slot == 10:
            return GameAction.back(**meta)
        return GameAction.home(**meta)

    def index_of(self, action: Optional[GameAction],
                 state: Optional[GameState] = None) -> Optional[int]:
        """Recover the index of an action, or None if it is off-layout."""
        if action is None:
            return None
        if action.action_index is not None:
            if 0 <= action.action_index < self.action_size:
                return action.action_index
            return None
        for index in range(min(self.action_size, NUM_LAYOUT_SLOTS)):
            candidate = self.action_for_index(index, state)
            if candidate.is_similar(action, tolerance=0):
                return index
        return None
