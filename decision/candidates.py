"""
Candidate Sources - Non-RL action proposals and the merge/rank step.

- RuleRecommender: heuristic rules (e.g. "tap the detected button")
  supplied by the surrounding application
- PatternRecommender: learns which action index worked for which
  state key, with smoothed confidence
- rank_candidates: merges every source into one ranked list
"""

import json
import logging
import os
import threading
from typing import Callable, Dict, Iterable, List, Optional

from core.actions import GameAction, ActionSpace
from core.state import GameState

logger = logging.getLogger(__name__)

RULE_CONFIDENCE = 0.8
PATTERN_CONFIDENCE = 0.65


class RuleRecommender:
    """A heuristic that may propose one action for a state."""

    source = "rule"

    def recommend(self, state: GameState) -> Optional[GameAction]:
        return None


class FunctionRule(RuleRecommender):
    """Wraps a plain callable state -> Optional[GameAction]."""

    def __init__(self, fn: Callable[[GameState], Optional[GameAction]],
                 confidence: float = RULE_CONFIDENCE, name: str = "rule"):
        self.fn = fn
        self.confidence = confidence
        self.source = name

    def recommend(self, state: GameState) -> Optional[GameAction]:
        action = self.fn(state)
        if action is None:
            return None
        confidence = action.confidence if action.confidence > 0 else self.confidence
        return action.with_metadata(confidence=confidence, source=self.source)


# ── Pattern bindings ─────────────────────────────────────────────────────

class ActionBinding:
    """How often one action index succeeded in one state key."""

    def __init__(self, action_index: int):
        self.action_index = action_index
        self.successes = 0
        self.failures = 0

    @property
    def confidence(self) -> float:
        total = self.successes + self.failures
        if total == 0:
            return 0.5
        # Pseudo-count of 2 around a 0.5 prior
        return (self.successes + 1.0) / (total + 2.0)

    def to_dict(self) -> dict:
        return {'action_index': self.action_index,
                'successes': self.successes, 'failures': self.failures}

    @classmethod
    def from_dict(cls, data: dict) -> 'ActionBinding':
        b = cls(data['action_index'])
        b.successes = data.get('successes', 0)
        b.failures = data.get('failures', 0)
        return b


class PatternRecommender:
    """
    State-key -> action-index statistics.

    Only bindings that have succeeded at least once are proposed. The
    proposal confidence is the smoothed success rate scaled by 0.65, so a
    pattern never outranks an explicit rule by confidence alone.
    """

    source = "pattern"

    def __init__(self, action_size: int, path: Optional[str] = None):
        self.action_space = ActionSpace(action_size)
        self.path = path
        self.bindings: Dict[str, Dict[int, ActionBinding]] = {}
        self._lock = threading.Lock()
        if path:
            self.load()

    def record(self, state: GameState, action_index: Optional[int], success: bool):
        if action_index is None:
            return
        with self._lock:
            per_state = self.bindings.setdefault(state.state_key, {})
            binding = per_state.setdefault(action_index, ActionBinding(action_index))
            if success:
                binding.successes += 1
            else:
                binding.failures += 1

    def recommend(self, state: GameState, count: int = 3) -> List[GameAction]:
        with self._lock:
            per_state = list(self.bindings.get(state.state_key, {}).values())
        useful = [b for b in per_state if b.successes > 0]
        useful.sort(key=lambda b: (-b.confidence, b.action_index))
        return [
            self.action_space.action_for_index(
                b.action_index, state, source=self.source,
                confidence=PATTERN_CONFIDENCE * b.confidence)
            for b in useful[:count]
        ]

    def save(self, path: Optional[str] = None):
        path = path or self.path
        if not path:
            return
        with self._lock:
            data = {key: [b.to_dict() for b in per_state.values()]
                    for key, per_state in self.bindings.items()}
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)

    def load(self, path: Optional[str] = None) -> bool:
        path = path or self.path
        if not path or not os.path.exists(path):
            return False
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            bindings = {
                key: {b.action_index: b for b in map(ActionBinding.from_dict, entries)}
                for key, entries in data.items()
            }
        except (OSError, ValueError, TypeError, KeyError) as e:
            logger.error("Could not read pattern bindings %s: %s", path, e)
            return False
        with self._lock:
            self.bindings = bindings
        return True


# ── Ranking ──────────────────────────────────────────────────────────────

def rank_candidates(candidates: Iterable[Optional[GameAction]],
                    limit: int) -> List[GameAction]:
    """
    Merge proposals into one list, best score first, at most limit long.

    Duplicates (same id, or the same gesture from another source) keep
    the highest-scoring copy. Ties keep the order sources were given in.
    Each returned action carries its final rank.
    """
    merged: List[GameAction] = []
    for action in candidates:
        if action is None:
            continue
        duplicate = None
        for i, existing in enumerate(merged):
            if existing == action or existing.is_similar(action, tolerance=0):
                duplicate = i
                break
        if duplicate is None:
            merged.append(action)
        elif action.score > merged[duplicate].score:
            merged[duplicate] = action

    merged.sort(key=lambda a: -a.score)
    return [a.with_metadata(rank=rank) for rank, a in enumerate(merged[:max(0, limit)])]
