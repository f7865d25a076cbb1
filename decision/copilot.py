"""
Copilot Mode - Suggest ranked actions and learn from the user's ratings.

Nothing is executed until the user accepts a suggestion. Ratings in
[0, 1] are remembered per (state key, action id); an action rated above
the historical threshold is suggested again when the same state key
comes back, with its confidence blended with the knowledge prior for
the game:

    confidence = 0.8 * rating + 0.2 * domain_confidence(game_id)

A rating r is fed to the learning side as reward 2r - 1, so a poor
rating is a penalty rather than a small positive reward.
"""

import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple

from core.actions import GameAction
from core.events import EventChannel
from core.knowledge import KnowledgeMemory
from core.reward import ActionReward
from core.state import GameState
from decision.loop import DecisionLoop, CycleResult, LoopPhase

logger = logging.getLogger(__name__)

RATING_WEIGHT = 0.8
PRIOR_WEIGHT = 0.2


class CopilotManager(DecisionLoop):
    """Surfaces up to max_suggestions ranked actions per cycle."""

    name = "copilot"

    def __init__(self, *args,
                 executor: Optional[Callable[[GameAction], Optional[bool]]] = None,
                 knowledge: Optional[KnowledgeMemory] = None,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self.executor = executor
        self.knowledge = knowledge
        self.suggestions: List[GameAction] = []
        self.history: Dict[str, Dict[str, Tuple[GameAction, float]]] = {}
        self._suggested: Dict[str, Tuple[GameState, GameAction]] = {}
        self._lock = threading.RLock()
        self.on_suggestions = EventChannel("copilot.suggestions")
        self.suggestions_accepted = 0

    # ── Candidates ───────────────────────────────────────────────────────

    def _extra_candidates(self, state: GameState) -> List[GameAction]:
        prior = 0.0
        if self.knowledge is not None:
            self.knowledge.maybe_recalculate()
            prior = self.knowledge.domain_confidence(state.game_id)
        with self._lock:
            rated = list(self.history.get(state.state_key, {}).values())
        return [
            action.with_metadata(
                confidence=RATING_WEIGHT * rating + PRIOR_WEIGHT * prior,
                expected_reward=None, source="history")
            for action, rating in rated
            if rating > self.config.historical_rating_threshold
        ]

    def _act(self, state: GameState, candidates: List[GameAction],
             now: float) -> CycleResult:
        self.phase = LoopPhase.SUGGESTING
        with self._lock:
            self.suggestions = list(candidates)
            # Only the current suggestions and rated actions stay resolvable.
            rated = {action_id for bucket in self.history.values() for action_id in bucket}
            self._suggested = {action_id: entry for action_id, entry in self._suggested.items()
                               if action_id in rated}
            for action in candidates:
                self._suggested[action.action_id] = (state, action)
        self.on_suggestions.publish(list(candidates))
        return CycleResult(state=state, candidates=candidates)

    # ── Feedback ─────────────────────────────────────────────────────────

    def _lookup(self, action: GameAction) -> Optional[Tuple[GameState, GameAction]]:
        with self._lock:
            return self._suggested.get(action.action_id)

    def rating(self, state_key: str, action_id: str) -> Optional[float]:
        with self._lock:
            entry = self.history.get(state_key, {}).get(action_id)
        return entry[1] if entry else None

    def report_effectiveness(self, action: GameAction, rating: float,
                             next_state: Optional[GameState] = None) -> bool:
        """Store the user's rating and feed it back. False for unknown actions."""
        entry = self._lookup(action)
        if entry is None:
            logger.warning("Rating for an action that was never suggested: %s",
                           action.action_id)
            return False
        state, suggested = entry
        rating = min(1.0, max(0.0, float(rating)))

        with self._lock:
            self.history.setdefault(state.state_key, {})[suggested.action_id] = (suggested, rating)

        reward = ActionReward(2.0 * rating - 1.0, rating > 0.5)
        credited = suggested.algorithm_type
        if credited is None and suggested.action_index is not None:
            active = self.selector.active_type()
            credited = int(active) if active is not None else None
        self.selector.record_outcome(credited, state, suggested, reward, next_state)
        if self.patterns is not None:
            self.patterns.record(state, suggested.action_index, reward.succeeded)
        return True

    def accept_suggestion(self, action: GameAction) -> Optional[bool]:
        """Execute a suggestion the user accepted. Returns the outcome if known."""
        entry = self._lookup(action)
        if entry is None:
            logger.warning("Accepted action was never suggested: %s", action.action_id)
            return None
        _, suggested = entry
        self._mark_action(suggested)
        self.suggestions_accepted += 1

        outcome = None
        if self.executor is not None:
            try:
                outcome = self.executor(suggested)
            except Exception:
                logger.exception("Executing %s failed", suggested.action_type.name)
                outcome = False
        if outcome is not None:
            self.report_effectiveness(suggested, 1.0 if outcome else 0.0)
        return outcome

    def stats(self) -> Dict:
        with self._lock:
            rated = sum(len(v) for v in self.history.values())
        return {
            'suggestions': len(self.suggestions),
            'suggestions_accepted': self.suggestions_accepted,
            'rated_actions': rated,
            'cycles_run': self.cycles_run,
            'cycles_skipped': self.cycles_skipped,
        }
