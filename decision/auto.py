"""
Auto Mode - Execute the best candidate every cycle and learn from the outcome.
"""

import logging
from collections import OrderedDict, deque
from typing import Callable, Dict, List, Optional, Tuple, Union

from core.actions import GameAction
from core.events import EventChannel
from core.reward import ActionReward
from core.state import GameState
from decision.loop import DecisionLoop, CycleResult, LoopPhase

logger = logging.getLogger(__name__)

SUCCESS_RATE_ALPHA = 0.1


class AutoModeManager(DecisionLoop):
    """
    Executes the top-ranked candidate if its expected reward is positive.

    The executor callback performs the action and returns True/False when
    the outcome is known immediately, or None when it will be reported
    later through report_outcome().
    """

    name = "auto"

    def __init__(self, *args,
                 executor: Optional[Callable[[GameAction], Optional[bool]]] = None,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self.executor = executor
        self.recent_actions: deque = deque(maxlen=self.config.max_recent_actions)
        self.pending: "OrderedDict[str, Tuple[GameState, GameAction]]" = OrderedDict()
        self.success_rate = 0.0
        self.actions_executed = 0
        self.on_action = EventChannel("auto.action")
        self.on_outcome = EventChannel("auto.outcome")

    def _rl_candidates(self, state: GameState) -> List[GameAction]:
        # A single epsilon-greedy pick keeps exploration annealing live.
        algorithm = self.selector.active_algorithm()
        if algorithm is None:
            return []
        return [algorithm.choose_action(state)]

    def _act(self, state: GameState, candidates: List[GameAction],
             now: float) -> CycleResult:
        if not candidates:
            return CycleResult(reason="no_candidates", state=state)

        best = candidates[0]
        if self._is_repeat(best, now):
            return CycleResult(skipped=True, reason="repeat", state=state,
                               candidates=candidates)
        if best.score <= 0:
            return CycleResult(reason="no_positive_candidate", state=state,
                               candidates=candidates)

        self.phase = LoopPhase.EXECUTING
        self.pending[best.action_id] = (state, best)
        while len(self.pending) > self.config.max_recent_actions:
            evicted_id, _ = self.pending.popitem(last=False)
            logger.warning("Dropping unreported outcome for action %s", evicted_id)
        self.recent_actions.append(best)
        self._mark_action(best, now)
        self.actions_executed += 1
        self.on_action.publish(best)

        if self.executor is not None:
            try:
                outcome = self.executor(best)
            except Exception:
                logger.exception("Executing %s failed", best.action_type.name)
                outcome = False
            if outcome is not None:
                self.report_outcome(best, outcome)

        return CycleResult(state=state, candidates=candidates, chosen=best)

    def _credited_type(self, action: GameAction) -> Optional[int]:
        if action.algorithm_type is not None:
            return action.algorithm_type
        if action.action_index is not None:
            active = self.selector.active_type()
            return int(active) if active is not None else None
        return None

    def report_outcome(self, action: GameAction, outcome: Union[bool, ActionReward, float],
                       next_state: Optional[GameState] = None) -> bool:
        """Close the loop for an executed action. False if it was not pending."""
        if isinstance(outcome, bool):
            reward = ActionReward.from_outcome(outcome)
        else:
            try:
                reward = ActionReward.coerce(outcome)
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed outcome %r for action %s",
                               outcome, action.action_id)
                return False

        entry = self.pending.pop(action.action_id, None)
        if entry is None:
            logger.warning("Outcome reported for unknown action %s", action.action_id)
            return False
        state, executed = entry

        self.selector.record_outcome(self._credited_type(executed), state, executed,
                                     reward, next_state)
        if self.patterns is not None:
            self.patterns.record(state, executed.action_index, reward.succeeded)

        hit = 1.0 if reward.succeeded else 0.0
        self.success_rate = (1 - SUCCESS_RATE_ALPHA) * self.success_rate + SUCCESS_RATE_ALPHA * hit
        self.on_outcome.publish(executed, reward)
        return True

    def stats(self) -> Dict:
        return {
            'actions_executed': self.actions_executed,
            'pending': len(self.pending),
            'success_rate': self.success_rate,
            'cycles_run': self.cycles_run,
            'cycles_skipped': self.cycles_skipped,
        }
