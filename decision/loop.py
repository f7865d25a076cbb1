"""
Decision Loop - The periodic capture -> decide -> act cycle.

Phases per cycle:  IDLE -> CAPTURING -> DECIDING -> (EXECUTING | SUGGESTING) -> IDLE

Threading model:
- One worker (ThreadPoolExecutor, max_workers=1) runs cycles, so two
  cycles never overlap. A non-blocking cycle lock enforces the same rule
  for callers that drive step()/run_cycle() themselves.
- One coordinator thread owns scheduling. It reads a mailbox queue,
  submits a cycle on every tick while no cycle is in flight, and
  publishes cycle results to listeners, so listener callbacks always run
  on the coordinator, never on the worker.
- stop() stops scheduling; a cycle already running is allowed to finish.
- A cycle running longer than cycle_timeout_s triggers a watchdog
  warning (cycles are never killed).
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional

from core.actions import GameAction
from core.config import DecisionConfig
from core.events import EventChannel
from core.meta_learner import AlgorithmSelector
from core.state import GameState
from decision.candidates import RuleRecommender, PatternRecommender, rank_candidates

logger = logging.getLogger(__name__)


class LoopPhase(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    DECIDING = "deciding"
    EXECUTING = "executing"
    SUGGESTING = "suggesting"


@dataclass
class CycleResult:
    """Outcome of one decision cycle"""
    skipped: bool = False
    reason: str = ""
    state: Optional[GameState] = None
    candidates: List[GameAction] = field(default_factory=list)
    chosen: Optional[GameAction] = None
    duration_s: float = 0.0


class DecisionLoop:
    """
    Base class for Auto and Copilot mode.

    Subclasses implement _act() (what to do with the ranked candidates)
    and may add candidate sources via _extra_candidates().
    """

    name = "decision"

    def __init__(self, state_provider: Callable[[], Optional[GameState]],
                 selector: AlgorithmSelector,
                 config: Optional[DecisionConfig] = None,
                 rules: Iterable[RuleRecommender] = (),
                 patterns: Optional[PatternRecommender] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.state_provider = state_provider
        self.selector = selector
        self.config = config or DecisionConfig()
        self.rules = list(rules)
        self.patterns = patterns
        self.clock = clock

        self.phase = LoopPhase.IDLE
        self.on_cycle = EventChannel(f"{self.name}.cycle")

        self._cycle_lock = threading.Lock()
        self._last_action: Optional[GameAction] = None
        self._last_action_time = float('-inf')
        self._last_user_interaction = float('-inf')

        self._running = threading.Event()
        self._mailbox: "queue.Queue" = queue.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._coordinator: Optional[threading.Thread] = None

        # Stats
        self.cycles_run = 0
        self.cycles_skipped = 0
        self.watchdog_warnings = 0

    # ── Skip rules ───────────────────────────────────────────────────────

    def notify_user_interaction(self):
        """Pause automated decisions for the user-interaction cooldown."""
        self._last_user_interaction = self.clock()

    def _elapsed_ms(self, since: float, now: float) -> float:
        return (now - since) * 1000.0

    def _skip_reason(self, now: float) -> Optional[str]:
        cfg = self.config
        if self._elapsed_ms(self._last_user_interaction, now) < cfg.user_interaction_cooldown_ms:
            return "user_active"
        if self._elapsed_ms(self._last_action_time, now) < cfg.min_action_interval_ms:
            return "min_interval"
        return None

    def _is_repeat(self, action: GameAction, now: float) -> bool:
        if self._last_action is None:
            return False
        if self._elapsed_ms(self._last_action_time, now) >= self.config.repeat_action_cooldown_ms:
            return False
        return action == self._last_action or action.is_similar(self._last_action)

    def _mark_action(self, action: GameAction, now: Optional[float] = None):
        self._last_action = action
        self._last_action_time = self.clock() if now is None else now

    # ── Candidates ───────────────────────────────────────────────────────

    def _rule_candidates(self, state: GameState) -> List[GameAction]:
        proposals = []
        for rule in self.rules:
            try:
                action = rule.recommend(state)
            except Exception:
                logger.exception("Rule %r failed", rule)
                continue
            if action is not None:
                proposals.append(action)
        return proposals

    def _rl_candidates(self, state: GameState) -> List[GameAction]:
        algorithm = self.selector.active_algorithm()
        if algorithm is None:
            return []
        return algorithm.choose_actions(state, self.config.max_suggestions)

    def _extra_candidates(self, state: GameState) -> List[GameAction]:
        return []

    def gather_candidates(self, state: GameState) -> List[GameAction]:
        proposals = self._rule_candidates(state)
        proposals.extend(self._rl_candidates(state))
        if self.patterns is not None:
            proposals.extend(self.patterns.recommend(state))
        proposals.extend(self._extra_candidates(state))
        return rank_candidates(proposals, self.config.max_suggestions)

    # ── Cycle ────────────────────────────────────────────────────────────

    def _act(self, state: GameState, candidates: List[GameAction],
             now: float) -> CycleResult:
        raise NotImplementedError

    def run_cycle(self) -> CycleResult:
        """One full cycle. Returns a skipped result if another cycle is active."""
        if not self._cycle_lock.acquire(blocking=False):
            return CycleResult(skipped=True, reason="busy")
        started = self.clock()
        try:
            result = self._cycle(started)
        except Exception:
            logger.exception("%s cycle failed", self.name)
            result = CycleResult(skipped=True, reason="error")
        finally:
            self.phase = LoopPhase.IDLE
            self._cycle_lock.release()

        result.duration_s = self.clock() - started
        if result.skipped:
            self.cycles_skipped += 1
        else:
            self.cycles_run += 1
        return result

    def _cycle(self, now: float) -> CycleResult:
        reason = self._skip_reason(now)
        if reason:
            return CycleResult(skipped=True, reason=reason)

        self.phase = LoopPhase.CAPTURING
        state = self.state_provider()
        if state is None:
            return CycleResult(skipped=True, reason="no_state")

        self.phase = LoopPhase.DECIDING
        candidates = self.gather_candidates(state)
        return self._act(state, candidates, now)

    def step(self) -> CycleResult:
        """Run a cycle on the calling thread and publish its result."""
        result = self.run_cycle()
        self.on_cycle.publish(result)
        return result

    # ── Background operation ─────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self):
        if self._running.is_set():
            return
        self._running.set()
        self._mailbox = queue.Queue()
        self._executor = ThreadPoolExecutor(max_workers=1,
                                            thread_name_prefix=f"{self.name}-worker")
        self._coordinator = threading.Thread(target=self._coordinate,
                                             name=f"{self.name}-coordinator",
                                             daemon=True)
        self._coordinator.start()
        logger.info("%s mode started", self.name)

    def stop(self, wait: bool = True):
        if not self._running.is_set():
            return
        self._running.clear()
        self._mailbox.put(('stop', None))
        # A cycle listener calling stop() runs on the coordinator itself.
        on_coordinator = threading.current_thread() is self._coordinator
        if self._coordinator is not None and not on_coordinator:
            self._coordinator.join()
        if self._executor is not None:
            self._executor.shutdown(wait=wait and not on_coordinator)
        self._coordinator = None
        self._executor = None
        logger.info("%s mode stopped", self.name)

    def _worker_cycle(self):
        result = self.run_cycle()
        self._mailbox.put(('result', result))

    def _coordinate(self):
        interval = self.config.decision_interval_ms / 1000.0
        in_flight: Optional[Future] = None
        submitted_at = 0.0
        warned = False

        while self._running.is_set():
            try:
                kind, payload = self._mailbox.get(timeout=interval)
            except queue.Empty:
                kind, payload = 'tick', None

            if kind == 'stop':
                break
            if kind == 'result':
                self.on_cycle.publish(payload)
                continue

            if in_flight is not None and not in_flight.done():
                elapsed = self.clock() - submitted_at
                if elapsed > self.config.cycle_timeout_s and not warned:
                    self.watchdog_warnings += 1
                    warned = True
                    logger.warning("%s cycle running for %.1fs (phase %s)",
                                   self.name, elapsed, self.phase.value)
                continue

            in_flight = self._executor.submit(self._worker_cycle)
            submitted_at = self.clock()
            warned = False
