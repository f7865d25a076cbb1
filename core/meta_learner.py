"""
Meta-Learner - Per-algorithm performance tracking and hyperparameter adaptation.

For every algorithm type the meta-learner keeps an incrementally
updated mean reward, trial and success counters, and its own copy of
the three tunable hyperparameters. Every `adaptation_interval` trials
(once at least `min_trials` were recorded) the hyperparameters are
re-tuned by threshold rules:

- mean reward > 0.8  -> learning rate x0.95   (floor 0.0001)
- mean reward < 0.3  -> learning rate x1.05   (ceiling 0.5)
- success rate > 0.7 -> exploration x0.95     (floor 0.01)
- success rate < 0.3 -> exploration x1.05     (ceiling 0.9)
- PPO / DQN          -> discount nudged up    (ceiling 0.999)

AlgorithmSelector binds a meta-learner to the algorithm instances of one
game and closes the feedback loop for them.
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Tuple

from core.config import MetaLearningConfig
from core.reward import ActionReward
from rl.base import AlgorithmType, RLAlgorithm

logger = logging.getLogger(__name__)

# (learning rate, discount factor, exploration rate)
DEFAULT_HYPERPARAMETERS: Dict[AlgorithmType, Tuple[float, float, float]] = {
    AlgorithmType.PPO: (0.0003, 0.99, 0.2),
    AlgorithmType.DQN: (0.001, 0.99, 0.1),
    AlgorithmType.SARSA: (0.1, 0.95, 0.1),
    AlgorithmType.Q_LEARNING: (0.1, 0.95, 0.1),
}

DEFAULT_ALGORITHM = AlgorithmType.Q_LEARNING

LR_FLOOR, LR_CEILING = 0.0001, 0.5
EXPLORATION_FLOOR, EXPLORATION_CEILING = 0.01, 0.9
DISCOUNT_CEILING = 0.999


@dataclass
class PerformanceRecord:
    """Running performance of one algorithm type"""
    algorithm_type: int
    learning_rate: float
    discount_factor: float
    exploration_rate: float
    trials: int = 0
    successes: int = 0
    average_reward: float = 0.0
    adaptations: int = 0

    @property
    def success_rate(self) -> float:
        if self.trials == 0:
            return 0.0
        return self.successes / self.trials

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['success_rate'] = self.success_rate
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'PerformanceRecord':
        data = {k: v for k, v in data.items() if k != 'success_rate'}
        return cls(**data)


class MetaLearner:
    """Selects among algorithm types and tunes their hyperparameters"""

    def __init__(self, config: Optional[MetaLearningConfig] = None,
                 path: Optional[str] = None):
        self.config = config or MetaLearningConfig()
        self.path = path
        self._lock = threading.RLock()
        self.records: Dict[AlgorithmType, PerformanceRecord] = {}
        self.forced_algorithm: Optional[AlgorithmType] = None
        self.reset()
        if self.config.forced_algorithm is not None:
            self.set_forced_algorithm(self.config.forced_algorithm)
        if self.config.persist and path:
            self.load()

    def reset(self):
        """Forget all performance data; hyperparameters back to defaults."""
        with self._lock:
            self.records = {
                t: PerformanceRecord(int(t), *DEFAULT_HYPERPARAMETERS[t])
                for t in AlgorithmType
            }

    def record(self, algorithm_type) -> PerformanceRecord:
        return self.records[AlgorithmType(int(algorithm_type))]

    def record_trial(self, algorithm_type, reward: float, success: bool) -> bool:
        """Add one outcome. Returns True if an adaptation pass ran."""
        with self._lock:
            rec = self.record(algorithm_type)
            rec.trials += 1
            if success:
                rec.successes += 1
            rec.average_reward += (reward - rec.average_reward) / rec.trials

            if (self.config.adaptive_enabled
                    and rec.trials >= self.config.min_trials
                    and rec.trials % self.config.adaptation_interval == 0):
                self.adapt(algorithm_type)
                return True
        return False

    def adapt(self, algorithm_type):
        with self._lock:
            rec = self.record(algorithm_type)
            if rec.average_reward > 0.8:
                rec.learning_rate = max(LR_FLOOR, rec.learning_rate * 0.95)
            elif rec.average_reward < 0.3:
                rec.learning_rate = min(LR_CEILING, rec.learning_rate * 1.05)

            if rec.success_rate > 0.7:
                rec.exploration_rate = max(EXPLORATION_FLOOR, rec.exploration_rate * 0.95)
            elif rec.success_rate < 0.3:
                rec.exploration_rate = min(EXPLORATION_CEILING, rec.exploration_rate * 1.05)

            if AlgorithmType(rec.algorithm_type) in (AlgorithmType.PPO, AlgorithmType.DQN):
                rec.discount_factor = min(
                    DISCOUNT_CEILING,
                    rec.discount_factor + self.config.meta_learning_rate * 0.01)

            rec.adaptations += 1
        logger.debug("Adapted %s: lr=%.5f gamma=%.4f eps=%.3f (avg=%.3f, success=%.2f)",
                     AlgorithmType(rec.algorithm_type).name, rec.learning_rate,
                     rec.discount_factor, rec.exploration_rate,
                     rec.average_reward, rec.success_rate)

    def set_forced_algorithm(self, algorithm_type):
        """Pin selection to one type; None restores performance-based choice."""
        with self._lock:
            self.forced_algorithm = (None if algorithm_type is None
                                     else AlgorithmType(int(algorithm_type)))
        if self.forced_algorithm is not None:
            logger.info("Algorithm selection forced to %s", self.forced_algorithm.name)

    def get_best_algorithm(self) -> AlgorithmType:
        with self._lock:
            if self.forced_algorithm is not None:
                return self.forced_algorithm
            eligible = [r for r in self.records.values()
                        if r.trials >= self.config.min_trials]
            if not eligible:
                return DEFAULT_ALGORITHM
            best = max(eligible, key=lambda r: (r.average_reward, -r.algorithm_type))
            return AlgorithmType(best.algorithm_type)

    def hyperparameters(self, algorithm_type) -> Tuple[float, float, float]:
        with self._lock:
            rec = self.record(algorithm_type)
            return rec.learning_rate, rec.discount_factor, rec.exploration_rate

    def apply_to(self, algorithm: RLAlgorithm):
        """Push this type's tuned hyperparameters into an algorithm instance."""
        lr, df, er = self.hyperparameters(algorithm.algorithm_type)
        algorithm.learning_rate = lr
        algorithm.discount_factor = df
        algorithm.exploration_rate = er

    def performance_summary(self) -> Dict[str, Dict]:
        with self._lock:
            summary = {AlgorithmType(t).name: r.to_dict() for t, r in self.records.items()}
        summary['best'] = {'algorithm': self.get_best_algorithm().name,
                           'forced': self.forced_algorithm is not None}
        return summary

    # ── Persistence (opt-in) ─────────────────────────────────────────────

    def save(self, path: Optional[str] = None) -> bool:
        path = path or self.path
        if not path or not self.config.persist:
            return False
        with self._lock:
            data = {'records': [r.to_dict() for r in self.records.values()]}
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        return True

    def load(self, path: Optional[str] = None) -> bool:
        path = path or self.path
        if not path or not os.path.exists(path):
            return False
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            records = [PerformanceRecord.from_dict(d) for d in data.get('records', [])]
        except (OSError, ValueError, TypeError) as e:
            logger.error("Could not read meta-learner state %s: %s", path, e)
            return False
        with self._lock:
            for rec in records:
                try:
                    self.records[AlgorithmType(rec.algorithm_type)] = rec
                except ValueError:
                    logger.warning("Ignoring unknown algorithm type %r", rec.algorithm_type)
        return True


class AlgorithmSelector:
    """
    The algorithm instances of one game, driven by a shared meta-learner.

    record_outcome() is the single feedback entry point: it trains the
    algorithm that proposed the action, updates its performance record
    and, after an adaptation pass, pushes the re-tuned hyperparameters
    back into that algorithm.
    """

    def __init__(self, game_id: str, meta_learner: MetaLearner):
        self.game_id = game_id
        self.meta_learner = meta_learner
        self.algorithms: Dict[AlgorithmType, RLAlgorithm] = {}

    def register(self, algorithm: RLAlgorithm) -> RLAlgorithm:
        self.algorithms[AlgorithmType(int(algorithm.algorithm_type))] = algorithm
        return algorithm

    def get(self, algorithm_type) -> Optional[RLAlgorithm]:
        if algorithm_type is None:
            return None
        try:
            return self.algorithms.get(AlgorithmType(int(algorithm_type)))
        except ValueError:
            return None

    def active_type(self) -> Optional[AlgorithmType]:
        if not self.algorithms:
            return None
        best = self.meta_learner.get_best_algorithm()
        if best in self.algorithms:
            return best
        if DEFAULT_ALGORITHM in self.algorithms:
            return DEFAULT_ALGORITHM
        return next(iter(self.algorithms))

    def active_algorithm(self) -> Optional[RLAlgorithm]:
        active = self.active_type()
        return self.algorithms[active] if active is not None else None

    def record_outcome(self, algorithm_type, state, action, reward,
                       next_state=None) -> bool:
        """Feed an observed reward back. Returns True if the algorithm learned from it."""
        try:
            reward = ActionReward.coerce(reward)
        except (TypeError, ValueError):
            logger.warning("Ignoring malformed reward %r for %s", reward, self.game_id)
            return False
        algorithm = self.get(algorithm_type)
        learned = False
        if algorithm is not None:
            done = next_state is None
            learned = algorithm.update(state, action,
                                       state if done else next_state, reward, done)

        if algorithm_type is None:
            return learned
        try:
            adapted = self.meta_learner.record_trial(algorithm_type, reward.value,
                                                     reward.succeeded)
        except ValueError:
            logger.warning("Outcome for unknown algorithm type %r", algorithm_type)
            return learned
        if adapted and algorithm is not None:
            self.meta_learner.apply_to(algorithm)
        return learned
