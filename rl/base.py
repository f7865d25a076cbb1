"""
RL Algorithm Contract - Shared machinery for every learning variant.

All variants approximate their value or policy function with linear maps
over the state feature vector, stored as named float32 arrays. The flat weight
vector is the concatenation of those arrays in declaration order. The
base class provides:
- Epsilon-greedy action selection with multiplicative exploration decay
- Top-k ranking with rank/score metadata
- Transition recording through the experience replay buffer
- A finite-weight guard that rolls back diverging training steps
- Offline training against an environment
- Binary save/load of the flat weight vector + hyperparameters

Variants implement `_build_params`, `_action_scores` and `_learn`.
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Dict, List, Optional, Union

import numpy as np

from core.actions import ActionSpace, GameAction
from core.config import AlgorithmConfig
from core.reward import ActionReward
from core.state import GameState
from rl.replay_buffer import ReplayBuffer, Experience
from storage.model_storage import encode_model, decode_model, ModelFormatError

logger = logging.getLogger(__name__)


class AlgorithmType(IntEnum):
    """Integer tags, also written into model file headers."""
    PPO = 0
    DQN = 1
    SARSA = 2
    Q_LEARNING = 3


def softmax(x: np.ndarray) -> np.ndarray:
    z = x - np.max(x)
    e = np.exp(z)
    return e / (np.sum(e) + 1e-8)


def _f32(value: float) -> float:
    """Round to float32 so hyperparameters survive the binary format exactly."""
    return float(np.float32(value))


class RLAlgorithm(ABC):
    """
    Base class for DQN, PPO, SARSA and Q-Learning.

    Weights and the replay buffer are guarded by a re-entrant lock, so a
    live choose_action() never observes a half-applied training step.
    """

    algorithm_type: AlgorithmType = None
    DEFAULT_LEARNING_RATE = 0.1
    DEFAULT_DISCOUNT_FACTOR = 0.95
    DEFAULT_EXPLORATION_RATE: Optional[float] = None  # None -> config.epsilon_start

    def __init__(self, state_size: Optional[int] = None,
                 action_size: Optional[int] = None,
                 config: Optional[AlgorithmConfig] = None):
        self.config = config or AlgorithmConfig()
        self._lock = threading.RLock()
        self._rng = np.random.default_rng(self.config.seed)

        self.state_size = 0
        self.action_size = 0
        self.action_space = ActionSpace(self.config.action_size)
        self._params: Dict[str, np.ndarray] = {}
        self._initialized = False

        self.replay_buffer = ReplayBuffer(
            capacity=self.config.replay_capacity,
            sample_with_replacement=self.config.sample_with_replacement,
            rng=self._rng,
        )

        if self.DEFAULT_EXPLORATION_RATE is None:
            self._initial_exploration = _f32(self.config.epsilon_start)
        else:
            self._initial_exploration = _f32(self.DEFAULT_EXPLORATION_RATE)
        self._learning_rate = _f32(self.DEFAULT_LEARNING_RATE)
        self._discount_factor = _f32(self.DEFAULT_DISCOUNT_FACTOR)
        self._exploration_rate = self._initial_exploration
        self.epsilon_decay = self.config.epsilon_decay
        self.epsilon_min = _f32(self.config.epsilon_min)

        # Stats
        self.updates = 0
        self.train_steps = 0
        self.rejected_steps = 0
        self.max_buffer_size = 0

        if state_size is not None and action_size is not None:
            self.initialize(state_size, action_size)

    @property
    def name(self) -> str:
        return self.algorithm_type.name

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ── Hyperparameters ──────────────────────────────────────────────────

    @property
    def learning_rate(self) -> float:
        return self._learning_rate

    @learning_rate.setter
    def learning_rate(self, value: float):
        self._learning_rate = _f32(value)

    @property
    def discount_factor(self) -> float:
        return self._discount_factor

    @discount_factor.setter
    def discount_factor(self, value: float):
        self._discount_factor = _f32(value)

    @property
    def exploration_rate(self) -> float:
        return self._exploration_rate

    @exploration_rate.setter
    def exploration_rate(self, value: float):
        self._exploration_rate = _f32(min(1.0, max(0.0, value)))

    def get_learning_rate(self) -> float:
        return self.learning_rate

    def set_learning_rate(self, value: float):
        self.learning_rate = value

    def get_discount_factor(self) -> float:
        return self.discount_factor

    def set_discount_factor(self, value: float):
        self.discount_factor = value

    def get_exploration_rate(self) -> float:
        return self.exploration_rate

    def set_exploration_rate(self, value: float):
        self.exploration_rate = value

    # ── Setup ────────────────────────────────────────────────────────────

    def initialize(self, state_size: int, action_size: int) -> bool:
        """Allocate weights. A repeat call with the same dims keeps learned data."""
        if state_size <= 0 or action_size <= 0:
            logger.error("%s: invalid dimensions %dx%d", self.name, state_size, action_size)
            return False
        with self._lock:
            if (self._initialized and state_size == self.state_size
                    and action_size == self.action_size):
                return True
            self.state_size = state_size
            self.action_size = action_size
            self.action_space = ActionSpace(action_size)
            self._params = self._build_params()
            self.replay_buffer.clear()
            self._clear_episode_state()
            self._on_params_replaced()
            self._initialized = True
        logger.debug("%s initialized: state=%d actions=%d",
                     self.name, state_size, action_size)
        return True

    def reset(self):
        """Fresh weights, empty buffer, initial exploration; dims unchanged."""
        with self._lock:
            if self._initialized:
                self._params = self._build_params()
                self._on_params_replaced()
            self.replay_buffer.clear()
            self._clear_episode_state()
            self._exploration_rate = self._initial_exploration
            self.train_steps = 0
            self.updates = 0

    # ── Variant hooks ────────────────────────────────────────────────────

    @abstractmethod
    def _build_params(self) -> Dict[str, np.ndarray]:
        """Return freshly initialized named parameter arrays."""

    @abstractmethod
    def _action_scores(self, features: np.ndarray) -> np.ndarray:
        """Per-action estimated value (Q-values or policy probabilities)."""

    @abstractmethod
    def _learn(self, experience: Experience) -> bool:
        """Learn from a newly stored transition. Returns True if weights moved."""

    def _exploit_index(self, features: np.ndarray, scores: np.ndarray) -> int:
        return int(np.argmax(scores))

    def _confidences(self, scores: np.ndarray) -> np.ndarray:
        return softmax(scores)

    def _on_params_replaced(self):
        pass

    def _clear_episode_state(self):
        pass

    def _linear(self, features: np.ndarray, w: str = 'w', b: str = 'b') -> np.ndarray:
        return self._params[w] @ features + self._params[b]

    def _init_matrix(self, rows: int, cols: int, scale: float = 0.01) -> np.ndarray:
        return (self._rng.standard_normal((rows, cols)) * scale).astype(np.float32)

    # ── Input validation ─────────────────────────────────────────────────

    def _features(self, state) -> Optional[np.ndarray]:
        if state is None or not self._initialized:
            return None
        if isinstance(state, GameState):
            features = state.features
        else:
            try:
                features = np.asarray(state, dtype=np.float32).reshape(-1)
            except (TypeError, ValueError):
                return None
        if features.shape[0] != self.state_size or not np.all(np.isfinite(features)):
            return None
        return features

    def _action_index(self, action: Union[GameAction, int, None],
                      state=None) -> Optional[int]:
        if isinstance(action, GameAction):
            return self.action_space.index_of(
                action, state if isinstance(state, GameState) else None)
        if isinstance(action, (int, np.integer)) and not isinstance(action, bool):
            if 0 <= int(action) < self.action_size:
                return int(action)
        return None

    def _make_action(self, index: int, state, **meta) -> GameAction:
        game_state = state if isinstance(state, GameState) else None
        return self.action_space.action_for_index(
            index, game_state, source=self.name,
            algorithm_type=int(self.algorithm_type), **meta)

    def random_action(self, state=None) -> GameAction:
        size = self.action_size or self.config.action_size
        index = int(self._rng.integers(size))
        return self._make_action(index, state, confidence=1.0 / size)

    # ── Action selection ─────────────────────────────────────────────────

    def _decay_exploration(self):
        if self._exploration_rate > self.epsilon_min:
            self._exploration_rate = _f32(
                max(self.epsilon_min, self._exploration_rate * self.epsilon_decay))

    def choose_action(self, state) -> GameAction:
        """Epsilon-greedy selection; exploration decays after every call."""
        features = self._features(state)
        if features is None:
            logger.warning("%s: invalid state, falling back to a random action", self.name)
            return self.random_action(state)

        with self._lock:
            scores = self._action_scores(features)
            if self._rng.random() < self._exploration_rate:
                index = int(self._rng.integers(self.action_size))
            else:
                index = self._exploit_index(features, scores)
            self._decay_exploration()
            confidence = float(self._confidences(scores)[index])

        return self._make_action(index, state, confidence=confidence,
                                 expected_reward=float(scores[index]))

    def choose_actions(self, state, count: int) -> List[GameAction]:
        """Top-count actions by estimated value, best first."""
        features = self._features(state)
        if features is None:
            logger.warning("%s: invalid state for ranking", self.name)
            return [self.random_action(state)] if count > 0 else []

        with self._lock:
            scores = self._action_scores(features)
            confidences = self._confidences(scores)

        order = sorted(range(self.action_size), key=lambda i: (-scores[i], i))
        return [
            self._make_action(index, state, rank=rank,
                              confidence=float(confidences[index]),
                              expected_reward=float(scores[index]))
            for rank, index in enumerate(order[:max(0, count)])
        ]

    # ── Learning ─────────────────────────────────────────────────────────

    def update(self, state, action, next_state, reward, done: Optional[bool] = None) -> bool:
        """
        Record one transition and learn from it.

        Returns False when the input is invalid or when the resulting
        training step produced non-finite weights and was rolled back.
        """
        features = self._features(state)
        next_features = self._features(next_state)
        index = self._action_index(action, state)
        if features is None or next_features is None or index is None:
            logger.warning("%s: ignoring update with invalid state or action", self.name)
            return False

        try:
            reward = ActionReward.coerce(reward)
        except (TypeError, ValueError):
            logger.warning("%s: ignoring malformed reward %r", self.name, reward)
            return False
        if not np.isfinite(reward.value):
            logger.warning("%s: ignoring non-finite reward", self.name)
            return False

        experience = Experience(features, index, float(reward.value),
                                next_features, bool(done))
        with self._lock:
            self.replay_buffer.store(experience)
            self.updates += 1
            self.max_buffer_size = max(self.max_buffer_size, len(self.replay_buffer))

            snapshot = self._snapshot()
            self._learn(experience)
            if not self._weights_finite():
                self._restore(snapshot)
                self.rejected_steps += 1
                logger.warning("%s: rejected training step with non-finite weights "
                               "(%d rejected so far)", self.name, self.rejected_steps)
                return False
        return True

    def _snapshot(self) -> Dict[str, np.ndarray]:
        return {k: v.copy() for k, v in self._params.items()}

    def _restore(self, snapshot: Dict[str, np.ndarray]):
        self._params = snapshot
        self._on_params_replaced()

    def _weights_finite(self) -> bool:
        return all(np.all(np.isfinite(v)) for v in self._params.values())

    def train(self, episodes: int, max_steps: int, env=None) -> float:
        """Run full episodes against env (simulated by default); mean episodic reward."""
        if not self._initialized:
            logger.warning("%s: train() called before initialize()", self.name)
            return 0.0
        if env is None:
            from rl.environment import SimulatedEnvironment
            env = SimulatedEnvironment(self.state_size, self.action_size,
                                       episode_length=max_steps, seed=self.config.seed)

        totals = []
        for _ in range(episodes):
            state = env.reset()
            total = 0.0
            for _ in range(max_steps):
                action = self.choose_action(state)
                next_state, reward, done = env.step(action.action_index)
                self.update(state, action, next_state, reward, done)
                total += reward
                state = next_state
                if done:
                    break
            totals.append(total)

        return float(np.mean(totals)) if totals else 0.0

    # ── Weights ──────────────────────────────────────────────────────────

    def get_weights(self) -> np.ndarray:
        with self._lock:
            if not self._params:
                return np.zeros(0, dtype=np.float32)
            return np.concatenate([v.ravel() for v in self._params.values()]).astype(np.float32)

    def weight_count(self) -> int:
        return sum(v.size for v in self._params.values())

    def set_weights(self, weights) -> bool:
        """Replace all weights; rejects wrong length or non-finite values."""
        weights = np.asarray(weights, dtype=np.float32).reshape(-1)
        with self._lock:
            if not self._initialized or weights.shape[0] != self.weight_count():
                logger.warning("%s: weight vector length %d does not match model size %d",
                               self.name, weights.shape[0], self.weight_count())
                return False
            if not np.all(np.isfinite(weights)):
                logger.warning("%s: refusing non-finite weights", self.name)
                return False
            params = {}
            offset = 0
            for key, value in self._params.items():
                params[key] = weights[offset:offset + value.size].reshape(value.shape).copy()
                offset += value.size
            self._params = params
            self._on_params_replaced()
        return True

    # ── Persistence ──────────────────────────────────────────────────────

    def save(self, path: str) -> bool:
        with self._lock:
            if not self._initialized:
                logger.warning("%s: nothing to save before initialize()", self.name)
                return False
            data = encode_model(int(self.algorithm_type), self.get_weights(),
                                self._learning_rate, self._discount_factor,
                                self._exploration_rate)
        try:
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            logger.error("%s: failed to save model to %s: %s", self.name, path, e)
            return False
        return True

    def load(self, path: str, expected_type: Optional[int] = None) -> bool:
        """Restore weights + hyperparameters. Any failure leaves the model untouched."""
        if expected_type is None:
            expected_type = int(self.algorithm_type)
        try:
            with open(path, 'rb') as f:
                data = f.read()
            model_type, weights, lr, df, er = decode_model(data)
        except (OSError, ModelFormatError) as e:
            logger.warning("%s: cannot load %s: %s", self.name, path, e)
            return False

        if model_type != int(expected_type) or model_type != int(self.algorithm_type):
            logger.warning("%s: %s holds algorithm type %d, expected %d",
                           self.name, path, model_type, int(expected_type))
            return False

        with self._lock:
            if not self.set_weights(weights):
                return False
            self._learning_rate = _f32(lr)
            self._discount_factor = _f32(df)
            self._exploration_rate = _f32(er)
        logger.debug("%s: loaded %d weights from %s", self.name, weights.shape[0], path)
        return True

    def stats(self) -> Dict:
        return {
            'algorithm': self.name,
            'learning_rate': self.learning_rate,
            'discount_factor': self.discount_factor,
            'exploration_rate': self.exploration_rate,
            'updates': self.updates,
            'train_steps': self.train_steps,
            'rejected_steps': self.rejected_steps,
            'buffer_size': len(self.replay_buffer),
        }
