"""
Q-Learning - Online off-policy temporal-difference learner.
"""

from typing import Dict

import numpy as np

from rl.base import RLAlgorithm, AlgorithmType
from rl.replay_buffer import Experience


class QLearning(RLAlgorithm):
    """
    Linear Q-learning. Updates on every transition:

        Q(s,a) += lr * (r + gamma * max_a' Q(s',a') - Q(s,a))

    Transitions are still stored in the replay buffer so every variant
    exposes the same buffer semantics.
    """

    algorithm_type = AlgorithmType.Q_LEARNING
    DEFAULT_LEARNING_RATE = 0.1
    DEFAULT_DISCOUNT_FACTOR = 0.95
    DEFAULT_EXPLORATION_RATE = 0.1

    def _build_params(self) -> Dict[str, np.ndarray]:
        return {
            'w': self._init_matrix(self.action_size, self.state_size),
            'b': np.zeros(self.action_size, dtype=np.float32),
        }

    def _action_scores(self, features: np.ndarray) -> np.ndarray:
        return self._linear(features)

    def _bootstrap(self, experience: Experience) -> float:
        return float(np.max(self._linear(experience.next_state)))

    def _learn(self, experience: Experience) -> bool:
        s, a = experience.state, experience.action
        future = 0.0 if experience.done else self._bootstrap(experience)
        td = experience.reward + self.discount_factor * future - float(self._linear(s)[a])

        self._params['w'][a] += np.float32(self.learning_rate * td) * s
        self._params['b'][a] += np.float32(self.learning_rate * td)
        self.train_steps += 1
        return True
