"""
SARSA - Online on-policy temporal-difference learner.
"""

import numpy as np

from rl.base import AlgorithmType
from rl.q_learning import QLearning
from rl.replay_buffer import Experience


class SARSA(QLearning):
    """
    Linear SARSA. Bootstraps from the action the current epsilon-greedy
    policy would take in the next state, instead of the greedy maximum:

        Q(s,a) += lr * (r + gamma * Q(s',a') - Q(s,a))
    """

    algorithm_type = AlgorithmType.SARSA

    def _next_action(self, features: np.ndarray) -> int:
        if self._rng.random() < self.exploration_rate:
            return int(self._rng.integers(self.action_size))
        return int(np.argmax(self._linear(features)))

    def _bootstrap(self, experience: Experience) -> float:
        next_q = self._linear(experience.next_state)
        return float(next_q[self._next_action(experience.next_state)])
