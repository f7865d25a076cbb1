"""
DQN - Linear deep-Q style learner with experience replay and a target copy.
"""

import logging
from typing import Dict

import numpy as np

from rl.base import RLAlgorithm, AlgorithmType
from rl.replay_buffer import Experience

logger = logging.getLogger(__name__)


class DQN(RLAlgorithm):
    """
    Off-policy value learner.

    Every update() stores the transition; once the replay buffer holds at
    least batch_size transitions each update also trains on a sampled
    batch. The target estimator is refreshed every
    target_update_frequency training steps.
    """

    algorithm_type = AlgorithmType.DQN
    DEFAULT_LEARNING_RATE = 0.001
    DEFAULT_DISCOUNT_FACTOR = 0.99
    DEFAULT_EXPLORATION_RATE = None

    def __init__(self, *args, **kwargs):
        self._target: Dict[str, np.ndarray] = {}
        super().__init__(*args, **kwargs)

    def _build_params(self) -> Dict[str, np.ndarray]:
        return {
            'w': self._init_matrix(self.action_size, self.state_size),
            'b': np.zeros(self.action_size, dtype=np.float32),
        }

    def _on_params_replaced(self):
        self.sync_target()

    def sync_target(self):
        self._target = {k: v.copy() for k, v in self._params.items()}

    def _action_scores(self, features: np.ndarray) -> np.ndarray:
        return self._linear(features)

    def _learn(self, experience: Experience) -> bool:
        if len(self.replay_buffer) < self.config.batch_size:
            return False

        batch = self.replay_buffer.sample_batch(self.config.batch_size)
        states = np.stack([e.state for e in batch])
        actions = np.array([e.action for e in batch])
        rewards = np.array([e.reward for e in batch], dtype=np.float32)
        next_states = np.stack([e.next_state for e in batch])
        dones = np.array([e.done for e in batch], dtype=np.float32)

        w, b = self._params['w'], self._params['b']
        q = states @ w.T + b
        q_next = next_states @ self._target['w'].T + self._target['b']
        targets = rewards + self.discount_factor * q_next.max(axis=1) * (1.0 - dones)
        td = targets - q[np.arange(len(batch)), actions]

        grad_w = np.zeros_like(w)
        grad_b = np.zeros_like(b)
        np.add.at(grad_w, actions, td[:, None] * states)
        np.add.at(grad_b, actions, td)
        self._params['w'] = w + self.learning_rate * grad_w / len(batch)
        self._params['b'] = b + self.learning_rate * grad_b / len(batch)

        self.train_steps += 1
        if (self.train_steps % self.config.target_update_frequency == 0
                and self._weights_finite()):
            self.sync_target()
        return True

    def _restore(self, snapshot):
        # Keep the target estimator; it only ever holds finite weights.
        self._params = snapshot
