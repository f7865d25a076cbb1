"""
PPO - Proximal Policy Optimization over a linear softmax policy.

Implements PPO-Clip with:
- A linear softmax actor and a linear state-value critic
- Trajectory collection until a terminal transition or the horizon
- Backward reward-to-go computation (terminal zeroes the carried return)
- Several clipped-surrogate epochs per finished trajectory
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from rl.base import RLAlgorithm, AlgorithmType, softmax
from rl.replay_buffer import Experience

logger = logging.getLogger(__name__)


def discounted_returns(rewards: Sequence[float], dones: Sequence[bool],
                       gamma: float) -> np.ndarray:
    """
    Reward-to-go computed backward from the end of the trajectory:

        return[i] = reward[i] + gamma * return[i+1] * (1 - done[i])
    """
    returns = np.zeros(len(rewards), dtype=np.float64)
    running = 0.0
    for i in reversed(range(len(rewards))):
        running = rewards[i] + gamma * running * (1.0 - float(dones[i]))
        returns[i] = running
    return returns


@dataclass
class Trajectory:
    """Ordered on-policy transitions awaiting a PPO update."""
    states: List[np.ndarray] = field(default_factory=list)
    actions: List[int] = field(default_factory=list)
    rewards: List[float] = field(default_factory=list)
    dones: List[bool] = field(default_factory=list)
    log_probs: List[float] = field(default_factory=list)
    values: List[float] = field(default_factory=list)

    def clear(self):
        self.states.clear()
        self.actions.clear()
        self.rewards.clear()
        self.dones.clear()
        self.log_probs.clear()
        self.values.clear()

    def copy(self) -> 'Trajectory':
        return Trajectory(list(self.states), list(self.actions), list(self.rewards),
                          list(self.dones), list(self.log_probs), list(self.values))

    @property
    def size(self) -> int:
        return len(self.states)


class PPO(RLAlgorithm):
    """
    Policy-gradient learner. choose_action() samples from the policy
    distribution when not exploring; update() appends to the trajectory
    and runs the clipped update once the trajectory ends.
    """

    algorithm_type = AlgorithmType.PPO
    DEFAULT_LEARNING_RATE = 0.0003
    DEFAULT_DISCOUNT_FACTOR = 0.99
    DEFAULT_EXPLORATION_RATE = 0.2

    def __init__(self, *args, **kwargs):
        self.trajectory = Trajectory()
        super().__init__(*args, **kwargs)

    def _build_params(self) -> Dict[str, np.ndarray]:
        return {
            'w': self._init_matrix(self.action_size, self.state_size),
            'b': np.zeros(self.action_size, dtype=np.float32),
            'v_w': np.zeros(self.state_size, dtype=np.float32),
            'v_b': np.zeros(1, dtype=np.float32),
        }

    def _clear_episode_state(self):
        self.trajectory.clear()

    def _snapshot(self):
        return super()._snapshot(), self.trajectory.copy()

    def _restore(self, snapshot):
        # A rejected step leaves the trajectory as it was before the step.
        params, trajectory = snapshot
        super()._restore(params)
        self.trajectory = trajectory

    def policy(self, features: np.ndarray) -> np.ndarray:
        return softmax(self._linear(features))

    def value(self, features: np.ndarray) -> float:
        return float(self._params['v_w'] @ features + self._params['v_b'][0])

    def _action_scores(self, features: np.ndarray) -> np.ndarray:
        return self.policy(features)

    def _confidences(self, scores: np.ndarray) -> np.ndarray:
        return scores

    def _exploit_index(self, features: np.ndarray, scores: np.ndarray) -> int:
        return int(self._rng.choice(self.action_size, p=scores / scores.sum()))

    def _learn(self, experience: Experience) -> bool:
        probs = self.policy(experience.state)
        t = self.trajectory
        t.states.append(experience.state)
        t.actions.append(experience.action)
        t.rewards.append(experience.reward)
        t.dones.append(experience.done)
        t.log_probs.append(float(np.log(probs[experience.action] + 1e-8)))
        t.values.append(self.value(experience.state))

        if not experience.done and t.size < self.config.ppo_horizon:
            return False

        self._update_policy()
        t.clear()
        return True

    def _update_policy(self):
        t = self.trajectory
        states = np.stack(t.states)
        actions = np.array(t.actions)
        returns = discounted_returns(t.rewards, t.dones, self.discount_factor)
        advantages = returns - np.array(t.values)
        if advantages.size > 1:
            advantages = (advantages - advantages.mean()) / (advantages.std() + 1e-8)
        old_log_probs = np.array(t.log_probs)
        onehot = np.eye(self.action_size)[actions]
        clip = self.config.ppo_clip
        n = len(actions)

        for _ in range(self.config.ppo_epochs):
            logits = states @ self._params['w'].T + self._params['b']
            logits = logits - logits.max(axis=1, keepdims=True)
            probs = np.exp(logits)
            probs /= probs.sum(axis=1, keepdims=True)
            new_log_probs = np.log(probs[np.arange(n), actions] + 1e-8)
            ratio = np.exp(new_log_probs - old_log_probs)

            # Zero gradient wherever the clipped term is the active minimum
            clipped = ((advantages > 0) & (ratio > 1 + clip)) | \
                      ((advantages < 0) & (ratio < 1 - clip))
            coef = np.where(clipped, 0.0, advantages * ratio)

            grad_logits = coef[:, None] * (onehot - probs)
            self._params['w'] += (self.learning_rate * grad_logits.T @ states / n).astype(np.float32)
            self._params['b'] += (self.learning_rate * grad_logits.sum(axis=0) / n).astype(np.float32)

            values = states @ self._params['v_w'] + self._params['v_b'][0]
            value_err = returns - values
            self._params['v_w'] += (self.learning_rate * value_err @ states / n).astype(np.float32)
            self._params['v_b'] += np.float32(self.learning_rate * value_err.mean())

        self.train_steps += 1
