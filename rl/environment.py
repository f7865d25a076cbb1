"""
Simulated Environment - Synthetic game for offline training and demos.

A hidden linear rule maps each state to its "correct" action. Choosing
it pays +1.0, anything else pays -0.1. Episodes end after
episode_length steps.
"""

from typing import Optional, Tuple

import numpy as np

from core.state import GameState


class SimulatedEnvironment:
    """Stand-in for the live perception/execution loop."""

    def __init__(self, state_size: int, action_size: int,
                 episode_length: int = 50, seed: Optional[int] = None,
                 game_id: str = "simulated"):
        self.state_size = state_size
        self.action_size = action_size
        self.episode_length = max(1, episode_length)
        self.game_id = game_id
        self.rng = np.random.default_rng(seed)
        self._rule = self.rng.standard_normal((action_size, state_size)).astype(np.float32)
        self._state: Optional[GameState] = None
        self._steps = 0

    def _observe(self) -> GameState:
        features = self.rng.uniform(-1.0, 1.0, self.state_size).astype(np.float32)
        return GameState(features=features, game_id=self.game_id)

    def correct_action(self, state: GameState) -> int:
        return int(np.argmax(self._rule @ state.features))

    def reset(self) -> GameState:
        self._steps = 0
        self._state = self._observe()
        return self._state

    def step(self, action_index: Optional[int]) -> Tuple[GameState, float, bool]:
        if self._state is None:
            self.reset()
        reward = 1.0 if action_index == self.correct_action(self._state) else -0.1
        self._steps += 1
        self._state = self._observe()
        done = self._steps >= self.episode_length
        return self._state, reward, done
