"""
Reward - The scalar feedback signal for an executed action.
"""

from dataclasses import dataclass
from typing import Optional, Union

SUCCESS_REWARD = 1.0
FAILURE_REWARD = -0.5


@dataclass(frozen=True)
class ActionReward:
    """Observed reward; success defaults to value > 0 when not given."""
    value: float
    success: Optional[bool] = None

    @property
    def succeeded(self) -> bool:
        if self.success is not None:
            return self.success
        return self.value > 0

    @classmethod
    def from_outcome(cls, success: bool) -> 'ActionReward':
        return cls(SUCCESS_REWARD if success else FAILURE_REWARD, success)

    @classmethod
    def coerce(cls, reward: Union['ActionReward', float, int, None]) -> 'ActionReward':
        """Accept plain numbers wherever a reward is expected."""
        if isinstance(reward, ActionReward):
            return reward
        if reward is None:
            return cls(0.0)
        return cls(float(reward))
