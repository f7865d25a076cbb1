"""
Algorithm registry - construct variants from their integer type tag.
"""

from typing import Dict, Optional, Type

from core.config import AlgorithmConfig
from rl.base import RLAlgorithm, AlgorithmType
from rl.dqn import DQN
from rl.ppo import PPO
from rl.q_learning import QLearning
from rl.sarsa import SARSA


ALGORITHM_CLASSES: Dict[AlgorithmType, Type[RLAlgorithm]] = {
    AlgorithmType.PPO: PPO,
    AlgorithmType.DQN: DQN,
    AlgorithmType.SARSA: SARSA,
    AlgorithmType.Q_LEARNING: QLearning,
}


def create_algorithm(algorithm_type, state_size: Optional[int] = None,
                     action_size: Optional[int] = None,
                     config: Optional[AlgorithmConfig] = None) -> RLAlgorithm:
    """Build (and initialize, if sizes are given) the variant for a type tag."""
    try:
        cls = ALGORITHM_CLASSES[AlgorithmType(int(algorithm_type))]
    except (ValueError, KeyError):
        raise ValueError(f"Unknown algorithm type: {algorithm_type!r}")
    return cls(state_size, action_size, config)
