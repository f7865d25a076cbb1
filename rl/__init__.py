"""
Reinforcement learning algorithms for the decision core.

Four variants share one contract (RLAlgorithm):
- DQN: replayed batches + periodic target sync
- PPO: clipped policy-gradient over finished trajectories
- SARSA / Q-Learning: online temporal-difference updates
"""

from rl.base import RLAlgorithm, AlgorithmType
from rl.replay_buffer import ReplayBuffer, Experience
from rl.dqn import DQN
from rl.ppo import PPO, Trajectory, discounted_returns
from rl.sarsa import SARSA
from rl.q_learning import QLearning
from rl.environment import SimulatedEnvironment
from rl.registry import create_algorithm, ALGORITHM_CLASSES

__all__ = [
    "RLAlgorithm",
    "AlgorithmType",
    "ReplayBuffer",
    "Experience",
    "DQN",
    "PPO",
    "Trajectory",
    "discounted_returns",
    "SARSA",
    "QLearning",
    "SimulatedEnvironment",
    "create_algorithm",
    "ALGORITHM_CLASSES",
]
