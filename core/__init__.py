"""
GamePilot - Decision Core Components

The shared vocabulary of the assistant:
1. Configuration - every tunable in one dataclass tree
2. Value types - GameState, GameAction, ActionReward
3. Events - ordered observer channels
4. Knowledge - domain-tagged memory with derived confidence

The meta-learner (core.meta_learner) depends on the RL contract and is
imported from its module directly.
"""

from .config import (AssistantConfig, AlgorithmConfig, DecisionConfig, MetaLearningConfig,
                     TransferConfig, StorageConfig, KnowledgeConfig, ConfigError)
from .state import GameState
from .actions import GameAction, ActionType, ActionSpace
from .reward import ActionReward
from .events import EventChannel
from .knowledge import KnowledgeMemory, KnowledgeItem

__all__ = [
    'AssistantConfig',
    'AlgorithmConfig',
    'DecisionConfig',
    'MetaLearningConfig',
    'TransferConfig',
    'StorageConfig',
    'KnowledgeConfig',
    'ConfigError',
    'GameState',
    'GameAction',
    'ActionType',
    'ActionSpace',
    'ActionReward',
    'EventChannel',
    'KnowledgeMemory',
    'KnowledgeItem',
]
