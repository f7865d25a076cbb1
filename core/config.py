"""
Assistant Configuration - Settings for the decision core

Every tunable of the decision core lives here as a dataclass section:
- Algorithm defaults (state/action sizes, replay, exploration annealing)
- Decision loop timing (intervals, cooldowns, suggestion limits)
- Meta-learning adaptation and persistence
- Transfer learning gates and scaling
- Storage locations
- Knowledge confidence recalculation
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Any, Optional
import os
import json


class ConfigError(ValueError):
    """Raised when a configuration value can never work."""


@dataclass
class AlgorithmConfig:
    """Shared defaults for every RL algorithm variant"""
    state_size: int = 16
    action_size: int = 12

    # Experience replay
    batch_size: int = 32
    replay_capacity: int = 10000
    sample_with_replacement: bool = True
    target_update_frequency: int = 10

    # Exploration annealing
    epsilon_start: float = 1.0
    epsilon_decay: float = 0.995
    epsilon_min: float = 0.01

    # PPO
    ppo_clip: float = 0.2
    ppo_epochs: int = 3
    ppo_horizon: int = 32

    seed: Optional[int] = None

    def validate(self):
        if self.state_size <= 0 or self.action_size <= 0:
            raise ConfigError("state_size and action_size must be positive")
        if self.batch_size <= 0:
            raise ConfigError("batch_size must be positive")
        if self.replay_capacity < self.batch_size:
            raise ConfigError("replay_capacity must be at least batch_size")
        if self.target_update_frequency <= 0:
            raise ConfigError("target_update_frequency must be positive")
        for name in ('epsilon_start', 'epsilon_decay', 'epsilon_min'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"{name} must be within [0, 1], got {value}")
        if self.ppo_epochs <= 0 or self.ppo_horizon <= 0:
            raise ConfigError("ppo_epochs and ppo_horizon must be positive")


@dataclass
class DecisionConfig:
    """Timing and ranking for the Auto / Copilot decision loop"""
    decision_interval_ms: int = 500
    min_action_interval_ms: int = 300
    user_interaction_cooldown_ms: int = 2000
    repeat_action_cooldown_ms: int = 1000
    max_suggestions: int = 5
    max_recent_actions: int = 20
    cycle_timeout_s: float = 5.0
    historical_rating_threshold: float = 0.6

    def validate(self):
        if self.decision_interval_ms <= 0:
            raise ConfigError("decision_interval_ms must be positive")
        if self.max_suggestions <= 0 or self.max_recent_actions <= 0:
            raise ConfigError("max_suggestions and max_recent_actions must be positive")
        if not 0.0 <= self.historical_rating_threshold <= 1.0:
            raise ConfigError("historical_rating_threshold must be within [0, 1]")


@dataclass
class MetaLearningConfig:
    """Algorithm selection and hyperparameter adaptation"""
    adaptation_interval: int = 10
    min_trials: int = 10
    meta_learning_rate: float = 0.001
    adaptive_enabled: bool = True
    persist: bool = False
    forced_algorithm: Optional[int] = None

    def validate(self):
        if self.adaptation_interval <= 0 or self.min_trials < 0:
            raise ConfigError("adaptation_interval must be positive")


@dataclass
class TransferConfig:
    """Cross-game weight transfer"""
    min_similarity: float = 0.4
    learning_rate_scale: float = 1.5
    exploration_scale: float = 2.0
    exploration_cap: float = 0.5
    genre_match_bonus: float = 0.5

    def validate(self):
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ConfigError("min_similarity must be within [0, 1]")
        if not 0.0 <= self.exploration_cap <= 1.0:
            raise ConfigError("exploration_cap must be within [0, 1]")


@dataclass
class StorageConfig:
    """Where models, registries and snapshots are written"""
    data_dir: str = "./gamepilot_data"
    models_subdir: str = "models"
    atomic_delete: bool = True

    @property
    def models_dir(self) -> str:
        return os.path.join(self.data_dir, self.models_subdir)


@dataclass
class KnowledgeConfig:
    """Domain confidence recalculation"""
    recalculation_interval_s: float = 300.0
    quantity_saturation: int = 50
    recency_window_days: float = 30.0
    usage_saturation: int = 5


@dataclass
class AssistantConfig:
    """Master configuration for the decision core"""
    algorithm: AlgorithmConfig = field(default_factory=AlgorithmConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)
    meta: MetaLearningConfig = field(default_factory=MetaLearningConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)

    def __post_init__(self):
        self.validate()

    def validate(self):
        self.algorithm.validate()
        self.decision.validate()
        self.meta.validate()
        self.transfer.validate()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssistantConfig':
        """Build a config from a (possibly partial) nested dict"""
        sections = {
            'algorithm': AlgorithmConfig,
            'decision': DecisionConfig,
            'meta': MetaLearningConfig,
            'transfer': TransferConfig,
            'storage': StorageConfig,
            'knowledge': KnowledgeConfig,
        }
        kwargs = {}
        for name, section_cls in sections.items():
            values = data.get(name)
            if values is None:
                continue
            try:
                kwargs[name] = section_cls(**values)
            except TypeError as e:
                raise ConfigError(f"Invalid '{name}' section: {e}") from e
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> 'AssistantConfig':
        """Load overrides from GAMEPILOT_* environment variables"""
        config = cls()
        if os.getenv('GAMEPILOT_DATA_DIR'):
            config.storage.data_dir = os.getenv('GAMEPILOT_DATA_DIR')
        if os.getenv('GAMEPILOT_STATE_SIZE'):
            config.algorithm.state_size = int(os.getenv('GAMEPILOT_STATE_SIZE'))
        if os.getenv('GAMEPILOT_ACTION_SIZE'):
            config.algorithm.action_size = int(os.getenv('GAMEPILOT_ACTION_SIZE'))
        if os.getenv('GAMEPILOT_SEED'):
            config.algorithm.seed = int(os.getenv('GAMEPILOT_SEED'))
        config.meta.persist = os.getenv('GAMEPILOT_PERSIST_META', 'false').lower() == 'true'
        config.validate()
        return config

    def save(self, path: str):
        """Save configuration to JSON"""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'AssistantConfig':
        """Load configuration from JSON"""
        with open(path, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)
