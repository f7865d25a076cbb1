"""
Game State - Immutable snapshot of the observed environment.

The perception stack produces one GameState per capture. The decision core
treats the feature vector as opaque: it only relies on its fixed length.
"""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, Sequence

import numpy as np


DEFAULT_SCREEN_WIDTH = 1080
DEFAULT_SCREEN_HEIGHT = 1920


def derive_state_key(game_id: str, features: np.ndarray) -> str:
    """Coarse lookup key: nearby feature vectors share a key."""
    quantized = np.round(features.astype(np.float64), 1) + 0.0  # fold -0.0
    digest = hashlib.md5(quantized.tobytes()).hexdigest()[:12]
    return f"{game_id}:{digest}"


@dataclass(frozen=True, eq=False)
class GameState:
    """A single perception snapshot, read-only once constructed."""
    features: np.ndarray
    game_id: str = "unknown"
    timestamp: float = field(default_factory=time.time)
    state_key: str = ""
    screen_width: int = DEFAULT_SCREEN_WIDTH
    screen_height: int = DEFAULT_SCREEN_HEIGHT
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        features = np.array(self.features, dtype=np.float32).reshape(-1)
        features.setflags(write=False)
        object.__setattr__(self, 'features', features)
        if not self.state_key:
            object.__setattr__(self, 'state_key',
                               derive_state_key(self.game_id, features))

    @classmethod
    def from_features(cls, features: Sequence[float], game_id: str = "unknown",
                      **kwargs) -> 'GameState':
        return cls(features=np.asarray(features, dtype=np.float32),
                   game_id=game_id, **kwargs)

    @property
    def size(self) -> int:
        return int(self.features.shape[0])

    def is_valid(self, expected_size: Optional[int] = None) -> bool:
        """Finite features of the expected length."""
        if self.size == 0:
            return False
        if expected_size is not None and self.size != expected_size:
            return False
        return bool(np.all(np.isfinite(self.features)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'features': self.features.tolist(),
            'game_id': self.game_id,
            'timestamp': self.timestamp,
            'state_key': self.state_key,
            'screen_width': self.screen_width,
            'screen_height': self.screen_height,
        }
