"""
Transfer Learning Manager - Seed a new game's models from a similar game.

Resolution order for (game, algorithm type):
1. An existing model for the game itself (unless force_new)
2. The most similar other game that has a model of the same type,
   provided its similarity strictly exceeds the threshold
3. Fresh initialization

A transferred model starts with a higher learning rate and more
exploration than its source, and is persisted immediately.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.config import TransferConfig, AlgorithmConfig
from rl.registry import create_algorithm
from storage.model_storage import ModelStorage, sanitize_game_id

logger = logging.getLogger(__name__)


@dataclass
class TransferRecord:
    """How one (game, algorithm) pair got its initial weights."""
    game_id: str
    algorithm_type: int
    mode: str                   # 'loaded', 'transferred' or 'fresh'
    source_game: Optional[str] = None
    similarity: float = 0.0
    timestamp: float = field(default_factory=time.time)


class TransferLearningManager:
    """Initializes algorithms from stored models, with cross-game transfer."""

    def __init__(self, storage: ModelStorage,
                 similarity: Callable[[str, str], float],
                 config: Optional[TransferConfig] = None,
                 known_games: Optional[Callable[[], Iterable[str]]] = None):
        self.storage = storage
        self.similarity_fn = similarity
        self.config = config or TransferConfig()
        self.known_games = known_games or storage.list_games
        self._cache: Dict[Tuple[str, str], float] = {}
        self._lock = threading.Lock()
        self.history: List[TransferRecord] = []

    def similarity(self, game_a: str, game_b: str) -> float:
        """Cached, symmetric similarity score."""
        with self._lock:
            cached = self._cache.get((game_a, game_b))
        if cached is not None:
            return cached
        score = float(self.similarity_fn(game_a, game_b))
        with self._lock:
            self._cache[(game_a, game_b)] = score
            self._cache[(game_b, game_a)] = score
        return score

    def invalidate(self, game_id: Optional[str] = None):
        """Forget cached scores, for all games or those involving one game."""
        with self._lock:
            if game_id is None:
                self._cache.clear()
            else:
                for key in [k for k in self._cache if game_id in k]:
                    del self._cache[key]

    def rank_sources(self, game_id: str, algorithm_type: int) -> List[Tuple[str, float]]:
        """Eligible source games, most similar first."""
        target = sanitize_game_id(game_id)
        candidates = []
        for other in self.known_games():
            if other == game_id or sanitize_game_id(other) == target:
                continue
            if not self.storage.has_model(other, algorithm_type):
                continue
            score = self.similarity(game_id, other)
            if score > self.config.min_similarity:
                candidates.append((other, score))
        candidates.sort(key=lambda c: (-c[1], c[0]))
        return candidates

    def find_best_source_game(self, game_id: str, algorithm_type: int) -> Optional[str]:
        ranked = self.rank_sources(game_id, algorithm_type)
        return ranked[0][0] if ranked else None

    def initialize_with_transfer(self, game_id: str, algorithm,
                                 algorithm_type: Optional[int] = None,
                                 force_new: bool = False,
                                 state_size: Optional[int] = None,
                                 action_size: Optional[int] = None) -> bool:
        """Give the algorithm its starting weights. False only if it cannot be initialized."""
        if algorithm_type is None:
            algorithm_type = int(algorithm.algorithm_type)
        state_size = state_size or algorithm.state_size or algorithm.config.state_size
        action_size = action_size or algorithm.action_size or algorithm.config.action_size
        if not algorithm.initialize(state_size, action_size):
            return False

        if not force_new and self.storage.has_model(game_id, algorithm_type):
            if self.storage.load_model(game_id, algorithm, algorithm_type):
                self._record(game_id, algorithm_type, 'loaded')
                return True
            logger.warning("Stored %s model for %s is unusable; looking for a transfer source",
                           algorithm.name, game_id)

        for source, score in self.rank_sources(game_id, algorithm_type):
            if self._transfer(source, game_id, algorithm, algorithm_type,
                              state_size, action_size):
                self._record(game_id, algorithm_type, 'transferred', source, score)
                logger.info("Transferred %s model %s -> %s (similarity %.2f)",
                            algorithm.name, source, game_id, score)
                return True

        algorithm.reset()
        self._record(game_id, algorithm_type, 'fresh')
        logger.debug("No transfer source for %s/%s; starting fresh", game_id, algorithm.name)
        return True

    def _transfer(self, source: str, game_id: str, algorithm, algorithm_type: int,
                  state_size: int, action_size: int) -> bool:
        config = getattr(algorithm, 'config', None) or AlgorithmConfig()
        source_algo = create_algorithm(algorithm_type, state_size, action_size, config)
        if not self.storage.load_model(source, source_algo, algorithm_type):
            return False
        if not algorithm.set_weights(source_algo.get_weights()):
            return False

        algorithm.learning_rate = source_algo.learning_rate * self.config.learning_rate_scale
        algorithm.discount_factor = source_algo.discount_factor
        algorithm.exploration_rate = min(
            self.config.exploration_cap,
            source_algo.exploration_rate * self.config.exploration_scale)

        if not self.storage.save_model(game_id, algorithm, algorithm_type):
            logger.warning("Transferred model for %s could not be persisted", game_id)
        return True

    def _record(self, game_id: str, algorithm_type: int, mode: str,
                source: Optional[str] = None, score: float = 0.0):
        self.history.append(TransferRecord(game_id, int(algorithm_type), mode, source, score))

    def last_record(self, game_id: str, algorithm_type: int) -> Optional[TransferRecord]:
        for record in reversed(self.history):
            if record.game_id == game_id and record.algorithm_type == int(algorithm_type):
                return record
        return None
