"""
Model Storage - Binary persistence of algorithm weights per game.

File layout (little-endian):

    int32  algorithm type
    int32  weight count N
    N x float32 weights
    float32 learning rate
    float32 discount factor
    float32 exploration rate

Directory layout: <root>/<sanitized game id>/model_<algorithm type>.dat,
where sanitization replaces anything outside [A-Za-z0-9.-] with '_'.
"""

import logging
import os
import re
import shutil
import struct
import uuid
from typing import List, Optional, Tuple, Iterable

import numpy as np

logger = logging.getLogger(__name__)

HEADER = struct.Struct('<ii')
TRAILER = struct.Struct('<fff')
_SANITIZE = re.compile(r'[^A-Za-z0-9.-]')
_MODEL_FILE = re.compile(r'^model_(\d+)\.dat$')
_STAGING_PREFIX = '.deleting-'


class ModelFormatError(ValueError):
    """Raised by the codec for malformed or truncated model data."""


def sanitize_game_id(game_id: str) -> str:
    return _SANITIZE.sub('_', game_id)


def encode_model(algorithm_type: int, weights: np.ndarray, learning_rate: float,
                 discount_factor: float, exploration_rate: float) -> bytes:
    weights = np.asarray(weights, dtype='<f4').reshape(-1)
    return (HEADER.pack(int(algorithm_type), weights.shape[0])
            + weights.tobytes()
            + TRAILER.pack(learning_rate, discount_factor, exploration_rate))


def decode_model(data: bytes) -> Tuple[int, np.ndarray, float, float, float]:
    """Inverse of encode_model. Raises ModelFormatError on any inconsistency."""
    if len(data) < HEADER.size:
        raise ModelFormatError("truncated header")
    algorithm_type, count = HEADER.unpack_from(data, 0)
    if count < 0:
        raise ModelFormatError(f"negative weight count {count}")
    expected = HEADER.size + count * 4 + TRAILER.size
    if len(data) < expected:
        raise ModelFormatError(f"truncated model: {len(data)} bytes, expected {expected}")
    if len(data) > expected:
        raise ModelFormatError(f"trailing data: {len(data)} bytes, expected {expected}")
    weights = np.frombuffer(data, dtype='<f4', count=count, offset=HEADER.size)
    lr, df, er = TRAILER.unpack_from(data, HEADER.size + count * 4)
    return algorithm_type, weights.astype(np.float32), lr, df, er


class ModelStorage:
    """
    Per-(game, algorithm) model files under one storage root.

    Saves go through a temporary file and an atomic rename, so a crash
    never leaves a half-written model behind. With atomic_delete, a
    game directory is first renamed to a staging name and only then
    removed; leftovers from an interrupted delete are swept on startup.
    """

    def __init__(self, root: str, atomic_delete: bool = True):
        self.root = root
        self.atomic_delete = atomic_delete
        os.makedirs(root, exist_ok=True)
        self._sweep_staging()

    def game_dir(self, game_id: str) -> str:
        return os.path.join(self.root, sanitize_game_id(game_id))

    def model_path(self, game_id: str, algorithm_type: int) -> str:
        return os.path.join(self.game_dir(game_id), f"model_{int(algorithm_type)}.dat")

    def has_model(self, game_id: str, algorithm_type: int) -> bool:
        return os.path.isfile(self.model_path(game_id, algorithm_type))

    def save_model(self, game_id: str, algorithm, algorithm_type: Optional[int] = None) -> bool:
        """Write an algorithm's weights; truncates any previous file."""
        if algorithm_type is None:
            algorithm_type = int(algorithm.algorithm_type)
        path = self.model_path(game_id, algorithm_type)
        tmp_path = f"{path}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            if not algorithm.save(tmp_path):
                return False
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error("Failed to save model %s: %s", path, e)
            return False
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        logger.debug("Saved %s model for %s", algorithm.name, game_id)
        return True

    def load_model(self, game_id: str, algorithm, algorithm_type: Optional[int] = None) -> bool:
        """Restore an algorithm; False if missing, corrupt or of another type."""
        if algorithm_type is None:
            algorithm_type = int(algorithm.algorithm_type)
        path = self.model_path(game_id, algorithm_type)
        if not os.path.isfile(path):
            return False
        return algorithm.load(path, expected_type=algorithm_type)

    def read_header(self, game_id: str, algorithm_type: int) -> Optional[Tuple[int, int]]:
        """(algorithm type, weight count) of a stored model, or None."""
        path = self.model_path(game_id, algorithm_type)
        try:
            with open(path, 'rb') as f:
                data = f.read(HEADER.size)
        except OSError:
            return None
        if len(data) < HEADER.size:
            return None
        return HEADER.unpack(data)

    def delete_model(self, game_id: str, algorithm_type: int) -> bool:
        path = self.model_path(game_id, algorithm_type)
        try:
            os.remove(path)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete %s: %s", path, e)
            return False
        return True

    def delete_all_models(self, game_id: str) -> bool:
        """Remove a game's whole model directory."""
        directory = self.game_dir(game_id)
        if not os.path.isdir(directory):
            return False
        try:
            if self.atomic_delete:
                staging = os.path.join(
                    self.root, f"{_STAGING_PREFIX}{uuid.uuid4().hex[:8]}")
                os.rename(directory, staging)
                directory = staging
            shutil.rmtree(directory)
        except OSError as e:
            logger.error("Failed to delete models for %s: %s", game_id, e)
            return False
        logger.info("Deleted all models for %s", game_id)
        return True

    def list_models(self, game_id: str) -> List[int]:
        """Algorithm types with a stored model for this game."""
        directory = self.game_dir(game_id)
        if not os.path.isdir(directory):
            return []
        types = []
        for name in os.listdir(directory):
            match = _MODEL_FILE.match(name)
            if match:
                types.append(int(match.group(1)))
        return sorted(types)

    def list_games(self) -> List[str]:
        """Sanitized ids of every game directory holding at least one model."""
        games = []
        for name in sorted(os.listdir(self.root)):
            if name.startswith(_STAGING_PREFIX):
                continue
            if os.path.isdir(os.path.join(self.root, name)) and self.list_models(name):
                games.append(name)
        return games

    def prune_orphans(self, known_game_ids: Iterable[str]) -> List[str]:
        """Delete model directories of games no longer known. Returns what was removed."""
        known = {sanitize_game_id(g) for g in known_game_ids}
        removed = []
        for name in self.list_games():
            if name not in known and self.delete_all_models(name):
                removed.append(name)
        if removed:
            logger.info("Pruned orphaned models: %s", ", ".join(removed))
        return removed

    def _sweep_staging(self):
        for name in os.listdir(self.root):
            if name.startswith(_STAGING_PREFIX):
                shutil.rmtree(os.path.join(self.root, name), ignore_errors=True)
