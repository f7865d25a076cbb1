"""
Persistence for the decision core.

- ModelStorage: binary per-(game, algorithm) model files
- GameRegistry / GameProfile: known games and their descriptors
- GameSimilarity: reference similarity policy between games

TransferLearningManager lives in storage.transfer; it builds algorithm
instances, so it is imported from there directly.
"""

from .model_storage import ModelStorage, ModelFormatError, encode_model, decode_model, sanitize_game_id
from .game_registry import GameRegistry, GameProfile
from .similarity import GameSimilarity, fixed_similarity

__all__ = [
    'ModelStorage',
    'ModelFormatError',
    'encode_model',
    'decode_model',
    'sanitize_game_id',
    'GameRegistry',
    'GameProfile',
    'GameSimilarity',
    'fixed_similarity',
]
