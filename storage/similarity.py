"""
Game Similarity - Reference scoring policy for transfer candidates.

    score = genre_bonus * [same genre]
          + 0.3 * Jaccard(mechanics)
          + 0.2 * cosine(layout features), clipped at 0

The total is clipped to [0, 1] and symmetric in its arguments. Caching
is done by the caller (TransferLearningManager), so any plain function
of two game ids can replace this policy.
"""

from typing import Callable, Dict, Optional, Tuple

import numpy as np

from storage.game_registry import GameRegistry, GameProfile

MECHANICS_WEIGHT = 0.3
LAYOUT_WEIGHT = 0.2


class GameSimilarity:
    """Callable similarity(a, b) -> [0, 1] over registry profiles."""

    def __init__(self, registry: GameRegistry, genre_match_bonus: float = 0.5):
        self.registry = registry
        self.genre_match_bonus = genre_match_bonus

    def __call__(self, game_a: str, game_b: str) -> float:
        if game_a == game_b:
            return 1.0
        return self.score(self.registry.get(game_a), self.registry.get(game_b))

    def score(self, a: Optional[GameProfile], b: Optional[GameProfile]) -> float:
        if a is None or b is None:
            return 0.0
        score = 0.0
        if a.genre and a.genre.lower() == b.genre.lower():
            score += self.genre_match_bonus

        mech_a, mech_b = set(a.mechanics), set(b.mechanics)
        if mech_a or mech_b:
            score += MECHANICS_WEIGHT * len(mech_a & mech_b) / len(mech_a | mech_b)

        if a.layout_features and len(a.layout_features) == len(b.layout_features):
            va = np.asarray(a.layout_features, dtype=np.float64)
            vb = np.asarray(b.layout_features, dtype=np.float64)
            norm = np.linalg.norm(va) * np.linalg.norm(vb)
            if norm > 0:
                score += LAYOUT_WEIGHT * max(0.0, float(va @ vb / norm))

        return float(min(1.0, max(0.0, score)))


def fixed_similarity(table: Dict[Tuple[str, str], float]) -> Callable[[str, str], float]:
    """Similarity function from an explicit table (symmetric lookup)."""
    def lookup(game_a: str, game_b: str) -> float:
        if (game_a, game_b) in table:
            return table[(game_a, game_b)]
        return table.get((game_b, game_a), 0.0)
    return lookup
