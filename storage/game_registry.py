"""
Game Registry - Known games and the descriptors used to compare them.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class GameProfile:
    """What the assistant knows about one game."""
    game_id: str
    name: str = ""
    genre: str = ""
    mechanics: List[str] = field(default_factory=list)
    layout_features: List[float] = field(default_factory=list)
    added_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'GameProfile':
        return cls(**data)


class GameRegistry:
    """JSON-backed set of GameProfiles. In-memory only when path is None."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.games: Dict[str, GameProfile] = {}
        if path:
            self._load()

    def add(self, profile: GameProfile) -> GameProfile:
        self.games[profile.game_id] = profile
        self.save()
        return profile

    def get(self, game_id: str) -> Optional[GameProfile]:
        return self.games.get(game_id)

    def remove(self, game_id: str) -> bool:
        if self.games.pop(game_id, None) is None:
            return False
        self.save()
        return True

    def all_games(self) -> List[GameProfile]:
        return list(self.games.values())

    def __contains__(self, game_id: str) -> bool:
        return game_id in self.games

    def __len__(self) -> int:
        return len(self.games)

    def save(self):
        if not self.path:
            return
        os.makedirs(os.path.dirname(os.path.abspath(self.path)), exist_ok=True)
        data = {'games': [p.to_dict() for p in self.games.values()]}
        with open(self.path, 'w') as f:
            json.dump(data, f, indent=2)

    def _load(self):
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            for entry in data.get('games', []):
                profile = GameProfile.from_dict(entry)
                self.games[profile.game_id] = profile
        except (OSError, ValueError, TypeError) as e:
            logger.error("Could not read game registry %s: %s", self.path, e)
