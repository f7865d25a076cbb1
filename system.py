"""
GamePilot Assistant System - The single lifecycle object of the decision core

This wires every component together with explicit ownership instead of
process-wide singletons:

THE PIECES:
- ModelStorage + GameRegistry: what is known and what was learned
- TransferLearningManager: new games start from similar old ones
- MetaLearner: one per process, shared by all games
- KnowledgeMemory: read-only prior for Copilot ranking
- One AlgorithmSelector (all four RL variants) per attached game
- Auto / Copilot decision loops created on demand

Create it once at startup, call shutdown() (or use it as a context
manager) at exit.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Union

from core.actions import GameAction
from core.config import AssistantConfig
from core.knowledge import KnowledgeMemory
from core.meta_learner import MetaLearner, AlgorithmSelector
from core.state import GameState
from decision.auto import AutoModeManager
from decision.candidates import PatternRecommender, RuleRecommender
from decision.copilot import CopilotManager
from decision.loop import DecisionLoop
from rl.base import AlgorithmType
from rl.registry import create_algorithm
from storage.game_registry import GameRegistry, GameProfile
from storage.model_storage import ModelStorage, sanitize_game_id
from storage.similarity import GameSimilarity
from storage.transfer import TransferLearningManager

logger = logging.getLogger(__name__)


@dataclass
class GameSession:
    """Learning state of one attached game"""
    profile: GameProfile
    selector: AlgorithmSelector
    patterns: PatternRecommender
    loops: List[DecisionLoop] = field(default_factory=list)
    attached_at: float = field(default_factory=time.time)


class AssistantSystem:
    """
    The complete decision core

    Typical use:
        with AssistantSystem(config) as system:
            system.attach_game(GameProfile("com.example.game", genre="puzzle"))
            auto = system.auto_mode("com.example.game", capture_state, execute)
            auto.start()
    """

    def __init__(self, config: Optional[AssistantConfig] = None,
                 similarity: Optional[Callable[[str, str], float]] = None):
        self.config = config or AssistantConfig()
        data_dir = self.config.storage.data_dir
        os.makedirs(data_dir, exist_ok=True)

        self.storage = ModelStorage(self.config.storage.models_dir,
                                    atomic_delete=self.config.storage.atomic_delete)
        self.registry = GameRegistry(os.path.join(data_dir, 'games.json'))
        self.similarity = similarity or GameSimilarity(
            self.registry, genre_match_bonus=self.config.transfer.genre_match_bonus)
        self.transfer = TransferLearningManager(
            self.storage, self.similarity, self.config.transfer,
            known_games=lambda: [g.game_id for g in self.registry.all_games()])
        self.meta_learner = MetaLearner(self.config.meta,
                                        path=os.path.join(data_dir, 'meta_learner.json'))
        self.knowledge = KnowledgeMemory(self.config.knowledge,
                                         path=os.path.join(data_dir, 'knowledge.json'))

        self.sessions: Dict[str, GameSession] = {}
        self._closed = False

    # ── Games ────────────────────────────────────────────────────────────

    def attach_game(self, game: Union[GameProfile, str], force_new: bool = False) -> GameSession:
        """Register a game and give all four algorithms their starting weights."""
        profile = game if isinstance(game, GameProfile) else (
            self.registry.get(game) or GameProfile(game_id=game, name=game))
        game_id = profile.game_id
        if game_id in self.sessions and not force_new:
            return self.sessions[game_id]

        self.registry.add(profile)
        self.transfer.invalidate(game_id)

        algo_cfg = self.config.algorithm
        selector = AlgorithmSelector(game_id, self.meta_learner)
        for algorithm_type in AlgorithmType:
            algorithm = create_algorithm(algorithm_type, config=algo_cfg)
            self.transfer.initialize_with_transfer(
                game_id, algorithm, algorithm_type, force_new=force_new,
                state_size=algo_cfg.state_size, action_size=algo_cfg.action_size)
            selector.register(algorithm)

        patterns = PatternRecommender(algo_cfg.action_size, path=self._patterns_path(game_id))
        session = GameSession(profile, selector, patterns)
        self.sessions[game_id] = session

        if profile.genre:
            self.knowledge.remember(game_id, 'genre', profile.genre, source='registry')
        self.knowledge.maybe_recalculate()
        logger.info("Attached %s (%s)", game_id, ", ".join(
            f"{t.name}:{r.mode}" for t in AlgorithmType
            for r in [self.transfer.last_record(game_id, t)] if r))
        return session

    def session(self, game_id: str) -> GameSession:
        if game_id not in self.sessions:
            return self.attach_game(game_id)
        return self.sessions[game_id]

    def _patterns_path(self, game_id: str) -> str:
        return os.path.join(self.config.storage.data_dir, 'patterns',
                            f"{sanitize_game_id(game_id)}.json")

    def save_game(self, game_id: str) -> int:
        """Persist every algorithm and the pattern bindings of one game."""
        session = self.sessions.get(game_id)
        if session is None:
            return 0
        saved = sum(
            1 for algorithm in session.selector.algorithms.values()
            if self.storage.save_model(game_id, algorithm)
        )
        session.patterns.save()
        return saved

    def remove_game(self, game_id: str) -> bool:
        """Forget a game completely, including its model files."""
        session = self.sessions.pop(game_id, None)
        if session is not None:
            for loop in session.loops:
                loop.stop()
        removed = self.storage.delete_all_models(game_id)
        removed = self.registry.remove(game_id) or removed
        self.transfer.invalidate(game_id)
        self.knowledge.forget(game_id)
        patterns_path = self._patterns_path(game_id)
        if os.path.exists(patterns_path):
            os.remove(patterns_path)
        return removed or session is not None

    def prune_orphans(self) -> List[str]:
        return self.storage.prune_orphans(g.game_id for g in self.registry.all_games())

    # ── Modes ────────────────────────────────────────────────────────────

    def _loop_kwargs(self, game_id: str, rules: Iterable[RuleRecommender],
                     clock: Optional[Callable[[], float]]) -> Dict:
        session = self.session(game_id)
        kwargs = dict(selector=session.selector, config=self.config.decision,
                      rules=rules, patterns=session.patterns)
        if clock is not None:
            kwargs['clock'] = clock
        return kwargs

    def auto_mode(self, game_id: str, state_provider: Callable[[], Optional[GameState]],
                  executor: Optional[Callable[[GameAction], Optional[bool]]] = None,
                  rules: Iterable[RuleRecommender] = (),
                  clock: Optional[Callable[[], float]] = None) -> AutoModeManager:
        loop = AutoModeManager(state_provider, executor=executor,
                               **self._loop_kwargs(game_id, rules, clock))
        self.sessions[game_id].loops.append(loop)
        return loop

    def copilot_mode(self, game_id: str, state_provider: Callable[[], Optional[GameState]],
                     executor: Optional[Callable[[GameAction], Optional[bool]]] = None,
                     rules: Iterable[RuleRecommender] = (),
                     clock: Optional[Callable[[], float]] = None) -> CopilotManager:
        loop = CopilotManager(state_provider, executor=executor, knowledge=self.knowledge,
                              **self._loop_kwargs(game_id, rules, clock))
        self.sessions[game_id].loops.append(loop)
        return loop

    # ── Lifecycle ────────────────────────────────────────────────────────

    def status(self) -> Dict:
        return {
            'games': {
                game_id: {
                    'active_algorithm': s.selector.active_type().name,
                    'algorithms': {a.name: a.stats() for a in s.selector.algorithms.values()},
                    'loops': [type(l).__name__ for l in s.loops],
                }
                for game_id, s in self.sessions.items()
            },
            'stored_games': self.storage.list_games(),
            'meta_learner': self.meta_learner.performance_summary(),
            'knowledge': self.knowledge.stats(),
        }

    def shutdown(self):
        """Stop all loops and persist everything worth keeping."""
        if self._closed:
            return
        for session in self.sessions.values():
            for loop in session.loops:
                loop.stop()
        for game_id in list(self.sessions):
            self.save_game(game_id)
        self.meta_learner.save()
        self.knowledge.save()
        self._closed = True
        logger.info("Assistant shut down (%d games saved)", len(self.sessions))

    def __enter__(self) -> 'AssistantSystem':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
        return False
