"""
Tests for configuration, value types, events, knowledge memory and the meta-learner.
"""

import sys
import os
import tempfile
import dataclasses
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from core.config import (AssistantConfig, AlgorithmConfig,
                         MetaLearningConfig, ConfigError)
from core.state import GameState
from core.actions import GameAction, ActionType, ActionSpace
from core.reward import ActionReward
from core.events import EventChannel
from core.knowledge import KnowledgeMemory, DAY_SECONDS
from core.meta_learner import MetaLearner, AlgorithmSelector, DEFAULT_ALGORITHM
from rl.base import AlgorithmType
from rl.q_learning import QLearning


class TestConfig:
    def test_defaults(self):
        config = AssistantConfig()
        assert config.algorithm.batch_size == 32
        assert config.algorithm.replay_capacity == 10000
        assert config.algorithm.epsilon_decay == 0.995
        assert config.decision.max_suggestions == 5
        assert config.transfer.min_similarity == 0.4
        assert config.meta.persist is False

    def test_invalid_values_raise(self):
        with pytest.raises(ConfigError):
            AssistantConfig(algorithm=AlgorithmConfig(batch_size=0))
        with pytest.raises(ConfigError):
            AssistantConfig(algorithm=AlgorithmConfig(replay_capacity=8, batch_size=32))
        with pytest.raises(ConfigError):
            AssistantConfig(algorithm=AlgorithmConfig(epsilon_min=1.5))

    def test_from_dict_partial(self):
        config = AssistantConfig.from_dict({'decision': {'max_suggestions': 3}})
        assert config.decision.max_suggestions == 3
        assert config.decision.min_action_interval_ms == 300
        assert config.algorithm.state_size == 16

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigError):
            AssistantConfig.from_dict({'algorithm': {'no_such_field': 1}})

    def test_save_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'config.json')
            config = AssistantConfig(meta=MetaLearningConfig(persist=True))
            config.storage.data_dir = tmpdir
            config.save(path)
            loaded = AssistantConfig.load(path)
            assert loaded.meta.persist is True
            assert loaded.storage.data_dir == tmpdir
            assert loaded.to_dict() == config.to_dict()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('GAMEPILOT_DATA_DIR', '/tmp/gp')
        monkeypatch.setenv('GAMEPILOT_STATE_SIZE', '8')
        monkeypatch.setenv('GAMEPILOT_PERSIST_META', 'true')
        config = AssistantConfig.from_env()
        assert config.storage.data_dir == '/tmp/gp'
        assert config.algorithm.state_size == 8
        assert config.meta.persist is True


class TestGameState:
    def test_features_read_only(self):
        state = GameState.from_features([0.1, 0.2, 0.3], game_id="g")
        assert state.features.dtype == np.float32
        with pytest.raises(ValueError):
            state.features[0] = 1.0
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.game_id = "other"

    def test_source_array_copied(self):
        source = np.array([1.0, 2.0], dtype=np.float32)
        state = GameState(features=source)
        source[0] = 9.0
        assert state.features[0] == 1.0

    def test_state_key(self):
        a = GameState.from_features([0.11, 0.52], game_id="g")
        b = GameState.from_features([0.12, 0.49], game_id="g")
        c = GameState.from_features([0.9, 0.5], game_id="g")
        assert a.state_key.startswith("g:")
        assert len(a.state_key) == len("g:") + 12
        assert a.state_key == b.state_key
        assert a.state_key != c.state_key

    def test_is_valid(self):
        assert GameState.from_features([0.0, 1.0]).is_valid(2)
        assert not GameState.from_features([0.0, 1.0]).is_valid(3)
        assert not GameState.from_features([0.0, float('nan')]).is_valid()


class TestGameAction:
    def test_identity_equality(self):
        a = GameAction.tap(100, 200)
        b = GameAction.tap(100, 200)
        assert a != b
        assert a.is_similar(b)
        assert len({a, b}) == 2

    def test_with_metadata_keeps_id(self):
        a = GameAction.swipe(0, 0, 100, 100, confidence=0.3)
        b = a.with_metadata(confidence=0.9, rank=2)
        assert a == b
        assert b.confidence == 0.9
        assert b.rank == 2
        assert a.confidence == 0.3

    def test_score(self):
        assert GameAction.back(confidence=0.4).score == 0.4
        assert GameAction.back(confidence=0.4, expected_reward=-1.0).score == -1.0

    def test_is_similar_kinds(self):
        assert not GameAction.tap(10, 10).is_similar(GameAction.long_press(10, 10))
        assert GameAction.tap(10, 10).is_similar(GameAction.tap(25, 5))
        assert not GameAction.tap(10, 10).is_similar(GameAction.tap(50, 10))
        assert not GameAction.key_press(4).is_similar(GameAction.key_press(5))
        assert GameAction.multi_touch([(1, 2), (3, 4)]).points == ((1, 2), (3, 4))


class TestActionSpace:
    def test_layout(self):
        space = ActionSpace(12)
        state = GameState.from_features([0.0], screen_width=1000, screen_height=2000)
        center = space.action_for_index(0, state)
        assert center.action_type == ActionType.TAP
        assert (center.x, center.y) == (500, 1000)
        swipe_up = space.action_for_index(5, state)
        assert swipe_up.action_type == ActionType.SWIPE
        assert swipe_up.end_y < swipe_up.y
        assert swipe_up.duration_ms == 300
        assert space.action_for_index(9, state).duration_ms == 500
        assert space.action_for_index(10).action_type == ActionType.BACK
        assert space.action_for_index(11).action_type == ActionType.HOME

    def test_wraps_modulo(self):
        space = ActionSpace(24)
        wrapped = space.action_for_index(13)
        assert wrapped.action_type == ActionType.TAP
        assert wrapped.is_similar(space.action_for_index(1), tolerance=0)
        assert wrapped.action_index == 13

    def test_index_of(self):
        space = ActionSpace(12)
        assert space.index_of(space.action_for_index(7)) == 7
        assert space.index_of(GameAction.back()) == 10
        assert space.index_of(GameAction.tap(1, 1)) is None
        assert space.index_of(None) is None
        assert ActionSpace(3).index_of(GameAction.home(action_index=11)) is None


class TestActionReward:
    def test_from_outcome(self):
        assert ActionReward.from_outcome(True).value == 1.0
        assert ActionReward.from_outcome(False).value == -0.5
        assert not ActionReward.from_outcome(False).succeeded

    def test_coerce(self):
        assert ActionReward.coerce(0.3).succeeded
        assert not ActionReward.coerce(-0.2).succeeded
        assert ActionReward.coerce(None).value == 0.0


class TestEventChannel:
    def test_delivery_order(self):
        channel = EventChannel("test")
        received = []
        channel.subscribe(lambda x: received.append(('a', x)))
        channel.subscribe(lambda x: received.append(('b', x)))
        assert channel.publish(1) == 2
        assert received == [('a', 1), ('b', 1)]

    def test_unsubscribe_during_delivery(self):
        channel = EventChannel("test")
        received = []

        def first(x):
            received.append('first')
            channel.unsubscribe(second)

        def second(x):
            received.append('second')

        channel.subscribe(first)
        channel.subscribe(second)
        channel.publish(None)
        assert received == ['first', 'second']
        channel.publish(None)
        assert received == ['first', 'second', 'first']

    def test_failing_listener_does_not_stop_delivery(self):
        channel = EventChannel("test")
        received = []

        def broken(x):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        assert channel.publish(5) == 1
        assert received == [5]


class TestKnowledgeMemory:
    def test_confidence_formula(self):
        memory = KnowledgeMemory()
        now = 1_000_000.0
        for i in range(5):
            memory.remember("game", f"k{i}", i, now=now)
        confidence = memory.recalculate_confidence(now)
        # quantity 5/50, recency 1.0, usage 0.0
        assert confidence["game"] == pytest.approx(0.4 * 0.1 + 0.4 * 1.0)

        for _ in range(5):
            memory.recall("game", "k0", now=now)
        memory.recalculate_confidence(now)
        assert memory.domain_confidence("game") == pytest.approx(0.04 + 0.4 + 0.2 * 0.2)

    def test_recency_fades(self):
        memory = KnowledgeMemory()
        memory.remember("game", "k", 1, now=0.0)
        memory.recalculate_confidence(15 * DAY_SECONDS)
        half = memory.domain_confidence("game")
        memory.recalculate_confidence(60 * DAY_SECONDS)
        assert memory.domain_confidence("game") < half
        assert memory.domain_confidence("unknown") == 0.0

    def test_maybe_recalculate(self):
        memory = KnowledgeMemory()
        memory.remember("game", "k", 1, now=1000.0)
        assert memory.maybe_recalculate(now=1000.0)
        assert not memory.maybe_recalculate(now=1100.0)
        assert memory.maybe_recalculate(now=1400.0)

    def test_save_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'knowledge.json')
            memory = KnowledgeMemory(path=path)
            memory.remember("game", "genre", "puzzle")
            memory.recalculate_confidence()
            memory.save()

            loaded = KnowledgeMemory(path=path)
            assert loaded.recall("game", "genre") == "puzzle"
            assert loaded.domain_confidence("game") == memory.domain_confidence("game")

    def test_forget(self):
        memory = KnowledgeMemory()
        memory.remember("game", "a", 1)
        memory.remember("game", "b", 2)
        assert memory.forget("game", "a") == 1
        assert memory.forget("game") == 1
        assert memory.items("game") == []


class TestMetaLearner:
    def test_defaults(self):
        meta = MetaLearner()
        assert meta.hyperparameters(AlgorithmType.PPO) == (0.0003, 0.99, 0.2)
        assert meta.hyperparameters(AlgorithmType.DQN) == (0.001, 0.99, 0.1)
        assert meta.hyperparameters(AlgorithmType.SARSA) == (0.1, 0.95, 0.1)
        assert meta.get_best_algorithm() == DEFAULT_ALGORITHM == AlgorithmType.Q_LEARNING

    def test_incremental_mean(self):
        meta = MetaLearner()
        for reward in [1.0, 0.0, 0.5]:
            meta.record_trial(AlgorithmType.SARSA, reward, reward > 0)
        record = meta.record(AlgorithmType.SARSA)
        assert record.average_reward == pytest.approx(0.5)
        assert record.trials == 3
        assert record.successes == 2

    def test_high_reward_shrinks_learning_rate(self):
        meta = MetaLearner()
        before_dqn = meta.hyperparameters(AlgorithmType.DQN)
        before_sarsa = meta.hyperparameters(AlgorithmType.SARSA)
        adapted = [meta.record_trial(AlgorithmType.DQN, 0.9, True) for _ in range(10)]
        assert adapted == [False] * 9 + [True]

        lr, df, er = meta.hyperparameters(AlgorithmType.DQN)
        assert lr < before_dqn[0]
        assert lr == pytest.approx(0.001 * 0.95)
        assert er == pytest.approx(0.1 * 0.95)
        assert df > before_dqn[1]
        assert meta.hyperparameters(AlgorithmType.SARSA) == before_sarsa

    def test_low_reward_grows_rates(self):
        meta = MetaLearner()
        for _ in range(10):
            meta.record_trial(AlgorithmType.SARSA, 0.1, False)
        lr, df, er = meta.hyperparameters(AlgorithmType.SARSA)
        assert lr == pytest.approx(0.105)
        assert er == pytest.approx(0.105)
        assert df == 0.95

    def test_rate_bounds(self):
        meta = MetaLearner()
        for _ in range(2000):
            meta.record_trial(AlgorithmType.PPO, 1.0, True)
        lr, df, er = meta.hyperparameters(AlgorithmType.PPO)
        assert lr >= 0.0001
        assert er >= 0.01
        assert df <= 0.999

    def test_best_algorithm_needs_min_trials(self):
        meta = MetaLearner()
        for _ in range(9):
            meta.record_trial(AlgorithmType.PPO, 1.0, True)
        assert meta.get_best_algorithm() == AlgorithmType.Q_LEARNING
        meta.record_trial(AlgorithmType.PPO, 1.0, True)
        assert meta.get_best_algorithm() == AlgorithmType.PPO

    def test_forced_override(self):
        meta = MetaLearner()
        for _ in range(10):
            meta.record_trial(AlgorithmType.PPO, 1.0, True)
        meta.set_forced_algorithm(AlgorithmType.SARSA)
        assert meta.get_best_algorithm() == AlgorithmType.SARSA
        meta.set_forced_algorithm(None)
        assert meta.get_best_algorithm() == AlgorithmType.PPO

    def test_adaptation_disabled(self):
        meta = MetaLearner(MetaLearningConfig(adaptive_enabled=False))
        for _ in range(10):
            assert not meta.record_trial(AlgorithmType.DQN, 0.9, True)
        assert meta.hyperparameters(AlgorithmType.DQN)[0] == 0.001

    def test_persistence_toggle(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'meta.json')
            transient = MetaLearner(path=path)
            transient.record_trial(AlgorithmType.DQN, 1.0, True)
            assert not transient.save()
            assert not os.path.exists(path)

            config = MetaLearningConfig(persist=True)
            meta = MetaLearner(config, path=path)
            meta.record_trial(AlgorithmType.DQN, 1.0, True)
            assert meta.save()

            restored = MetaLearner(config, path=path)
            assert restored.record(AlgorithmType.DQN).trials == 1
            assert restored.record(AlgorithmType.DQN).average_reward == 1.0


class TestAlgorithmSelector:
    def setup_method(self):
        self.meta = MetaLearner()
        self.selector = AlgorithmSelector("game", self.meta)
        config = AlgorithmConfig(state_size=4, action_size=3, seed=1)
        self.algo = self.selector.register(QLearning(4, 3, config))

    def test_active_type_falls_back(self):
        assert self.selector.active_type() == AlgorithmType.Q_LEARNING
        self.meta.set_forced_algorithm(AlgorithmType.PPO)
        # PPO is not registered for this game
        assert self.selector.active_type() == AlgorithmType.Q_LEARNING

    def test_record_outcome_closes_loop(self):
        state = GameState.from_features([0.1, 0.2, 0.3, 0.4])
        next_state = GameState.from_features([0.2, 0.2, 0.3, 0.4])
        action = self.algo.choose_action(state)
        for _ in range(10):
            assert self.selector.record_outcome(AlgorithmType.Q_LEARNING, state, action,
                                                ActionReward(0.9, True), next_state)
        assert self.algo.updates == 10
        assert self.meta.record(AlgorithmType.Q_LEARNING).trials == 10
        # Adapted hyperparameters were pushed into the algorithm
        assert self.algo.learning_rate == pytest.approx(0.1 * 0.95)

    def test_record_outcome_without_algorithm(self):
        state = GameState.from_features([0.1, 0.2, 0.3, 0.4])
        learned = self.selector.record_outcome(None, state, GameAction.back(), 1.0)
        assert not learned
        assert all(r.trials == 0 for r in self.meta.records.values())

    def test_record_outcome_malformed_reward(self):
        state = GameState.from_features([0.1, 0.2, 0.3, 0.4])
        action = self.algo.choose_action(state)
        assert not self.selector.record_outcome(AlgorithmType.Q_LEARNING, state, action, "oops")
        assert self.algo.updates == 0
        assert self.meta.record(AlgorithmType.Q_LEARNING).trials == 0


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
