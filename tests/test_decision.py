"""
Tests for candidate ranking and the Auto / Copilot decision loops.
"""

import sys
import os
import tempfile
import time
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from core.config import AlgorithmConfig, DecisionConfig
from core.state import GameState
from core.actions import GameAction, ActionType
from core.knowledge import KnowledgeMemory
from core.meta_learner import MetaLearner, AlgorithmSelector
from rl.base import AlgorithmType
from rl.q_learning import QLearning
from decision.candidates import (FunctionRule, PatternRecommender, ActionBinding,
                                 rank_candidates, PATTERN_CONFIDENCE)
from decision.loop import LoopPhase
from decision.auto import AutoModeManager
from decision.copilot import CopilotManager


class Clock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_selector(bias=(0.2, 0.9, 0.1)):
    """Selector with a deterministic greedy Q-learner over 3 actions."""
    meta = MetaLearner()
    selector = AlgorithmSelector("g", meta)
    algo = QLearning(4, 3, AlgorithmConfig(state_size=4, action_size=3, seed=0))
    algo.set_weights(np.concatenate([np.zeros(12, dtype=np.float32),
                                     np.asarray(bias, dtype=np.float32)]))
    algo.exploration_rate = 0.0
    selector.register(algo)
    return selector, algo, meta


def make_state():
    return GameState.from_features([0.1, 0.2, 0.3, 0.4], game_id="g")


class TestRankCandidates:
    def test_sorted_and_limited(self):
        actions = [GameAction.tap(10, 10, confidence=0.2),
                   GameAction.back(confidence=0.9),
                   None,
                   GameAction.home(confidence=0.5)]
        ranked = rank_candidates(actions, limit=2)
        assert [a.action_type for a in ranked] == [ActionType.BACK, ActionType.HOME]
        assert [a.rank for a in ranked] == [0, 1]

    def test_duplicates_keep_best(self):
        low = GameAction.tap(10, 10, confidence=0.2, source="rule")
        high = GameAction.tap(10, 10, confidence=0.7, source="pattern")
        same_id = low.with_metadata(confidence=0.4)
        ranked = rank_candidates([low, high, same_id], limit=5)
        assert len(ranked) == 1
        assert ranked[0].source == "pattern"

    def test_expected_reward_preferred_over_confidence(self):
        a = GameAction.tap(1, 1, confidence=0.9, expected_reward=0.1)
        b = GameAction.tap(50, 50, confidence=0.1, expected_reward=0.5)
        assert rank_candidates([a, b], limit=2)[0] == b


class TestCandidateSources:
    def test_function_rule(self):
        rule = FunctionRule(lambda s: GameAction.tap(5, 5), name="button")
        action = rule.recommend(make_state())
        assert action.confidence == 0.8
        assert action.source == "button"
        assert FunctionRule(lambda s: None).recommend(make_state()) is None

    def test_binding_confidence(self):
        binding = ActionBinding(0)
        assert binding.confidence == 0.5
        binding.successes = 3
        binding.failures = 1
        assert binding.confidence == pytest.approx(4 / 6)

    def test_pattern_recommender(self):
        patterns = PatternRecommender(action_size=3)
        state = make_state()
        patterns.record(state, 2, True)
        patterns.record(state, 2, True)
        patterns.record(state, 2, False)
        patterns.record(state, 0, False)
        patterns.record(state, None, True)

        proposals = patterns.recommend(state)
        assert [a.action_index for a in proposals] == [2]
        assert proposals[0].confidence == pytest.approx(PATTERN_CONFIDENCE * 0.6)
        assert proposals[0].source == "pattern"
        assert patterns.recommend(GameState.from_features([9, 9, 9, 9], game_id="g")) == []

    def test_pattern_persistence(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'patterns', 'g.json')
            patterns = PatternRecommender(3, path=path)
            patterns.record(make_state(), 1, True)
            patterns.save()
            reloaded = PatternRecommender(3, path=path)
            assert [a.action_index for a in reloaded.recommend(make_state())] == [1]


class TestDecisionLoop:
    def setup_method(self):
        self.selector, self.algo, self.meta = make_selector()
        self.clock = Clock()

    def test_no_state(self):
        loop = AutoModeManager(lambda: None, self.selector, clock=self.clock)
        result = loop.step()
        assert result.skipped
        assert result.reason == "no_state"
        assert loop.cycles_skipped == 1
        assert loop.phase == LoopPhase.IDLE

    def test_provider_error(self):
        def broken():
            raise RuntimeError("capture failed")

        loop = AutoModeManager(broken, self.selector, clock=self.clock)
        result = loop.step()
        assert result.skipped
        assert result.reason == "error"

    def test_busy_when_cycle_active(self):
        loop = AutoModeManager(make_state, self.selector, clock=self.clock)
        loop._cycle_lock.acquire()
        try:
            assert loop.run_cycle().reason == "busy"
        finally:
            loop._cycle_lock.release()

    def test_on_cycle_published(self):
        loop = CopilotManager(make_state, self.selector, clock=self.clock)
        results = []
        loop.on_cycle.subscribe(results.append)
        loop.step()
        assert len(results) == 1
        assert not results[0].skipped

    def test_background_operation(self):
        config = DecisionConfig(decision_interval_ms=10)
        loop = CopilotManager(make_state, self.selector, config=config)
        results = []
        loop.on_cycle.subscribe(results.append)
        loop.start()
        assert loop.running
        deadline = time.monotonic() + 5.0
        while not results and time.monotonic() < deadline:
            time.sleep(0.01)
        loop.stop()
        assert not loop.running
        assert results
        assert loop.cycles_run >= 1

    def test_stop_from_cycle_listener(self):
        config = DecisionConfig(decision_interval_ms=10)
        loop = CopilotManager(make_state, self.selector, config=config)
        results = []

        def stop_after_first(result):
            results.append(result)
            loop.stop()

        loop.on_cycle.subscribe(stop_after_first)
        loop.start()
        deadline = time.monotonic() + 5.0
        while loop._coordinator is not None and time.monotonic() < deadline:
            time.sleep(0.01)
        assert not loop.running
        assert loop._coordinator is None
        assert loop._executor is None
        assert len(results) == 1


class TestAutoMode:
    def setup_method(self):
        self.selector, self.algo, self.meta = make_selector()
        self.clock = Clock()
        self.executed = []
        self.outcome = True

        def execute(action):
            self.executed.append(action)
            return self.outcome

        self.auto = AutoModeManager(make_state, self.selector, executor=execute,
                                    patterns=PatternRecommender(3), clock=self.clock)

    def test_executes_best_and_learns(self):
        outcomes = []
        self.auto.on_outcome.subscribe(lambda action, reward: outcomes.append(reward))
        result = self.auto.step()
        assert not result.skipped
        assert result.chosen.action_index == 1
        assert self.executed == [result.chosen]
        assert self.algo.updates == 1
        assert self.meta.record(AlgorithmType.Q_LEARNING).trials == 1
        assert self.auto.success_rate == pytest.approx(0.1)
        assert outcomes[0].value == 1.0
        assert self.auto.stats()['pending'] == 0
        assert [a.action_index for a in self.auto.patterns.recommend(make_state())] == [1]

    def test_min_interval_and_repeat(self):
        self.auto.step()
        assert self.auto.step().reason == "min_interval"
        self.clock.advance(0.5)
        assert self.auto.step().reason == "repeat"
        self.clock.advance(0.6)
        result = self.auto.step()
        assert not result.skipped
        assert result.chosen.action_index == 1
        assert len(self.executed) == 2

    def test_user_interaction_pauses(self):
        self.auto.notify_user_interaction()
        assert self.auto.step().reason == "user_active"
        self.clock.advance(2.1)
        assert not self.auto.step().skipped

    def test_no_positive_candidate(self):
        selector, _, _ = make_selector(bias=(-0.2, -0.1, -0.3))
        auto = AutoModeManager(make_state, selector, clock=self.clock)
        result = auto.step()
        assert not result.skipped
        assert result.reason == "no_positive_candidate"
        assert result.chosen is None
        assert auto.actions_executed == 0

    def test_deferred_outcome(self):
        self.outcome = None
        result = self.auto.step()
        assert self.auto.stats()['pending'] == 1
        next_state = GameState.from_features([0.2, 0.2, 0.3, 0.4], game_id="g")
        assert self.auto.report_outcome(result.chosen, 0.5, next_state)
        assert not self.auto.report_outcome(result.chosen, 0.5)
        assert self.algo.updates == 1

    def test_unreported_outcomes_bounded(self):
        self.outcome = None
        chosen = []
        for _ in range(200):
            self.clock.advance(1.5)
            chosen.append(self.auto.step().chosen)
        assert self.auto.actions_executed == 200
        assert len(self.auto.pending) == self.auto.config.max_recent_actions
        assert not self.auto.report_outcome(chosen[0], True)
        assert self.auto.report_outcome(chosen[-1], True)

    def test_malformed_outcome_keeps_pending(self):
        self.outcome = None
        result = self.auto.step()
        assert not self.auto.report_outcome(result.chosen, "oops")
        assert self.auto.stats()['pending'] == 1
        assert self.algo.updates == 0
        assert self.auto.report_outcome(result.chosen, 1.0)

    def test_executor_failure_counts_as_failure(self):
        def broken(action):
            raise RuntimeError("injection failed")

        self.auto.executor = broken
        self.auto.step()
        assert self.auto.success_rate == 0.0
        assert self.meta.record(AlgorithmType.Q_LEARNING).average_reward == -0.5

    def test_rule_outranks_rl(self):
        self.auto.rules = [FunctionRule(lambda s: GameAction.back(), confidence=0.95)]
        result = self.auto.step()
        assert result.chosen.action_type == ActionType.BACK
        assert result.chosen.source == "rule"
        # An off-index rule action trains nothing
        assert self.algo.updates == 0

    def test_indexed_rule_action_credits_active_algorithm(self):
        self.auto.rules = [FunctionRule(lambda s: GameAction.back(action_index=2),
                                        confidence=0.95)]
        self.auto.step()
        assert self.algo.updates == 1
        assert self.meta.record(AlgorithmType.Q_LEARNING).trials == 1


class TestCopilotMode:
    def setup_method(self):
        self.selector, self.algo, self.meta = make_selector()
        self.clock = Clock()
        self.knowledge = KnowledgeMemory()
        self.executed = []

        def execute(action):
            self.executed.append(action)
            return True

        self.copilot = CopilotManager(make_state, self.selector, executor=execute,
                                      knowledge=self.knowledge, clock=self.clock)

    def test_suggests_without_executing(self):
        published = []
        self.copilot.on_suggestions.subscribe(published.append)
        result = self.copilot.step()
        assert [a.action_index for a in result.candidates] == [1, 0, 2]
        assert [a.rank for a in result.candidates] == [0, 1, 2]
        assert published[0] == result.candidates
        assert self.executed == []
        assert self.algo.updates == 0

    def test_rating_becomes_reward(self):
        result = self.copilot.step()
        best = result.candidates[0]
        assert self.copilot.report_effectiveness(best, 0.0)
        record = self.meta.record(AlgorithmType.Q_LEARNING)
        assert record.average_reward == -1.0
        assert record.successes == 0
        assert self.algo.updates == 1
        assert self.copilot.rating(result.state.state_key, best.action_id) == 0.0

    def test_highly_rated_action_resurfaces(self):
        calls = []

        def propose_once(state):
            calls.append(state)
            return GameAction.tap(5, 5, confidence=0.3) if len(calls) == 1 else None

        self.copilot.rules = [FunctionRule(propose_once)]
        self.knowledge.remember("g", "genre", "puzzle")
        prior = self.knowledge.recalculate_confidence()["g"]

        first = self.copilot.step()
        tapped = next(a for a in first.candidates if a.action_type == ActionType.TAP
                      and a.x == 5)
        assert self.copilot.report_effectiveness(tapped, 0.9)

        second = self.copilot.step()
        resurfaced = [a for a in second.candidates if a.source == "history"]
        assert len(resurfaced) == 1
        assert resurfaced[0].action_id == tapped.action_id
        assert resurfaced[0].confidence == pytest.approx(0.8 * 0.9 + 0.2 * prior)

    def test_low_rated_action_not_resurfaced(self):
        calls = []

        def propose_once(state):
            calls.append(state)
            return GameAction.tap(5, 5, confidence=0.3) if len(calls) == 1 else None

        self.copilot.rules = [FunctionRule(propose_once)]
        first = self.copilot.step()
        tapped = next(a for a in first.candidates if a.x == 5 and a.y == 5)
        self.copilot.report_effectiveness(tapped, 0.5)
        second = self.copilot.step()
        assert not [a for a in second.candidates if a.source == "history"]

    def test_accept_suggestion(self):
        result = self.copilot.step()
        best = result.candidates[0]
        assert self.copilot.accept_suggestion(best) is True
        assert self.executed == [best]
        assert self.copilot.rating(result.state.state_key, best.action_id) == 1.0
        assert self.copilot.stats()['suggestions_accepted'] == 1
        # Accepting counts as an action for the pacing rules
        assert self.copilot.step().reason == "min_interval"

    def test_unknown_action(self):
        stranger = GameAction.tap(1, 2)
        assert not self.copilot.report_effectiveness(stranger, 1.0)
        assert self.copilot.accept_suggestion(stranger) is None

    def test_suggestion_lookup_bounded(self):
        rng = np.random.default_rng(0)
        self.copilot.state_provider = lambda: GameState.from_features(
            rng.uniform(-1, 1, 4), game_id="g")
        rated = self.copilot.step().candidates[0]
        assert self.copilot.report_effectiveness(rated, 0.3)
        for _ in range(200):
            self.copilot.step()
        assert len(self.copilot._suggested) <= self.copilot.config.max_suggestions + 1
        # A rated action can still be re-rated after later cycles
        assert self.copilot.report_effectiveness(rated, 0.4)

    def test_domain_prior_refreshed_periodically(self):
        knowledge_clock = Clock(1000.0)
        self.copilot.knowledge = KnowledgeMemory(clock=knowledge_clock)
        knowledge = self.copilot.knowledge
        knowledge.remember("g", "genre", "puzzle")

        self.copilot.step()
        first = knowledge.domain_confidence("g")
        assert first > 0.0

        for i in range(9):
            knowledge.remember("g", f"fact{i}", i)
        self.copilot.step()
        assert knowledge.domain_confidence("g") == first

        knowledge_clock.advance(knowledge.config.recalculation_interval_s + 1)
        self.copilot.step()
        assert knowledge.domain_confidence("g") > first


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
