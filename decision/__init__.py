"""
Decision loop: Auto mode executes, Copilot mode suggests.
"""

from decision.candidates import (RuleRecommender, FunctionRule, PatternRecommender,
                                 ActionBinding, rank_candidates)
from decision.loop import DecisionLoop, LoopPhase, CycleResult
from decision.auto import AutoModeManager
from decision.copilot import CopilotManager

__all__ = [
    "RuleRecommender",
    "FunctionRule",
    "PatternRecommender",
    "ActionBinding",
    "rank_candidates",
    "DecisionLoop",
    "LoopPhase",
    "CycleResult",
    "AutoModeManager",
    "CopilotManager",
]
