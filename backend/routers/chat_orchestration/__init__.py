"""
Parley Chat Orchestration - the per-turn decision pipeline.

Components:
- PreProcessingClassifier: intent / emotion / sensitivity in one model call
- rule_engine.select: priority-ordered rule matching -> strategy or sentinel
- ToolOrchestrator: two-call tool pattern with latency accounting
- WorkflowTracker: ordered process completion and persona rendering
- TurnCoordinator: sequences the above for one chat turn

Only the data model and session state are re-exported here. The classifier
and everything built on it read the configuration store, which itself depends
on the data model, so import those from their own modules.
"""

from .models import (
    SENTINEL_SENSITIVE,
    SENTINEL_UNCLEAR,
    ClassifierResult,
    DecisionProcess,
    ModelParameters,
    Rule,
    ToolCallRecord,
    TurnResult,
    WorkflowState,
)
from .session import ChatSession, SessionRegistry

__all__ = [
    "SENTINEL_SENSITIVE",
    "SENTINEL_UNCLEAR",
    "ClassifierResult",
    "DecisionProcess",
    "ModelParameters",
    "Rule",
    "ToolCallRecord",
    "TurnResult",
    "WorkflowState",
    "ChatSession",
    "SessionRegistry",
]
