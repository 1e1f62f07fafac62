"""Wallet-based government ID verification controller."""
from .classifier import classify
from .flow_manager import FlowManager
from .state import FlowEvent, FlowOutcome, FlowPhase, FlowResult

__all__ = [
    "classify",
    "FlowManager",
    "FlowEvent",
    "FlowOutcome",
    "FlowPhase",
    "FlowResult",
]
