"""
Conversation package for driving the meeting scheduling flow.

This package provides:
- FlowStep / FLOW_TABLE: the ordered steps and the policy each one runs
- SessionContext: in-memory state of one flow instance
- TurnOutcome / OutboundMessage: what a turn sends back
- ConversationStateManager: the interpreter that suspends and resumes steps
"""

from .states import FlowStep, StepPolicy, StepSpec, FLOW_TABLE, first_step, get_step_spec, next_step
from .context import SessionContext, OutboundMessage, TurnOutcome, TurnStatus
from .state_manager import ConversationStateManager, SIGNED_OUT_MESSAGE

__all__ = [
    "FlowStep",
    "StepPolicy",
    "StepSpec",
    "FLOW_TABLE",
    "first_step",
    "get_step_spec",
    "next_step",
    "SessionContext",
    "OutboundMessage",
    "TurnOutcome",
    "TurnStatus",
    "ConversationStateManager",
    "SIGNED_OUT_MESSAGE",
]
