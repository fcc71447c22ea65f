"""Disputes, court cases and property freezing."""
from .dispute_service import DisputeService
from .state_machine import CaseStateMachine, DisputeStateMachine

__all__ = ["DisputeService", "DisputeStateMachine", "CaseStateMachine"]
