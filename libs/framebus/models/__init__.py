from framebus.models.actions import CONTROL_ACTIONS, FALLBACK_ACTIONS, Action, Channel
from framebus.models.envelope import PROTOCOL_TAG, Envelope, new_message_id
from framebus.models.report import (
    CircularPath,
    DiagnosticsReport,
    FlowAnalysis,
    FlowRating,
    StatCategory,
)

__all__ = [
    "Action",
    "CONTROL_ACTIONS",
    "Channel",
    "CircularPath",
    "DiagnosticsReport",
    "Envelope",
    "FALLBACK_ACTIONS",
    "FlowAnalysis",
    "FlowRating",
    "PROTOCOL_TAG",
    "StatCategory",
    "new_message_id",
]
