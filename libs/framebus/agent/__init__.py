"""Peer agent: reacts to bus traffic for one hosting context."""

from framebus.agent.base import PeerAgent
from framebus.agent.ports import MemorySettingsStore, QuestionSource, SettingsStore
from framebus.agent.state import PeerState

__all__ = [
    "MemorySettingsStore",
    "PeerAgent",
    "PeerState",
    "QuestionSource",
    "SettingsStore",
]
