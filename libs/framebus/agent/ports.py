"""Collaborator interfaces the peer agent drives.

Question extraction, answering and settings persistence live outside the
bus; the agent only talks to them through these small interfaces.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable


class QuestionSource(ABC):
    """Finds and analyzes questions in the hosting context."""

    @abstractmethod
    def has_questions(self) -> bool:
        """Check if this context currently shows a question."""

    @abstractmethod
    async def analyze(self) -> None:
        """Extract and answer the current question."""

    def on_question_ready(self, callback: Callable[[], None]) -> None:
        """Register a callback for when a new question appears.

        Sources that cannot detect new questions may leave this as a no-op.
        """


class SettingsStore(ABC):
    """Persists the solver on/off switch."""

    @abstractmethod
    def get_solver_enabled(self) -> bool: ...

    @abstractmethod
    def set_solver_enabled(self, enabled: bool) -> None: ...


class MemorySettingsStore(SettingsStore):
    """Settings kept in memory for the lifetime of the process."""

    def __init__(self, enabled: bool = False) -> None:
        self._enabled = enabled

    def get_solver_enabled(self) -> bool:
        return self._enabled

    def set_solver_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
