"""Exception taxonomy for quest runs."""

from __future__ import annotations


class QuestRunnerError(Exception):
    """Base class for runner errors."""


class StepExecutionError(QuestRunnerError):
    """A single browser action failed (selector, timeout, DOM errors)."""


class ElementMismatchError(StepExecutionError):
    """The element at recorded coordinates no longer matches the recording."""


class AgentStuckError(QuestRunnerError):
    """The agent stopped making measurable progress."""


class RunCancelledError(QuestRunnerError):
    """The run's cancel signal was set."""


class ConversationInvariantError(QuestRunnerError):
    """A tool result lost its tool call. This is a defect, not a recoverable state."""
