# ABOUTME: Declares the error taxonomy shared by tracers, calibrator, selector, and pipeline.
# ABOUTME: Separates fatal startup errors from expected, handled runtime conditions.


class KnowledgeTracingError(Exception):
    """Base class for every error raised by the mastery engine."""


class ConfigurationError(KnowledgeTracingError):
    """Model or engine parameters are invalid. Fatal at startup."""


class SkillGraphError(ConfigurationError):
    """The prerequisite graph is cyclic or references unknown skills."""


class ValidationError(KnowledgeTracingError):
    """A submission is malformed or references unknown ids; the attempt is rejected."""

    def __init__(self, message: str, idempotency_key: str = "") -> None:
        super().__init__(message)
        self.idempotency_key = idempotency_key


class InsufficientHistoryError(KnowledgeTracingError):
    """The sequence tracer received no history; callers substitute the prior."""


class NoEligibleItemError(KnowledgeTracingError):
    """No item satisfies the selection constraints for the student."""

    def __init__(self, student_id: str, message: str = "") -> None:
        super().__init__(message or f"No eligible item for student {student_id}")
        self.student_id = student_id


class DegradedModeWarning(KnowledgeTracingError):
    """Sequence inference timed out and the pipeline fell back to BKT-only fusion."""


class StaleWriteError(KnowledgeTracingError):
    """A profile write carried a timestamp not newer than the stored profile."""
