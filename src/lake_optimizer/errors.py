class LakeOptimizerError(Exception):
    """Base error for lake-optimizer."""


class PlanningError(LakeOptimizerError):
    """Raised when a partition fails to plan."""


class InvalidTableStateError(LakeOptimizerError):
    """Raised when a table cannot be optimized at all (unknown kind, bad properties)."""


class InvalidTransitionError(LakeOptimizerError):
    """Raised when a task runtime is moved through an illegal status change."""


class CommitError(LakeOptimizerError):
    """Base error raised when a partition commit fails."""

    def __init__(self, message: str, *, partition: str | None = None) -> None:
        super().__init__(message)
        self.partition = partition


class InconsistentTaskRuntimeError(CommitError):
    """Raised when a prepared task runtime does not match its reported files."""


class CommitConflictError(CommitError):
    """Raised when the table advanced in a conflicting way since the plan was made."""


class UnresolvedTreeNodeError(CommitError):
    """Raised when a target file's tree node matches no committed task."""


class UnsupportedFormatError(LakeOptimizerError):
    """Raised when an unsupported table format is requested."""


class MissingOptionError(LakeOptimizerError):
    """Raised when a required option is missing."""
