from enum import Enum


class ExecutionOutcome(str, Enum):
    """How one workflow execution ended."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    RETRY = "retry"
    FAILED = "failed"
