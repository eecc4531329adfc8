"""
Command validation errors.

Validation errors are raised synchronously at build time, before any
queue slot, scratch directory or process is consumed. They are never
retryable: the caller must fix the job description.
"""

from typing import List, Optional, Tuple


class ValidationError(Exception):
    """
    Raised when a job description cannot be turned into a Command.

    Errors are field-addressable. `field` and `reason` describe the first
    problem found; `issues` holds every (field, reason) pair collected
    during the build.
    """

    def __init__(
        self,
        field: str,
        reason: str,
        issues: Optional[List[Tuple[str, str]]] = None,
    ):
        self.field = field
        self.reason = reason
        self.issues = issues or [(field, reason)]
        message = f"{field}: {reason}"
        if len(self.issues) > 1:
            message += f" (and {len(self.issues) - 1} more)"
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "reason": self.reason,
            "issues": [{"field": f, "reason": r} for f, r in self.issues],
        }


class UnknownPresetError(ValidationError):
    """Raised when a job references a preset name that does not exist."""

    def __init__(self, preset: str):
        self.preset = preset
        super().__init__("preset", f"unknown preset '{preset}'")
