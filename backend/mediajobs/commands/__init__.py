"""
Command construction.

Turns typed input/output specs into a validated argv Command.
No shell strings, no unchecked codec identifiers.
"""

from .errors import ValidationError, UnknownPresetError
from .models import (
    SourceKind,
    StreamMode,
    InputSpec,
    OutputSpec,
    Redirect,
    Command,
)
from .presets import PRESETS, list_presets, merge_with_preset
from .builder import CommandBuilder

__all__ = [
    # Errors
    "ValidationError",
    "UnknownPresetError",
    # Models
    "SourceKind",
    "StreamMode",
    "InputSpec",
    "OutputSpec",
    "Redirect",
    "Command",
    # Presets
    "PRESETS",
    "list_presets",
    "merge_with_preset",
    # Builder
    "CommandBuilder",
]
