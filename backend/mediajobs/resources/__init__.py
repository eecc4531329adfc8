"""
Resource accounting: aggregate budget admission and per-job scratch storage.
"""

from .governor import AdmissionDecision, ResourceEstimate, ResourceGovernor
from .tempfiles import TempFileManager

__all__ = [
    "AdmissionDecision",
    "ResourceEstimate",
    "ResourceGovernor",
    "TempFileManager",
]
