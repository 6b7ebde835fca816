from .models import (
    ConversionRequest,
    ConversionState,
    HeaderBackup,
    KeyslotDescriptor,
    Outcome,
    SessionReport,
    SessionResult,
)

__all__ = [
    "ConversionRequest",
    "ConversionState",
    "HeaderBackup",
    "KeyslotDescriptor",
    "Outcome",
    "SessionReport",
    "SessionResult",
]
