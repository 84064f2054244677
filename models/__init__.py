# =============================================================================
# 📦 models/__init__.py
# =============================================================================

from .scan_record import ScanRecord
from .types import UTCDateTime

__all__ = [
    "ScanRecord",
    "UTCDateTime",
]
