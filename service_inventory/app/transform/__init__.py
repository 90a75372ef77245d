"""
Record transformation for the Inventory Service.

Pure functions only: no I/O, no hidden state.
"""

from .records import RawRecord, transform, transform_record

__all__ = ["RawRecord", "transform", "transform_record"]
