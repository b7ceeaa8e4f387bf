"""Record construction and update services."""

from .services import LIFECYCLE_FIELDS, RecordService, resolve_model

__all__ = ["RecordService", "LIFECYCLE_FIELDS", "resolve_model"]
