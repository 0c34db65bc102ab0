"""
Audit log of sync operations.
"""

from collabsync.core.audit.models import AuditRecord, AuditStatus
from collabsync.core.audit.store import AuditLog

__all__ = ["AuditLog", "AuditRecord", "AuditStatus"]
