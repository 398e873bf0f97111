"""Audit Service: hash-chained trail of retention decisions.

Every archive and purge applied by the retention archiver is logged with
cryptographic chaining so compliance reviews can verify the trail.
"""

from .audit_logger import AuditLogger, AuditAction, AuditEntity, AuditEntry

__all__ = [
    "AuditLogger",
    "AuditAction",
    "AuditEntity",
    "AuditEntry",
]
