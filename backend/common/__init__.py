"""Common module — shared utilities for the SyncUp backend."""

from backend.common.audit import AuditTrail, create_audit_entry
from backend.common.constants import (
    DASHBOARD_ROLES,
    DEPARTMENT_ADMIN_ROLES,
    DEPARTMENT_NAME_MAX_LENGTH,
    ProjectHealth,
    TaskStatus,
    TaskType,
    UserRole,
)
from backend.common.exceptions import (
    AppException,
    DataFetchException,
    ForbiddenException,
    InvalidOperationException,
    NotFoundException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ProjectHealth",
    "TaskStatus",
    "TaskType",
    "UserRole",
    "DASHBOARD_ROLES",
    "DEPARTMENT_ADMIN_ROLES",
    "DEPARTMENT_NAME_MAX_LENGTH",
    # Exceptions
    "AppException",
    "DataFetchException",
    "ForbiddenException",
    "InvalidOperationException",
    "NotFoundException",
    "register_exception_handlers",
]
