from app.models.user import User, UserRole
from app.models.department import Department
from app.models.location import Location
from app.models.device import Device, DeviceStatus
from app.models.assignment import Assignment, AssignmentStatus, AssignmentReason
from app.models.audit_log import AuditLog, AuditAction
from app.models.token_blacklist import TokenBlacklist

__all__ = [
    "User",
    "UserRole",
    "Department",
    "Location",
    "Device",
    "DeviceStatus",
    "Assignment",
    "AssignmentStatus",
    "AssignmentReason",
    "AuditLog",
    "AuditAction",
    "TokenBlacklist",
]
