from app.services.auth_service import AuthService
from app.services.audit_service import AuditService
from app.services.stock_ledger import StockLedger
from app.services.assignment_state_machine import AssignmentStateMachine
from app.services.assignment_service import AssignmentService
from app.services.device_service import DeviceService
from app.services.user_service import UserService

__all__ = [
    "AuthService",
    "AuditService",
    "StockLedger",
    "AssignmentStateMachine",
    "AssignmentService",
    "DeviceService",
    "UserService",
]
