"""
Role-Based Access Control Module

Answers "can this role perform this action". Owners are always allowed; every
other role is resolved through the role_permissions table, which is seeded
with the default matrix the first time it is read.
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional, Union

from .audit import AuditEventType, AuditTrail
from .storage import StorageInterface


logger = logging.getLogger(__name__)


class UserRole(Enum):
    """Application roles"""
    OWNER = "owner"
    HR = "hr"
    ACCOUNTANT = "accountant"
    EMPLOYEE = "employee"


class Permission(Enum):
    """System permissions"""
    # Employee permissions
    VIEW_ALL_EMPLOYEES = "view_all_employees"
    VIEW_SENSITIVE_EMPLOYEES = "view_sensitive_employees"
    VIEW_SALARY_NONSENSITIVE = "view_salary_nonsensitive"
    VIEW_SALARY_SENSITIVE = "view_salary_sensitive"
    MANAGE_EMPLOYEES = "manage_employees"
    DELETE_EMPLOYEES = "delete_employees"
    MANAGE_GROUPS = "manage_groups"
    VIEW_EDIT_CONTRACTS = "view_edit_contracts"

    # Loan permissions
    MANAGE_LOANS = "manage_loans"
    VIEW_LOANS = "view_loans"

    # Leave permissions
    APPROVE_LEAVE = "approve_leave"
    SUBMIT_OWN_LEAVE = "submit_own_leave"

    # Payroll permissions
    RUN_PAYROLL = "run_payroll"
    EXPORT_BANK_FILE = "export_bank_file"
    VIEW_PAYROLL_HISTORY = "view_payroll_history"
    VIEW_REPORTS = "view_reports"

    # Admin permissions
    MANAGE_USERS = "manage_users"

    # Wiki permissions
    READ_WIKI = "read_wiki"
    WRITE_WIKI = "write_wiki"


PERMISSION_LABELS: Dict[Permission, str] = {
    Permission.VIEW_ALL_EMPLOYEES: "View All Employees (including sensitive)",
    Permission.VIEW_SENSITIVE_EMPLOYEES: "View Sensitive Employee Badge",
    Permission.VIEW_SALARY_NONSENSITIVE: "View Salary (non-sensitive employees)",
    Permission.VIEW_SALARY_SENSITIVE: "View Salary (sensitive employees)",
    Permission.MANAGE_EMPLOYEES: "Add & Edit Employees",
    Permission.DELETE_EMPLOYEES: "Delete Employees",
    Permission.MANAGE_GROUPS: "Manage Groups",
    Permission.VIEW_EDIT_CONTRACTS: "View & Edit Contracts",
    Permission.MANAGE_LOANS: "Create Loans & Record Installments",
    Permission.VIEW_LOANS: "View Loans",
    Permission.APPROVE_LEAVE: "Approve Leave Requests",
    Permission.SUBMIT_OWN_LEAVE: "Submit Own Leave",
    Permission.RUN_PAYROLL: "Run Payroll",
    Permission.EXPORT_BANK_FILE: "Export Bank File",
    Permission.VIEW_PAYROLL_HISTORY: "View Payroll History",
    Permission.VIEW_REPORTS: "View Reports",
    Permission.MANAGE_USERS: "Manage Users (invite / deactivate)",
    Permission.READ_WIKI: "Read Wiki",
    Permission.WRITE_WIKI: "Write Wiki",
}

# Roles granted each permission out of the box; owner is implicit
DEFAULT_GRANTS: Dict[Permission, set] = {
    Permission.VIEW_ALL_EMPLOYEES: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.VIEW_SENSITIVE_EMPLOYEES: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.VIEW_SALARY_NONSENSITIVE: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.VIEW_SALARY_SENSITIVE: {UserRole.ACCOUNTANT},
    Permission.MANAGE_EMPLOYEES: {UserRole.HR},
    Permission.MANAGE_GROUPS: {UserRole.HR},
    Permission.VIEW_EDIT_CONTRACTS: {UserRole.HR},
    Permission.MANAGE_LOANS: {UserRole.HR},
    Permission.VIEW_LOANS: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.APPROVE_LEAVE: {UserRole.HR},
    Permission.SUBMIT_OWN_LEAVE: {UserRole.HR, UserRole.ACCOUNTANT, UserRole.EMPLOYEE},
    Permission.RUN_PAYROLL: {UserRole.ACCOUNTANT},
    Permission.EXPORT_BANK_FILE: {UserRole.ACCOUNTANT},
    Permission.VIEW_PAYROLL_HISTORY: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.VIEW_REPORTS: {UserRole.HR, UserRole.ACCOUNTANT},
    Permission.READ_WIKI: {UserRole.HR, UserRole.ACCOUNTANT, UserRole.EMPLOYEE},
    Permission.WRITE_WIKI: {UserRole.HR},
}


def _coerce(enum_cls, value):
    """Return the enum member for value, or None when it is not one"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


class PermissionGate(ABC):
    """Capability check consumed by the loan engine"""

    @abstractmethod
    def has_permission(self, role: Union[UserRole, str],
                       action: Union[Permission, str]) -> bool:
        """Check whether role may perform action"""
        pass


class RolePermissionGate(PermissionGate):
    """Permission gate backed by the role_permissions table"""

    TABLE = "role_permissions"

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit = audit_trail
        self._seed_lock = threading.Lock()
        self._seeded = False

    @staticmethod
    def _row_id(permission: Permission, role: UserRole) -> str:
        return f"{permission.value}:{role.value}"

    def _ensure_seeded(self) -> None:
        """Write the default matrix unless the table already has rows"""
        if self._seeded:
            return
        with self._seed_lock:
            if self._seeded:
                return
            if self.storage.count(self.TABLE) == 0:
                rows = []
                for permission in Permission:
                    granted = DEFAULT_GRANTS.get(permission, set())
                    for role in UserRole:
                        if role == UserRole.OWNER:
                            continue
                        rows.append((self._row_id(permission, role), {
                            'id': self._row_id(permission, role),
                            'feature': permission.value,
                            'role': role.value,
                            'enabled': role in granted,
                        }))
                self.storage.save_many(self.TABLE, rows)
                logger.info("Seeded %d default role permissions", len(rows))
            self._seeded = True

    def has_permission(self, role: Union[UserRole, str],
                       action: Union[Permission, str]) -> bool:
        role = _coerce(UserRole, role)
        action = _coerce(Permission, action)
        if role is None or action is None:
            return False

        # Owner always returns true without hitting storage
        if role == UserRole.OWNER:
            return True

        self._ensure_seeded()
        row = self.storage.load(self.TABLE, self._row_id(action, role))
        return bool(row and row.get('enabled'))

    def get_role_permissions(self, role: Union[UserRole, str]) -> Dict[Permission, bool]:
        """Get every permission for a role as a flat map"""
        role = _coerce(UserRole, role)
        if role is None:
            return {permission: False for permission in Permission}
        if role == UserRole.OWNER:
            return {permission: True for permission in Permission}

        self._ensure_seeded()
        enabled = {
            row['feature']: bool(row.get('enabled'))
            for row in self.storage.find(self.TABLE, {'role': role.value})
        }
        return {permission: enabled.get(permission.value, False) for permission in Permission}

    def set_permission(self, role: Union[UserRole, str], permission: Union[Permission, str],
                       enabled: bool, changed_by: Optional[str] = None) -> None:
        """Grant or revoke a permission for a non-owner role"""
        role = _coerce(UserRole, role)
        permission = _coerce(Permission, permission)
        if role is None or permission is None:
            raise ValueError("Unknown role or permission")
        if role == UserRole.OWNER:
            raise ValueError("Owner permissions cannot be changed")

        self._ensure_seeded()
        row_id = self._row_id(permission, role)
        self.storage.save(self.TABLE, row_id, {
            'id': row_id,
            'feature': permission.value,
            'role': role.value,
            'enabled': bool(enabled),
        })

        if self.audit:
            self.audit.log_event(
                AuditEventType.PERMISSION_CHANGED,
                'role',
                role.value,
                {'permission': permission.value, 'enabled': bool(enabled)},
                changed_by
            )
