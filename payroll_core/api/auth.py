"""
System wiring and actor resolution dependencies
"""

from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..blob_store import BlobStore, InMemoryBlobStore, LocalBlobStore
from ..config import PayrollConfig, get_config
from ..loans import LoanManager
from ..rbac import RolePermissionGate, UserRole
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface


security = HTTPBearer(auto_error=False)


class PayrollSystem:
    """Payroll loan engine with all components initialized"""

    def __init__(self, config: Optional[PayrollConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 blob_store: Optional[BlobStore] = None):
        self.config = config or get_config()

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        if blob_store is not None:
            self.blob_store = blob_store
        elif self.config.use_sqlite:
            self.blob_store = LocalBlobStore(
                self.config.blob_store_path,
                self.config.blob_base_url,
                self.config.signing_secret
            )
        else:
            self.blob_store = InMemoryBlobStore(
                base_url=self.config.blob_base_url, secret=self.config.signing_secret
            )

        self.audit_trail = AuditTrail(self.storage)
        self.permission_gate = RolePermissionGate(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.permission_gate, self.blob_store,
            self.audit_trail, self.config
        )


@dataclass
class Actor:
    """Caller identity resolved from the request"""
    role: str
    user_id: Optional[str] = None


# Global payroll system instance, created on first request
payroll_system: Optional[PayrollSystem] = None


def get_payroll_system() -> PayrollSystem:
    global payroll_system
    if payroll_system is None:
        payroll_system = PayrollSystem()
    return payroll_system


def issue_token(user_id: str, role: str, config: Optional[PayrollConfig] = None) -> str:
    """Issue an access token carrying the caller's role"""
    config = config or get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + timedelta(hours=config.jwt_expiry_hours),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
    system: PayrollSystem = Depends(get_payroll_system)
) -> Actor:
    """Dependency that validates the bearer token and returns the actor"""
    config = system.config
    if not config.auth_enabled:
        return Actor(role=x_actor_role or UserRole.OWNER.value, user_id=x_actor_id)

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or not role:
        raise HTTPException(status_code=401, detail="Invalid token")
    return Actor(role=role, user_id=user_id)
