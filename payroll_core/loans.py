"""
Loan Module

Handles employee loan creation, installment schedule generation, payment
recording against individual installments, automatic completion, cancellation
and contract document handling.

A loan and its full installment set are created together or not at all. The
record store has no multi-statement transaction boundary we can rely on, so
creation runs as a saga: every completed step registers an undo action, and a
failure unwinds them in reverse before the error is surfaced.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Optional, Sequence, Union
from enum import Enum
import logging
import uuid

from .allocation import AllocationMode, allocate_installments
from .audit import AuditTrail, AuditEventType
from .blob_store import BlobStore
from .config import PayrollConfig, get_config
from .currency import Numeric, format_amount, round_money, to_decimal
from .errors import NotFoundError, PermissionDeniedError, ValidationError, StorageError
from .rbac import Permission, PermissionGate, UserRole
from .schedule import generate_due_dates, parse_date
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger(__name__)


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "active"          # Installments still being deducted
    PAID = "paid"              # Every installment paid
    CANCELLED = "cancelled"    # Stopped; pending installments left as they are


class InstallmentStatus(Enum):
    """Installment states"""
    PENDING = "pending"
    PAID = "paid"


class DeductionMethod(Enum):
    """Payroll component installments are deducted from"""
    SALARY = "salary"
    BONUS = "bonus"
    FLEXIBLE = "flexible"


class PaymentSource(Enum):
    """Where the money for a paid installment came from"""
    SALARY = "salary"
    KPI_BONUS = "kpi_bonus"
    END_OF_CONTRACT_BONUS = "end_of_contract_bonus"
    MANUAL = "manual"


# paid and cancelled are terminal
LOAN_TRANSITIONS = {
    LoanStatus.ACTIVE: {LoanStatus.PAID, LoanStatus.CANCELLED},
    LoanStatus.PAID: set(),
    LoanStatus.CANCELLED: set(),
}


def _enum_value(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}'. Expected one of: {allowed}.")


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ContractFile:
    """Signed contract uploaded alongside a new loan"""
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class Loan(StorageRecord):
    """Employee loan repaid through scheduled payroll deductions"""
    employee_id: str
    total_amount: Decimal
    currency: str
    installment_count: int
    average_installment: Decimal        # Display only; installments are authoritative
    start_date: date
    deduction_method: DeductionMethod = DeductionMethod.SALARY
    status: LoanStatus = LoanStatus.ACTIVE
    notes: Optional[str] = None
    contract_url: Optional[str] = None          # External link
    contract_file_path: Optional[str] = None    # Blob store path
    created_by: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @property
    def has_contract(self) -> bool:
        return bool(self.contract_url or self.contract_file_path)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Loan':
        data = dict(data)
        data['total_amount'] = Decimal(data['total_amount'])
        data['average_installment'] = Decimal(data['average_installment'])
        data['start_date'] = date.fromisoformat(data['start_date'])
        data['deduction_method'] = DeductionMethod(data['deduction_method'])
        data['status'] = LoanStatus(data['status'])
        return super().from_dict(data)


@dataclass
class Installment(StorageRecord):
    """One scheduled deduction of a loan"""
    loan_id: str
    sequence_number: int
    due_date: date
    amount: Decimal
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[datetime] = None
    payment_source: Optional[PaymentSource] = None

    def __post_init__(self):
        paid = self.status == InstallmentStatus.PAID
        if paid != (self.paid_at is not None) or paid != (self.payment_source is not None):
            raise ValueError(
                f"Installment {self.sequence_number}: paid_at and payment_source "
                f"must be set exactly when the installment is paid"
            )

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict) -> 'Installment':
        data = dict(data)
        data['due_date'] = date.fromisoformat(data['due_date'])
        data['amount'] = Decimal(data['amount'])
        data['status'] = InstallmentStatus(data['status'])
        data['paid_at'] = _parse_datetime(data.get('paid_at'))
        if data.get('payment_source') is not None:
            data['payment_source'] = PaymentSource(data['payment_source'])
        return super().from_dict(data)


@dataclass
class LoanWithInstallments:
    """A loan together with its installments ordered by sequence number"""
    loan: Loan
    installments: List[Installment] = field(default_factory=list)

    def __post_init__(self):
        self.installments = sorted(self.installments, key=lambda i: i.sequence_number)

    @property
    def paid_count(self) -> int:
        return sum(1 for i in self.installments if i.is_paid)

    @property
    def pending_count(self) -> int:
        return len(self.installments) - self.paid_count

    @property
    def paid_amount(self) -> Decimal:
        return round_money(sum((i.amount for i in self.installments if i.is_paid), Decimal('0')))

    @property
    def remaining_balance(self) -> Decimal:
        return max(Decimal('0.00'), round_money(self.loan.total_amount - self.paid_amount))

    @property
    def next_due(self) -> Optional[Installment]:
        return next((i for i in self.installments if not i.is_paid), None)


class CompensationStack:
    """Undo actions for a multi-step write, run in reverse on failure"""

    def __init__(self):
        self._actions: List[tuple] = []

    def push(self, description: str, action: Callable[[], object]) -> None:
        self._actions.append((description, action))

    def unwind(self) -> List[str]:
        """Run every undo action newest first; return the ones that failed"""
        failed = []
        while self._actions:
            description, action = self._actions.pop()
            try:
                action()
            except Exception:
                logger.exception("Compensation step failed: %s", description)
                failed.append(description)
        return failed


class LoanManager:
    """
    Manages the loan lifecycle from creation through payoff or cancellation
    """

    def __init__(
        self,
        storage: StorageInterface,
        permission_gate: PermissionGate,
        blob_store: Optional[BlobStore] = None,
        audit_trail: Optional[AuditTrail] = None,
        config: Optional[PayrollConfig] = None
    ):
        self.storage = storage
        self.permission_gate = permission_gate
        self.blob_store = blob_store
        self.audit_trail = audit_trail
        self.config = config or get_config()

        self.loans_table = "loans"
        self.installments_table = "loan_installments"

    # Commands

    def create_loan(
        self,
        actor_role: Union[UserRole, str],
        employee_id: str,
        total_amount: Numeric,
        currency: str,
        installment_count: int,
        start_date: Union[date, str],
        deduction_method: Union[DeductionMethod, str] = DeductionMethod.SALARY,
        allocation_mode: Union[AllocationMode, str] = AllocationMode.EQUAL,
        custom_amounts: Optional[Sequence[Numeric]] = None,
        already_paid: int = 0,
        notes: Optional[str] = None,
        contract_url: Optional[str] = None,
        contract_file: Optional[ContractFile] = None,
        actor_id: Optional[str] = None
    ) -> LoanWithInstallments:
        """
        Create a loan with its complete installment schedule

        Args:
            actor_role: Role of the caller, checked for manage_loans
            employee_id: Borrowing employee
            total_amount: Principal, positive
            currency: Free-form currency code, e.g. "USD"
            installment_count: Number of monthly deductions, at least 1
            start_date: Loan start; first deduction falls in the next month
            deduction_method: salary, bonus or flexible
            allocation_mode: equal or custom
            custom_amounts: Per-installment amounts for custom mode
            already_paid: Installments 1..already_paid are recorded as paid
                manually at creation
            notes: Optional free text
            contract_url: Optional external link to the signed contract
            contract_file: Optional contract document to upload
            actor_id: User performing the action, for the audit trail

        Returns:
            The stored loan and its installments

        Raises:
            PermissionDeniedError: Caller may not manage loans
            ValidationError: Invalid input; nothing was written
            PersistenceError: Store rejected a write; prior writes undone
            StorageError: Contract upload failed; prior writes undone
        """
        self._require(actor_role, Permission.MANAGE_LOANS,
                      "You do not have permission to create loans.", actor_id)

        employee_id = (employee_id or "").strip() if isinstance(employee_id, str) else employee_id
        currency = (currency or "").strip() if isinstance(currency, str) else currency
        if not employee_id or not currency:
            raise ValidationError("All required fields must be filled in.")

        total = round_money(to_decimal(total_amount))
        if total <= Decimal('0'):
            raise ValidationError("Total amount must be a positive number.")
        if isinstance(installment_count, bool) or not isinstance(installment_count, int) \
                or installment_count < 1:
            raise ValidationError("Number of installments must be at least 1.")
        if isinstance(already_paid, bool) or not isinstance(already_paid, int) or already_paid < 0:
            raise ValidationError("Installments already paid cannot be negative.")
        if already_paid > installment_count:
            raise ValidationError("Installments already paid cannot exceed total installments.")

        deduction_method = _enum_value(DeductionMethod, deduction_method, "deduction method")
        start = parse_date(start_date)
        if contract_file is not None and self.blob_store is None:
            raise StorageError("Contract storage is not configured.")

        amounts = allocate_installments(
            total, installment_count, allocation_mode, custom_amounts,
            tolerance=Decimal(self.config.amount_tolerance)
        )
        due_dates = generate_due_dates(start, installment_count, self.config.payment_day)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            employee_id=employee_id,
            total_amount=total,
            currency=currency,
            installment_count=installment_count,
            average_installment=round_money(total / installment_count),
            start_date=start,
            deduction_method=deduction_method,
            status=LoanStatus.ACTIVE,
            notes=(notes or "").strip() or None,
            contract_url=(contract_url or "").strip() or None,
            created_by=actor_id
        )

        installments = []
        for index, (amount, due_date) in enumerate(zip(amounts, due_dates)):
            paid = index < already_paid
            installments.append(Installment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                sequence_number=index + 1,
                due_date=due_date,
                amount=amount,
                status=InstallmentStatus.PAID if paid else InstallmentStatus.PENDING,
                paid_at=now if paid else None,
                payment_source=PaymentSource.MANUAL if paid else None
            ))

        compensations = CompensationStack()
        try:
            self._save_loan(loan)
            compensations.push("delete loan", lambda: self.storage.delete(self.loans_table, loan.id))

            self.storage.save_many(
                self.installments_table,
                [(installment.id, installment.to_dict()) for installment in installments]
            )
            compensations.push(
                "delete installments",
                lambda: self.storage.delete_where(self.installments_table, {"loan_id": loan.id})
            )

            if contract_file is not None:
                path = self.blob_store.upload(
                    self._contract_key(loan, contract_file.filename),
                    contract_file.content,
                    contract_file.content_type
                )
                compensations.push("delete contract", lambda: self.blob_store.delete(path))
                loan.contract_file_path = path
                self._save_loan(loan)

            if already_paid == installment_count:
                self._transition(loan, LoanStatus.PAID)
                self._save_loan(loan)

            self._audit(AuditEventType.LOAN_CREATED, loan.id, {
                "employee_id": loan.employee_id,
                "total_amount": loan.total_amount,
                "currency": loan.currency,
                "installment_count": loan.installment_count,
                "allocation_mode": AllocationMode(allocation_mode).value,
                "already_paid": already_paid,
                "start_date": loan.start_date
            }, actor_id)
            if loan.status == LoanStatus.PAID:
                self._audit(AuditEventType.LOAN_PAID_OFF, loan.id,
                            {"trigger": "created_fully_paid"}, actor_id)

        except Exception as e:
            failed = compensations.unwind()
            logger.error(
                "Loan creation for employee %s rolled back: %s", employee_id, e,
                extra={"extra": {"loan_id": loan.id, "failed_compensations": failed}}
            )
            self._audit_rollback(loan, e, failed, actor_id)
            raise

        logger.info("Created loan %s for employee %s: %s over %d installments",
                    loan.id, loan.employee_id,
                    format_amount(loan.total_amount, loan.currency), loan.installment_count)
        return LoanWithInstallments(loan, installments)

    def mark_installment_paid(
        self,
        actor_role: Union[UserRole, str],
        installment_id: str,
        loan_id: str,
        source: Union[PaymentSource, str],
        actor_id: Optional[str] = None
    ) -> LoanWithInstallments:
        """
        Record payment of one installment and re-evaluate the loan status

        Marking an installment that is already paid leaves it untouched.
        The loan moves to paid as soon as every installment is paid.

        Raises:
            PermissionDeniedError: Caller may not manage loans
            ValidationError: Unknown source, or the loan is cancelled
            NotFoundError: Loan or installment does not exist
        """
        self._require(actor_role, Permission.MANAGE_LOANS,
                      "You do not have permission to update installments.", actor_id)
        source = _enum_value(PaymentSource, source, "payment source")

        loan = self._get_loan_or_raise(loan_id)
        data = self.storage.load(self.installments_table, installment_id)
        if not data or data.get('loan_id') != loan.id:
            raise NotFoundError("Installment not found for this loan.")
        installment = Installment.from_dict(data)

        if loan.status == LoanStatus.CANCELLED:
            raise ValidationError("Cannot record a payment on a cancelled loan.")

        newly_paid = False
        paid_off = False
        with self.storage.atomic():
            if not installment.is_paid:
                now = datetime.now(timezone.utc)
                installment.status = InstallmentStatus.PAID
                installment.paid_at = now
                installment.payment_source = source
                installment.updated_at = now
                self.storage.save(self.installments_table, installment.id, installment.to_dict())
                newly_paid = True

            # Always re-check completeness against the stored siblings
            siblings = self.get_installments(loan.id)
            if loan.is_active and siblings and all(i.is_paid for i in siblings):
                self._transition(loan, LoanStatus.PAID)
                self._save_loan(loan)
                paid_off = True

        if newly_paid:
            self._audit(AuditEventType.INSTALLMENT_PAID, loan.id, {
                "installment_id": installment.id,
                "sequence_number": installment.sequence_number,
                "amount": installment.amount,
                "payment_source": source
            }, actor_id)
        else:
            logger.info("Installment %s already paid; nothing to record", installment.id)
        if paid_off:
            self._audit(AuditEventType.LOAN_PAID_OFF, loan.id,
                        {"trigger": "installment_paid", "installment_id": installment.id},
                        actor_id)
            logger.info("Loan %s fully repaid", loan.id)

        return LoanWithInstallments(loan, siblings)

    def cancel_loan(
        self,
        actor_role: Union[UserRole, str],
        loan_id: str,
        actor_id: Optional[str] = None
    ) -> Loan:
        """
        Cancel an active loan. Pending installments stay pending.

        Cancelling an already cancelled loan is a no-op; a paid loan cannot be
        cancelled.
        """
        self._require(actor_role, Permission.MANAGE_LOANS,
                      "You do not have permission to cancel loans.", actor_id)

        loan = self._get_loan_or_raise(loan_id)
        if loan.status == LoanStatus.CANCELLED:
            return loan

        self._transition(loan, LoanStatus.CANCELLED)
        self._save_loan(loan)

        pending = len([i for i in self.get_installments(loan.id) if not i.is_paid])
        self._audit(AuditEventType.LOAN_CANCELLED, loan.id,
                    {"pending_installments": pending}, actor_id)
        logger.info("Cancelled loan %s with %d pending installments", loan.id, pending)
        return loan

    # Queries

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def get_installments(self, loan_id: str) -> List[Installment]:
        """Get the installments of a loan ordered by sequence number"""
        rows = self.storage.find(self.installments_table, {"loan_id": loan_id})
        installments = [Installment.from_dict(row) for row in rows]
        installments.sort(key=lambda i: i.sequence_number)
        return installments

    def get_loan_with_installments(self, loan_id: str) -> LoanWithInstallments:
        loan = self._get_loan_or_raise(loan_id)
        return LoanWithInstallments(loan, self.get_installments(loan.id))

    def list_loans_for_employee(self, employee_id: str) -> List[LoanWithInstallments]:
        """Get all loans for an employee, newest first"""
        rows = self.storage.find(self.loans_table, {"employee_id": employee_id})
        return self._with_installments(rows)

    def list_all_loans(
        self,
        status: Optional[Union[LoanStatus, str]] = None
    ) -> List[LoanWithInstallments]:
        """Get every loan, newest first, optionally filtered by status"""
        if status is None:
            rows = self.storage.load_all(self.loans_table)
        else:
            status = _enum_value(LoanStatus, status, "loan status")
            rows = self.storage.find(self.loans_table, {"status": status.value})
        return self._with_installments(rows)

    def get_contract_url(
        self,
        actor_role: Union[UserRole, str],
        loan_id: str,
        actor_id: Optional[str] = None
    ) -> str:
        """
        Get a link to the loan's contract

        Uploaded documents get a short-lived signed URL; otherwise the
        external contract link is returned.
        """
        self._require(actor_role, Permission.VIEW_LOANS,
                      "You do not have permission to view loan contracts.", actor_id)

        loan = self._get_loan_or_raise(loan_id)
        if loan.contract_file_path:
            if self.blob_store is None:
                raise StorageError("Contract storage is not configured.")
            return self.blob_store.signed_url(
                loan.contract_file_path, self.config.contract_url_ttl_seconds
            )
        if loan.contract_url:
            return loan.contract_url
        raise NotFoundError("This loan has no contract attached.")

    # Private helpers

    def _require(self, actor_role, permission: Permission, message: str,
                 actor_id: Optional[str]) -> None:
        if not self.permission_gate.has_permission(actor_role, permission):
            role = actor_role.value if isinstance(actor_role, UserRole) else actor_role
            logger.warning("Permission %s denied for role %s", permission.value, role,
                           extra={"user_id": actor_id})
            if self.audit_trail and self.config.enable_audit_logging:
                self.audit_trail.log_event(
                    AuditEventType.PERMISSION_DENIED, "role", str(role),
                    {"permission": permission.value}, actor_id
                )
            raise PermissionDeniedError(message)

    def _get_loan_or_raise(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFoundError("Loan not found.")
        return loan

    def _transition(self, loan: Loan, new_status: LoanStatus) -> None:
        if new_status not in LOAN_TRANSITIONS[loan.status]:
            raise ValidationError(
                f"Cannot change a {loan.status.value} loan to {new_status.value}."
            )
        loan.status = new_status
        loan.updated_at = datetime.now(timezone.utc)

    def _with_installments(self, rows: List[Dict]) -> List[LoanWithInstallments]:
        loans = [Loan.from_dict(row) for row in rows]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return [LoanWithInstallments(loan, self.get_installments(loan.id)) for loan in loans]

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def _contract_key(self, loan: Loan, filename: str) -> str:
        name = PurePosixPath((filename or "").replace("\\", "/")).name or "contract.pdf"
        return f"{loan.employee_id}/{loan.id}/{name}"

    def _audit(self, event_type: AuditEventType, loan_id: str, metadata: Dict,
               actor_id: Optional[str]) -> None:
        if self.audit_trail and self.config.enable_audit_logging:
            self.audit_trail.log_event(event_type, "loan", loan_id, metadata, actor_id)

    def _audit_rollback(self, loan: Loan, error: Exception, failed: List[str],
                        actor_id: Optional[str]) -> None:
        try:
            self._audit(AuditEventType.LOAN_CREATION_ROLLED_BACK, loan.id, {
                "employee_id": loan.employee_id,
                "error": str(error),
                "failed_compensations": failed
            }, actor_id)
        except Exception:
            # The original failure is what the caller needs to see
            logger.exception("Could not record rollback of loan %s", loan.id)
