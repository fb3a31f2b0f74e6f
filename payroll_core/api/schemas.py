"""
Pydantic schemas for API requests and responses
"""

import base64
import binascii
from typing import List, Optional
from pydantic import BaseModel, Field

from ..errors import ValidationError
from ..loans import ContractFile, Installment, LoanWithInstallments


class ContractFileModel(BaseModel):
    filename: str
    content_base64: str = Field(..., description="File content, base64 encoded")
    content_type: str = "application/pdf"

    def to_contract_file(self) -> ContractFile:
        try:
            content = base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Contract file is not valid base64.")
        return ContractFile(self.filename, content, self.content_type)


class CreateLoanRequest(BaseModel):
    employee_id: str
    total_amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code, e.g. USD")
    installment_count: int
    start_date: str  # ISO date string
    deduction_method: str = "salary"
    allocation_mode: str = "equal"
    custom_amounts: Optional[List[str]] = None
    already_paid: int = 0
    notes: Optional[str] = None
    contract_url: Optional[str] = None
    contract_file: Optional[ContractFileModel] = None


class MarkInstallmentPaidRequest(BaseModel):
    source: str = Field(..., description="salary, kpi_bonus, end_of_contract_bonus or manual")


class InstallmentModel(BaseModel):
    id: str
    sequence_number: int
    due_date: str
    amount: str
    status: str
    paid_at: Optional[str] = None
    payment_source: Optional[str] = None

    @classmethod
    def from_installment(cls, installment: Installment) -> 'InstallmentModel':
        return cls(
            id=installment.id,
            sequence_number=installment.sequence_number,
            due_date=installment.due_date.isoformat(),
            amount=str(installment.amount),
            status=installment.status.value,
            paid_at=installment.paid_at.isoformat() if installment.paid_at else None,
            payment_source=installment.payment_source.value if installment.payment_source else None
        )


class LoanModel(BaseModel):
    id: str
    employee_id: str
    total_amount: str
    currency: str
    installment_count: int
    average_installment: str
    start_date: str
    deduction_method: str
    status: str
    notes: Optional[str] = None
    contract_url: Optional[str] = None
    has_contract: bool
    created_by: Optional[str] = None
    created_at: str
    paid_count: int
    pending_count: int
    paid_amount: str
    remaining_balance: str
    installments: List[InstallmentModel]

    @classmethod
    def from_loan(cls, summary: LoanWithInstallments) -> 'LoanModel':
        loan = summary.loan
        return cls(
            id=loan.id,
            employee_id=loan.employee_id,
            total_amount=str(loan.total_amount),
            currency=loan.currency,
            installment_count=loan.installment_count,
            average_installment=str(loan.average_installment),
            start_date=loan.start_date.isoformat(),
            deduction_method=loan.deduction_method.value,
            status=loan.status.value,
            notes=loan.notes,
            contract_url=loan.contract_url,
            has_contract=loan.has_contract,
            created_by=loan.created_by,
            created_at=loan.created_at.isoformat(),
            paid_count=summary.paid_count,
            pending_count=summary.pending_count,
            paid_amount=str(summary.paid_amount),
            remaining_balance=str(summary.remaining_balance),
            installments=[InstallmentModel.from_installment(i) for i in summary.installments]
        )
