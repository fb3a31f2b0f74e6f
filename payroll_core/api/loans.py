"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .auth import Actor, PayrollSystem, get_actor, get_payroll_system
from .schemas import CreateLoanRequest, LoanModel, MarkInstallmentPaidRequest
from ..commands import CommandResult, LoanCommands
from ..errors import PayrollError


router = APIRouter()


ERROR_STATUS = {
    "validation": 400,
    "permission": 403,
    "not_found": 404,
    "persistence": 500,
    "storage": 502,
}


def _commands(actor: Actor, system: PayrollSystem) -> LoanCommands:
    return LoanCommands(system.loan_manager, actor.role, actor.user_id)


def _unwrap(result: CommandResult):
    if not result.ok:
        raise HTTPException(status_code=ERROR_STATUS.get(result.error_type, 400),
                            detail=result.error)
    return result.value


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Create a loan with its installment schedule"""
    try:
        contract_file = request.contract_file.to_contract_file() if request.contract_file else None
    except PayrollError as e:
        raise HTTPException(status_code=ERROR_STATUS[e.error_type], detail=e.user_message)

    result = _commands(actor, system).create_loan(
        request.employee_id,
        request.total_amount,
        request.currency,
        request.installment_count,
        request.start_date,
        deduction_method=request.deduction_method,
        allocation_mode=request.allocation_mode,
        custom_amounts=request.custom_amounts,
        already_paid=request.already_paid,
        notes=request.notes,
        contract_url=request.contract_url,
        contract_file=contract_file
    )
    return LoanModel.from_loan(_unwrap(result)).dict()


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """List all loans, newest first"""
    loans = _unwrap(_commands(actor, system).list_all_loans(status))
    return {"loans": [LoanModel.from_loan(loan).dict() for loan in loans]}


@router.get("/employee/{employee_id}")
async def list_employee_loans(
    employee_id: str,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """List an employee's loans, newest first"""
    loans = _unwrap(_commands(actor, system).list_loans_for_employee(employee_id))
    return {"loans": [LoanModel.from_loan(loan).dict() for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Get loan details with its installments"""
    loan = _unwrap(_commands(actor, system).get_loan(loan_id))
    return LoanModel.from_loan(loan).dict()


@router.post("/{loan_id}/installments/{installment_id}/pay")
async def mark_installment_paid(
    loan_id: str,
    installment_id: str,
    request: MarkInstallmentPaidRequest,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Record payment of one installment"""
    result = _commands(actor, system).mark_installment_paid(
        installment_id, loan_id, request.source
    )
    return LoanModel.from_loan(_unwrap(result)).dict()


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Cancel an active loan"""
    commands = _commands(actor, system)
    _unwrap(commands.cancel_loan(loan_id))
    return LoanModel.from_loan(_unwrap(commands.get_loan(loan_id))).dict()


@router.get("/{loan_id}/contract")
async def get_contract_url(
    loan_id: str,
    actor: Actor = Depends(get_actor),
    system: PayrollSystem = Depends(get_payroll_system)
):
    """Get a link to the loan's signed contract"""
    url = _unwrap(_commands(actor, system).get_contract_url(loan_id))
    return {"url": url}
