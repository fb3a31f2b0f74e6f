"""
Loan Command Surface

Thin layer the UI talks to. Expected failures come back as a CommandResult
carrying the human-readable message instead of an exception; anything
unexpected is logged and re-raised.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .errors import PayrollError
from .loans import LoanManager
from .logging_config import get_logger, log_action
from .rbac import UserRole


logger = get_logger("payroll_core.commands")


@dataclass
class CommandResult:
    """Outcome of a command: a value on success, a message on failure"""
    ok: bool
    value: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> 'CommandResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: PayrollError) -> 'CommandResult':
        return cls(ok=False, error=error.user_message, error_type=error.error_type)


class LoanCommands:
    """Loan operations on behalf of one actor"""

    def __init__(self, manager: LoanManager, actor_role: Union[UserRole, str],
                 actor_id: Optional[str] = None):
        self.manager = manager
        self.actor_role = actor_role
        self.actor_id = actor_id

    def _run(self, action: str, resource: str, operation: Callable[[], Any]) -> CommandResult:
        try:
            value = operation()
        except PayrollError as e:
            log_action(
                logger, "warning", f"{action} failed: {e.user_message}",
                user_id=self.actor_id, action=action, resource=resource,
                extra={"error_type": e.error_type}
            )
            return CommandResult.failure(e)
        except Exception:
            logger.exception("Unexpected failure in %s", action)
            raise

        log_action(
            logger, "info", f"{action} succeeded",
            user_id=self.actor_id, action=action, resource=resource
        )
        return CommandResult.success(value)

    def create_loan(self, employee_id: str, total_amount, currency: str,
                    installment_count: int, start_date, **options) -> CommandResult:
        """
        Create a loan for an employee

        options are passed through to LoanManager.create_loan (deduction_method,
        allocation_mode, custom_amounts, already_paid, notes, contract_url,
        contract_file).
        """
        return self._run(
            "create_loan", f"employee:{employee_id}",
            lambda: self.manager.create_loan(
                self.actor_role, employee_id, total_amount, currency,
                installment_count, start_date, actor_id=self.actor_id, **options
            )
        )

    def mark_installment_paid(self, installment_id: str, loan_id: str,
                              source) -> CommandResult:
        return self._run(
            "mark_installment_paid", f"loan:{loan_id}",
            lambda: self.manager.mark_installment_paid(
                self.actor_role, installment_id, loan_id, source, actor_id=self.actor_id
            )
        )

    def cancel_loan(self, loan_id: str) -> CommandResult:
        return self._run(
            "cancel_loan", f"loan:{loan_id}",
            lambda: self.manager.cancel_loan(self.actor_role, loan_id, actor_id=self.actor_id)
        )

    def get_loan(self, loan_id: str) -> CommandResult:
        return self._run(
            "get_loan", f"loan:{loan_id}",
            lambda: self.manager.get_loan_with_installments(loan_id)
        )

    def list_loans_for_employee(self, employee_id: str) -> CommandResult:
        return self._run(
            "list_loans_for_employee", f"employee:{employee_id}",
            lambda: self.manager.list_loans_for_employee(employee_id)
        )

    def list_all_loans(self, status=None) -> CommandResult:
        return self._run(
            "list_all_loans", "loans",
            lambda: self.manager.list_all_loans(status)
        )

    def get_contract_url(self, loan_id: str) -> CommandResult:
        return self._run(
            "get_contract_url", f"loan:{loan_id}",
            lambda: self.manager.get_contract_url(self.actor_role, loan_id, actor_id=self.actor_id)
        )
