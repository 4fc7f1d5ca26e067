"""
BalanceService -- internal balance credits.

Responsibility:
    Records money the platform owes a user on their internal balance
    (for example the difference after an already-paid job budget was
    reduced).  Credits never go back through the payment provider.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Amounts are positive and rounded to the money scale.
    - Every credit is audited against the crediting actor.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.dtos import (
    BalanceTransactionInfo,
    BalanceTransactionStatus,
    BalanceTransactionType,
)
from settlement_kernel.exceptions import InvalidAmountError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.balance import BalanceTransaction
from settlement_kernel.services.base import BaseService

logger = get_logger("services.balance")


class BalanceService(BaseService[BalanceTransaction]):
    """
    Guarantees:
        - ``credit`` writes exactly one completed transaction row.
        - ``balance_of`` sums completed rows only.
    """

    def credit(
        self,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        *,
        actor_id: UUID,
        description: str,
        transaction_type: BalanceTransactionType = BalanceTransactionType.REFUND,
        job_id: UUID | None = None,
        contract_id: UUID | None = None,
        payment_id: UUID | None = None,
    ) -> BalanceTransactionInfo:
        value = round_money(to_decimal(amount))
        if value <= ZERO:
            raise InvalidAmountError("amount", amount, "credit must be positive")

        row = BalanceTransaction(
            user_id=user_id,
            type=transaction_type,
            amount=value,
            currency=currency,
            status=BalanceTransactionStatus.COMPLETED,
            description=description,
            job_id=job_id,
            contract_id=contract_id,
            payment_id=payment_id,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()
        self._record(
            "BalanceTransaction",
            row.id,
            AuditAction.BALANCE_CREDITED,
            actor_id,
            after=BalanceTransactionStatus.COMPLETED,
            reason=description,
            notify=[user_id],
            amount=value,
            currency=currency,
            user_id=user_id,
            job_id=job_id,
        )
        logger.info(
            "balance_credited",
            extra={
                "user_id": str(user_id),
                "amount": str(value),
                "currency": currency,
                "type": transaction_type.value,
            },
        )
        return row.to_dto()

    def balance_of(self, user_id: UUID, currency: str | None = None) -> Decimal:
        stmt = select(func.coalesce(func.sum(BalanceTransaction.amount), 0)).where(
            BalanceTransaction.user_id == user_id,
            BalanceTransaction.status == BalanceTransactionStatus.COMPLETED,
        )
        if currency is not None:
            stmt = stmt.where(BalanceTransaction.currency == currency)
        return round_money(to_decimal(self.session.execute(stmt).scalar_one()))

    def list_for(self, user_id: UUID) -> list[BalanceTransactionInfo]:
        rows = self.session.execute(
            select(BalanceTransaction)
            .where(BalanceTransaction.user_id == user_id)
            .order_by(BalanceTransaction.created_at)
        ).scalars()
        return [row.to_dto() for row in rows]
