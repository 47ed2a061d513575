from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import select, update

from helpers import parse_money, to_money
from models import (
    WITHDRAWAL_STATUSES,
    Order,
    SellerWallet,
    WalletTransaction,
    WithdrawalRequest,
    db,
)

RECENT_TRANSACTION_LIMIT = 20


class WalletError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidAmount(WalletError):
    pass


class InsufficientFunds(WalletError):
    pass


class WithdrawalNotFound(WalletError):
    status_code = 404


class WithdrawalAlreadyProcessed(WalletError):
    status_code = 409


def get_or_create_wallet(seller_id: int) -> SellerWallet:
    wallet = db.session.execute(
        select(SellerWallet).where(SellerWallet.seller_id == seller_id)
    ).scalar_one_or_none()
    if wallet is None:
        wallet = SellerWallet(
            seller_id=seller_id,
            balance=Decimal("0.00"),
            pending_balance=Decimal("0.00"),
            total_earned=Decimal("0.00"),
            total_withdrawn=Decimal("0.00"),
        )
        db.session.add(wallet)
        db.session.flush()
    return wallet


def _record_transaction(
    wallet: SellerWallet,
    kind: str,
    amount: Decimal,
    description: str,
    order_id: Optional[int] = None,
) -> WalletTransaction:
    entry = WalletTransaction(
        seller_id=wallet.seller_id,
        order_id=order_id,
        type=kind,
        amount=amount,
        balance_after=to_money(wallet.balance),
        description=description,
    )
    db.session.add(entry)
    return entry


def _adjust_wallet(wallet: SellerWallet, guard=None, **deltas: Decimal) -> bool:
    """Apply ``deltas`` to the wallet row in SQL and reload ``wallet``.

    ``guard`` is an extra WHERE clause; False is returned when it fails.
    """
    statement = update(SellerWallet).where(SellerWallet.id == wallet.id)
    if guard is not None:
        statement = statement.where(guard)
    result = db.session.execute(
        statement.values(
            **{field: getattr(SellerWallet, field) + amount for field, amount in deltas.items()}
        ).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    db.session.refresh(wallet)
    return True


def credit_order_sales(order: Order) -> Dict[int, Decimal]:
    """Credit each seller in ``order`` with the subtotal of their lines.

    Runs inside the caller's transaction; nothing is committed here.
    """
    earnings: Dict[int, Decimal] = {}
    for item in order.items:
        earnings[item.seller_id] = earnings.get(item.seller_id, Decimal("0.00")) + to_money(
            item.subtotal
        )

    for seller_id in sorted(earnings):
        amount = earnings[seller_id]
        wallet = get_or_create_wallet(seller_id)
        _adjust_wallet(wallet, balance=amount, total_earned=amount)
        _record_transaction(
            wallet,
            "credit",
            amount,
            f"Sales from order {order.order_number}",
            order_id=order.id,
        )
    return earnings


def request_withdrawal(
    seller_id: int,
    amount,
    bank_name: Optional[str] = None,
    account_number: Optional[str] = None,
) -> WithdrawalRequest:
    requested_amount = parse_money(amount)
    if requested_amount is None or requested_amount <= 0:
        raise InvalidAmount("Invalid amount")

    bank_label = str(bank_name or "").strip()
    account_label = str(account_number or "").strip()

    try:
        wallet = get_or_create_wallet(seller_id)
        moved = _adjust_wallet(
            wallet,
            guard=SellerWallet.balance >= requested_amount,
            balance=-requested_amount,
            pending_balance=requested_amount,
        )
        if not moved:
            raise InsufficientFunds("Insufficient funds")

        withdrawal = WithdrawalRequest(
            seller_id=seller_id,
            amount=requested_amount,
            status="pending",
            bank_account=account_label or None,
            notes=bank_label or None,
        )
        db.session.add(withdrawal)
        _record_transaction(
            wallet,
            "withdrawal",
            requested_amount,
            f"Withdrawal to {bank_label or 'bank'} ({account_label or 'n/a'})",
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Seller %s requested a withdrawal of %s", seller_id, requested_amount
    )
    return withdrawal


def process_withdrawal(
    request_id: int, admin_id: int, approve: bool, notes: Optional[str] = None
) -> WithdrawalRequest:
    new_status = "completed" if approve else "rejected"
    values = {
        "status": new_status,
        "processed_by": admin_id,
        "processed_at": datetime.utcnow(),
    }
    cleaned_notes = str(notes or "").strip()
    if cleaned_notes:
        values["notes"] = cleaned_notes

    try:
        claimed = db.session.execute(
            update(WithdrawalRequest)
            .where(WithdrawalRequest.id == request_id, WithdrawalRequest.status == "pending")
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        withdrawal = db.session.get(WithdrawalRequest, request_id)
        if withdrawal is None:
            raise WithdrawalNotFound("Withdrawal request not found")
        db.session.refresh(withdrawal)
        if claimed.rowcount != 1:
            raise WithdrawalAlreadyProcessed(
                f"Withdrawal request is already {withdrawal.status}"
            )

        wallet = get_or_create_wallet(withdrawal.seller_id)
        amount = to_money(withdrawal.amount)
        if approve:
            _adjust_wallet(wallet, pending_balance=-amount, total_withdrawn=amount)
        else:
            _adjust_wallet(wallet, pending_balance=-amount, balance=amount)
            _record_transaction(
                wallet, "credit", amount, f"Withdrawal request #{withdrawal.id} rejected"
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Withdrawal %s %s by admin %s", request_id, new_status, admin_id
    )
    return withdrawal


def list_withdrawals(status: Optional[str] = None) -> List[WithdrawalRequest]:
    statement = select(WithdrawalRequest).order_by(
        WithdrawalRequest.created_at.desc(), WithdrawalRequest.id.desc()
    )
    if status in WITHDRAWAL_STATUSES:
        statement = statement.where(WithdrawalRequest.status == status)
    return list(db.session.execute(statement).scalars())


def wallet_summary(seller_id: int) -> Dict[str, object]:
    wallet = get_or_create_wallet(seller_id)
    db.session.commit()

    transactions = db.session.execute(
        select(WalletTransaction)
        .where(WalletTransaction.seller_id == seller_id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .limit(RECENT_TRANSACTION_LIMIT)
    ).scalars()

    return {
        "wallet": wallet,
        "transactions": list(transactions),
    }
