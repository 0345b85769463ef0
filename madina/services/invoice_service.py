"""
madina.services.invoice_service — Invoices
==========================================

An invoice is a payment request addressed to a wallet id.  Only the holder
of that wallet may pay it; the payer covers the invoice fee on top of the
amount and the issuer receives the full amount.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from madina.constants import iso, utcnow
from madina.database.models import (
    FeeType,
    Invoice,
    InvoiceStatus,
    NotificationType,
    TransactionType,
    WalletStatus,
)
from madina.engine.money import fee_for, from_cents, generate_reference
from madina.services.notification_service import add_notification
from madina.services.settings_service import load_system_settings
from madina.services.wallet_service import (
    credit,
    debit,
    get_wallet_by_user,
    get_wallet_by_wallet_id,
    is_admin_user,
    lock_wallet_by_wallet_id,
    parse_amount,
    parse_wallet_id,
    record_fee,
    record_transaction,
    require_active_wallet,
)

logger = logging.getLogger(__name__)


def invoice_to_dict(inv: Invoice) -> dict:
    return {
        "id": inv.id,
        "ref": inv.ref,
        "issuer_user_id": inv.issuer_user_id,
        "recipient_wallet_id": inv.recipient_wallet_id,
        "amount": from_cents(inv.amount_cents),
        "amount_cents": inv.amount_cents,
        "purpose": inv.purpose,
        "note": inv.note,
        "status": inv.status,
        "created_at": iso(inv.created_at),
        "paid_at": iso(inv.paid_at),
    }


def _find_invoice(session: Session, ref: str, *, lock: bool = False) -> Invoice | None:
    ref = str(ref or "").strip()
    if not ref:
        return None
    clause = Invoice.ref == ref
    if ref.isdigit():
        clause = or_(clause, Invoice.id == int(ref))
    stmt = select(Invoice).where(clause)
    if lock:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def create_invoice(
    engine,
    issuer_id: int,
    *,
    recipient_wallet_id: str,
    description: str,
    amount,
    quantity: int | None = None,
    note: str | None = None,
) -> Invoice:
    """Issue an invoice for ``amount × quantity`` to *recipient_wallet_id*.

    Raises
    ------
    ValueError
        Missing fields, bad amount or quantity, malformed wallet id,
        inactive wallets, or an invoice addressed to the issuer's own wallet.
    """
    description = (description or "").strip()
    if not recipient_wallet_id or not description or amount is None:
        raise ValueError("Recipient wallet, description and amount are required")
    cents = parse_amount(amount)
    if quantity is not None:
        quantity = int(quantity)
        if quantity <= 0:
            raise ValueError("Quantity must be greater than 0")
    recipient_wallet_id = parse_wallet_id(recipient_wallet_id)

    with Session(engine, expire_on_commit=False) as session:
        issuer_wallet = get_wallet_by_user(session, issuer_id)
        if issuer_wallet is None:
            raise ValueError("Your wallet was not found. Please complete KYC approval first.")
        if issuer_wallet.status != WalletStatus.ACTIVE:
            raise ValueError(f"Your wallet is {issuer_wallet.status}. Invoicing is not allowed.")

        recipient = get_wallet_by_wallet_id(session, recipient_wallet_id)
        if recipient is None:
            raise ValueError("Recipient wallet not found")
        if recipient.status != WalletStatus.ACTIVE:
            raise ValueError(f"Recipient wallet is {recipient.status}")
        if recipient.id == issuer_wallet.id:
            raise ValueError("You cannot send an invoice to your own wallet")

        ref = generate_reference()
        while session.scalar(select(Invoice.id).where(Invoice.ref == ref)):
            ref = generate_reference()

        inv = Invoice(
            issuer_user_id=issuer_id,
            recipient_wallet_id=recipient_wallet_id,
            amount_cents=cents * (quantity or 1),
            purpose=description,
            note=(note or "").strip() or None,
            status=InvoiceStatus.UNPAID,
            ref=ref,
        )
        session.add(inv)
        session.commit()
        session.refresh(inv)
        session.expunge(inv)

    logger.info("Invoice %s issued by %s to %s for %d cents",
                inv.ref, issuer_id, recipient_wallet_id, inv.amount_cents)
    return inv


def get_invoice_by_ref(engine, ref: str) -> dict | None:
    with Session(engine) as session:
        inv = _find_invoice(session, ref)
        return invoice_to_dict(inv) if inv else None


def pay_invoice(engine, payer_id: int, ref: str) -> dict:
    """Settle invoice *ref* from the payer's wallet.

    The fee goes to the fee ledger; admins pay no fee.
    """
    with Session(engine) as session:
        inv = _find_invoice(session, ref, lock=True)
        if inv is None:
            raise ValueError("Invoice not found")
        if inv.status == InvoiceStatus.PAID:
            raise ValueError("This invoice has already been paid")

        payer = require_active_wallet(session, payer_id, action="Payments")
        if payer.wallet_id != inv.recipient_wallet_id:
            raise ValueError("This invoice is not addressed to your wallet")

        percentage = load_system_settings(session).invoice_fee_percentage
        fee_cents = fee_for(
            inv.amount_cents, percentage, exempt=is_admin_user(session, payer_id)
        )
        total = inv.amount_cents + fee_cents
        if payer.balance < total:
            raise ValueError("Insufficient funds")

        issuer_wallet = get_wallet_by_user(session, inv.issuer_user_id)
        if issuer_wallet is None:
            raise ValueError("Invoice issuer wallet not found")
        issuer_wallet = lock_wallet_by_wallet_id(session, issuer_wallet.wallet_id)

        debit(payer, total)
        credit(issuer_wallet, inv.amount_cents)
        tx_ref = generate_reference()
        meta = {"invoice_id": inv.id}

        pay_tx = record_transaction(
            session,
            user_id=payer_id,
            type=TransactionType.INVOICE_PAYMENT,
            amount=inv.amount_cents,
            fee_cents=fee_cents,
            from_wallet_id=payer.wallet_id,
            to_wallet_id=issuer_wallet.wallet_id,
            note=f"Invoice {inv.ref}: {inv.purpose or ''}".strip(),
            ref=tx_ref,
            meta=meta,
        )
        record_transaction(
            session,
            user_id=inv.issuer_user_id,
            type=TransactionType.RECEIVE,
            amount=inv.amount_cents,
            from_wallet_id=payer.wallet_id,
            to_wallet_id=issuer_wallet.wallet_id,
            note=f"Invoice {inv.ref} paid",
            ref=tx_ref,
            meta=meta,
        )
        if fee_cents > 0:
            record_fee(
                session,
                type=FeeType.TRANSACTION,
                amount=fee_cents,
                percentage=percentage,
                user_id=payer_id,
                transaction_id=pay_tx.id,
            )

        inv.status = InvoiceStatus.PAID
        inv.paid_at = utcnow()
        add_notification(
            session,
            user_id=inv.issuer_user_id,
            type=NotificationType.TRANSACTION,
            title="Invoice Paid",
            message=f"Invoice {inv.ref} was paid by {payer.wallet_id}",
            link="/invoices",
            meta={"invoice_id": inv.id, "transaction_ref": tx_ref},
        )
        session.commit()

        logger.info("Invoice %s paid by %s (fee %d)", inv.ref, payer.wallet_id, fee_cents)
        return {
            "invoice_ref": inv.ref,
            "transaction_ref": tx_ref,
            "amount": from_cents(inv.amount_cents),
            "fee": from_cents(fee_cents),
            "total_deducted": from_cents(total),
            "new_balance": from_cents(payer.balance),
        }


def delete_invoice(engine, user_id: int, ref: str) -> bool:
    """Remove a paid invoice from the lists.  ``False`` if not found.

    Raises
    ------
    ValueError
        The invoice is still unpaid.
    PermissionError
        The caller is neither issuer nor recipient.
    """
    with Session(engine) as session:
        inv = _find_invoice(session, ref)
        if inv is None:
            return False
        wallet = get_wallet_by_user(session, user_id)
        is_recipient = wallet is not None and wallet.wallet_id == inv.recipient_wallet_id
        if inv.issuer_user_id != user_id and not is_recipient:
            raise PermissionError("You can only delete your own invoices")
        if inv.status != InvoiceStatus.PAID:
            raise ValueError("Only paid invoices can be deleted")
        session.delete(inv)
        session.commit()
        return True


def get_user_invoices(engine, user_id: int) -> dict:
    with Session(engine) as session:
        issued = session.scalars(
            select(Invoice)
            .where(Invoice.issuer_user_id == user_id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        ).all()
        wallet = get_wallet_by_user(session, user_id)
        received = []
        if wallet is not None:
            received = session.scalars(
                select(Invoice)
                .where(Invoice.recipient_wallet_id == wallet.wallet_id)
                .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            ).all()
        return {
            "issued": [invoice_to_dict(i) for i in issued],
            "received": [invoice_to_dict(i) for i in received],
        }
