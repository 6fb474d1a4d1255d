"""Reglas de cotización y pago (Payment Ledger)."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from fieldservice.models.maintenance import PaymentLedger
from fieldservice.workflow.errors import Guard, GuardViolation

Amount = Decimal | int | float | str


def validate_quotation(value: Amount | None, price_support_ref: str | None) -> Decimal:
    """Valida valor > 0 y PDF de cotización presente. Devuelve el valor normalizado."""
    amount = _to_decimal(value)
    if amount is None or amount <= 0:
        raise GuardViolation(Guard.NON_POSITIVE_VALUE, detail=f"valor={value!r}")
    if not price_support_ref:
        raise GuardViolation(Guard.MISSING_PRICE_SUPPORT)
    return amount


def quote(ledger: PaymentLedger, value: Amount, price_support_ref: str) -> PaymentLedger:
    amount = validate_quotation(value, price_support_ref)
    return ledger.model_copy(
        update={"is_paid": False, "value": amount, "price_support_ref": price_support_ref}
    )


def no_payment_required(ledger: PaymentLedger) -> PaymentLedger:
    return ledger.model_copy(update={"is_paid": None})


def attach_proof(ledger: PaymentLedger, payment_support_ref: str) -> PaymentLedger:
    if ledger.is_paid is not False:
        raise GuardViolation(Guard.PAYMENT_NOT_PENDING)
    if not payment_support_ref:
        raise GuardViolation(Guard.MISSING_PAYMENT_SUPPORT)
    return ledger.model_copy(update={"payment_support_ref": payment_support_ref})


def verify(ledger: PaymentLedger, accepted: bool) -> PaymentLedger:
    """Resultado de la verificación del coordinador.

    Un soporte rechazado se conserva en payment_support_ref hasta que el
    cliente suba uno nuevo (queda como rastro de auditoría).
    """
    return ledger.model_copy(update={"is_paid": bool(accepted)})


def edit(
    ledger: PaymentLedger, value: Amount, price_support_ref: str | None = None
) -> PaymentLedger:
    """Edita la cotización sin cambiar el estado de pago."""
    ref = price_support_ref or ledger.price_support_ref
    if ledger.is_paid is False:
        amount = validate_quotation(value, ref)
    else:
        amount = _to_decimal(value)
        if amount is None or amount <= 0:
            raise GuardViolation(Guard.NON_POSITIVE_VALUE, detail=f"valor={value!r}")
    return ledger.model_copy(update={"value": amount, "price_support_ref": ref})


def _to_decimal(value: Amount | None) -> Decimal | None:
    if value is None:
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None
