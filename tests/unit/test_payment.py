"""Tests para las reglas de cotización y pago."""

from decimal import Decimal

import pytest

from fieldservice.models.maintenance import PaymentLedger
from fieldservice.workflow import payment
from fieldservice.workflow.errors import Guard, GuardViolation


class TestValidateQuotation:
    @pytest.mark.parametrize("value", [0, -1, "-0.01", "abc", None, float("nan"), "Infinity"])
    def test_valores_invalidos(self, value) -> None:
        with pytest.raises(GuardViolation) as exc_info:
            payment.validate_quotation(value, "doc://abc")
        assert exc_info.value.guard == Guard.NON_POSITIVE_VALUE

    def test_normaliza_a_decimal(self) -> None:
        assert payment.validate_quotation("150000.00", "doc://abc") == Decimal("150000.00")
        assert payment.validate_quotation(99, "doc://abc") == Decimal("99")

    @pytest.mark.parametrize("ref", ["", None])
    def test_sin_pdf(self, ref) -> None:
        with pytest.raises(GuardViolation) as exc_info:
            payment.validate_quotation(1000, ref)
        assert exc_info.value.guard == Guard.MISSING_PRICE_SUPPORT

    def test_mensaje_legible(self) -> None:
        with pytest.raises(GuardViolation) as exc_info:
            payment.validate_quotation(0, "doc://abc")
        assert exc_info.value.message == "El valor de la cotización debe ser mayor que 0"
        assert "valor=0" in str(exc_info.value)


class TestLedger:
    def test_quote_deja_pago_pendiente(self) -> None:
        ledger = payment.quote(PaymentLedger(), 1000, "doc://abc")
        assert ledger.is_paid is False
        assert not ledger.is_settled

    def test_no_payment_required_esta_saldado(self) -> None:
        ledger = payment.no_payment_required(PaymentLedger())
        assert ledger.is_paid is None
        assert ledger.is_settled

    def test_attach_proof_sin_soporte(self) -> None:
        ledger = payment.quote(PaymentLedger(), 1000, "doc://abc")
        with pytest.raises(GuardViolation) as exc_info:
            payment.attach_proof(ledger, "")
        assert exc_info.value.guard == Guard.MISSING_PAYMENT_SUPPORT

    def test_attach_proof_con_pago_verificado(self) -> None:
        ledger = PaymentLedger(is_paid=True, value=Decimal("1000"), price_support_ref="doc://abc")
        with pytest.raises(GuardViolation) as exc_info:
            payment.attach_proof(ledger, "doc://proof")
        assert exc_info.value.guard == Guard.PAYMENT_NOT_PENDING

    def test_verify_no_modifica_el_original(self) -> None:
        ledger = payment.quote(PaymentLedger(), 1000, "doc://abc")
        verified = payment.verify(ledger, True)
        assert verified.is_paid is True
        assert ledger.is_paid is False

    def test_edit_conserva_pdf_si_no_se_envia_otro(self) -> None:
        ledger = payment.quote(PaymentLedger(), 1000, "doc://abc")
        edited = payment.edit(ledger, 2500)
        assert edited.value == Decimal("2500")
        assert edited.price_support_ref == "doc://abc"
        assert edited.is_paid is False

    def test_edit_sin_pago_requerido_no_exige_pdf(self) -> None:
        edited = payment.edit(PaymentLedger(is_paid=None), 500)
        assert edited.value == Decimal("500")
        assert edited.is_paid is None
