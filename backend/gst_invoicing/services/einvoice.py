"""
GST e-invoice (IRN) integration.

``GstApiClient`` talks to the provider: authenticate, generate, cancel. The
bearer token is cached on the client until ``expires_in`` minus a 60 second
margin; the next call after that re-authenticates. Nothing is retried.

``EInvoiceService`` wraps one generate/cancel attempt for an invoice: it
writes a ``pending`` transaction-log row, calls the provider and then moves
both the log row and the invoice to their terminal state.
"""
from __future__ import annotations

import json
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx
from dateutil import parser as date_parser
from loguru import logger
from sqlmodel import Session, col, select

from gst_invoicing.core.cache import invalidate_on_commit
from gst_invoicing.core.config import settings
from gst_invoicing.core.errors import ExternalServiceError, NotFound, ValidationError
from gst_invoicing.models.invoice import (
    EInvoiceTransactionLog,
    InvoiceStatus,
    LogStatus,
    TaxInvoice,
    TaxInvoiceDetail,
)
from gst_invoicing.models.master import Customer
from gst_invoicing.schemas.responses import EInvoiceStatus, TransactionLogRead
from gst_invoicing.services import invoices as invoice_service
from gst_invoicing.services import tax
from gst_invoicing.services.masters import get_gst_settings

SCHEMA_VERSION = "1.1"
TOKEN_MARGIN_SECONDS = 60
REQUIRED_SELLER_SETTINGS = ("company_gstin", "company_legal_name")


def _provider_error(body: Any) -> tuple[Optional[str], Optional[str]]:
    """First (code, message) from an ``InfoDtls`` / ``ErrorDetails`` / ``message`` body."""
    if not isinstance(body, dict):
        return None, None
    for key, code_key, msg_key in (
        ("InfoDtls", "InfCd", "Desc"),
        ("ErrorDetails", "ErrorCode", "ErrorMessage"),
    ):
        entries = body.get(key) or []
        if entries and isinstance(entries, list) and isinstance(entries[0], dict):
            return entries[0].get(code_key), entries[0].get(msg_key)
    return body.get("error_code"), body.get("message") or body.get("error")


class GstApiClient:
    """Synchronous client for the e-invoice provider."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        gstin: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.gstin = gstin
        self.client_id = client_id
        self.client_secret = client_secret
        self._clock = clock
        self._http = httpx.Client(timeout=timeout, transport=transport)
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0

    @classmethod
    def from_settings(cls, **overrides) -> "GstApiClient":
        params = dict(
            base_url=settings.GST_API_BASE_URL,
            username=settings.GST_API_USERNAME,
            password=settings.GST_API_PASSWORD,
            gstin=settings.GST_API_GSTIN,
            client_id=settings.GST_API_CLIENT_ID,
            client_secret=settings.GST_API_CLIENT_SECRET,
            timeout=settings.GST_API_TIMEOUT,
        )
        params.update(overrides)
        return cls(**params)

    def close(self) -> None:
        self._http.close()

    @property
    def token_valid(self) -> bool:
        return bool(self._access_token) and self._clock() < self._token_expiry

    def _post(self, path: str, payload: dict, headers: dict, action: str) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self._http.post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                body = e.response.json()
            except ValueError:
                body = {"message": e.response.text}
            code, message = _provider_error(body)
            logger.warning(f"GST API {action} HTTP {e.response.status_code}: {message}")
            raise ExternalServiceError(
                message or f"Failed to {action} e-invoice",
                error_code=code or str(e.response.status_code),
                detail={"provider_response": body},
            )
        except httpx.RequestError as e:
            logger.warning(f"GST API {action} request failed: {e}")
            raise ExternalServiceError(
                f"Failed to {action} e-invoice: provider unreachable",
                error_code="NETWORK",
            )
        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            logger.warning(f"GST API {action} returned a non-object body")
            raise ExternalServiceError(
                f"Failed to {action} e-invoice: invalid provider response",
                error_code="BAD_RESPONSE",
            )
        return body

    def authenticate(self) -> str:
        if self.token_valid:
            return self._access_token

        result = self._post(
            "/auth",
            {
                "username": self.username,
                "password": self.password,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "password",
            },
            headers={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "Gstin": self.gstin,
            },
            action="authenticate",
        )
        token = result.get("access_token")
        if not token:
            raise ExternalServiceError("Failed to authenticate with GST API", error_code="AUTH")
        expires_in = float(result.get("expires_in") or 0)
        self._access_token = token
        self._token_expiry = self._clock() + expires_in - TOKEN_MARGIN_SECONDS
        logger.info(f"Authenticated with GST API, token valid for {int(expires_in)}s")
        return token

    def _auth_headers(self) -> dict:
        token = self.authenticate()
        return {
            "Authorization": f"Bearer {token}",
            "user_name": self.username,
            "Gstin": self.gstin,
        }

    def generate(self, payload: dict) -> dict:
        headers = self._auth_headers()
        headers["requestid"] = str(int(self._clock() * 1000))
        result = self._post("/invoice", payload, headers, action="generate")
        if result.get("Success") != "Y":
            code, message = _provider_error(result)
            raise ExternalServiceError(
                f"E-Invoice generation failed: {message or 'Unknown error'}",
                error_code=code,
                detail={"provider_response": result},
            )
        return result

    def cancel(self, irn: str, reason: str, remarks: str = "Invoice cancelled") -> dict:
        result = self._post(
            "/invoice/cancel",
            {"Irn": irn, "CnlRsn": reason, "CnlRem": remarks},
            self._auth_headers(),
            action="cancel",
        )
        if result.get("Success", "Y") != "Y":
            code, message = _provider_error(result)
            raise ExternalServiceError(
                f"E-Invoice cancellation failed: {message or 'Unknown error'}",
                error_code=code,
                detail={"provider_response": result},
            )
        return result


_client: Optional[GstApiClient] = None


def get_gst_client() -> GstApiClient:
    """Process-wide client so the provider token survives between requests."""
    global _client
    if _client is None:
        _client = GstApiClient.from_settings()
    return _client


def close_gst_client() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None


# ── Payload ───────────────────────────────────────────────────────────────────


def _num(value: Any) -> float:
    return float(tax.money(Decimal(str(value or 0))))


def _pin(value: Optional[str], whose: str) -> int:
    digits = (value or "").strip()
    if not digits.isdigit():
        raise ValidationError(f"{whose} PIN code is required for e-invoice")
    return int(digits)


def build_einvoice_payload(
    invoice: TaxInvoice,
    lines: list[TaxInvoiceDetail],
    customer: Customer,
    seller: dict[str, str],
) -> dict:
    """Map an invoice onto the government e-invoice JSON schema (v1.1)."""
    missing = [k for k in REQUIRED_SELLER_SETTINGS if not seller.get(k)]
    if missing:
        raise ValidationError(
            "Company GST settings not configured properly", {"missing": missing}
        )

    seller_gstin = seller["company_gstin"]
    seller_state = (
        tax.normalise_state_code(seller.get("company_state_code"))
        or tax.state_code_from_gstin(seller_gstin)
    )
    buyer_state = (
        tax.normalise_state_code(customer.state_code)
        or tax.state_code_from_gstin(customer.gstin)
    )

    seller_dtls = {
        "Gstin": seller_gstin,
        "LglNm": seller["company_legal_name"],
        "Addr1": seller.get("company_address1") or seller.get("company_address") or "",
        "Loc": seller.get("company_location") or seller.get("company_city") or "",
        "Pin": _pin(
            seller.get("company_pin_code") or seller.get("company_pincode"), "Company"
        ),
        "Stcd": seller_state,
    }
    for src, dst in (
        ("company_trade_name", "TrdNm"),
        ("company_address2", "Addr2"),
        ("company_phone", "Ph"),
        ("company_email", "Em"),
    ):
        if seller.get(src):
            seller_dtls[dst] = seller[src]

    buyer_dtls = {
        "Gstin": customer.gstin or "URP",
        "LglNm": customer.legal_name or customer.company_name or customer.name,
        "Pos": invoice.place_of_supply,
        "Addr1": customer.address or "",
        "Loc": customer.state_name or "",
        "Pin": _pin(customer.pin_code, "Customer"),
        "Stcd": buyer_state,
    }
    if customer.trade_name:
        buyer_dtls["TrdNm"] = customer.trade_name
    if customer.mobile or customer.phone:
        buyer_dtls["Ph"] = customer.mobile or customer.phone
    if customer.email:
        buyer_dtls["Em"] = customer.email

    item_list = [
        {
            "SlNo": str(d.serial_no),
            "PrdDesc": d.description or d.hsn_sac_code,
            "IsServc": "Y" if d.is_service else "N",
            "HsnCd": d.hsn_sac_code,
            "Qty": float(d.qty),
            "Unit": d.unit,
            "UnitPrice": _num(d.rate),
            "TotAmt": _num(d.taxable_amt),
            "AssAmt": _num(d.taxable_amt),
            "GstRt": _num(d.gst_rate),
            "IgstAmt": _num(d.igst_amt),
            "CgstAmt": _num(d.cgst_amt),
            "SgstAmt": _num(d.sgst_amt),
            "TotItemVal": _num(d.total_amount),
        }
        for d in lines
    ]

    return {
        "Version": SCHEMA_VERSION,
        "TranDtls": {
            "TaxSch": "GST",
            "SupTyp": invoice.supply_type or "B2B",
            "RegRev": invoice.reverse_charge or "N",
        },
        "DocDtls": {
            "Typ": "INV",
            "No": invoice.invoice_no,
            "Dt": invoice.invoice_date.strftime("%d/%m/%Y"),
        },
        "SellerDtls": seller_dtls,
        "BuyerDtls": buyer_dtls,
        "ItemList": item_list,
        "ValDtls": {
            "AssVal": _num(invoice.total_taxable_amt),
            "CgstVal": _num(invoice.total_cgst_amt),
            "SgstVal": _num(invoice.total_sgst_amt),
            "IgstVal": _num(invoice.total_igst_amt),
            "TotInvVal": _num(invoice.grand_total_amt),
        },
    }


# ── Orchestration ─────────────────────────────────────────────────────────────


def _parse_ack_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        logger.warning(f"Unparseable AckDt from provider: {value!r}")
        return None


def _str_or_none(value: Any) -> Optional[str]:
    return None if value in (None, "") else str(value)


class EInvoiceService:
    def __init__(self, session: Session, client: GstApiClient, user_id: Optional[int] = None):
        self.session = session
        self.client = client
        self.user_id = user_id

    def _open_log(self, invoice: TaxInvoice, action: str, request: dict) -> EInvoiceTransactionLog:
        entry = EInvoiceTransactionLog(
            tax_invoice_id=invoice.id,
            action=action,
            status=LogStatus.PENDING.value,
            irn=invoice.irn_no,
            request_payload=json.dumps(request),
            user_id=self.user_id,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def _close_log(
        self,
        entry: EInvoiceTransactionLog,
        status: LogStatus,
        response: Optional[dict] = None,
        error: Optional[ExternalServiceError] = None,
    ) -> None:
        entry.status = status.value
        entry.completed_at = datetime.utcnow()
        if response is not None:
            entry.response_payload = json.dumps(response, default=str)
            entry.irn = _str_or_none(response.get("Irn")) or entry.irn
        if error is not None:
            entry.error_code = error.error_code
            entry.error_message = error.message
            provider = error.detail.get("provider_response")
            if provider is not None:
                entry.response_payload = json.dumps(provider, default=str)
        self.session.add(entry)

    def _fail_generate(
        self, entry: EInvoiceTransactionLog, invoice: TaxInvoice, exc: ExternalServiceError
    ) -> None:
        self._close_log(entry, LogStatus.FAILED, error=exc)
        invoice.status = InvoiceStatus.ERROR.value
        invoice.error_code = exc.error_code
        invoice.error_message = exc.message
        invoice.updated_at = datetime.utcnow()
        self.session.add(invoice)
        invalidate_on_commit(self.session, invoice_service.CACHE_DOMAIN)
        self.session.commit()
        logger.warning(f"E-invoice generation failed for {invoice.invoice_no}: {exc.message}")

    def _fail_cancel(
        self, entry: EInvoiceTransactionLog, invoice: TaxInvoice, exc: ExternalServiceError
    ) -> None:
        self._close_log(entry, LogStatus.FAILED, error=exc)
        self.session.commit()
        logger.warning(f"E-invoice cancel failed for {invoice.invoice_no}: {exc.message}")

    def generate(self, invoice_id: int) -> TaxInvoice:
        invoice = self.session.get(TaxInvoice, invoice_id)
        if invoice is None or invoice.status not in invoice_service.EDITABLE_STATUSES:
            raise NotFound("Invoice not found or already submitted")

        minimum = Decimal(str(settings.EINVOICE_MIN_AMOUNT))
        if minimum > 0 and invoice.grand_total_amt < minimum:
            raise ValidationError(
                f"E-invoice generation requires an invoice value of at least {minimum}"
            )

        customer = self.session.get(Customer, invoice.customer_id)
        if customer is None:
            raise NotFound("Customer not found")
        lines = invoice_service.get_invoice_lines(self.session, invoice.id)
        payload = build_einvoice_payload(
            invoice, lines, customer, get_gst_settings(self.session)
        )

        entry = self._open_log(invoice, "generate", payload)
        try:
            result = self.client.generate(payload)
        except ExternalServiceError as exc:
            self._fail_generate(entry, invoice, exc)
            raise
        except Exception as exc:
            logger.opt(exception=exc).error(f"Unexpected error generating e-invoice for {invoice.invoice_no}")
            error = ExternalServiceError(
                "E-Invoice generation failed: unexpected provider error", error_code="UNEXPECTED"
            )
            self._fail_generate(entry, invoice, error)
            raise error from exc

        now = datetime.utcnow()
        invoice.status = InvoiceStatus.GENERATED.value
        invoice.irn_no = _str_or_none(result.get("Irn"))
        invoice.ack_no = _str_or_none(result.get("AckNo"))
        invoice.ack_date = _parse_ack_date(result.get("AckDt"))
        invoice.signed_qr_code = result.get("SignedQRCode")
        invoice.signed_invoice = result.get("SignedInvoice")
        invoice.ewb_no = _str_or_none(result.get("EwbNo"))
        invoice.ewb_date = _str_or_none(result.get("EwbDt"))
        invoice.ewb_valid_till = _str_or_none(result.get("EwbValidTill"))
        invoice.error_code = None
        invoice.error_message = None
        invoice.generated_at = now
        invoice.updated_at = now
        self.session.add(invoice)
        self._close_log(entry, LogStatus.SUCCESS, response=result)
        invalidate_on_commit(self.session, invoice_service.CACHE_DOMAIN)
        self.session.commit()
        self.session.refresh(invoice)
        logger.info(f"E-invoice generated for {invoice.invoice_no}: IRN {invoice.irn_no}")
        return invoice

    def cancel(self, invoice_id: int, reason: str, remarks: str) -> TaxInvoice:
        invoice = invoice_service.get_invoice_or_404(self.session, invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise ValidationError("Invoice is already cancelled")
        if not invoice.irn_no:
            raise ValidationError("Cannot cancel invoice without IRN")

        entry = self._open_log(
            invoice, "cancel", {"Irn": invoice.irn_no, "CnlRsn": reason, "CnlRem": remarks}
        )
        try:
            result = self.client.cancel(invoice.irn_no, reason, remarks)
        except ExternalServiceError as exc:
            self._fail_cancel(entry, invoice, exc)
            raise
        except Exception as exc:
            logger.opt(exception=exc).error(f"Unexpected error cancelling e-invoice for {invoice.invoice_no}")
            error = ExternalServiceError(
                "E-Invoice cancellation failed: unexpected provider error", error_code="UNEXPECTED"
            )
            self._fail_cancel(entry, invoice, error)
            raise error from exc

        now = datetime.utcnow()
        invoice.status = InvoiceStatus.CANCELLED.value
        invoice.cancelled_at = now
        invoice.cancel_reason = remarks or reason
        invoice.updated_at = now
        self.session.add(invoice)
        self._close_log(entry, LogStatus.SUCCESS, response=result)
        invalidate_on_commit(self.session, invoice_service.CACHE_DOMAIN)
        self.session.commit()
        self.session.refresh(invoice)
        logger.info(f"E-invoice cancelled for {invoice.invoice_no}")
        return invoice

    def status(self, invoice_id: int) -> EInvoiceStatus:
        invoice = invoice_service.get_invoice_or_404(self.session, invoice_id)
        logs = self.session.exec(
            select(EInvoiceTransactionLog)
            .where(EInvoiceTransactionLog.tax_invoice_id == invoice.id)
            .order_by(col(EInvoiceTransactionLog.created_at).desc(), col(EInvoiceTransactionLog.id).desc())
        ).all()
        return EInvoiceStatus(
            invoice_id=invoice.id,
            invoice_no=invoice.invoice_no,
            status=invoice.status,
            irn_no=invoice.irn_no,
            ack_no=invoice.ack_no,
            ack_date=invoice.ack_date,
            signed_qr_code=invoice.signed_qr_code,
            ewb_no=invoice.ewb_no,
            ewb_date=invoice.ewb_date,
            ewb_valid_till=invoice.ewb_valid_till,
            error_code=invoice.error_code,
            error_message=invoice.error_message,
            generated_at=invoice.generated_at,
            cancelled_at=invoice.cancelled_at,
            logs=[TransactionLogRead.model_validate(entry) for entry in logs],
        )
