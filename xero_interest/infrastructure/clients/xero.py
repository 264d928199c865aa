"""Xero Accounting API HTTP client for invoices, credit notes and history notes"""

import asyncio
import logging
import time
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Protocol

import httpx

from xero_interest.config import settings
from xero_interest.domain.exceptions import (
    AccountingAPIError,
    AccountingAuthError,
    InvalidInvoiceDataError,
    InvoiceMutationError,
)
from xero_interest.domain.models import (
    BalanceEvent,
    CreatedDocument,
    InvoiceMutability,
    InvoiceStatus,
    LineItem,
    SourceInvoice,
)
from xero_interest.infrastructure.clients.rate_limit import RateLimiter
from xero_interest.infrastructure.observability.metrics import xero_failure_counter, xero_latency_histogram
from xero_interest.utils.date_utils import format_xero_date, parse_xero_date
from xero_interest.utils.money import to_decimal

logger = logging.getLogger(__name__)

# Refresh the access token this long before Xero says it expires
TOKEN_REFRESH_BUFFER_SECONDS = 300

# References that mark an invoice as interest (ours or legacy) rather than a receivable
LEGACY_INTEREST_MARKERS = ("Interest Charges", "Interest on")

INTEREST_ITEM_CODE = "INTEREST"


class RefreshTokenStore(Protocol):
    """Durable home for the latest refresh token of a tenant"""

    def load(self, tenant_id: str) -> Optional[str]: ...

    def save(self, tenant_id: str, refresh_token: str) -> None: ...


def _get(payload: Dict[str, Any], *names: str, default=None):
    """First present key among PascalCase/camelCase spellings"""
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return default


def parse_invoice(payload: Dict[str, Any]) -> SourceInvoice:
    """
    Normalize a Xero invoice payload into a SourceInvoice.

    The REST API answers in PascalCase; SDK-shaped payloads use camelCase.
    Both are accepted here so nothing past this function sees either.

    Raises:
        InvalidInvoiceDataError: On missing ids, dates or amounts
    """
    try:
        invoice_id = _get(payload, "InvoiceID", "invoiceID", "invoiceId")
        if not invoice_id:
            raise InvalidInvoiceDataError("Invoice payload has no InvoiceID")

        status_value = _get(payload, "Status", "status", default=InvoiceStatus.AUTHORISED.value)
        contact = _get(payload, "Contact", "contact", default={})

        payments = [
            BalanceEvent(
                date=parse_xero_date(_get(p, "Date", "date")),
                amount=to_decimal(_get(p, "Amount", "amount", default=0)),
                kind="payment",
                reference_id=_get(p, "PaymentID", "paymentID"),
            )
            for p in _get(payload, "Payments", "payments", default=[])
        ]
        credit_notes = [
            BalanceEvent(
                date=parse_xero_date(_get(c, "Date", "date")),
                amount=to_decimal(_get(c, "AppliedAmount", "appliedAmount", "Total", "total", default=0)),
                kind="credit_note",
                reference_id=_get(c, "CreditNoteID", "creditNoteID"),
            )
            for c in _get(payload, "CreditNotes", "creditNotes", default=[])
        ]

        issue_date = _get(payload, "Date", "date")
        return SourceInvoice(
            invoice_id=invoice_id,
            invoice_number=_get(payload, "InvoiceNumber", "invoiceNumber", default=""),
            status=InvoiceStatus(status_value),
            due_date=parse_xero_date(_get(payload, "DueDate", "dueDate")),
            total=to_decimal(_get(payload, "Total", "total", default=0)),
            amount_due=to_decimal(_get(payload, "AmountDue", "amountDue", default=0)),
            amount_paid=to_decimal(_get(payload, "AmountPaid", "amountPaid", default=0)),
            currency_code=_get(payload, "CurrencyCode", "currencyCode"),
            issue_date=parse_xero_date(issue_date) if issue_date else None,
            contact_id=_get(contact, "ContactID", "contactID"),
            reference=_get(payload, "Reference", "reference"),
            payments=payments,
            credit_notes=credit_notes,
        )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise InvalidInvoiceDataError(f"Invalid invoice data from Xero: {e}") from e


def _line_item_payload(item: LineItem) -> Dict[str, Any]:
    payload = {
        "Description": item.description,
        "Quantity": float(item.quantity),
        "UnitAmount": float(item.unit_amount),
        "AccountCode": item.account_code,
        "TaxType": item.tax_type,
    }
    if item.item_code:
        payload["ItemCode"] = item.item_code
    return payload


def _where_date(value: date) -> str:
    return f"DateTime({value.year},{value.month:02d},{value.day:02d})"


class XeroClient:
    """Client for the Xero Accounting API (one tenant, refresh-token auth)"""

    def __init__(
        self,
        base_url: str | None = None,
        identity_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        refresh_token: str | None = None,
        tenant_id: str | None = None,
        reference_prefix: str | None = None,
        timeout: float | None = None,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_store: RefreshTokenStore | None = None,
    ):
        self.base_url = (base_url or settings.xero_api_base).rstrip("/")
        self.identity_url = identity_url or settings.xero_identity_url
        self.client_id = client_id or settings.xero_client_id
        self.client_secret = client_secret or settings.xero_client_secret.get_secret_value()
        self.refresh_token = refresh_token or settings.xero_refresh_token.get_secret_value()
        self.tenant_id = tenant_id or settings.xero_tenant_id
        self.reference_prefix = reference_prefix or settings.interest_reference_prefix
        self.timeout = timeout or settings.http_timeout_seconds
        self.rate_limiter = rate_limiter or RateLimiter(settings.xero_min_call_interval_seconds)
        self.transport = transport
        self.token_store = token_store
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _ensure_token(self) -> str:
        """
        Exchange the refresh token for an access token when needed.

        Xero rotates refresh tokens and the old one stops working at once,
        so the newest token is read from the token store before each
        refresh and the replacement written back straight after.

        Raises:
            AccountingAuthError: If the identity server rejects the credentials
        """
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at - TOKEN_REFRESH_BUFFER_SECONDS:
                return self._access_token
            return await self._refresh_access_token()

    async def _refresh_access_token(self) -> str:
        if self.token_store is not None:
            self.refresh_token = self.token_store.load(self.tenant_id) or self.refresh_token

        if not self.client_id or not self.refresh_token:
            raise AccountingAuthError("Xero credentials are not configured")

        async with self._http() as client:
            try:
                response = await client.post(
                    self.identity_url,
                    data={"grant_type": "refresh_token", "refresh_token": self.refresh_token},
                    auth=(self.client_id, self.client_secret),
                )
                response.raise_for_status()
                token = response.json()
            except httpx.HTTPStatusError as e:
                xero_failure_counter.labels(status=str(e.response.status_code)).inc()
                raise AccountingAuthError(
                    f"Xero token refresh failed: {e.response.status_code}", status_code=e.response.status_code
                ) from e
            except httpx.HTTPError as e:
                xero_failure_counter.labels(status="transport").inc()
                raise AccountingAuthError(f"Xero token refresh failed: {e}") from e
            except ValueError as e:
                raise AccountingAuthError("Invalid JSON from Xero identity server") from e

        try:
            self._access_token = token["access_token"]
        except (KeyError, TypeError) as e:
            raise AccountingAuthError("Xero token response has no access_token") from e
        if token.get("refresh_token"):
            self.refresh_token = token["refresh_token"]
            if self.token_store is not None:
                self.token_store.save(self.tenant_id, self.refresh_token)
        self._token_expires_at = time.monotonic() + float(token.get("expires_in", 1800))
        logger.info("Xero token refreshed", extra={"expires_in": token.get("expires_in", 1800)})
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """
        One rate-limited, authenticated call.

        Raises:
            AccountingAuthError: On 401/403
            AccountingAPIError: On timeout, transport or other HTTP errors
        """
        access_token = await self._ensure_token()
        await self.rate_limiter.wait()

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Xero-tenant-id": self.tenant_id,
            "Accept": "application/json",
        }
        start_time = time.perf_counter()
        async with self._http() as client:
            try:
                response = await client.request(method, f"{self.base_url}{path}", params=params, json=json, headers=headers)
                response.raise_for_status()
                return response.json() if response.content else {}

            except httpx.TimeoutException as e:
                xero_failure_counter.labels(status="timeout").inc()
                raise AccountingAPIError(f"Xero API timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                xero_failure_counter.labels(status=str(status_code)).inc()
                if status_code in (401, 403):
                    if status_code == 401:
                        self._access_token = None
                    raise AccountingAuthError(f"Xero API rejected credentials: {status_code}", status_code=status_code) from e
                raise AccountingAPIError(
                    f"Xero API error on {operation}: {status_code} {_validation_message(e.response)}",
                    status_code=status_code,
                ) from e
            except httpx.HTTPError as e:
                xero_failure_counter.labels(status="transport").inc()
                raise AccountingAPIError(f"Xero API unreachable: {e}") from e
            except ValueError as e:
                raise AccountingAPIError(f"Invalid JSON from Xero on {operation}") from e
            finally:
                xero_latency_histogram.labels(operation=operation).observe(time.perf_counter() - start_time)

    async def get_overdue_invoices(
        self, contact_id: str, min_days_overdue: int, currency_code: Optional[str] = None
    ) -> List[SourceInvoice]:
        """
        Authorised receivables past the grace threshold, payments included.

        Interest invoices (ours and legacy) are excluded by reference.
        """
        threshold = date.today() - timedelta(days=min_days_overdue)
        exclusions = " AND ".join(
            f'NOT Reference.Contains("{marker}")' for marker in (self.reference_prefix,) + LEGACY_INTEREST_MARKERS
        )
        where = (
            f'Contact.ContactID==Guid("{contact_id}") AND Type=="ACCREC" AND Status=="AUTHORISED" '
            f"AND AmountDue>0 AND DueDate<{_where_date(threshold)} "
            f"AND (Reference==null OR ({exclusions}))"
        )
        if currency_code:
            where += f' AND CurrencyCode=="{currency_code}"'

        invoices: List[SourceInvoice] = []
        page = 1
        while True:
            data = await self._request(
                "GET",
                "/Invoices",
                "get_overdue_invoices",
                params={"where": where, "order": "DueDate ASC", "page": page, "summaryOnly": "false"},
            )
            batch = data.get("Invoices", [])
            invoices.extend(parse_invoice(item) for item in batch)
            # Xero pages hold 100 invoices
            if len(batch) < 100:
                break
            page += 1
        return invoices

    async def get_invoice(self, invoice_id: str) -> Optional[SourceInvoice]:
        """Single invoice with payments, or None if Xero does not know it"""
        try:
            data = await self._request("GET", f"/Invoices/{invoice_id}", "get_invoice")
        except AccountingAuthError:
            raise
        except AccountingAPIError as e:
            if e.status_code == 404:
                return None
            raise
        invoices = data.get("Invoices", [])
        return parse_invoice(invoices[0]) if invoices else None

    async def find_invoices_by_reference(self, contact_id: str, reference: str) -> List[SourceInvoice]:
        """Live interest invoices carrying this reference, newest first"""
        escaped = reference.replace('"', '\\"')
        where = (
            f'Contact.ContactID==Guid("{contact_id}") AND Reference=="{escaped}" '
            f'AND Status!="VOIDED" AND Status!="DELETED"'
        )
        data = await self._request(
            "GET",
            "/Invoices",
            "find_invoices_by_reference",
            params={"where": where, "order": "UpdatedDateUTC DESC"},
        )
        return [parse_invoice(item) for item in data.get("Invoices", [])]

    async def is_voided(self, invoice_id: str) -> bool:
        """Voided, deleted, or gone altogether"""
        invoice = await self.get_invoice(invoice_id)
        return invoice is None or invoice.is_voided

    async def can_modify_invoice(self, invoice_id: str) -> InvoiceMutability:
        invoice = await self.get_invoice(invoice_id)
        if invoice is None:
            return InvoiceMutability(can_modify=False, status="NOT_FOUND", is_paid=False)

        is_paid = invoice.status == InvoiceStatus.PAID or invoice.amount_paid > 0
        has_allocations = len(invoice.credit_notes) > 0
        can_modify = not is_paid and not has_allocations and not invoice.is_voided
        return InvoiceMutability(
            can_modify=can_modify,
            status=invoice.status.value,
            is_paid=is_paid,
            has_allocations=has_allocations,
        )

    async def _update_invoice(self, invoice_id: str, changes: Dict[str, Any], operation: str) -> None:
        """
        Raises:
            InvoiceMutationError: If Xero refuses the edit (auth errors propagate unchanged)
        """
        try:
            await self._request(
                "POST",
                f"/Invoices/{invoice_id}",
                operation,
                json={"Invoices": [{"InvoiceID": invoice_id, **changes}]},
            )
        except AccountingAuthError:
            raise
        except AccountingAPIError as e:
            raise InvoiceMutationError(str(e), status_code=e.status_code) from e

    async def move_to_draft(self, invoice_id: str) -> None:
        await self._update_invoice(invoice_id, {"Status": InvoiceStatus.DRAFT.value}, "move_to_draft")

    async def update_line_items(self, invoice_id: str, line_items: List[LineItem]) -> None:
        await self._update_invoice(
            invoice_id, {"LineItems": [_line_item_payload(item) for item in line_items]}, "update_line_items"
        )

    async def update_dates(self, invoice_id: str, invoice_date: date, due_date: date) -> None:
        await self._update_invoice(
            invoice_id,
            {"Date": format_xero_date(invoice_date), "DueDate": format_xero_date(due_date)},
            "update_dates",
        )

    async def authorize(self, invoice_id: str) -> None:
        await self._update_invoice(invoice_id, {"Status": InvoiceStatus.AUTHORISED.value}, "authorize")

    async def create_invoice(
        self,
        contact_id: str,
        invoice_date: date,
        due_date: date,
        reference: str,
        line_items: List[LineItem],
        status: str = "AUTHORISED",
        currency_code: Optional[str] = None,
    ) -> CreatedDocument:
        invoice: Dict[str, Any] = {
            "Type": "ACCREC",
            "Contact": {"ContactID": contact_id},
            "Date": format_xero_date(invoice_date),
            "DueDate": format_xero_date(due_date),
            "Reference": reference,
            "Status": status,
            "LineAmountTypes": "NoTax",
            "LineItems": [_line_item_payload(item) for item in line_items],
        }
        if currency_code:
            invoice["CurrencyCode"] = currency_code

        data = await self._request("PUT", "/Invoices", "create_invoice", json={"Invoices": [invoice]})
        created = data.get("Invoices", [])
        if not created:
            raise AccountingAPIError("Failed to create invoice - no invoice returned")
        return CreatedDocument(id=created[0]["InvoiceID"], number=created[0].get("InvoiceNumber", ""))

    async def create_credit_note(
        self,
        contact_id: str,
        credit_date: date,
        reference: str,
        line_items: List[LineItem],
        currency_code: Optional[str] = None,
    ) -> CreatedDocument:
        credit_note: Dict[str, Any] = {
            "Type": "ACCRECCREDIT",
            "Contact": {"ContactID": contact_id},
            "Date": format_xero_date(credit_date),
            "Reference": reference,
            "Status": InvoiceStatus.AUTHORISED.value,
            "LineAmountTypes": "NoTax",
            "LineItems": [_line_item_payload(item) for item in line_items],
        }
        if currency_code:
            credit_note["CurrencyCode"] = currency_code

        data = await self._request("PUT", "/CreditNotes", "create_credit_note", json={"CreditNotes": [credit_note]})
        created = data.get("CreditNotes", [])
        if not created:
            raise AccountingAPIError("Failed to create credit note - no credit note returned")
        return CreatedDocument(id=created[0]["CreditNoteID"], number=created[0].get("CreditNoteNumber", ""))

    async def add_invoice_history_note(self, invoice_id: str, note: str) -> None:
        await self._request(
            "PUT",
            f"/Invoices/{invoice_id}/History",
            "add_invoice_history_note",
            json={"HistoryRecords": [{"Details": note}]},
        )

    async def add_credit_note_history_note(self, credit_note_id: str, note: str) -> None:
        await self._request(
            "PUT",
            f"/CreditNotes/{credit_note_id}/History",
            "add_credit_note_history_note",
            json={"HistoryRecords": [{"Details": note}]},
        )

    async def get_or_create_interest_item(self, account_code: str) -> Optional[str]:
        """
        Code of the INTEREST sales item, created on first use.

        Returns None when the connection may not read or create items
        (missing scope); interest lines then go out without an item code.
        """
        try:
            data = await self._request(
                "GET", "/Items", "get_items", params={"where": f'Code=="{INTEREST_ITEM_CODE}"'}
            )
            existing = data.get("Items", [])
            if existing:
                return existing[0].get("Code", INTEREST_ITEM_CODE)

            item = {
                "Code": INTEREST_ITEM_CODE,
                "Name": "Interest Charges",
                "Description": "Interest on overdue invoices",
                "IsSold": True,
                "SalesDetails": {"AccountCode": account_code, "TaxType": "NONE"},
            }
            data = await self._request("PUT", "/Items", "create_item", json={"Items": [item]})
            created = data.get("Items", [])
            if not created:
                return None
            logger.info("Created INTEREST item", extra={"account_code": account_code})
            return created[0].get("Code", INTEREST_ITEM_CODE)

        except AccountingAuthError as e:
            if e.status_code != 403:
                raise
            logger.warning("Could not get/create INTEREST item - proceeding without item code", extra={"error": str(e)})
            return None
        except AccountingAPIError as e:
            logger.warning("Could not get/create INTEREST item - proceeding without item code", extra={"error": str(e)})
            return None


def _validation_message(response: httpx.Response) -> str:
    """Xero's first validation error, if the body carries one"""
    try:
        body = response.json()
    except ValueError:
        return ""
    for element in body.get("Elements", []) if isinstance(body, dict) else []:
        for error in element.get("ValidationErrors", []):
            if error.get("Message"):
                return error["Message"]
    return body.get("Message", "") if isinstance(body, dict) else ""
