"""Invoice mutation orchestrator - realize a computed change against the interest invoice"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional

from xero_interest.domain.exceptions import InvoiceMutationError
from xero_interest.domain.models import (
    InterestInvoiceRef,
    InvoiceStatus,
    LineItem,
    MutationKind,
    MutationOutcome,
)
from xero_interest.domain.ports import AccountingClient
from xero_interest.utils.date_utils import add_days
from xero_interest.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

PLACEHOLDER_DESCRIPTION = "Interest charges - pending calculation"


def interest_reference(contact_id: str, period_key: str, prefix: str = "[XINT]") -> str:
    """
    Deterministic reference tagging the interest invoice of a client/period.

    This string is the idempotency key: repeated runs find the invoice they
    created earlier instead of issuing a duplicate.
    """
    return f"{prefix} Interest Charges - {period_key} - {contact_id}"


def placeholder_line(
    account_code: str, description: str = PLACEHOLDER_DESCRIPTION, item_code: Optional[str] = None
) -> LineItem:
    """Zero-amount line; an invoice must always carry at least one"""
    return LineItem(description=description, unit_amount=ZERO, account_code=account_code, item_code=item_code)


@dataclass
class ChangeRequest:
    """Client/period context for one apply_change call"""

    contact_id: str
    contact_name: str
    period_key: str
    as_of: date
    invoice_date: date
    due_date: date
    currency_code: Optional[str] = None
    reauthorize: bool = False  # monthly invoices go back to AUTHORISED after editing
    update_dates: bool = False


class InvoiceMutationOrchestrator:
    """
    Apply a desired line-item set / net change to an interest invoice.

    State machine over the target invoice's mutability:
    - modifiable (draft/authorised, unpaid, unallocated): rewrite in place,
      falling back to a replacement invoice if the platform rejects the edit
    - paid with negative net change: credit note for the difference
    - paid with positive net change: supplemental invoice for the difference
    - anything else (voided/deleted, nothing to apply): no-op
    """

    def __init__(
        self,
        client: AccountingClient,
        account_code: str = "4010",
        reference_prefix: str = "[XINT]",
        supplemental_due_days: int = 14,
        item_code: Optional[str] = None,
    ):
        self.client = client
        self.account_code = account_code
        self.reference_prefix = reference_prefix
        self.supplemental_due_days = supplemental_due_days
        self.item_code = item_code

    def reference_for(self, contact_id: str, period_key: str) -> str:
        return interest_reference(contact_id, period_key, self.reference_prefix)

    async def get_or_create_interest_invoice(
        self,
        contact_id: str,
        contact_name: str,
        period_key: str,
        invoice_date: date,
        due_date: date,
        currency_code: Optional[str] = None,
    ) -> InterestInvoiceRef:
        """Reuse the client's non-voided invoice for this period, or open a new draft"""
        reference = self.reference_for(contact_id, period_key)
        existing = await self.client.find_invoices_by_reference(contact_id, reference)
        if existing:
            invoice = existing[0]
            return InterestInvoiceRef(invoice_id=invoice.invoice_id, invoice_number=invoice.invoice_number, is_new=False)

        created = await self.client.create_invoice(
            contact_id=contact_id,
            invoice_date=invoice_date,
            due_date=due_date,
            reference=reference,
            line_items=[placeholder_line(self.account_code, item_code=self.item_code)],
            status=InvoiceStatus.DRAFT.value,
            currency_code=currency_code,
        )
        logger.info(
            "Created interest invoice",
            extra={"contact_id": contact_id, "contact_name": contact_name, "period": period_key, "invoice_number": created.number},
        )
        return InterestInvoiceRef(invoice_id=created.id, invoice_number=created.number, is_new=True)

    async def apply_change(
        self,
        target: InterestInvoiceRef,
        line_items: List[LineItem],
        net_change: Decimal,
        change: ChangeRequest,
    ) -> MutationOutcome:
        """Realize the computed state on the platform; never raises for immutability"""
        net_change = round_money(net_change)
        if not line_items:
            line_items = [placeholder_line(self.account_code, item_code=self.item_code)]

        mutability = await self.client.can_modify_invoice(target.invoice_id)

        if mutability.can_modify:
            outcome = await self._rewrite_in_place(target, mutability.status, line_items, change)
        elif mutability.is_paid and net_change < 0:
            outcome = await self._issue_credit_note(target, net_change, change)
        elif mutability.is_paid and net_change > 0:
            outcome = await self._issue_supplemental_invoice(target, net_change, change)
        else:
            logger.info(
                "Interest invoice not modifiable, nothing to apply",
                extra={"invoice_number": target.invoice_number, "status": mutability.status, "net_change": str(net_change)},
            )
            outcome = MutationOutcome(kind=MutationKind.NONE, invoice_id=target.invoice_id, invoice_number=target.invoice_number)

        return outcome

    async def _rewrite_in_place(
        self,
        target: InterestInvoiceRef,
        status: str,
        line_items: List[LineItem],
        change: ChangeRequest,
    ) -> MutationOutcome:
        try:
            if status != InvoiceStatus.DRAFT.value:
                await self.client.move_to_draft(target.invoice_id)
            if change.update_dates:
                await self.client.update_dates(target.invoice_id, change.invoice_date, change.due_date)
            await self.client.update_line_items(target.invoice_id, line_items)
            if change.reauthorize:
                await self.client.authorize(target.invoice_id)
        except InvoiceMutationError as e:
            logger.warning(
                "Failed to update interest invoice, creating replacement",
                extra={"invoice_number": target.invoice_number, "error": str(e)},
            )
            return await self._replace(target, line_items, change, reason=str(e))

        logger.info(
            "Updated interest invoice",
            extra={"invoice_number": target.invoice_number, "line_items": len(line_items), "period": change.period_key},
        )
        return MutationOutcome(kind=MutationKind.UPDATED, invoice_id=target.invoice_id, invoice_number=target.invoice_number)

    async def _replace(
        self,
        target: InterestInvoiceRef,
        line_items: List[LineItem],
        change: ChangeRequest,
        reason: str,
    ) -> MutationOutcome:
        created = await self.client.create_invoice(
            contact_id=change.contact_id,
            invoice_date=change.invoice_date,
            due_date=change.due_date,
            reference=self.reference_for(change.contact_id, change.period_key),
            line_items=line_items,
            status=InvoiceStatus.AUTHORISED.value,
            currency_code=change.currency_code,
        )
        await self.client.add_invoice_history_note(
            created.id,
            f"Replacement for {target.invoice_number} - original invoice could not be modified ({reason})",
        )
        logger.info(
            "Created replacement interest invoice",
            extra={"replaces": target.invoice_number, "invoice_number": created.number, "period": change.period_key},
        )
        return MutationOutcome(
            kind=MutationKind.REPLACED,
            invoice_id=created.id,
            invoice_number=created.number,
            error=reason,
        )

    async def _issue_credit_note(
        self,
        target: InterestInvoiceRef,
        net_change: Decimal,
        change: ChangeRequest,
    ) -> MutationOutcome:
        amount = abs(net_change)
        credit_note = await self.client.create_credit_note(
            contact_id=change.contact_id,
            credit_date=change.as_of,
            reference=self.reference_for(change.contact_id, change.period_key),
            line_items=[
                LineItem(
                    description=f"Interest adjustment for {change.contact_name} ({change.period_key})",
                    unit_amount=amount,
                    account_code=self.account_code,
                )
            ],
            currency_code=change.currency_code,
        )
        await self.client.add_credit_note_history_note(
            credit_note.id,
            f"Credit for overpaid interest on {target.invoice_number} - recalculation reduced amount by ${amount:.2f}",
        )
        logger.info(
            "Created credit note for overpaid interest",
            extra={"invoice_number": target.invoice_number, "credit_note_number": credit_note.number, "amount": str(amount)},
        )
        return MutationOutcome(
            kind=MutationKind.CREDIT_NOTE,
            invoice_id=target.invoice_id,
            invoice_number=target.invoice_number,
            credit_note=credit_note,
        )

    async def _issue_supplemental_invoice(
        self,
        target: InterestInvoiceRef,
        net_change: Decimal,
        change: ChangeRequest,
    ) -> MutationOutcome:
        # Distinct reference so the paid original stays the period's idempotency match
        reference = f"{self.reference_for(change.contact_id, change.period_key)} (additional)"
        supplemental = await self.client.create_invoice(
            contact_id=change.contact_id,
            invoice_date=change.as_of,
            due_date=add_days(change.as_of, self.supplemental_due_days),
            reference=reference,
            line_items=[
                LineItem(
                    description=f"Additional interest charges for {change.contact_name} ({change.period_key})",
                    unit_amount=net_change,
                    account_code=self.account_code,
                    item_code=self.item_code,
                )
            ],
            status=InvoiceStatus.AUTHORISED.value,
            currency_code=change.currency_code,
        )
        await self.client.add_invoice_history_note(
            supplemental.id,
            f"Additional charges for {change.period_key} - {target.invoice_number} was already paid, "
            f"recalculation increased amount by ${net_change:.2f}",
        )
        logger.info(
            "Created supplemental interest invoice",
            extra={"invoice_number": target.invoice_number, "additional_invoice_number": supplemental.number, "amount": str(net_change)},
        )
        return MutationOutcome(
            kind=MutationKind.SUPPLEMENTAL_INVOICE,
            invoice_id=target.invoice_id,
            invoice_number=target.invoice_number,
            supplemental_invoice=supplemental,
        )
