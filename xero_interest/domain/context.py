"""Per-run state shared by every reconciliation call in one batch"""

from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Optional

from xero_interest.domain.ports import AccountingClient, ConfigStore, LedgerStore

_UNRESOLVED = object()


@dataclass
class RunContext:
    """
    Everything one batch invocation needs, passed down explicitly.

    Holds the authenticated accounting client, the ledger and config
    stores, the as-of date, and lookups cached for exactly as long as the
    run: void status per interest invoice and the interest item code.
    """

    client: AccountingClient
    ledger: LedgerStore
    configs: Optional[ConfigStore] = None
    as_of: date = field(default_factory=date.today)
    dry_run: bool = False
    account_code: str = "4010"
    reference_prefix: str = "[XINT]"
    supplemental_due_days: int = 14
    monthly_due_days: int = 30
    commit: Optional[Callable[[], None]] = None
    _voided_cache: Dict[str, bool] = field(default_factory=dict, repr=False)
    _item_code: object = field(default=_UNRESOLVED, repr=False)

    async def is_interest_invoice_voided(self, invoice_id: str) -> bool:
        """Void status of an interest invoice, looked up once per run"""
        if invoice_id not in self._voided_cache:
            self._voided_cache[invoice_id] = await self.client.is_voided(invoice_id)
        return self._voided_cache[invoice_id]

    async def interest_item_code(self) -> Optional[str]:
        """INTEREST item code for line items, or None when the item is unavailable"""
        if self._item_code is _UNRESOLVED:
            self._item_code = await self.client.get_or_create_interest_item(self.account_code)
        return self._item_code

    def checkpoint(self) -> None:
        """Persist ledger/config writes made so far"""
        if self.commit is not None and not self.dry_run:
            self.commit()
