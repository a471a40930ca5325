"""Marketplace commission split."""
import logging
from dataclasses import dataclass
from uuid import UUID

from coin_ledger.config import get_settings
from coin_ledger.models.base import EntryDirection
from coin_ledger.services.intent import Posting
from coin_ledger.utils.exceptions import InvalidAmount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionSplit:
    seller_account_id: UUID
    seller_share: int
    platform_account_id: UUID
    platform_share: int
    seller_percent: int

    @property
    def total(self) -> int:
        return self.seller_share + self.platform_share


class CommissionSplitter:
    """Splits a purchase between seller and platform with no fractional coins."""

    def __init__(self, seller_percent: int | None = None):
        self.seller_percent = (
            get_settings().commission_seller_percent if seller_percent is None else seller_percent
        )
        if not 0 <= self.seller_percent <= 100:
            raise ValueError("seller_percent must be between 0 and 100")

    def split_purchase(self, total_amount: int, seller_account_id: UUID, platform_treasury_id: UUID) -> CommissionSplit:
        """
        Compute the seller and platform shares of ``total_amount``.

        The seller share is rounded down; the remainder goes to the platform, so
        ``seller_share + platform_share == total_amount`` always holds.

        Raises:
            InvalidAmount: If total_amount is not a positive integer
        """
        if isinstance(total_amount, bool) or not isinstance(total_amount, int) or total_amount <= 0:
            raise InvalidAmount("amount_must_be_positive_integer")

        seller_share = total_amount * self.seller_percent // 100
        platform_share = total_amount - seller_share
        return CommissionSplit(
            seller_account_id=seller_account_id,
            seller_share=seller_share,
            platform_account_id=platform_treasury_id,
            platform_share=platform_share,
            seller_percent=self.seller_percent,
        )

    @staticmethod
    def postings(buyer_account_id: UUID, split: CommissionSplit) -> list[Posting]:
        """One buyer debit matched by the seller and platform credits. Zero shares are omitted."""
        postings = [Posting(buyer_account_id, EntryDirection.DEBIT, split.total)]
        if split.seller_share:
            postings.append(Posting(split.seller_account_id, EntryDirection.CREDIT, split.seller_share))
        if split.platform_share:
            postings.append(Posting(split.platform_account_id, EntryDirection.CREDIT, split.platform_share))
        return postings
