import re
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import combinations

from dari_insights.core.configuration import EngineConfig
from dari_insights.domain.statistics import mean_and_std
from dari_insights.domain.tags import union_tags
from dari_insights.errors import CurrencyMismatchError, NotFoundError, ValidationError
from dari_insights.logger import get_logger
from dari_insights.merchants.normalizer import normalize_merchant, similarity
from dari_insights.models import (
    DuplicateGroup,
    MergeResult,
    MergeStrategy,
    Transaction,
)
from dari_insights.repositories import TransactionStore

logger = get_logger(__name__)

AMOUNT_WEIGHT = 0.3
TIME_WEIGHT = 0.3
DESCRIPTION_WEIGHT = 0.2
MERCHANT_WEIGHT = 0.2
DETAILED_DESCRIPTION_LENGTH = 10

_ARABIC = re.compile(r"[؀-ۿ]")
_LATIN = re.compile(r"[A-Za-z]")


def _script(text: str) -> str | None:
    if _ARABIC.search(text):
        return "arabic"
    if _LATIN.search(text):
        return "latin"
    return None


def _group_key(transaction: Transaction) -> tuple[str, str, Decimal, str, str | None]:
    # normalize() so 89.99 and 89.990 share a bucket, as they compare equal as Money
    return (
        transaction.account_id,
        transaction.amount.currency,
        transaction.magnitude.normalize(),
        normalize_merchant(transaction.merchant_or_description),
        transaction.category_id,
    )


def detail_score(transaction: Transaction) -> int:
    score = 0
    if transaction.merchant_name:
        score += 2
    if transaction.location:
        score += 2
    if transaction.tags:
        score += 1
    if len(transaction.description) > DETAILED_DESCRIPTION_LENGTH:
        score += 1
    return score


def merge_descriptions(transactions: Iterable[Transaction]) -> str:
    """Longest description, or all distinct ones joined when they are written in different scripts."""
    descriptions: list[str] = []
    for transaction in transactions:
        text = transaction.description.strip()
        if text and text not in descriptions:
            descriptions.append(text)
    if not descriptions:
        return ""

    by_script: dict[str | None, str] = {}
    for text in descriptions:
        script = _script(text)
        if script not in by_script or len(text) > len(by_script[script]):
            by_script[script] = text
    if len([script for script in by_script if script is not None]) > 1:
        return " / ".join(text for script, text in by_script.items() if script is not None)
    return max(descriptions, key=len)


class DuplicateResolver:
    """Finds groups of likely duplicate transactions and merges them into one record."""

    def __init__(
        self,
        store: TransactionStore,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.clock = clock

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.config.duplicate_window_minutes)

    def pair_score(self, first: Transaction, second: Transaction) -> float:
        score = 0.0
        if first.amount == second.amount:
            score += AMOUNT_WEIGHT
        gap = abs((second.date - first.date).total_seconds())
        window = self.window.total_seconds()
        if window > 0 and gap <= window:
            score += TIME_WEIGHT * (1 - gap / window)
        elif gap == 0:
            score += TIME_WEIGHT
        score += DESCRIPTION_WEIGHT * similarity(first.description.lower(), second.description.lower())
        score += MERCHANT_WEIGHT * similarity(
            normalize_merchant(first.merchant_or_description),
            normalize_merchant(second.merchant_or_description),
        )
        return min(1.0, score)

    def find_duplicate_groups(self, transactions: Iterable[Transaction]) -> list[DuplicateGroup]:
        buckets: dict[tuple[str, str, Decimal, str, str | None], list[Transaction]] = {}
        for transaction in transactions:
            buckets.setdefault(_group_key(transaction), []).append(transaction)

        groups: list[DuplicateGroup] = []
        for items in buckets.values():
            ordered = sorted(items, key=lambda t: (t.date, t.id))
            current: list[Transaction] = []
            for transaction in ordered:
                if current and transaction.date - current[0].date > self.window:
                    self._close_group(current, groups)
                    current = []
                current.append(transaction)
            self._close_group(current, groups)

        groups.sort(key=lambda group: (group.transactions[0].date, group.transactions[0].id))
        logger.info("[MERGE] Found %d duplicate groups", len(groups))
        return groups

    def _close_group(self, members: list[Transaction], groups: list[DuplicateGroup]) -> None:
        if len(members) < 2:
            return
        scores = [self.pair_score(first, second) for first, second in combinations(members, 2)]
        confidence, _ = mean_and_std(scores)
        groups.append(DuplicateGroup(transactions=tuple(members), confidence=round(min(1.0, confidence), 4)))

    def _validate(self, transaction_ids: list[str]) -> list[Transaction]:
        unique_ids = list(dict.fromkeys(transaction_ids))
        if len(unique_ids) < 2:
            raise ValidationError("At least two distinct transactions are required to merge")

        found = self.store.get_by_ids(unique_ids)
        found_ids = {transaction.id for transaction in found}
        missing = [transaction_id for transaction_id in unique_ids if transaction_id not in found_ids]
        if missing:
            raise NotFoundError("Transaction", missing)

        first = found[0]
        for transaction in found[1:]:
            if transaction.amount.currency != first.amount.currency:
                raise CurrencyMismatchError(first.amount.currency, transaction.amount.currency, "merge")
            if transaction.account_id != first.account_id:
                raise ValidationError("Transactions to merge must belong to the same account")
            if transaction.type != first.type:
                raise ValidationError("Transactions to merge must have the same type")
        return found

    def merge(
        self,
        transaction_ids: list[str],
        strategy: MergeStrategy = MergeStrategy.KEEP_MOST_DETAILED,
        keep_originals: bool = False,
    ) -> MergeResult:
        originals = self._validate(transaction_ids)
        ordered = sorted(originals, key=lambda t: (t.date, t.id))

        if strategy == MergeStrategy.KEEP_EARLIEST:
            base = ordered[0]
        elif strategy == MergeStrategy.KEEP_LATEST:
            base = ordered[-1]
        else:
            base = max(ordered, key=lambda t: (detail_score(t), -ordered.index(t)))

        merged = base.model_copy(update={
            "id": f"txn_{uuid.uuid4().hex[:12]}",
            "description": merge_descriptions([base, *ordered]),
            "merchant_name": base.merchant_name or next((t.merchant_name for t in ordered if t.merchant_name), None),
            "category_id": base.category_id or next((t.category_id for t in ordered if t.category_id), None),
            "location": base.location or next((t.location for t in ordered if t.location), None),
            "tags": union_tags(*(t.tags for t in ordered)),
            "merged_transaction_ids": tuple(t.id for t in ordered),
        })

        created = self.store.create(merged)
        if not keep_originals:
            self.store.delete_many(t.id for t in ordered)
        logger.info(
            "[MERGE] Merged %d transactions into %s (strategy=%s, keep_originals=%s)",
            len(ordered),
            created.id,
            strategy.value,
            keep_originals,
        )
        return MergeResult(
            merged_transaction=created,
            original_transactions=tuple(ordered),
            originals_deleted=not keep_originals,
        )
