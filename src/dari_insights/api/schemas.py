from pydantic import BaseModel, Field

from dari_insights.models import MergeStrategy, NaiveDateTime, Transaction


class TransactionsRequest(BaseModel):
    transactions: list[Transaction]


class CategorizeRequest(BaseModel):
    transaction: Transaction


class MatchesRequest(BaseModel):
    transaction: Transaction
    limit: int = Field(default=5, ge=1, le=50)


class LearnRequest(BaseModel):
    transaction_id: str
    category_id: str
    feedback: str | None = None


class DateRangeRequest(BaseModel):
    start_date: str | None = None
    end_date: str | None = None


class DetectSubscriptionsRequest(BaseModel):
    as_of: NaiveDateTime | None = None


class RemindersRequest(BaseModel):
    now: NaiveDateTime | None = None


class MergeRequest(BaseModel):
    transaction_ids: list[str]
    strategy: MergeStrategy = MergeStrategy.KEEP_MOST_DETAILED
    keep_originals: bool = False
