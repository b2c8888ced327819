from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from dari_insights.domain.money import Money
from dari_insights.domain.timefmt import to_naive_utc

# Offset-aware input ("...Z", "+03:00") is stored as naive UTC so it compares
# with the naive clocks and range bounds used throughout the engine
NaiveDateTime = Annotated[datetime, AfterValidator(to_naive_utc)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Transactions -----------------------------------------------------------

class TransactionType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class Transaction(_Frozen):
    id: str
    account_id: str
    amount: Money
    type: TransactionType = TransactionType.DEBIT
    description: str = ""
    merchant_name: str | None = None
    category_id: str | None = None
    date: NaiveDateTime
    tags: frozenset[str] = frozenset()
    status: TransactionStatus = TransactionStatus.COMPLETED
    location: str | None = None
    merged_transaction_ids: tuple[str, ...] = ()

    @property
    def is_outgoing(self) -> bool:
        return self.type == TransactionType.DEBIT or self.amount.is_negative()

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount.amount)

    @property
    def merchant_or_description(self) -> str:
        return self.merchant_name or self.description


# --- Categories & rules -----------------------------------------------------

class CategoryType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"
    INVESTMENT = "INVESTMENT"
    SAVINGS = "SAVINGS"
    LOAN = "LOAN"


class CategoryLevel(str, Enum):
    MAIN = "MAIN"
    SUB = "SUB"
    DETAIL = "DETAIL"

    @property
    def depth(self) -> int:
        return _LEVEL_DEPTH[self]


_LEVEL_DEPTH = {CategoryLevel.MAIN: 0, CategoryLevel.SUB: 1, CategoryLevel.DETAIL: 2}


class ConditionField(str, Enum):
    DESCRIPTION = "DESCRIPTION"
    MERCHANT_NAME = "MERCHANT_NAME"
    AMOUNT = "AMOUNT"
    ACCOUNT_ID = "ACCOUNT_ID"


class ConditionOperator(str, Enum):
    CONTAINS = "CONTAINS"
    EQUALS = "EQUALS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    REGEX = "REGEX"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    NOT_EQUALS = "NOT_EQUALS"
    NOT_CONTAINS = "NOT_CONTAINS"


class RuleCondition(_Frozen):
    field: ConditionField
    operator: ConditionOperator
    value: str
    case_sensitive: bool = False


class CategorizationRule(_Frozen):
    id: str
    category_id: str
    name: str = ""
    conditions: tuple[RuleCondition, ...] = ()
    priority: int = 0
    confidence: int = Field(default=80, ge=0, le=100)
    active: bool = True


class Category(_Frozen):
    id: str
    name: str
    type: CategoryType = CategoryType.EXPENSE
    level: CategoryLevel = CategoryLevel.MAIN
    parent_id: str | None = None
    keywords: tuple[str, ...] = ()
    merchant_patterns: tuple[str, ...] = ()
    rules: tuple[CategorizationRule, ...] = ()
    monthly_limit: Money | None = None
    is_system: bool = False


class MatchReasonType(str, Enum):
    KEYWORD = "KEYWORD"
    MERCHANT_PATTERN = "MERCHANT_PATTERN"
    AMOUNT_RANGE = "AMOUNT_RANGE"
    CATEGORY_TYPE = "CATEGORY_TYPE"
    RULE = "RULE"


class MatchReason(_Frozen):
    type: MatchReasonType
    value: str
    points: int


class CategoryMatch(_Frozen):
    category: Category
    confidence: int = Field(ge=0, le=100)
    match_reasons: tuple[MatchReason, ...] = ()


class CategorizationResult(_Frozen):
    category: Category
    confidence: float  # 0.0 to 1.0
    source: str  # "merchant_exact", "merchant_similar", "rule", "keywords"
    rule_id: str | None = None


# --- Merchant mappings ------------------------------------------------------

class MappingSource(str, Enum):
    AUTO_DETECTED = "AUTO_DETECTED"
    USER_CONFIRMED = "USER_CONFIRMED"
    RULE_BASED = "RULE_BASED"
    IMPORTED = "IMPORTED"


class MerchantFeedback(_Frozen):
    id: str
    mapping_id: str
    original_category_id: str
    corrected_category_id: str
    feedback: str | None = None
    created_at: datetime


class MerchantMapping(_Frozen):
    id: str
    merchant_name: str
    normalized_name: str
    category_id: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source: MappingSource = MappingSource.AUTO_DETECTED
    successful_mappings: int = 0
    failed_mappings: int = 0
    last_used_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    alternative_names: tuple[str, ...] = ()
    user_feedback: tuple[MerchantFeedback, ...] = ()

    @property
    def accuracy(self) -> float:
        attempts = self.successful_mappings + self.failed_mappings
        if attempts == 0:
            return 0.0
        return self.successful_mappings / attempts


class CategorySuggestion(_Frozen):
    category_id: str
    confidence: float
    evidence_count: int
    similar_merchants: tuple[str, ...] = ()


# --- Anomalies --------------------------------------------------------------

class AnomalyType(str, Enum):
    UNUSUALLY_HIGH_AMOUNT = "UNUSUALLY_HIGH_AMOUNT"
    UNUSUALLY_HIGH_CATEGORY_SPENDING = "UNUSUALLY_HIGH_CATEGORY_SPENDING"
    FREQUENT_MERCHANT_TRANSACTIONS = "FREQUENT_MERCHANT_TRANSACTIONS"
    UNUSUAL_TIME_PATTERN = "UNUSUAL_TIME_PATTERN"
    POTENTIAL_DUPLICATE = "POTENTIAL_DUPLICATE"
    UNUSUAL_LOCATION = "UNUSUAL_LOCATION"


class AnomalySeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def priority(self) -> int:
        return _SEVERITY_PRIORITY[self]


_SEVERITY_PRIORITY = {AnomalySeverity.LOW: 1, AnomalySeverity.MEDIUM: 2, AnomalySeverity.HIGH: 3}


class DetectedAnomaly(_Frozen):
    transaction_id: str | None = None
    type: AnomalyType
    severity: AnomalySeverity
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    detected_at: datetime
    category_id: str | None = None


class SkippedCheck(_Frozen):
    detector: str
    reason: str
    subject: str | None = None


class AnomalyReport(_Frozen):
    anomalies: tuple[DetectedAnomaly, ...] = ()
    skipped: tuple[SkippedCheck, ...] = ()


# --- Subscriptions ----------------------------------------------------------

class SubscriptionFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMIANNUAL = "SEMIANNUAL"
    YEARLY = "YEARLY"

    @property
    def days(self) -> int:
        return _FREQUENCY_DAYS[self]

    @property
    def monthly_factor(self) -> Decimal:
        return _MONTHLY_FACTORS[self]


_FREQUENCY_DAYS = {
    SubscriptionFrequency.DAILY: 1,
    SubscriptionFrequency.WEEKLY: 7,
    SubscriptionFrequency.BIWEEKLY: 14,
    SubscriptionFrequency.MONTHLY: 30,
    SubscriptionFrequency.QUARTERLY: 90,
    SubscriptionFrequency.SEMIANNUAL: 180,
    SubscriptionFrequency.YEARLY: 365,
}

_MONTHLY_FACTORS = {
    SubscriptionFrequency.DAILY: Decimal(365) / Decimal(12),
    SubscriptionFrequency.WEEKLY: Decimal(52) / Decimal(12),
    SubscriptionFrequency.BIWEEKLY: Decimal(26) / Decimal(12),
    SubscriptionFrequency.MONTHLY: Decimal(1),
    SubscriptionFrequency.QUARTERLY: Decimal(1) / Decimal(3),
    SubscriptionFrequency.SEMIANNUAL: Decimal(1) / Decimal(6),
    SubscriptionFrequency.YEARLY: Decimal(1) / Decimal(12),
}


class SubscriptionCategory(str, Enum):
    STREAMING = "STREAMING"
    MUSIC = "MUSIC"
    GAMING = "GAMING"
    SOFTWARE = "SOFTWARE"
    CLOUD_STORAGE = "CLOUD_STORAGE"
    TELECOM = "TELECOM"
    FITNESS = "FITNESS"
    NEWS = "NEWS"
    FOOD_DELIVERY = "FOOD_DELIVERY"
    TRANSPORT = "TRANSPORT"
    OTHER = "OTHER"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TRIAL = "TRIAL"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Subscription(_Frozen):
    id: str
    service_name: str
    merchant_name: str
    category: SubscriptionCategory = SubscriptionCategory.OTHER
    frequency: SubscriptionFrequency
    monthly_amount: Money
    actual_amount: Money
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime
    next_renewal_date: datetime
    last_payment_date: datetime | None = None
    renewal_count: int = 0
    has_variable_amount: bool = False
    transaction_history: tuple[str, ...] = ()
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    average_interval_days: float | None = None
    total_paid: Money | None = None
    reminder_enabled: bool = True
    reminder_days_before: int = 3
    tags: tuple[str, ...] = ()
    cancellation_reason: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL)


class SubscriptionAlertType(str, Enum):
    RENEWAL_REMINDER = "RENEWAL_REMINDER"
    PRICE_INCREASE = "PRICE_INCREASE"
    TRIAL_EXPIRING = "TRIAL_EXPIRING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    UNUSED_WARNING = "UNUSED_WARNING"


class SubscriptionAlert(_Frozen):
    id: str
    subscription_id: str
    alert_type: SubscriptionAlertType
    title: str
    message: str
    created_at: datetime


# --- Duplicates & merging ---------------------------------------------------

class DuplicateGroup(_Frozen):
    transactions: tuple[Transaction, ...]
    confidence: float = Field(ge=0.0, le=1.0)

    @property
    def transaction_ids(self) -> list[str]:
        return [transaction.id for transaction in self.transactions]


class MergeStrategy(str, Enum):
    KEEP_MOST_DETAILED = "KEEP_MOST_DETAILED"
    KEEP_EARLIEST = "KEEP_EARLIEST"
    KEEP_LATEST = "KEEP_LATEST"


class MergeResult(_Frozen):
    merged_transaction: Transaction
    original_transactions: tuple[Transaction, ...]
    originals_deleted: bool
