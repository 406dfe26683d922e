"""
Request schemas for the JSON API.

Every write endpoint validates its body through one of these models; a
``pydantic.ValidationError`` is turned into a 400 ``VALIDATION_ERROR``
response by :mod:`pocket_pilot.errors`.
"""

from datetime import date, datetime
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)


ACCOUNT_TYPES = ("Checking", "Savings", "Credit", "Cash", "Investment", "Other")
CATEGORY_TYPES = ("expense", "income", "transfer")
TRANSACTION_TYPES = ("expense", "income", "transfer")
BUDGET_PERIODS = ("MONTHLY", "WEEKLY", "BIWEEKLY", "YEARLY")
FREQUENCIES = ("weekly", "biweekly", "monthly", "yearly")
BILL_TYPES = (
    "utilities",
    "subscriptions",
    "insurance",
    "rent_mortgage",
    "loans",
    "phone_internet",
    "memberships",
    "other",
)
GOAL_CATEGORIES = (
    "emergency",
    "vacation",
    "education",
    "retirement",
    "home",
    "vehicle",
    "wedding",
    "debt_payoff",
    "investment",
    "other",
)
MEMORY_TYPES = ("preference", "context", "learning", "custom")
RULE_TYPES = ("categorization", "merchant", "amount_threshold", "custom")

AccountType = Literal["Checking", "Savings", "Credit", "Cash", "Investment", "Other"]
CategoryType = Literal["expense", "income", "transfer"]
TransactionType = Literal["expense", "income", "transfer"]
BudgetPeriod = Literal["MONTHLY", "WEEKLY", "BIWEEKLY", "YEARLY"]
Frequency = Literal["weekly", "biweekly", "monthly", "yearly"]
BillType = Literal[
    "utilities",
    "subscriptions",
    "insurance",
    "rent_mortgage",
    "loans",
    "phone_internet",
    "memberships",
    "other",
]
GoalCategory = Literal[
    "emergency",
    "vacation",
    "education",
    "retirement",
    "home",
    "vehicle",
    "wedding",
    "debt_payoff",
    "investment",
    "other",
]
MemoryType = Literal["preference", "context", "learning", "custom"]
RuleType = Literal["categorization", "merchant", "amount_threshold", "custom"]
MatchType = Literal["contains", "starts_with", "ends_with", "exact", "regex"]
DateFormat = Literal["YYYY-MM-DD", "MM/DD/YYYY", "DD/MM/YYYY", "YYYY/MM/DD"]


def _two_decimals(value: float) -> float:
    if round(value, 2) != round(value, 6):
        raise ValueError("Amount can only have up to 2 decimal places")
    return round(value, 2)


def _not_in_future(value: date) -> date:
    if value > date.today():
        raise ValueError("Date cannot be in the future")
    return value


Money = Annotated[float, Field(gt=0), AfterValidator(_two_decimals)]
SignedMoney = Annotated[float, AfterValidator(_two_decimals)]
PastDate = Annotated[date, AfterValidator(_not_in_future)]
Name = Annotated[str, Field(min_length=1, max_length=100)]
Notes = Annotated[str, Field(max_length=500)]


class ApiModel(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class PartialModel(ApiModel):
    # Columns an explicit null clears; a null for any other field is ignored.
    nullable: ClassVar[Tuple[str, ...]] = ()

    def changes(self) -> Dict[str, Any]:
        """Fields the client actually sent, dates as ISO strings."""
        data = self.model_dump(exclude_unset=True)
        return {
            key: value.isoformat() if isinstance(value, date) else value
            for key, value in data.items()
            if value is not None or key in self.nullable
        }


# Auth

class RegisterIn(ApiModel):
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6, max_length=128)


class LoginIn(ApiModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


# Accounts / categories / tags

class AccountIn(ApiModel):
    name: Name
    type: AccountType


class AccountUpdate(PartialModel):
    name: Optional[Name] = None
    type: Optional[AccountType] = None


class CategoryIn(ApiModel):
    name: Name
    type: CategoryType = "expense"
    is_tax_related: bool = False
    tax_tag: Optional[str] = Field(default=None, max_length=50)


class CategoryUpdate(PartialModel):
    nullable = ("tax_tag",)

    name: Optional[Name] = None
    type: Optional[CategoryType] = None
    is_tax_related: Optional[bool] = None
    tax_tag: Optional[str] = Field(default=None, max_length=50)


class TagIn(ApiModel):
    name: str = Field(min_length=1, max_length=30)
    color: str = Field(default="#6b7280", pattern=r"^#[0-9a-fA-F]{6}$")


class TagUpdate(PartialModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=30)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")


class TransactionTagIn(ApiModel):
    tag_id: int


# Transactions

class TransactionIn(ApiModel):
    account_id: int
    category_id: Optional[int] = None
    date: PastDate
    amount: Money
    description: Optional[str] = Field(default=None, max_length=255)
    type: TransactionType
    tag_ids: List[int] = Field(default_factory=list)


class TransactionUpdate(PartialModel):
    nullable = ("category_id", "description")

    account_id: Optional[int] = None
    category_id: Optional[int] = None
    date: Optional[PastDate] = None
    amount: Optional[Money] = None
    description: Optional[str] = Field(default=None, max_length=255)
    type: Optional[TransactionType] = None


TransactionIds = Annotated[List[int], Field(min_length=1, max_length=100)]


class BulkDeleteIn(ApiModel):
    transaction_ids: TransactionIds


class BulkCategoryIn(ApiModel):
    transaction_ids: TransactionIds
    category_id: Optional[int]


class BulkTagsIn(ApiModel):
    transaction_ids: TransactionIds
    tag_ids: List[int] = Field(min_length=1)
    replace_existing: bool = False


class CsvMappingIn(ApiModel):
    account_id: int
    date_column: str = Field(min_length=1)
    amount_column: Optional[str] = None
    description_column: Optional[str] = None
    category_column: Optional[str] = None
    debit_column: Optional[str] = None
    credit_column: Optional[str] = None
    split_amounts: bool = False
    date_format: DateFormat = "YYYY-MM-DD"
    has_header: bool = True

    @model_validator(mode="after")
    def amount_source(self):
        if self.split_amounts:
            if not (self.debit_column and self.credit_column):
                raise ValueError("debit_column and credit_column are required for split amounts")
        elif not self.amount_column:
            raise ValueError("amount_column is required")
        return self


class ImportIn(ApiModel):
    mapping: CsvMappingIn
    rows: List[Dict[str, Any]]
    preview_only: bool = False


class TransferIn(ApiModel):
    from_account_id: int
    to_account_id: int
    amount: Money
    date: PastDate
    description: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def distinct_accounts(self):
        if self.from_account_id == self.to_account_id:
            raise ValueError("Cannot transfer to the same account")
        return self


# Budgets

class BudgetIn(ApiModel):
    category_id: int
    amount: Money
    rollover: bool = False
    period: BudgetPeriod = "MONTHLY"
    notes: Optional[Notes] = None
    alert_threshold: int = Field(default=90, ge=0, le=100)
    year: Optional[int] = Field(default=None, ge=2000, le=2100)
    month: Optional[int] = Field(default=None, ge=1, le=12)


class BudgetUpdate(PartialModel):
    nullable = ("notes", "year", "month")

    amount: Optional[Money] = None
    rollover: Optional[bool] = None
    period: Optional[BudgetPeriod] = None
    notes: Optional[Notes] = None
    alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    year: Optional[int] = Field(default=None, ge=2000, le=2100)
    month: Optional[int] = Field(default=None, ge=1, le=12)


class BudgetCopyForwardIn(ApiModel):
    source_year: int = Field(ge=2000, le=2100)
    source_month: int = Field(ge=1, le=12)
    target_year: int = Field(ge=2000, le=2100)
    target_month: int = Field(ge=1, le=12)
    include_amounts: bool = True
    include_notes: bool = True


class BudgetReportQuery(ApiModel):
    start_date: date
    end_date: date
    category_ids: Optional[List[int]] = None
    period: Optional[BudgetPeriod] = None

    @field_validator("category_ids", mode="before")
    @classmethod
    def split_ids(cls, value):
        if isinstance(value, str):
            return [part for part in value.split(",") if part.strip()]
        return value


class TemplateItemIn(ApiModel):
    category_name: Name
    percentage: Optional[float] = Field(default=None, gt=0, le=100)
    fixed_amount: Optional[Money] = None
    notes: Optional[Notes] = None

    @model_validator(mode="after")
    def one_allocation(self):
        if (self.percentage is None) == (self.fixed_amount is None):
            raise ValueError("Each item needs exactly one of percentage or fixed_amount")
        return self


class TemplateIn(ApiModel):
    name: Name
    description: Optional[Notes] = None
    items: List[TemplateItemIn] = Field(min_length=1)


class TemplateUpdate(PartialModel):
    nullable = ("description",)

    name: Optional[Name] = None
    description: Optional[Notes] = None
    items: Optional[List[TemplateItemIn]] = Field(default=None, min_length=1)


class TemplateApplyIn(ApiModel):
    monthly_income: Optional[Money] = None
    category_mappings: Dict[str, int] = Field(default_factory=dict)
    period: BudgetPeriod = "MONTHLY"
    replace_existing: bool = False


# Bills

class BillIn(ApiModel):
    name: Name
    amount: Optional[Money] = None
    frequency: Frequency
    next_due_date: date
    category_id: Optional[int] = None
    auto_pay: bool = False
    bill_type: BillType = "other"
    notes: Optional[Notes] = None
    is_active: bool = True


class BillUpdate(PartialModel):
    nullable = ("amount", "category_id", "notes")

    name: Optional[Name] = None
    amount: Optional[Money] = None
    frequency: Optional[Frequency] = None
    next_due_date: Optional[date] = None
    category_id: Optional[int] = None
    auto_pay: Optional[bool] = None
    bill_type: Optional[BillType] = None
    notes: Optional[Notes] = None
    is_active: Optional[bool] = None


class BillPaymentIn(ApiModel):
    payment_date: Optional[date] = None
    amount: Optional[Money] = None
    create_transaction: bool = False
    account_id: Optional[int] = None


# Goals

class GoalIn(ApiModel):
    name: Name
    target_amount: Money
    current_amount: Annotated[float, Field(ge=0), AfterValidator(_two_decimals)] = 0
    target_date: Optional[date] = None
    category: GoalCategory = "other"
    auto_contribute_amount: Optional[Money] = None
    auto_contribute_day: Optional[int] = Field(default=None, ge=1, le=28)


class GoalUpdate(PartialModel):
    nullable = ("target_date", "auto_contribute_amount", "auto_contribute_day")

    name: Optional[Name] = None
    target_amount: Optional[Money] = None
    target_date: Optional[date] = None
    category: Optional[GoalCategory] = None
    auto_contribute_amount: Optional[Money] = None
    auto_contribute_day: Optional[int] = Field(default=None, ge=1, le=28)
    is_shared: Optional[bool] = None


class MilestoneIn(ApiModel):
    name: Name
    target_percentage: int = Field(ge=1, le=100)


class MilestoneUpdate(PartialModel):
    milestone_id: int
    name: Optional[Name] = None
    target_percentage: Optional[int] = Field(default=None, ge=1, le=100)
    celebration_shown: Optional[bool] = None


class ContributionIn(ApiModel):
    goal_id: int
    amount: Money
    date: date
    note: Optional[str] = Field(default=None, max_length=255)


# Recurring transactions

class RecurringIn(ApiModel):
    account_id: int
    category_id: Optional[int] = None
    description: str = Field(min_length=1, max_length=255)
    amount: Money
    type: Literal["expense", "income"]
    frequency: Frequency
    next_occurrence_date: date
    notes: Optional[Notes] = None


class RecurringUpdate(PartialModel):
    nullable = ("category_id", "notes")

    account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[Money] = None
    type: Optional[Literal["expense", "income"]] = None
    frequency: Optional[Frequency] = None
    next_occurrence_date: Optional[date] = None
    notes: Optional[Notes] = None
    is_active: Optional[bool] = None


# Reports

class DateRangeReport(ApiModel):
    report_type: Literal["custom_date_range"]
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def ordered(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class YearOverYearReport(ApiModel):
    report_type: Literal["year_over_year"]
    year1: int = Field(ge=2000, le=2100)
    year2: int = Field(ge=2000, le=2100)
    compare_by: Literal["month", "quarter"] = "month"


class MerchantReport(ApiModel):
    report_type: Literal["merchant"]
    start_date: date
    end_date: date
    min_transactions: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)


class CategoryDeepDiveReport(ApiModel):
    report_type: Literal["category_deep_dive"]
    category_id: int
    months: int = Field(default=12, ge=1, le=36)


class MonthlySummaryReport(ApiModel):
    report_type: Literal["monthly_summary"]
    year: int = Field(ge=2000, le=2100)
    month: int = Field(ge=1, le=12)


class TaxSummaryReport(ApiModel):
    report_type: Literal["tax_summary"]
    year: int = Field(ge=2000, le=2100, validation_alias=AliasChoices("year", "tax_year"))


class SavingsRateReport(ApiModel):
    report_type: Literal["savings_rate"]
    months: int = Field(default=12, ge=1, le=36)


ReportRequest = TypeAdapter(
    Annotated[
        Union[
            DateRangeReport,
            YearOverYearReport,
            MerchantReport,
            CategoryDeepDiveReport,
            MonthlySummaryReport,
            TaxSummaryReport,
            SavingsRateReport,
        ],
        Field(discriminator="report_type"),
    ]
)


# AI features

class MemoryIn(ApiModel):
    memory_type: MemoryType
    key: str = Field(min_length=1, max_length=100)
    value: Any
    importance: int = Field(default=5, ge=1, le=10)
    expires_at: Optional[datetime] = None


class LearningRuleIn(ApiModel):
    rule_type: RuleType
    pattern: str = Field(min_length=1, max_length=200)
    action: Dict[str, Any]
    priority: int = Field(default=5, ge=1, le=10)
    is_active: bool = True


class LearningRuleUpdate(PartialModel):
    id: int
    pattern: Optional[str] = Field(default=None, min_length=1, max_length=200)
    action: Optional[Dict[str, Any]] = None
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    is_active: Optional[bool] = None


class TeachIn(ApiModel):
    instruction: str = Field(min_length=3, max_length=500)


class ApplyRulesIn(ApiModel):
    description: str = Field(min_length=1, max_length=255)
    amount: Optional[float] = None


class ChatTurn(ApiModel):
    role: Literal["user", "assistant"]
    content: str = Field(max_length=4000)


class ChatIn(ApiModel):
    message: str = Field(min_length=1, max_length=2000)
    history: List[ChatTurn] = Field(default_factory=list, max_length=20)


# Categorization rules

class CategorizationRuleIn(ApiModel):
    name: Name
    rule_type: MatchType
    pattern: str = Field(min_length=1, max_length=255)
    target_category_id: int
    case_sensitive: bool = False
    is_active: bool = True


class CategorizationRuleUpdate(PartialModel):
    name: Optional[Name] = None
    rule_type: Optional[MatchType] = None
    pattern: Optional[str] = Field(default=None, min_length=1, max_length=255)
    target_category_id: Optional[int] = None
    case_sensitive: Optional[bool] = None
    is_active: Optional[bool] = None


class ReorderRulesIn(ApiModel):
    rule_ids: List[int] = Field(min_length=1)


class CategorizationApplyIn(ApiModel):
    uncategorized_only: bool = True
    dry_run: bool = False
