from collections.abc import Iterable

from dari_insights.logger import get_logger
from dari_insights.models import Category, CategoryLevel, CategoryType

logger = get_logger(__name__)

PATH_SEPARATOR = " > "


class CategoryTree:
    """
    Flat id-keyed category table. Parents are resolved by lookup on parent_id,
    so paths and depths are computed on demand rather than stored.
    """

    def __init__(self, categories: Iterable[Category] = ()) -> None:
        self.by_id: dict[str, Category] = {}
        for category in categories:
            self.by_id[category.id] = category

    def __len__(self) -> int:
        return len(self.by_id)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self.by_id

    def __iter__(self):
        return iter(self.by_id.values())

    def get(self, category_id: str | None) -> Category | None:
        if category_id is None:
            return None
        return self.by_id.get(category_id)

    def parent(self, category: Category) -> Category | None:
        return self.get(category.parent_id)

    def ancestors(self, category: Category) -> list[Category]:
        chain: list[Category] = []
        seen = {category.id}
        current = self.parent(category)
        while current is not None:
            if current.id in seen:
                logger.warning("[CATEGORIES] Cycle detected at '%s'; truncating path.", current.id)
                break
            chain.append(current)
            seen.add(current.id)
            current = self.parent(current)
        return chain

    def depth(self, category: Category) -> int:
        return len(self.ancestors(category))

    def path(self, category: Category) -> list[Category]:
        return list(reversed(self.ancestors(category))) + [category]

    def full_path(self, category: Category) -> str:
        return PATH_SEPARATOR.join(item.name for item in self.path(category))

    def children(self, category_id: str) -> list[Category]:
        return [category for category in self.by_id.values() if category.parent_id == category_id]

    def roots(self) -> list[Category]:
        return [category for category in self.by_id.values() if category.parent_id is None]

    def specificity(self, category: Category) -> int:
        """Deeper categories are more specific; the declared level breaks ties with the tree depth."""
        return max(self.depth(category), category.level.depth)


def _system(
    category_id: str,
    name: str,
    category_type: CategoryType,
    keywords: tuple[str, ...] = (),
    merchant_patterns: tuple[str, ...] = (),
    parent_id: str | None = None,
) -> Category:
    return Category(
        id=category_id,
        name=name,
        type=category_type,
        level=CategoryLevel.SUB if parent_id else CategoryLevel.MAIN,
        parent_id=parent_id,
        keywords=keywords,
        merchant_patterns=merchant_patterns,
        is_system=True,
    )


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    _system("income_salary", "Salary", CategoryType.INCOME, ("salary", "راتب", "مرتب", "أجر")),
    _system("income_business", "Business Income", CategoryType.INCOME, ("business", "profit", "تجارة", "أعمال", "ربح")),
    _system("income_investment", "Investment Returns", CategoryType.INCOME, ("dividend", "interest", "توزيعات", "عوائد", "أرباح")),
    _system(
        "food_dining", "Food & Dining", CategoryType.EXPENSE,
        ("restaurant", "food", "مطعم", "طعام", "وجبة"),
        ("mcdonalds", "kfc", "starbucks", "subway"),
    ),
    _system(
        "food_groceries", "Groceries", CategoryType.EXPENSE,
        ("grocery", "supermarket", "hypermarket", "بقالة"),
        ("panda", "tamimi", "othaim", "danube"),
        parent_id="food_dining",
    ),
    _system(
        "food_delivery", "Food Delivery", CategoryType.EXPENSE,
        ("delivery", "توصيل"),
        ("hungerstation", "jahez", "talabat", "mrsool"),
        parent_id="food_dining",
    ),
    _system(
        "transport", "Transportation", CategoryType.EXPENSE,
        ("fuel", "gas", "petrol", "uber", "taxi", "وقود", "بنزين", "تاكسي"),
        ("aramco", "adnoc", "uber", "careem"),
    ),
    _system(
        "utilities", "Utilities", CategoryType.EXPENSE,
        ("electricity", "water", "internet", "phone", "كهرباء", "ماء", "انترنت", "هاتف"),
        ("sec", "swcc", "stc", "mobily", "zain"),
    ),
    _system(
        "shopping", "Shopping", CategoryType.EXPENSE,
        ("shopping", "store", "mall", "تسوق", "متجر", "مول"),
        ("carrefour", "lulu", "extra", "amazon"),
    ),
    _system(
        "healthcare", "Healthcare", CategoryType.EXPENSE,
        ("hospital", "doctor", "pharmacy", "medicine", "مستشفى", "طبيب", "صيدلية", "دواء"),
        ("nahdi", "aldawaa", "hospital", "clinic"),
    ),
    _system(
        "education", "Education", CategoryType.EXPENSE,
        ("school", "university", "education", "course", "مدرسة", "جامعة", "تعليم", "دورة"),
    ),
    _system(
        "entertainment", "Entertainment", CategoryType.EXPENSE,
        ("cinema", "movie", "game", "entertainment", "سينما", "فيلم", "لعبة", "ترفيه"),
    ),
    _system(
        "subscriptions", "Subscriptions", CategoryType.EXPENSE,
        ("subscription", "membership", "اشتراك"),
        ("netflix", "spotify", "shahid", "anghami", "osn"),
        parent_id="entertainment",
    ),
    _system(
        "charity", "Charity & Donations", CategoryType.EXPENSE,
        ("charity", "donation", "zakat", "خيرية", "تبرع", "زكاة", "صدقة"),
    ),
    _system("bank_transfer", "Bank Transfer", CategoryType.TRANSFER, ("transfer", "تحويل", "حوالة")),
    _system(
        "payment_apps", "Payment Apps", CategoryType.TRANSFER,
        ("stcpay", "mada", "applepay", "googlepay"),
        ("stc pay", "mada", "apple pay", "google pay"),
    ),
)


def default_category_tree() -> CategoryTree:
    return CategoryTree(DEFAULT_CATEGORIES)
