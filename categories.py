from dataclasses import dataclass
from enum import Enum
from typing import Optional

from rapidfuzz.distance import Levenshtein


class Category(str, Enum):
    food = "food"
    groceries = "groceries"
    transport = "transport"
    shopping = "shopping"
    bills = "bills"
    rent = "rent"
    subscriptions = "subscriptions"
    entertainment = "entertainment"
    health = "health"
    education = "education"
    travel = "travel"
    allowance = "allowance"
    salary = "salary"
    other = "other"


@dataclass(frozen=True)
class CategoryDescriptor:
    category: Category
    label: str
    icon: str
    color: str


CATEGORY_DESCRIPTORS: dict[Category, CategoryDescriptor] = {
    descriptor.category: descriptor
    for descriptor in (
        CategoryDescriptor(Category.food, "Food & Dining", "utensils", "#f97316"),
        CategoryDescriptor(Category.groceries, "Groceries", "shopping-basket", "#22c55e"),
        CategoryDescriptor(Category.transport, "Transportation", "car", "#3b82f6"),
        CategoryDescriptor(Category.shopping, "Shopping", "shopping-bag", "#ec4899"),
        CategoryDescriptor(Category.bills, "Bills & Utilities", "receipt", "#eab308"),
        CategoryDescriptor(Category.rent, "Rent", "home", "#8b5cf6"),
        CategoryDescriptor(Category.subscriptions, "Subscriptions", "repeat", "#06b6d4"),
        CategoryDescriptor(Category.entertainment, "Entertainment", "film", "#a855f7"),
        CategoryDescriptor(Category.health, "Health", "heart-pulse", "#ef4444"),
        CategoryDescriptor(Category.education, "Education", "graduation-cap", "#0ea5e9"),
        CategoryDescriptor(Category.travel, "Travel", "plane", "#14b8a6"),
        CategoryDescriptor(Category.allowance, "Allowance", "wallet", "#10b981"),
        CategoryDescriptor(Category.salary, "Salary", "banknote", "#16a34a"),
        CategoryDescriptor(Category.other, "Other", "circle", "#6b7280"),
    )
}


def describe(category: Category) -> CategoryDescriptor:
    return CATEGORY_DESCRIPTORS[category]


def resolve_category(value: Optional[str]) -> Category:
    """Map a stored category string onto a known category.

    Matches the category id first, then the display label (both
    case-insensitive), then the closest id or label within an edit distance
    of one. Anything else is ``Category.other``.
    """
    if isinstance(value, Category):
        return value
    text = (value or "").strip().lower()
    if not text:
        return Category.other
    for descriptor in CATEGORY_DESCRIPTORS.values():
        if text == descriptor.category.value or text == descriptor.label.lower():
            return descriptor.category

    best_distance: Optional[int] = None
    best: list[Category] = []
    for descriptor in CATEGORY_DESCRIPTORS.values():
        dist = min(
            int(Levenshtein.distance(text, descriptor.category.value)),
            int(Levenshtein.distance(text, descriptor.label.lower())),
        )
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [descriptor.category]
        elif dist == best_distance and descriptor.category not in best:
            best.append(descriptor.category)

    if best_distance is not None and best_distance <= 1 and len(best) == 1:
        return best[0]
    return Category.other
