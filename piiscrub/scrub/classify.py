from enum import Enum
from typing import Dict, Iterable, List


class Category(str, Enum):
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    OTHER = "other"


# Checked in order, first match wins ("billing_email_or_phone" is an email).
RULES = [
    (Category.EMAIL, ("email",)),
    (Category.URL, ("url", "website")),
    (Category.PHONE, ("phone", "tel", "mobile", "fax")),
]


def classify(field_name: str) -> Category:
    name = (field_name or "").lower()
    for category, needles in RULES:
        if any(n in name for n in needles):
            return category
    return Category.OTHER


def partition(names: Iterable[str]) -> Dict[Category, List[str]]:
    """Group names by category, keeping the order they were given in."""
    buckets: Dict[Category, List[str]] = {}
    for name in names:
        buckets.setdefault(classify(name), []).append(name)
    return buckets
