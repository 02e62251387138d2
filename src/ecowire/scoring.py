from __future__ import annotations

PRODUCT_CATEGORIES: dict[str, tuple[str, ...]] = {
    "Home & Garden": ("plates", "sheets", "bulbs", "lights"),
    "Personal Care": ("toothbrush", "soap", "shampoo"),
    "Electronics": ("charger", "battery", "solar"),
    "Food & Kitchen": ("wraps", "containers", "bottles"),
}

ECO_KEYWORDS = ("eco", "green", "organic", "sustainable", "bamboo", "solar")

BASE_SUSTAINABILITY_SCORE = 70
KEYWORD_BONUS = 5
MAX_SUSTAINABILITY_SCORE = 98


def categorize_product(name: str) -> str:
    lowered = (name or "").lower()
    for category, keywords in PRODUCT_CATEGORIES.items():
        if any(keyword in lowered for keyword in keywords):
            return category
    return "General"


def sustainability_score(name: str, brand: str) -> int:
    """Score a product from eco keywords in its name and brand.

    Each keyword counts once no matter how often it appears.
    """
    text = f"{name or ''} {brand or ''}".lower()
    score = BASE_SUSTAINABILITY_SCORE
    for keyword in ECO_KEYWORDS:
        if keyword in text:
            score += KEYWORD_BONUS
    return min(MAX_SUSTAINABILITY_SCORE, score)
