"""Attribute classification from product titles and tags.

The orchestrator never classifies anything itself; the auto-update path asks
an ``AttributeClassifier`` for an AttributeSet per product. The keyword
classifier below is the default implementation and can be swapped out.
"""

import re
from typing import Dict, List, Optional, Protocol, Sequence

from channelsync.sync.models import AttributeSet


class AttributeClassifier(Protocol):
    """Anything that can suggest marketplace attributes for a product."""

    def classify(self, title: str, tags: Sequence[str] = ()) -> AttributeSet:
        ...


# Google product taxonomy paths keyed by trigger keywords
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "Apparel & Accessories > Clothing > Shirts & Tops": [
        "t-shirt", "tee", "shirt", "blouse", "top", "tank",
    ],
    "Apparel & Accessories > Clothing > Activewear > Sweatshirts": [
        "hoodie", "sweatshirt", "crewneck",
    ],
    "Apparel & Accessories > Clothing > Pants": ["pants", "jeans", "joggers", "leggings"],
    "Apparel & Accessories > Clothing > Shorts": ["shorts"],
    "Apparel & Accessories > Clothing > Dresses": ["dress"],
    "Apparel & Accessories > Clothing > Outerwear > Coats & Jackets": ["jacket", "coat", "parka"],
    "Apparel & Accessories > Clothing Accessories > Hats": ["hat", "cap", "beanie"],
    "Apparel & Accessories > Shoes": ["shoes", "sneakers", "boots", "sandals"],
    "Apparel & Accessories > Handbags, Wallets & Cases": ["bag", "tote", "wallet", "backpack"],
}

COLOR_KEYWORDS = [
    "black", "white", "red", "blue", "navy", "green", "yellow", "pink", "purple",
    "orange", "brown", "grey", "gray", "beige", "cream", "olive", "maroon",
]

# Ordered longest-first so "xxl" wins over "xl"
SIZE_KEYWORDS = ["xxxl", "xxl", "xl", "xs", "s", "m", "l", "one size"]

GENDER_KEYWORDS = {
    "female": ["women", "womens", "women's", "ladies", "female", "girl"],
    "male": ["men", "mens", "men's", "male", "boy"],
    "unisex": ["unisex"],
}

AGE_GROUP_KEYWORDS = {
    "newborn": ["newborn"],
    "infant": ["infant"],
    "toddler": ["toddler"],
    "kids": ["kids", "kid", "youth", "children", "boys", "girls"],
}


def _tokens(text: str) -> List[str]:
    return re.findall(r"[a-z0-9'\-]+", text.lower())


class KeywordAttributeClassifier:
    """Keyword matching over title and tags.

    Unknown attributes stay None, which the mutation builder treats as
    "do not set".
    """

    def classify(self, title: str, tags: Sequence[str] = ()) -> AttributeSet:
        """Suggest attributes for one product.

        Args:
            title: Product title
            tags: Product tags

        Returns:
            AttributeSet with the attributes that could be detected
        """
        text = " ".join([title or "", *tags])
        if not text.strip():
            return AttributeSet()

        tokens = _tokens(text)
        token_set = set(tokens)
        gender = self._match_group(token_set, GENDER_KEYWORDS)
        age_group = self._match_group(token_set, AGE_GROUP_KEYWORDS) or ("adult" if gender else None)

        return AttributeSet(
            category=self._classify_category(token_set),
            color=next((c for c in COLOR_KEYWORDS if c in token_set), None),
            size=self._classify_size(text.lower(), token_set),
            gender=gender,
            age_group=age_group,
        )

    @staticmethod
    def _classify_category(token_set: set) -> Optional[str]:
        scores = {}
        for category, keywords in CATEGORY_KEYWORDS.items():
            score = sum(1 for kw in keywords if kw in token_set)
            if score > 0:
                scores[category] = score
        if scores:
            return max(scores, key=scores.get)
        return None

    @staticmethod
    def _classify_size(text: str, token_set: set) -> Optional[str]:
        if "one size" in text:
            return "One Size"
        for size in SIZE_KEYWORDS:
            if size in token_set:
                return size.upper()
        return None

    @staticmethod
    def _match_group(token_set: set, groups: Dict[str, List[str]]) -> Optional[str]:
        for value, keywords in groups.items():
            if any(kw in token_set for kw in keywords):
                return value
        return None
