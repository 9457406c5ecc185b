"""Sync utilities for rate limiting and attribute classification."""

from .rate_limiter import ThrottleTier, TokenBucket
from .classifier import AttributeClassifier, KeywordAttributeClassifier


__all__ = [
    # Rate limiting
    "ThrottleTier",
    "TokenBucket",
    # Classification
    "AttributeClassifier",
    "KeywordAttributeClassifier",
]
