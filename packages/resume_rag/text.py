from __future__ import annotations

import re
from collections import Counter
from typing import List, Protocol, Sequence

import tiktoken

# GPT-4 encoding; token counts stay stable across languages, unlike characters.
DEFAULT_ENCODING_MODEL = "gpt-4"

KEYWORD_PATTERN = re.compile(r"\b[a-z]{3,}\b")
QUERY_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")

BULLET_PATTERN = re.compile(r"^(?:[-*•▪◦‣]\s|\d+[.)]\s)")
METRICS_PATTERN = re.compile(
    r"[$€£¥]\s?\d"
    # Magnitude letters must touch the number: "40k", "2M", "1.5bn", never "2014 B.A."
    r"|\d[\d,.]*(?:[kmb]|bn)\b"
    r"|\d[\d,.]*\s*(?:%|percent\b|thousand|million|billion"
    r"|users|customers|clients|revenue)",
    re.IGNORECASE,
)

STOPWORDS = frozenset(
    {
        "the", "and", "for", "with", "from", "this", "that", "have", "has", "had",
        "was", "were", "been", "are", "will", "you", "your", "our", "their", "they",
        "them", "who", "what", "which", "when", "where", "while", "into", "onto",
        "over", "under", "about", "than", "then", "also", "such", "each", "other",
        "more", "most", "any", "all", "both", "can", "could", "would", "should",
        "must", "may", "not", "but", "its", "his", "her", "she", "him", "out",
        "per", "via", "using", "within", "across", "including", "etc", "able",
        "being", "these", "those", "there", "here", "well", "very", "work",
    }
)


class Tokenizer(Protocol):
    def encode(self, text: str) -> Sequence[int]: ...


def load_tokenizer(model: str = DEFAULT_ENCODING_MODEL) -> Tokenizer:
    """Return the tiktoken encoding used for chunk budgets."""
    return tiktoken.encoding_for_model(model)


def count_tokens(tokenizer: Tokenizer, text: str) -> int:
    if isinstance(tokenizer, tiktoken.Encoding):
        # Resume text is untrusted; special-token markers are counted as plain text.
        return len(tokenizer.encode(text, disallowed_special=()))
    return len(tokenizer.encode(text))


def extract_keywords(text: str, limit: int = 10) -> List[str]:
    """Most frequent non-stopword words of three or more letters.

    Ties keep the order of first occurrence in the text.
    """
    words = [w for w in KEYWORD_PATTERN.findall(text.lower()) if w not in STOPWORDS]
    return [word for word, _ in Counter(words).most_common(limit)]


def query_tokens(query: str) -> set[str]:
    """Lower-cased word tokens of a query, punctuation stripped."""
    return set(QUERY_TOKEN_PATTERN.findall(query.lower()))


def is_bullet_point(content: str) -> bool:
    return bool(BULLET_PATTERN.match(content.strip()))


def has_quantifiable_metrics(content: str) -> bool:
    return bool(METRICS_PATTERN.search(content))


__all__ = [
    "Tokenizer",
    "load_tokenizer",
    "count_tokens",
    "extract_keywords",
    "query_tokens",
    "is_bullet_point",
    "has_quantifiable_metrics",
    "STOPWORDS",
]
