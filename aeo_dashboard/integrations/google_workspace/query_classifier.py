# aeo_dashboard/integrations/google_workspace/query_classifier.py
"""
Tags Search Console queries that AI answer engines are likely to answer
directly (questions, comparisons, definitions, "best X" lists).

Relevance and category are recomputed on every read and never stored.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

RELEVANCE_PATTERNS = [
    re.compile(r'^(what|how|why|when|where|who|which|can|does|is|are|do|should|would|could|will)\b', re.I),
    re.compile(r'\b(vs\.?|versus|compared to|or)\b', re.I),
    re.compile(r'\b(best|top|review|guide|tutorial|explained|example)\b', re.I),
    re.compile(r'\b(define|definition|meaning of)\b', re.I),
    re.compile(r'\?$'),
]

# First match wins
CATEGORY_RULES = [
    ('definition', re.compile(r'^(what is|what are|what does|define|meaning of)\b', re.I)),
    ('how-to', re.compile(r'^(how to|how do|how can|how does)\b', re.I)),
    ('comparison', re.compile(r'\b(vs\.?|versus|compared to|or)\b', re.I)),
    ('listicle', re.compile(r'^(best|top)\b', re.I)),
    ('informational', re.compile(r'^(why|when|where|who|which)\b', re.I)),
    ('question', re.compile(r'\?$')),
]

FALLBACK_CATEGORY = 'standard'


@dataclass(frozen=True)
class QueryClassification:
    is_relevant: bool
    category: Optional[str]


def is_aeo_query(query: str) -> bool:
    return any(pattern.search(query) for pattern in RELEVANCE_PATTERNS)


def classify_query(query: Optional[str]) -> QueryClassification:
    """Label a raw query string. Blank input is never relevant."""
    text = (query or '').strip()
    if not text or not is_aeo_query(text):
        return QueryClassification(is_relevant=False, category=None)

    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return QueryClassification(is_relevant=True, category=category)
    return QueryClassification(is_relevant=True, category=FALLBACK_CATEGORY)


def classify_rows(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Return copies of Search Console rows with ``query``, ``is_aeo_query``
    and ``aeo_type`` added. The first entry of ``keys`` is the query text.
    """
    classified = []
    for row in rows:
        keys = row.get('keys') or []
        query = str(keys[0]) if keys else ''
        result = classify_query(query)
        classified.append({
            **row,
            'query': query,
            'is_aeo_query': result.is_relevant,
            'aeo_type': result.category,
        })
    return classified
