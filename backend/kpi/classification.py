"""Status classification.

Jira statuses are free text and vary by project and locale ("Done",
"Terminé", "En cours", "QA Testing"...). This module maps them to the three
Jira status categories, and to the four dashboard buckets used by the sprint
histograms (todo, inProgress, qa, resolved).
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

TO_DO = "To Do"
IN_PROGRESS = "In Progress"
DONE = "Done"
UNKNOWN = "Unknown"

CATEGORY_KEYS = {
    TO_DO: "new",
    IN_PROGRESS: "indeterminate",
    DONE: "done",
    UNKNOWN: "undefined",
}

# Histogram buckets
BUCKET_TODO = "todo"
BUCKET_IN_PROGRESS = "inProgress"
BUCKET_QA = "qa"
BUCKET_RESOLVED = "resolved"
BUCKETS = (BUCKET_TODO, BUCKET_IN_PROGRESS, BUCKET_QA, BUCKET_RESOLVED)


@dataclass(frozen=True)
class KeywordRule:
    """Substrings that put a status label into a category for one language."""

    category: str
    language: str
    keywords: Tuple[str, ...]


# Order matters: the first matching category wins.
KEYWORD_TABLE: Tuple[KeywordRule, ...] = (
    KeywordRule(DONE, "en", ("done", "resolved", "closed", "complete")),
    KeywordRule(DONE, "fr", ("résolu", "terminé", "livré")),
    KeywordRule(IN_PROGRESS, "en", ("in progress", "wip")),
    KeywordRule(IN_PROGRESS, "fr", ("en cours", "en progression")),
    KeywordRule(TO_DO, "en", ("to do", "open", "backlog")),
    KeywordRule(TO_DO, "fr", ("à faire", "nouveau")),
)

QA_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("QA", "en", ("qa", "test", "testing", "validation")),
    KeywordRule("QA", "fr", ("recette",)),
)

_CATEGORY_BY_KEY = {key: category for category, key in CATEGORY_KEYS.items() if category != UNKNOWN}

_CATEGORY_BY_NAME = {
    "to do": TO_DO,
    "à faire": TO_DO,
    "in progress": IN_PROGRESS,
    "en cours": IN_PROGRESS,
    "done": DONE,
    "terminé": DONE,
}


@dataclass(frozen=True)
class Classification:
    category: str
    category_key: str

    @property
    def is_done(self) -> bool:
        return self.category == DONE


def _of(category: str) -> Classification:
    return Classification(category, CATEGORY_KEYS[category])


def _matches(label: str, rules: Iterable[KeywordRule]) -> Optional[str]:
    for rule in rules:
        if any(keyword in label for keyword in rule.keywords):
            return rule.category
    return None


def classify(label: Optional[str], category_key: Optional[str] = None,
             category_name: Optional[str] = None,
             table: Tuple[KeywordRule, ...] = KEYWORD_TABLE) -> Classification:
    """Classify a raw status into a Jira status category.

    Precedence, first match wins:
        1. a recognized category key (new / indeterminate / done)
        2. a recognized category name (English or French)
        3. keywords found in the lower-cased label, checked in table order
        4. Unknown / undefined

    Args:
        label: Raw status name, e.g. "En cours"
        category_key: statusCategory.key from Jira, if any
        category_name: statusCategory.name from Jira, if any
        table: Keyword rules to use instead of the built-in table

    Returns:
        Classification with the category and its machine key
    """
    key = (category_key or "").strip().lower()
    if key in _CATEGORY_BY_KEY:
        return _of(_CATEGORY_BY_KEY[key])

    name = (category_name or "").strip().lower()
    if name in _CATEGORY_BY_NAME:
        return _of(_CATEGORY_BY_NAME[name])

    category = _matches((label or "").lower(), table)
    if category is not None:
        return _of(category)

    return _of(UNKNOWN)


def is_qa(label: Optional[str], rules: Tuple[KeywordRule, ...] = QA_RULES) -> bool:
    """True when the label carries a QA keyword, whatever its category."""
    return _matches((label or "").lower(), rules) is not None


def status_bucket(classification: Classification, label: Optional[str]) -> Optional[str]:
    """Resolve the histogram bucket of an item.

    Done is checked before QA, QA before In Progress, In Progress before
    To Do. Returns None for Unknown items, which only count in totals.
    """
    if classification.category == DONE:
        return BUCKET_RESOLVED
    if is_qa(label):
        return BUCKET_QA
    if classification.category == IN_PROGRESS:
        return BUCKET_IN_PROGRESS
    if classification.category == TO_DO:
        return BUCKET_TODO
    return None


def ponderation_level(value: Optional[float]) -> Optional[str]:
    """Severity level of a support ticket weight.

    low 1-11, medium 12-15, high 16-20, veryHigh 21 and above.
    """
    if value is None or value < 1:
        return None
    if value <= 11:
        return "low"
    if value <= 15:
        return "medium"
    if value <= 20:
        return "high"
    return "veryHigh"


def is_bug_type(item_type: Optional[str]) -> bool:
    lowered = (item_type or "").lower()
    return any(word in lowered for word in ("bug", "defect", "issue"))


def is_legend_type(item_type: Optional[str]) -> bool:
    lowered = (item_type or "").lower()
    return "legend" in lowered or "légende" in lowered
