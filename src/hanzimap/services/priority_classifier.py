"""Urgency classification and ranking of review items."""
import logging
from datetime import timezone, tzinfo
from typing import Iterable, List, Optional, Tuple

from hanzimap.clock import DAY_MS, end_of_day, start_of_day
from hanzimap.models.review_models import (
    Category,
    ClassifiedItem,
    QuizMode,
    ReviewItem,
    ReviewState,
)

logger = logging.getLogger(__name__)

OVERDUE_BASE = 100
OVERDUE_PER_DAY = 10
DUE_TODAY_PRIORITY = 90
STRUGGLING_PRIORITY = 80
RECENTLY_WRONG_PRIORITY = 70
LEARNING_PRIORITY = 60
NEW_PRIORITY = 50
GOOD_PRIORITY = 40
MASTERED_PRIORITY = 30

SESSION_CATEGORIES = frozenset({Category.OVERDUE, Category.DUE_TODAY, Category.NEW})


def categorize(
    state: Optional[ReviewState],
    mode: QuizMode,
    now: int,
    tz: tzinfo = timezone.utc,
) -> Category:
    """Place one item's state into an urgency category."""
    if state is None:
        return Category.NEW
    if state.next_review is not None and now >= state.next_review:
        return Category.OVERDUE

    reviewed = state.last_reviewed_in(mode)
    if reviewed is not None and reviewed >= start_of_day(now, tz):
        return Category.REVIEWED_TODAY

    if state.next_review is None or state.next_review <= end_of_day(now, tz):
        return Category.DUE_TODAY
    return Category.NOT_DUE


def score_priority(state: ReviewState, now: int) -> int:
    """Priority of a state that is neither overdue nor due today."""
    if state.score < 2:
        return STRUGGLING_PRIORITY
    if state.wrong > 0 and state.last_reviewed is not None and now - state.last_reviewed < DAY_MS:
        return RECENTLY_WRONG_PRIORITY
    if state.score < 4:
        return LEARNING_PRIORITY
    if state.score == 4:
        return GOOD_PRIORITY
    return MASTERED_PRIORITY


def priority_for(category: Category, state: Optional[ReviewState], now: int) -> int:
    if category is Category.NEW:
        return NEW_PRIORITY
    if category is Category.OVERDUE:
        days_overdue = (now - state.next_review) // DAY_MS
        return OVERDUE_BASE + OVERDUE_PER_DAY * days_overdue
    if category is Category.DUE_TODAY:
        return DUE_TODAY_PRIORITY
    return score_priority(state, now)


def is_graduated(state: Optional[ReviewState]) -> bool:
    """Whether the item has been through at least one word-mode review."""
    return state is not None and state.last_reviewed_in(QuizMode.WORDS) is not None


def classify(
    items: Iterable[Tuple[ReviewItem, Optional[ReviewState]]],
    mode: QuizMode,
    now: int,
    practice_mode: bool = False,
    tz: tzinfo = timezone.utc,
) -> List[ClassifiedItem]:
    """Tag items with category and priority, most urgent first.

    Items of equal priority keep their input order (``sorted`` is stable);
    there is no further tie-break. In audio and sentence modes, items
    that never had a word-mode review are left out unless practising.
    """
    mode = QuizMode.parse(mode)
    classified = []
    skipped = 0
    for item, state in items:
        if mode is not QuizMode.WORDS and not practice_mode and not is_graduated(state):
            skipped += 1
            continue
        category = categorize(state, mode, now, tz)
        classified.append(
            ClassifiedItem(
                item=item,
                state=state,
                category=category,
                priority=priority_for(category, state, now),
            )
        )

    if skipped:
        logger.debug("Excluded %d items not yet reviewed in words mode", skipped)
    return sorted(classified, key=lambda c: c.priority, reverse=True)


def eligible(classified: Iterable[ClassifiedItem], practice_mode: bool = False) -> List[ClassifiedItem]:
    """Keep the items a session may present.

    Overdue, due-today and new items are always eligible; practice mode
    also lets items already reviewed today back in.
    """
    allowed = SESSION_CATEGORIES
    if practice_mode:
        allowed = allowed | {Category.REVIEWED_TODAY}
    return [c for c in classified if c.category in allowed]
