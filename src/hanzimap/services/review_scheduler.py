"""SM-2 review scheduling.

Computes the next interval, easiness and score of an item from a 0-5
quality rating:

    5  perfect recall          2  wrong, remembered on seeing the answer
    4  correct, slight pause   1  wrong, barely remembered
    3  correct with difficulty 0  complete blackout

Correct answers grow the interval (1 day, 6 days, then interval times
easiness). Failed answers on a card that had already graduated halve the
interval instead of sending it back to day one; a card that never got
past its first interval goes back to one day.
"""
import logging
import math
from dataclasses import replace
from typing import Optional

from hanzimap.clock import DAY_MS, HOUR_MS, now_ms
from hanzimap.errors import InvalidQuality
from hanzimap.models.review_models import QuizMode, ReviewState

logger = logging.getLogger(__name__)

PASSING_QUALITY = 3
MIN_EASINESS = 1.3
LAPSE_FACTOR = 0.5

QUALITY_LABELS = {
    5: "Perfect!",
    4: "Good",
    3: "Okay",
    2: "Hard",
    1: "Very Hard",
    0: "Forgot",
}


def validate_quality(quality: object) -> int:
    """Return the quality if it is an integer in [0, 5], else raise InvalidQuality."""
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQuality(quality)
    if quality < 0 or quality > 5:
        raise InvalidQuality(quality)
    return quality


def calculate_next_review(
    prior: Optional[ReviewState],
    quality: int,
    mode: QuizMode = QuizMode.WORDS,
    now: Optional[int] = None,
) -> ReviewState:
    """Calculate the review state that follows a graded answer.

    Args:
        prior: Current state of the item, or None if it was never graded.
        quality: Recall quality, 0-5.
        mode: Quiz mode the answer was given in.
        now: Review time in epoch milliseconds. Defaults to the wall clock.

    Returns:
        A new ReviewState; ``prior`` is left untouched.

    Raises:
        InvalidQuality: If quality is not an integer between 0 and 5.
    """
    quality = validate_quality(quality)
    mode = QuizMode.parse(mode)
    if now is None:
        now = now_ms()

    state = replace(prior) if prior is not None else ReviewState()
    old_interval = state.interval
    old_easiness = state.easiness

    state.attempts += 1
    is_correct = quality >= PASSING_QUALITY

    if is_correct:
        state.correct += 1
        state.score = min(5, state.score + 1)
        state.wrong = 0
        state.consecutive_correct += 1

        if state.correct == 1:
            state.interval = 1
        elif state.correct == 2:
            state.interval = 6
        else:
            state.interval = math.ceil(state.interval * state.easiness)

        state.easiness = max(MIN_EASINESS, state.easiness + 0.1 - (5 - quality) * 0.08)
    else:
        state.wrong += 1
        state.score = max(0, state.score - 1)
        state.consecutive_correct = 0

        if state.interval > 1 and state.correct > 0:
            state.interval = max(1, math.floor(state.interval * LAPSE_FACTOR))
            logger.debug("Lapse on a learned card, interval reduced to %d days", state.interval)
        else:
            state.interval = 1

        state.easiness = max(MIN_EASINESS, state.easiness - 0.2)

    state.mark_reviewed(mode, now)
    state.next_review = now + state.interval * DAY_MS

    logger.debug(
        "Quality %d (%s): interval %dd -> %dd, easiness %.2f -> %.2f, score %d",
        quality,
        "correct" if is_correct else "wrong",
        old_interval,
        state.interval,
        old_easiness,
        state.easiness,
        state.score,
    )
    return state


def get_quiz_direction(state: Optional[ReviewState]) -> str:
    """Show Chinese first until three correct answers in a row, then flip."""
    if state is None or state.consecutive_correct < 3:
        return "chinese-to-english"
    return "english-to-chinese"


def suggest_quality(is_correct: bool, thinking_time: int = 0) -> int:
    """Suggest a quality rating from a right/wrong answer and its response time in ms."""
    if not is_correct:
        return 1
    if thinking_time < 3000:
        return 5
    if thinking_time < 7000:
        return 4
    return 3


def quality_label(quality: int) -> str:
    return QUALITY_LABELS.get(quality, "Unknown")


def format_next_review(next_review: Optional[int], now: Optional[int] = None) -> str:
    """Human readable distance to the next review."""
    if not next_review:
        return "Not scheduled"
    if now is None:
        now = now_ms()

    diff = next_review - now
    if diff < 0:
        return "Overdue"

    days = diff // DAY_MS
    hours = (diff % DAY_MS) // HOUR_MS

    if days == 0 and hours < 1:
        return "Within the hour"
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    if days < 7:
        return f"In {days} days"
    if days < 14:
        return "Next week"
    if days < 30:
        return f"In {days // 7} weeks"
    if days < 60:
        return "Next month"
    return f"In {days // 30} months"
