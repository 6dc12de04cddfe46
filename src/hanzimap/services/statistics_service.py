"""Session statistics, streaks and progress summaries."""
import logging
from dataclasses import dataclass, field
from datetime import timezone, tzinfo
from typing import Any, Dict, List

from hanzimap.clock import DAY_MS, date_key, end_of_day, shift_date_key, start_of_day
from hanzimap.models.review_models import ItemType, SessionResult
from hanzimap.services.progress_store import ProgressSnapshot, Statistics

logger = logging.getLogger(__name__)

MAX_STORED_SESSIONS = 500


def merge_daily_stats(daily_stats: Dict[str, Dict[str, Any]], day: str, result: SessionResult) -> Dict[str, Any]:
    """Fold a session into the day's totals.

    Accuracy is recomputed over all of the day's reviews, so a short
    session does not outweigh a long one.
    """
    entry = dict(daily_stats.get(day) or {})
    old_reviews = entry.get("reviews", 0)
    old_correct = entry.get("correct")
    if old_correct is None:
        old_correct = round(entry.get("accuracy", 0) * old_reviews / 100)

    reviews = old_reviews + result.total
    correct = old_correct + result.correct
    entry["reviews"] = reviews
    entry["correct"] = correct
    entry["accuracy"] = round(correct / reviews * 100) if reviews else 0
    entry["sessions"] = entry.get("sessions", 0) + 1
    if result.started_at is not None and result.finished_at is not None:
        entry["timeSpent"] = entry.get("timeSpent", 0) + max(0, result.finished_at - result.started_at)
    daily_stats[day] = entry
    return entry


def compute_streak(daily_stats: Dict[str, Dict[str, Any]], today: str) -> int:
    """Consecutive days with any reviews, counted back from today."""
    streak = 0
    day = today
    while (daily_stats.get(day) or {}).get("reviews", 0) > 0:
        streak += 1
        day = shift_date_key(day, -1)
    return streak


def record_session(
    statistics: Statistics,
    result: SessionResult,
    now: int,
    tz: tzinfo = timezone.utc,
) -> None:
    """Apply a finished session to the statistics aggregate."""
    today = date_key(now, tz)
    if result.total:
        merge_daily_stats(statistics.daily_stats, today, result)

    statistics.quiz_sessions.append(
        {
            "date": now,
            "mode": result.mode,
            "score": result.correct,
            "total": result.total,
            "percentage": result.percentage,
        }
    )
    del statistics.quiz_sessions[:-MAX_STORED_SESSIONS]

    milestones = statistics.milestones
    milestones["totalSessions"] = milestones.get("totalSessions", 0) + 1
    milestones["totalReviews"] = milestones.get("totalReviews", 0) + result.total
    if not milestones.get("firstQuizDate"):
        milestones["firstQuizDate"] = now

    streak = compute_streak(statistics.daily_stats, today)
    milestones["currentStreak"] = streak
    milestones["longestStreak"] = max(milestones.get("longestStreak", 0), streak)
    statistics.current_session = None
    logger.info("Recorded %s session: %d/%d correct, streak %d days", result.mode, result.correct, result.total, streak)


def get_recent_activity(snapshot: ProgressSnapshot, now: int, days: int = 7, tz: tzinfo = timezone.utc) -> List[Dict[str, Any]]:
    """Daily stats of the last ``days`` days that had activity, newest first."""
    activity = []
    day = date_key(now, tz)
    for _ in range(days):
        stats = snapshot.statistics.daily_stats.get(day)
        if stats:
            activity.append({"date": day, **stats})
        day = shift_date_key(day, -1)
    return activity


@dataclass
class ProgressSummary:
    """Counts shown on the statistics screen."""

    total_learned: int = 0
    mastered: int = 0
    good: int = 0
    learning: int = 0
    struggling: int = 0
    total_correct: int = 0
    total_attempts: int = 0
    due_today: int = 0
    due_this_week: int = 0
    due_later: int = 0
    words_by_category: Dict[str, List[str]] = field(
        default_factory=lambda: {"struggling": [], "learning": [], "good": [], "mastered": []}
    )

    @property
    def accuracy(self) -> int:
        if not self.total_attempts:
            return 0
        return round(self.total_correct / self.total_attempts * 100)


def calculate_statistics(snapshot: ProgressSnapshot, now: int, tz: tzinfo = timezone.utc) -> ProgressSummary:
    summary = ProgressSummary()
    week_from_now = end_of_day(now, tz) + 7 * DAY_MS

    for word, _parent, state in snapshot.iter_states():
        summary.total_learned += 1
        if state.score == 5:
            bucket = "mastered"
        elif state.score >= 4:
            bucket = "good"
        elif state.score >= 2:
            bucket = "learning"
        else:
            bucket = "struggling"
        setattr(summary, bucket, getattr(summary, bucket) + 1)
        summary.words_by_category[bucket].append(word)

        summary.total_attempts += state.attempts
        summary.total_correct += state.correct

        if state.next_review:
            if state.next_review <= now:
                summary.due_today += 1
            elif state.next_review <= week_from_now:
                summary.due_this_week += 1
            else:
                summary.due_later += 1

    return summary


def get_due_items(snapshot: ProgressSnapshot, now: int, tz: tzinfo = timezone.utc) -> Dict[str, List[Dict[str, Any]]]:
    """Overdue, due-today and never-quizzed items, Anki style.

    Items already reviewed today are left out. Overdue items come most
    overdue first, due-today items in order of their review time.
    """
    today_start = start_of_day(now, tz)
    today_end = end_of_day(now, tz)
    overdue: List[Dict[str, Any]] = []
    due_today: List[Dict[str, Any]] = []
    new_items: List[Dict[str, Any]] = []

    def place(word: str, item_type: ItemType, state) -> None:
        if state.next_review is None:
            return
        if state.last_reviewed is not None and state.last_reviewed >= today_start:
            return
        entry = {"word": word, "type": item_type.value, "score": state.score, "nextReview": state.next_review}
        if state.next_review < now:
            entry["daysOverdue"] = (now - state.next_review) // DAY_MS
            overdue.append(entry)
        elif state.next_review <= today_end:
            due_today.append(entry)

    for char, progress in snapshot.character_progress.items():
        if progress.quiz_score is None:
            if progress.known:
                new_items.append({"word": char, "type": ItemType.CHARACTER.value, "isNew": True})
            continue
        place(char, ItemType.CHARACTER, progress.quiz_score)

    for char, compounds in snapshot.compound_progress.items():
        for word in compounds.known:
            if word not in compounds.quiz_scores:
                new_items.append({"word": word, "type": ItemType.COMPOUND.value, "isNew": True})
        for word, state in compounds.quiz_scores.items():
            place(word, ItemType.COMPOUND, state)

    overdue.sort(key=lambda e: e["daysOverdue"], reverse=True)
    due_today.sort(key=lambda e: e["nextReview"])
    return {"overdue": overdue, "due_today": due_today, "new_items": new_items}
