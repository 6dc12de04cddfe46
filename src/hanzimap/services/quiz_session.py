"""Quiz session state machine.

A session moves through::

    SELECTING_MODE -> BATCH_LOADED -> PRESENTING -> REVEALED -> FEEDBACK
                                          ^                        |
                                          +------------------------+-> COMPLETED

Failed items go into a short-term learning set and come back a few cards
later (5, then 10, then 20 cards for repeated failures in the same
session), spliced in right after the current position. Passed items are
not shown again in the session.
"""
import asyncio
import inspect
import logging
from datetime import tzinfo
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple

from hanzimap import monitoring
from hanzimap.clock import Clock, get_timezone, now_ms
from hanzimap.config import settings
from hanzimap.errors import LogicError, ValidationError
from hanzimap.models.review_models import (
    ClassifiedItem,
    LearningEntry,
    QuizMode,
    ReviewItem,
    ReviewState,
    SessionResult,
    SyncActionType,
)
from hanzimap.services.priority_classifier import classify, eligible
from hanzimap.services.progress_store import ProgressStore
from hanzimap.services.review_scheduler import PASSING_QUALITY, calculate_next_review, validate_quality
from hanzimap.services.statistics_service import record_session
from hanzimap.services.sync_queue import SyncQueue

logger = logging.getLogger(__name__)

ItemKey = Tuple[str, str]


class SessionState(str, Enum):
    """States of a quiz session."""

    SELECTING_MODE = "selecting-mode"
    ALL_CAUGHT_UP = "all-caught-up"
    BATCH_LOADED = "batch-loaded"
    PRESENTING = "presenting"
    REVEALED = "revealed"
    FEEDBACK = "feedback"
    COMPLETED = "completed"


ACTIVE_STATES = frozenset(
    {
        SessionState.BATCH_LOADED,
        SessionState.PRESENTING,
        SessionState.REVEALED,
        SessionState.FEEDBACK,
    }
)
GRADABLE_STATES = frozenset({SessionState.PRESENTING, SessionState.REVEALED})


class AudioSpeaker(Protocol):
    """Text-to-speech collaborator; calls are fire-and-forget."""

    def speak(self, text: str, locale: str) -> Any:
        ...


class QuizSessionEngine:
    """Drives one quiz session at a time over an item pool."""

    def __init__(
        self,
        progress_store: ProgressStore,
        sync_queue: SyncQueue,
        clock: Clock = now_ms,
        speaker: Optional[AudioSpeaker] = None,
        batch_size: int = settings.quiz.batch_size,
        learning_first_step: int = settings.quiz.learning_first_step,
        auto_advance_delay: Optional[float] = settings.quiz.auto_advance_delay,
        tz: Optional[tzinfo] = None,
        speech_locale: str = settings.quiz.speech_locale,
    ):
        """Initialize the engine with its store, sync queue and clock."""
        self.progress_store = progress_store
        self.sync_queue = sync_queue
        self.clock = clock
        self.speaker = speaker
        self.default_batch_size = batch_size
        self.learning_first_step = learning_first_step
        self.auto_advance_delay = auto_advance_delay
        self.tz = tz or get_timezone(settings.quiz.timezone)
        self.speech_locale = speech_locale

        self._lock = asyncio.Lock()
        self._advance_handle: Optional[asyncio.TimerHandle] = None
        self._advance_task: Optional[asyncio.Task] = None
        self._reset(SessionState.SELECTING_MODE)

    def _reset(self, state: SessionState) -> None:
        self.state = state
        self.mode: Optional[QuizMode] = None
        self.practice_mode = False
        self.batch_size = self.default_batch_size
        self.pool: List[ReviewItem] = []
        self.queue: List[ReviewItem] = []
        self.index = -1
        self.revealed = False
        self.answered: Set[ItemKey] = set()
        self.learning: Dict[ItemKey, LearningEntry] = {}
        self._learning_items: Dict[ItemKey, ReviewItem] = {}
        self._failures: Dict[ItemKey, int] = {}
        self.graded_words: List[str] = []
        self.correct = 0
        self.total = 0
        self.started_at: Optional[int] = None
        self.result: Optional[SessionResult] = None

    @property
    def current_item(self) -> Optional[ReviewItem]:
        if 0 <= self.index < len(self.queue):
            return self.queue[self.index]
        return None

    @property
    def is_active(self) -> bool:
        return self.state in ACTIVE_STATES

    async def _eligible(self, exclude: Set[ItemKey]) -> List[ClassifiedItem]:
        snapshot = await self.progress_store.load()
        pairs = [(item, snapshot.get_state(item)) for item in self.pool if item.key not in exclude]
        classified = classify(pairs, self.mode, self.clock(), self.practice_mode, self.tz)
        return eligible(classified, self.practice_mode)

    async def start_session(
        self,
        pool: Iterable[ReviewItem],
        mode: QuizMode,
        batch_size: Optional[int] = None,
        practice_mode: bool = False,
    ) -> SessionState:
        """Select the most urgent items from the pool and present the first.

        Returns ALL_CAUGHT_UP when nothing is due; the caller may then
        call ``start_practice`` to quiz items already reviewed today.
        """
        mode = QuizMode.parse(mode)
        if batch_size is not None and batch_size < 1:
            raise ValidationError(f"Batch size must be positive, got {batch_size}")

        if self.is_active:
            logger.warning("Starting a new session while one is active, discarding it")
        self.cancel_auto_advance()
        self._reset(SessionState.SELECTING_MODE)
        self.pool = list(pool)
        self.mode = mode
        self.practice_mode = practice_mode
        self.batch_size = batch_size or self.default_batch_size

        candidates = await self._eligible(set())
        if not candidates:
            self.state = SessionState.ALL_CAUGHT_UP
            monitoring.quiz_sessions.labels(mode=mode.value, outcome="caught_up").inc()
            logger.info("All caught up in %s mode, %d items in pool", mode.value, len(self.pool))
            return self.state

        self.queue = [c.item for c in candidates[: self.batch_size]]
        self.started_at = self.clock()
        self.state = SessionState.BATCH_LOADED
        await self.progress_store.set_current_session(
            {
                "mode": mode.value,
                "startedAt": self.started_at,
                "practice": practice_mode,
                "batchSize": self.batch_size,
            }
        )
        logger.info(
            "Started %s session with %d of %d eligible items%s",
            mode.value,
            len(self.queue),
            len(candidates),
            " (practice)" if practice_mode else "",
        )
        self._present(0)
        return self.state

    async def start_practice(self) -> SessionState:
        """Restart the last session's pool in practice mode."""
        if self.mode is None:
            logger.warning("No previous session to practise")
            return self.state
        return await self.start_session(self.pool, self.mode, self.batch_size, practice_mode=True)

    def _present(self, index: int) -> None:
        self.index = index
        self.revealed = False
        self.state = SessionState.PRESENTING

    def reveal(self) -> bool:
        """Show the answer of the current item and play its pronunciation."""
        if self.state is not SessionState.PRESENTING or self.current_item is None:
            logger.warning("Reveal ignored in state %s", self.state.value)
            return False
        self.revealed = True
        self.state = SessionState.REVEALED
        self._speak(self.current_item.word)
        return True

    def _speak(self, text: str) -> None:
        if self.speaker is None:
            return
        try:
            result = self.speaker.speak(text, self.speech_locale)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(_log_speech_failure)
        except Exception as e:
            logger.warning("Could not play audio for %s: %s", text, str(e))

    async def grade(self, quality: int) -> Optional[ReviewState]:
        """Grade the current item.

        Persists the new review state and queues it for sync. Returns the
        new state, or None when there was nothing to grade.

        Raises:
            InvalidQuality: If quality is outside 0-5; nothing is changed.
            PersistenceError: If the sync queue cannot be written. The answer
                is already saved and counted, so it is not graded again.
        """
        quality = validate_quality(quality)
        if self._lock.locked():
            logger.warning("Grade ignored, previous answer still being processed")
            return None

        async with self._lock:
            try:
                item = self._gradable_item()
            except LogicError as e:
                logger.warning("Grade ignored: %s", str(e))
                return None

            now = self.clock()
            prior = await self.progress_store.get_review_state(item)
            new_state = calculate_next_review(prior, quality, self.mode, now)
            snapshot = await self.progress_store.save_review_state(item, new_state)

            passed = quality >= PASSING_QUALITY
            self.total += 1
            self.graded_words.append(item.word)
            if passed:
                self.correct += 1
                self.answered.add(item.key)
                self.learning.pop(item.key, None)
                self._learning_items.pop(item.key, None)
            else:
                self._add_learning(item)

            monitoring.grades.labels(mode=self.mode.value, result="pass" if passed else "fail").inc()
            logger.info(
                "Graded %s with %d, next review in %d days",
                item.word,
                quality,
                new_state.interval,
            )
            self.state = SessionState.FEEDBACK
            await self.sync_queue.queue_action(SyncActionType.SAVE_PROGRESS, snapshot.to_dict())

        if self.auto_advance_delay is not None:
            self.schedule_auto_advance(self.auto_advance_delay)
        return new_state

    def _gradable_item(self) -> ReviewItem:
        item = self.current_item
        if self.state not in GRADABLE_STATES or item is None:
            raise LogicError(f"nothing to grade in state {self.state.value}")
        return item

    def _add_learning(self, item: ReviewItem) -> LearningEntry:
        step = self._failures.get(item.key, 0)
        self._failures[item.key] = step + 1
        entry = LearningEntry(
            word=item.word,
            step=step,
            cards_until_review=self.learning_first_step * 2 ** step,
        )
        self.learning[item.key] = entry
        self._learning_items[item.key] = item
        logger.debug("%s back in %d cards", item.word, entry.cards_until_review)
        return entry

    def _tick_learning(self) -> None:
        """Count down learning entries and splice due ones in after the current item."""
        due = []
        for key, entry in self.learning.items():
            entry.cards_until_review -= 1
            if entry.cards_until_review <= 0:
                due.append(key)

        position = self.index + 1
        for key in due:
            del self.learning[key]
            self.queue.insert(position, self._learning_items.pop(key))
            position += 1

    def _force_append_learning(self) -> None:
        keys = sorted(self.learning, key=lambda k: self.learning[k].cards_until_review)
        for key in keys:
            self.queue.append(self._learning_items.pop(key))
        self.learning.clear()
        logger.debug("Appended %d learning items to the end of the queue", len(keys))

    def _next_unanswered(self) -> Optional[int]:
        for i in range(self.index + 1, len(self.queue)):
            if self.queue[i].key not in self.answered:
                return i
        return None

    async def advance(self) -> SessionState:
        """Move to the next item, completing the session when nothing is left."""
        return await self._advance()

    async def _advance(self, from_feedback_only: bool = False) -> SessionState:
        if self._lock.locked():
            logger.warning("Advance ignored, another step is in progress")
            return self.state

        async with self._lock:
            self.cancel_auto_advance()
            if from_feedback_only and self.state is not SessionState.FEEDBACK:
                logger.debug("Auto-advance dropped in state %s", self.state.value)
                return self.state
            if not self.is_active:
                logger.warning("Advance ignored in state %s", self.state.value)
                return self.state

            self._tick_learning()
            while True:
                index = self._next_unanswered()
                if index is not None:
                    self._present(index)
                    return self.state
                if not self.learning:
                    break
                if not await self.load_next_batch():
                    self._force_append_learning()

            await self.finish_session()
            return self.state

    async def skip(self) -> SessionState:
        """Advance now, replacing any pending auto-advance."""
        self.cancel_auto_advance()
        return await self.advance()

    def schedule_auto_advance(self, delay: float) -> None:
        """Advance after ``delay`` seconds; replaces any pending timer."""
        self.cancel_auto_advance()
        loop = asyncio.get_running_loop()
        self._advance_handle = loop.call_later(delay, self._fire_auto_advance)

    def cancel_auto_advance(self) -> None:
        """Drop a pending timer and any fired advance that has not started yet."""
        if self._advance_handle is not None:
            self._advance_handle.cancel()
            self._advance_handle = None
        task, self._advance_task = self._advance_task, None
        if task is not None and not task.done():
            task.cancel()

    def _fire_auto_advance(self) -> None:
        self._advance_handle = None
        task = asyncio.ensure_future(self._auto_advance())
        task.add_done_callback(_log_advance_failure)
        self._advance_task = task

    async def _auto_advance(self) -> None:
        # Once running, the task can no longer be cancelled mid-step.
        if self._advance_task is asyncio.current_task():
            self._advance_task = None
        await self._advance(from_feedback_only=True)

    async def load_next_batch(self) -> bool:
        """Append up to a batch of eligible items not already in the queue."""
        if self.mode is None:
            return False
        exclude = {item.key for item in self.queue} | set(self.learning)
        candidates = await self._eligible(exclude)
        batch = [c.item for c in candidates[: self.batch_size]]
        if not batch:
            return False
        self.queue.extend(batch)
        logger.info("Loaded %d more items, queue now %d", len(batch), len(self.queue))
        return True

    async def finish_session(self) -> Optional[SessionResult]:
        """Record the session in the statistics and queue a final sync."""
        if self.result is not None:
            return self.result
        if self.mode is None or self.started_at is None:
            logger.warning("Finish ignored, no session in progress")
            return None

        self.cancel_auto_advance()
        now = self.clock()
        result = SessionResult(
            mode=self.mode.value,
            correct=self.correct,
            total=self.total,
            started_at=self.started_at,
            finished_at=now,
            words=list(self.graded_words),
        )
        if self.total:
            snapshot = await self.progress_store.update(
                lambda s: record_session(s.statistics, result, now, self.tz)
            )
            await self.sync_queue.queue_action(SyncActionType.SAVE_PROGRESS, snapshot.to_dict())
        else:
            # Nothing answered: same as quitting, no statistics.
            await self.progress_store.set_current_session(None)

        self.result = result
        self.state = SessionState.COMPLETED
        monitoring.quiz_sessions.labels(mode=self.mode.value, outcome="completed").inc()
        logger.info("Session complete: %d/%d correct (%d%%)", result.correct, result.total, result.percentage)
        return result

    async def quit_session(self) -> Optional[SessionResult]:
        """Leave the session. Answers already graded are still counted."""
        self.cancel_auto_advance()
        result = None
        if self.is_active:
            if self.total:
                result = await self.finish_session()
            else:
                await self.progress_store.set_current_session(None)
            logger.info("Quit %s session after %d answers", self.mode.value, self.total)
        self._reset(SessionState.SELECTING_MODE)
        return result

    def session_progress(self) -> Dict[str, Any]:
        """Position and score for the presentation layer."""
        item = self.current_item
        return {
            "state": self.state.value,
            "position": self.index + 1,
            "queue_size": len(self.queue),
            "correct": self.correct,
            "total": self.total,
            "learning": len(self.learning),
            "current": item.word if item else None,
            "revealed": self.revealed,
            "pending_sync": self.sync_queue.get_queue_size(),
            "online": self.sync_queue.get_online_status(),
        }


def _log_speech_failure(task: "asyncio.Future") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Audio playback failed: %s", str(task.exception()))


def _log_advance_failure(task: "asyncio.Future") -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Auto-advance failed: %s", str(task.exception()))
