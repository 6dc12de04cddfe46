"""Tests for the quiz session engine."""
import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest
from faker import Faker

from hanzimap.clock import HOUR_MS
from hanzimap.errors import InvalidQuality, PersistenceError, ValidationError
from hanzimap.models.review_models import ItemType, QuizMode, ReviewItem, ReviewState, SyncActionType
from hanzimap.services.local_store import SqlLocalStore
from hanzimap.services.network_monitor import NetworkMonitor
from hanzimap.services.progress_store import ProgressStore
from hanzimap.services.quiz_session import QuizSessionEngine, SessionState
from hanzimap.services.sync_queue import SYNC_QUEUE_KEY, SyncQueue

from conftest import NOW, FakeClock, FakeRemoteAPI

fake = Faker()

WORDS = ["你好", "学生", "老师", "朋友", "中国", "电脑", "手机", "吃饭", "喝水", "睡觉", "工作", "学习"]


def make_items(count: int) -> List[ReviewItem]:
    return [
        ReviewItem(word=w, type=ItemType.COMPOUND, pinyin=fake.word(), meanings=(fake.word(),))
        for w in WORDS[:count]
    ]


@pytest.fixture
def progress_store(store: SqlLocalStore) -> ProgressStore:
    """Create a progress store."""
    return ProgressStore(store)


@pytest.fixture
def sync_queue(store: SqlLocalStore, api: FakeRemoteAPI, clock: FakeClock) -> SyncQueue:
    """Create an offline sync queue so queued actions stay visible."""
    return SyncQueue(store, api, NetworkMonitor(online=False), clock=clock, interval=3600)


@pytest.fixture
def speaker() -> MagicMock:
    """Create a text-to-speech stub."""
    return MagicMock()


@pytest.fixture
def engine(progress_store: ProgressStore, sync_queue: SyncQueue, clock: FakeClock, speaker: MagicMock) -> QuizSessionEngine:
    """Create a quiz engine without auto-advance."""
    return QuizSessionEngine(
        progress_store,
        sync_queue,
        clock=clock,
        speaker=speaker,
        batch_size=10,
        learning_first_step=5,
        auto_advance_delay=None,
        speech_locale="zh-CN",
    )


@pytest.mark.asyncio
async def test_start_session_presents_first_item(engine: QuizSessionEngine, progress_store: ProgressStore) -> None:
    """Starting a session loads a batch and presents the first item."""
    pool = make_items(12)

    state = await engine.start_session(pool, QuizMode.WORDS)

    assert state is SessionState.PRESENTING
    assert len(engine.queue) == 10
    assert engine.index == 0
    assert engine.current_item == pool[0]
    marker = (await progress_store.load()).statistics.current_session
    assert marker["mode"] == "words"
    assert marker["startedAt"] == NOW


@pytest.mark.asyncio
async def test_start_session_validates_input(engine: QuizSessionEngine) -> None:
    """Bad batch sizes and modes are rejected."""
    with pytest.raises(ValidationError):
        await engine.start_session(make_items(3), QuizMode.WORDS, batch_size=0)
    with pytest.raises(ValidationError):
        await engine.start_session(make_items(3), "flashcards")


@pytest.mark.asyncio
async def test_failed_item_comes_back_after_five_cards(engine: QuizSessionEngine) -> None:
    """A failed item is spliced back in once, five cards later."""
    pool = make_items(10)
    await engine.start_session(pool, QuizMode.WORDS)
    failed = engine.current_item

    await engine.grade(1)
    assert engine.learning[failed.key].cards_until_review == 5

    for _ in range(5):
        await engine.advance()

    assert engine.index == 5
    assert engine.current_item == failed
    assert engine.queue.count(failed) == 2
    assert engine.learning == {}
    assert len(engine.queue) == 11


@pytest.mark.asyncio
async def test_repeated_failure_doubles_the_gap(engine: QuizSessionEngine) -> None:
    """Failing the same item again sends it ten cards back."""
    await engine.start_session(make_items(10), QuizMode.WORDS)
    failed = engine.current_item
    await engine.grade(0)
    for _ in range(5):
        await engine.advance()

    await engine.grade(0)

    entry = engine.learning[failed.key]
    assert entry.step == 1
    assert entry.cards_until_review == 10


@pytest.mark.asyncio
async def test_grade_persists_and_queues_sync(
    engine: QuizSessionEngine, progress_store: ProgressStore, sync_queue: SyncQueue
) -> None:
    """Grading saves the new state and queues it for the server."""
    await engine.start_session(make_items(3), QuizMode.WORDS)
    item = engine.current_item

    new_state = await engine.grade(5)

    assert engine.state is SessionState.FEEDBACK
    assert await progress_store.get_review_state(item) == new_state
    assert new_state.next_review is not None
    assert sync_queue.get_queue_size() == 1
    action = sync_queue.actions[0]
    assert action.type == SyncActionType.SAVE_PROGRESS.value
    assert item.word in action.payload["compoundProgress"][item.parent_char]["quizScores"]


@pytest.mark.asyncio
async def test_invalid_grade_changes_nothing(engine: QuizSessionEngine, sync_queue: SyncQueue) -> None:
    """An out-of-range quality is rejected before any state changes."""
    await engine.start_session(make_items(3), QuizMode.WORDS)

    with pytest.raises(InvalidQuality):
        await engine.grade(7)

    assert engine.state is SessionState.PRESENTING
    assert engine.total == 0
    assert sync_queue.get_queue_size() == 0


@pytest.mark.asyncio
async def test_duplicate_grade_is_ignored(engine: QuizSessionEngine, sync_queue: SyncQueue) -> None:
    """Grading twice without advancing only counts once."""
    await engine.start_session(make_items(3), QuizMode.WORDS)

    await engine.grade(4)
    assert await engine.grade(4) is None

    assert engine.total == 1
    assert sync_queue.get_queue_size() == 1


@pytest.mark.asyncio
async def test_grade_while_busy_is_ignored(engine: QuizSessionEngine) -> None:
    """Only one grade or advance runs at a time."""
    await engine.start_session(make_items(3), QuizMode.WORDS)

    async with engine._lock:
        assert await engine.grade(5) is None

    assert engine.total == 0


@pytest.mark.asyncio
async def test_grade_before_session_is_ignored(engine: QuizSessionEngine) -> None:
    """There is nothing to grade before a session starts."""
    assert await engine.grade(3) is None
    assert engine.state is SessionState.SELECTING_MODE


@pytest.mark.asyncio
async def test_reveal_plays_audio(engine: QuizSessionEngine, speaker: MagicMock) -> None:
    """Revealing shows the answer and speaks the word."""
    await engine.start_session(make_items(3), QuizMode.WORDS)

    assert engine.reveal() is True

    assert engine.state is SessionState.REVEALED
    speaker.speak.assert_called_once_with(engine.current_item.word, "zh-CN")
    assert engine.reveal() is False


@pytest.mark.asyncio
async def test_audio_failure_does_not_break_session(engine: QuizSessionEngine) -> None:
    """Speech errors are logged, never raised."""
    engine.speaker = MagicMock()
    engine.speaker.speak.side_effect = RuntimeError("no audio device")
    await engine.start_session(make_items(3), QuizMode.WORDS)

    assert engine.reveal() is True

    engine.speaker = MagicMock()
    engine.speaker.speak = AsyncMock(side_effect=RuntimeError("tts offline"))
    await engine.advance()
    assert engine.reveal() is True
    await asyncio.sleep(0.01)
    assert engine.state is SessionState.REVEALED


@pytest.mark.asyncio
async def test_session_completes_and_records_statistics(
    engine: QuizSessionEngine, progress_store: ProgressStore, sync_queue: SyncQueue
) -> None:
    """Passing every item completes the session and updates statistics."""
    await engine.start_session(make_items(2), QuizMode.WORDS)

    await engine.grade(5)
    await engine.advance()
    await engine.grade(4)
    state = await engine.advance()

    assert state is SessionState.COMPLETED
    assert engine.result.correct == 2
    assert engine.result.total == 2
    assert engine.result.percentage == 100

    statistics = (await progress_store.load()).statistics
    assert statistics.daily_stats["2026-03-10"]["reviews"] == 2
    assert statistics.milestones["totalSessions"] == 1
    assert statistics.milestones["currentStreak"] == 1
    assert statistics.current_session is None
    assert sync_queue.get_queue_size() == 3

    assert await engine.finish_session() is engine.result
    assert sync_queue.get_queue_size() == 3


@pytest.mark.asyncio
async def test_next_batch_then_forced_learning(engine: QuizSessionEngine) -> None:
    """Exhausting the queue pulls in a new batch, then the pending learning items."""
    pool = make_items(3)
    await engine.start_session(pool, QuizMode.WORDS, batch_size=2)
    assert len(engine.queue) == 2

    await engine.grade(1)
    await engine.advance()
    await engine.grade(5)
    await engine.advance()

    assert engine.current_item == pool[2]
    assert len(engine.queue) == 3

    await engine.grade(5)
    await engine.advance()

    assert engine.current_item == pool[0]
    assert engine.learning == {}

    await engine.grade(5)
    assert await engine.advance() is SessionState.COMPLETED
    assert (engine.result.correct, engine.result.total) == (3, 4)


@pytest.mark.asyncio
async def test_all_caught_up_then_practice(
    engine: QuizSessionEngine, progress_store: ProgressStore
) -> None:
    """With nothing due the engine says so; practice mode quizzes today's items."""
    pool = make_items(2)
    for item in pool:
        await progress_store.save_review_state(
            item,
            ReviewState(
                score=2,
                correct=1,
                attempts=1,
                last_reviewed=NOW - HOUR_MS,
                last_reviewed_word=NOW - HOUR_MS,
                next_review=NOW + 23 * HOUR_MS,
            ),
        )

    assert await engine.start_session(pool, QuizMode.WORDS) is SessionState.ALL_CAUGHT_UP
    assert engine.queue == []

    assert await engine.start_practice() is SessionState.PRESENTING
    assert engine.practice_mode is True
    assert len(engine.queue) == 2


@pytest.mark.asyncio
async def test_audio_mode_needs_word_reviews(engine: QuizSessionEngine) -> None:
    """Brand new items are not quizzed by audio."""
    assert await engine.start_session(make_items(3), QuizMode.AUDIO) is SessionState.ALL_CAUGHT_UP


@pytest.mark.asyncio
async def test_quit_keeps_graded_answers(engine: QuizSessionEngine, progress_store: ProgressStore) -> None:
    """Quitting after some answers still records them."""
    await engine.start_session(make_items(5), QuizMode.WORDS)
    await engine.grade(5)

    result = await engine.quit_session()

    assert result.total == 1
    assert engine.state is SessionState.SELECTING_MODE
    assert engine.queue == []
    statistics = (await progress_store.load()).statistics
    assert statistics.milestones["totalSessions"] == 1
    assert statistics.current_session is None


@pytest.mark.asyncio
async def test_quit_without_answers_clears_marker(engine: QuizSessionEngine, progress_store: ProgressStore) -> None:
    """Quitting before answering anything leaves no statistics behind."""
    await engine.start_session(make_items(5), QuizMode.WORDS)

    assert await engine.quit_session() is None

    statistics = (await progress_store.load()).statistics
    assert statistics.milestones["totalSessions"] == 0
    assert statistics.current_session is None


@pytest.mark.asyncio
async def test_completed_without_answers_records_nothing(
    engine: QuizSessionEngine, progress_store: ProgressStore, sync_queue: SyncQueue
) -> None:
    """Skipping through every item finishes without touching the statistics."""
    await engine.start_session(make_items(2), QuizMode.WORDS)

    await engine.skip()
    assert await engine.skip() is SessionState.COMPLETED

    assert engine.result.total == 0
    statistics = (await progress_store.load()).statistics
    assert statistics.milestones["totalSessions"] == 0
    assert statistics.quiz_sessions == []
    assert statistics.current_session is None
    assert sync_queue.get_queue_size() == 0


@pytest.mark.asyncio
async def test_auto_advance_keeps_one_timer(engine: QuizSessionEngine) -> None:
    """Scheduling a new auto-advance cancels the previous one."""
    await engine.start_session(make_items(3), QuizMode.WORDS)
    await engine.grade(5)

    engine.schedule_auto_advance(10)
    first = engine._advance_handle
    engine.schedule_auto_advance(10)

    assert first.cancelled()
    assert engine._advance_handle is not first

    await engine.skip()
    assert engine._advance_handle is None
    assert engine.index == 1


@pytest.mark.asyncio
async def test_auto_advance_fires(engine: QuizSessionEngine) -> None:
    """Feedback moves on by itself when a delay is configured."""
    engine.auto_advance_delay = 0.01
    await engine.start_session(make_items(3), QuizMode.WORDS)

    await engine.grade(5)
    await asyncio.sleep(0.1)

    assert engine.state is SessionState.PRESENTING
    assert engine.index == 1


@pytest.mark.asyncio
async def test_skip_cancels_fired_auto_advance(engine: QuizSessionEngine) -> None:
    """A skip right after the timer fires moves on exactly once."""
    await engine.start_session(make_items(3), QuizMode.WORDS)
    await engine.grade(5)

    engine.schedule_auto_advance(0)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    await engine.skip()
    await asyncio.sleep(0.05)

    assert engine.index == 1
    assert engine.state is SessionState.PRESENTING
    assert engine._advance_task is None


@pytest.mark.asyncio
async def test_auto_advance_only_leaves_feedback(engine: QuizSessionEngine) -> None:
    """A timer firing while an item is shown does not skip it."""
    await engine.start_session(make_items(3), QuizMode.WORDS)

    engine.schedule_auto_advance(0)
    await asyncio.sleep(0.05)

    assert engine.index == 0
    assert engine.state is SessionState.PRESENTING


@pytest.mark.asyncio
async def test_grade_counted_once_when_sync_write_fails(
    engine: QuizSessionEngine,
    progress_store: ProgressStore,
    store: SqlLocalStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed sync queue write keeps the answer and does not allow a regrade."""
    await engine.start_session(make_items(3), QuizMode.WORDS)
    item = engine.current_item
    original_set = store.set

    async def failing_set(key: str, value: str) -> None:
        if key == SYNC_QUEUE_KEY:
            raise PersistenceError("disk full")
        await original_set(key, value)

    monkeypatch.setattr(store, "set", failing_set)
    with pytest.raises(PersistenceError):
        await engine.grade(5)
    monkeypatch.setattr(store, "set", original_set)

    assert await engine.grade(5) is None

    state = await progress_store.get_review_state(item)
    assert state.attempts == 1
    assert state.correct == 1
    assert state.interval == 1
    assert engine.total == 1
    assert engine.state is SessionState.FEEDBACK


@pytest.mark.asyncio
async def test_session_progress(engine: QuizSessionEngine) -> None:
    """Progress reports position, score and sync status."""
    await engine.start_session(make_items(4), QuizMode.WORDS)
    await engine.grade(2)

    progress = engine.session_progress()

    assert progress["state"] == "feedback"
    assert progress["position"] == 1
    assert progress["queue_size"] == 4
    assert progress["correct"] == 0
    assert progress["total"] == 1
    assert progress["learning"] == 1
    assert progress["pending_sync"] == 1
    assert progress["online"] is False
