"""Tests for the main application."""
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm import sessionmaker

from hanzimap.app import HanziMapApp
from hanzimap.models.review_models import ItemType, QuizMode
from hanzimap.services.quiz_session import SessionState

from conftest import FakeClock, FakeRemoteAPI

CATALOG = {
    "水": {
        "pinyin": "shuǐ",
        "meanings": ["water"],
        "compounds": [{"word": "喝水", "pinyin": "hē shuǐ", "meanings": ["drink water"]}],
    },
}


@pytest.fixture
def app(session_factory: sessionmaker, clock: FakeClock) -> HanziMapApp:
    """Create an app with an in-memory store and a fake server."""
    return HanziMapApp(
        api=FakeRemoteAPI(progress={"characterProgress": {}}),
        session_factory=session_factory,
        catalog=CATALOG,
        clock=clock,
        probe_network=False,
    )


@pytest.mark.asyncio
async def test_start_and_stop(app: HanziMapApp) -> None:
    """Test starting and stopping the app."""
    await app.start()

    assert app.running
    assert app.engine is not None
    assert app.status() == {"online": True, "pending": 0}

    await app.stop()

    assert not app.running
    assert app.sync_queue is None
    assert app.engine is None


@pytest.mark.asyncio
async def test_toggle_known_syncs(app: HanziMapApp) -> None:
    """Marking a character known saves it and sends it to the server."""
    await app.start()

    assert await app.toggle_character_known("水") is True
    await app.sync_queue.wait_idle()

    assert app.api.calls[-1][0] == "save_progress"
    assert app.api.calls[-1][1]["characterProgress"]["水"]["known"] is True
    assert app.status()["pending"] == 0
    await app.stop()


@pytest.mark.asyncio
async def test_start_quiz_over_unlocked_items(app: HanziMapApp) -> None:
    """A quiz covers what the learner has unlocked."""
    await app.start()
    assert await app.start_quiz() is SessionState.ALL_CAUGHT_UP

    await app.toggle_character_known("水")
    assert await app.toggle_compound_known("水", "喝水") is True

    assert await app.start_quiz(QuizMode.WORDS) is SessionState.PRESENTING
    assert [(i.word, i.type) for i in app.engine.queue] == [
        ("水", ItemType.CHARACTER),
        ("喝水", ItemType.COMPOUND),
    ]
    snapshot = await app.progress_store.load()
    assert snapshot.compound_progress["水"].total == 1

    await app.stop()


@pytest.mark.asyncio
async def test_start_failure_cleans_up(session_factory: sessionmaker) -> None:
    """A failure during start leaves nothing running."""
    api = AsyncMock()
    api.get_progress.side_effect = RuntimeError("unexpected")
    app = HanziMapApp(api=api, session_factory=session_factory, catalog={}, probe_network=False)

    with pytest.raises(RuntimeError):
        await app.start()

    assert not app.running
    assert app.sync_queue is None
