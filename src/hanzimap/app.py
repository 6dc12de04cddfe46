"""Application wiring of stores, sync and the quiz engine."""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from hanzimap.clock import Clock, now_ms
from hanzimap.config import settings
from hanzimap.models.base import SessionLocal, init_db
from hanzimap.models.review_models import QuizMode, ReviewItem, SyncActionType
from hanzimap.monitoring import start_monitoring
from hanzimap.services.item_pool import build_item_pool, load_catalog
from hanzimap.services.local_store import SqlLocalStore
from hanzimap.services.network_monitor import NetworkMonitor
from hanzimap.services.progress_store import ProgressStore
from hanzimap.services.quiz_session import AudioSpeaker, QuizSessionEngine, SessionState
from hanzimap.services.remote_api import HttpRemoteAPI
from hanzimap.services.sync_queue import SyncQueue


class HanziMapApp:
    """Main application class."""

    def __init__(
        self,
        api: Optional[Any] = None,
        session_factory: sessionmaker = SessionLocal,
        catalog: Optional[Dict[str, Any]] = None,
        clock: Clock = now_ms,
        speaker: Optional[AudioSpeaker] = None,
        probe_network: bool = True,
    ):
        """Initialize the application; collaborators may be injected."""
        self.api = api
        self.session_factory = session_factory
        self.catalog = catalog
        self.clock = clock
        self.speaker = speaker
        self.probe_network = probe_network
        self.network: Optional[NetworkMonitor] = None
        self.sync_queue: Optional[SyncQueue] = None
        self.progress_store: Optional[ProgressStore] = None
        self.engine: Optional[QuizSessionEngine] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            init_db(self.session_factory.kw["bind"])
            store = SqlLocalStore(self.session_factory)
            self.logger.info("Local store initialized")

            if self.api is None:
                self.api = HttpRemoteAPI()

            self.network = NetworkMonitor()
            if self.probe_network:
                self.network.start_probing(self.api, settings.sync.probe_interval)

            self.sync_queue = SyncQueue(store, self.api, self.network, clock=self.clock)
            await self.sync_queue.initialize()
            self.logger.info("Sync queue started with %d pending actions", self.sync_queue.get_queue_size())

            self.progress_store = ProgressStore(store)
            await self.progress_store.refresh_from_remote(self.api, self.sync_queue.get_queue_size())

            if self.catalog is None:
                self.catalog = self._load_catalog(settings.paths.catalog_file)

            self.engine = QuizSessionEngine(
                self.progress_store,
                self.sync_queue,
                clock=self.clock,
                speaker=self.speaker,
            )

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info("Metrics exported on port %d", settings.monitoring.port)

            self.running = True
            self.logger.info("Application started")

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            await self._shutdown()
            raise

    def _load_catalog(self, path: Path) -> Dict[str, Any]:
        if not Path(path).exists():
            self.logger.warning("Catalog %s not found, starting with an empty catalog", path)
            return {}
        return load_catalog(path)

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running:
            return
        await self._shutdown()

    async def _shutdown(self) -> None:
        try:
            if self.engine and self.engine.is_active:
                await self.engine.quit_session()
            self.engine = None

            if self.network:
                self.network.stop_probing()

            if self.sync_queue:
                await self.sync_queue.close()
                self.logger.info("Sync queue stopped with %d pending actions", self.sync_queue.get_queue_size())
                self.sync_queue = None

            if isinstance(self.api, HttpRemoteAPI):
                await self.api.close()

            self.running = False
            self.logger.info("Application stopped")

        except Exception as e:
            self.logger.error("Error while stopping application: %s", str(e))
            self.running = False
            self.sync_queue = None
            raise

    async def build_pool(self) -> List[ReviewItem]:
        snapshot = await self.progress_store.load()
        return build_item_pool(self.catalog or {}, snapshot)

    async def start_quiz(self, mode: QuizMode = QuizMode.WORDS, practice_mode: bool = False) -> SessionState:
        """Start a session over everything the learner has unlocked."""
        pool = await self.build_pool()
        return await self.engine.start_session(pool, mode, practice_mode=practice_mode)

    async def toggle_character_known(self, char: str) -> bool:
        known = await self.progress_store.toggle_character_known(char)
        await self._queue_progress()
        return known

    async def toggle_compound_known(self, parent: str, word: str) -> bool:
        compounds = (self.catalog or {}).get(parent, {}).get("compounds") or []
        known = await self.progress_store.toggle_compound_known(parent, word, total=len(compounds))
        await self._queue_progress()
        return known

    async def _queue_progress(self) -> None:
        snapshot = await self.progress_store.load()
        await self.sync_queue.queue_action(SyncActionType.SAVE_PROGRESS, snapshot.to_dict())

    def status(self) -> Dict[str, Any]:
        """Sync indicator for the presentation layer."""
        return {
            "online": self.sync_queue.get_online_status() if self.sync_queue else False,
            "pending": self.sync_queue.get_queue_size() if self.sync_queue else 0,
        }
