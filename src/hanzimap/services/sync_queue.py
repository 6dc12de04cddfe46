"""Durable queue of mutations waiting for the remote store.

Actions are delivered strictly in the order they were queued. A failed
head action stays at the head and the drain stops; it is retried on the
next trigger (timer tick, reconnect, or a new action) until it succeeds
or runs out of attempts, at which point it is dropped and logged. Local
state remains authoritative either way.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from hanzimap import monitoring
from hanzimap.clock import Clock, now_ms
from hanzimap.config import settings
from hanzimap.errors import PersistenceError, RemoteAPIError, ValidationError
from hanzimap.models.review_models import SyncAction, SyncActionType
from hanzimap.services.local_store import LocalStore
from hanzimap.services.network_monitor import NetworkMonitor

logger = logging.getLogger(__name__)

SYNC_QUEUE_KEY = "@syncQueue"

Listener = Callable[[Dict[str, Any]], None]


class DrainState(str, Enum):
    """Whether a drain of the queue is in flight."""

    IDLE = "idle"
    DRAINING = "draining"


class SyncQueue:
    """Ordered, persisted outbox for remote mutations."""

    def __init__(
        self,
        store: LocalStore,
        api: Any,
        network: Optional[NetworkMonitor] = None,
        clock: Clock = now_ms,
        interval: float = settings.sync.interval,
        max_attempts: int = settings.sync.max_attempts,
    ):
        """Initialize the queue; call ``initialize`` to load persisted actions."""
        self.store = store
        self.api = api
        self.network = network or NetworkMonitor()
        self.clock = clock
        self.interval = interval
        self.max_attempts = max_attempts
        self.actions: List[SyncAction] = []
        self.drain_state = DrainState.IDLE
        self.listeners: List[Listener] = []
        self._auto_sync_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        """Load the persisted queue, follow the network and start the timer."""
        await self.load_queue()
        self.network.add_listener(self._on_network_change)
        self.start_auto_sync()

    async def close(self) -> None:
        """Stop timers and wait for a drain in flight to finish."""
        self.stop_auto_sync()
        self.network.remove_listener(self._on_network_change)
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)
            self._drain_task = None

    def add_listener(self, callback: Listener) -> None:
        self.listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        self.listeners = [l for l in self.listeners if l != callback]

    def notify_listeners(self, data: Dict[str, Any]) -> None:
        for callback in list(self.listeners):
            try:
                callback(data)
            except Exception as e:
                logger.error("Sync listener failed: %s", str(e))

    async def load_queue(self) -> None:
        raw = await self.store.get(SYNC_QUEUE_KEY)
        if not raw:
            self.actions = []
        else:
            try:
                self.actions = [SyncAction.from_dict(a) for a in json.loads(raw)]
            except (ValueError, TypeError, KeyError) as e:
                logger.error("Stored sync queue is unreadable: %s", str(e))
                raise PersistenceError("Stored sync queue is unreadable") from e
        monitoring.sync_queue_size.set(len(self.actions))
        logger.info("Loaded %d queued actions", len(self.actions))

    async def save_queue(self) -> None:
        payload = json.dumps([a.to_dict() for a in self.actions], ensure_ascii=False)
        await self.store.set(SYNC_QUEUE_KEY, payload)
        monitoring.sync_queue_size.set(len(self.actions))

    async def queue_action(self, action_type: str, payload: Any = None) -> SyncAction:
        """Append an action, persist the queue and start a drain if online.

        Raises:
            PersistenceError: If the queue could not be written.
        """
        action = SyncAction(
            type=getattr(action_type, "value", action_type),
            payload=payload,
            timestamp=self.clock(),
            attempts=0,
        )
        self.actions.append(action)
        try:
            await self.save_queue()
        except PersistenceError:
            self.actions.remove(action)
            raise
        logger.info("Queued action %s - queue size: %d", action.type, len(self.actions))

        if self.network.online:
            self.schedule_drain()
        return action

    def schedule_drain(self) -> None:
        """Start a background drain unless one is already running."""
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.create_task(self.process_queue())

    async def wait_idle(self) -> None:
        """Wait for a background drain to finish."""
        if self._drain_task is not None:
            await asyncio.gather(self._drain_task, return_exceptions=True)

    async def process_queue(self) -> None:
        """Deliver queued actions in order until one fails or the queue is empty."""
        if self.drain_state is DrainState.DRAINING or not self.actions:
            return

        self.drain_state = DrainState.DRAINING
        starting_size = len(self.actions)
        logger.info("Processing queue: %d actions", starting_size)

        try:
            while self.actions:
                action = self.actions[0]
                try:
                    await self.execute_action(action)
                except RemoteAPIError as e:
                    action.attempts += 1
                    monitoring.sync_actions.labels(action_type=action.type, outcome="failed").inc()
                    logger.warning(
                        "Failed to sync action %s (attempt %d/%d): %s",
                        action.type,
                        action.attempts,
                        self.max_attempts,
                        str(e),
                    )
                    if action.attempts >= self.max_attempts:
                        self.actions.pop(0)
                        await self.save_queue()
                        monitoring.sync_actions_dropped.labels(action_type=action.type).inc()
                        logger.error(
                            "Giving up on action %s queued at %d after %d attempts; "
                            "local state kept, remote copy is behind",
                            action.type,
                            action.timestamp,
                            action.attempts,
                        )
                        continue
                    await self.save_queue()
                    break
                except (KeyError, TypeError, ValueError) as e:
                    self.actions.pop(0)
                    await self.save_queue()
                    monitoring.sync_actions_dropped.labels(action_type=action.type).inc()
                    logger.error("Unsendable %s action, discarding: %s", action.type, str(e))
                    continue

                self.actions.pop(0)
                await self.save_queue()
                monitoring.sync_actions.labels(action_type=action.type, outcome="synced").inc()
                logger.info("Synced action %s - remaining: %d", action.type, len(self.actions))
        except PersistenceError as e:
            logger.error("Could not persist sync queue, stopping drain: %s", str(e))
        finally:
            self.drain_state = DrainState.IDLE

        if starting_size > 0 and not self.actions:
            logger.info("All actions synced")
            self.notify_listeners({"synced": True, "queue_size": 0})
        elif self.actions:
            self.notify_listeners({"synced": False, "queue_size": len(self.actions)})

    async def execute_action(self, action: SyncAction) -> None:
        """Send one action to the remote store.

        Raises:
            ValidationError: If the action type is unknown.
        """
        data = action.payload or {}
        if action.type == SyncActionType.SAVE_PROGRESS:
            await self.api.save_progress(data)
        elif action.type == SyncActionType.LOG_QUIZ_ATTEMPT:
            await self.api.log_quiz_attempt(data)
        elif action.type == SyncActionType.ADD_CUSTOM_WORD:
            await self.api.add_custom_word(data["word"], data.get("pinyin", ""), data.get("meanings", []))
        elif action.type == SyncActionType.DELETE_CUSTOM_WORD:
            await self.api.delete_custom_word(data["id"])
        elif action.type == SyncActionType.ADD_SENTENCE:
            await self.api.add_sentence(data["chinese"], data.get("pinyin", ""), data.get("english", ""))
        elif action.type == SyncActionType.DELETE_SENTENCE:
            await self.api.delete_sentence(data["id"])
        elif action.type == SyncActionType.SAVE_WORD_EDIT:
            await self.api.save_word_edit(data["word"], data.get("wordType", ""), data.get("meanings", []))
        else:
            raise ValidationError(f"Unknown action type {action.type}")

    def _on_network_change(self, event: Dict[str, Any]) -> None:
        online = bool(event.get("online"))
        if online:
            logger.info("Network restored, syncing...")
            self.schedule_drain()
        self.notify_listeners({"online": online})

    async def _run_auto_sync(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                if self.network.online and self.actions:
                    await self.process_queue()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in auto-sync task: %s", str(e))

    def start_auto_sync(self) -> None:
        """Start the fixed-interval retry timer."""
        self.stop_auto_sync()
        self._auto_sync_task = asyncio.create_task(self._run_auto_sync())

    def stop_auto_sync(self) -> None:
        if self._auto_sync_task is not None:
            self._auto_sync_task.cancel()
            self._auto_sync_task = None

    def get_queue_size(self) -> int:
        return len(self.actions)

    def get_online_status(self) -> bool:
        return self.network.online
