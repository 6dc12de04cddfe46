"""Local snapshot of all review progress.

The whole aggregate lives under one key of the local store. Several call
sites mutate disjoint parts of it (grading, "known" toggles, session
statistics), so every change goes through ``ProgressStore.update``, which
re-reads the stored document, applies the change and writes it back while
holding a lock.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from hanzimap.errors import PersistenceError, RemoteAPIError
from hanzimap.models.review_models import ItemType, ReviewItem, ReviewState
from hanzimap.services.local_store import LocalStore

logger = logging.getLogger(__name__)

PROGRESS_KEY = "@progress"
SCHEMA_VERSION = 1


@dataclass
class ItemProgress:
    """Progress of a character or sentence."""

    known: bool = False
    quiz_score: Optional[ReviewState] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["known"] = self.known
        if self.quiz_score is not None:
            data["quizScore"] = self.quiz_score.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ItemProgress":
        data = dict(data or {})
        score = data.pop("quizScore", None)
        return cls(
            known=bool(data.pop("known", False)),
            quiz_score=ReviewState.from_dict(score) if score else None,
            extra=data,
        )


@dataclass
class CompoundProgress:
    """Compound words filed under one character."""

    known: List[str] = field(default_factory=list)
    quiz_scores: Dict[str, ReviewState] = field(default_factory=dict)
    total: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["known"] = list(self.known)
        data["quizScores"] = {word: state.to_dict() for word, state in self.quiz_scores.items()}
        if self.total is not None:
            data["total"] = self.total
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CompoundProgress":
        data = dict(data or {})
        known = data.pop("known", None)
        scores = data.pop("quizScores", None) or {}
        return cls(
            known=list(known) if isinstance(known, list) else [],
            quiz_scores={word: ReviewState.from_dict(s) for word, s in scores.items() if s},
            total=data.pop("total", None),
            extra=data,
        )


def default_milestones() -> Dict[str, Any]:
    return {
        "totalSessions": 0,
        "totalReviews": 0,
        "currentStreak": 0,
        "longestStreak": 0,
        "firstQuizDate": None,
    }


@dataclass
class Statistics:
    """Session statistics aggregate."""

    daily_stats: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    milestones: Dict[str, Any] = field(default_factory=default_milestones)
    current_session: Optional[Dict[str, Any]] = None
    quiz_sessions: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "dailyStats": self.daily_stats,
                "milestones": self.milestones,
                "currentSession": self.current_session,
                "quizSessions": self.quiz_sessions,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Statistics":
        data = dict(data or {})
        milestones = default_milestones()
        milestones.update(data.pop("milestones", None) or {})
        return cls(
            daily_stats=dict(data.pop("dailyStats", None) or {}),
            milestones=milestones,
            current_session=data.pop("currentSession", None),
            quiz_sessions=list(data.pop("quizSessions", None) or []),
            extra=data,
        )


@dataclass
class ProgressSnapshot:
    """Typed view of the persisted progress document."""

    version: int = SCHEMA_VERSION
    character_progress: Dict[str, ItemProgress] = field(default_factory=dict)
    compound_progress: Dict[str, CompoundProgress] = field(default_factory=dict)
    sentence_progress: Dict[str, ItemProgress] = field(default_factory=dict)
    statistics: Statistics = field(default_factory=Statistics)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "version": self.version,
                "characterProgress": {c: p.to_dict() for c, p in self.character_progress.items()},
                "compoundProgress": {c: p.to_dict() for c, p in self.compound_progress.items()},
                "sentenceProgress": {s: p.to_dict() for s, p in self.sentence_progress.items()},
                "statistics": self.statistics.to_dict(),
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProgressSnapshot":
        data = dict(data or {})
        version = data.pop("version", None) or SCHEMA_VERSION
        if version > SCHEMA_VERSION:
            logger.warning("Progress written by a newer schema (v%s), reading as v%s", version, SCHEMA_VERSION)
        characters = data.pop("characterProgress", None) or {}
        compounds = data.pop("compoundProgress", None) or {}
        sentences = data.pop("sentenceProgress", None) or {}
        return cls(
            version=SCHEMA_VERSION,
            character_progress={c: ItemProgress.from_dict(p) for c, p in characters.items()},
            compound_progress={c: CompoundProgress.from_dict(p) for c, p in compounds.items()},
            sentence_progress={s: ItemProgress.from_dict(p) for s, p in sentences.items()},
            statistics=Statistics.from_dict(data.pop("statistics", None)),
            extra=data,
        )

    def get_state(self, item: ReviewItem) -> Optional[ReviewState]:
        """Review state of an item, or None if it was never graded."""
        item_type = ItemType(item.type)
        if item_type is ItemType.CHARACTER:
            progress = self.character_progress.get(item.word)
            return progress.quiz_score if progress else None
        if item_type is ItemType.SENTENCE:
            progress = self.sentence_progress.get(item.word)
            return progress.quiz_score if progress else None
        compounds = self.compound_progress.get(item.parent_char)
        return compounds.quiz_scores.get(item.word) if compounds else None

    def set_state(self, item: ReviewItem, state: ReviewState) -> None:
        item_type = ItemType(item.type)
        if item_type is ItemType.CHARACTER:
            self.character_progress.setdefault(item.word, ItemProgress()).quiz_score = state
        elif item_type is ItemType.SENTENCE:
            self.sentence_progress.setdefault(item.word, ItemProgress()).quiz_score = state
        else:
            compounds = self.compound_progress.setdefault(item.parent_char, CompoundProgress())
            compounds.quiz_scores[item.word] = state

    def iter_states(self) -> Iterable[Tuple[str, str, ReviewState]]:
        """Yield ``(word, parent, state)`` for every graded item."""
        for char, progress in self.character_progress.items():
            if progress.quiz_score is not None:
                yield char, char, progress.quiz_score
        for char, compounds in self.compound_progress.items():
            for word, state in compounds.quiz_scores.items():
                yield word, char, state
        for sentence, progress in self.sentence_progress.items():
            if progress.quiz_score is not None:
                yield sentence, sentence[:1], progress.quiz_score


class ProgressStore:
    """Single-writer access to the persisted progress snapshot."""

    def __init__(self, store: LocalStore, key: str = PROGRESS_KEY):
        """Initialize with the local store the snapshot lives in."""
        self.store = store
        self.key = key
        self._lock = asyncio.Lock()

    async def _read(self) -> ProgressSnapshot:
        raw = await self.store.get(self.key)
        if not raw:
            return ProgressSnapshot()
        try:
            return ProgressSnapshot.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Stored progress is unreadable: %s", str(e))
            raise PersistenceError("Stored progress is unreadable") from e

    async def _write(self, snapshot: ProgressSnapshot) -> None:
        await self.store.set(self.key, json.dumps(snapshot.to_dict(), ensure_ascii=False))

    async def load(self) -> ProgressSnapshot:
        """Read the current snapshot."""
        return await self._read()

    async def update(self, mutator: Callable[[ProgressSnapshot], Any]) -> ProgressSnapshot:
        """Read, mutate and write back the full snapshot under the store lock."""
        async with self._lock:
            snapshot = await self._read()
            mutator(snapshot)
            await self._write(snapshot)
            return snapshot

    async def get_review_state(self, item: ReviewItem) -> Optional[ReviewState]:
        snapshot = await self._read()
        return snapshot.get_state(item)

    async def save_review_state(self, item: ReviewItem, state: ReviewState) -> ProgressSnapshot:
        """Persist an item's new review state, returning the written snapshot."""
        return await self.update(lambda snapshot: snapshot.set_state(item, state))

    async def toggle_character_known(self, char: str) -> bool:
        """Flip a character's known flag and return the new value."""

        def toggle(snapshot: ProgressSnapshot) -> None:
            progress = snapshot.character_progress.setdefault(char, ItemProgress())
            progress.known = not progress.known

        snapshot = await self.update(toggle)
        return snapshot.character_progress[char].known

    async def toggle_compound_known(self, parent: str, word: str, total: Optional[int] = None) -> bool:
        """Add or remove a compound from its character's known list."""

        def toggle(snapshot: ProgressSnapshot) -> None:
            compounds = snapshot.compound_progress.setdefault(parent, CompoundProgress(total=total))
            if word in compounds.known:
                compounds.known = [w for w in compounds.known if w != word]
            else:
                compounds.known = compounds.known + [word]

        snapshot = await self.update(toggle)
        return word in snapshot.compound_progress[parent].known

    async def set_current_session(self, marker: Optional[Dict[str, Any]]) -> ProgressSnapshot:
        """Set or clear the active-session marker."""

        def mark(snapshot: ProgressSnapshot) -> None:
            snapshot.statistics.current_session = marker

        return await self.update(mark)

    async def replace(self, data: Dict[str, Any]) -> ProgressSnapshot:
        """Overwrite the snapshot with a full document, e.g. the server copy."""
        async with self._lock:
            snapshot = ProgressSnapshot.from_dict(data)
            await self._write(snapshot)
            return snapshot

    async def refresh_from_remote(self, api: Any, pending_actions: int = 0) -> bool:
        """Pull the server copy of progress into the local cache.

        While local mutations are still waiting in the sync queue the local
        copy stays authoritative and the server copy is ignored. Network
        failures leave the cache as it is.
        """
        if pending_actions:
            logger.info("Skipping progress refresh, %d local changes not yet synced", pending_actions)
            return False
        try:
            data = await api.get_progress()
        except RemoteAPIError as e:
            logger.info("Using cached progress, server unavailable: %s", str(e))
            return False
        if not isinstance(data, dict):
            logger.warning("Ignoring unexpected progress payload from server")
            return False
        await self.replace(data)
        logger.info("Progress refreshed from server")
        return True
