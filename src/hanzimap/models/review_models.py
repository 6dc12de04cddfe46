"""Review and sync data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from hanzimap.errors import ValidationError


class ItemType(str, Enum):
    """Kind of reviewable item."""

    CHARACTER = "character"
    COMPOUND = "compound"
    SENTENCE = "sentence"


class QuizMode(str, Enum):
    """Quiz mode, each tracked with its own last-reviewed stamp."""

    WORDS = "words"
    AUDIO = "audio"
    SENTENCES = "sentences"

    @classmethod
    def parse(cls, value: Any) -> "QuizMode":
        """Accept either a QuizMode or its string value."""
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown quiz mode: {value!r}") from None


class Category(str, Enum):
    """Urgency category assigned by the priority classifier."""

    NEW = "new"
    OVERDUE = "overdue"
    DUE_TODAY = "due-today"
    REVIEWED_TODAY = "reviewed-today"
    NOT_DUE = "not-due"


class SyncActionType(str, Enum):
    """Mutations the sync queue knows how to deliver."""

    SAVE_PROGRESS = "SAVE_PROGRESS"
    LOG_QUIZ_ATTEMPT = "LOG_QUIZ_ATTEMPT"
    ADD_CUSTOM_WORD = "ADD_CUSTOM_WORD"
    DELETE_CUSTOM_WORD = "DELETE_CUSTOM_WORD"
    ADD_SENTENCE = "ADD_SENTENCE"
    DELETE_SENTENCE = "DELETE_SENTENCE"
    SAVE_WORD_EDIT = "SAVE_WORD_EDIT"


@dataclass(frozen=True)
class ReviewItem:
    """A character, compound word or sentence that can be quizzed.

    Display fields come from the bundled catalog. ``parent`` is the
    character the item's progress is filed under.
    """

    word: str
    type: ItemType = ItemType.COMPOUND
    pinyin: str = ""
    meanings: Tuple[str, ...] = ()
    parent: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Identity of the item."""
        return (self.word, ItemType(self.type).value)

    @property
    def parent_char(self) -> str:
        """Character under which a compound is stored."""
        return self.parent or self.word[:1]


# Python attribute name -> persisted JSON key
_STATE_KEYS = {
    "score": "score",
    "attempts": "attempts",
    "correct": "correct",
    "wrong": "wrong",
    "interval": "interval",
    "easiness": "easiness",
    "consecutive_correct": "consecutiveCorrect",
    "last_reviewed": "lastReviewed",
    "last_reviewed_word": "lastReviewedWord",
    "last_reviewed_audio": "lastReviewedAudio",
    "last_reviewed_sentence": "lastReviewedSentence",
    "next_review": "nextReview",
}

_MODE_STAMPS = {
    QuizMode.WORDS: "last_reviewed_word",
    QuizMode.AUDIO: "last_reviewed_audio",
    QuizMode.SENTENCES: "last_reviewed_sentence",
}


@dataclass
class ReviewState:
    """Spaced-repetition state of one item."""

    score: int = 0
    attempts: int = 0
    correct: int = 0
    wrong: int = 0
    interval: int = 1
    easiness: float = 2.5
    consecutive_correct: int = 0
    last_reviewed: Optional[int] = None
    last_reviewed_word: Optional[int] = None
    last_reviewed_audio: Optional[int] = None
    last_reviewed_sentence: Optional[int] = None
    next_review: Optional[int] = None

    def last_reviewed_in(self, mode: QuizMode) -> Optional[int]:
        """Last review stamp for a quiz mode.

        Word mode falls back to the legacy combined stamp, which older
        progress written before per-mode stamps existed still carries.
        """
        mode = QuizMode.parse(mode)
        stamp = getattr(self, _MODE_STAMPS[mode])
        if stamp is None and mode is QuizMode.WORDS:
            return self.last_reviewed
        return stamp

    def mark_reviewed(self, mode: QuizMode, now: int) -> None:
        setattr(self, _MODE_STAMPS[QuizMode.parse(mode)], now)
        self.last_reviewed = now

    def to_dict(self) -> Dict[str, Any]:
        return {json_key: getattr(self, attr) for attr, json_key in _STATE_KEYS.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReviewState":
        """Build a state from persisted JSON, defaulting missing fields."""
        state = cls()
        if not data:
            return state
        for attr, json_key in _STATE_KEYS.items():
            value = data.get(json_key)
            if value is not None:
                setattr(state, attr, value)
        state.easiness = float(state.easiness)
        return state


@dataclass
class LearningEntry:
    """A failed item waiting to be shown again within the session."""

    word: str
    step: int = 0
    cards_until_review: int = 0


@dataclass
class SyncAction:
    """A pending mutation for the remote store."""

    type: str
    payload: Any = None
    timestamp: int = 0
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncAction":
        # Older queues stored the payload under "data"
        payload = data.get("payload", data.get("data"))
        return cls(
            type=data["type"],
            payload=payload,
            timestamp=data.get("timestamp") or 0,
            attempts=data.get("attempts") or 0,
        )


@dataclass
class ClassifiedItem:
    """An item tagged with its urgency category and priority."""

    item: ReviewItem
    state: Optional[ReviewState]
    category: Category
    priority: int


@dataclass
class SessionResult:
    """Outcome of a finished quiz session."""

    mode: str
    correct: int
    total: int
    started_at: Optional[int] = None
    finished_at: Optional[int] = None
    words: List[str] = field(default_factory=list)

    @property
    def percentage(self) -> int:
        if not self.total:
            return 0
        return round(self.correct / self.total * 100)
