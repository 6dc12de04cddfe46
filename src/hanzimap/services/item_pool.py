"""Assembly of the quizzable item pool from the catalog and progress."""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

from hanzimap.models.review_models import ItemType, ReviewItem
from hanzimap.services.progress_store import ProgressSnapshot

logger = logging.getLogger(__name__)

Catalog = Mapping[str, Mapping[str, Any]]


def load_catalog(path: Union[str, Path]) -> Dict[str, Dict[str, Any]]:
    """Read the bundled character catalog.

    The file maps each character to ``{"pinyin", "meanings", "compounds"}``
    where compounds are ``{"word", "pinyin", "meanings"}`` entries.
    """
    with open(path, encoding="utf-8") as f:
        catalog = json.load(f)
    logger.info("Loaded %d characters from %s", len(catalog), path)
    return catalog


def _character_item(char: str, data: Mapping[str, Any]) -> ReviewItem:
    return ReviewItem(
        word=char,
        type=ItemType.CHARACTER,
        pinyin=data.get("pinyin", ""),
        meanings=tuple(data.get("meanings") or ()),
        parent=char,
    )


def _compound_item(char: str, compound: Mapping[str, Any]) -> ReviewItem:
    return ReviewItem(
        word=compound["word"],
        type=ItemType.COMPOUND,
        pinyin=compound.get("pinyin", ""),
        meanings=tuple(compound.get("meanings") or ()),
        parent=char,
    )


def build_item_pool(catalog: Catalog, snapshot: ProgressSnapshot) -> List[ReviewItem]:
    """Items the learner has unlocked.

    A character is in the pool once it is marked known or has been
    graded. A compound is in the pool once it is marked known under its
    character or has been graded. Each identity appears once, in catalog
    order.
    """
    pool: List[ReviewItem] = []
    seen = set()

    def add(item: ReviewItem) -> None:
        if item.key not in seen:
            seen.add(item.key)
            pool.append(item)

    for char, data in catalog.items():
        progress = snapshot.character_progress.get(char)
        if progress is not None and (progress.known or progress.quiz_score is not None):
            add(_character_item(char, data))

        compounds = snapshot.compound_progress.get(char)
        if compounds is None:
            continue
        unlocked = set(compounds.known) | set(compounds.quiz_scores)
        for compound in data.get("compounds") or ():
            if compound.get("word") in unlocked:
                add(_compound_item(char, compound))

    logger.debug("Item pool has %d items", len(pool))
    return pool
