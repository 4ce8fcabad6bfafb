"""Factories for decks, rows and deterministic randomness."""

from __future__ import annotations

import random
from typing import Iterable, List, Optional, Sequence, Tuple

from vocab import (
    ALL_MODES,
    PracticeStatistics,
    Relation,
    StudyMode,
    VocabTable,
    VocabularyItem,
)


class ScriptedRandom(random.Random):
    """Shuffles and choices keep the input order; coin flips come from a script."""

    def __init__(self, coins: Iterable[float] = ()) -> None:
        super().__init__(0)
        self.coins = list(coins)

    def random(self) -> float:
        return self.coins.pop(0) if self.coins else 0.0

    def shuffle(self, x) -> None:
        return None

    def choice(self, seq):
        return seq[0]


def build_item(item_id: str, table_id: str = "animals", english: str = "", german: str = "", **stats) -> VocabularyItem:
    return VocabularyItem(
        id=item_id,
        table_id=table_id,
        cols={"English": english, "German": german},
        stats=PracticeStatistics(**stats),
    )


def build_table(table_id: str, words: Sequence[Tuple[str, str]], name: Optional[str] = None) -> VocabTable:
    rows: List[VocabularyItem] = [
        build_item(f"{table_id}-{idx}", table_id, english, german)
        for idx, (english, german) in enumerate(words, start=1)
    ]
    return VocabTable(id=table_id, name=name or table_id, columns=["English", "German"], rows=rows)


def build_relation(
    relation_id: str,
    table_id: str,
    modes: Sequence[StudyMode] = ALL_MODES,
    question_cols: Sequence[str] = ("English",),
    answer_cols: Sequence[str] = ("German",),
) -> Relation:
    return Relation(
        id=relation_id,
        table_id=table_id,
        name=relation_id,
        question_cols=list(question_cols),
        answer_cols=list(answer_cols),
        modes=list(modes),
    )
