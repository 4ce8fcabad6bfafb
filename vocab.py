"""
Vocabulary tables, relations and practice statistics.

The models in this module are the in-memory snapshot the study engine in
study.py works on. Practice statistics are never touched while a session is
running: the batch helpers at the bottom of the module apply a finished
session's tallies (or an abandoned session's quit flags) in one go.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

SESSION_COMPLETE_BONUS = 50
QUIT_XP_PENALTY = 30

# Upper bounds (inclusive) of rank points for levels 1..5; anything above is level 6.
LEVEL_THRESHOLDS = (0, 3, 7, 15, 31)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def level_for_rank_point(rank_point: int) -> int:
    for level, ceiling in enumerate(LEVEL_THRESHOLDS, start=1):
        if rank_point <= ceiling:
            return level
    return len(LEVEL_THRESHOLDS) + 1


class StudyMode(str, Enum):
    MCQ = "MCQ"
    TF = "TF"
    TYPING = "Typing"
    SCRAMBLED = "Scrambled"


ALL_MODES: Tuple[StudyMode, ...] = tuple(StudyMode)

MODE_LABELS = {
    StudyMode.MCQ: "Multiple choice",
    StudyMode.TF: "True / false",
    StudyMode.TYPING: "Typing",
    StudyMode.SCRAMBLED: "Scrambled sentence",
}


class SessionItemState(str, Enum):
    UNSEEN = "unseen"
    FAIL = "fail"
    PASS1 = "pass1"
    PASS2 = "pass2"


class PracticeStatistics(BaseModel):
    passed1: int = Field(0, ge=0)
    passed2: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    total_attempts: int = Field(0, ge=0)
    in_queue: int = Field(0, ge=0)
    quit_queue: bool = False
    last_practiced_at: Optional[datetime] = None

    @property
    def failure_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.failed / self.total_attempts

    @property
    def success_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return 1.0 - self.failure_rate

    @property
    def rank_point(self) -> int:
        return (self.passed1 + self.passed2) - self.failed

    @property
    def level(self) -> int:
        return level_for_rank_point(self.rank_point)


class VocabularyItem(BaseModel):
    id: str = Field(..., min_length=1)
    table_id: str = ""
    cols: Dict[str, str] = Field(default_factory=dict)
    stats: PracticeStatistics = Field(default_factory=PracticeStatistics)
    tags: List[str] = Field(default_factory=list)

    def value(self, column: str) -> str:
        return (self.cols.get(column) or "").strip()


class VocabTable(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    columns: List[str] = Field(default_factory=list)
    rows: List[VocabularyItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _claim_rows(self) -> "VocabTable":
        seen = set()
        for row in self.rows:
            if row.id in seen:
                raise ValueError(f"row id {row.id} appears twice in table {self.id}")
            seen.add(row.id)
            if not row.table_id:
                row.table_id = self.id
            elif row.table_id != self.id:
                raise ValueError(f"row {row.id} belongs to table {row.table_id}, not {self.id}")
        return self

    def find_row(self, item_id: str) -> Optional[VocabularyItem]:
        for row in self.rows:
            if row.id == item_id:
                return row
        return None

    @property
    def max_in_queue(self) -> int:
        return max((row.stats.in_queue for row in self.rows), default=0)


class Relation(BaseModel):
    id: str = Field(..., min_length=1)
    table_id: str = Field(..., min_length=1)
    name: str = ""
    question_cols: List[str] = Field(..., min_length=1)
    answer_cols: List[str] = Field(..., min_length=1)
    modes: List[StudyMode] = Field(..., min_length=1)

    def compatible_modes(self, selected: Iterable[StudyMode]) -> List[StudyMode]:
        wanted = set(selected)
        return [mode for mode in self.modes if mode in wanted]


class Deck(BaseModel):
    tables: List[VocabTable] = Field(default_factory=list)
    relations: List[Relation] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_row_ids(self) -> "Deck":
        # sessions and results identify rows by id alone
        owners: Dict[str, str] = {}
        for table in self.tables:
            for row in table.rows:
                if row.id in owners:
                    raise ValueError(f"row id {row.id} is used in table {owners[row.id]} and table {table.id}")
                owners[row.id] = table.id
        return self

    def table(self, table_id: str) -> Optional[VocabTable]:
        for table in self.tables:
            if table.id == table_id:
                return table
        return None

    def relations_for(self, table_id: str) -> List[Relation]:
        return [relation for relation in self.relations if relation.table_id == table_id]


class SortRule(BaseModel):
    column: str = Field(..., min_length=1)
    direction: Literal["asc", "desc"] = "desc"


class SelectionPolicy(BaseModel):
    """Which words go into a session and how they are asked.

    Field names are accepted both in snake_case and in the camelCase used by
    the settings screen (``selectedTableIds``, ``wordCount``...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    mode: Literal["table", "criteria"] = "table"
    selected_table_ids: List[str] = Field(default_factory=list)
    selected_relation_ids: List[str] = Field(default_factory=list)
    random_relation: bool = False
    selected_modes: List[StudyMode] = Field(default_factory=lambda: list(ALL_MODES))
    randomize_modes: bool = False
    word_count: int = 20
    is_manual_mode: bool = False
    manual_word_ids: List[str] = Field(default_factory=list)
    word_selection_strategy: Literal["holistic", "perTable"] = "holistic"
    per_table_sorts: Dict[str, List[SortRule]] = Field(default_factory=dict)
    queue_composition_strategy: Literal["balanced", "percentage"] = "balanced"
    table_percentages: Dict[str, float] = Field(default_factory=dict)
    criteria_sorts: List[SortRule] = Field(default_factory=list)

    @property
    def regenerates_questions(self) -> bool:
        return self.random_relation or self.randomize_modes


class StudyQuestion(BaseModel):
    """One presentation of an item. ``answer_text`` is always the true answer;
    for true/false questions ``shown_answer`` is the statement displayed."""

    model_config = ConfigDict(frozen=True)

    id: str
    mode: StudyMode
    item: VocabularyItem
    relation: Relation
    question_text: str
    answer_text: str
    mcq_options: Optional[Tuple[str, ...]] = None
    tf_is_correct: Optional[bool] = None
    shown_answer: Optional[str] = None
    scrambled_parts: Optional[Tuple[str, ...]] = None

    @property
    def item_id(self) -> str:
        return self.item.id

    @property
    def table_id(self) -> str:
        return self.item.table_id

    @property
    def expected_response(self) -> str:
        if self.mode is StudyMode.TF:
            return "True" if self.tf_is_correct else "False"
        return self.answer_text


class WordResult(BaseModel):
    item_id: str
    table_id: str
    passed1: int = 0
    passed2: int = 0
    failed: int = 0


class SessionResult(BaseModel):
    words: List[WordResult] = Field(default_factory=list)
    elapsed_seconds: int = 0
    xp_delta: int = 0


class AbandonedWord(BaseModel):
    item_id: str
    table_id: str


def _find_row(tables: Sequence[VocabTable], table_id: str, item_id: str) -> Optional[VocabularyItem]:
    for table in tables:
        if table.id == table_id:
            return table.find_row(item_id)
    return None


def apply_session_result(
    tables: Sequence[VocabTable],
    result: SessionResult,
    now: Optional[datetime] = None,
) -> int:
    """Fold a finished session's tallies into the rows' statistics.

    Returns how many rows were updated.
    """
    moment = now or now_utc()
    updated = 0
    for word in result.words:
        row = _find_row(tables, word.table_id, word.item_id)
        if row is None:
            logger.debug("Skipping result for unknown row %s in table %s", word.item_id, word.table_id)
            continue
        stats = row.stats
        stats.passed1 += word.passed1
        stats.passed2 += word.passed2
        stats.failed += word.failed
        stats.total_attempts = stats.passed1 + stats.passed2 + stats.failed
        stats.in_queue += 1
        stats.quit_queue = False
        stats.last_practiced_at = moment
        updated += 1
    logger.info("Applied session result to %d rows", updated)
    return updated


def mark_abandoned(tables: Sequence[VocabTable], abandoned: Iterable[AbandonedWord]) -> int:
    marked = 0
    for word in abandoned:
        row = _find_row(tables, word.table_id, word.item_id)
        if row is None:
            logger.debug("Skipping quit flag for unknown row %s in table %s", word.item_id, word.table_id)
            continue
        row.stats.quit_queue = True
        marked += 1
    return marked


def session_xp_gain(result: SessionResult) -> int:
    return SESSION_COMPLETE_BONUS + result.xp_delta
