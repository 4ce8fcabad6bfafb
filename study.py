"""
Adaptive study queue engine.

Scores vocabulary rows, picks the ones that go into a session, turns them into
questions (multiple choice, true/false, typing, scrambled) and drives a live
session in which every word has to be answered correctly twice in a row
before it leaves the queue.

All randomness goes through one ``random.Random`` instance that callers may
inject, so a session can be replayed exactly.
"""
from __future__ import annotations

import logging
import math
import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel

from vocab import (
    ALL_MODES,
    AbandonedWord,
    PracticeStatistics,
    Relation,
    SelectionPolicy,
    SessionItemState,
    SessionResult,
    SortRule,
    StudyMode,
    StudyQuestion,
    VocabTable,
    VocabularyItem,
    WordResult,
    as_utc,
    now_utc,
)

logger = logging.getLogger(__name__)

ANSWER_SEPARATOR = " / "
MCQ_DISTRACTORS = 3
TF_DISTRACTORS = 1
SCRAMBLE_SPLIT_INTO = 4
FAIL_REQUEUE_OFFSET = 2
XP_CORRECT = 10
XP_WRONG = -5

# priority score weights, summing to 1.0
RANK_WEIGHT = 0.2
FAILURE_WEIGHT = 0.2
LEVEL_WEIGHT = 0.1
RECENCY_WEIGHT = 0.2
QUIT_WEIGHT = 0.2
IN_QUEUE_WEIGHT = 0.1

# (days since last practice, weight) steps; anything older weighs 1.0
RECENCY_STEPS = ((2, 0.1), (5, 0.5), (10, 0.8))


def normalize_answer(value: str, collapse_spaces: bool = False) -> str:
    cleaned = (value or "").strip().casefold()
    if collapse_spaces:
        cleaned = " ".join(cleaned.split())
    return cleaned


def days_since(moment: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Whole calendar days between ``moment`` and today; never practiced is infinitely old."""
    if moment is None:
        return math.inf
    today = as_utc(now or now_utc()).date()
    return float(abs((today - as_utc(moment).date()).days))


def recency_weight(days: float) -> float:
    for limit, weight in RECENCY_STEPS:
        if days < limit:
            return weight
    return 1.0


def weighted_priority(
    rank_point: int,
    failure_rate: float,
    level: int,
    days_since_practice: float,
    quit_queue: bool,
    in_queue: int,
    max_in_queue: int,
) -> float:
    # rank points below zero count like zero so the term stays within [0, 1]
    rank_term = 1.0 / max(rank_point + 1, 1)
    level_term = 1.0 / (level + 1)
    quit_term = 1.0 if quit_queue else 0.0
    in_queue_term = max(0.0, 1.0 - in_queue / max(max_in_queue, 1))
    return (
        RANK_WEIGHT * rank_term
        + FAILURE_WEIGHT * failure_rate
        + LEVEL_WEIGHT * level_term
        + RECENCY_WEIGHT * recency_weight(days_since_practice)
        + QUIT_WEIGHT * quit_term
        + IN_QUEUE_WEIGHT * in_queue_term
    )


def priority_score(stats: PracticeStatistics, max_in_queue: int, now: Optional[datetime] = None) -> float:
    """Urgency of practicing a row, between 0 and 1; higher comes first."""
    return weighted_priority(
        rank_point=stats.rank_point,
        failure_rate=stats.failure_rate,
        level=stats.level,
        days_since_practice=days_since(stats.last_practiced_at, now),
        quit_queue=stats.quit_queue,
        in_queue=stats.in_queue,
        max_in_queue=max_in_queue,
    )


class ScoreContext:
    """Per-table ``in_queue`` ceilings and the reference time used for scoring."""

    def __init__(self, ceilings: Dict[str, int], now: Optional[datetime] = None) -> None:
        self.ceilings = ceilings
        self.now = now

    @classmethod
    def per_table(cls, tables: Iterable[VocabTable], now: Optional[datetime] = None) -> "ScoreContext":
        return cls({table.id: table.max_in_queue for table in tables}, now)

    @classmethod
    def pooled(cls, items: Sequence[VocabularyItem], now: Optional[datetime] = None) -> "ScoreContext":
        ceiling = max((item.stats.in_queue for item in items), default=0)
        return cls({item.table_id: ceiling for item in items}, now)

    def score(self, item: VocabularyItem) -> float:
        return priority_score(item.stats, self.ceilings.get(item.table_id, 1), self.now)


@dataclass(frozen=True)
class NumericStat:
    field: str

    def value(self, item: VocabularyItem, context: ScoreContext) -> float:
        raw = getattr(item.stats, self.field, None)
        return -math.inf if raw is None else float(raw)


@dataclass(frozen=True)
class DateStat:
    field: str

    def value(self, item: VocabularyItem, context: ScoreContext) -> float:
        raw = getattr(item.stats, self.field, None)
        return as_utc(raw).timestamp() if raw is not None else 0.0


@dataclass(frozen=True)
class TextColumn:
    column: str

    def value(self, item: VocabularyItem, context: ScoreContext) -> str:
        return item.value(self.column).casefold()


@dataclass(frozen=True)
class PriorityScoreKey:
    def value(self, item: VocabularyItem, context: ScoreContext) -> float:
        return context.score(item)


SortKey = Union[NumericStat, DateStat, TextColumn, PriorityScoreKey]

STAT_SORT_KEYS: Dict[str, SortKey] = {
    "Priority Score": PriorityScoreKey(),
    "Rank Point": NumericStat("rank_point"),
    "Success Rate": NumericStat("success_rate"),
    "Level": NumericStat("level"),
    "Last Practiced": DateStat("last_practiced_at"),
    "Passed1": NumericStat("passed1"),
    "Passed2": NumericStat("passed2"),
    "Failed": NumericStat("failed"),
    "Attempts": NumericStat("total_attempts"),
    "In Queue Count": NumericStat("in_queue"),
    "Quit Queue": NumericStat("quit_queue"),
}


def sort_key_for_label(label: str, allow_columns: bool = False) -> Optional[SortKey]:
    key = STAT_SORT_KEYS.get(label)
    if key is not None:
        return key
    if allow_columns:
        return TextColumn(label)
    return None


def sort_items(
    items: Sequence[VocabularyItem],
    rules: Sequence[SortRule],
    context: ScoreContext,
    allow_columns: bool = False,
) -> List[VocabularyItem]:
    """Order ``items`` by ``rules``; earlier rules win, later ones break ties.

    Rules whose label resolves to no key are ignored.
    """
    ordered = list(items)
    # stable sorts applied from the least significant rule up
    for rule in reversed(rules):
        key = sort_key_for_label(rule.column, allow_columns=allow_columns)
        if key is None:
            logger.debug("Ignoring unknown sort column %r", rule.column)
            continue
        ordered.sort(key=lambda item, key=key: key.value(item, context), reverse=rule.direction == "desc")
    return ordered


def applicable_relations(
    table_id: str,
    relations: Sequence[Relation],
    policy: SelectionPolicy,
) -> List[Relation]:
    """Relations an item of ``table_id`` may be asked through.

    Precedence:
      1. ``random_relation``: every relation of the table offering a selected mode;
         otherwise the explicitly selected relations of the table.
      2. if that is empty: any relation of the table.
    """
    on_table = [relation for relation in relations if relation.table_id == table_id]
    if policy.random_relation:
        chosen = [relation for relation in on_table if relation.compatible_modes(policy.selected_modes)]
    else:
        wanted = set(policy.selected_relation_ids)
        chosen = [relation for relation in on_table if relation.id in wanted]
    if not chosen:
        chosen = on_table
    return chosen


def is_table_eligible(table_id: str, relations: Sequence[Relation], policy: SelectionPolicy) -> bool:
    on_table = [relation for relation in relations if relation.table_id == table_id]
    if not any(relation.compatible_modes(policy.selected_modes) for relation in on_table):
        return False
    if policy.random_relation:
        return True
    wanted = set(policy.selected_relation_ids)
    return any(relation.id in wanted for relation in on_table)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def balanced_allocation(total: int, table_count: int) -> List[int]:
    if table_count <= 0:
        return []
    share, remainder = divmod(max(total, 0), table_count)
    return [share + (1 if index < remainder else 0) for index in range(table_count)]


def percentage_allocation(total: int, table_ids: Sequence[str], percentages: Dict[str, float]) -> List[int]:
    """Non-final tables get their rounded share, the final table takes what is left."""
    if not table_ids:
        return []
    total = max(total, 0)
    percentage_sum = sum(percentages.get(table_id, 0) for table_id in table_ids) or 100
    allocations: List[int] = []
    taken = 0
    for table_id in table_ids[:-1]:
        take = round_half_up(total * percentages.get(table_id, 0) / percentage_sum)
        allocations.append(take)
        taken += take
    allocations.append(max(total - taken, 0))
    return allocations


def compose_by_table(
    ranked: Sequence[Tuple[str, List[VocabularyItem]]],
    policy: SelectionPolicy,
) -> List[VocabularyItem]:
    table_ids = [table_id for table_id, _ in ranked]
    if policy.queue_composition_strategy == "percentage" and len(table_ids) > 1:
        allocations = percentage_allocation(policy.word_count, table_ids, policy.table_percentages)
    else:
        allocations = balanced_allocation(policy.word_count, len(table_ids))
    composed: List[VocabularyItem] = []
    for (table_id, items), take in zip(ranked, allocations):
        if len(items) < take:
            logger.debug("Table %s supplies %d of %d requested words", table_id, len(items), take)
        composed.extend(items[:take])
    return composed[: policy.word_count]


def select_candidates(
    tables: Sequence[VocabTable],
    relations: Sequence[Relation],
    policy: SelectionPolicy,
    now: Optional[datetime] = None,
) -> List[VocabularyItem]:
    """Ordered list of at most ``policy.word_count`` eligible items.

    Configuration problems (nothing selected, non-positive word count) give an
    empty list; it is up to the caller to tell the user.
    """
    if policy.word_count <= 0 or not policy.selected_table_ids or not policy.selected_modes:
        logger.info("Nothing to select: word_count=%s tables=%s modes=%s",
                    policy.word_count, policy.selected_table_ids, policy.selected_modes)
        return []

    by_id = {table.id: table for table in tables}
    selected: List[VocabTable] = []
    for table_id in dict.fromkeys(policy.selected_table_ids):
        table = by_id.get(table_id)
        if table is not None:
            selected.append(table)
    eligible = [table for table in selected if is_table_eligible(table.id, relations, policy)]
    if not eligible:
        logger.info("No selected table has a relation matching the chosen modes")
        return []

    if policy.mode == "criteria":
        return _select_by_criteria(eligible, policy, now)
    if policy.is_manual_mode:
        return _select_manual(eligible, policy)
    if policy.word_selection_strategy == "perTable":
        return _select_per_table(eligible, policy, now)
    return _select_holistic(eligible, policy, now)


def _select_manual(tables: Sequence[VocabTable], policy: SelectionPolicy) -> List[VocabularyItem]:
    rows = {row.id: row for table in tables for row in table.rows}
    picked = [rows[item_id] for item_id in dict.fromkeys(policy.manual_word_ids) if item_id in rows]
    return picked[: policy.word_count]


def _select_holistic(
    tables: Sequence[VocabTable], policy: SelectionPolicy, now: Optional[datetime]
) -> List[VocabularyItem]:
    context = ScoreContext.per_table(tables, now)
    pool = [row for table in tables for row in table.rows]
    pool.sort(key=context.score, reverse=True)
    return pool[: policy.word_count]


def _select_per_table(
    tables: Sequence[VocabTable], policy: SelectionPolicy, now: Optional[datetime]
) -> List[VocabularyItem]:
    context = ScoreContext.per_table(tables, now)
    ranked = [
        (table.id, sort_items(table.rows, policy.per_table_sorts.get(table.id, []), context, allow_columns=True))
        for table in tables
    ]
    return compose_by_table(ranked, policy)


def _select_by_criteria(
    tables: Sequence[VocabTable], policy: SelectionPolicy, now: Optional[datetime]
) -> List[VocabularyItem]:
    if not policy.criteria_sorts:
        logger.info("Criteria mode without sort rules selects nothing")
        return []
    if len(tables) > 1:
        ranked = [
            (table.id, sort_items(table.rows, policy.criteria_sorts, ScoreContext.pooled(table.rows, now)))
            for table in tables
        ]
        return compose_by_table(ranked, policy)
    pool = [row for table in tables for row in table.rows]
    return sort_items(pool, policy.criteria_sorts, ScoreContext.pooled(pool, now))[: policy.word_count]


def render_answer(item: VocabularyItem, columns: Sequence[str]) -> str:
    return ANSWER_SEPARATOR.join(item.value(column) for column in columns)


def render_question(item: VocabularyItem, relation: Relation) -> str:
    lines = ["Question:"]
    lines += [f"{column}: {item.value(column)}" for column in relation.question_cols]
    lines += ["", "Answer is:"]
    lines += [f"{column}: ????" for column in relation.answer_cols]
    return "\n".join(lines)


def find_distractors(
    pool: Sequence[VocabularyItem],
    answer_cols: Sequence[str],
    item: VocabularyItem,
    count: int,
    rng: random.Random,
) -> List[str]:
    """Answers of other rows that the grader would not accept for ``item``."""
    taken = {normalize_answer(render_answer(item, answer_cols))}
    others = [row for row in pool if row.id != item.id]
    rng.shuffle(others)
    distractors: List[str] = []
    for row in others:
        if len(distractors) >= count:
            break
        if not any(row.value(column) for column in answer_cols):
            continue
        text = render_answer(row, answer_cols)
        key = normalize_answer(text)
        if key in taken:
            continue
        taken.add(key)
        distractors.append(text)
    return distractors


def scramble_parts(text: str, rng: random.Random, split_into: int = SCRAMBLE_SPLIT_INTO) -> Optional[List[str]]:
    words = text.split()
    if len(words) < 2:
        return None
    part_count = min(split_into, len(words))
    size = math.ceil(len(words) / part_count)
    parts = [" ".join(words[start:start + size]) for start in range(0, len(words), size)]
    shuffled = parts[:]
    rng.shuffle(shuffled)
    if shuffled == parts:
        shuffled = shuffled[1:] + shuffled[:1]
    return shuffled


def synthesize_question(
    item: VocabularyItem,
    relation: Relation,
    mode: StudyMode,
    pool: Sequence[VocabularyItem],
    rng: Optional[random.Random] = None,
) -> Optional[StudyQuestion]:
    """Build one question for ``item`` or return None when the data cannot support it."""
    rng = rng or random.Random()
    if not any(item.value(column) for column in relation.question_cols):
        logger.debug("Row %s has no question text for relation %s", item.id, relation.id)
        return None
    if not any(item.value(column) for column in relation.answer_cols):
        logger.debug("Row %s has no answer text for relation %s", item.id, relation.id)
        return None

    answer = render_answer(item, relation.answer_cols)
    base = {
        "id": f"{item.id}-{relation.id}-{uuid.uuid4().hex[:8]}",
        "mode": mode,
        "item": item,
        "relation": relation,
        "question_text": render_question(item, relation),
        "answer_text": answer,
    }

    if mode is StudyMode.MCQ:
        distractors = find_distractors(pool, relation.answer_cols, item, MCQ_DISTRACTORS, rng)
        if not distractors:
            logger.debug("No distractors for row %s", item.id)
            return None
        options = [answer] + distractors
        rng.shuffle(options)
        return StudyQuestion(**base, mcq_options=tuple(options))
    if mode is StudyMode.TF:
        if rng.random() < 0.5:
            return StudyQuestion(**base, tf_is_correct=True, shown_answer=answer)
        distractors = find_distractors(pool, relation.answer_cols, item, TF_DISTRACTORS, rng)
        if not distractors:
            logger.debug("No false statement available for row %s", item.id)
            return None
        return StudyQuestion(**base, tf_is_correct=False, shown_answer=distractors[0])
    if mode is StudyMode.TYPING:
        return StudyQuestion(**base)
    if mode is StudyMode.SCRAMBLED:
        parts = scramble_parts(answer, rng)
        if parts is None:
            return None
        return StudyQuestion(**base, scrambled_parts=tuple(parts))
    return None


def is_correct(question: StudyQuestion, answer: str) -> bool:
    if question.mode is StudyMode.TF:
        return answer == question.expected_response
    collapse = question.mode is StudyMode.SCRAMBLED
    return normalize_answer(answer, collapse) == normalize_answer(question.answer_text, collapse)


class ModeCycle:
    """Walks the selected modes round-robin across a whole generation run."""

    def __init__(self, modes: Sequence[StudyMode]) -> None:
        self.modes = list(modes)
        self.index = 0

    def next_compatible(self, compatible: Sequence[StudyMode]) -> Optional[StudyMode]:
        for _ in range(len(self.modes)):
            candidate = self.modes[self.index % len(self.modes)]
            self.index += 1
            if candidate in compatible:
                return candidate
        return None


def choose_mode(
    relation: Relation,
    policy: SelectionPolicy,
    rng: random.Random,
    cycle: Optional[ModeCycle] = None,
) -> Optional[StudyMode]:
    compatible = relation.compatible_modes(policy.selected_modes or ALL_MODES)
    if not compatible:
        return None
    if policy.randomize_modes or cycle is None:
        return rng.choice(compatible)
    return cycle.next_compatible(compatible) or compatible[0]


def _pools(tables: Sequence[VocabTable]) -> Dict[str, List[VocabularyItem]]:
    return {table.id: table.rows for table in tables}


def generate_session(
    policy: SelectionPolicy,
    tables: Sequence[VocabTable],
    relations: Sequence[Relation],
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> List[StudyQuestion]:
    """Initial, shuffled question queue; empty means no session can start."""
    rng = rng or random.Random()
    candidates = select_candidates(tables, relations, policy, now=now)
    pools = _pools(tables)
    cycle = ModeCycle(policy.selected_modes)
    questions: List[StudyQuestion] = []
    for item in candidates:
        options = applicable_relations(item.table_id, relations, policy)
        if not options:
            continue
        relation = rng.choice(options)
        mode = choose_mode(relation, policy, rng, cycle)
        if mode is None:
            logger.debug("Relation %s offers none of the selected modes", relation.id)
            continue
        question = synthesize_question(item, relation, mode, pools.get(item.table_id, []), rng)
        if question is not None:
            questions.append(question)
    rng.shuffle(questions)
    logger.info("Generated %d questions from %d candidates", len(questions), len(candidates))
    return questions


def regenerate_question(
    item: VocabularyItem,
    policy: SelectionPolicy,
    tables: Sequence[VocabTable],
    relations: Sequence[Relation],
    rng: Optional[random.Random] = None,
) -> Optional[StudyQuestion]:
    rng = rng or random.Random()
    options = applicable_relations(item.table_id, relations, policy)
    if not options:
        return None
    relation = rng.choice(options)
    mode = choose_mode(relation, policy, rng)
    if mode is None:
        return None
    return synthesize_question(item, relation, mode, _pools(tables).get(item.table_id, []), rng)


class SessionError(RuntimeError):
    pass


class SessionClosedError(SessionError):
    pass


class QuestionIndexError(SessionError, IndexError):
    pass


class StudyQueue:
    """The questions still to answer, with named relocation operations."""

    def __init__(self, questions: Iterable[StudyQuestion] = ()) -> None:
        self._slots: List[StudyQuestion] = list(questions)

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, index: int) -> StudyQuestion:
        return self._slots[index]

    def __iter__(self) -> Iterator[StudyQuestion]:
        return iter(self._slots)

    def index_of(self, item_id: str) -> int:
        for index, question in enumerate(self._slots):
            if question.item_id == item_id:
                return index
        return -1

    def remove(self, index: int) -> StudyQuestion:
        return self._slots.pop(index)

    def replace(self, index: int, question: StudyQuestion) -> None:
        self._slots[index] = question

    def move_to_back(self, index: int) -> int:
        self._slots.append(self._slots.pop(index))
        return len(self._slots) - 1

    def move_forward_by(self, index: int, offset: int) -> int:
        question = self._slots.pop(index)
        target = min(index + offset, len(self._slots))
        self._slots.insert(target, question)
        return target


class AnswerOutcome(BaseModel):
    correct: bool
    previous_state: SessionItemState
    new_state: SessionItemState
    question: StudyQuestion
    completed: bool


class StudySession:
    """One run from the initial queue until every word is mastered or the user quits.

    A word is mastered after two correct answers with no failure in between.
    A correct first answer sends it to the back of the queue; a wrong answer
    puts it two places further on so it comes back soon.
    """

    def __init__(
        self,
        questions: Sequence[StudyQuestion],
        policy: Optional[SelectionPolicy] = None,
        tables: Sequence[VocabTable] = (),
        relations: Sequence[Relation] = (),
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not questions:
            raise SessionError("A session needs at least one question")
        self.policy = policy
        self.tables = list(tables)
        self.relations = list(relations)
        self.rng = rng or random.Random()
        self.clock = clock
        self.queue = StudyQueue(questions)
        self.xp = 0
        self._initial = list(questions)
        self._states: Dict[str, SessionItemState] = {}
        self._results: Dict[str, WordResult] = {}
        for question in questions:
            if question.item_id in self._states:
                raise SessionError(f"Item {question.item_id} appears more than once in the queue")
            self._states[question.item_id] = SessionItemState.UNSEEN
            self._results[question.item_id] = WordResult(item_id=question.item_id, table_id=question.table_id)
        self._started = clock()
        self._stopped: Optional[float] = None
        self._closed = False

    @property
    def is_complete(self) -> bool:
        return not self.queue

    @property
    def is_open(self) -> bool:
        return not (self._closed or self.is_complete)

    @property
    def current_question(self) -> Optional[StudyQuestion]:
        return self.queue[0] if self.queue else None

    @property
    def remaining(self) -> int:
        return len(self.queue)

    @property
    def elapsed_seconds(self) -> int:
        end = self._stopped if self._stopped is not None else self.clock()
        return int(round(end - self._started))

    def state_of(self, item_id: str) -> SessionItemState:
        return self._states[item_id]

    @property
    def states(self) -> Dict[str, SessionItemState]:
        return dict(self._states)

    def _unique_items(self) -> List[VocabularyItem]:
        seen: Dict[str, VocabularyItem] = {}
        for question in self._initial:
            seen.setdefault(question.item_id, question.item)
        return list(seen.values())

    @property
    def mastered(self) -> List[VocabularyItem]:
        return [item for item in self._unique_items() if self._states[item.id] is SessionItemState.PASS2]

    @property
    def difficult_words(self) -> List[Tuple[VocabularyItem, int]]:
        failures = [(item, self._results[item.id].failed) for item in self._unique_items()]
        failures = [entry for entry in failures if entry[1] > 0]
        failures.sort(key=lambda entry: entry[1], reverse=True)
        return failures

    def _stop_clock(self) -> None:
        if self._stopped is None:
            self._stopped = self.clock()

    def _requeue(self, index: int) -> None:
        if self.policy is None or not self.policy.regenerates_questions:
            return
        old = self.queue[index]
        fresh = regenerate_question(old.item, self.policy, self.tables, self.relations, self.rng)
        if fresh is None:
            logger.debug("Keeping previous question for row %s", old.item_id)
            return
        self.queue.replace(index, fresh)

    def submit_answer(self, index: int, answer: str) -> AnswerOutcome:
        if self._closed or self.is_complete:
            raise SessionClosedError("The session is already over")
        if not 0 <= index < len(self.queue):
            raise QuestionIndexError(f"No question at index {index} (queue has {len(self.queue)})")

        question = self.queue[index]
        item_id = question.item_id
        previous = self._states[item_id]
        tally = self._results[item_id]
        correct = is_correct(question, answer)

        if correct:
            self.xp += XP_CORRECT
            if previous is SessionItemState.PASS1:
                self._states[item_id] = SessionItemState.PASS2
                tally.passed1 += 1
                tally.passed2 += 1
                self.queue.remove(index)
            else:
                self._states[item_id] = SessionItemState.PASS1
                tally.passed1 += 1
                self._requeue(self.queue.move_to_back(index))
        else:
            self.xp += XP_WRONG
            self._states[item_id] = SessionItemState.FAIL
            tally.failed += 1
            self._requeue(self.queue.move_forward_by(index, FAIL_REQUEUE_OFFSET))

        if self.is_complete:
            self._stop_clock()
            logger.info("Session complete after %d seconds", self.elapsed_seconds)
        return AnswerOutcome(
            correct=correct,
            previous_state=previous,
            new_state=self._states[item_id],
            question=question,
            completed=self.is_complete,
        )

    def finish(self) -> SessionResult:
        """Tallies for every word that was actually asked. Closes the session."""
        self._closed = True
        self._stop_clock()
        words = [
            self._results[item.id].model_copy()
            for item in self._unique_items()
            if self._states[item.id] is not SessionItemState.UNSEEN
        ]
        return SessionResult(words=words, elapsed_seconds=self.elapsed_seconds, xp_delta=self.xp)

    def quit(self) -> List[AbandonedWord]:
        """Words left unmastered; the caller flags them for the next session."""
        self._closed = True
        self._stop_clock()
        abandoned = [
            AbandonedWord(item_id=item.id, table_id=item.table_id)
            for item in self._unique_items()
            if self._states[item.id] is not SessionItemState.PASS2
        ]
        logger.info("Session quit with %d unmastered words", len(abandoned))
        return abandoned
