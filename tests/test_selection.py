from datetime import datetime, timedelta, timezone

import pytest

from study import (
    applicable_relations,
    balanced_allocation,
    is_table_eligible,
    percentage_allocation,
    select_candidates,
    sort_items,
    ScoreContext,
)
from tests.utils import build_item, build_relation, build_table
from vocab import SelectionPolicy, SortRule, StudyMode, VocabTable

NOW = datetime(2026, 3, 15, tzinfo=timezone.utc)


def policy_for(*table_ids, **overrides) -> SelectionPolicy:
    settings = dict(selected_table_ids=list(table_ids), random_relation=True, word_count=10)
    settings.update(overrides)
    return SelectionPolicy(**settings)


def sized_table(table_id: str, size: int) -> VocabTable:
    return build_table(table_id, [(f"{table_id} word {n}", f"{table_id} wort {n}") for n in range(size)])


def test_balanced_allocation_gives_remainder_to_first_tables():
    assert balanced_allocation(10, 3) == [4, 3, 3]
    assert balanced_allocation(11, 3) == [4, 4, 3]
    assert balanced_allocation(2, 3) == [1, 1, 0]
    assert balanced_allocation(5, 0) == []


def test_percentage_allocation_sums_to_word_count():
    assert percentage_allocation(10, ["a", "b", "c"], {"a": 50, "b": 25, "c": 25}) == [5, 3, 2]
    assert percentage_allocation(7, ["a", "b"], {"a": 1, "b": 2}) == [2, 5]


def test_percentage_allocation_without_percentages_leaves_everything_to_last_table():
    assert percentage_allocation(6, ["a", "b", "c"], {}) == [0, 0, 6]


def test_balanced_three_tables_with_a_short_table():
    tables = [sized_table("t1", 2), sized_table("t2", 5), sized_table("t3", 6)]
    relations = [build_relation(f"r-{table.id}", table.id) for table in tables]
    policy = policy_for("t1", "t2", "t3", word_selection_strategy="perTable")

    picked = select_candidates(tables, relations, policy, now=NOW)

    per_table = [sum(1 for item in picked if item.table_id == table.id) for table in tables]
    assert per_table == [2, 3, 3]
    assert len(picked) == 8


def test_percentage_composition_in_criteria_mode():
    tables = [sized_table("t1", 10), sized_table("t2", 10)]
    relations = [build_relation(f"r-{table.id}", table.id) for table in tables]
    policy = policy_for(
        "t1",
        "t2",
        mode="criteria",
        criteria_sorts=[SortRule(column="Priority Score", direction="desc")],
        queue_composition_strategy="percentage",
        table_percentages={"t1": 70, "t2": 30},
    )

    picked = select_candidates(tables, relations, policy, now=NOW)

    assert [item.table_id for item in picked].count("t1") == 7
    assert [item.table_id for item in picked].count("t2") == 3


def test_holistic_selection_orders_by_priority():
    table = VocabTable(
        id="animals",
        columns=["English", "German"],
        rows=[
            build_item("mastered", english="cat", german="die Katze", passed1=20, passed2=20, total_attempts=40,
                       in_queue=5, last_practiced_at=NOW),
            build_item("quit", english="dog", german="der Hund", quit_queue=True, in_queue=5,
                       last_practiced_at=NOW - timedelta(days=1)),
            build_item("new", english="horse", german="das Pferd"),
        ],
    )
    policy = policy_for("animals", word_count=2)

    picked = select_candidates([table], [build_relation("r", "animals")], policy, now=NOW)

    # new: 0.2 + 0.05 + 0.2 + 0.1 = 0.55, quit: 0.2 + 0.05 + 0.02 + 0.2 = 0.47
    assert [item.id for item in picked] == ["new", "quit"]


def test_selection_never_exceeds_word_count(animals, colors, deck):
    policy = policy_for("animals", "colors", word_count=4)
    assert len(select_candidates(deck.tables, deck.relations, policy)) == 4


@pytest.mark.parametrize("word_count", [0, -3])
def test_non_positive_word_count_selects_nothing(deck, word_count):
    assert select_candidates(deck.tables, deck.relations, policy_for("animals", word_count=word_count)) == []


def test_tables_without_a_matching_mode_are_not_eligible(animals):
    typing_only = build_relation("typing", "animals", modes=[StudyMode.TYPING])
    policy = policy_for("animals", selected_modes=[StudyMode.MCQ])
    assert not is_table_eligible("animals", [typing_only], policy)
    assert select_candidates([animals], [typing_only], policy) == []


def test_explicit_relations_must_belong_to_the_table(animals, colors, deck):
    policy = policy_for("animals", "colors", random_relation=False, selected_relation_ids=["colors-en-de"])
    picked = select_candidates(deck.tables, deck.relations, policy)
    assert picked
    assert {item.table_id for item in picked} == {"colors"}


def test_applicable_relations_fall_back_to_any_relation_of_the_table():
    mcq = build_relation("mcq", "animals", modes=[StudyMode.MCQ])
    typing = build_relation("typing", "animals", modes=[StudyMode.TYPING])
    other = build_relation("other", "colors")
    relations = [mcq, typing, other]

    random_policy = policy_for("animals", selected_modes=[StudyMode.TYPING])
    assert applicable_relations("animals", relations, random_policy) == [typing]

    explicit = policy_for("animals", random_relation=False, selected_relation_ids=["mcq"])
    assert applicable_relations("animals", relations, explicit) == [mcq]

    nothing_selected = policy_for("animals", random_relation=False, selected_relation_ids=["other"])
    assert applicable_relations("animals", relations, nothing_selected) == [mcq, typing]


def test_criteria_rules_break_ties_in_order():
    table = VocabTable(
        id="animals",
        rows=[
            build_item("a", failed=2, passed1=5, total_attempts=7),
            build_item("b", failed=4, passed1=1, total_attempts=5),
            build_item("c", failed=2, passed1=1, total_attempts=3),
        ],
    )
    policy = policy_for(
        "animals",
        mode="criteria",
        criteria_sorts=[SortRule(column="Failed", direction="desc"), SortRule(column="Rank Point", direction="asc")],
    )

    picked = select_candidates([table], [build_relation("r", "animals")], policy)

    assert [item.id for item in picked] == ["b", "c", "a"]


def test_criteria_mode_needs_sort_rules(deck):
    assert select_candidates(deck.tables, deck.relations, policy_for("animals", mode="criteria")) == []


def test_unknown_criteria_columns_are_ignored():
    items = [build_item("x", english="b"), build_item("y", english="a")]
    ordered = sort_items(items, [SortRule(column="English", direction="asc")], ScoreContext({}))
    assert [item.id for item in ordered] == ["x", "y"]


def test_per_table_sorts_may_use_table_columns(animals):
    policy = policy_for(
        "animals",
        word_selection_strategy="perTable",
        per_table_sorts={"animals": [SortRule(column="English", direction="asc")]},
        word_count=3,
    )
    picked = select_candidates([animals], [build_relation("r", "animals")], policy)
    assert [item.cols["English"] for item in picked] == ["bird", "cat", "dog"]


def test_last_practiced_sort_puts_never_practiced_first_when_ascending():
    table = VocabTable(
        id="animals",
        rows=[
            build_item("recent", last_practiced_at=NOW),
            build_item("never"),
            build_item("old", last_practiced_at=NOW - timedelta(days=30)),
        ],
    )
    ordered = sort_items(table.rows, [SortRule(column="Last Practiced", direction="asc")], ScoreContext({}))
    assert [item.id for item in ordered] == ["never", "old", "recent"]


def test_manual_mode_keeps_the_given_order(animals):
    policy = policy_for(
        "animals",
        is_manual_mode=True,
        manual_word_ids=["animals-3", "missing", "animals-1", "animals-3"],
    )
    picked = select_candidates([animals], [build_relation("r", "animals")], policy)
    assert [item.id for item in picked] == ["animals-3", "animals-1"]


def test_policy_accepts_settings_screen_field_names():
    policy = SelectionPolicy.model_validate(
        {
            "mode": "criteria",
            "selectedTableIds": ["animals"],
            "wordCount": 3,
            "randomRelation": True,
            "queueCompositionStrategy": "percentage",
            "tablePercentages": {"animals": 100},
            "criteriaSorts": [{"column": "Failed", "direction": "asc"}],
        }
    )
    assert policy.selected_table_ids == ["animals"]
    assert policy.word_count == 3
    assert policy.criteria_sorts[0].direction == "asc"
    assert policy.regenerates_questions
