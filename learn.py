#!/usr/bin/env python3
"""
Console vocabulary trainer.

Loads a deck (word tables plus question/answer relations) from a JSON file,
or builds a one-table deck from a CSV file, runs adaptive study sessions on it
and writes the updated practice statistics back to the deck file.
"""
from __future__ import annotations

import argparse
import csv
import logging
import os
import random
import sys
import uuid
from io import StringIO
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

import study
from vocab import (
    ALL_MODES,
    MODE_LABELS,
    QUIT_XP_PENALTY,
    Deck,
    Relation,
    SelectionPolicy,
    SessionResult,
    StudyMode,
    StudyQuestion,
    VocabTable,
    VocabularyItem,
    apply_session_result,
    mark_abandoned,
    session_xp_gain,
)

BASE_DIR = Path(__file__).resolve().parent
DECK_PATH = Path(os.environ.get("VOCAB_DECK_PATH", BASE_DIR / "deck.json"))
LOG_LEVEL = os.environ.get("VOCAB_LOG_LEVEL", "WARNING").upper()

DEFAULT_WORD_COUNT = 20

QUIT_COMMANDS = {"q", "quit", "exit"}
SHOW_COMMANDS = {"?", "help", "answer"}
TRUE_COMMANDS = {"t", "true", "y", "yes"}
FALSE_COMMANDS = {"f", "false", "n", "no"}

USE_COLORS = sys.stdout.isatty() and os.environ.get("NO_COLOR") is None
COLOR_RESET = "\033[0m"
COLOR_MODE = "\033[96m"  # cyan
COLOR_TITLE = "\033[93m"  # yellow
COLOR_GOOD = "\033[92m"  # green
COLOR_BAD = "\033[91m"  # red

logger = logging.getLogger(__name__)


def color_text(content: str, color_code: str) -> str:
    if not USE_COLORS:
        return content
    return f"{color_code}{content}{COLOR_RESET}"


def load_deck(path: Path) -> Deck:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Failed reading {path}: {e}") from e
    try:
        return Deck.model_validate_json(text)
    except ValidationError as e:
        raise ValueError(f"Invalid deck in {path}: {e}") from e


def save_deck(deck: Deck, path: Path) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(deck.model_dump_json(indent=2), encoding="utf-8")
    tmp.replace(path)


def parse_csv_content(text: str) -> List[List[str]]:
    reader = csv.reader(StringIO(text))
    rows: List[List[str]] = []
    for row in reader:
        if not row or not any(cell.strip() for cell in row):
            continue
        rows.append([cell.strip() for cell in row])
    return rows


def table_from_csv(text: str, name: str, table_id: Optional[str] = None) -> Tuple[VocabTable, List[str]]:
    """First row names the columns, every later row is a word."""
    rows = parse_csv_content(text)
    table_id = table_id or f"table-{uuid.uuid4().hex[:8]}"
    if not rows:
        return VocabTable(id=table_id, name=name), ["The file has no header row."]

    columns = rows[0]
    errors: List[str] = []
    words: List[VocabularyItem] = []
    for idx, row in enumerate(rows[1:], start=2):
        if len(row) > len(columns):
            errors.append(f"Line {idx}: expected at most {len(columns)} columns, got {len(row)}.")
            continue
        cells = row + [""] * (len(columns) - len(row))
        words.append(
            VocabularyItem(
                id=f"{table_id}-{idx - 1}",
                table_id=table_id,
                cols=dict(zip(columns, cells)),
            )
        )
    return VocabTable(id=table_id, name=name, columns=columns, rows=words), errors


def default_relation(table: VocabTable) -> Optional[Relation]:
    if len(table.columns) < 2:
        return None
    question, answer = table.columns[0], table.columns[1]
    return Relation(
        id=f"{table.id}-default",
        table_id=table.id,
        name=f"{question} -> {answer}",
        question_cols=[question],
        answer_cols=[answer],
        modes=list(ALL_MODES),
    )


def deck_from_csv(path: Path) -> Deck:
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        text = path.read_text(encoding="latin-1")
    except OSError as e:
        raise ValueError(f"Failed reading {path}: {e}") from e
    table, errors = table_from_csv(text, path.stem)
    for error in errors:
        print(f"  ! {error}")
    relation = default_relation(table)
    if relation is None:
        raise ValueError(f"{path} needs at least two columns (question and answer).")
    return Deck(tables=[table], relations=[relation])


def ask_yes_no(prompt: str) -> bool:
    while True:
        answer = input(prompt).strip().lower()
        if answer in {"y", "yes"}:
            return True
        if answer in {"n", "no"}:
            return False
        print("Please answer y/n.")


def choose_tables(deck: Deck) -> List[str]:
    print("\nWhich tables do you want to study?")
    for idx, table in enumerate(deck.tables, start=1):
        print(f"  {idx}) {table.name or table.id} ({len(table.rows)} words)")
    while True:
        raw = input("Numbers separated by commas (empty = all): ").strip()
        if not raw:
            return [table.id for table in deck.tables]
        try:
            picks = [int(bit) for bit in raw.replace(" ", "").split(",") if bit]
        except ValueError:
            print("Use table numbers, e.g. 1,3.")
            continue
        if picks and all(1 <= pick <= len(deck.tables) for pick in picks):
            return [deck.tables[pick - 1].id for pick in picks]
        print("Unknown table number, try again.")


def choose_modes() -> List[StudyMode]:
    print("\nQuestion types:")
    for idx, mode in enumerate(ALL_MODES, start=1):
        print(f"  {idx}) {MODE_LABELS[mode]}")
    while True:
        raw = input("Numbers separated by commas (empty = all): ").strip()
        if not raw:
            return list(ALL_MODES)
        try:
            picks = [int(bit) for bit in raw.replace(" ", "").split(",") if bit]
        except ValueError:
            print("Use mode numbers, e.g. 1,3.")
            continue
        if picks and all(1 <= pick <= len(ALL_MODES) for pick in picks):
            return [ALL_MODES[pick - 1] for pick in dict.fromkeys(picks)]
        print("Unknown mode number, try again.")


def prompt_word_count() -> int:
    while True:
        raw = input(f"How many words? (empty = {DEFAULT_WORD_COUNT}): ").strip()
        if not raw:
            return DEFAULT_WORD_COUNT
        if raw.isdigit() and int(raw) > 0:
            return int(raw)
        print("Enter a positive number.")


def build_policy(deck: Deck, table_ids: Sequence[str], modes: Sequence[StudyMode], word_count: int) -> SelectionPolicy:
    wanted = set(table_ids)
    return SelectionPolicy(
        mode="table",
        selected_table_ids=list(table_ids),
        selected_relation_ids=[relation.id for relation in deck.relations if relation.table_id in wanted],
        selected_modes=list(modes),
        randomize_modes=True,
        word_count=word_count,
    )


def show_question(question: StudyQuestion) -> None:
    print(color_text(MODE_LABELS[question.mode].upper(), COLOR_MODE))
    print(color_text(question.question_text, COLOR_TITLE))
    if question.mode is StudyMode.MCQ:
        for idx, option in enumerate(question.mcq_options or (), start=1):
            print(f"  {idx}) {option}")
    elif question.mode is StudyMode.TF:
        print(f"Statement: {question.shown_answer}")
        print("Is this the right answer? (t/f)")
    elif question.mode is StudyMode.SCRAMBLED:
        print("Put the pieces in order: " + " | ".join(question.scrambled_parts or ()))
    print("Type '?' to see the answer or 'q' to stop.")


def interpret_answer(question: StudyQuestion, raw: str) -> str:
    lowered = raw.strip().lower()
    if question.mode is StudyMode.MCQ:
        options = question.mcq_options or ()
        if lowered.isdigit() and 1 <= int(lowered) <= len(options):
            return options[int(lowered) - 1]
        return raw
    if question.mode is StudyMode.TF:
        if lowered in TRUE_COMMANDS:
            return "True"
        if lowered in FALSE_COMMANDS:
            return "False"
        return raw
    return raw


def show_solution(question: StudyQuestion) -> None:
    print("Correct answer:")
    if question.mode is StudyMode.TF:
        print(f"  - {question.expected_response} ({question.answer_text})")
        return
    for column in question.relation.answer_cols:
        print(f"  - {column}: {question.item.value(column)}")


def ask_question(question: StudyQuestion) -> Dict:
    print("\n----------------------------------------")
    show_question(question)
    raw = input("Answer: ").strip()
    lowered = raw.lower()
    if lowered in QUIT_COMMANDS:
        return {"quit": True}
    if lowered in SHOW_COMMANDS:
        show_solution(question)
        return {"answer": "", "revealed": True}
    return {"answer": interpret_answer(question, raw), "revealed": False}


def run_session(session: study.StudySession) -> bool:
    """Ask until the queue is empty. Returns False when the user stopped early."""
    while session.is_open:
        question = session.current_question
        print(f"\nWords left in the queue: {session.remaining}")
        result = ask_question(question)
        if result.get("quit"):
            return False
        outcome = session.submit_answer(0, result["answer"])
        if outcome.correct:
            print(color_text("✅ Correct!", COLOR_GOOD))
        elif not result["revealed"]:
            print(color_text("❌ Not quite.", COLOR_BAD))
            show_solution(question)
    return True


def print_summary(session: study.StudySession, result: SessionResult) -> None:
    print("\nSession finished! 🏁")
    minutes, seconds = divmod(result.elapsed_seconds, 60)
    print(f"Mastered {len(session.mastered)} words in {minutes}m {seconds:02d}s, XP {session_xp_gain(result):+d}.")
    difficult = session.difficult_words
    if difficult:
        print("Words that gave you trouble:")
        for item, failures in difficult:
            label = " / ".join(value for value in item.cols.values() if value)
            print(f"  - {label} (failed {failures}x)")


def session_loop(
    deck: Deck,
    save_path: Path,
    table_ids: Optional[Sequence[str]] = None,
    modes: Optional[Sequence[StudyMode]] = None,
    word_count: Optional[int] = None,
) -> None:
    table_ids = table_ids or choose_tables(deck)
    modes = modes or choose_modes()
    word_count = word_count or prompt_word_count()
    policy = build_policy(deck, table_ids, modes, word_count)
    rng = random.Random()

    while True:
        questions = study.generate_session(policy, deck.tables, deck.relations, rng=rng)
        if not questions:
            print("No questions could be built from this selection. Check the tables and question types.")
            return
        session = study.StudySession(questions, policy, deck.tables, deck.relations, rng=rng)
        print(f"\nStarting a session with {len(questions)} words.")

        if run_session(session):
            result = session.finish()
            apply_session_result(deck.tables, result)
            print_summary(session, result)
        else:
            abandoned = session.quit()
            mark_abandoned(deck.tables, abandoned)
            print(f"Session stopped, {len(abandoned)} words will come back first next time (XP -{QUIT_XP_PENALTY}).")
        save_deck(deck, save_path)

        if not ask_yes_no("Start another session with the same settings? (y/n): "):
            break


def parse_modes(raw: str) -> List[StudyMode]:
    modes: List[StudyMode] = []
    for bit in raw.split(","):
        bit = bit.strip()
        if not bit:
            continue
        try:
            modes.append(StudyMode(bit))
        except ValueError:
            choices = ", ".join(mode.value for mode in ALL_MODES)
            raise argparse.ArgumentTypeError(f"unknown mode {bit!r} (choose from {choices})") from None
    return list(dict.fromkeys(modes))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Study vocabulary tables in the terminal.")
    parser.add_argument("deck", nargs="?", type=Path, default=DECK_PATH, help="deck JSON file")
    parser.add_argument("--csv", type=Path, help="build a one-table deck from a CSV file instead")
    parser.add_argument("--words", type=int, help="number of words per session")
    parser.add_argument("--modes", type=parse_modes, help="comma separated, e.g. MCQ,TF,Typing")
    parser.add_argument("--table", action="append", dest="tables", metavar="ID", help="table id (repeatable)")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.words is not None and args.words <= 0:
        parser.error("--words must be positive")

    try:
        if args.csv is not None:
            deck = deck_from_csv(args.csv)
            save_path = args.csv.with_suffix(".json")
        else:
            deck = load_deck(args.deck)
            save_path = args.deck
    except ValueError as e:
        print(e)
        sys.exit(1)

    unknown = [table_id for table_id in args.tables or () if deck.table(table_id) is None]
    if unknown:
        print(f"Unknown table(s): {', '.join(unknown)}")
        sys.exit(1)

    print("Vocabulary trainer")
    try:
        session_loop(deck, save_path, args.tables, args.modes, args.words)
        print("Goodbye!")
    except KeyboardInterrupt:
        print("\nInterrupted. Goodbye!")


if __name__ == "__main__":
    main()
