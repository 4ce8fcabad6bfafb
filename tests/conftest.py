"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from tests.utils import ScriptedRandom, build_relation, build_table
from vocab import Deck, Relation, VocabTable

ANIMALS = [
    ("cat", "die Katze"),
    ("dog", "der Hund"),
    ("horse", "das Pferd"),
    ("bird", "der Vogel"),
    ("fish", "der Fisch"),
]

COLORS = [
    ("red", "rot"),
    ("blue", "blau"),
    ("green", "grün"),
]


@pytest.fixture
def animals() -> VocabTable:
    return build_table("animals", ANIMALS, name="Animals")


@pytest.fixture
def colors() -> VocabTable:
    return build_table("colors", COLORS, name="Colors")


@pytest.fixture
def animals_relation() -> Relation:
    return build_relation("animals-en-de", "animals")


@pytest.fixture
def deck(animals, colors, animals_relation) -> Deck:
    return Deck(tables=[animals, colors], relations=[animals_relation, build_relation("colors-en-de", "colors")])


@pytest.fixture
def scripted_rng() -> ScriptedRandom:
    return ScriptedRandom()
