#!/usr/bin/env python3
"""
FastAPI service for the vocabulary trainer.

Clients post a deck snapshot (tables, relations, statistics) together with the
selection settings, then answer the generated questions one at a time. When
the session ends the service hands back the session result and the deck with
its statistics updated; storing that deck is the client's business.
"""
from __future__ import annotations

import logging
import os
import random
import threading
import time
import uuid
from typing import Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import learn
import study
from vocab import (
    MODE_LABELS,
    QUIT_XP_PENALTY,
    AbandonedWord,
    Deck,
    Relation,
    SelectionPolicy,
    SessionItemState,
    SessionResult,
    StudyMode,
    StudyQuestion,
    VocabTable,
    apply_session_result,
    mark_abandoned,
    session_xp_gain,
)

logger = logging.getLogger(__name__)

SESSION_MAX_IDLE_SECONDS = float(os.environ.get("VOCAB_SESSION_MAX_IDLE", 6 * 60 * 60))

app = FastAPI(
    title="Vocabulary Trainer API",
    description="Adaptive study sessions over user-defined vocabulary tables.",
    version="0.1.0",
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class LiveSession:
    def __init__(self, deck: Deck, session: study.StudySession, include_solutions: bool) -> None:
        self.deck = deck
        self.session = session
        self.include_solutions = include_solutions
        self.touched_at = 0.0


class SessionRegistry:
    """Sessions live in process memory; each one is used by a single client.

    A session nobody has touched for ``max_idle_seconds`` is dropped the next
    time the registry is used, so abandoned clients do not pile up.
    """

    def __init__(self, max_idle_seconds: float = SESSION_MAX_IDLE_SECONDS, clock=time.monotonic) -> None:
        self._sessions: Dict[str, LiveSession] = {}
        self._lock = threading.Lock()
        self.max_idle_seconds = max_idle_seconds
        self.clock = clock

    def _evict_idle(self, now: float) -> None:
        expired = [key for key, live in self._sessions.items() if now - live.touched_at > self.max_idle_seconds]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.info("Dropped %d idle sessions", len(expired))

    def add(self, live: LiveSession) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            now = self.clock()
            self._evict_idle(now)
            live.touched_at = now
            self._sessions[session_id] = live
        return session_id

    def get(self, session_id: str) -> LiveSession:
        with self._lock:
            now = self.clock()
            self._evict_idle(now)
            live = self._sessions.get(session_id)
            if live is not None:
                live.touched_at = now
        if live is None:
            raise HTTPException(status_code=404, detail="Session not found.")
        return live

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def pop(self, session_id: str) -> LiveSession:
        with self._lock:
            live = self._sessions.pop(session_id, None)
        if live is None:
            raise HTTPException(status_code=404, detail="Session not found.")
        return live

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


registry = SessionRegistry()


class ModeOut(BaseModel):
    mode: StudyMode
    label: str


class SessionRequest(BaseModel):
    deck: Deck
    policy: SelectionPolicy
    include_solutions: bool = False


class QuestionOut(BaseModel):
    id: str
    mode: StudyMode
    item_id: str
    table_id: str
    relation_id: str
    question_text: str
    options: Optional[List[str]] = None
    statement: Optional[str] = None
    scrambled_parts: Optional[List[str]] = None
    solution: Optional[str] = None


class SessionOut(BaseModel):
    session_id: str
    total_items: int
    questions: List[QuestionOut]


class SessionStatusOut(BaseModel):
    session_id: str
    remaining: int
    completed: bool
    elapsed_seconds: int
    xp: int
    current: Optional[QuestionOut] = None
    states: Dict[str, SessionItemState]


class AnswerRequest(BaseModel):
    index: int = 0
    answer: str = Field("", max_length=500)


class AnswerOut(BaseModel):
    correct: bool
    previous_state: SessionItemState
    new_state: SessionItemState
    completed: bool
    correct_answer: str
    remaining: int


class FinishOut(BaseModel):
    result: SessionResult
    xp_gain: int
    updated_rows: int
    deck: Deck


class QuitOut(BaseModel):
    abandoned: List[AbandonedWord]
    xp_gain: int
    deck: Deck


class ImportResult(BaseModel):
    table: VocabTable
    relation: Optional[Relation] = None
    errors: List[str]


def question_out(question: StudyQuestion, include_solution: bool) -> QuestionOut:
    return QuestionOut(
        id=question.id,
        mode=question.mode,
        item_id=question.item_id,
        table_id=question.table_id,
        relation_id=question.relation.id,
        question_text=question.question_text,
        options=list(question.mcq_options) if question.mcq_options is not None else None,
        statement=question.shown_answer if question.mode is StudyMode.TF else None,
        scrambled_parts=list(question.scrambled_parts) if question.scrambled_parts is not None else None,
        solution=question.expected_response if include_solution else None,
    )


@app.get("/")
def root() -> Dict[str, str]:
    return {"message": "Vocabulary Trainer API is ready."}


@app.get("/modes", response_model=List[ModeOut])
def list_modes() -> List[ModeOut]:
    return [ModeOut(mode=mode, label=label) for mode, label in MODE_LABELS.items()]


@app.post("/sessions", response_model=SessionOut, status_code=201)
def start_session(payload: SessionRequest) -> SessionOut:
    deck = payload.deck
    rng = random.Random()
    questions = study.generate_session(payload.policy, deck.tables, deck.relations, rng=rng)
    if not questions:
        raise HTTPException(
            status_code=422,
            detail="No questions could be built from this selection. Pick other tables, relations or modes.",
        )
    session = study.StudySession(questions, payload.policy, deck.tables, deck.relations, rng=rng)
    session_id = registry.add(LiveSession(deck, session, payload.include_solutions))
    logger.info("Started session %s with %d questions", session_id, len(questions))
    return SessionOut(
        session_id=session_id,
        total_items=len(questions),
        questions=[question_out(question, payload.include_solutions) for question in questions],
    )


@app.get("/sessions/{session_id}", response_model=SessionStatusOut)
def session_status(session_id: str) -> SessionStatusOut:
    live = registry.get(session_id)
    session = live.session
    current = session.current_question
    return SessionStatusOut(
        session_id=session_id,
        remaining=session.remaining,
        completed=session.is_complete,
        elapsed_seconds=session.elapsed_seconds,
        xp=session.xp,
        current=question_out(current, live.include_solutions) if current is not None else None,
        states=session.states,
    )


@app.post("/sessions/{session_id}/answers", response_model=AnswerOut)
def submit_answer(session_id: str, payload: AnswerRequest) -> AnswerOut:
    session = registry.get(session_id).session
    try:
        outcome = session.submit_answer(payload.index, payload.answer)
    except study.QuestionIndexError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except study.SessionClosedError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return AnswerOut(
        correct=outcome.correct,
        previous_state=outcome.previous_state,
        new_state=outcome.new_state,
        completed=outcome.completed,
        correct_answer=outcome.question.expected_response,
        remaining=session.remaining,
    )


@app.post("/sessions/{session_id}/finish", response_model=FinishOut)
def finish_session(session_id: str) -> FinishOut:
    live = registry.pop(session_id)
    result = live.session.finish()
    updated = apply_session_result(live.deck.tables, result)
    return FinishOut(result=result, xp_gain=session_xp_gain(result), updated_rows=updated, deck=live.deck)


@app.post("/sessions/{session_id}/quit", response_model=QuitOut)
def quit_session(session_id: str) -> QuitOut:
    live = registry.pop(session_id)
    abandoned = live.session.quit()
    mark_abandoned(live.deck.tables, abandoned)
    return QuitOut(abandoned=abandoned, xp_gain=-QUIT_XP_PENALTY, deck=live.deck)


@app.delete("/sessions/{session_id}", status_code=204)
def drop_session(session_id: str) -> Response:
    registry.pop(session_id)
    return Response(status_code=204)


@app.post("/import", response_model=ImportResult)
async def import_csv_endpoint(
    name: str = "Imported table",
    file: UploadFile = File(...),
) -> ImportResult:
    if file.content_type not in {"text/csv", "application/vnd.ms-excel", "application/octet-stream"}:
        raise HTTPException(status_code=400, detail="Expected a CSV file.")
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")
    table, errors = learn.table_from_csv(text, name)
    return ImportResult(table=table, relation=learn.default_relation(table), errors=errors)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
