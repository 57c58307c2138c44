"""Shared test fixtures for the VizAI backend test suite.

All tests use an in-memory SQLite database (one shared connection via
StaticPool). Tables are dropped and recreated around every test, so each
test starts from an empty store.

Generation calls never leave the process: tests pass a ScriptedGenerator
whose responses (text or exceptions) are queued per test, and a FrozenClock
that only moves when the test advances it.
"""

import os

# Use the in-memory database and the mock generator before any app imports.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["GENERATION_MODEL"] = ""
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "development"

import json
import random
from datetime import datetime, timedelta, timezone
from typing import Any, List, Union

import pytest
from fastapi.testclient import TestClient

from vizai.core.config import Settings
from vizai.database import Base, engine, get_db, SessionLocal, init_db
from vizai.generation import GenerationResult, MockGenerator
from vizai.generation.circuit_breaker import reset_all
from vizai.generation.templates import build_analysis_payload, build_visualization_payload, DEFAULT_METAPHORS


class FrozenClock:
    """Injectable ``now`` that only advances on request."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedGenerator:
    """Generator returning queued responses in order.

    Each queued item is either raw response text or an exception instance
    to raise. When the queue is empty it answers like MockGenerator.
    """

    model = "mock"

    def __init__(self, responses: List[Union[str, BaseException]] = None, tokens: tuple = (100, 50)):
        self.responses = list(responses or [])
        self.tokens = tokens
        self.prompts: List[str] = []
        self._fallback = MockGenerator()

    def queue(self, *responses: Union[str, BaseException]) -> "ScriptedGenerator":
        self.responses.extend(responses)
        return self

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def generate(self, prompt: str, schema: dict, temperature: float) -> GenerationResult:
        self.prompts.append(prompt)
        if not self.responses:
            return self._fallback.generate(prompt, schema, temperature)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return GenerationResult(raw_text=item, input_tokens=self.tokens[0], output_tokens=self.tokens[1], model=self.model)


@pytest.fixture(autouse=True)
def _fresh_schema():
    """Recreate every table before each test."""
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    reset_all()
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def settings() -> Settings:
    """Settings with the documented defaults, independent of the environment."""
    return Settings(
        database_url="sqlite://",
        generation_model="",
        rpm_limit=5,
        daily_budget_usd=0.50,
        job_max_attempts=3,
        backoff_base_ms=2000,
        rpm_jitter_seconds=5.0,
        storage_retry_seconds=5.0,
        max_output_tokens=2048,
        compact_summary_max_chars=1500,
    )


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 10, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture()
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture()
def orchestrator(db, settings, generator, clock):
    from vizai.services import PipelineOrchestrator
    return PipelineOrchestrator(db, settings, generator=generator, clock=clock, rng=random.Random(7))


@pytest.fixture()
def client(db, generator):
    """FastAPI TestClient with the session and generator overridden."""
    from vizai.main import app
    from vizai.api.deps import get_orchestrator
    from vizai.services import PipelineOrchestrator
    from vizai.core.config import settings as app_settings

    def _override_get_db():
        yield db

    def _override_orchestrator():
        return PipelineOrchestrator(db, app_settings, generator=generator)

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_orchestrator] = _override_orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def analysis_json(columns=("date", "region", "revenue"), row_count: int = 120, **overrides: Any) -> str:
    payload = build_analysis_payload(row_count, list(columns))
    payload.update(overrides)
    return json.dumps(payload)


def visualization_json(metaphor: dict = None, **overrides: Any) -> str:
    payload = build_visualization_payload(metaphor or DEFAULT_METAPHORS[2], ["date", "revenue"])
    payload.update(overrides)
    return json.dumps(payload)


def make_project(orchestrator, user_id: str = "user-1", columns=("date", "region", "revenue"), **overrides):
    """Factory for projects with a queued analysis job."""
    kwargs = dict(
        user_id=user_id,
        filename="sales.csv",
        row_count=120,
        columns=list(columns),
        dataset_summary="revenue: mean 412.5; 2% nulls",
    )
    kwargs.update(overrides)
    return orchestrator.create_project(**kwargs)
