import os
import tempfile

# The application engine is built at import time; point it at SQLite first.
_DB_DIR = tempfile.mkdtemp(prefix="coursecert-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'app.db')}")

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from coursecert.core.error_handling import UpstreamFailureError
from coursecert.core.metrics import collector
from coursecert.db.base import Base
from coursecert.db.session import build_engine, build_session_factory
from coursecert.db.store import SqlDocumentStore
from coursecert.services.interview_lifecycle import build_lifecycle
from coursecert.services.records import CategoryScores, Course, ScoreReport
from coursecert.services.retake_policy import InterviewPolicyConfig


def make_report(total: int) -> ScoreReport:
    return ScoreReport(
        total_score=total,
        category_scores=CategoryScores(
            communication=total,
            technical=total,
            problem_solving=total,
            cultural_fit=total,
            confidence=total,
        ),
        strengths=["Explains trade-offs clearly"],
        areas_for_improvement=["Go deeper on testing"],
        final_assessment=f"Scored {total}",
    )


class FakeAssessor:
    """Returns queued scores in order; the last one repeats."""

    def __init__(self, *scores: int):
        self.scores = list(scores or (65,))
        self.calls: List[Dict[str, Any]] = []

    async def score_transcript(self, text: str, context: Dict[str, Any]) -> ScoreReport:
        self.calls.append({"text": text, **context})
        score = self.scores.pop(0) if len(self.scores) > 1 else self.scores[0]
        return make_report(score)


class FailingAssessor:
    def __init__(self):
        self.calls = 0

    async def score_transcript(self, text: str, context: Dict[str, Any]) -> ScoreReport:
        self.calls += 1
        raise UpstreamFailureError("assessment", "model timed out")


class FakeQuestionGenerator:
    def __init__(self, count: int = 8):
        self.count = count
        self.courses: List[Course] = []

    async def generate_questions(self, course: Course) -> List[str]:
        self.courses.append(course)
        await asyncio.sleep(0)
        return [f"{course.title} question {i}" for i in range(1, self.count + 1)]


TRANSCRIPT = [
    {"role": "assistant", "content": "What is a Python generator?"},
    {"role": "user", "content": "A function that yields values lazily."},
]


COURSE_DOC = {
    "id": "c1",
    "user_id": "u1",
    "title": "Async Python",
    "description": "Coroutines, event loops and structured concurrency",
    "objectives": ["Write async code", "Avoid blocking the loop"],
    "tech_stack": ["python", "asyncio"],
    "modules": [
        {
            "title": "Event loop",
            "lessons": [
                {
                    "title": "Coroutines",
                    "description": "async def and await",
                    "resources": [{"title": "asyncio docs", "url": "https://docs.python.org/3/library/asyncio.html"}],
                }
            ],
        }
    ],
}


@pytest.fixture(autouse=True)
def reset_metrics():
    collector.reset()
    yield
    collector.reset()


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlDocumentStore(build_session_factory(engine))
    await engine.dispose()


@pytest_asyncio.fixture
async def course(store) -> Dict[str, Any]:
    await store.insert("courses", dict(COURSE_DOC))
    return COURSE_DOC


@pytest.fixture
def policy_config() -> InterviewPolicyConfig:
    return InterviewPolicyConfig(min_pass_score=70, max_attempts=3, cooldown=timedelta(days=7))


@pytest.fixture
def assessor() -> FakeAssessor:
    return FakeAssessor(65)


@pytest.fixture
def question_generator() -> FakeQuestionGenerator:
    return FakeQuestionGenerator()


@pytest.fixture
def lifecycle(store, assessor, question_generator, policy_config):
    return build_lifecycle(
        store,
        assessor=assessor,
        question_generator=question_generator,
        policy_config=policy_config,
    )


def make_lifecycle(store, assessor, policy_config: Optional[InterviewPolicyConfig] = None):
    return build_lifecycle(
        store,
        assessor=assessor,
        question_generator=FakeQuestionGenerator(),
        policy_config=policy_config or InterviewPolicyConfig(),
    )
