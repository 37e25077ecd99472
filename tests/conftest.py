import base64
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from coursepilot.backend import BackendClient
from coursepilot.models import (
    AssessmentQuestion, ExistingCourse, Module, QuizQuestion, Subtopic, NEEDED,
)
from coursepilot.study import Session, SessionVariant

AUDIO_BYTES = b"RIFF....WAVEfmt "
COURSE_TOPICS = ["Basics", "Functions", "Classes"]


def subtopics_for(topic, count=3, with_content=False):
    return [
        Subtopic(
            name=f"{topic} {i}",
            content_points=[f"{topic} {i} point a", f"{topic} {i} point b"] if with_content else [],
        )
        for i in range(1, count + 1)
    ]


def quiz_questions(count=2):
    return [
        QuizQuestion(question=f"Question {i}?", options=["a", "b", "c", "d"], correct_index=1)
        for i in range(1, count + 1)
    ]


@pytest.fixture
def make_module():
    """Factory for modules: `make_module("A", tag=NOT_NEEDED, count=2, with_content=True)`."""
    def factory(topic, tag=NEEDED, count=3, with_content=False):
        return Module(topic=topic, tag=tag, subtopics=subtopics_for(topic, count, with_content))
    return factory


@pytest.fixture
def backend():
    """A BackendClient stand-in whose generation calls succeed with small canned payloads."""
    fake = AsyncMock(spec=BackendClient)
    fake.search_courses.return_value = []
    fake.generate_syllabus.return_value = (
        "course-1", "Python", [Module(topic=t) for t in COURSE_TOPICS],
    )
    fake.generate_plan.side_effect = lambda topics, expertise="": [
        Module(topic=t["topic"], tag=t["tag"], subtopics=subtopics_for(t["topic"])) for t in topics
    ]
    fake.generate_module_content.side_effect = lambda course_id, title: subtopics_for(title, with_content=True)
    fake.generate_assessment.return_value = (
        "Python",
        [AssessmentQuestion(id=1, question_text="Ever used Python?", options=["Yes", "No"])],
    )
    fake.evaluate_syllabus.return_value = (
        "course-2", "Python", [Module(topic=t, subtopics=subtopics_for(t)) for t in COURSE_TOPICS],
    )
    fake.get_course.return_value = (
        "Published Python",
        [Module(topic=t, subtopics=subtopics_for(t, with_content=True)) for t in COURSE_TOPICS],
    )
    fake.generate_quiz.side_effect = lambda day: quiz_questions()
    fake.synthesize_audio.return_value = base64.b64encode(AUDIO_BYTES).decode()
    fake.explain_term.return_value = "A short explanation."
    fake.simplify_content.return_value = "Simpler words."
    fake.update_course.return_value = None
    fake.update_content.return_value = None
    fake.set_published.return_value = None
    return fake


@pytest.fixture
def session(backend):
    return Session(backend)


@pytest.fixture
def creator(backend):
    return Session(backend, variant=SessionVariant.CREATOR)


@pytest_asyncio.fixture
async def planned(session):
    """Learner session sitting on the overview of a generated three-day course."""
    await session.generate("Python")
    return session


@pytest.fixture
def courses():
    return [ExistingCourse(id="42", title="Python 101", creator_name="Ada", match_score=0.9)]
