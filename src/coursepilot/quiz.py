"""Knowledge-check quizzes: per-day question cache and grading."""
import asyncio
from dataclasses import dataclass
from typing import Hashable, Optional

from coursepilot import config
from coursepilot.backend import BackendClient
from coursepilot.errors import GenerationFailure
from coursepilot.logger import get_logger
from coursepilot.models import QuizQuestion
from coursepilot.singleflight import SingleFlight

logger = get_logger(__name__)


@dataclass
class QuizEntry:
    stamp: Hashable
    questions: list[QuizQuestion]


class QuizCache:
    """day -> questions, tagged with the content stamp they were generated for.

    Background prefetch and foreground fetch share one single-flight guard and
    write the same map, so whichever finishes first fills the entry.
    """

    def __init__(self, backend: BackendClient):
        self._backend = backend
        self._entries: dict[int, QuizEntry] = {}
        self._flight = SingleFlight()
        self._generation = 0
        self._background: set[asyncio.Task] = set()

    def get(self, day: int, stamp: Hashable = None) -> Optional[list[QuizQuestion]]:
        entry = self._entries.get(day)
        if entry is None or entry.stamp != stamp:
            return None
        return entry.questions

    async def fetch(self, day: int, stamp: Hashable = None) -> list[QuizQuestion]:
        """Foreground path: cached questions or a (shared) backend call. Raises GenerationFailure."""
        cached = self.get(day, stamp)
        if cached is not None:
            logger.debug("Quiz cache hit for day %s", day)
            return cached
        generation = self._generation
        return await self._flight.do((day, stamp), lambda: self._generate(day, stamp, generation))

    async def _generate(self, day: int, stamp: Hashable, generation: int) -> list[QuizQuestion]:
        logger.info("Generating quiz for day %s", day)
        questions = await self._backend.generate_quiz(day)
        if generation == self._generation:
            self._entries[day] = QuizEntry(stamp, questions)
        return questions

    def prefetch(self, day: int, stamp: Hashable = None) -> None:
        if self.get(day, stamp) is not None or self._flight.in_flight((day, stamp)):
            return
        task = asyncio.ensure_future(self._prefetch(day, stamp))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _prefetch(self, day: int, stamp: Hashable) -> None:
        try:
            await self.fetch(day, stamp)
        except GenerationFailure as e:
            logger.warning("Background quiz generation for day %s failed: %s", day, e)

    async def wait_idle(self) -> None:
        """Wait for background prefetches to settle."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def clear(self) -> None:
        self._generation += 1
        self._entries.clear()
        self._flight.clear()


@dataclass
class QuizResult:
    correct: int
    total: int

    @property
    def percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.correct / self.total * 100)

    @property
    def passed(self) -> bool:
        return self.percentage >= config.QUIZ_PASS_PERCENT


def grade(questions: list[QuizQuestion], answers: list[Optional[int]]) -> QuizResult:
    """Score selected option indices against the questions. Missing answers count as wrong."""
    correct = sum(
        1 for question, answer in zip(questions, answers)
        if answer is not None and answer == question.correct_index
    )
    return QuizResult(correct=correct, total=len(questions))
