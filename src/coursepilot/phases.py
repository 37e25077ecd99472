"""Session phases: one variant per screen, each carrying only what that screen needs."""
from dataclasses import dataclass
from typing import ClassVar, Optional

from coursepilot.models import AssessmentQuestion, ExistingCourse, QuizQuestion


@dataclass(frozen=True)
class Phase:
    name: ClassVar[str] = "phase"
    loading: ClassVar[bool] = False

    @property
    def day(self) -> Optional[int]:
        return None


@dataclass(frozen=True)
class Search(Phase):
    name: ClassVar[str] = "search"


@dataclass(frozen=True)
class Searching(Phase):
    name: ClassVar[str] = "searching"
    loading: ClassVar[bool] = True
    topic: str = ""


@dataclass(frozen=True)
class Results(Phase):
    name: ClassVar[str] = "results"
    topic: str = ""
    courses: tuple[ExistingCourse, ...] = ()


@dataclass(frozen=True)
class SyllabusLoading(Phase):
    name: ClassVar[str] = "syllabus-loading"
    loading: ClassVar[bool] = True
    topic: str = ""


@dataclass(frozen=True)
class AssessmentLoading(Phase):
    name: ClassVar[str] = "assessment-loading"
    loading: ClassVar[bool] = True
    topic: str = ""


@dataclass(frozen=True)
class Assessment(Phase):
    name: ClassVar[str] = "assessment"
    topic: str = ""
    questions: tuple[AssessmentQuestion, ...] = ()


@dataclass(frozen=True)
class Evaluating(Phase):
    name: ClassVar[str] = "evaluating"
    loading: ClassVar[bool] = True


@dataclass(frozen=True)
class Overview(Phase):
    name: ClassVar[str] = "overview"


@dataclass(frozen=True)
class _DayPhase(Phase):
    current_day: int = 1
    module_title: str = ""

    @property
    def day(self) -> Optional[int]:
        return self.current_day


@dataclass(frozen=True)
class DayCover(_DayPhase):
    name: ClassVar[str] = "day-cover"


@dataclass(frozen=True)
class ContentLoading(_DayPhase):
    name: ClassVar[str] = "content-loading"
    loading: ClassVar[bool] = True


@dataclass(frozen=True)
class Flashcards(_DayPhase):
    name: ClassVar[str] = "flashcards"
    card_index: int = 0


@dataclass(frozen=True)
class QuizLoading(_DayPhase):
    name: ClassVar[str] = "quiz-loading"
    loading: ClassVar[bool] = True


@dataclass(frozen=True)
class Quiz(_DayPhase):
    name: ClassVar[str] = "quiz"
    questions: tuple[QuizQuestion, ...] = ()


@dataclass(frozen=True)
class DayComplete(_DayPhase):
    name: ClassVar[str] = "day-complete"


@dataclass(frozen=True)
class CourseComplete(Phase):
    name: ClassVar[str] = "course-complete"
