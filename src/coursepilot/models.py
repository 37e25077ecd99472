"""Data classes for the course domain model."""
from dataclasses import dataclass, field
from typing import Optional

NEEDED = "needed"
NOT_NEEDED = "not needed"
DEFAULT_SUBTOPIC_MINUTES = 5


@dataclass
class Subtopic:
    name: str
    content_points: list[str] = field(default_factory=list)
    duration_minutes: int = DEFAULT_SUBTOPIC_MINUTES
    audio_script: Optional[str] = None
    reference: Optional[str] = None
    emoji: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return bool(self.content_points)


@dataclass
class Module:
    topic: str
    tag: str = NEEDED
    subtopics: list[Subtopic] = field(default_factory=list)

    @property
    def needed(self) -> bool:
        return self.tag == NEEDED

    @property
    def has_content(self) -> bool:
        return any(s.has_content for s in self.subtopics)


@dataclass
class DaySchedule:
    day: int
    focus_topic: str
    summary: str = ""


@dataclass
class Flashcard:
    title: str
    content: str
    audio_script: Optional[str] = None
    reference: Optional[str] = None
    emoji: Optional[str] = None

    @classmethod
    def from_subtopic(cls, subtopic: Subtopic) -> "Flashcard":
        return cls(
            title=subtopic.name,
            content="\n\n".join(subtopic.content_points),
            audio_script=subtopic.audio_script or None,
            reference=subtopic.reference,
            emoji=subtopic.emoji,
        )


@dataclass
class DayContent:
    flashcards: list[Flashcard] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.flashcards)


@dataclass
class QuizQuestion:
    question: str
    options: list[str]
    correct_index: int
    explanation: str = ""


@dataclass
class AssessmentQuestion:
    id: int
    question_text: str
    options: list[str]


@dataclass
class AssessmentAnswer:
    question_id: int
    question_text: str
    selected_option: str


@dataclass
class ExistingCourse:
    id: str
    title: str
    description: str = ""
    creator_name: str = ""
    match_score: float = 0.0


@dataclass
class CoursePlan:
    topic: str
    course_id: Optional[str]
    modules: list[Module]
    days: list[DaySchedule]
    total_duration: int = 0
    published: bool = False

    @property
    def total_days(self) -> int:
        return len(self.days)

    def module_for_day(self, day: int) -> Optional[Module]:
        """Resolve a day number to its module, or None if the day no longer exists."""
        for entry in self.days:
            if entry.day == day:
                return self.find_module(entry.focus_topic)
        return None

    def topic_for_day(self, day: int) -> Optional[str]:
        for entry in self.days:
            if entry.day == day:
                return entry.focus_topic
        return None

    def find_module(self, topic: str) -> Optional[Module]:
        for module in self.modules:
            if module.topic == topic:
                return module
        return None
