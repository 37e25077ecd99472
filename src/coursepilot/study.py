"""Study session: the phase machine that drives a learner through a course.

A `Session` owns the active phase, the committed course plan and the caches
for generated content, audio and quizzes. Every async operation moves into a
`*-loading` phase for the duration of its backend call and has a defined
fallback phase when the call fails. Responses that arrive after a restart, or
after the user has already moved on, are discarded.
"""
import copy
import re
from dataclasses import replace
from enum import Enum
from typing import Optional

from coursepilot import config
from coursepilot.audio import AudioCache, AudioClip
from coursepilot.backend import BackendClient
from coursepilot.editor import SyllabusEditor
from coursepilot.errors import EditSaveFailure, GenerationFailure
from coursepilot.flashcards import ContentCache
from coursepilot.logger import get_logger
from coursepilot.models import (
    AssessmentAnswer, CoursePlan, DayContent, Flashcard, Module, Subtopic, NEEDED, NOT_NEEDED,
)
from coursepilot.phases import (
    Assessment, AssessmentLoading, ContentLoading, CourseComplete, DayComplete, DayCover,
    Evaluating, Flashcards, Overview, Phase, Quiz, QuizLoading, Results, Search, Searching,
    SyllabusLoading,
)
from coursepilot.quiz import QuizCache, QuizResult, grade
from coursepilot.scheduler import build_plan

logger = get_logger(__name__)


class SessionVariant(Enum):
    LEARNER = "learner"   # knowledge-check quiz after each day
    CREATOR = "creator"   # no quiz; edits and content are saved to the backend


def clean_simplified(text: str) -> str:
    """Backends sometimes return a stringified list; turn it into lines."""
    content = text.strip()
    if content.startswith("[") and content.endswith("]"):
        inner = re.sub(r"""['"]\s*,\s*['"]""", "\n", content[1:-1])
        return re.sub(r"""^['"]|['"]$""", "", inner.strip())
    return content


class Session:
    def __init__(
        self,
        backend: BackendClient,
        variant: SessionVariant = SessionVariant.LEARNER,
        language: str = config.DEFAULT_LANGUAGE,
    ):
        self.backend = backend
        self.variant = variant
        self.language = language
        self.phase: Phase = Search()
        self.plan: Optional[CoursePlan] = None
        self.error: Optional[str] = None
        self.last_quiz_result: Optional[QuizResult] = None
        self.editor = SyllabusEditor()
        self.content = ContentCache(backend)
        self.audio = AudioCache(backend)
        self.quizzes = QuizCache(backend)
        self._completed_topics: set[str] = set()
        self._explanations: dict[tuple[str, str], str] = {}
        self._simplified: dict[tuple[int, int, str], str] = {}
        self._epoch = 0

    # -------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------
    @property
    def busy(self) -> bool:
        return self.phase.loading

    @property
    def has_quiz(self) -> bool:
        return self.variant is SessionVariant.LEARNER

    @property
    def day_contents(self) -> dict[int, DayContent]:
        return self.content.as_dict()

    @property
    def completed_days(self) -> list[int]:
        if self.plan is None:
            return []
        return [d.day for d in self.plan.days if d.focus_topic in self._completed_topics]

    def content_for_day(self, day: int) -> Optional[DayContent]:
        """Cached content for `day`, only while the day still maps to the module it was made for."""
        if self.plan is None:
            return None
        topic = self.plan.topic_for_day(day)
        if topic is None:
            return None
        return self.content.get(day, topic)

    @property
    def current_card(self) -> Optional[Flashcard]:
        if not isinstance(self.phase, Flashcards):
            return None
        content = self.content.get(self.phase.current_day, self.phase.module_title)
        if content is None or not 0 <= self.phase.card_index < len(content.flashcards):
            return None
        return content.flashcards[self.phase.card_index]

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _set_phase(self, phase: Phase) -> None:
        logger.debug("Phase %s -> %s", self.phase.name, phase.name)
        self.phase = phase

    def _is_current(self, epoch: int, phase: Phase) -> bool:
        current = epoch == self._epoch and self.phase == phase
        if not current:
            logger.info("Discarding late response for %s", phase.name)
        return current

    def _fail(self, message: str, fallback: Phase, exc: Exception) -> None:
        logger.error("%s: %s", message, exc)
        self.error = message
        self._set_phase(fallback)

    def _guard(self, action: str) -> bool:
        """True when a loading phase is active and `action` must be ignored."""
        if self.busy:
            logger.debug("Ignoring %s while %s", action, self.phase.name)
            return True
        return False

    def _adopt(self, topic: str, course_id: Optional[str], modules: list[Module], published: bool) -> None:
        self.plan, result = build_plan(topic, course_id, modules, published)
        self.content.seed(result)
        self.editor.finish(modules)
        logger.info("Plan for %r: %s days", topic, self.plan.total_days)

    def _reschedule(self) -> None:
        """Re-derive days from the current module list. The only way day numbers change."""
        plan = self.plan
        self.plan, result = build_plan(plan.topic, plan.course_id, plan.modules, plan.published)
        self.content.seed(result)
        self._redirect_if_day_moved()

    def _redirect_if_day_moved(self) -> None:
        day = self.phase.day
        if day is None or self.plan is None:
            return
        if self.plan.topic_for_day(day) != self.phase.module_title:
            logger.info("Day %s no longer maps to %r; back to overview", day, self.phase.module_title)
            self._set_phase(Overview())
            return
        if isinstance(self.phase, Flashcards):
            content = self.content.get(day, self.phase.module_title)
            if content is None or self.phase.card_index >= len(content.flashcards):
                logger.info("Cards for day %s were rebuilt; back to overview", day)
                self._set_phase(Overview())

    def _backfill(self, epoch: int):
        def apply(module_title: str, subtopics: list[Subtopic]) -> None:
            if epoch != self._epoch or self.plan is None:
                return
            module = self.plan.find_module(module_title)
            if module is not None:
                module.subtopics = copy.deepcopy(subtopics)
                self._reschedule()
        return apply

    def _complete_day(self, day: int, module_title: str) -> None:
        self._completed_topics.add(module_title)
        self._set_phase(DayComplete(current_day=day, module_title=module_title))

    def _card_activated(self) -> None:
        """Read ahead one card of audio; warm the day's quiz while cards remain."""
        phase = self.phase
        content = self.content.get(phase.current_day, phase.module_title)
        if content is None:
            return
        next_index = phase.card_index + 1
        if next_index < len(content.flashcards):
            self.audio.prefetch(next_index, content.flashcards[next_index], self.language)
            if self.has_quiz:
                self.quizzes.prefetch(phase.current_day, self.content.stamp(phase.current_day))

    def _enter_day(self, day: int, module_title: str, content: DayContent, card_index: int = 0) -> None:
        if not content.flashcards:
            self._complete_day(day, module_title)
            return
        card_index = min(max(card_index, 0), len(content.flashcards) - 1)
        self._set_phase(Flashcards(current_day=day, module_title=module_title, card_index=card_index))
        self._card_activated()

    # -------------------------------------------------------------------
    # Course creation and discovery
    # -------------------------------------------------------------------
    async def generate(self, topic: str, expertise: str = "") -> None:
        """Generate a syllabus for `topic`, then a plan for its modules."""
        if self._guard("generate"):
            return
        epoch, loading = self._epoch, SyllabusLoading(topic=topic)
        self.error = None
        self._set_phase(loading)
        try:
            course_id, title, draft = await self.backend.generate_syllabus(topic, expertise)
            topics = [{"topic": m.topic, "tag": m.tag} for m in draft]
            modules = await self.backend.generate_plan(topics, expertise) if topics else []
        except GenerationFailure as e:
            if self._is_current(epoch, loading):
                self._fail("Failed to generate syllabus", Search(), e)
            return
        if not self._is_current(epoch, loading):
            return
        self._adopt(title, course_id, modules or draft, published=False)
        self._set_phase(Overview())

    async def search_courses(self, topic: str) -> None:
        """Look for published courses; with none (or on failure) go to the assessment."""
        if self._guard("search"):
            return
        epoch, loading = self._epoch, Searching(topic=topic)
        self.error = None
        self._set_phase(loading)
        try:
            courses = await self.backend.search_courses(topic)
        except GenerationFailure as e:
            logger.warning("Course search failed, starting assessment: %s", e)
            courses = []
        if not self._is_current(epoch, loading):
            return
        if courses:
            self._set_phase(Results(topic=topic, courses=tuple(courses)))
        else:
            await self._start_assessment(topic)

    async def start_assessment(self, topic: str) -> None:
        if self._guard("assessment"):
            return
        await self._start_assessment(topic)

    async def start_new_course(self) -> None:
        """From search results, ignore the existing courses and build a new one."""
        if isinstance(self.phase, Results):
            await self.start_assessment(self.phase.topic)

    async def _start_assessment(self, topic: str) -> None:
        epoch, loading = self._epoch, AssessmentLoading(topic=topic)
        self._set_phase(loading)
        try:
            topic, questions = await self.backend.generate_assessment(topic)
        except GenerationFailure as e:
            if self._is_current(epoch, loading):
                self._fail("Could not generate assessment", Search(), e)
            return
        if self._is_current(epoch, loading):
            self._set_phase(Assessment(topic=topic, questions=tuple(questions)))

    async def submit_assessment(self, answers: list[AssessmentAnswer]) -> None:
        if not isinstance(self.phase, Assessment):
            return
        topic = self.phase.topic
        epoch, loading = self._epoch, Evaluating()
        self._set_phase(loading)
        try:
            course_id, title, modules = await self.backend.evaluate_syllabus(topic, answers)
        except GenerationFailure as e:
            if self._is_current(epoch, loading):
                self._fail("Failed to generate personalized plan", Search(), e)
            return
        if not self._is_current(epoch, loading):
            return
        self._adopt(title, course_id, modules, published=True)
        self._set_phase(Overview())

    async def enroll(self, course_id: str) -> None:
        """Load a published course together with its pre-generated content."""
        if self._guard("enroll"):
            return
        epoch, loading = self._epoch, Evaluating()
        self.error = None
        self._set_phase(loading)
        try:
            title, modules = await self.backend.get_course(course_id)
        except GenerationFailure as e:
            if self._is_current(epoch, loading):
                self._fail("Failed to load course. It might not be published.", Search(), e)
            return
        if not self._is_current(epoch, loading):
            return
        self._adopt(title, course_id, modules, published=True)
        self._set_phase(Overview())

    # -------------------------------------------------------------------
    # Plan mutation
    # -------------------------------------------------------------------
    def toggle_module(self, topic: str) -> None:
        if self.plan is None or self._guard("toggle"):
            return
        module = self.plan.find_module(topic)
        if module is None:
            return
        module.tag = NOT_NEEDED if module.tag == NEEDED else NEEDED
        logger.info("Module %r is now %s", topic, module.tag)
        self._reschedule()

    def start_edit(self) -> None:
        self.editor.start_edit(self.plan.modules if self.plan else [])

    def cancel_edit(self) -> None:
        self.editor.cancel_edit(self.plan.modules if self.plan else [])

    async def save_edits(self) -> None:
        """Commit the draft: all of it or none of it. Raises EditSaveFailure, keeping the draft."""
        if self.plan is None:
            raise EditSaveFailure("No course loaded")
        if self.busy:
            raise EditSaveFailure("Still loading, please retry")
        draft = copy.deepcopy(self.editor.draft)
        titles = [m.topic.strip() for m in draft]
        if any(not t for t in titles):
            raise EditSaveFailure("Module titles cannot be empty")
        if len(set(titles)) != len(titles):
            raise EditSaveFailure("Module titles must be unique")

        plan = self.plan
        epoch = self._epoch
        if self.variant is SessionVariant.CREATOR and plan.course_id:
            try:
                await self.backend.update_course(plan.course_id, draft)
            except GenerationFailure as e:
                logger.error("Saving syllabus failed: %s", e)
                self.error = "Failed to save changes"
                raise EditSaveFailure("Failed to save changes, please retry") from e
            if epoch != self._epoch:
                logger.info("Discarding syllabus save that finished after a restart")
                return

        self.plan.modules = draft
        self.error = None
        self.editor.finish(draft)
        self._reschedule()

    # -------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------
    def go_to_overview(self) -> None:
        if self.plan is not None and not self.busy:
            self._set_phase(Overview())

    async def go_to_day(self, day: int, card_index: int = 0) -> None:
        """Jump to a day: its cards if content is cached, otherwise its cover."""
        if self.plan is None or self._guard("go to day"):
            return
        topic = self.plan.topic_for_day(day)
        if topic is None:
            return
        content = self.content.get(day, topic)
        if content is not None and content.flashcards:
            self._enter_day(day, topic, content, card_index)
        else:
            self._set_phase(DayCover(current_day=day, module_title=topic))

    async def start_day(self, day: int) -> None:
        """Show the day's cards, generating its content first when none is cached."""
        if self.plan is None or self._guard("start day"):
            return
        topic = self.plan.topic_for_day(day)
        if topic is None:
            return
        cached = self.content.get(day, topic)
        if cached is not None:
            self._enter_day(day, topic, cached)
            return
        if not self.plan.course_id:
            self.error = "Content not available for this module."
            self._set_phase(DayCover(current_day=day, module_title=topic))
            return

        epoch, loading = self._epoch, ContentLoading(current_day=day, module_title=topic)
        self.error = None
        self._set_phase(loading)
        try:
            content = await self.content.ensure(day, topic, self.plan.course_id, self._backfill(epoch))
        except GenerationFailure as e:
            if self._is_current(epoch, loading):
                self._fail("Failed to generate content", Overview(), e)
            return
        if self._is_current(epoch, loading):
            self._enter_day(day, topic, content)

    async def next_card(self) -> None:
        phase = self.phase
        if not isinstance(phase, Flashcards):
            return
        day, topic = phase.current_day, phase.module_title
        content = self.content.get(day, topic)
        if content is None:
            return
        if phase.card_index < len(content.flashcards) - 1:
            self._set_phase(replace(phase, card_index=phase.card_index + 1))
            self._card_activated()
            return

        if not self.has_quiz:
            self._complete_day(day, topic)
            return

        stamp = self.content.stamp(day)
        questions = self.quizzes.get(day, stamp)
        if questions is None:
            epoch, loading = self._epoch, QuizLoading(current_day=day, module_title=topic)
            self._set_phase(loading)
            try:
                questions = await self.quizzes.fetch(day, stamp)
            except GenerationFailure as e:
                if self._is_current(epoch, loading):
                    logger.error("Quiz for day %s failed, completing without it: %s", day, e)
                    self._complete_day(day, topic)
                return
            if not self._is_current(epoch, loading):
                return
        if questions:
            self._set_phase(Quiz(current_day=day, module_title=topic, questions=tuple(questions)))
        else:
            self._complete_day(day, topic)

    async def previous_card(self) -> None:
        phase = self.phase
        if isinstance(phase, Flashcards) and phase.card_index > 0:
            self._set_phase(replace(phase, card_index=phase.card_index - 1))
            self._card_activated()

    def finish_quiz(self, answers: list[Optional[int]]) -> QuizResult:
        phase = self.phase
        if not isinstance(phase, Quiz):
            raise RuntimeError("No quiz in progress")
        result = grade(list(phase.questions), answers)
        self.last_quiz_result = result
        self._complete_day(phase.current_day, phase.module_title)
        return result

    def skip_quiz(self) -> None:
        if isinstance(self.phase, Quiz):
            self._complete_day(self.phase.current_day, self.phase.module_title)

    def proceed_to_next_day(self) -> None:
        phase = self.phase
        if not isinstance(phase, DayComplete) or self.plan is None:
            return
        if phase.current_day < self.plan.total_days:
            next_day = phase.current_day + 1
            self._set_phase(DayCover(current_day=next_day, module_title=self.plan.topic_for_day(next_day)))
        else:
            self._set_phase(CourseComplete())

    def restart(self) -> None:
        """Back to search with an empty session. The only state-clearing operation."""
        self._epoch += 1
        self.plan = None
        self.error = None
        self.last_quiz_result = None
        self.content.clear()
        self.audio.clear()
        self.quizzes.clear()
        self.editor.finish([])
        self._completed_topics.clear()
        self._explanations.clear()
        self._simplified.clear()
        self._set_phase(Search())

    # -------------------------------------------------------------------
    # Card helpers
    # -------------------------------------------------------------------
    async def play_audio(self, language: Optional[str] = None) -> AudioClip:
        """Audio for the current card. Raises AudioFailure; callers disable playback."""
        if language:
            self.language = language
        card = self.current_card
        if card is None:
            raise LookupError("No card is active")
        return await self.audio.get_or_fetch(self.phase.card_index, card, self.language)

    async def explain_term(self, term: str) -> str:
        card = self.current_card
        context = card.content if card else ""
        key = (term, context)
        if key not in self._explanations:
            self._explanations[key] = await self.backend.explain_term(term, context)
        return self._explanations[key]

    async def simplify_card(self) -> str:
        card = self.current_card
        if card is None:
            raise LookupError("No card is active")
        key = (self.phase.current_day, self.phase.card_index, card.content)
        if key not in self._simplified:
            self._simplified[key] = clean_simplified(await self.backend.simplify_content(card.content))
        return self._simplified[key]

    def edit_card(self, title: Optional[str] = None, content: Optional[str] = None) -> None:
        """Local rewrite of the active card; the plan's subtopic is untouched."""
        phase = self.phase
        if not isinstance(phase, Flashcards):
            return
        self.content.edit_card(phase.current_day, phase.card_index, title=title, content=content)

    async def update_card(self, points: list[str], audio_script: str = "", emoji: str = "") -> bool:
        """Save new points for the active card to the backend, then to the cache."""
        phase = self.phase
        card = self.current_card
        if card is None or self.plan is None or not self.plan.course_id:
            return False
        try:
            await self.backend.update_content(
                self.plan.course_id, phase.module_title, card.title, points, audio_script, emoji,
            )
        except GenerationFailure as e:
            logger.error("Updating card %r failed: %s", card.title, e)
            self.error = "Failed to update content"
            return False
        self.content.edit_card(
            phase.current_day, phase.card_index,
            content="\n\n".join(points), audio_script=audio_script, emoji=emoji or None,
        )
        return True

    async def toggle_publish(self) -> bool:
        if self.plan is None or not self.plan.course_id:
            return False
        published = not self.plan.published
        try:
            await self.backend.set_published(self.plan.course_id, published)
        except GenerationFailure as e:
            logger.error("Publishing failed: %s", e)
            self.error = "Failed to publish course"
            return False
        self.plan.published = published
        return True
