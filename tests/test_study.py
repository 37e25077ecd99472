# tests/test_study.py
import asyncio
import copy

import httpx
import pytest

from coursepilot.backend import BackendClient
from coursepilot.errors import EditSaveFailure, GenerationFailure
from coursepilot.models import Module, NEEDED, NOT_NEEDED
from coursepilot.phases import (
    Assessment, ContentLoading, CourseComplete, DayComplete, DayCover, Flashcards, Overview, Quiz,
    Results, Search,
)
from coursepilot.study import Session, clean_simplified


async def _to_last_card(session, day):
    await session.start_day(day)
    while session.phase.card_index < len(session.content_for_day(day)) - 1:
        await session.next_card()


# --- Course creation ---


@pytest.mark.asyncio
async def test_generate_builds_plan(planned, backend):
    assert planned.phase == Overview()
    assert planned.plan.topic == "Python"
    assert planned.plan.course_id == "course-1"
    assert [d.focus_topic for d in planned.plan.days] == ["Basics", "Functions", "Classes"]
    assert planned.plan.total_duration == 45
    backend.generate_plan.assert_awaited_once_with(
        [{"topic": t, "tag": NEEDED} for t in ["Basics", "Functions", "Classes"]], "",
    )


@pytest.mark.asyncio
async def test_generate_failure_returns_to_search(session, backend):
    backend.generate_syllabus.side_effect = GenerationFailure("syllabus", "boom")
    await session.generate("Python")
    assert session.phase == Search()
    assert session.error == "Failed to generate syllabus"
    assert session.plan is None


@pytest.mark.asyncio
async def test_generate_plan_failure_returns_to_search(session, backend):
    backend.generate_plan.side_effect = GenerationFailure("plan", "boom")
    await session.generate("Python")
    assert session.phase == Search()
    assert session.plan is None


@pytest.mark.asyncio
async def test_generate_with_empty_plan_keeps_syllabus(session, backend):
    backend.generate_plan.side_effect = None
    backend.generate_plan.return_value = []
    await session.generate("Python")
    assert [m.topic for m in session.plan.modules] == ["Basics", "Functions", "Classes"]
    assert session.plan.total_days == 3


@pytest.mark.asyncio
async def test_search_with_results(session, backend, courses):
    backend.search_courses.return_value = courses
    await session.search_courses("python")
    assert session.phase == Results(topic="python", courses=tuple(courses))


@pytest.mark.asyncio
async def test_search_without_results_starts_assessment(session, backend):
    await session.search_courses("python")
    assert isinstance(session.phase, Assessment)
    assert session.phase.topic == "Python"
    assert len(session.phase.questions) == 1


@pytest.mark.asyncio
async def test_search_failure_starts_assessment(session, backend):
    backend.search_courses.side_effect = GenerationFailure("search", "down")
    await session.search_courses("python")
    assert isinstance(session.phase, Assessment)


@pytest.mark.asyncio
async def test_assessment_failure_returns_to_search(session, backend):
    backend.generate_assessment.side_effect = GenerationFailure("assessment", "down")
    await session.start_assessment("python")
    assert session.phase == Search()
    assert session.error == "Could not generate assessment"


@pytest.mark.asyncio
async def test_start_new_course_from_results(session, backend, courses):
    backend.search_courses.return_value = courses
    await session.search_courses("python")
    await session.start_new_course()
    assert isinstance(session.phase, Assessment)


@pytest.mark.asyncio
async def test_submit_assessment_builds_published_plan(session, backend):
    await session.start_assessment("python")
    await session.submit_assessment([])
    assert session.phase == Overview()
    assert session.plan.course_id == "course-2"
    assert session.plan.published


@pytest.mark.asyncio
async def test_enroll_preloads_content(session, backend):
    await session.enroll("42")
    assert session.phase == Overview()
    assert sorted(session.day_contents) == [1, 2, 3]
    await session.start_day(1)
    assert session.phase == Flashcards(current_day=1, module_title="Basics", card_index=0)
    backend.generate_module_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_enroll_failure(session, backend):
    backend.get_course.side_effect = GenerationFailure("load course", "Course not found")
    await session.enroll("missing")
    assert session.phase == Search()
    assert session.error.startswith("Failed to load course")


# --- Days and cards ---


@pytest.mark.asyncio
async def test_start_day_generates_content(planned, backend):
    await planned.start_day(1)
    assert planned.phase == Flashcards(current_day=1, module_title="Basics", card_index=0)
    assert planned.current_card.title == "Basics 1"
    backend.generate_module_content.assert_awaited_once_with("course-1", "Basics")
    assert planned.plan.find_module("Basics").has_content


@pytest.mark.asyncio
async def test_start_day_failure_returns_to_overview(planned, backend):
    backend.generate_module_content.side_effect = GenerationFailure("module content", "boom")
    await planned.start_day(2)
    assert planned.phase == Overview()
    assert planned.error == "Failed to generate content"
    assert planned.content_for_day(2) is None


@pytest.mark.asyncio
async def test_go_to_day_without_content_shows_cover(planned, backend):
    await planned.go_to_day(2)
    assert planned.phase == DayCover(current_day=2, module_title="Functions")
    backend.generate_module_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_go_to_day_with_content_opens_cards(planned):
    await planned.start_day(1)
    planned.go_to_overview()
    await planned.go_to_day(1, card_index=2)
    assert planned.phase == Flashcards(current_day=1, module_title="Basics", card_index=2)


@pytest.mark.asyncio
async def test_card_navigation(planned):
    await planned.start_day(1)
    await planned.next_card()
    assert planned.phase.card_index == 1
    await planned.previous_card()
    assert planned.phase.card_index == 0
    await planned.previous_card()
    assert planned.phase.card_index == 0


@pytest.mark.asyncio
async def test_card_activation_prefetches_next_audio(planned, backend):
    await planned.start_day(1)
    await planned.audio.wait_idle()
    content = planned.content_for_day(1)
    assert planned.audio.get(1, planned.language, content.flashcards[1]) is not None
    assert planned.audio.get(0, planned.language, content.flashcards[0]) is None


@pytest.mark.asyncio
async def test_last_card_with_warm_quiz_makes_no_calls(planned, backend):
    await planned.start_day(2)
    await planned.quizzes.wait_idle()
    await planned.next_card()
    await planned.next_card()
    assert planned.phase == Flashcards(current_day=2, module_title="Functions", card_index=2)
    await planned.audio.wait_idle()
    backend.reset_mock()

    await planned.next_card()

    assert isinstance(planned.phase, Quiz)
    assert planned.phase.current_day == 2
    assert len(planned.phase.questions) == 2
    assert backend.mock_calls == []


@pytest.mark.asyncio
async def test_last_card_shares_prefetched_quiz(planned, backend):
    await _to_last_card(planned, 1)
    await planned.next_card()
    assert isinstance(planned.phase, Quiz)
    backend.generate_quiz.assert_awaited_once_with(1)


@pytest.mark.asyncio
async def test_finish_quiz_completes_day(planned):
    await _to_last_card(planned, 1)
    await planned.next_card()
    result = planned.finish_quiz([1, 0])
    assert result.correct == 1
    assert planned.last_quiz_result is result
    assert planned.phase == DayComplete(current_day=1, module_title="Basics")
    assert planned.completed_days == [1]


@pytest.mark.asyncio
async def test_skip_quiz_completes_day(planned):
    await _to_last_card(planned, 1)
    await planned.next_card()
    planned.skip_quiz()
    assert isinstance(planned.phase, DayComplete)
    assert planned.last_quiz_result is None


@pytest.mark.asyncio
async def test_proceed_to_next_day(planned):
    await _to_last_card(planned, 1)
    await planned.next_card()
    planned.skip_quiz()
    planned.proceed_to_next_day()
    assert planned.phase == DayCover(current_day=2, module_title="Functions")


@pytest.mark.asyncio
async def test_proceed_from_last_day_completes_course(planned):
    await _to_last_card(planned, 3)
    await planned.next_card()
    planned.skip_quiz()
    assert planned.phase == DayComplete(current_day=3, module_title="Classes")
    planned.proceed_to_next_day()
    assert planned.phase == CourseComplete()


@pytest.mark.asyncio
async def test_creator_skips_quiz(creator, backend):
    await creator.generate("Python")
    await _to_last_card(creator, 1)
    await creator.next_card()
    assert creator.phase == DayComplete(current_day=1, module_title="Basics")
    backend.generate_quiz.assert_not_awaited()


# --- Plan mutation ---


@pytest.mark.asyncio
async def test_toggle_module_reschedules(planned):
    planned.toggle_module("Functions")
    assert [(d.day, d.focus_topic) for d in planned.plan.days] == [(1, "Basics"), (2, "Classes")]
    planned.toggle_module("Functions")
    assert [(d.day, d.focus_topic) for d in planned.plan.days] == [
        (1, "Basics"), (2, "Functions"), (3, "Classes"),
    ]


@pytest.mark.asyncio
async def test_toggle_redirects_when_active_day_moves(planned):
    await planned.start_day(2)
    planned.toggle_module("Basics")
    assert planned.phase == Overview()
    # Functions moved to day 1 and kept its generated cards
    assert planned.content_for_day(1).flashcards[0].title == "Functions 1"
    assert planned.content_for_day(2) is None


@pytest.mark.asyncio
async def test_toggle_keeps_active_day_when_unchanged(planned):
    await planned.start_day(1)
    planned.toggle_module("Classes")
    assert isinstance(planned.phase, Flashcards)
    assert planned.plan.find_module("Classes").tag == NOT_NEEDED


@pytest.mark.asyncio
async def test_completed_days_follow_their_module(planned):
    await _to_last_card(planned, 2)
    await planned.next_card()
    planned.skip_quiz()
    planned.toggle_module("Basics")
    assert planned.completed_days == [1]


@pytest.mark.asyncio
async def test_save_edits_commits_draft(planned):
    planned.start_edit()
    planned.editor.rename_module("Basics", "Foundations")
    planned.editor.delete_module("Classes")
    await planned.save_edits()
    assert not planned.editor.editing
    assert [d.focus_topic for d in planned.plan.days] == ["Foundations", "Functions"]


@pytest.mark.asyncio
async def test_creator_save_sends_draft(creator, backend):
    await creator.generate("Python")
    creator.start_edit()
    creator.editor.add_module()
    await creator.save_edits()
    course_id, modules = backend.update_course.await_args.args
    assert course_id == "course-1"
    assert [m.topic for m in modules] == ["Basics", "Functions", "Classes", "New Module"]
    assert creator.plan.total_days == 4


@pytest.mark.asyncio
async def test_cancel_edit_restores_committed(planned):
    committed = copy.deepcopy(planned.plan.modules)
    planned.start_edit()
    planned.editor.rename_module("Basics", "Other")
    planned.editor.delete_subtopic("Functions", 0)
    planned.editor.add_module()
    planned.cancel_edit()
    assert planned.editor.draft == committed
    assert planned.plan.modules == committed


@pytest.mark.asyncio
async def test_toggle_publish(creator, backend):
    await creator.generate("Python")
    assert await creator.toggle_publish()
    assert creator.plan.published
    backend.set_published.assert_awaited_once_with("course-1", True)


# --- Card helpers ---


@pytest.mark.asyncio
async def test_play_audio_for_current_card(planned, backend):
    await planned.start_day(1)
    clip = await planned.play_audio()
    again = await planned.play_audio()
    assert clip is again
    assert clip.key.startswith("0:English:")


@pytest.mark.asyncio
async def test_play_audio_switches_language(planned):
    await planned.start_day(1)
    clip = await planned.play_audio("Hindi")
    assert planned.language == "Hindi"
    assert ":Hindi:" in clip.key


@pytest.mark.asyncio
async def test_explain_term_is_cached(planned, backend):
    await planned.start_day(1)
    assert await planned.explain_term("variable") == "A short explanation."
    await planned.explain_term("variable")
    backend.explain_term.assert_awaited_once_with("variable", planned.current_card.content)


@pytest.mark.asyncio
async def test_simplify_card(planned, backend):
    backend.simplify_content.return_value = "['First idea', 'Second idea']"
    await planned.start_day(1)
    assert await planned.simplify_card() == "First idea\nSecond idea"
    await planned.simplify_card()
    assert backend.simplify_content.await_count == 1


@pytest.mark.asyncio
async def test_edit_card_changes_cache_only(planned):
    await planned.start_day(1)
    planned.edit_card(title="My title", content="My notes")
    assert planned.current_card.title == "My title"
    assert planned.plan.find_module("Basics").subtopics[0].name == "Basics 1"


@pytest.mark.asyncio
async def test_update_card_saves_then_caches(creator, backend):
    await creator.generate("Python")
    await creator.start_day(1)
    assert await creator.update_card(["new a", "new b"], audio_script="read me", emoji="🐍")
    backend.update_content.assert_awaited_once_with(
        "course-1", "Basics", "Basics 1", ["new a", "new b"], "read me", "🐍",
    )
    card = creator.current_card
    assert card.content == "new a\n\nnew b"
    assert card.emoji == "🐍"


def test_clean_simplified():
    assert clean_simplified('["one", "two"]') == "one\ntwo"
    assert clean_simplified("  plain text ") == "plain text"


# --- Edge case tests ---


@pytest.mark.asyncio
async def test_quiz_failure_completes_day(planned, backend):
    """A failed quiz generation marks the day complete without a quiz."""
    backend.generate_quiz.side_effect = GenerationFailure("quiz", "boom")
    await _to_last_card(planned, 1)
    await planned.quizzes.wait_idle()
    await planned.next_card()
    assert planned.phase == DayComplete(current_day=1, module_title="Basics")
    assert 1 in planned.completed_days


@pytest.mark.asyncio
async def test_empty_quiz_completes_day(planned, backend):
    """A quiz with no questions is skipped."""
    backend.generate_quiz.side_effect = lambda day: []
    await _to_last_card(planned, 1)
    await planned.next_card()
    assert isinstance(planned.phase, DayComplete)


@pytest.mark.asyncio
async def test_module_without_subtopics_completes_immediately(session, backend):
    """A needed module with no subtopics still has a day, which completes on entry."""
    backend.generate_plan.side_effect = lambda topics, expertise="": [Module("Empty"), Module("Later")]
    await session.generate("Python")
    await session.start_day(1)
    assert session.phase == DayComplete(current_day=1, module_title="Empty")
    backend.generate_module_content.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_course_id_shows_cover_with_error(session, backend):
    """Without a backend course there is nothing to generate content from."""
    backend.generate_syllabus.return_value = (None, "Python", [Module("Basics")])
    await session.generate("Python")
    await session.start_day(1)
    assert session.phase == DayCover(current_day=1, module_title="Basics")
    assert session.error == "Content not available for this module."


@pytest.mark.asyncio
async def test_actions_ignored_while_loading(planned, backend):
    """A second start while content is loading does not issue another request."""
    release = asyncio.Event()

    async def slow(course_id, title):
        await release.wait()
        return []

    backend.generate_module_content.side_effect = slow
    pending = asyncio.ensure_future(planned.start_day(1))
    await asyncio.sleep(0)
    assert planned.phase == ContentLoading(current_day=1, module_title="Basics")
    assert planned.busy
    await planned.start_day(2)
    await planned.generate("Other")
    release.set()
    await pending
    assert backend.generate_module_content.await_count == 1
    backend.generate_syllabus.assert_awaited_once()


@pytest.mark.asyncio
async def test_late_content_after_restart_is_discarded(planned, backend):
    """Content arriving after restart() neither changes the phase nor repopulates caches."""
    release = asyncio.Event()

    async def slow(course_id, title):
        await release.wait()
        return []

    backend.generate_module_content.side_effect = slow
    pending = asyncio.ensure_future(planned.start_day(1))
    await asyncio.sleep(0)
    planned.restart()
    release.set()
    await pending
    assert planned.phase == Search()
    assert planned.plan is None
    assert planned.day_contents == {}


@pytest.mark.asyncio
async def test_late_syllabus_after_restart_is_discarded(session, backend):
    """A syllabus that lands after restart() does not resurrect the old plan."""
    release = asyncio.Event()
    canned = backend.generate_syllabus.return_value

    async def slow(topic, expertise):
        await release.wait()
        return canned

    backend.generate_syllabus.side_effect = slow
    pending = asyncio.ensure_future(session.generate("Python"))
    await asyncio.sleep(0)
    session.restart()
    release.set()
    await pending
    assert session.phase == Search()
    assert session.plan is None


@pytest.mark.asyncio
async def test_save_edits_rejects_duplicate_titles(planned):
    """An invalid draft is kept in edit mode and the plan is untouched."""
    planned.start_edit()
    planned.editor.rename_module("Functions", "Basics")
    with pytest.raises(EditSaveFailure):
        await planned.save_edits()
    assert planned.editor.editing
    assert [m.topic for m in planned.editor.draft] == ["Basics", "Basics", "Classes"]
    assert [m.topic for m in planned.plan.modules] == ["Basics", "Functions", "Classes"]


@pytest.mark.asyncio
async def test_save_edits_rejects_blank_title(planned):
    """Blank module titles are refused."""
    planned.start_edit()
    planned.editor.rename_module("Functions", "  ")
    with pytest.raises(EditSaveFailure):
        await planned.save_edits()


@pytest.mark.asyncio
async def test_creator_save_failure_keeps_draft(creator, backend):
    """A failed remote save leaves the draft for a retry and the plan as it was."""
    await creator.generate("Python")
    backend.update_course.side_effect = GenerationFailure("save syllabus", "down")
    creator.start_edit()
    creator.editor.add_module()
    with pytest.raises(EditSaveFailure):
        await creator.save_edits()
    assert creator.editor.editing
    assert creator.editor.draft[-1].topic == "New Module"
    assert creator.plan.total_days == 3


@pytest.mark.asyncio
async def test_finish_quiz_outside_quiz(planned):
    """Grading without a quiz on screen is a programming error."""
    with pytest.raises(RuntimeError):
        planned.finish_quiz([])


@pytest.mark.asyncio
async def test_play_audio_without_card(planned):
    """Audio needs an active card."""
    with pytest.raises(LookupError):
        await planned.play_audio()


@pytest.mark.asyncio
async def test_update_card_failure(creator, backend):
    """A failed content update reports False and leaves the card alone."""
    await creator.generate("Python")
    await creator.start_day(1)
    backend.update_content.side_effect = GenerationFailure("update content", "down")
    assert not await creator.update_card(["x"])
    assert creator.current_card.content == "Basics 1 point a\n\nBasics 1 point b"
    assert creator.error == "Failed to update content"


@pytest.mark.asyncio
async def test_restart_clears_everything(planned):
    """restart() is the one operation that empties the session."""
    await _to_last_card(planned, 1)
    await planned.next_card()
    planned.finish_quiz([1, 1])
    planned.restart()
    assert planned.phase == Search()
    assert planned.plan is None
    assert planned.completed_days == []
    assert planned.last_quiz_result is None
    assert planned.day_contents == {}


@pytest.mark.asyncio
async def test_restructured_subtopics_rebuild_cards(planned):
    """Reordering and deleting subtopics of a generated module rebuilds its cards and quiz key."""
    await planned.start_day(1)
    stamp = planned.content.stamp(1)
    planned.go_to_overview()
    planned.start_edit()
    planned.editor.reorder_subtopic("Basics", 0, "down")
    planned.editor.delete_subtopic("Basics", 2)
    await planned.save_edits()
    assert [c.title for c in planned.content_for_day(1).flashcards] == ["Basics 2", "Basics 1"]
    assert planned.content.stamp(1) != stamp


@pytest.mark.asyncio
async def test_renamed_subtopic_rebuilds_cards(planned):
    """A renamed subtopic shows up on its card after saving."""
    await planned.start_day(1)
    planned.go_to_overview()
    planned.start_edit()
    planned.editor.rename_subtopic("Basics", 0, "Intro")
    await planned.save_edits()
    assert [c.title for c in planned.content_for_day(1).flashcards] == ["Intro", "Basics 2", "Basics 3"]


@pytest.mark.asyncio
async def test_card_edits_survive_a_toggle(planned):
    """Toggling another module keeps local card edits of an unchanged day."""
    await planned.start_day(1)
    planned.edit_card(title="Mine")
    planned.go_to_overview()
    planned.toggle_module("Classes")
    assert planned.content_for_day(1).flashcards[0].title == "Mine"


@pytest.mark.asyncio
async def test_flashcards_leave_when_active_card_is_deleted(planned):
    """Saving edits that drop the card on screen returns to the overview."""
    await planned.start_day(1)
    await planned.next_card()
    await planned.next_card()
    planned.start_edit()
    planned.editor.delete_subtopic("Basics", 0)
    await planned.save_edits()
    assert planned.phase == Overview()
    assert len(planned.content_for_day(1)) == 2


@pytest.mark.asyncio
async def test_module_gaining_subtopics_is_generated(session, backend):
    """A bare module's empty day is regenerated once subtopics are added to it."""
    backend.generate_plan.side_effect = None
    backend.generate_plan.return_value = []
    await session.generate("Python")
    assert session.content_for_day(1).flashcards == []
    session.start_edit()
    session.editor.add_subtopic("Basics")
    await session.save_edits()
    await session.start_day(1)
    backend.generate_module_content.assert_awaited_once_with("course-1", "Basics")
    assert session.phase == Flashcards(current_day=1, module_title="Basics", card_index=0)


@pytest.mark.asyncio
async def test_toggle_and_save_refused_while_loading(planned, backend):
    """Plan changes wait until content loading finishes."""
    release = asyncio.Event()

    async def slow(course_id, title):
        await release.wait()
        return []

    backend.generate_module_content.side_effect = slow
    pending = asyncio.ensure_future(planned.start_day(1))
    await asyncio.sleep(0)
    planned.toggle_module("Basics")
    assert planned.plan.find_module("Basics").tag == NEEDED
    planned.start_edit()
    planned.editor.delete_module("Basics")
    with pytest.raises(EditSaveFailure, match="loading"):
        await planned.save_edits()
    assert [m.topic for m in planned.plan.modules] == ["Basics", "Functions", "Classes"]
    release.set()
    await pending
    assert not planned.busy


@pytest.mark.asyncio
async def test_malformed_content_does_not_strand_the_session():
    """A backend body of the wrong shape fails the day instead of leaving it loading."""
    def handler(request):
        path = request.url.path
        if path == "/creator/generate-syllabus":
            return httpx.Response(200, json={"course_id": "c1", "topic": "Python", "syllabus": ["Basics"]})
        if path == "/generate-plan":
            return httpx.Response(200, json={"modules": [{"topic": "Basics", "subtopics": [{"subtopic_title": "Vars"}]}]})
        return httpx.Response(200, json={"results": [{"subtopic_title": "Vars", "duration_minutes": "ten"}]})

    async with BackendClient(base_url="http://backend.test", transport=httpx.MockTransport(handler)) as client:
        session = Session(client)
        await session.generate("Python")
        await session.start_day(1)
    assert session.phase == Overview()
    assert not session.busy
    assert session.error == "Failed to generate content"
