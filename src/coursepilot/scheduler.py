"""Derive the day schedule and seeded day content from the module list."""
from dataclasses import dataclass, field
from typing import Optional

from coursepilot.models import CoursePlan, DayContent, DaySchedule, Flashcard, Module


@dataclass
class Schedule:
    days: list[DaySchedule] = field(default_factory=list)
    # day -> (module topic, content)
    day_content_seed: dict[int, tuple[str, DayContent]] = field(default_factory=dict)
    # day -> subtopic names of its module; cached content built from other names is stale
    day_sources: dict[int, tuple[str, ...]] = field(default_factory=dict)


def day_content_for(module: Module) -> DayContent:
    """One flashcard per subtopic, in subtopic order."""
    return DayContent(flashcards=[Flashcard.from_subtopic(s) for s in module.subtopics])


def subtopic_names(module: Module) -> tuple[str, ...]:
    return tuple(s.name for s in module.subtopics)


def schedule(modules: list[Module]) -> Schedule:
    """Assign dense day numbers 1..n to needed modules in stored order.

    Not-needed modules consume no day. Modules whose subtopics already carry
    content (and needed modules with no subtopics at all) get a seeded DayContent.
    Pure: the input list is never mutated.
    """
    result = Schedule()
    day = 1
    for module in modules:
        if not module.needed:
            continue
        result.days.append(DaySchedule(
            day=day,
            focus_topic=module.topic,
            summary=f"{len(module.subtopics)} Subtopics",
        ))
        result.day_sources[day] = subtopic_names(module)
        if module.has_content or not module.subtopics:
            result.day_content_seed[day] = (module.topic, day_content_for(module))
        day += 1
    return result


def total_duration(modules: list[Module]) -> int:
    """Minutes across the subtopics of needed modules."""
    return sum(s.duration_minutes for m in modules if m.needed for s in m.subtopics)


def build_plan(
    topic: str,
    course_id: Optional[str],
    modules: list[Module],
    published: bool = False,
) -> tuple[CoursePlan, Schedule]:
    result = schedule(modules)
    plan = CoursePlan(
        topic=topic,
        course_id=course_id,
        modules=modules,
        days=result.days,
        total_duration=total_duration(modules),
        published=published,
    )
    return plan, result
