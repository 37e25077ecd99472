"""Generated flashcard content, cached per day."""
from dataclasses import dataclass
from typing import Callable, Optional

from coursepilot.backend import BackendClient
from coursepilot.logger import get_logger
from coursepilot.models import DayContent, Module, Subtopic
from coursepilot.scheduler import Schedule, day_content_for, subtopic_names
from coursepilot.singleflight import SingleFlight

logger = get_logger(__name__)


@dataclass
class ContentEntry:
    module_title: str
    content: DayContent
    revision: int
    # subtopic names the cards were built from
    source: tuple[str, ...] = ()


class ContentCache:
    """day -> DayContent, each entry tagged with the module it was produced for.

    An entry is only served while its day still resolves to the same module.
    `seed` drops or rebuilds entries whose module moved away or whose subtopic
    list changed since the cards were made.
    """

    def __init__(self, backend: BackendClient):
        self._backend = backend
        self._entries: dict[int, ContentEntry] = {}
        self._flight = SingleFlight()
        self._revision = 0
        self._generation = 0

    def get(self, day: int, module_title: Optional[str] = None) -> Optional[DayContent]:
        entry = self._entries.get(day)
        if entry is None:
            return None
        if module_title is not None and entry.module_title != module_title:
            logger.debug("Ignoring stale content for day %s (%s != %s)", day, entry.module_title, module_title)
            return None
        return entry.content

    def stamp(self, day: int) -> Optional[tuple[str, int]]:
        """Identity of the current entry for `day`; changes whenever the day is rewritten."""
        entry = self._entries.get(day)
        return (entry.module_title, entry.revision) if entry else None

    def put(self, day: int, module_title: str, content: DayContent, source: tuple[str, ...] = ()) -> None:
        self._revision += 1
        self._entries[day] = ContentEntry(module_title, content, self._revision, source)

    def seed(self, result: Schedule) -> None:
        """Reconcile cached days with a fresh schedule.

        An entry survives only while its day maps to the same module with the
        same subtopic list, so local card edits outlive a toggle but not a
        restructure. Otherwise the scheduler's seed replaces it, or the entry is
        dropped so the day is generated again.
        """
        for day in list(self._entries):
            if day not in result.day_sources:
                del self._entries[day]

        for entry_day in result.days:
            day, title = entry_day.day, entry_day.focus_topic
            source = result.day_sources[day]
            entry = self._entries.get(day)
            if entry is not None and entry.module_title == title and entry.source == source:
                continue
            if day in result.day_content_seed:
                self.put(day, title, result.day_content_seed[day][1], source)
            elif entry is not None:
                logger.debug("Dropping stale content for day %s (%s)", day, entry.module_title)
                del self._entries[day]

    async def ensure(
        self,
        day: int,
        module_title: str,
        course_id: str,
        backfill: Optional[Callable[[str, list[Subtopic]], None]] = None,
    ) -> DayContent:
        """Return cached content for the day, generating it once if absent.

        After a fetch, `backfill(module_title, subtopics)` lets the owner of the
        plan copy the generated subtopics back into its module list. Concurrent
        calls for the same day share one backend request. A result is not
        cached over a day that now holds another module's content.
        """
        cached = self.get(day, module_title)
        if cached is not None:
            logger.debug("Content cache hit for day %s", day)
            return cached

        generation = self._generation

        async def fetch() -> DayContent:
            logger.info("Generating content for day %s (%s)", day, module_title)
            subtopics = await self._backend.generate_module_content(course_id, module_title)
            module = Module(topic=module_title, subtopics=subtopics)
            content = day_content_for(module)
            if generation != self._generation:
                logger.info("Discarding content for day %s that arrived after a reset", day)
                return content
            current = self._entries.get(day)
            if current is not None and current.module_title != module_title:
                logger.info("Day %s now holds %r; not caching content for %r", day, current.module_title, module_title)
            else:
                self.put(day, module_title, content, subtopic_names(module))
            if backfill is not None:
                backfill(module_title, subtopics)
            return content

        return await self._flight.do((day, module_title), fetch)

    def edit_card(
        self,
        day: int,
        index: int,
        title: Optional[str] = None,
        content: Optional[str] = None,
        audio_script: Optional[str] = None,
        emoji: Optional[str] = None,
    ) -> None:
        """Rewrite a cached card in place. The plan's subtopic is left untouched."""
        entry = self._entries.get(day)
        if entry is None or not 0 <= index < len(entry.content.flashcards):
            raise KeyError(f"No cached card {index} for day {day}")
        card = entry.content.flashcards[index]
        if title is not None:
            card.title = title
        if content is not None:
            card.content = content
        if audio_script is not None:
            card.audio_script = audio_script
        if emoji is not None:
            card.emoji = emoji

    def as_dict(self) -> dict[int, DayContent]:
        return {day: entry.content for day, entry in self._entries.items()}

    def clear(self) -> None:
        self._generation += 1
        self._entries.clear()
        self._flight.clear()
