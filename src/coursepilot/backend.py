"""HTTP client for the generation backend.

Every method returns domain objects from `coursepilot.models` and raises
`GenerationFailure` (or `AudioFailure` for synthesis) on transport errors,
non-2xx responses and malformed bodies.
"""
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import httpx

from coursepilot import config
from coursepilot.errors import AudioFailure, GenerationFailure, SessionExpired
from coursepilot.logger import get_logger
from coursepilot.models import (
    AssessmentAnswer, AssessmentQuestion, ExistingCourse, Module, QuizQuestion, Subtopic,
    NEEDED,
)

logger = get_logger(__name__)


# -------------------------------------------------------------------
# Response normalization
# -------------------------------------------------------------------
def _title_of(entry: dict, fallback: str) -> str:
    """Backend syllabus entries carry their title under a dynamic `title_N` key."""
    for key in ("title", "topic", "module_title"):
        if isinstance(entry.get(key), str):
            return entry[key]
    for key, value in entry.items():
        if key.startswith("title_") and isinstance(value, str):
            return value
    return fallback


def parse_syllabus(raw: list) -> list[Module]:
    """Normalize a syllabus (strings, or dicts with `title_N` keys) into modules."""
    modules = []
    for entry in raw or []:
        if isinstance(entry, str):
            modules.append(Module(topic=entry))
            continue
        if not isinstance(entry, dict):
            continue
        subtopics = []
        for sub in entry.get("subtopics") or []:
            name = sub if isinstance(sub, str) else _title_of(sub, "Untitled Subtopic")
            subtopics.append(Subtopic(name=name))
        modules.append(Module(topic=_title_of(entry, "Untitled Module"), subtopics=subtopics))
    return modules


def format_syllabus(modules: list[Module]) -> list[dict]:
    """Inverse of `parse_syllabus` in the backend's `title_N` shape."""
    formatted = []
    for index, module in enumerate(modules, 1):
        formatted.append({
            f"title_{index}": module.topic,
            "subtopics": [
                {f"title_{sub_index}": sub.name, "description": sub.name}
                for sub_index, sub in enumerate(module.subtopics, 1)
            ],
        })
    return formatted


def parse_generated_subtopic(data: dict) -> Subtopic:
    return Subtopic(
        name=data.get("subtopic_title") or data.get("subtopic_name") or "Untitled Subtopic",
        content_points=list(data.get("flashcard_points") or data.get("flashcard_content") or []),
        duration_minutes=int(data.get("duration_minutes") or 5),
        audio_script=data.get("audio_script") or None,
        reference=data.get("reference") or None,
        emoji=data.get("flashcard_emoji") or None,
    )


def parse_plan_module(data: dict) -> Module:
    return Module(
        topic=data.get("topic") or "Untitled Module",
        tag=data.get("tag") or NEEDED,
        subtopics=[parse_generated_subtopic(s) for s in data.get("subtopics") or []],
    )


def parse_published_module(data: dict) -> Module:
    """Published courses ship several flashcards per subtopic; fold them into one point list."""
    subtopics = []
    for sub in data.get("subtopics") or []:
        points: list[str] = []
        emoji = None
        for card in sub.get("flashcards") or []:
            points.extend(card.get("content") or [])
            emoji = emoji or card.get("emoji")
        subtopics.append(Subtopic(
            name=_title_of(sub, "Untitled Subtopic"),
            content_points=points,
            audio_script=sub.get("audio_script") or None,
            emoji=emoji,
        ))
    return Module(topic=_title_of(data, "Untitled Module"), subtopics=subtopics)


def parse_quiz_question(data: dict) -> QuizQuestion:
    return QuizQuestion(
        question=data["question"],
        options=list(data["options"]),
        correct_index=int(data["correct_index"]),
        explanation=data.get("explanation") or "",
    )


@contextmanager
def _parsing(operation: str) -> Iterator[None]:
    """Turn shape errors while reading a response body into GenerationFailure."""
    try:
        yield
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        logger.error("[%s] malformed response: %s", operation, e)
        raise GenerationFailure(operation, "malformed response") from e


# -------------------------------------------------------------------
# Client
# -------------------------------------------------------------------
class BackendClient:
    def __init__(
        self,
        base_url: str = config.API_BASE,
        token: str = config.API_TOKEN,
        timeout: float = config.REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Any:
        logger.debug("[%s] %s %s", operation, method, path)
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("[%s] transport error: %s", operation, e)
            raise GenerationFailure(operation, str(e)) from e

        if response.status_code == 401:
            raise SessionExpired(operation, "Session expired. Please login again.")
        if response.is_error:
            detail = ""
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = str(body.get("detail") or "")
            except ValueError:
                pass
            logger.error("[%s] HTTP %s %s", operation, response.status_code, detail)
            raise GenerationFailure(operation, detail or f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationFailure(operation, "invalid JSON response") from e
        if not isinstance(body, dict):
            raise GenerationFailure(operation, "unexpected response shape")
        return body

    # --- course discovery ---

    async def search_courses(self, topic: str) -> list[ExistingCourse]:
        data = await self._request("search", "GET", "/learner/search", params={"topic": topic})
        with _parsing("search"):
            return [
                ExistingCourse(
                    id=str(c["id"]),
                    title=c.get("title", ""),
                    description=c.get("description", ""),
                    creator_name=c.get("creator_name", ""),
                    match_score=float(c.get("match_score") or 0),
                )
                for c in data.get("existing_courses") or []
            ]

    async def get_course(self, course_id: str) -> tuple[str, list[Module]]:
        """Fetch a published course with its pre-generated flashcard content."""
        data = await self._request("load course", "GET", "/learner/search", params={"course_id": course_id})
        courses = data.get("existing_courses") or []
        if not courses or not isinstance(courses, list):
            raise GenerationFailure("load course", "Course not found")
        with _parsing("load course"):
            course = courses[0]
            return course.get("title", ""), [parse_published_module(m) for m in course.get("syllabus") or []]

    # --- assessment ---

    async def generate_assessment(self, topic: str) -> tuple[str, list[AssessmentQuestion]]:
        data = await self._request(
            "assessment", "POST", "/learner/generate-assessment", json={"topic": topic},
        )
        with _parsing("assessment"):
            questions = [
                AssessmentQuestion(id=q["id"], question_text=q["question_text"], options=list(q["options"]))
                for q in data.get("questions") or []
            ]
        return data.get("topic") or topic, questions

    async def evaluate_syllabus(
        self, topic: str, answers: list[AssessmentAnswer],
    ) -> tuple[str, str, list[Module]]:
        payload = {
            "topic": topic,
            "answers": [
                {"question_id": a.question_id, "question_text": a.question_text,
                 "selected_option": a.selected_option}
                for a in answers
            ],
        }
        data = await self._request("evaluate", "POST", "/learner/evaluate-syllabus", json=payload)
        with _parsing("evaluate"):
            return data.get("course_id"), data.get("topic") or topic, parse_syllabus(data.get("syllabus"))

    # --- syllabus & plan ---

    async def generate_syllabus(self, topic: str, expertise: str = "") -> tuple[str, str, list[Module]]:
        payload = {"topic": topic, "persona": expertise or None}
        data = await self._request("syllabus", "POST", "/creator/generate-syllabus", json=payload)
        with _parsing("syllabus"):
            return data.get("course_id"), data.get("topic") or topic, parse_syllabus(data.get("syllabus"))

    async def generate_plan(self, topics: list[dict], expertise: str = "") -> list[Module]:
        data = await self._request(
            "plan", "POST", "/generate-plan", json={"topics": topics, "expertise": expertise},
        )
        with _parsing("plan"):
            return [parse_plan_module(m) for m in data.get("modules") or []]

    async def update_course(self, course_id: str, modules: list[Module]) -> None:
        await self._request(
            "save syllabus", "PUT", f"/creator/course/{course_id}",
            json={"modules": format_syllabus(modules)},
        )

    async def set_published(self, course_id: str, published: bool) -> None:
        await self._request(
            "publish", "PUT", f"/creator/course/{course_id}/publish", json={"is_published": published},
        )

    # --- content ---

    async def generate_module_content(self, course_id: str, module_title: str) -> list[Subtopic]:
        data = await self._request(
            "module content", "POST", f"/creator/course/{course_id}/generate-module-content",
            json={"topic": module_title},
        )
        with _parsing("module content"):
            return [parse_generated_subtopic(s) for s in data.get("results") or []]

    async def update_content(
        self,
        course_id: str,
        module_title: str,
        subtopic_title: str,
        points: list[str],
        audio_script: str = "",
        emoji: str = "",
    ) -> None:
        await self._request(
            "update content", "PUT", f"/creator/course/{course_id}/update-content",
            json={
                "module_title": module_title,
                "subtopic_title": subtopic_title,
                "flashcard_points": points,
                "flashcard_emoji": emoji,
                "audio_script": audio_script,
            },
        )

    async def generate_quiz(self, day: int) -> list[QuizQuestion]:
        data = await self._request("quiz", "POST", "/generate-quiz", json={"day_number": day})
        with _parsing("quiz"):
            return [parse_quiz_question(q) for q in data.get("questions") or []]

    # --- card helpers ---

    async def synthesize_audio(
        self,
        language: str,
        script: Optional[str] = None,
        title: str = "",
        content: str = "",
    ) -> str:
        """Return the base64-encoded audio payload for a card."""
        if script:
            path, payload = "/generate-audio", {"text": script, "language": language}
        else:
            path, payload = "/generate-detailed-audio", {"title": title, "content": content, "language": language}
        try:
            data = await self._request("audio", "POST", path, json=payload)
        except GenerationFailure as e:
            raise AudioFailure(str(e)) from e
        audio = data.get("audio") or data.get("audioBase64")
        if not audio:
            raise AudioFailure("audio response was empty")
        return audio

    async def explain_term(self, term: str, context: str) -> str:
        data = await self._request("explain", "POST", "/explain-term", json={"term": term, "context": context})
        return data.get("explanation", "")

    async def simplify_content(self, text: str) -> str:
        data = await self._request("simplify", "POST", "/simplify-content", json={"text": text})
        return data.get("simplified_text", "")
