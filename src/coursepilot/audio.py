"""Narrated audio per flashcard, memoized and prefetched one card ahead."""
import asyncio
import base64
import binascii
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from coursepilot.backend import BackendClient
from coursepilot.errors import AudioFailure
from coursepilot.logger import get_logger
from coursepilot.models import Flashcard
from coursepilot.singleflight import SingleFlight

logger = get_logger(__name__)


@dataclass(frozen=True)
class AudioClip:
    key: str
    data: bytes
    media_type: str = "audio/wav"

    def save(self, directory: Path) -> Path:
        """Write the clip to `directory` and return the file path."""
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{self.key.replace(':', '_')}.wav"
        path.write_bytes(self.data)
        return path


def script_for(card: Flashcard) -> str:
    return card.audio_script or f"{card.title}\n{card.content}"


def audio_key(card_index: int, language: str, card: Flashcard) -> str:
    """`index:language:fingerprint`; a changed script yields a new key."""
    fingerprint = hashlib.sha1(script_for(card).encode("utf-8")).hexdigest()[:10]
    return f"{card_index}:{language}:{fingerprint}"


class AudioCache:
    def __init__(self, backend: BackendClient):
        self._backend = backend
        self._clips: dict[str, AudioClip] = {}
        self._flight = SingleFlight()
        self._generation = 0
        self._background: set[asyncio.Task] = set()

    def get(self, card_index: int, language: str, card: Flashcard) -> Optional[AudioClip]:
        return self._clips.get(audio_key(card_index, language, card))

    async def get_or_fetch(self, card_index: int, card: Flashcard, language: str) -> AudioClip:
        """Return the cached clip or synthesize it. Raises AudioFailure."""
        key = audio_key(card_index, language, card)
        clip = self._clips.get(key)
        if clip is not None:
            logger.debug("Audio cache hit for %s", key)
            return clip

        generation = self._generation
        return await self._flight.do(key, lambda: self._synthesize(key, card, language, generation))

    async def _synthesize(self, key: str, card: Flashcard, language: str, generation: int) -> AudioClip:
        logger.info("Synthesizing audio %s", key)
        encoded = await self._backend.synthesize_audio(
            language, script=card.audio_script, title=card.title, content=card.content,
        )
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise AudioFailure(f"could not decode audio for {key}") from e
        clip = AudioClip(key=key, data=data)
        if generation == self._generation:
            self._clips[key] = clip
        return clip

    def prefetch(self, card_index: int, card: Flashcard, language: str) -> None:
        """Warm the cache in the background. Failures are logged, never raised."""
        if self.get(card_index, language, card) is not None:
            return
        task = asyncio.ensure_future(self._prefetch(card_index, card, language))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _prefetch(self, card_index: int, card: Flashcard, language: str) -> None:
        try:
            await self.get_or_fetch(card_index, card, language)
        except AudioFailure as e:
            logger.warning("Audio prefetch for card %s failed: %s", card_index, e)

    async def wait_idle(self) -> None:
        """Wait for background prefetches to settle."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def clear(self) -> None:
        self._generation += 1
        self._clips.clear()
        self._flight.clear()
