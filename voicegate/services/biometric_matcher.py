"""
Speaker-embedding implementation of the template generator and matcher.

Both operations fetch the provider recording, normalise it to 16kHz mono
WAV, and embed it. Model inference and ffmpeg are blocking, so they run in a
worker thread to keep the event loop free.
"""

import asyncio
import logging
from typing import Optional, Tuple

import numpy as np

from voicegate.clients.base import BiometricError, BiometricMatcher, TemplateGenerator
from voicegate.config import settings
from voicegate.services.embedding_service import EmbeddingService
from voicegate.utils.audio_utils import (
    AudioDownloadError,
    AudioProcessingError,
    convert_to_16khz_mono,
    download_audio_file,
    get_audio_duration,
    recording_media_url
)

logger = logging.getLogger(__name__)


class SpeakerEmbeddingMatcher(TemplateGenerator, BiometricMatcher):
    """
    Voice templates and confidence scores from ECAPA speaker embeddings.

    Confidence is the cosine similarity between the stored and the live
    embedding, clamped to [0, 1].
    """

    def __init__(
        self,
        embedding_service: Optional[EmbeddingService] = None,
        recording_auth: Optional[Tuple[str, str]] = None,
        min_duration: Optional[float] = None
    ):
        self.embedding_service = embedding_service or EmbeddingService()
        self.recording_auth = recording_auth
        self.min_duration = min_duration if min_duration is not None else settings.min_audio_duration

    async def _embed(self, audio_reference: str) -> np.ndarray:
        try:
            raw = await download_audio_file(recording_media_url(audio_reference), auth=self.recording_auth)
            wav = await asyncio.to_thread(convert_to_16khz_mono, raw)

            duration = get_audio_duration(wav)
            if duration < self.min_duration:
                raise BiometricError(f"Recording too short: {duration:.1f}s (minimum {self.min_duration}s)")

            embedding = await asyncio.to_thread(self.embedding_service.generate_embedding, wav)
        except (AudioDownloadError, AudioProcessingError) as e:
            logger.error(f"Recording could not be prepared: {e}")
            raise BiometricError(f"Recording could not be prepared: {e}")
        except (RuntimeError, ValueError) as e:
            logger.error(f"Embedding failed: {e}")
            raise BiometricError(f"Embedding failed: {e}")

        if not self.embedding_service.validate_embedding(embedding):
            raise BiometricError("Generated embedding failed validation")
        return embedding

    async def generate(self, audio_reference: str) -> bytes:
        embedding = await self._embed(audio_reference)
        logger.info("Generated voice template from enrollment recording")
        return self.embedding_service.encode_template(embedding)

    async def match(self, audio_reference: str, stored_template: bytes) -> float:
        try:
            stored = self.embedding_service.decode_template(stored_template)
        except ValueError as e:
            raise BiometricError(f"Stored voice template is unusable: {e}")

        live = await self._embed(audio_reference)

        try:
            similarity = self.embedding_service.compute_cosine_similarity(stored, live)
        except ValueError as e:
            raise BiometricError(f"Similarity computation failed: {e}")

        confidence = max(0.0, min(1.0, similarity))
        logger.debug(f"Speaker match: similarity={similarity:.4f}, confidence={confidence:.4f}")
        return confidence
