import asyncio
from typing import Optional

from openai import AsyncOpenAI

from marketplace.config.settings import settings
from marketplace.utils.logger import get_logger

logger = get_logger(__name__)


class TranscriptionError(Exception):
    pass


class TranscriptionService:
    """Audio bytes → plain transcript via the OpenAI audio API. No fallback source."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self.model = model or settings.transcription_model
        self.timeout = timeout if timeout is not None else settings.transcription_timeout_seconds

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=self.timeout)
        return self._client

    async def transcribe(self, audio: bytes, mime_type: str, filename: str = "voice") -> str:
        if not audio or not mime_type:
            raise TranscriptionError("No audio data to transcribe")

        try:
            response = await asyncio.wait_for(
                self.client.audio.transcriptions.create(
                    model=self.model,
                    file=(filename, audio, mime_type),
                    response_format="text",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TranscriptionError(f"Transcription timed out after {self.timeout}s") from e
        except Exception as e:
            raise TranscriptionError(f"Transcription failed: {e}") from e

        # response_format="text" returns a str; json formats return an object with .text
        transcript = response if isinstance(response, str) else getattr(response, "text", "")
        transcript = (transcript or "").strip()
        if not transcript:
            raise TranscriptionError("Empty transcript")
        logger.info("transcribe — mime=%s bytes=%d chars=%d", mime_type, len(audio), len(transcript))
        return transcript


transcription_service = TranscriptionService()
