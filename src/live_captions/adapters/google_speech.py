import logging
from collections.abc import AsyncIterator

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import speech_v1 as speech

from live_captions.adapters.queued_stream import DEFAULT_MAX_PENDING, PendingFrames
from live_captions.domain.errors import BackendFatal, StreamExpiry
from live_captions.ports.recognizer import (
    RecognitionAlternative,
    RecognitionResult,
    StreamingConfig,
)

logger = logging.getLogger(__name__)


def build_streaming_config(config: StreamingConfig) -> speech.StreamingRecognitionConfig:
    recognition_config = speech.RecognitionConfig(
        encoding=speech.RecognitionConfig.AudioEncoding[config.encoding],
        sample_rate_hertz=config.sample_rate_hertz,
        language_code=config.language_code,
        enable_automatic_punctuation=config.enable_automatic_punctuation,
        audio_channel_count=config.audio_channel_count,
        model=config.model,
        profanity_filter=config.profanity_filter,
    )
    return speech.StreamingRecognitionConfig(
        config=recognition_config,
        interim_results=config.interim_results,
    )


def to_recognition_result(response: speech.StreamingRecognizeResponse) -> RecognitionResult | None:
    if not response.results:
        return None
    result = response.results[0]
    return RecognitionResult(
        alternatives=tuple(
            RecognitionAlternative(transcript=alt.transcript, confidence=alt.confidence)
            for alt in result.alternatives
        ),
        is_final=result.is_final,
    )


class GoogleStreamHandle:
    def __init__(
        self,
        client: speech.SpeechAsyncClient,
        config: StreamingConfig,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self._client = client
        self._config = config
        self._pending = PendingFrames(max_pending)

    @property
    def closed(self) -> bool:
        return self._pending.closed

    def try_write(self, frame: bytes) -> bool:
        return self._pending.offer(frame)

    async def results(self) -> AsyncIterator[RecognitionResult]:
        try:
            responses = await self._client.streaming_recognize(requests=self._requests())
            async for response in responses:
                result = to_recognition_result(response)
                if result is not None:
                    yield result
        except (google_exceptions.DeadlineExceeded, google_exceptions.OutOfRange) as exc:
            raise StreamExpiry(str(exc)) from exc
        except google_exceptions.GoogleAPICallError as exc:
            raise BackendFatal(str(exc)) from exc

    async def close(self) -> None:
        self._pending.close()

    async def _requests(self) -> AsyncIterator[speech.StreamingRecognizeRequest]:
        yield speech.StreamingRecognizeRequest(
            streaming_config=build_streaming_config(self._config),
        )
        async for frame in self._pending.drain():
            yield speech.StreamingRecognizeRequest(audio_content=frame)


class GoogleSpeechRecognizer:
    def __init__(self, project_id: str = "", max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._project_id = project_id
        self._max_pending = max_pending
        self._client: speech.SpeechAsyncClient | None = None

    async def open_stream(self, config: StreamingConfig) -> GoogleStreamHandle:
        handle = GoogleStreamHandle(self._get_client(), config, self._max_pending)
        logger.debug("Google streaming recognition opened (language=%s)", config.language_code)
        return handle

    def _get_client(self) -> speech.SpeechAsyncClient:
        if self._client is None:
            client_options = {"quota_project_id": self._project_id} if self._project_id else None
            try:
                self._client = speech.SpeechAsyncClient(client_options=client_options)
            except auth_exceptions.DefaultCredentialsError as exc:
                raise BackendFatal(
                    "Google Cloud Speech credentials not configured. "
                    "Run: gcloud auth application-default login"
                ) from exc
            logger.info("Google Cloud Speech client ready")
        return self._client
