import logging

from live_captions.config import CaptionConfig
from live_captions.domain.captions import CaptionSession
from live_captions.ports.audio import AudioSourcePort
from live_captions.ports.recognizer import RecognizerPort

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000


def create_audio_source(config: CaptionConfig, device_id: str | None = None) -> AudioSourcePort:
    if config.audio_source == "sox":
        from live_captions.adapters.sox_source import SoxProcessSource

        return SoxProcessSource(
            device=device_id,
            sample_rate=SAMPLE_RATE,
            frame_size=config.block_size,
            binary=config.sox_binary,
            input_type=config.sox_input_type,
        )
    from live_captions.adapters.sounddevice_source import SounddeviceSource

    return SounddeviceSource(
        device=device_id,
        sample_rate=SAMPLE_RATE,
        block_size=config.block_size,
    )


def create_recognizer(config: CaptionConfig) -> RecognizerPort:
    if config.stt_engine == "deepgram":
        from live_captions.adapters.deepgram_stt import DeepgramRecognizer

        return DeepgramRecognizer(api_key=config.read_secret(config.deepgram_api_key_file))
    from live_captions.adapters.google_speech import GoogleSpeechRecognizer

    return GoogleSpeechRecognizer(project_id=config.google_project_id)


def create_caption_session(config: CaptionConfig) -> CaptionSession:
    logger.debug(
        "Creating caption session (source=%s, engine=%s)",
        config.audio_source, config.stt_engine,
    )
    return CaptionSession(
        source_factory=lambda device_id: create_audio_source(config, device_id),
        recognizer=create_recognizer(config),
        language_code=config.language_code,
        device_id=config.device_id,
        buffer_capacity=config.buffer_capacity,
        max_stream_age_seconds=config.max_stream_seconds,
        refresh_check_seconds=config.refresh_check_seconds,
        reconnect_delay_seconds=config.reconnect_delay_seconds,
    )
