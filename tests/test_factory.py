from live_captions.adapters.google_speech import GoogleSpeechRecognizer
from live_captions.adapters.sox_source import SoxProcessSource
from live_captions.config import CaptionConfig
from live_captions.factory import (
    create_audio_source,
    create_caption_session,
    create_recognizer,
)


def sox_config(**overrides) -> CaptionConfig:
    return CaptionConfig(audio_source="sox", stt_engine="google", **overrides)


class TestFactory:
    def test_sox_source(self):
        source = create_audio_source(sox_config(sox_binary="rec", block_size=4096), device_id="hw:1")
        assert isinstance(source, SoxProcessSource)
        assert source.frame_size == 4096
        assert source.command()[0] == "rec"
        assert "hw:1" in source.command()

    def test_google_recognizer(self):
        assert isinstance(create_recognizer(sox_config()), GoogleSpeechRecognizer)

    def test_caption_session_uses_config(self):
        captions = create_caption_session(sox_config(language_code="es-ES", device_id="3"))
        assert captions.language_code == "es-ES"
        assert captions.device_id == "3"
        assert not captions.is_active
