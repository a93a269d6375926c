import logging
import shutil
from dataclasses import dataclass

import google.auth
from google.auth import exceptions as auth_exceptions

from live_captions.config import CaptionConfig

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: CaptionConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_sox_binary(config),
        _check_credentials(config),
    ]

    passed = sum(1 for r in results if r.passed)

    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    critical_checks = {"audio_device", "sox_binary", "credentials"}
    return any(not r.passed and r.name in critical_checks for r in results)


def _check_audio_device(config: CaptionConfig) -> HealthCheckResult:
    name = "audio_device"
    if config.audio_source != "sounddevice":
        return HealthCheckResult(name=name, passed=True, detail=f"Skipped (source={config.audio_source})")
    try:
        import sounddevice as sd

        if not config.device_id:
            default = sd.query_devices(kind="input")
            return HealthCheckResult(name=name, passed=True, detail=f"Default input: {default['name']}")

        from live_captions.adapters.sounddevice_source import list_input_devices

        for index, device_name in list_input_devices():
            if config.device_id == str(index) or config.device_id.lower() in device_name.lower():
                return HealthCheckResult(name=name, passed=True, detail=f"Device '{device_name}' found")
        return HealthCheckResult(name=name, passed=False, detail=f"No input device matching '{config.device_id}'")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_sox_binary(config: CaptionConfig) -> HealthCheckResult:
    name = "sox_binary"
    if config.audio_source != "sox":
        return HealthCheckResult(name=name, passed=True, detail=f"Skipped (source={config.audio_source})")
    path = shutil.which(config.sox_binary)
    if path is None:
        return HealthCheckResult(
            name=name,
            passed=False,
            detail=f"'{config.sox_binary}' not found on PATH, install SoX to record audio",
        )
    return HealthCheckResult(name=name, passed=True, detail=path)


def _check_credentials(config: CaptionConfig) -> HealthCheckResult:
    name = "credentials"
    if config.stt_engine == "deepgram":
        if not config.read_secret(config.deepgram_api_key_file):
            return HealthCheckResult(
                name=name,
                passed=False,
                detail=f"Missing deepgram key ({config.deepgram_api_key_file or 'not configured'})",
            )
        return HealthCheckResult(name=name, passed=True, detail="Deepgram key loaded")

    try:
        _, project = google.auth.default()
    except auth_exceptions.DefaultCredentialsError:
        return HealthCheckResult(
            name=name,
            passed=False,
            detail="Google Cloud credentials not configured, run: gcloud auth application-default login",
        )
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))
    return HealthCheckResult(
        name=name,
        passed=True,
        detail=f"Google application default credentials (project={config.google_project_id or project})",
    )
