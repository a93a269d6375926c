import argparse
import asyncio
import logging
import signal
import sys

from live_captions.config import CaptionConfig
from live_captions.domain.captions import CaptionSession
from live_captions.domain.errors import CaptionError
from live_captions.domain.events import (
    FinalTranscript,
    InterimTranscript,
    SessionError,
    SessionStopped,
)
from live_captions.log_format import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Live captions from microphone audio")
    parser.add_argument("--language", help="Recognition language code, e.g. en-US")
    parser.add_argument("--device", help="Capture device index or name")
    parser.add_argument("--source", choices=["sounddevice", "sox"], help="Audio source")
    parser.add_argument("--engine", choices=["google", "deepgram"], help="Recognition backend")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("devices", help="List audio input devices")

    args = parser.parse_args()

    config = CaptionConfig()
    if args.language:
        config.language_code = args.language
    if args.device:
        config.device_id = args.device
    if args.source:
        config.audio_source = args.source
    if args.engine:
        config.stt_engine = args.engine

    configure_logging(verbose=args.verbose, log_file=config.log_file)

    if args.command == "devices":
        _list_devices()
    else:
        asyncio.run(_run_captions(config))


def _list_devices() -> None:
    from live_captions.adapters.sounddevice_source import list_input_devices

    for index, name in list_input_devices():
        print(f"{index:>3}  {name}")


async def render_captions(session: CaptionSession, out=sys.stdout) -> None:
    async for event in session.events():
        if isinstance(event, InterimTranscript):
            out.write(f"\r\033[K{event.text}")
            out.flush()
        elif isinstance(event, FinalTranscript):
            out.write(f"\r\033[K{event.text}\n")
            out.flush()
        elif isinstance(event, SessionError):
            print(f"\nError: {event.message}", file=sys.stderr)
        elif isinstance(event, SessionStopped):
            return


async def _run_captions(config: CaptionConfig) -> None:
    from live_captions.health import run_startup_checks, has_critical_failures
    from live_captions.factory import create_caption_session

    results = run_startup_checks(config)
    if has_critical_failures(results):
        logging.error("Critical health check failures, aborting startup")
        sys.exit(1)

    session = create_caption_session(config)

    shutdown_event = asyncio.Event()
    shutdown_triggered = False

    def handle_signal() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            logging.warning("Forced exit")
            sys.exit(1)
        shutdown_triggered = True
        logging.info("Shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    render_task = asyncio.create_task(render_captions(session))
    try:
        await session.start()
    except CaptionError as exc:
        logging.error("Could not start captions: %s", exc)
        await asyncio.wait_for(render_task, timeout=1.0)
        sys.exit(1)

    shutdown_task = asyncio.create_task(shutdown_event.wait())
    try:
        await asyncio.wait({render_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        await session.stop()
        shutdown_task.cancel()
        try:
            await asyncio.wait_for(render_task, timeout=1.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass


if __name__ == "__main__":
    main()
