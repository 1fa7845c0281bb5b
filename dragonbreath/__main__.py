"""
Dragonbreath entry point.

Run with: python -m dragonbreath
Or: dragonbreath (if installed)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from dragonbreath import __version__
from dragonbreath.core.config import Config
from dragonbreath.core.session import TrainingSession
from dragonbreath.core.stats import SessionStats
from dragonbreath.detectors.base import AudioSourceError
from dragonbreath.detectors.audio.source import create_audio_source
from dragonbreath.feedback import create_feedback_generator


def print_summary(stats: SessionStats) -> None:
    """Print the end-of-session statistics."""
    print("=" * 40)
    print("🐉 Session Complete")
    print(f"  Total breaths:   {stats.total_breaths}")
    print(f"  Max duration:    {stats.max_duration:.1f}s")
    print(f"  Total duration:  {stats.total_duration:.1f}s")
    print(f"  Avg intensity:   {stats.avg_intensity * 100:.0f}%")
    print("=" * 40)


async def run_session(
    config: Config,
    mock_mic: bool = False,
    duration: float | None = None,
) -> SessionStats | None:
    """
    Run one training session in the terminal.

    Args:
        config: Dragonbreath configuration
        mock_mic: Use the synthetic source instead of a microphone
        duration: Seconds of active training, or None to run until Ctrl+C

    Returns:
        Final statistics, or None if the microphone could not be opened
    """
    print(f"🐉 Dragonbreath v{__version__}")
    print("=" * 40)

    source = create_audio_source(config.audio, mock=mock_mic)
    session = TrainingSession(config, source)

    if mock_mic:
        print("🎛️  Using synthetic microphone for development")

    session.set_on_progress(
        lambda progress: print(f"\r🎚️  Calibrating, stay silent... {progress:3d}%", end="", flush=True)
    )
    session.set_on_calibrated(
        lambda result: print(f"\n✅ {result.message}. Start breathing through pursed lips!")
    )
    session.set_on_breath(
        lambda breath, stats: print(
            f"🔥 Breath #{stats.total_breaths}: {breath.duration:.1f}s "
            f"at {breath.intensity * 100:.0f}% intensity"
        )
    )

    try:
        await session.start()
    except AudioSourceError as e:
        print(f"❌ Microphone access is required: {e}")
        return None

    # Handle shutdown
    shutdown_event = asyncio.Event()

    def signal_handler():
        print("\n🛑 Ending session...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    shutdown_task = asyncio.create_task(shutdown_event.wait())
    active_task = asyncio.create_task(session.wait_until_active())

    try:
        await asyncio.wait(
            [shutdown_task, active_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        if not shutdown_event.is_set():
            if duration is not None:
                print(f"⏱️  Training for {duration:g} seconds")
            else:
                print("Press Ctrl+C to finish")
            try:
                await asyncio.wait_for(asyncio.shield(shutdown_task), timeout=duration)
            except asyncio.TimeoutError:
                pass
    finally:
        for task in (shutdown_task, active_task):
            task.cancel()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        stats = await session.end()

    print_summary(stats)

    generator = create_feedback_generator(config.feedback)
    print("🧙 Consulting the Dragon Keeper...")
    await generator.start()
    try:
        print(await generator.generate(stats))
    finally:
        await generator.stop()

    return stats


def positive_seconds(value: str) -> float:
    """argparse type for a strictly positive number of seconds."""
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}")
    if not seconds > 0:
        raise argparse.ArgumentTypeError(f"duration must be positive, got {value}")
    return seconds


def list_devices() -> None:
    """Print available audio devices."""
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        print(f"❌ sounddevice unavailable: {e}")
        sys.exit(1)

    print(sd.query_devices())


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dragonbreath",
        description="Pursed-lip breathing trainer",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Configuration file path",
    )
    parser.add_argument(
        "--mock-mic",
        action="store_true",
        help="Use a synthetic microphone for development/testing",
    )
    parser.add_argument(
        "-d", "--duration",
        type=positive_seconds,
        default=None,
        metavar="SECONDS",
        help="Seconds of training after calibration (default: until Ctrl+C)",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List audio devices and exit",
    )

    args = parser.parse_args()

    if args.list_devices:
        list_devices()
        return

    mock_mic = args.mock_mic or os.environ.get("DRAGONBREATH_MOCK", "").lower() in ("1", "true", "yes")

    # Find configuration file
    config_paths = [
        args.config,
        Path("config/default.yaml"),
        Path.home() / ".config/dragonbreath/config.yaml",
    ]

    config = None
    try:
        for path in config_paths:
            if path and path.exists():
                print(f"Loading config from: {path}")
                config = Config.load(path)
                break
    except ValidationError as e:
        print("Configuration errors:")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            print(f"  - {location}: {error['msg']}")
        sys.exit(1)

    if config is None:
        print("No config file found, using defaults")
        config = Config.default()

    for warning in config.validate():
        print(f"⚠️  {warning}")

    logging.basicConfig(
        level=config.system.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        stats = asyncio.run(run_session(
            config,
            mock_mic=mock_mic,
            duration=args.duration,
        ))
    except KeyboardInterrupt:
        return

    if stats is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
