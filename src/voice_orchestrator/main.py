"""
Command-line entry point for the voice orchestrator.
"""

import argparse
import asyncio
import logging
import sys

from voice_orchestrator.config import Settings, get_settings
from voice_orchestrator.errors import VoiceOrchestratorError
from voice_orchestrator.orchestrator.voice_orchestrator import VoiceOrchestrator
from voice_orchestrator.schemas import STT_KEY, TEXTGEN_KEY, StreamEvent, StreamEventType
from voice_orchestrator.voice.audio_source import WavFileAudioSource
from voice_orchestrator.voice.pipeline import VoiceTurnPipeline
from voice_orchestrator.voice.tts import PiperTTS, TTSConfig

LOGICAL_KEYS = [STT_KEY, TEXTGEN_KEY]


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voice-orchestrator")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show detected capabilities and model status")

    p_load = sub.add_parser("load", help="Load a logical model")
    p_load.add_argument("key", choices=LOGICAL_KEYS)
    p_load.add_argument("--backend", help="Switch to this backend before loading")

    p_infer = sub.add_parser("infer", help="Generate a reply to a prompt")
    p_infer.add_argument("prompt")
    p_infer.add_argument("--stream", action="store_true", help="Print the reply word by word")
    p_infer.add_argument("--max-new-tokens", type=int, default=None)
    p_infer.add_argument("--backend", help="Switch to this backend before loading")

    p_bench = sub.add_parser("benchmark", help="Measure round-trip latency")
    p_bench.add_argument("key", choices=LOGICAL_KEYS)
    p_bench.add_argument("--iterations", type=int, default=None)

    p_conv = sub.add_parser("converse", help="Run one spoken turn from a WAV file")
    p_conv.add_argument("--wav", required=True, help="16-bit PCM WAV with the user's speech")
    p_conv.add_argument("--out-dir", default="data/turns", help="Where synthesized sentences are written")

    return parser


def _print_progress(percent: int, message: str) -> None:
    if percent < 0:
        print(f"[load] failed: {message}", flush=True)
    else:
        print(f"[load] {percent:3d}% {message}", flush=True)


def _print_event(event: StreamEvent) -> None:
    if event.type == StreamEventType.WORD:
        print(event.text, end=" ", flush=True)
    elif event.type == StreamEventType.SENTENCE:
        # A terminated sentence's final word has no word event of its own.
        last = event.text.split(" ")[-1]
        if last.endswith((".", "!", "?")):
            print(last, end=" ", flush=True)
    else:
        print(flush=True)


async def _prepare(orchestrator: VoiceOrchestrator, key: str, backend: str | None = None) -> None:
    if backend:
        await orchestrator.switch_backend(backend)
    await orchestrator.load_model(key, on_progress=_print_progress)


async def run_command(args: argparse.Namespace, settings: Settings) -> None:
    logger = logging.getLogger(__name__)
    orchestrator = VoiceOrchestrator(settings)

    try:
        await orchestrator.initialize()

        if args.command == "status":
            status = await orchestrator.get_status()
            print(status.model_dump_json(indent=2))

        elif args.command == "load":
            await _prepare(orchestrator, args.key, args.backend)
            status = await orchestrator.get_status()
            print(status.models[args.key].model_dump_json(indent=2))

        elif args.command == "infer":
            await _prepare(orchestrator, TEXTGEN_KEY, args.backend)
            if args.stream:
                await orchestrator.infer(
                    TEXTGEN_KEY,
                    args.prompt,
                    stream_callback=_print_event,
                    max_new_tokens=args.max_new_tokens,
                )
            else:
                print(await orchestrator.infer(TEXTGEN_KEY, args.prompt, max_new_tokens=args.max_new_tokens))

        elif args.command == "benchmark":
            await _prepare(orchestrator, args.key)
            stats = await orchestrator.benchmark(args.key, args.iterations)
            print(stats.model_dump_json(indent=2))

        elif args.command == "converse":
            await _prepare(orchestrator, STT_KEY)
            await _prepare(orchestrator, TEXTGEN_KEY)
            tts = None
            if settings.piper_model:
                tts = PiperTTS(
                    TTSConfig(
                        piper_bin=settings.piper_bin,
                        model_path=settings.piper_model,
                        timeout_s=settings.piper_timeout_s,
                    )
                )
            else:
                logger.info("PIPER_MODEL not set; replies will be printed only")
            pipeline = VoiceTurnPipeline(orchestrator, tts=tts, out_dir=args.out_dir)
            turn = await pipeline.run_turn(WavFileAudioSource(args.wav), on_event=_print_event)
            print(f"\n[You] {turn.transcript}")
            print(f"[Assistant] {turn.reply}")
            for wav in turn.wavs:
                print(f"  audio: {wav}")
    finally:
        await orchestrator.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()
    args = build_parser().parse_args(sys.argv[1:])

    try:
        asyncio.run(run_command(args, get_settings()))
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        sys.exit(0)
    except VoiceOrchestratorError as e:
        logging.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
