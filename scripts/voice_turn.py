#!/usr/bin/env python

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from voice_orchestrator.config import get_settings
from voice_orchestrator.orchestrator.voice_orchestrator import VoiceOrchestrator
from voice_orchestrator.schemas import STT_KEY, TEXTGEN_KEY
from voice_orchestrator.voice.audio_source import WavFileAudioSource
from voice_orchestrator.voice.pipeline import VoiceTurnPipeline
from voice_orchestrator.voice.tts import PiperTTS, TTSConfig


def _require_wav(path: str) -> Path:
    wav = Path(path)
    if not wav.is_file():
        raise RuntimeError(f"WAV file not found: {wav}. Record a 16-bit mono WAV and pass it with --wav.")
    return wav


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run one spoken turn through the voice orchestrator")
    p.add_argument("--wav", required=True, help="16-bit PCM WAV with the user's speech")
    p.add_argument("--out-dir", default="data/turns", help="Where synthesized sentences are written")

    # Backend
    p.add_argument(
        "--backend",
        default=os.getenv("VOICE_BACKEND", None),
        help="Backend to switch to before loading (default: VOICE_BACKEND or automatic)",
    )
    p.add_argument(
        "--max-new-tokens",
        type=int,
        default=int(os.getenv("VOICE_MAX_NEW_TOKENS", "100") or "100"),
        help="Token budget for the reply (default: VOICE_MAX_NEW_TOKENS or 100)",
    )

    # TTS
    p.add_argument(
        "--tts-enabled",
        default=os.getenv("VOICE_TTS_ENABLED", "true"),
        help="Speak the reply (default: VOICE_TTS_ENABLED or true)",
    )
    p.add_argument(
        "--piper-bin",
        default=os.getenv("PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("PIPER_MODEL", None),
        help="Path to Piper .onnx voice (default: PIPER_MODEL)",
    )
    p.add_argument(
        "--piper-timeout",
        type=float,
        default=float(os.getenv("PIPER_TIMEOUT_S", "60") or "60"),
        help="Timeout (seconds) per synthesized sentence (default: PIPER_TIMEOUT_S or 60)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    def _flag(v: str) -> bool:
        return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}

    wav = _require_wav(args.wav)
    settings = get_settings().model_copy(update={"max_new_tokens": args.max_new_tokens})
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    tts = None
    if _flag(args.tts_enabled) and args.piper_model:
        tts = PiperTTS(TTSConfig(piper_bin=args.piper_bin, model_path=args.piper_model, timeout_s=args.piper_timeout))

    orchestrator = VoiceOrchestrator(settings)
    try:
        await orchestrator.initialize()
        if args.backend:
            await orchestrator.switch_backend(args.backend)
        await orchestrator.load_model(STT_KEY)
        await orchestrator.load_model(TEXTGEN_KEY)

        pipeline = VoiceTurnPipeline(orchestrator, tts=tts, out_dir=args.out_dir)
        turn = await pipeline.run_turn(WavFileAudioSource(wav))
        print(f"\n[You] {turn.transcript}")
        print(f"[Assistant] {turn.reply}")
        for path in turn.wavs:
            print(f"  audio: {path}")
    finally:
        await orchestrator.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
