from __future__ import annotations

import io
import math
import sys
import wave
from array import array
from dataclasses import dataclass

SAMPLE_RATE = 22_050


@dataclass(frozen=True)
class Tone:
    frequency: float
    duration_sec: float
    gain: float


# 通知音はすべてサイン波で合成する（音声ファイルを同梱しない）
SOUND_PATTERNS: dict[str, tuple[Tone, ...]] = {
    "message_sent": (Tone(880.0, 0.10, 0.3),),
    "message_received": (Tone(440.0, 0.15, 0.4),),
    "notification": (Tone(587.33, 0.10, 0.4), Tone(880.0, 0.10, 0.4)),
}


def tone_samples(tone: Tone, volume: float, sample_rate: int = SAMPLE_RATE) -> array:
    """16-bit mono samples for a sine tone with an exponential fade-out."""

    count = max(1, int(tone.duration_sec * sample_rate))
    amplitude = 32767 * max(0.0, min(1.0, volume * tone.gain))
    # 終端で 0.01 まで減衰させる
    decay = math.log(0.01) / count
    samples = array("h")
    for index in range(count):
        envelope = math.exp(decay * index)
        value = amplitude * envelope * math.sin(2 * math.pi * tone.frequency * index / sample_rate)
        samples.append(int(value))
    return samples


def render_wav(kind: str, volume: float = 0.5, sample_rate: int = SAMPLE_RATE) -> bytes:
    try:
        pattern = SOUND_PATTERNS[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown sound: {kind}") from exc

    samples = array("h")
    for tone in pattern:
        samples.extend(tone_samples(tone, volume, sample_rate))
    if sys.byteorder == "big":
        samples.byteswap()

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as handle:
        handle.setnchannels(1)
        handle.setsampwidth(2)
        handle.setframerate(sample_rate)
        handle.writeframes(samples.tobytes())
    return buffer.getvalue()
