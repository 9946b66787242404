"""Tests for synthesized notification tones."""

import io
import wave

import pytest

from eva_chat.sounds import SOUND_PATTERNS, Tone, render_wav, tone_samples


@pytest.mark.parametrize("kind", sorted(SOUND_PATTERNS))
def test_render_wav_produces_mono_16bit_audio(kind):
    data = render_wav(kind, volume=0.5, sample_rate=8000)
    with wave.open(io.BytesIO(data), "rb") as handle:
        assert handle.getnchannels() == 1
        assert handle.getsampwidth() == 2
        assert handle.getframerate() == 8000
        expected = sum(int(tone.duration_sec * 8000) for tone in SOUND_PATTERNS[kind])
        assert handle.getnframes() == expected


def test_unknown_sound_is_rejected():
    with pytest.raises(ValueError):
        render_wav("alarm")


def test_tone_fades_out_and_respects_volume():
    tone = Tone(frequency=440.0, duration_sec=0.1, gain=0.4)
    loud = tone_samples(tone, volume=1.0, sample_rate=8000)
    quiet = tone_samples(tone, volume=0.25, sample_rate=8000)

    assert max(abs(s) for s in quiet) < max(abs(s) for s in loud)
    head = max(abs(s) for s in loud[:100])
    tail = max(abs(s) for s in loud[-100:])
    assert tail < head * 0.1
    assert all(s == 0 for s in tone_samples(tone, volume=0.0, sample_rate=8000))
