"""
audio.py
--------
Sample-rate conversion and PCM16 framing for the voice advisor.

The Live API takes 16 kHz mono 16-bit little-endian PCM and answers with
24 kHz PCM of the same layout.  Microphones usually run at 44.1 or 48 kHz
and hand us float samples in [-1, 1], so input is linearly resampled and
converted before it is base64-framed.
"""

from __future__ import annotations

import base64
import io
import logging
import wave

import numpy as np

logger = logging.getLogger(__name__)

INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
INPUT_MIME_TYPE = f"audio/pcm;rate={INPUT_SAMPLE_RATE}"


def encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode(data: str) -> bytes:
    return base64.b64decode(data)


def _to_int16(samples: np.ndarray) -> np.ndarray:
    scaled = np.trunc(np.clip(samples, -1.0, 1.0) * 32768.0)
    # +1.0 would land on 32768, one past the int16 range
    return np.clip(scaled, -32768, 32767).astype(np.int16)


def downsample_to_16k(samples, input_sample_rate: float) -> np.ndarray:
    """Resample float audio to 16 kHz int16 with linear interpolation."""
    data = np.asarray(samples, dtype=np.float64).ravel()

    if input_sample_rate == INPUT_SAMPLE_RATE:
        return _to_int16(data)

    ratio = input_sample_rate / INPUT_SAMPLE_RATE
    new_length = int(round(len(data) / ratio))
    if new_length == 0 or len(data) == 0:
        return np.zeros(0, dtype=np.int16)

    offsets = np.arange(new_length) * ratio
    index = np.minimum(np.floor(offsets).astype(np.int64), len(data) - 1)
    next_index = np.minimum(index + 1, len(data) - 1)
    weight = offsets - index

    interpolated = data[index] * (1 - weight) + data[next_index] * weight
    return _to_int16(interpolated)


def create_pcm16_blob(pcm: np.ndarray) -> dict:
    return {
        "data": encode(np.asarray(pcm, dtype="<i2").tobytes()),
        "mimeType": INPUT_MIME_TYPE,
    }


def float32_from_bytes(data: bytes) -> np.ndarray:
    """Interpret raw little-endian float32 bytes as sent by browser capture nodes."""
    usable = len(data) - (len(data) % 4)
    return np.frombuffer(data[:usable], dtype="<f4")


def decode_pcm16(data: bytes, num_channels: int = 1) -> np.ndarray:
    """PCM16 bytes to float32 samples of shape (frames, channels)."""
    if len(data) % 2 != 0:
        logger.warning("Received odd byte length for PCM16 audio, trimming one byte.")
        data = data[:-1]

    ints = np.frombuffer(data, dtype="<i2")
    frame_count = len(ints) // num_channels
    ints = ints[: frame_count * num_channels]
    return (ints.astype(np.float32) / 32768.0).reshape(frame_count, num_channels)


def pcm_duration(data: bytes, sample_rate: int = OUTPUT_SAMPLE_RATE, num_channels: int = 1) -> float:
    frames = (len(data) // 2) // num_channels
    return frames / float(sample_rate)


def wav_to_float(wav_bytes: bytes) -> tuple[np.ndarray, int]:
    """Read a WAV file into mono float samples and its sample rate."""
    with wave.open(io.BytesIO(wav_bytes), "rb") as wav:
        rate = wav.getframerate()
        channels = wav.getnchannels()
        width = wav.getsampwidth()
        raw = wav.readframes(wav.getnframes())

    if width == 1:
        samples = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 2:
        samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif width == 4:
        samples = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise ValueError(f"Unsupported WAV sample width: {width} bytes")

    if channels > 1:
        samples = samples[: len(samples) - len(samples) % channels].reshape(-1, channels).mean(axis=1)
    return samples, rate


def pcm16_to_wav(pcm: bytes, sample_rate: int = OUTPUT_SAMPLE_RATE) -> bytes:
    if len(pcm) % 2 != 0:
        pcm = pcm[:-1]
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def float_to_wav(samples, sample_rate: int) -> bytes:
    return pcm16_to_wav(_to_int16(np.asarray(samples, dtype=np.float64)).astype("<i2").tobytes(), sample_rate)
