import numpy as np

PCM16_MIN = -32768
PCM16_MAX = 32767
BYTES_PER_SAMPLE = 2

# +1.0 lands on 32768 and is clamped to 32767, -1.0 lands exactly on -32768.
_SCALE = 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert normalized float samples to signed 16-bit little-endian PCM.

    Values outside [-1.0, 1.0] are clamped rather than wrapped. A 2-D block
    of shape (frames, channels) is reduced to its first channel.
    """
    data = np.asarray(samples, dtype=np.float64)
    if data.ndim > 1:
        data = data[:, 0]
    scaled = np.clip(np.round(data * _SCALE), PCM16_MIN, PCM16_MAX)
    return scaled.astype("<i2").tobytes()


def pcm16_frame_bytes(frame_size: int) -> int:
    return frame_size * BYTES_PER_SAMPLE
