import numpy as np

from aurakai.domain.models.context import AudioBuffer, VoiceFeatures

FRAME_MS = 20
ONSET_THRESHOLD = 0.02


def _rms(x: np.ndarray) -> float:
    return float(np.sqrt(np.mean(x * x))) if x.size else 0.0


def _frame_energy(x: np.ndarray, frame_size: int) -> np.ndarray:
    """RMS per frame; a trailing partial frame is measured on its own samples"""

    full = x.size // frame_size
    energy = np.sqrt(np.mean(np.square(x[:full * frame_size].reshape(full, frame_size)), axis=1))
    tail = x[full * frame_size:]
    if tail.size:
        energy = np.append(energy, _rms(tail))
    return energy


def extract_features(audio: AudioBuffer) -> VoiceFeatures:
    """Rough prosodic estimate: RMS loudness, zero-crossing pitch and onset rate"""

    x = np.asarray(audio.samples, dtype=np.float64)
    seconds = audio.seconds
    if x.size == 0 or seconds <= 0:
        return VoiceFeatures()

    intensity = min(_rms(x), 1.0)

    crossings = int(np.count_nonzero(np.diff(np.signbit(x))))
    pitch_hz = crossings / 2.0 / seconds

    # Each rise of the frame energy above the threshold is taken as a syllable
    frame_size = max(int(audio.sample_rate * FRAME_MS / 1000), 1)
    loud = _frame_energy(x, frame_size) >= ONSET_THRESHOLD
    onsets = int(loud[0]) + int(np.count_nonzero(loud[1:] & ~loud[:-1]))
    speech_rate = onsets / seconds

    return VoiceFeatures(pitch_hz=pitch_hz, intensity=intensity, speech_rate=speech_rate)
