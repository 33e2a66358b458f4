"""
Tests for emotion classification
"""
import asyncio
import math

import numpy as np
import pytest

from conftest import FakeEmotionModel
from aurakai.domain.emotion.emotion_classifier import EmotionClassifier, classify_by_heuristic
from aurakai.domain.emotion.features import extract_features
from aurakai.domain.emotion.text_emotion import detect_text_emotion
from aurakai.domain.models.context import AudioBuffer, EmotionLabel, VoiceFeatures


@pytest.mark.parametrize("pitch, intensity, rate, expected", [
    (300.0, 0.9, 5.0, EmotionLabel.EXCITED),
    (300.0, 0.9, 4.5, EmotionLabel.ANGRY),
    (150.0, 0.2, 2.0, EmotionLabel.SAD),
    (150.0, 0.2, 3.0, EmotionLabel.TIRED),
    (200.0, 0.5, 4.1, EmotionLabel.HAPPY),
    (200.0, 0.5, 4.0, EmotionLabel.NEUTRAL),
    (250.0, 0.9, 5.0, EmotionLabel.HAPPY),
    (180.0, 0.2, 1.0, EmotionLabel.NEUTRAL),
])
def test_heuristic_thresholds(pitch, intensity, rate, expected):
    assert classify_by_heuristic(pitch, intensity, rate) == expected


def test_heuristic_is_pure():
    results = {classify_by_heuristic(260.0, 0.8, 3.3) for _ in range(20)}
    assert results == {EmotionLabel.ANGRY}


@pytest.mark.asyncio
async def test_model_arg_max_picks_label():
    model = FakeEmotionModel([0.1, 0.05, 0.6, 0.1, 0.1, 0.05])
    classifier = EmotionClassifier(model)

    label = await classifier.classify(VoiceFeatures(pitch_hz=300, intensity=0.9, speech_rate=5))

    assert label == EmotionLabel.SAD
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_model_error_falls_back_to_heuristic():
    classifier = EmotionClassifier(FakeEmotionModel(error=RuntimeError("model offline")))

    label = await classifier.classify(VoiceFeatures(pitch_hz=300, intensity=0.9, speech_rate=5))

    assert label == EmotionLabel.EXCITED


@pytest.mark.asyncio
@pytest.mark.parametrize("probabilities", [
    [0.5, 0.5],
    [float("nan")] * 6,
    [],
])
async def test_malformed_vector_falls_back(probabilities):
    classifier = EmotionClassifier(FakeEmotionModel(probabilities))

    label = await classifier.classify(VoiceFeatures(pitch_hz=150, intensity=0.1, speech_rate=1))

    assert label == EmotionLabel.SAD


@pytest.mark.asyncio
async def test_slow_model_times_out_to_heuristic():
    class SlowModel:
        async def classify(self, features):
            await asyncio.sleep(1)
            return [1, 0, 0, 0, 0, 0]

    classifier = EmotionClassifier(SlowModel(), timeout=0.01)

    label = await classifier.classify(VoiceFeatures(pitch_hz=200, intensity=0.5, speech_rate=4.5))

    assert label == EmotionLabel.HAPPY


@pytest.mark.asyncio
async def test_no_model_uses_heuristic():
    label = await EmotionClassifier().classify(VoiceFeatures(pitch_hz=200, intensity=0.5, speech_rate=1.0))
    assert label == EmotionLabel.NEUTRAL


def tone(sample_rate, seconds, hz=200, amplitude=0.5):
    t = np.arange(int(sample_rate * seconds)) / sample_rate
    return amplitude * np.sin(2 * np.pi * hz * t)


def test_extract_features_from_tone():
    sample_rate = 8000
    samples = tone(sample_rate, 1.0).tolist()

    features = extract_features(AudioBuffer(samples=samples, sample_rate=sample_rate, duration_ms=1000))

    assert 190 <= features.pitch_hz <= 210
    assert features.intensity == pytest.approx(0.5 / math.sqrt(2), rel=0.01)
    assert features.speech_rate == pytest.approx(1.0)


def test_extract_features_counts_each_burst_as_onset():
    sample_rate = 8000
    silence = np.zeros(int(sample_rate * 0.25))
    # Trailing 10 ms burst is shorter than one frame
    samples = np.concatenate([
        tone(sample_rate, 0.25), silence,
        tone(sample_rate, 0.25), silence,
        tone(sample_rate, 0.01),
    ])

    features = extract_features(AudioBuffer(samples=samples.tolist(), sample_rate=sample_rate))

    assert features.speech_rate == pytest.approx(3 / (samples.size / sample_rate))


def test_extract_features_from_silence():
    features = extract_features(AudioBuffer(samples=[0.0] * 1600, sample_rate=16000, duration_ms=100))

    assert features.intensity == 0.0
    assert features.speech_rate == 0.0


def test_extract_features_empty_buffer():
    assert extract_features(AudioBuffer()) == VoiceFeatures()


@pytest.mark.parametrize("text, expected", [
    ("I'm so happy to help!", EmotionLabel.HAPPY),
    ("I'm curious and a bit worried", EmotionLabel.CURIOUS),
    ("That makes me cautious", EmotionLabel.CONCERNED),
    ("The user seems unhappy today", EmotionLabel.SAD),
    ("You sound frustrated", EmotionLabel.ANGRY),
    ("Let's stay relaxed", EmotionLabel.CALM),
    ("I'm puzzled by this", EmotionLabel.CONFUSED),
    ("Here is the forecast", EmotionLabel.NEUTRAL),
    ("EXCITED news", EmotionLabel.HAPPY),
])
def test_detect_text_emotion(text, expected):
    assert detect_text_emotion(text) == expected
