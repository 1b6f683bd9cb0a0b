"""Shared fixtures: a scripted recognition engine and an in-memory audio source."""

import os

os.environ.setdefault("AZURE_SPEECH_KEY", "test-key")

import pytest

from exceptions import EngineInitError, EngineRuntimeError
from services.audio import AudioSource
from services.recognition import RecognitionBinding, RecognitionMode
from services.trial_controller import TrialController


class FakeAudioSource(AudioSource):
    def __init__(self):
        super().__init__()
        self.attached = set()

    def audio_config(self, owner):
        self._ensure_open()
        self.attached.add(owner)
        return object()

    def release(self, owner):
        self.attached.discard(owner)


class FakeBinding(RecognitionBinding):
    """Records lifecycle calls. Handlers survive close() so a draining binding can still fire."""

    def __init__(self, mode, engine):
        super().__init__(mode)
        self.engine = engine
        self.calls = []
        self.running = False

    async def configure(self, audio_source, reference_text=None):
        self.calls.append("configure")
        if self.mode in self.engine.fail_configure:
            raise EngineInitError(f"{self.mode.value} configuration rejected")
        self.reference_text = reference_text

    async def start(self):
        self.calls.append("start")
        if self.mode in self.engine.fail_start:
            raise EngineRuntimeError(f"{self.mode.value} failed to start")
        self.running = True

    async def stop(self):
        self.calls.append("stop")
        if self.mode in self.engine.fail_stop:
            raise RuntimeError("stop failed")
        self.running = False

    async def close(self):
        self.calls.append("close")
        self.running = False


class FakeEngine:
    def __init__(self):
        self.bindings = []
        self.fail_configure = set()
        self.fail_start = set()
        self.fail_stop = set()

    def __call__(self, mode):
        binding = FakeBinding(mode, self)
        self.bindings.append(binding)
        return binding

    def latest(self, mode):
        return [b for b in self.bindings if b.mode == mode][-1]

    @property
    def transcription(self):
        return self.latest(RecognitionMode.TRANSCRIPTION)

    @property
    def assessment(self):
        return self.latest(RecognitionMode.ASSESSMENT)


def assessment_payload(words=(), accuracy=90.0, fluency=85.0, completeness=70.0, pron=80.0, prosody=None):
    """Build an NBest[0]-shaped payload. words: (word, error_type, accuracy) tuples."""
    scores = {
        "AccuracyScore": accuracy,
        "FluencyScore": fluency,
        "CompletenessScore": completeness,
        "PronScore": pron,
    }
    if prosody is not None:
        scores["ProsodyScore"] = prosody
    return {
        "PronunciationAssessment": scores,
        "Words": [
            {"Word": word, "PronunciationAssessment": {"ErrorType": error_type, "AccuracyScore": score}}
            for word, error_type, score in words
        ],
    }


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def audio_source():
    return FakeAudioSource()


@pytest.fixture
def controller(engine):
    return TrialController(binding_factory=engine)
