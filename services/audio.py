import logging
from abc import ABC, abstractmethod
from typing import Dict
import azure.cognitiveservices.speech as speechsdk

from config import Config
from exceptions import MediaAccessError


class AudioSource(ABC):
    """A single audio capture handle held for the whole session.

    Each recognition binding asks for its own engine audio config; the
    handle itself is never re-acquired between trials.
    """

    def __init__(self):
        self.closed = False

    @abstractmethod
    def audio_config(self, owner: str) -> speechsdk.audio.AudioConfig:
        ...

    def release(self, owner: str) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def _ensure_open(self) -> None:
        if self.closed:
            raise MediaAccessError("Audio source is closed")


class MicrophoneAudioSource(AudioSource):
    """Reads from the host's default microphone.

    The SDK owns microphone capture, so each binding opens its own capture of
    the same default device rather than sharing one handle. Two captures run
    per trial. Use StreamAudioSource when a single shared capture is required.
    """

    def audio_config(self, owner: str) -> speechsdk.audio.AudioConfig:
        self._ensure_open()
        try:
            return speechsdk.audio.AudioConfig(use_default_microphone=True)
        except Exception as e:
            raise MediaAccessError(f"Error accessing microphone: {str(e)}") from e


class StreamAudioSource(AudioSource):
    """PCM frames pushed by a client, fanned out to every attached binding."""

    def __init__(self,
                 sample_rate: int = Config.AUDIO_SAMPLE_RATE,
                 bits_per_sample: int = Config.AUDIO_BITS_PER_SAMPLE,
                 channels: int = Config.AUDIO_CHANNELS):
        super().__init__()
        self.stream_format = speechsdk.audio.AudioStreamFormat(
            samples_per_second=sample_rate,
            bits_per_sample=bits_per_sample,
            channels=channels,
        )
        self._streams: Dict[str, speechsdk.audio.PushAudioInputStream] = {}
        self.bytes_written = 0

    def audio_config(self, owner: str) -> speechsdk.audio.AudioConfig:
        self._ensure_open()
        stream = speechsdk.audio.PushAudioInputStream(stream_format=self.stream_format)
        self._streams[owner] = stream
        return speechsdk.audio.AudioConfig(stream=stream)

    def release(self, owner: str) -> None:
        stream = self._streams.pop(owner, None)
        if stream is not None:
            stream.close()

    @property
    def attached(self) -> int:
        return len(self._streams)

    def write(self, chunk: bytes) -> None:
        self._ensure_open()
        if not chunk:
            return
        for stream in list(self._streams.values()):
            stream.write(chunk)
        self.bytes_written += len(chunk)

    def close(self) -> None:
        if self.closed:
            return
        for owner in list(self._streams):
            self.release(owner)
        logging.info(f"Audio stream closed after {self.bytes_written} bytes")
        super().close()
