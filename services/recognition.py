import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import azure.cognitiveservices.speech as speechsdk

from config import Config
from exceptions import EngineInitError, EngineRuntimeError, MediaAccessError
from services.audio import AudioSource


class RecognitionMode(str, Enum):
    TRANSCRIPTION = "transcription"
    ASSESSMENT = "assessment"


@dataclass
class FinalEvent:
    text: str
    recognized: bool
    assessment: Optional[Dict[str, Any]] = None


@dataclass
class CanceledEvent:
    reason: str
    code: str = ""
    details: str = ""


class RecognitionBinding(ABC):
    """One recognition session bound to an audio source and, for assessment, a reference text."""

    def __init__(self, mode: RecognitionMode):
        self.mode = mode
        self.binding_id = f"{mode.value}-{uuid.uuid4().hex[:8]}"
        self.reference_text: Optional[str] = None
        self._interim_handlers: List[Callable[[str], None]] = []
        self._final_handlers: List[Callable[[FinalEvent], None]] = []
        self._canceled_handlers: List[Callable[[CanceledEvent], None]] = []

    def on_interim(self, handler: Callable[[str], None]) -> None:
        self._interim_handlers.append(handler)

    def on_final(self, handler: Callable[[FinalEvent], None]) -> None:
        self._final_handlers.append(handler)

    def on_canceled(self, handler: Callable[[CanceledEvent], None]) -> None:
        self._canceled_handlers.append(handler)

    def clear_handlers(self) -> None:
        self._interim_handlers.clear()
        self._final_handlers.clear()
        self._canceled_handlers.clear()

    def emit_interim(self, text: str) -> None:
        for handler in list(self._interim_handlers):
            handler(text)

    def emit_final(self, event: FinalEvent) -> None:
        for handler in list(self._final_handlers):
            handler(event)

    def emit_canceled(self, event: CanceledEvent) -> None:
        for handler in list(self._canceled_handlers):
            handler(event)

    @abstractmethod
    async def configure(self, audio_source: AudioSource, reference_text: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class AzureRecognitionBinding(RecognitionBinding):
    """Binding over an Azure Speech SDK recognizer.

    SDK callbacks fire on SDK threads and are handed to the event loop that
    configured the binding, so subscribers always run on that loop.
    """

    def __init__(self,
                 mode: RecognitionMode,
                 speech_key: str = None,
                 region: str = None,
                 language: str = None):
        super().__init__(mode)
        self.speech_key = speech_key or Config.AZURE_SPEECH_KEY
        self.region = region or Config.AZURE_SPEECH_REGION
        self.language = language or Config.SPEECH_LANGUAGE
        self._recognizer = None
        self._audio_source: Optional[AudioSource] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False

    async def configure(self, audio_source: AudioSource, reference_text: Optional[str] = None) -> None:
        if self.mode == RecognitionMode.ASSESSMENT and not reference_text:
            raise EngineInitError("Assessment binding requires a reference text")
        self._loop = asyncio.get_running_loop()
        self.reference_text = reference_text
        try:
            speech_config = speechsdk.SpeechConfig(subscription=self.speech_key, region=self.region)
            speech_config.speech_recognition_language = self.language
            audio_config = audio_source.audio_config(self.binding_id)
            self._audio_source = audio_source
            recognizer = speechsdk.SpeechRecognizer(speech_config=speech_config, audio_config=audio_config)

            if self.mode == RecognitionMode.ASSESSMENT:
                pronunciation_config = speechsdk.PronunciationAssessmentConfig(
                    reference_text=reference_text,
                    grading_system=speechsdk.PronunciationAssessmentGradingSystem.HundredMark,
                    granularity=speechsdk.PronunciationAssessmentGranularity.Word,
                    enable_miscue=True,
                )
                if Config.ENABLE_PROSODY:
                    pronunciation_config.enable_prosody_assessment()
                pronunciation_config.apply_to(recognizer)
        except MediaAccessError:
            self._release_audio()
            raise
        except Exception as e:
            self._release_audio()
            raise EngineInitError(f"Failed to configure {self.mode.value} recognizer: {str(e)}") from e

        recognizer.recognizing.connect(self._on_recognizing)
        recognizer.recognized.connect(self._on_recognized)
        recognizer.canceled.connect(self._on_canceled)
        self._recognizer = recognizer
        logging.info(f"Configured {self.binding_id} for reference text: {reference_text}")

    async def start(self) -> None:
        if self._recognizer is None:
            raise EngineRuntimeError(f"{self.binding_id} is not configured")
        try:
            await asyncio.to_thread(lambda: self._recognizer.start_continuous_recognition_async().get())
        except Exception as e:
            raise EngineRuntimeError(f"Failed to start {self.binding_id}: {str(e)}") from e
        self._running = True

    async def stop(self) -> None:
        if self._recognizer is None or not self._running:
            return
        self._running = False
        try:
            await asyncio.to_thread(lambda: self._recognizer.stop_continuous_recognition_async().get())
        except Exception as e:
            raise EngineRuntimeError(f"Failed to stop {self.binding_id}: {str(e)}") from e

    async def close(self) -> None:
        recognizer = self._recognizer
        if recognizer is None:
            return
        self.clear_handlers()
        for signal in (recognizer.recognizing, recognizer.recognized, recognizer.canceled):
            signal.disconnect_all()
        try:
            await self.stop()
        finally:
            self._recognizer = None
            self._release_audio()
            logging.info(f"Closed {self.binding_id}")

    def _release_audio(self) -> None:
        if self._audio_source is not None:
            self._audio_source.release(self.binding_id)
            self._audio_source = None

    def _dispatch(self, callback, *args) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(callback, *args)

    def _on_recognizing(self, evt) -> None:
        self._dispatch(self.emit_interim, evt.result.text)

    def _on_recognized(self, evt) -> None:
        result = evt.result
        recognized = result.reason == speechsdk.ResultReason.RecognizedSpeech
        assessment = None
        if recognized and self.mode == RecognitionMode.ASSESSMENT:
            assessment = self._assessment_payload(result)
        self._dispatch(self.emit_final, FinalEvent(text=result.text, recognized=recognized, assessment=assessment))

    def _on_canceled(self, evt) -> None:
        details = evt.cancellation_details
        event = CanceledEvent(
            reason=str(details.reason),
            code=str(getattr(details, "code", "")),
            details=str(details.error_details or ""),
        )
        self._dispatch(self.emit_canceled, event)

    def _assessment_payload(self, result) -> Optional[Dict[str, Any]]:
        raw = result.properties.get(speechsdk.PropertyId.SpeechServiceResponse_JsonResult)
        if not raw:
            return None
        try:
            best = json.loads(raw)["NBest"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logging.warning(f"{self.binding_id} returned an unreadable assessment result: {e}")
            return None
        return best


def azure_binding_factory(mode: RecognitionMode) -> RecognitionBinding:
    return AzureRecognitionBinding(mode)
