import asyncio
import logging
from typing import Callable, Optional, Set

from exceptions import AssessmentError, EngineInitError, EngineRuntimeError, MediaAccessError
from models import TrialState
from services.audio import AudioSource
from services.error_classifier import ErrorClassifier
from services.recognition import (
    CanceledEvent,
    FinalEvent,
    RecognitionBinding,
    RecognitionMode,
    azure_binding_factory,
)
from services.transcript import TranscriptAccumulator

BindingFactory = Callable[[RecognitionMode], RecognitionBinding]


class _BindingPair:
    """The transcription and assessment bindings of one trial, owned as a unit."""

    def __init__(self, generation: int, transcription: RecognitionBinding, assessment: RecognitionBinding):
        self.generation = generation
        self.transcription = transcription
        self.assessment = assessment

    @property
    def bindings(self):
        return (self.transcription, self.assessment)

    async def close(self) -> None:
        for binding in self.bindings:
            try:
                await binding.close()
            except Exception as e:
                logging.error(f"Error closing {binding.mode.value} binding: {e}", exc_info=True)


class TrialController:
    """Owns the binding pair of the current trial and routes its events into TrialState.

    Every handler is tagged with the generation of the pair it was registered
    on. Events carrying any other generation are dropped, so a binding that
    is still draining after a rebind never touches the new trial.
    """

    def __init__(self,
                 binding_factory: BindingFactory = azure_binding_factory,
                 classifier: Optional[ErrorClassifier] = None,
                 accumulator: Optional[TranscriptAccumulator] = None,
                 on_error: Optional[Callable[[AssessmentError], None]] = None):
        self.binding_factory = binding_factory
        self.classifier = classifier or ErrorClassifier()
        self.accumulator = accumulator or TranscriptAccumulator()
        self.on_error = on_error
        self.audio_source: Optional[AudioSource] = None
        self.state: Optional[TrialState] = None
        self._pair: Optional[_BindingPair] = None
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def has_bindings(self) -> bool:
        return self._pair is not None

    @property
    def is_listening(self) -> bool:
        return bool(self.state and self.state.is_listening)

    async def create_bindings(self, audio_source: AudioSource, reference_text: str) -> None:
        await self.dispose()

        self.audio_source = audio_source
        self._generation += 1
        generation = self._generation
        self.state = TrialState(reference_text=reference_text, generation=generation)

        transcription = None
        assessment = None
        try:
            transcription = self.binding_factory(RecognitionMode.TRANSCRIPTION)
            await transcription.configure(audio_source)
            assessment = self.binding_factory(RecognitionMode.ASSESSMENT)
            await assessment.configure(audio_source, reference_text)
        except Exception as e:
            logging.error(f"Error creating recognizers for '{reference_text}': {e}")
            for binding in (transcription, assessment):
                if binding is None:
                    continue
                try:
                    await binding.close()
                except Exception as close_error:
                    logging.error(f"Error closing partially created binding: {close_error}")
            if isinstance(e, (EngineInitError, MediaAccessError)):
                raise
            raise EngineInitError(f"Failed to create recognizers: {str(e)}") from e

        pair = _BindingPair(generation, transcription, assessment)
        self._subscribe(pair)
        self._pair = pair
        logging.info(f"Created recognizers (generation {generation}) for reference text: {reference_text}")

    async def rebind(self, new_reference_text: str) -> None:
        if self.audio_source is None:
            raise EngineInitError("No audio source has been bound")
        logging.info(f"Switching to new reference text: {new_reference_text}")
        await self.create_bindings(self.audio_source, new_reference_text)

    async def start(self) -> None:
        pair = self._pair
        if pair is None or self.state is None or self.state.is_listening:
            return

        started = []
        try:
            for binding in pair.bindings:
                await binding.start()
                started.append(binding)
        except Exception as e:
            logging.error(f"Error starting recognizers: {e}")
            for binding in started:
                try:
                    await binding.stop()
                except Exception as stop_error:
                    logging.error(f"Error stopping {binding.mode.value} binding after failed start: {stop_error}")
            if isinstance(e, EngineRuntimeError):
                raise
            raise EngineRuntimeError(f"Failed to start recognition: {str(e)}") from e

        if pair is self._pair:
            self.state.is_listening = True
            logging.info(f"Started recognition for: {self.state.reference_text}")

    async def stop(self) -> None:
        # Listening state flips before the engine finishes draining
        if self.state is not None:
            self.state.is_listening = False
        pair = self._pair
        if pair is None:
            return
        for binding in pair.bindings:
            try:
                await binding.stop()
            except Exception as e:
                logging.error(f"Error stopping {binding.mode.value} binding: {e}")
                self._report(EngineRuntimeError(f"Failed to stop {binding.mode.value} recognition: {str(e)}"))

    def clear(self) -> None:
        if self.state is None:
            return
        self.state.transcript = ""
        self.state.pending_fragment = ""
        self.state.assessment = None

    async def dispose(self) -> None:
        pair = self._pair
        self._pair = None
        if self.state is not None:
            self.state.is_listening = False
        if pair is not None:
            await pair.close()

    def _subscribe(self, pair: _BindingPair) -> None:
        generation = pair.generation
        pair.transcription.on_interim(lambda text: self._handle_interim(generation, text))
        pair.transcription.on_final(lambda event: self._handle_transcript_final(generation, event))
        pair.assessment.on_final(lambda event: self._handle_assessment_final(generation, event))
        pair.transcription.on_canceled(
            lambda event: self._handle_canceled(generation, RecognitionMode.TRANSCRIPTION, event))
        pair.assessment.on_canceled(
            lambda event: self._handle_canceled(generation, RecognitionMode.ASSESSMENT, event))

    def _live_state(self, generation: int) -> Optional[TrialState]:
        pair = self._pair
        if pair is None or pair.generation != generation or self.state is None or self.state.generation != generation:
            logging.debug(f"Dropping event from stale generation {generation} (live: {self._generation})")
            return None
        return self.state

    def _handle_interim(self, generation: int, text: str) -> None:
        state = self._live_state(generation)
        if state is None:
            return
        state.pending_fragment = self.accumulator.merge_interim(state.pending_fragment, text)

    def _handle_transcript_final(self, generation: int, event: FinalEvent) -> None:
        state = self._live_state(generation)
        if state is None:
            return
        state.pending_fragment = ""
        if event.recognized:
            state.transcript = self.accumulator.merge_final(state.transcript, event.text)

    def _handle_assessment_final(self, generation: int, event: FinalEvent) -> None:
        state = self._live_state(generation)
        if state is None or not event.recognized:
            return
        # The transcription stream may finalize after the assessment stream for the same utterance
        spoken_text = f"{state.transcript} {event.text or ''}"
        state.assessment = self.classifier.assess(state.reference_text, spoken_text, event.assessment)
        logging.info(f"Assessment updated with {len(state.assessment.errors)} errors")

    def _handle_canceled(self, generation: int, mode: RecognitionMode, event: CanceledEvent) -> None:
        if self._live_state(generation) is None:
            return
        logging.error(
            f"Recognition canceled on {mode.value} binding: reason={event.reason}, "
            f"code={event.code}, details={event.details}"
        )
        self._report(EngineRuntimeError(
            f"{mode.value.capitalize()} recognition canceled: {event.details or event.reason}",
            reason=event.reason,
            code=event.code,
            details=event.details,
        ))
        # Both bindings share one audio stream, so a cancel on either stops the trial
        task = asyncio.get_running_loop().create_task(self.stop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _report(self, error: AssessmentError) -> None:
        if self.on_error is not None:
            self.on_error(error)
