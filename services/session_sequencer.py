import logging
import uuid
from typing import List, Optional, Sequence, Set, Tuple

from config import Config
from exceptions import AssessmentError, EngineInitError, InvalidSessionStateError, MediaAccessError
from models import (
    SessionPhase,
    SessionStateResponse,
    TrialResult,
    TrialState,
    TrialStateResponse,
)
from services.audio import AudioSource
from services.error_classifier import ErrorClassifier
from services.trial_controller import TrialController


class SessionSequencer:
    """Drives the ordered reference texts through trials and collects their results.

    Phases: IDLE -> IN_TRIAL(i) -> SCORING_TRANSITION -> IN_TRIAL(i+1) ... ->
    COMPLETED, with ABORTED reachable from any non-terminal phase. Results
    are append-only; nothing appended is ever changed.
    """

    def __init__(self,
                 audio_source: AudioSource,
                 reference_texts: Optional[Sequence[str]] = None,
                 controller: Optional[TrialController] = None,
                 session_id: Optional[str] = None):
        texts = list(reference_texts) if reference_texts else list(Config.REFERENCE_TEXTS)
        if not texts:
            raise ValueError("At least one reference text is required")
        self.session_id = session_id or str(uuid.uuid4())[:8]
        self.reference_texts: Tuple[str, ...] = tuple(texts)
        self.audio_source = audio_source
        self.controller = controller or TrialController()
        self.controller.on_error = self._record_warning
        self.phase = SessionPhase.IDLE
        self.index = 0
        self.warnings: List[str] = []
        self._results: List[TrialResult] = []
        self._recorded_generations: Set[int] = set()

    @property
    def results(self) -> Tuple[TrialResult, ...]:
        return tuple(self._results)

    @property
    def total(self) -> int:
        return len(self.reference_texts)

    @property
    def current_reference_text(self) -> str:
        return self.reference_texts[self.index]

    @property
    def is_finished(self) -> bool:
        return self.phase in (SessionPhase.COMPLETED, SessionPhase.ABORTED)

    async def begin(self) -> None:
        self._require(SessionPhase.IDLE)
        logging.info(f"[{self.session_id}] Starting session with {self.total} reference texts")
        try:
            await self.controller.create_bindings(self.audio_source, self.reference_texts[0])
        except (EngineInitError, MediaAccessError) as e:
            self._record_warning(e)
            raise
        self.index = 0
        self.phase = SessionPhase.IN_TRIAL

    async def start(self) -> None:
        self._require(SessionPhase.IN_TRIAL)
        if self.controller.is_listening:
            raise InvalidSessionStateError("Recognition is already running for this trial")
        self.controller.clear()
        try:
            await self.controller.start()
        except AssessmentError as e:
            self._record_warning(e)
            raise

    async def stop(self) -> None:
        self._require(SessionPhase.IN_TRIAL)
        await self.controller.stop()

    def clear(self) -> None:
        self._require(SessionPhase.IN_TRIAL)
        self.controller.clear()

    async def retry_bind(self) -> None:
        """Re-create the binding pair for the current trial after a failed bind."""
        self._require(SessionPhase.IN_TRIAL)
        try:
            await self.controller.rebind(self.current_reference_text)
        except (EngineInitError, MediaAccessError) as e:
            self._record_warning(e)
            raise

    async def advance(self) -> None:
        self._require(SessionPhase.IN_TRIAL)
        if self.controller.is_listening:
            raise InvalidSessionStateError("Stop listening before advancing to the next trial")

        state = self.controller.state
        if state is not None:
            self._append_result(state, filtered=True)

        if self.index == self.total - 1:
            self.phase = SessionPhase.COMPLETED
            logging.info(f"[{self.session_id}] Assessment complete with {len(self._results)} results")
            await self.controller.dispose()
            return

        next_index = self.index + 1
        self.phase = SessionPhase.SCORING_TRANSITION
        try:
            await self.controller.rebind(self.reference_texts[next_index])
        except (EngineInitError, MediaAccessError) as e:
            self._record_warning(e)
            if self.phase is SessionPhase.SCORING_TRANSITION:
                self.index = next_index
                self.phase = SessionPhase.IN_TRIAL
            raise

        if self.phase is not SessionPhase.SCORING_TRANSITION:
            # Aborted while the rebind was in flight
            await self.controller.dispose()
            return
        self.index = next_index
        self.phase = SessionPhase.IN_TRIAL

    async def abort(self) -> None:
        self._require(SessionPhase.IDLE, SessionPhase.IN_TRIAL, SessionPhase.SCORING_TRANSITION)
        state = self.controller.state
        if self.phase is SessionPhase.IN_TRIAL and state is not None:
            self._append_result(state, filtered=False, aborted=True)
        self.phase = SessionPhase.ABORTED
        logging.info(f"[{self.session_id}] Assessment aborted with {len(self._results)} results")

        # The transition above is final; shutting the engine down is best effort
        try:
            await self.controller.stop()
            await self.controller.dispose()
        except Exception as e:
            logging.error(f"[{self.session_id}] Error shutting down recognizers after abort: {e}")

    async def close(self) -> None:
        await self.controller.dispose()
        self.audio_source.close()

    def snapshot(self) -> SessionStateResponse:
        state = self.controller.state
        trial = None
        if state is not None and not self.is_finished:
            trial = TrialStateResponse(
                reference_text=state.reference_text,
                display_text=state.display_text,
                transcript=state.transcript,
                pending_fragment=state.pending_fragment,
                assessment=state.assessment,
                is_listening=state.is_listening,
            )
        return SessionStateResponse(
            session_id=self.session_id,
            phase=self.phase,
            index=self.index,
            total=self.total,
            trial=trial,
            warnings=list(self.warnings),
        )

    def _append_result(self, state: TrialState, filtered: bool, aborted: bool = False) -> bool:
        if not state.transcript or state.assessment is None:
            return False
        if state.generation in self._recorded_generations:
            return False

        if filtered:
            scores = ErrorClassifier.filter_to_reference(state.assessment, state.reference_text)
        else:
            scores = state.assessment
        self._results.append(TrialResult(
            reference_text=state.reference_text,
            transcribed_text=state.transcript.strip(),
            scores=scores,
            aborted=aborted,
        ))
        self._recorded_generations.add(state.generation)
        logging.info(f"[{self.session_id}] Recorded result for trial {self.index + 1} of {self.total}")
        return True

    def _require(self, *phases: SessionPhase) -> None:
        if self.phase not in phases:
            raise InvalidSessionStateError(f"Command not valid while session is {self.phase.value}")

    def _record_warning(self, error: AssessmentError) -> None:
        logging.warning(f"[{self.session_id}] {error}")
        self.warnings.append(str(error))
