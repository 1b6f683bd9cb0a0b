from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Tuple

OMISSION = "Omission"
NO_ERROR = "None"


# Engine payload (assessment binding, NBest[0] of the JSON result)

class EngineWordScores(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    accuracy_score: float = Field(0, alias="AccuracyScore")
    error_type: str = Field(NO_ERROR, alias="ErrorType")


class EngineWordAssessment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    word: Optional[str] = Field(None, alias="Word")
    pronunciation_assessment: Optional[EngineWordScores] = Field(None, alias="PronunciationAssessment")


class EngineScores(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    accuracy_score: float = Field(alias="AccuracyScore")
    fluency_score: float = Field(alias="FluencyScore")
    completeness_score: float = Field(alias="CompletenessScore")
    pronunciation_score: float = Field(alias="PronScore")
    prosody_score: Optional[float] = Field(None, alias="ProsodyScore")


# Core data model

class ErrorRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    word: str
    error_type: str
    accuracy: float


class AssessmentScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    accuracy_score: Optional[float] = None
    fluency_score: Optional[float] = None
    completeness_score: Optional[float] = None
    pronunciation_score: Optional[float] = None
    prosody_score: Optional[float] = None
    errors: Tuple[ErrorRecord, ...] = ()


class TrialState(BaseModel):
    reference_text: str
    transcript: str = ""
    pending_fragment: str = ""
    assessment: Optional[AssessmentScores] = None
    is_listening: bool = False
    generation: int = 0

    @property
    def display_text(self) -> str:
        return f"{self.transcript}{self.pending_fragment}"


class TrialResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference_text: str
    transcribed_text: str
    scores: AssessmentScores
    aborted: bool = False


class SessionPhase(str, Enum):
    IDLE = "idle"
    IN_TRIAL = "in_trial"
    SCORING_TRANSITION = "scoring_transition"
    COMPLETED = "completed"
    ABORTED = "aborted"


# API models

class CreateSessionRequest(BaseModel):
    reference_texts: Optional[List[str]] = None
    audio_source: Literal["stream", "microphone"] = "stream"


class TrialStateResponse(BaseModel):
    reference_text: str
    display_text: str
    transcript: str
    pending_fragment: str
    assessment: Optional[AssessmentScores]
    is_listening: bool


class SessionStateResponse(BaseModel):
    session_id: str
    phase: SessionPhase
    index: int
    total: int
    trial: Optional[TrialStateResponse]
    warnings: List[str]


class SessionResultsResponse(BaseModel):
    session_id: str
    phase: SessionPhase
    results: List[TrialResult]


class FeedbackResponse(BaseModel):
    session_id: str
    text_feedback: str
