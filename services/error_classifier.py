import logging
from typing import Any, Dict, Iterable, List, Optional
from pydantic import ValidationError

from config import Config
from exceptions import MalformedAssessmentError
from models import (
    AssessmentScores,
    EngineScores,
    EngineWordAssessment,
    ErrorRecord,
    NO_ERROR,
    OMISSION,
)


def normalize_words(text: Optional[str]) -> List[str]:
    """Lowercase, whitespace-split word sequence. Punctuation is left as the engine tokenizes it."""
    if not text:
        return []
    return text.lower().split()


class ErrorClassifier:
    def __init__(self, threshold: float = None):
        self.threshold = Config.MISPRONUNCIATION_THRESHOLD if threshold is None else threshold

    def classify(self,
                 reference_text: str,
                 spoken_text: str,
                 word_assessments: Optional[Iterable[EngineWordAssessment]]) -> List[ErrorRecord]:
        """Mispronunciations in engine order, then omissions in reference order."""
        errors = self._mispronunciations(word_assessments or [])

        spoken_words = set(normalize_words(spoken_text))
        omitted = set()
        for word in normalize_words(reference_text):
            if word in spoken_words or word in omitted:
                continue
            omitted.add(word)
            errors.append(ErrorRecord(word=word, error_type=OMISSION, accuracy=0))

        return errors

    def _mispronunciations(self, word_assessments: Iterable[EngineWordAssessment]) -> List[ErrorRecord]:
        errors = []
        seen = set()
        for assessment in word_assessments:
            if assessment is None or not assessment.word:
                continue
            scores = assessment.pronunciation_assessment
            error_type = scores.error_type if scores and scores.error_type else NO_ERROR
            accuracy = scores.accuracy_score if scores else 0
            if error_type == NO_ERROR and accuracy >= self.threshold:
                continue
            key = assessment.word.lower()
            if key in seen:
                continue
            seen.add(key)
            errors.append(ErrorRecord(word=assessment.word, error_type=error_type, accuracy=accuracy))
        return errors

    def parse_scores(self, payload: Optional[Dict[str, Any]]) -> EngineScores:
        if not isinstance(payload, dict):
            raise MalformedAssessmentError("Assessment payload is missing")
        try:
            return EngineScores.model_validate(payload.get("PronunciationAssessment"))
        except ValidationError as e:
            raise MalformedAssessmentError(f"Invalid assessment scores: {e}") from e

    def parse_words(self, payload: Optional[Dict[str, Any]]) -> List[EngineWordAssessment]:
        if not isinstance(payload, dict):
            raise MalformedAssessmentError("Assessment payload is missing")
        raw_words = payload.get("Words")
        if not isinstance(raw_words, list):
            raise MalformedAssessmentError("Assessment payload has no word list")
        try:
            return [EngineWordAssessment.model_validate(word) for word in raw_words if word]
        except ValidationError as e:
            raise MalformedAssessmentError(f"Invalid word assessment: {e}") from e

    def assess(self,
               reference_text: str,
               spoken_text: str,
               payload: Optional[Dict[str, Any]]) -> AssessmentScores:
        """Build the score block for one final assessment event.

        A malformed payload never fails the trial: missing scores are left as
        None and a missing word list degrades to omission-only detection.
        """
        scores = None
        words = []
        try:
            scores = self.parse_scores(payload)
        except MalformedAssessmentError as e:
            logging.warning(f"Assessment scores unavailable: {e}")
        try:
            words = self.parse_words(payload)
        except MalformedAssessmentError as e:
            logging.warning(f"Word assessments unavailable, reporting omissions only: {e}")

        errors = self.classify(reference_text, spoken_text, words)
        if scores is None:
            return AssessmentScores(errors=errors)

        return AssessmentScores(
            accuracy_score=scores.accuracy_score,
            fluency_score=scores.fluency_score,
            completeness_score=scores.completeness_score,
            pronunciation_score=scores.pronunciation_score,
            prosody_score=scores.prosody_score,
            errors=errors,
        )

    @staticmethod
    def filter_to_reference(scores: AssessmentScores, reference_text: str) -> AssessmentScores:
        """Keep only errors whose word occurs in the reference text."""
        reference_words = set(normalize_words(reference_text))
        kept = tuple(error for error in scores.errors if error.word.lower() in reference_words)
        return scores.model_copy(update={"errors": kept})
