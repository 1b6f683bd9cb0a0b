"""Tests for mispronunciation and omission classification."""

from conftest import assessment_payload
from models import AssessmentScores, EngineWordAssessment, EngineWordScores, ErrorRecord
from services.error_classifier import ErrorClassifier, normalize_words


def _word(word, error_type="None", accuracy=95.0):
    return EngineWordAssessment(
        word=word,
        pronunciation_assessment=EngineWordScores(error_type=error_type, accuracy_score=accuracy),
    )


def test_normalize_words_lowercases_and_splits():
    assert normalize_words("  The Quick\tbrown\nFox ") == ["the", "quick", "brown", "fox"]
    assert normalize_words(None) == []


# --- classify ---


class TestClassify:
    def test_single_omission(self):
        errors = ErrorClassifier().classify("the quick brown fox", "the brown fox", [])
        assert errors == [ErrorRecord(word="quick", error_type="Omission", accuracy=0)]

    def test_comparison_is_case_insensitive(self):
        errors = ErrorClassifier().classify("The Quick brown fox", "the quick BROWN fox", [])
        assert errors == []

    def test_threshold_boundary(self):
        words = [_word("quick", accuracy=79), _word("brown", accuracy=80)]
        errors = ErrorClassifier().classify("quick brown", "quick brown", words)
        assert errors == [ErrorRecord(word="quick", error_type="None", accuracy=79)]

    def test_engine_error_type_reported_regardless_of_accuracy(self):
        words = [_word("fox", error_type="Mispronunciation", accuracy=95)]
        errors = ErrorClassifier().classify("fox", "fox", words)
        assert errors == [ErrorRecord(word="fox", error_type="Mispronunciation", accuracy=95)]

    def test_mispronunciations_precede_omissions(self):
        words = [_word("fox", accuracy=40), _word("the", error_type="Mispronunciation", accuracy=60)]
        errors = ErrorClassifier().classify("the quick brown fox", "the fox", words)
        assert [(e.word, e.error_type) for e in errors] == [
            ("fox", "None"),
            ("the", "Mispronunciation"),
            ("quick", "Omission"),
            ("brown", "Omission"),
        ]

    def test_word_reported_in_both_classes(self):
        words = [_word("brown", error_type="Mispronunciation", accuracy=30)]
        errors = ErrorClassifier().classify("quick brown", "quick", words)
        assert [(e.word, e.error_type) for e in errors] == [
            ("brown", "Mispronunciation"),
            ("brown", "Omission"),
        ]

    def test_no_duplicates_within_a_class(self):
        words = [_word("the", accuracy=50), _word("The", accuracy=40)]
        errors = ErrorClassifier().classify("the cat and the dog", "cat", words)
        assert [(e.word, e.error_type) for e in errors] == [
            ("the", "None"),
            ("the", "Omission"),
            ("and", "Omission"),
            ("dog", "Omission"),
        ]

    def test_words_without_text_are_skipped(self):
        words = [EngineWordAssessment(word=None), _word("", accuracy=10)]
        assert ErrorClassifier().classify("fox", "fox", words) == []

    def test_missing_word_scores_count_as_zero_accuracy(self):
        errors = ErrorClassifier().classify("fox", "fox", [EngineWordAssessment(word="fox")])
        assert errors == [ErrorRecord(word="fox", error_type="None", accuracy=0)]

    def test_absent_assessments_fall_back_to_omissions(self):
        errors = ErrorClassifier().classify("the quick fox", "the fox", None)
        assert errors == [ErrorRecord(word="quick", error_type="Omission", accuracy=0)]

    def test_custom_threshold(self):
        errors = ErrorClassifier(threshold=50).classify("fox", "fox", [_word("fox", accuracy=60)])
        assert errors == []


# --- assess ---


class TestAssess:
    def test_scores_and_errors_from_payload(self):
        payload = assessment_payload(
            words=[("quick", "Mispronunciation", 55.0), ("fox", "None", 98.0)],
            accuracy=77.5, fluency=88.0, completeness=75.0, pron=79.0, prosody=81.0,
        )
        scores = ErrorClassifier().assess("the quick brown fox", "the quick fox", payload)
        assert scores.accuracy_score == 77.5
        assert scores.fluency_score == 88.0
        assert scores.completeness_score == 75.0
        assert scores.pronunciation_score == 79.0
        assert scores.prosody_score == 81.0
        assert [(e.word, e.error_type) for e in scores.errors] == [
            ("quick", "Mispronunciation"),
            ("brown", "Omission"),
        ]

    def test_prosody_is_optional(self):
        scores = ErrorClassifier().assess("fox", "fox", assessment_payload())
        assert scores.prosody_score is None

    def test_missing_payload_degrades_to_omissions(self):
        scores = ErrorClassifier().assess("the quick fox", "the fox", None)
        assert scores.accuracy_score is None
        assert scores.errors == (ErrorRecord(word="quick", error_type="Omission", accuracy=0),)

    def test_malformed_word_list_keeps_scores(self):
        payload = assessment_payload(accuracy=60.0)
        payload["Words"] = "not a list"
        scores = ErrorClassifier().assess("the quick fox", "the fox", payload)
        assert scores.accuracy_score == 60.0
        assert [e.error_type for e in scores.errors] == ["Omission"]

    def test_malformed_scores_keep_word_errors(self):
        payload = assessment_payload(words=[("fox", "Mispronunciation", 20.0)])
        del payload["PronunciationAssessment"]["FluencyScore"]
        scores = ErrorClassifier().assess("fox", "fox", payload)
        assert scores.fluency_score is None
        assert scores.errors == (ErrorRecord(word="fox", error_type="Mispronunciation", accuracy=20.0),)


# --- filter_to_reference ---


def test_filter_to_reference_drops_foreign_words():
    scores = AssessmentScores(
        accuracy_score=70.0,
        errors=[
            ErrorRecord(word="Fox", error_type="Mispronunciation", accuracy=40),
            ErrorRecord(word="stella", error_type="Mispronunciation", accuracy=30),
            ErrorRecord(word="brown", error_type="Omission", accuracy=0),
        ],
    )
    filtered = ErrorClassifier.filter_to_reference(scores, "The quick brown fox")
    assert [e.word for e in filtered.errors] == ["Fox", "brown"]
    assert filtered.accuracy_score == 70.0
    assert len(scores.errors) == 3
