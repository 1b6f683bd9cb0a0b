import logging
from typing import Any, Sequence
import google.generativeai as genai

from config import Config
from models import TrialResult, OMISSION

FALLBACK_FEEDBACK = "Could not generate detailed feedback at this moment. Please try again later."


class FeedbackGenerator:
    def __init__(self, api_key: str = None, model_name: str = None):
        self.api_key = api_key or Config.GEMINI_API_KEY
        self.model = None
        if self.api_key:
            genai.configure(api_key=self.api_key)
            self.model = genai.GenerativeModel(model_name or Config.GEMINI_MODEL)

    def generate_feedback(self, results: Sequence[TrialResult]) -> str:
        """Generate a feedback summary of a read-aloud session using Gemini API"""
        if not results:
            return "No completed trials to give feedback on."
        if self.model is None:
            logging.warning("GEMINI_API_KEY not configured, returning fallback feedback")
            return FALLBACK_FEEDBACK

        prompt = f"""
        Generate constructive and encouraging feedback for a speaker who read the following
        sentences aloud for a pronunciation assessment.

        {self.build_trial_summary(results)}

        **Instructions for Feedback:**
        1. Start with a positive encouraging statement.
        2. Comment on accuracy, fluency and completeness across the sentences.
        3. List specific mispronounced words and suggest ways to improve them.
        4. Mention any omitted words and remind the speaker to read every word.
        5. End with a concluding encouraging remark.
        6. Keep the feedback concise but informative, around 3-5 sentences.
        """

        try:
            response = self.model.generate_content(prompt)
            return response.text
        except Exception as e:
            logging.error(f"Error generating feedback with Gemini API: {e}. Trials: {len(results)}")
            return FALLBACK_FEEDBACK

    def build_trial_summary(self, results: Sequence[TrialResult]) -> str:
        lines = []
        for number, result in enumerate(results, start=1):
            scores = result.scores
            mispronounced = [e.word for e in scores.errors if e.error_type != OMISSION]
            omitted = [e.word for e in scores.errors if e.error_type == OMISSION]
            lines.append(
                f"**Sentence {number}{' (aborted)' if result.aborted else ''}:** {result.reference_text}\n"
                f"        - Spoken: {result.transcribed_text}\n"
                f"        - Accuracy: {self._format_score(scores.accuracy_score)}, "
                f"Fluency: {self._format_score(scores.fluency_score)}, "
                f"Completeness: {self._format_score(scores.completeness_score)}, "
                f"Pronunciation: {self._format_score(scores.pronunciation_score)}\n"
                f"        - Mispronounced words: {', '.join(mispronounced) or 'None'}\n"
                f"        - Omitted words: {', '.join(omitted) or 'None'}"
            )
        return "\n\n        ".join(lines)

    def _format_score(self, score: Any) -> str:
        """Helper method to safely format a 0-100 score."""
        if isinstance(score, (int, float)):
            return f"{score:.2f}"
        return "N/A"
