from dotenv import load_dotenv
import os

load_dotenv()

DEFAULT_REFERENCE_TEXTS = [
    "This is the sample sentence for pronunciation assessment.",
    "The quick brown fox jumps over the lazy dog.",
    "Please call Stella, ask her to bring these things with her from the store.",
]


def _parse_reference_texts(raw):
    if not raw:
        return list(DEFAULT_REFERENCE_TEXTS)
    texts = [text.strip() for text in raw.split("|") if text.strip()]
    return texts or list(DEFAULT_REFERENCE_TEXTS)


# Configuration class for the application
class Config:
    AZURE_SPEECH_KEY = os.getenv("AZURE_SPEECH_KEY")

    if AZURE_SPEECH_KEY is None:
        raise ValueError("AZURE_SPEECH_KEY environment variable is required")

    AZURE_SPEECH_REGION = os.getenv("AZURE_SPEECH_REGION", "eastus")
    SPEECH_LANGUAGE = os.getenv("SPEECH_LANGUAGE", "en-US")
    ENABLE_PROSODY = os.getenv("ENABLE_PROSODY", "true").lower() in ("1", "true", "yes")

    # Audio format expected from the capture side
    AUDIO_SAMPLE_RATE = 16000
    AUDIO_BITS_PER_SAMPLE = 16
    AUDIO_CHANNELS = 1

    # Words scored below this are reported even when the engine says "None"
    MISPRONUNCIATION_THRESHOLD = 80

    REFERENCE_TEXTS = _parse_reference_texts(os.getenv("REFERENCE_TEXTS"))

    # Network configuration
    HEALTH_CHECK_TIMEOUT = 10.0

    # Gemini API Configuration (optional, feedback falls back to a fixed message)
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-lite")
