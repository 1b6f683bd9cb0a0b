class TranscriptAccumulator:
    """Merges interim and final recognition text for a single trial."""

    def merge_interim(self, current: str, fragment: str) -> str:
        # Interim results replace each other, they never accumulate
        return fragment

    def merge_final(self, current: str, final_text: str) -> str:
        if not final_text or not final_text.strip():
            return current
        if current == "":
            return final_text
        return f"{current} {final_text}"

    @staticmethod
    def word_count(text: str) -> int:
        return len(text.split())
