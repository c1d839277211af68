from dataclasses import dataclass
from typing import Iterable, Optional

from better_profanity import Profanity


@dataclass(frozen=True)
class ModerationResult:
    is_clean: bool
    contains_profanity: bool
    cleaned_text: str


class ProfanityModerator:
    def __init__(self, words: Optional[Iterable[str]] = None):
        # None loads the library's default word list
        self.profanity = Profanity(list(words) if words is not None else None)

    def moderate(self, text: str) -> ModerationResult:
        if not text or not isinstance(text, str):
            return ModerationResult(is_clean=False, contains_profanity=False, cleaned_text="")
        contains = self.profanity.contains_profanity(text)
        return ModerationResult(
            is_clean=not contains,
            contains_profanity=contains,
            cleaned_text=self.profanity.censor(text),
        )
