import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

MYMEMORY_URL = "https://api.mymemory.translated.net/get"


class MyMemoryTranslator:
    def __init__(self, email: Optional[str] = None, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.email = email
        self.timeout = timeout
        self.http = session or requests.Session()

    def translate(self, text: str, target_lang: str, source_lang: str = "auto") -> str:
        """Translated text, or ``text`` unchanged when the service fails."""
        if not text or not text.strip():
            return text

        params = {"q": text, "langpair": f"{source_lang}|{target_lang}"}
        if self.email:
            params["de"] = self.email

        try:
            r = self.http.get(MYMEMORY_URL, params=params, timeout=self.timeout)
            data: Dict[str, Any] = r.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Error translating text: %s", exc)
            return text

        response_data = data.get("responseData") or {}
        if str(data.get("responseStatus")) == "200" and response_data.get("translatedText"):
            return response_data["translatedText"]

        logger.error("Translation API error: %s", data.get("responseDetails") or data.get("responseStatus"))
        return text
