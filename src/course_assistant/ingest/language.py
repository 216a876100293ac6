"""Language detection helpers."""
from __future__ import annotations

import logging
from typing import Optional

from langdetect import DetectorFactory, LangDetectException, detect

LOGGER = logging.getLogger(__name__)
DetectorFactory.seed = 0


class LanguageDetector:
    """Wraps langdetect, sampling the head of long documents."""

    def __init__(self, sample_size: int = 5000, min_length: int = 20) -> None:
        self.sample_size = sample_size
        self.min_length = min_length

    def detect(self, text: str) -> Optional[str]:
        sample = text[: self.sample_size].strip()
        if len(sample) < self.min_length:
            return None
        try:
            language = detect(sample)
        except LangDetectException:
            LOGGER.info("Unable to determine language for text of length %s", len(text))
            return None
        LOGGER.debug("Detected language: %s", language)
        return language
