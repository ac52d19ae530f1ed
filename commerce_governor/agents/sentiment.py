"""
Sentiment estimator
Scores customer text in [-1, 1]. Advisory only: every failure degrades to neutral (0.0).
"""

import re
from typing import Optional

import ollama

from ..core import config
from ..util.logging import logger

SENTIMENT_PROMPT = (
    "Rate the sentiment of the customer's message on a scale from -1 (very negative, angry) "
    "to 1 (very positive, happy). Reply with a single number only."
)

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def parse_score(text: str) -> float:
    """First number in `text`, clamped to [-1, 1]; 0.0 if there is none."""
    match = _NUMBER.search(text or "")
    if not match:
        return 0.0
    return max(-1.0, min(1.0, float(match.group())))


class SentimentEstimator:
    def __init__(self, model_name: str = None, host: str = None, client: Optional[ollama.AsyncClient] = None):
        self.model_name = model_name or config.SENTIMENT_MODEL
        self._client = client or ollama.AsyncClient(
            host=host or config.OLLAMA_HOST,
            timeout=config.COMPLETION_TIMEOUT_SEC,
        )

    async def estimate(self, text: str) -> float:
        if not text or not text.strip():
            return 0.0
        try:
            response = await self._client.chat(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SENTIMENT_PROMPT},
                    {"role": "user", "content": text},
                ],
                options={'temperature': 0.0},
            )
            return parse_score(response.message.content)
        except Exception as e:
            logger.warning(f"Sentiment estimation failed, defaulting to neutral: {e}")
            return 0.0
