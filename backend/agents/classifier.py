"""Free-text request classifiers used by the Dispatcher.

A classifier is any object with ``async classify(text) -> str``. Its answer
is opaque: the Dispatcher decides what to do with unrecognized values.

- LLMClassifier asks a (cheap) model with the router prompt at temperature 0.
- KeywordClassifier is deterministic and needs no API key; it is used when
  ``USE_MOCK_LLM`` is set and in tests.
"""

import re
from typing import Protocol

import structlog

from agents.llm import LLMClient
from agents.prompts import get_router_prompt

logger = structlog.get_logger(__name__)


class Classifier(Protocol):
    async def classify(self, text: str) -> str: ...


class LLMClassifier:
    """Classify requests with an LLM call.

    Transport failures propagate from the LLMClient as TransportError.
    """

    def __init__(self, llm_client: LLMClient, model: str | None = None) -> None:
        self.llm_client = llm_client
        self.model = model

    async def classify(self, text: str) -> str:
        response = await self.llm_client.call(
            messages=[{"role": "user", "content": get_router_prompt(text)}],
            model=self.model,
            temperature=0.0,
            max_tokens=10,
        )
        logger.debug("llm_classification", answer=response.content)
        return response.content


# Checked in order; the first family with a matching keyword wins.
_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("CUSTOMER", ("customer", "client", "account", "email", "phone", "address", "preference")),
    ("INVENTORY", ("inventory", "stock", "warehouse", "product", "sku", "location", "units")),
    ("ORDER", ("order", "shipment", "fulfil", "fulfill", "purchase", "delivery")),
)


class KeywordClassifier:
    """Keyword-based classifier with no external calls.

    Order words are checked last so that "stock for order 12" classifies as
    inventory. Text without any keyword yields ``"UNKNOWN"``.
    """

    async def classify(self, text: str) -> str:
        words = re.findall(r"[a-z]+", text.lower())
        for label, keywords in _KEYWORDS:
            if any(word.startswith(keyword) for word in words for keyword in keywords):
                return label
        return "UNKNOWN"
