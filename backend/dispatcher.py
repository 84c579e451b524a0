"""Routing of free-text ERP requests to capability agents.

The Dispatcher asks an opaque classifier which capability family a request
belongs to and forwards the raw request to the agent serving that family.
Answers that do not name a known family fall back to ORDER, whose agent can
use every ERP tool. Callers may pin the family and skip classification.
"""

from typing import Protocol

import structlog

from agents.classifier import Classifier
from errors import PlaygroundError, TransportError, ValidationError
from models.schemas import CapabilityTag, RouteResponse

logger = structlog.get_logger(__name__)

FALLBACK_TAG = CapabilityTag.ORDER

_STRIP_CHARS = " \t\r\n\"'`.,;:!?"


class CapabilityAgent(Protocol):
    async def invoke(self, query: str) -> str: ...


def parse_capability_tag(answer: str) -> CapabilityTag | None:
    """Map a classifier answer onto a tag.

    Surrounding whitespace, quotes and punctuation are ignored and matching
    is case-insensitive. Returns None for anything else.
    """
    label = answer.strip(_STRIP_CHARS).upper()
    try:
        return CapabilityTag(label)
    except ValueError:
        return None


class Dispatcher:
    """Classifies requests and routes them to the matching capability agent.

    Attributes:
        agents: Agent serving each capability tag.
        classifier: Opaque text -> label function.
    """

    def __init__(
        self,
        agents: dict[CapabilityTag, CapabilityAgent],
        classifier: Classifier,
    ) -> None:
        missing = [tag.value for tag in CapabilityTag if tag not in agents]
        if missing:
            raise ValueError(f"No agent configured for: {', '.join(missing)}")
        self.agents = agents
        self.classifier = classifier

    async def classify(self, query: str) -> CapabilityTag:
        """Pick the capability family for a request.

        Raises:
            TransportError: If the classifier could not be reached.
        """
        try:
            answer = await self.classifier.classify(query)
        except PlaygroundError:
            raise
        except Exception as e:
            logger.error("classification_failed", error_type=type(e).__name__, error=str(e))
            raise TransportError(f"Classifier unavailable: {e}") from e

        tag = parse_capability_tag(answer)
        if tag is None:
            logger.info("classification_fallback", answer=answer, fallback=FALLBACK_TAG.value)
            return FALLBACK_TAG
        return tag

    async def route(self, query: str, tag: str | CapabilityTag | None = None) -> RouteResponse:
        """Serve a request with the agent for ``tag`` (classified if omitted).

        Raises:
            ValidationError: If ``tag`` is given but is not a known label.
            TransportError: If classification or the agent's model call fails.
        """
        if tag is not None:
            resolved = parse_capability_tag(str(tag))
            if resolved is None:
                raise ValidationError(f"Invalid agent type '{tag}'")
        else:
            resolved = await self.classify(query)

        logger.info("request_routed", agent=resolved.value, pinned=tag is not None)
        result = await self.agents[resolved].invoke(query)
        return RouteResponse(result=result, agent=resolved)
