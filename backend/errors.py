"""Domain error taxonomy shared by the store, graph, handlers and pipelines.

The HTTP layer maps these onto status codes; everything below it raises them
unchanged.
"""


class PlaygroundError(Exception):
    """Base class for all domain errors raised by the backend."""


class ValidationError(PlaygroundError):
    """A graph integrity rule or a structural parameter check failed."""


class NotFoundError(PlaygroundError):
    """An agent, node, edge, run, template or integration id is unknown."""


class ConcurrencyError(PlaygroundError):
    """A simulation was started while another one is running for the same agent."""


class TransportError(PlaygroundError):
    """An external capability (ERP system, LLM) could not be reached.

    Attributes:
        status_code: HTTP status returned by the remote side, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
