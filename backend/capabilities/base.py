"""Common machinery for ERP capability handlers.

A capability handler fronts one ERP subsystem (inventory, orders, customers).
Each call goes through ``invoke(action, params)``, which:

1. rejects unsupported actions and structurally invalid params with
   ``errors.ValidationError`` (caller bugs, raised);
2. performs exactly one ERP HTTP call;
3. returns a ``CapabilityResult``. Transport failures are returned as
   ``ok=False`` results, never raised.

Handlers keep no per-call state and may be invoked concurrently.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, ClassVar

import pydantic
import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from capabilities.erp_client import ErpClient
from errors import TransportError, ValidationError

logger = structlog.get_logger(__name__)


class Action(StrEnum):
    QUERY = "query"
    UPDATE = "update"
    CREATE = "create"


class CamelModel(BaseModel):
    """Params model accepting both camelCase (wire) and snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True)
class CapabilityResult:
    """Tagged outcome of a handler call.

    Attributes:
        ok: True if the ERP call succeeded.
        payload: Decoded ERP response body (only meaningful when ok).
        error: Failure reason (only set when not ok).
    """

    ok: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def success(cls, payload: Any) -> "CapabilityResult":
        return cls(ok=True, payload=payload)

    @classmethod
    def failure(cls, error: str) -> "CapabilityResult":
        return cls(ok=False, error=error)

    def as_text(self) -> str:
        """Render the result as a single string (JSON payload or failure message)."""
        if not self.ok:
            return self.error or "Unknown error"
        return json.dumps(self.payload)


class CapabilityHandler(ABC):
    """Base class for ERP subsystem handlers.

    Subclasses declare their tool name, the subsystem label used in failure
    messages, the supported actions and a params model, then implement
    ``_check`` and ``_perform``.
    """

    name: ClassVar[str]
    system: ClassVar[str]
    description: ClassVar[str]
    actions: ClassVar[tuple[Action, ...]]
    params_model: ClassVar[type[CamelModel]]

    def __init__(self, client: ErpClient) -> None:
        self.client = client

    async def invoke(self, action: str, params: dict[str, Any] | None = None) -> CapabilityResult:
        """Perform one action against the ERP subsystem.

        Args:
            action: One of ``self.actions``.
            params: Action parameters, camelCase or snake_case keys.

        Returns:
            The ERP answer, or a failure result if the ERP could not be
            reached or answered with an error.

        Raises:
            ValidationError: If the action is unsupported or params are
                missing or malformed.
        """
        if action not in self.actions:
            supported = ", ".join(a.value for a in self.actions)
            raise ValidationError(
                f"Unsupported action '{action}' for {self.name} (expected one of: {supported})"
            )

        try:
            parsed = self.params_model.model_validate(params or {})
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid parameters for {self.name}.{action}: {e}") from e

        self._check(Action(action), parsed)

        try:
            payload = await self._perform(Action(action), parsed)
        except TransportError as e:
            logger.warning(
                "capability_call_failed",
                capability=self.name,
                action=action,
                error=str(e),
            )
            return CapabilityResult.failure(f"Error connecting to {self.system}: {e}")

        logger.debug("capability_call_succeeded", capability=self.name, action=action)
        return CapabilityResult.success(payload)

    async def call_tool(self, arguments: dict[str, Any]) -> str:
        """Entry point for LLM tool calls: ``{"action": ..., **params}`` in, text out."""
        params = dict(arguments)
        action = params.pop("action", None)
        if not action:
            raise ValidationError(f"Missing required parameter 'action' for {self.name}")
        result = await self.invoke(str(action), params)
        return result.as_text()

    def tool_definition(self) -> dict[str, Any]:
        """OpenAI-style function definition generated from the params model."""
        schema = self.params_model.model_json_schema(by_alias=True)
        properties: dict[str, Any] = {
            "action": {
                "type": "string",
                "enum": [a.value for a in self.actions],
                "description": "The action to perform",
            },
        }
        properties.update(schema.get("properties", {}))

        parameters: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "required": ["action"],
        }
        if "$defs" in schema:
            parameters["$defs"] = schema["$defs"]

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    def _require(self, action: Action, **fields: Any) -> None:
        missing = [name for name, value in fields.items() if value is None]
        if missing:
            raise ValidationError(
                f"{' and '.join(missing)} required for {self.name}.{action.value}"
            )

    @abstractmethod
    def _check(self, action: Action, params: Any) -> None:
        """Raise ValidationError if ``params`` lack what ``action`` needs."""

    @abstractmethod
    async def _perform(self, action: Action, params: Any) -> Any:
        """Issue the ERP call for ``action`` and return the decoded body."""
