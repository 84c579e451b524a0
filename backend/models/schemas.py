"""Pydantic schemas for agent definitions, runs, reports and API bodies.

This module defines all the data models shared by the store, the simulator,
the ERP pipelines and the HTTP API. All models use Pydantic v2.
"""

import time
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AgentStatus(StrEnum):
    """Agent definition lifecycle status."""

    DRAFT = "draft"
    TESTING = "testing"
    DEPLOYED = "deployed"
    ERROR = "error"


class NodeType(StrEnum):
    """Known node kinds. Node.type is an open set; these are the built-ins."""

    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    MODEL = "model"
    DATA = "data"
    OUTPUT = "output"


class SimulationStatus(StrEnum):
    """Simulation run state machine."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class LogLevel(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class CapabilityTag(StrEnum):
    """Capability families a free-text request can be dispatched to."""

    INVENTORY = "INVENTORY"
    ORDER = "ORDER"
    CUSTOMER = "CUSTOMER"


class FulfillmentStatus(StrEnum):
    READY_FOR_SHIPMENT = "ready_for_shipment"
    AWAITING_STOCK = "awaiting_stock"


class TemplateCategory(StrEnum):
    INVOICE_PROCESSING = "invoice_processing"
    CUSTOMER_SUPPORT = "customer_support"
    INVENTORY_MANAGEMENT = "inventory_management"
    SALES_AUTOMATION = "sales_automation"
    DATA_ANALYSIS = "data_analysis"
    GENERAL = "general"


# -----------------------------------------------------------------------------
# Agent definition
# -----------------------------------------------------------------------------


class Position(BaseModel):
    """Canvas coordinates of a node. Layout only."""

    x: float = 0.0
    y: float = 0.0


class Node(BaseModel):
    """A step in an agent graph."""

    id: str = Field(min_length=1, description="Node id, unique within an agent")
    type: str = Field(
        min_length=1,
        description="Node kind",
        examples=["trigger", "action", "condition", "model"],
    )
    position: Position = Field(default_factory=Position)
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Label, description and type-specific fields",
    )

    @property
    def label(self) -> str:
        return str(self.data.get("label") or self.id)


class Edge(BaseModel):
    """A directed connection between two nodes of the same agent."""

    id: str = Field(min_length=1)
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    label: str | None = None


class ModelConfig(BaseModel):
    """LLM configuration attached to an agent definition."""

    model_config = ConfigDict(protected_namespaces=())

    provider: str = Field(default="openai", examples=["openai"])
    model_name: str = Field(default="gpt-3.5-turbo", examples=["gpt-4"])
    temperature: float | None = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM generation (0.0-2.0)",
    )
    max_tokens: int | None = Field(default=2000, gt=0)


class ModelConfigUpdate(BaseModel):
    """Partial model configuration, shallow-merged into the existing one."""

    model_config = ConfigDict(protected_namespaces=())

    provider: str | None = None
    model_name: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class IntegrationBinding(BaseModel):
    """An integration an agent uses, with the credentials it was bound with."""

    id: str
    credentials: dict[str, str] = Field(default_factory=dict)


class NotificationConfig(BaseModel):
    email: list[str] | None = None
    slack: str | None = None
    webhook: str | None = None


class ResourceLimits(BaseModel):
    max_concurrent_runs: int = Field(default=1, ge=1)
    timeout_seconds: int = Field(default=300, ge=1)
    max_tokens_per_run: int = Field(default=10000, ge=1)


class DeploymentConfig(BaseModel):
    environment: str = Field(default="production", examples=["staging", "production"])
    schedule: str | None = Field(default=None, examples=["0 * * * *"])
    notifications: NotificationConfig | None = None
    resource_limits: ResourceLimits | None = None


class AgentDefinition(BaseModel):
    """A named graph of steps plus its configuration.

    Graph invariants (unique node ids, edges referencing existing nodes, no
    self loops, one edge per ordered pair) are enforced by
    ``workflow.graph.GraphModel`` and the store, not by this schema.
    """

    id: str
    name: str = "New Agent"
    description: str = ""
    status: AgentStatus = AgentStatus.DRAFT
    owner_id: str = "current-user"
    is_public: bool = False
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    code: dict[str, str] = Field(default_factory=dict)
    llm_config: ModelConfig = Field(default_factory=ModelConfig)
    integrations: list[IntegrationBinding] = Field(default_factory=list)
    deployment_config: DeploymentConfig | None = None
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


# -----------------------------------------------------------------------------
# Simulation
# -----------------------------------------------------------------------------


class LogEntry(BaseModel):
    timestamp: float
    level: LogLevel
    message: str
    node_id: str | None = None


class TokenUsage(BaseModel):
    prompt: int = Field(default=0, ge=0)
    completion: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


class SimulationMetrics(BaseModel):
    """Terminal metrics of a simulation run."""

    execution_time_ms: int = Field(ge=0)
    token_usage: TokenUsage | None = None
    success_rate: float | None = Field(default=None, ge=0.0, le=100.0)
    error_rate: float | None = Field(default=None, ge=0.0, le=100.0)


class SimulationRun(BaseModel):
    """One timed execution trace of an agent.

    ``logs`` only ever grows and ``metrics`` is set only once the run has
    reached ``success`` or ``error``.
    """

    id: str
    agent_id: str
    mock_data_id: str
    status: SimulationStatus = SimulationStatus.IDLE
    start_time: float
    end_time: float | None = None
    logs: list[LogEntry] = Field(default_factory=list)
    metrics: SimulationMetrics | None = None
    error_message: str | None = None


class MockDataSet(BaseModel):
    id: str
    name: str
    description: str = ""
    records: list[dict[str, Any]] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# ERP pipelines
# -----------------------------------------------------------------------------


class InventoryCheck(BaseModel):
    """Outcome of the stock check for one order line."""

    product_id: str
    quantity: int
    result: str = Field(description="Inventory system answer or failure reason")
    in_stock: bool
    reachable: bool = Field(
        default=True,
        description="False when the inventory system could not be reached",
    )


class InventoryAdjustment(BaseModel):
    """Outcome of the stock decrement for one order line."""

    product_id: str
    quantity_delta: int
    success: bool
    result: str


class FulfillmentReport(BaseModel):
    order_id: str
    status: FulfillmentStatus
    inventory_checks: list[InventoryCheck]
    inventory_updates: list[InventoryAdjustment] = Field(default_factory=list)
    processing_result: str
    message: str


class IntegrationMetadata(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = "general"
    required_credentials: list[str] = Field(default_factory=list)
    website: str | None = None
    documentation_url: str | None = None


class Template(BaseModel):
    """A reusable starting graph for a new agent."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    name: str
    description: str = ""
    category: TemplateCategory = TemplateCategory.GENERAL
    tags: list[str] = Field(default_factory=list)
    author_name: str = "AI Agent Playground"
    is_official: bool = True
    popularity: float = 0.0
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    code: dict[str, str] = Field(default_factory=dict)
    default_model_config: ModelConfig = Field(default_factory=ModelConfig)
    required_integrations: list[str] = Field(default_factory=list)


class LLMMetrics(BaseModel):
    """Token and latency metrics for a single LLM call."""

    model: str = Field(description="Model identifier used")
    input_tokens: int = Field(ge=0)
    output_tokens: int = Field(ge=0)
    latency_ms: int = Field(ge=0)


# -----------------------------------------------------------------------------
# API request / response bodies
# -----------------------------------------------------------------------------


class CreateAgentRequest(BaseModel):
    name: str = Field(default="New Agent", min_length=1, max_length=200)
    description: str = ""
    owner_id: str = "current-user"
    is_public: bool = False
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)
    code: dict[str, str] = Field(default_factory=dict)
    llm_config: ModelConfig | None = None
    integrations: list[IntegrationBinding] = Field(default_factory=list)


class StatusUpdateRequest(BaseModel):
    status: AgentStatus


class UpdateAgentRequest(BaseModel):
    """Partial agent update. Status is assigned by the store only."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    is_public: bool | None = None
    nodes: list[Node] | None = None
    edges: list[Edge] | None = None
    code: dict[str, str] | None = None
    llm_config: ModelConfig | None = None
    integrations: list[IntegrationBinding] | None = None


class AddEdgeRequest(BaseModel):
    id: str | None = Field(default=None, description="Generated when omitted")
    source: str = Field(min_length=1)
    target: str = Field(min_length=1)
    label: str | None = None


class MoveNodeRequest(BaseModel):
    position: Position


class GraphImportRequest(BaseModel):
    nodes: list[Node]
    edges: list[Edge] = Field(default_factory=list)


class CodeUpdateRequest(BaseModel):
    source: str


class SimulateRequest(BaseModel):
    mock_data_id: str = Field(default="invoices-small", min_length=1)


class DeployRequest(BaseModel):
    deployment_config: DeploymentConfig = Field(default_factory=DeploymentConfig)


class DeployResponse(BaseModel):
    success: bool
    deployment_id: str
    agent: AgentDefinition
    deployed_at: float
    environment: str


class InstantiateTemplateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    owner_id: str | None = None


class RouteRequest(BaseModel):
    query: str = Field(min_length=1, max_length=10000)
    agent: str | None = Field(
        default=None,
        description="Pin a capability (INVENTORY, ORDER, CUSTOMER) and skip classification",
    )


class RouteResponse(BaseModel):
    result: str
    agent: CapabilityTag


class FulfillmentRequest(BaseModel):
    order_id: str = Field(min_length=1, examples=["ORD-1"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"]
    timestamp: float
    version: str = "0.1.0"
    agents: int = 0
    active_simulations: int = 0
