"""Models module for Pydantic schemas.

This module exposes the domain records and request/response models used by
the store, the simulator, the ERP pipelines and the API.
"""

from models.schemas import (
    AgentDefinition,
    AgentStatus,
    CapabilityTag,
    Edge,
    FulfillmentReport,
    FulfillmentStatus,
    HealthResponse,
    LLMMetrics,
    LogEntry,
    LogLevel,
    ModelConfig,
    Node,
    NodeType,
    Position,
    SimulationMetrics,
    SimulationRun,
    SimulationStatus,
    Template,
)

__all__ = [
    "AgentDefinition",
    "AgentStatus",
    "CapabilityTag",
    "Edge",
    "FulfillmentReport",
    "FulfillmentStatus",
    "HealthResponse",
    "LLMMetrics",
    "LogEntry",
    "LogLevel",
    "ModelConfig",
    "Node",
    "NodeType",
    "Position",
    "SimulationMetrics",
    "SimulationRun",
    "SimulationStatus",
    "Template",
]
