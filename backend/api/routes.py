"""HTTP API routes for the agent playground backend.

This module defines the HTTP endpoints for agent definitions and their
graphs, simulations, deployment, templates, integrations and the live ERP
entry points (request routing and order fulfillment). Domain errors are
mapped onto status codes in one place: ValidationError 400,
NotFoundError 404, ConcurrencyError 409, TransportError 502.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, status
from fastapi.responses import Response

from errors import ConcurrencyError, NotFoundError, PlaygroundError, TransportError, ValidationError
from models.schemas import (
    AddEdgeRequest,
    AgentDefinition,
    CodeUpdateRequest,
    CreateAgentRequest,
    DeployRequest,
    DeployResponse,
    Edge,
    FulfillmentReport,
    FulfillmentRequest,
    GraphImportRequest,
    HealthResponse,
    InstantiateTemplateRequest,
    IntegrationMetadata,
    ModelConfigUpdate,
    MoveNodeRequest,
    Node,
    RouteRequest,
    RouteResponse,
    SimulateRequest,
    SimulationRun,
    StatusUpdateRequest,
    Template,
    UpdateAgentRequest,
)

if TYPE_CHECKING:
    from capabilities.registry import IntegrationRegistry
    from dispatcher import Dispatcher
    from models.database import AgentRepository
    from pipeline import FulfillmentPipeline
    from simulator import ExecutionSimulator
    from store import AgentStore
    from templates import TemplateCatalog

logger = structlog.get_logger(__name__)

router = APIRouter()

AgentId = Annotated[str, Path(description="The agent ID")]

# -----------------------------------------------------------------------------
# Dependencies (set during application startup)
# -----------------------------------------------------------------------------


@dataclass
class PlaygroundServices:
    """Everything the routes need, wired together by the application lifespan.

    ``dispatcher`` and ``pipeline`` are None when the ERP integration could
    not be initialized; the ERP endpoints then answer 503.
    """

    store: AgentStore
    simulator: ExecutionSimulator
    templates: TemplateCatalog
    registry: IntegrationRegistry
    dispatcher: Dispatcher | None = None
    pipeline: FulfillmentPipeline | None = None
    repository: AgentRepository | None = None


_services: PlaygroundServices | None = None


def set_services(services: PlaygroundServices | None) -> None:
    """Set the service container used by all routes.

    Args:
        services: The wired services, or None to reset.
    """
    global _services
    _services = services
    logger.info("playground_services_configured", configured=services is not None)


def get_services() -> PlaygroundServices:
    """Get the service container.

    Raises:
        RuntimeError: If the services have not been configured.
    """
    if _services is None:
        logger.error("playground_services_not_configured")
        raise RuntimeError(
            "Services not configured. Call set_services() during startup."
        )
    return _services


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[PlaygroundError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConcurrencyError: status.HTTP_409_CONFLICT,
    TransportError: status.HTTP_502_BAD_GATEWAY,
}


def _http_error(error: PlaygroundError) -> HTTPException:
    """Translate a domain error into an HTTPException."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, error_code in _STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            code = error_code
            break
    if code >= 500:
        logger.warning("request_failed", error_type=type(error).__name__, error=str(error))
    return HTTPException(status_code=code, detail=str(error))


def _require_agent(services: PlaygroundServices, agent_id: str) -> AgentDefinition:
    agent = services.store.get_by_id(agent_id)
    if agent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent {agent_id} not found",
        )
    return agent


async def _persist(services: PlaygroundServices, agent: AgentDefinition) -> AgentDefinition:
    if services.repository is not None:
        await services.repository.save_agent(agent)
    return agent


# -----------------------------------------------------------------------------
# Agents
# -----------------------------------------------------------------------------


@router.get(
    "/api/agents",
    response_model=list[AgentDefinition],
    summary="List agents",
)
async def list_agents() -> list[AgentDefinition]:
    return get_services().store.get_all()


@router.post(
    "/api/agents",
    response_model=AgentDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Create an agent",
    description="Create a draft agent, optionally with an initial graph.",
)
async def create_agent(request: CreateAgentRequest) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.store.create(request.model_dump(exclude_none=True))
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.get(
    "/api/agents/{agent_id}",
    response_model=AgentDefinition,
    summary="Get an agent",
)
async def get_agent(agent_id: AgentId) -> AgentDefinition:
    return _require_agent(get_services(), agent_id)


@router.put(
    "/api/agents/{agent_id}",
    response_model=AgentDefinition,
    summary="Update an agent",
    description="Partial update. The resulting graph is validated before it is committed.",
)
async def update_agent(agent_id: AgentId, request: UpdateAgentRequest) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.store.update(agent_id, request.model_dump(exclude_unset=True))
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.delete(
    "/api/agents/{agent_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an agent",
)
async def delete_agent(agent_id: AgentId) -> Response:
    services = get_services()
    if not services.store.delete(agent_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Agent {agent_id} not found",
        )
    if services.repository is not None:
        await services.repository.delete_agent(agent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -----------------------------------------------------------------------------
# Graph editing
# -----------------------------------------------------------------------------


@router.post(
    "/api/agents/{agent_id}/nodes",
    response_model=AgentDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Add a node",
)
async def add_node(agent_id: AgentId, node: Node) -> AgentDefinition:
    services = get_services()
    try:
        graph = services.store.edit_graph(agent_id)
        graph.add_node(node)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.delete(
    "/api/agents/{agent_id}/nodes/{node_id}",
    response_model=AgentDefinition,
    summary="Remove a node",
    description="Removes the node and every edge that touches it.",
)
async def remove_node(
    agent_id: AgentId,
    node_id: Annotated[str, Path(description="The node ID")],
) -> AgentDefinition:
    services = get_services()
    try:
        graph = services.store.edit_graph(agent_id)
        graph.remove_node(node_id)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.patch(
    "/api/agents/{agent_id}/nodes/{node_id}/position",
    response_model=AgentDefinition,
    summary="Move a node",
)
async def move_node(
    agent_id: AgentId,
    node_id: Annotated[str, Path(description="The node ID")],
    request: MoveNodeRequest,
) -> AgentDefinition:
    services = get_services()
    try:
        graph = services.store.edit_graph(agent_id)
        graph.move_node(node_id, request.position)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.post(
    "/api/agents/{agent_id}/edges",
    response_model=AgentDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Connect two nodes",
    description="Adding an edge between already connected nodes is a no-op.",
)
async def add_edge(agent_id: AgentId, request: AddEdgeRequest) -> AgentDefinition:
    services = get_services()
    edge = Edge(
        id=request.id or f"e{request.source}-{request.target}",
        source=request.source,
        target=request.target,
        label=request.label,
    )
    try:
        graph = services.store.edit_graph(agent_id)
        graph.add_edge(edge)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.delete(
    "/api/agents/{agent_id}/edges/{edge_id}",
    response_model=AgentDefinition,
    summary="Remove an edge",
)
async def remove_edge(
    agent_id: AgentId,
    edge_id: Annotated[str, Path(description="The edge ID")],
) -> AgentDefinition:
    services = get_services()
    try:
        graph = services.store.edit_graph(agent_id)
        graph.remove_edge(edge_id)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.put(
    "/api/agents/{agent_id}/graph",
    response_model=AgentDefinition,
    summary="Replace the whole graph",
    description="Bulk import. Rejected as a whole if any graph invariant is violated.",
)
async def import_graph(agent_id: AgentId, request: GraphImportRequest) -> AgentDefinition:
    services = get_services()
    try:
        graph = services.store.edit_graph(agent_id)
        graph.agent.nodes = list(request.nodes)
        graph.agent.edges = list(request.edges)
        agent = services.store.commit_graph(agent_id, graph)
    except PlaygroundError as e:
        raise _http_error(e) from e
    logger.info("graph_imported", agent_id=agent_id, nodes=len(agent.nodes), edges=len(agent.edges))
    return await _persist(services, agent)


@router.patch(
    "/api/agents/{agent_id}/model-config",
    response_model=AgentDefinition,
    summary="Update model configuration",
    description="Shallow-merges the given fields into the agent's model configuration.",
)
async def update_model_config(agent_id: AgentId, request: ModelConfigUpdate) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.store.update_model_config(request, agent_id=agent_id)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.put(
    "/api/agents/{agent_id}/code/{node_id}",
    response_model=AgentDefinition,
    summary="Set node code",
)
async def update_code(
    agent_id: AgentId,
    node_id: Annotated[str, Path(description="The node ID")],
    request: CodeUpdateRequest,
) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.store.update_code(node_id, request.source, agent_id=agent_id)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.patch(
    "/api/agents/{agent_id}/status",
    response_model=AgentDefinition,
    summary="Set agent status",
    description="Moves an agent between draft, testing and error. Deploying has its own endpoint.",
)
async def update_status(agent_id: AgentId, request: StatusUpdateRequest) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.store.set_status(agent_id, request.status)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


# -----------------------------------------------------------------------------
# Simulation & deployment
# -----------------------------------------------------------------------------


@router.post(
    "/api/agents/{agent_id}/simulate",
    response_model=SimulationRun,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start a simulation",
    description="Starts a dry run in the background. Poll the returned run for progress.",
)
async def simulate_agent(agent_id: AgentId, request: SimulateRequest) -> SimulationRun:
    services = get_services()
    try:
        run = await services.simulator.run(agent_id, request.mock_data_id)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return run


@router.get(
    "/api/agents/{agent_id}/simulations",
    response_model=list[SimulationRun],
    summary="List an agent's simulations",
)
async def list_simulations(agent_id: AgentId) -> list[SimulationRun]:
    services = get_services()
    runs = services.simulator.list_runs(agent_id)
    if services.repository is not None:
        known = {run.id for run in runs}
        persisted = await services.repository.list_runs(agent_id)
        runs.extend(run for run in persisted if run.id not in known)
        runs.sort(key=lambda r: r.start_time, reverse=True)
    return runs


@router.get(
    "/api/simulations/{run_id}",
    response_model=SimulationRun,
    summary="Get a simulation run",
)
async def get_simulation(
    run_id: Annotated[str, Path(description="The simulation run ID")],
) -> SimulationRun:
    try:
        return await get_services().simulator.fetch_run(run_id)
    except PlaygroundError as e:
        raise _http_error(e) from e


@router.post(
    "/api/simulations/{run_id}/cancel",
    response_model=SimulationRun,
    summary="Cancel a simulation run",
)
async def cancel_simulation(
    run_id: Annotated[str, Path(description="The simulation run ID")],
) -> SimulationRun:
    try:
        return await get_services().simulator.cancel(run_id)
    except PlaygroundError as e:
        raise _http_error(e) from e


@router.post(
    "/api/agents/{agent_id}/deploy",
    response_model=DeployResponse,
    summary="Deploy an agent",
)
async def deploy_agent(agent_id: AgentId, request: DeployRequest) -> DeployResponse:
    services = get_services()
    try:
        deployment = services.store.deploy(agent_id, request.deployment_config)
    except PlaygroundError as e:
        raise _http_error(e) from e
    await _persist(services, deployment.agent)
    return deployment


# -----------------------------------------------------------------------------
# Templates & integrations
# -----------------------------------------------------------------------------


@router.get(
    "/api/templates",
    response_model=list[Template],
    summary="List templates",
)
async def list_templates() -> list[Template]:
    return get_services().templates.list()


@router.get(
    "/api/templates/{template_id}",
    response_model=Template,
    summary="Get a template",
)
async def get_template(
    template_id: Annotated[str, Path(description="The template ID")],
) -> Template:
    try:
        return get_services().templates.get(template_id)
    except PlaygroundError as e:
        raise _http_error(e) from e


@router.post(
    "/api/templates/{template_id}/instantiate",
    response_model=AgentDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Create an agent from a template",
)
async def instantiate_template(
    template_id: Annotated[str, Path(description="The template ID")],
    request: InstantiateTemplateRequest,
) -> AgentDefinition:
    services = get_services()
    try:
        agent = services.templates.instantiate(services.store, template_id, request)
    except PlaygroundError as e:
        raise _http_error(e) from e
    return await _persist(services, agent)


@router.get(
    "/api/integrations",
    response_model=list[IntegrationMetadata],
    summary="List available integrations",
)
async def list_integrations() -> list[IntegrationMetadata]:
    return get_services().registry.available()


# -----------------------------------------------------------------------------
# Live ERP
# -----------------------------------------------------------------------------


def _erp_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="ERP integration is not configured",
    )


@router.post(
    "/api/erp/query",
    response_model=RouteResponse,
    summary="Answer an ERP request",
    description="Classifies the request (unless an agent is pinned) and routes it "
    "to the matching capability agent.",
)
async def erp_query(request: RouteRequest) -> RouteResponse:
    dispatcher = get_services().dispatcher
    if dispatcher is None:
        raise _erp_unavailable()
    try:
        return await dispatcher.route(request.query, request.agent)
    except PlaygroundError as e:
        raise _http_error(e) from e


@router.post(
    "/api/erp/fulfillment",
    response_model=FulfillmentReport,
    summary="Fulfill an order",
)
async def erp_fulfillment(request: FulfillmentRequest) -> FulfillmentReport:
    pipeline = get_services().pipeline
    if pipeline is None:
        raise _erp_unavailable()
    try:
        return await pipeline.process_order_fulfillment(request.order_id)
    except PlaygroundError as e:
        raise _http_error(e) from e


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check() -> HealthResponse:
    """Health check with agent and active simulation counts."""
    try:
        services = get_services()
    except RuntimeError:
        # Services not configured yet (e.g., during startup)
        return HealthResponse(status="unhealthy", timestamp=time.time())

    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        agents=len(services.store),
        active_simulations=services.simulator.active_count,
    )
