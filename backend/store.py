"""In-memory owner of agent definitions.

The AgentStore holds the durable copy of every AgentDefinition. Callers never
receive a reference to it: every getter returns a deep copy, and every change
goes through a store method (or through ``edit_graph`` / ``commit_graph``),
which validates the resulting graph before committing it.

The store is the only component that assigns ``status``.

Usage:
    >>> store = AgentStore()
    >>> agent = store.create({"name": "Invoice bot"})
    >>> graph = store.edit_graph(agent.id)
    >>> graph.add_node(Node(id="n1", type="trigger"))
    >>> store.commit_graph(agent.id, graph)
"""

import time
import uuid
from typing import Any

import pydantic
import structlog

from errors import NotFoundError, ValidationError
from models.schemas import (
    AgentDefinition,
    AgentStatus,
    DeploymentConfig,
    DeployResponse,
    Edge,
    ModelConfig,
    ModelConfigUpdate,
    Node,
)
from workflow.graph import GraphModel, find_problems

logger = structlog.get_logger(__name__)

# Fields a partial update may never overwrite.
_PROTECTED_FIELDS = frozenset({"id", "created_at", "status"})


def generate_agent_id() -> str:
    return f"agent_{uuid.uuid4().hex[:12]}"


class AgentStore:
    """Keyed collection of agent definitions plus a "current" selection.

    Attributes:
        _agents: Mapping from agent id to the committed definition.
        _current_id: Id of the agent the editing surface is focused on.
    """

    def __init__(self) -> None:
        self._agents: dict[str, AgentDefinition] = {}
        self._current_id: str | None = None

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    # -----------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------

    def _require(self, agent_id: str) -> AgentDefinition:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent '{agent_id}' not found")
        return agent

    def _resolve(self, agent_id: str | None) -> AgentDefinition:
        """Return the committed agent addressed by ``agent_id`` or the current one."""
        if agent_id is None:
            if self._current_id is None:
                raise NotFoundError("No current agent selected")
            agent_id = self._current_id
        return self._require(agent_id)

    def _build(self, data: dict[str, Any]) -> AgentDefinition:
        try:
            agent = AgentDefinition.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid agent definition: {e}") from e

        problems = find_problems(agent.nodes, agent.edges)
        if problems:
            raise ValidationError("Invalid graph: " + "; ".join(problems))
        return agent

    def _commit(self, agent: AgentDefinition) -> AgentDefinition:
        self._agents[agent.id] = agent.model_copy(deep=True)
        return agent.model_copy(deep=True)

    # -----------------------------------------------------------------
    # CRUD
    # -----------------------------------------------------------------

    def create(self, partial: dict[str, Any] | None = None) -> AgentDefinition:
        """Create a draft agent.

        Args:
            partial: Initial field values. ``id``, ``status`` and timestamps
                are assigned by the store and ignored here.

        Returns:
            A copy of the created definition.

        Raises:
            ValidationError: If the supplied fields or graph are invalid.
        """
        now = time.time()
        data: dict[str, Any] = {
            k: v for k, v in (partial or {}).items() if k not in _PROTECTED_FIELDS and v is not None
        }
        data.pop("updated_at", None)
        data.update(
            id=generate_agent_id(),
            status=AgentStatus.DRAFT,
            created_at=now,
            updated_at=now,
        )
        data.setdefault("name", "New Agent")
        data.setdefault("owner_id", "current-user")

        agent = self._build(data)
        created = self._commit(agent)
        logger.info("agent_created", agent_id=agent.id, name=agent.name, nodes=len(agent.nodes))
        return created

    def update(self, agent_id: str, partial: dict[str, Any]) -> AgentDefinition:
        """Apply a partial update to an agent.

        ``id``, ``created_at`` and ``status`` in ``partial`` are ignored.

        Raises:
            NotFoundError: If the agent does not exist.
            ValidationError: If the resulting definition is invalid.
        """
        existing = self._require(agent_id)

        data = existing.model_dump()
        data.update({k: v for k, v in partial.items() if k not in _PROTECTED_FIELDS})
        data["updated_at"] = time.time()

        agent = self._build(data)
        updated = self._commit(agent)
        logger.info("agent_updated", agent_id=agent_id, fields=sorted(partial))
        return updated

    def delete(self, agent_id: str) -> bool:
        """Remove an agent. Returns False if it did not exist."""
        if self._agents.pop(agent_id, None) is None:
            return False
        if self._current_id == agent_id:
            self._current_id = None
        logger.info("agent_deleted", agent_id=agent_id)
        return True

    def get_by_id(self, agent_id: str) -> AgentDefinition | None:
        agent = self._agents.get(agent_id)
        return agent.model_copy(deep=True) if agent is not None else None

    def get_all(self) -> list[AgentDefinition]:
        """All agents, most recently updated first."""
        agents = sorted(self._agents.values(), key=lambda a: a.updated_at, reverse=True)
        return [agent.model_copy(deep=True) for agent in agents]

    def load(self, agents: list[AgentDefinition]) -> int:
        """Restore persisted definitions, skipping ones with an invalid graph.

        Returns:
            Number of agents loaded.
        """
        loaded = 0
        for agent in agents:
            problems = find_problems(agent.nodes, agent.edges)
            if problems:
                logger.warning("agent_load_skipped", agent_id=agent.id, problems=problems)
                continue
            self._agents[agent.id] = agent.model_copy(deep=True)
            loaded += 1
        logger.info("agents_loaded", count=loaded)
        return loaded

    # -----------------------------------------------------------------
    # Current agent
    # -----------------------------------------------------------------

    def set_current(self, agent_id: str | None) -> AgentDefinition | None:
        """Focus the editing surface on an agent (or clear the focus)."""
        if agent_id is None:
            self._current_id = None
            return None
        agent = self._require(agent_id)
        self._current_id = agent_id
        return agent.model_copy(deep=True)

    @property
    def current(self) -> AgentDefinition | None:
        if self._current_id is None:
            return None
        return self.get_by_id(self._current_id)

    # -----------------------------------------------------------------
    # Field mutators (current agent unless agent_id is given)
    # -----------------------------------------------------------------

    def update_nodes(self, nodes: list[Node], agent_id: str | None = None) -> AgentDefinition:
        """Replace the node list, dropping edges that lose an endpoint."""
        agent = self._resolve(agent_id).model_copy(deep=True)

        node_ids = {node.id for node in nodes}
        kept_edges = [e for e in agent.edges if e.source in node_ids and e.target in node_ids]
        dropped = len(agent.edges) - len(kept_edges)

        agent.nodes = [node.model_copy(deep=True) for node in nodes]
        agent.edges = kept_edges
        agent.updated_at = time.time()

        problems = find_problems(agent.nodes, agent.edges)
        if problems:
            raise ValidationError("Invalid graph: " + "; ".join(problems))

        if dropped:
            logger.info("agent_dangling_edges_dropped", agent_id=agent.id, count=dropped)
        return self._commit(agent)

    def update_edges(self, edges: list[Edge], agent_id: str | None = None) -> AgentDefinition:
        """Replace the edge list. Each edge is checked like ``GraphModel.add_edge``."""
        staging = self._resolve(agent_id).model_copy(deep=True)
        staging.edges = []

        graph = GraphModel(staging)
        for edge in edges:
            graph.add_edge(edge.model_copy())

        staging.updated_at = time.time()
        return self._commit(staging)

    def update_model_config(
        self,
        partial: ModelConfigUpdate | dict[str, Any],
        agent_id: str | None = None,
    ) -> AgentDefinition:
        """Shallow-merge fields into the agent's model configuration."""
        agent = self._resolve(agent_id).model_copy(deep=True)

        if isinstance(partial, ModelConfigUpdate):
            changes = partial.model_dump(exclude_none=True)
        else:
            changes = {k: v for k, v in partial.items() if v is not None}

        try:
            agent.llm_config = ModelConfig.model_validate(
                {**agent.llm_config.model_dump(), **changes}
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid model config: {e}") from e

        agent.updated_at = time.time()
        return self._commit(agent)

    def update_code(self, node_id: str, source: str, agent_id: str | None = None) -> AgentDefinition:
        """Set the code attached to a node. Last write wins."""
        agent = self._resolve(agent_id).model_copy(deep=True)
        if not any(node.id == node_id for node in agent.nodes):
            raise NotFoundError(f"Node '{node_id}' not found in agent '{agent.id}'")

        agent.code[node_id] = source
        agent.updated_at = time.time()
        return self._commit(agent)

    # -----------------------------------------------------------------
    # Graph editing sessions
    # -----------------------------------------------------------------

    def edit_graph(self, agent_id: str) -> GraphModel:
        """Return a GraphModel over a staging copy of the agent.

        Changes become visible to other readers only after ``commit_graph``.
        """
        return GraphModel(self._require(agent_id).model_copy(deep=True))

    def commit_graph(self, agent_id: str, graph: GraphModel) -> AgentDefinition:
        """Validate a staging graph and make it the committed definition.

        Only nodes, edges and code are taken from the staging copy.

        Raises:
            NotFoundError: If the agent was deleted meanwhile.
            ValidationError: If the staging graph breaks an invariant.
        """
        agent = self._require(agent_id).model_copy(deep=True)
        graph.validate()

        agent.nodes = [node.model_copy(deep=True) for node in graph.nodes]
        agent.edges = [edge.model_copy() for edge in graph.edges]
        agent.code = dict(graph.agent.code)
        agent.updated_at = max(time.time(), graph.agent.updated_at)

        committed = self._commit(agent)
        logger.debug(
            "agent_graph_committed",
            agent_id=agent_id,
            nodes=len(agent.nodes),
            edges=len(agent.edges),
        )
        return committed

    # -----------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------

    def set_status(self, agent_id: str, status: AgentStatus) -> AgentDefinition:
        """Move an agent between draft, testing and error.

        Raises:
            NotFoundError: If the agent does not exist.
            ValidationError: If ``status`` is deployed; that goes through
                ``deploy`` so the graph is validated first.
        """
        if status is AgentStatus.DEPLOYED:
            raise ValidationError("Use deploy to mark an agent as deployed")
        agent = self._require(agent_id).model_copy(deep=True)
        agent.status = status
        agent.updated_at = time.time()
        logger.info("agent_status_changed", agent_id=agent_id, status=status.value)
        return self._commit(agent)

    def deploy(self, agent_id: str, config: DeploymentConfig | None = None) -> DeployResponse:
        """Mark an agent as deployed with the given deployment configuration.

        Raises:
            NotFoundError: If the agent does not exist.
            ValidationError: If the agent's graph is invalid.
        """
        agent = self._require(agent_id).model_copy(deep=True)
        GraphModel(agent).validate()

        config = config or DeploymentConfig()
        now = time.time()
        agent.deployment_config = config.model_copy(deep=True)
        agent.status = AgentStatus.DEPLOYED
        agent.updated_at = now
        deployed = self._commit(agent)

        deployment_id = f"deploy_{uuid.uuid4().hex[:12]}"
        logger.info(
            "agent_deployed",
            agent_id=agent_id,
            deployment_id=deployment_id,
            environment=config.environment,
        )
        return DeployResponse(
            success=True,
            deployment_id=deployment_id,
            agent=deployed,
            deployed_at=now,
            environment=config.environment,
        )
