"""Structural editing of an agent's step graph.

GraphModel wraps one AgentDefinition (normally a staging copy handed out by
the AgentStore) and applies node/edge mutations while keeping the graph
invariants intact:

- node ids are unique;
- every edge endpoint references an existing node;
- no self loops;
- at most one edge per ordered (source, target) pair;
- edge ids are unique.

Every successful mutation stamps the definition's ``updated_at``. A failed
mutation leaves the graph unchanged. All operations are synchronous.

Usage:
    >>> graph = GraphModel(agent)
    >>> graph.add_node(Node(id="n1", type="trigger"))
    >>> graph.add_node(Node(id="n2", type="action"))
    >>> graph.add_edge(Edge(id="e1", source="n1", target="n2"))
    >>> [n.id for n in graph.topological_order()]
    ['n1', 'n2']
"""

import time
from collections import deque

import structlog

from errors import NotFoundError, ValidationError
from models.schemas import AgentDefinition, Edge, Node, Position

logger = structlog.get_logger(__name__)


def find_problems(nodes: list[Node], edges: list[Edge]) -> list[str]:
    """Check a node/edge list against every graph invariant.

    Args:
        nodes: Nodes of the graph.
        edges: Edges of the graph.

    Returns:
        Human readable descriptions of every violation, empty if the graph
        is consistent.
    """
    problems: list[str] = []

    node_ids: set[str] = set()
    for node in nodes:
        if node.id in node_ids:
            problems.append(f"Duplicate node id '{node.id}'")
        node_ids.add(node.id)

    edge_ids: set[str] = set()
    pairs: set[tuple[str, str]] = set()
    for edge in edges:
        if edge.id in edge_ids:
            problems.append(f"Duplicate edge id '{edge.id}'")
        edge_ids.add(edge.id)

        if edge.source not in node_ids:
            problems.append(f"Edge '{edge.id}' references unknown source '{edge.source}'")
        if edge.target not in node_ids:
            problems.append(f"Edge '{edge.id}' references unknown target '{edge.target}'")
        if edge.source == edge.target:
            problems.append(f"Edge '{edge.id}' is a self loop on '{edge.source}'")

        pair = (edge.source, edge.target)
        if pair in pairs:
            problems.append(f"Duplicate edge from '{edge.source}' to '{edge.target}'")
        pairs.add(pair)

    return problems


class GraphModel:
    """Invariant-preserving editor over one agent definition.

    Attributes:
        agent: The definition being edited. Mutated in place.
    """

    def __init__(self, agent: AgentDefinition) -> None:
        self.agent = agent

    @property
    def nodes(self) -> list[Node]:
        return self.agent.nodes

    @property
    def edges(self) -> list[Edge]:
        return self.agent.edges

    def _touch(self) -> None:
        self.agent.updated_at = time.time()

    def get_node(self, node_id: str) -> Node:
        """Look up a node by id.

        Raises:
            NotFoundError: If no node has this id.
        """
        for node in self.agent.nodes:
            if node.id == node_id:
                return node
        raise NotFoundError(f"Node '{node_id}' not found in agent '{self.agent.id}'")

    def has_node(self, node_id: str) -> bool:
        return any(node.id == node_id for node in self.agent.nodes)

    def find_edge(self, source: str, target: str) -> Edge | None:
        for edge in self.agent.edges:
            if edge.source == source and edge.target == target:
                return edge
        return None

    # -----------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------

    def add_node(self, node: Node) -> Node:
        """Append a node to the graph.

        Args:
            node: The node to add.

        Returns:
            The added node.

        Raises:
            ValidationError: If a node with the same id already exists.
        """
        if self.has_node(node.id):
            raise ValidationError(f"Node id '{node.id}' already exists")

        self.agent.nodes.append(node)
        self._touch()
        logger.debug("graph_node_added", agent_id=self.agent.id, node_id=node.id, node_type=node.type)
        return node

    def remove_node(self, node_id: str) -> list[Edge]:
        """Remove a node and every edge touching it.

        Code attached to the node is kept; the store decides what to do with
        orphaned code entries.

        Args:
            node_id: The node to remove.

        Returns:
            The edges that were removed along with the node.

        Raises:
            NotFoundError: If the node does not exist.
        """
        node = self.get_node(node_id)

        removed = [e for e in self.agent.edges if node_id in (e.source, e.target)]
        self.agent.edges = [e for e in self.agent.edges if node_id not in (e.source, e.target)]
        self.agent.nodes = [n for n in self.agent.nodes if n is not node]
        self._touch()

        logger.debug(
            "graph_node_removed",
            agent_id=self.agent.id,
            node_id=node_id,
            edges_removed=len(removed),
        )
        return removed

    def add_edge(self, edge: Edge) -> Edge:
        """Connect two existing nodes.

        Adding an edge for a (source, target) pair that is already connected
        is a no-op that returns the existing edge.

        Args:
            edge: The edge to add.

        Returns:
            The stored edge (either ``edge`` or the pre-existing one).

        Raises:
            ValidationError: If an endpoint is missing, the edge is a self
                loop, or the edge id is already used by a different pair.
        """
        missing = [
            endpoint for endpoint in (edge.source, edge.target) if not self.has_node(endpoint)
        ]
        if missing:
            raise ValidationError(
                f"Edge '{edge.id}' references unknown node(s): {', '.join(sorted(set(missing)))}"
            )
        if edge.source == edge.target:
            raise ValidationError(f"Self loop on node '{edge.source}' is not allowed")

        existing = self.find_edge(edge.source, edge.target)
        if existing is not None:
            return existing

        if any(e.id == edge.id for e in self.agent.edges):
            raise ValidationError(f"Edge id '{edge.id}' already exists")

        self.agent.edges.append(edge)
        self._touch()
        logger.debug(
            "graph_edge_added",
            agent_id=self.agent.id,
            edge_id=edge.id,
            source=edge.source,
            target=edge.target,
        )
        return edge

    def remove_edge(self, edge_id: str) -> Edge:
        """Remove an edge by id.

        Raises:
            NotFoundError: If the edge does not exist.
        """
        for edge in self.agent.edges:
            if edge.id == edge_id:
                self.agent.edges = [e for e in self.agent.edges if e is not edge]
                self._touch()
                logger.debug("graph_edge_removed", agent_id=self.agent.id, edge_id=edge_id)
                return edge
        raise NotFoundError(f"Edge '{edge_id}' not found in agent '{self.agent.id}'")

    def move_node(self, node_id: str, position: Position) -> Node:
        """Change a node's canvas position. Has no effect on the structure."""
        node = self.get_node(node_id)
        node.position = position.model_copy()
        self._touch()
        return node

    # -----------------------------------------------------------------
    # Checks
    # -----------------------------------------------------------------

    def validate(self) -> None:
        """Re-check every invariant, e.g. after a bulk import.

        Raises:
            ValidationError: Listing all problems found, if any.
        """
        problems = find_problems(self.agent.nodes, self.agent.edges)
        if problems:
            logger.info(
                "graph_validation_failed",
                agent_id=self.agent.id,
                problem_count=len(problems),
            )
            raise ValidationError("Invalid graph: " + "; ".join(problems))

    def topological_order(self) -> list[Node]:
        """Order nodes so that every edge points forward.

        Uses Kahn's algorithm, breaking ties by insertion order. Nodes that
        sit on a cycle cannot be ordered; they are appended at the end in
        insertion order.

        Returns:
            Every node of the graph exactly once.
        """
        index = {node.id: i for i, node in enumerate(self.agent.nodes)}
        indegree = {node.id: 0 for node in self.agent.nodes}
        successors: dict[str, list[str]] = {node.id: [] for node in self.agent.nodes}

        for edge in self.agent.edges:
            if edge.source in index and edge.target in index:
                successors[edge.source].append(edge.target)
                indegree[edge.target] += 1

        queue = deque(node.id for node in self.agent.nodes if indegree[node.id] == 0)
        ordered: list[str] = []
        while queue:
            node_id = queue.popleft()
            ordered.append(node_id)
            ready = []
            for target in successors[node_id]:
                indegree[target] -= 1
                if indegree[target] == 0:
                    ready.append(target)
            queue.extend(sorted(ready, key=index.__getitem__))

        seen = set(ordered)
        ordered.extend(node.id for node in self.agent.nodes if node.id not in seen)

        by_id = {node.id: node for node in self.agent.nodes}
        return [by_id[node_id] for node_id in ordered]
