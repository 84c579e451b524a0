"""Tests for store.py -- the in-memory owner of agent definitions."""

import pytest

from errors import NotFoundError, ValidationError
from models.schemas import (
    AgentDefinition,
    AgentStatus,
    DeploymentConfig,
    Edge,
    ModelConfigUpdate,
    Node,
)
from store import AgentStore
from tests.conftest import sample_graph

# =========================================================================
# CRUD
# =========================================================================


class TestCreate:
    def test_defaults(self, store: AgentStore) -> None:
        agent = store.create()

        assert agent.id.startswith("agent_")
        assert agent.name == "New Agent"
        assert agent.owner_id == "current-user"
        assert agent.status == AgentStatus.DRAFT
        assert agent.created_at == agent.updated_at
        assert agent.id in store

    def test_status_and_id_cannot_be_chosen(self, store: AgentStore) -> None:
        agent = store.create({"id": "mine", "status": "deployed", "name": "Bot"})

        assert agent.id != "mine"
        assert agent.status == AgentStatus.DRAFT
        assert agent.name == "Bot"

    def test_with_graph(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        assert [n.id for n in agent.nodes] == ["1", "2", "3"]
        assert len(agent.edges) == 2

    def test_invalid_graph_is_rejected(self, store: AgentStore) -> None:
        partial = sample_graph()
        partial["edges"].append({"id": "bad", "source": "1", "target": "ghost"})

        with pytest.raises(ValidationError, match="Invalid graph"):
            store.create(partial)
        assert len(store) == 0

    def test_malformed_fields_are_rejected(self, store: AgentStore) -> None:
        with pytest.raises(ValidationError, match="Invalid agent definition"):
            store.create({"nodes": [{"id": "", "type": "action"}]})


class TestUpdate:
    def test_partial_update(self, store: AgentStore) -> None:
        agent = store.create({"name": "Before"})

        updated = store.update(agent.id, {"name": "After", "description": "desc"})

        assert updated.name == "After"
        assert updated.description == "desc"
        assert updated.updated_at >= agent.updated_at
        assert updated.created_at == agent.created_at

    def test_protected_fields_are_ignored(self, store: AgentStore) -> None:
        agent = store.create()

        updated = store.update(
            agent.id, {"id": "other", "status": "deployed", "created_at": 1.0}
        )

        assert updated.id == agent.id
        assert updated.status == AgentStatus.DRAFT
        assert updated.created_at == agent.created_at

    def test_unknown_agent(self, store: AgentStore) -> None:
        with pytest.raises(NotFoundError):
            store.update("agent_missing", {"name": "x"})

    def test_invalid_graph_leaves_agent_unchanged(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())

        with pytest.raises(ValidationError):
            store.update(agent.id, {"edges": [{"id": "x", "source": "1", "target": "1"}]})

        assert len(store.get_by_id(agent.id).edges) == 2


class TestReadDelete:
    def test_get_by_id_returns_copy(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())

        copy = store.get_by_id(agent.id)
        copy.nodes.clear()

        assert len(store.get_by_id(agent.id).nodes) == 3

    def test_get_missing(self, store: AgentStore) -> None:
        assert store.get_by_id("agent_missing") is None

    def test_get_all_newest_first(self, store: AgentStore) -> None:
        first = store.create({"name": "first"})
        second = store.create({"name": "second"})
        store.update(first.id, {"description": "touched"})

        names = [a.name for a in store.get_all()]

        assert names[0] == "first"
        assert set(names) == {"first", "second"}
        assert second.id in store

    def test_delete(self, store: AgentStore) -> None:
        agent = store.create()
        store.set_current(agent.id)

        assert store.delete(agent.id) is True
        assert store.delete(agent.id) is False
        assert store.current is None

    def test_load_skips_invalid(self, store: AgentStore) -> None:
        good = AgentDefinition(id="agent_good", nodes=[Node(id="a", type="trigger")])
        bad = AgentDefinition(
            id="agent_bad",
            nodes=[Node(id="a", type="trigger")],
            edges=[Edge(id="e", source="a", target="b")],
        )

        assert store.load([good, bad]) == 1
        assert "agent_good" in store
        assert "agent_bad" not in store


# =========================================================================
# Field mutators
# =========================================================================


class TestMutators:
    def test_require_current_agent(self, store: AgentStore) -> None:
        with pytest.raises(NotFoundError, match="No current agent"):
            store.update_code("1", "x = 1")

    def test_mutators_use_current_agent(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        store.set_current(agent.id)

        updated = store.update_code("2", "extract()")

        assert updated.code == {"2": "extract()"}
        assert store.current.code == {"2": "extract()"}

    def test_update_code_unknown_node(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        with pytest.raises(NotFoundError):
            store.update_code("99", "x", agent_id=agent.id)

    def test_update_code_last_write_wins(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        store.update_code("2", "first", agent_id=agent.id)
        updated = store.update_code("2", "second", agent_id=agent.id)
        assert updated.code["2"] == "second"

    def test_update_nodes_prunes_dangling_edges(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        nodes = [n for n in agent.nodes if n.id != "2"]

        updated = store.update_nodes(nodes, agent_id=agent.id)

        assert [n.id for n in updated.nodes] == ["1", "3"]
        assert updated.edges == []

    def test_update_edges_dedupes_pairs(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        edges = [
            Edge(id="a", source="1", target="3"),
            Edge(id="b", source="1", target="3"),
        ]

        updated = store.update_edges(edges, agent_id=agent.id)

        assert [e.id for e in updated.edges] == ["a"]

    def test_update_edges_rejects_dangling(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        with pytest.raises(ValidationError):
            store.update_edges([Edge(id="x", source="1", target="9")], agent_id=agent.id)
        assert len(store.get_by_id(agent.id).edges) == 2

    def test_update_model_config_merges(self, store: AgentStore) -> None:
        agent = store.create()

        updated = store.update_model_config(
            ModelConfigUpdate(model_name="gpt-4"), agent_id=agent.id
        )

        assert updated.llm_config.model_name == "gpt-4"
        assert updated.llm_config.provider == agent.llm_config.provider
        assert updated.llm_config.max_tokens == agent.llm_config.max_tokens

    def test_update_model_config_from_dict(self, store: AgentStore) -> None:
        agent = store.create()
        updated = store.update_model_config({"temperature": 0.2}, agent_id=agent.id)
        assert updated.llm_config.temperature == 0.2

    def test_update_model_config_invalid(self, store: AgentStore) -> None:
        agent = store.create()
        with pytest.raises(ValidationError, match="Invalid model config"):
            store.update_model_config({"temperature": 5.0}, agent_id=agent.id)


# =========================================================================
# Graph editing sessions & lifecycle
# =========================================================================


class TestGraphSessions:
    def test_staging_is_invisible_until_commit(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())

        graph = store.edit_graph(agent.id)
        graph.add_node(Node(id="4", type="output"))
        assert len(store.get_by_id(agent.id).nodes) == 3

        committed = store.commit_graph(agent.id, graph)

        assert [n.id for n in committed.nodes] == ["1", "2", "3", "4"]

    def test_commit_rejects_invalid_staging(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())
        graph = store.edit_graph(agent.id)
        graph.agent.edges.append(Edge(id="loop", source="1", target="1"))

        with pytest.raises(ValidationError):
            store.commit_graph(agent.id, graph)
        assert len(store.get_by_id(agent.id).edges) == 2

    def test_commit_after_delete(self, store: AgentStore) -> None:
        agent = store.create()
        graph = store.edit_graph(agent.id)
        store.delete(agent.id)

        with pytest.raises(NotFoundError):
            store.commit_graph(agent.id, graph)


class TestLifecycle:
    def test_set_status(self, store: AgentStore) -> None:
        agent = store.create()
        updated = store.set_status(agent.id, AgentStatus.TESTING)
        assert updated.status == AgentStatus.TESTING

    def test_set_status_cannot_deploy(self, store: AgentStore) -> None:
        agent = store.create()

        with pytest.raises(ValidationError, match="deploy"):
            store.set_status(agent.id, AgentStatus.DEPLOYED)

        assert store.get_by_id(agent.id).status == AgentStatus.DRAFT

    def test_deploy(self, store: AgentStore) -> None:
        agent = store.create(sample_graph())

        deployment = store.deploy(agent.id, DeploymentConfig(environment="staging"))

        assert deployment.success is True
        assert deployment.deployment_id.startswith("deploy_")
        assert deployment.environment == "staging"
        assert deployment.agent.status == AgentStatus.DEPLOYED
        assert store.get_by_id(agent.id).deployment_config.environment == "staging"

    def test_deploy_unknown_agent(self, store: AgentStore) -> None:
        with pytest.raises(NotFoundError):
            store.deploy("agent_missing")
