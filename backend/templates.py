"""Built-in agent templates.

A template is a ready-made graph that new agents can start from. The
catalogue is read-only; instantiating a template creates a draft agent in
the AgentStore with a copy of the template's graph, code and model config.
"""

from typing import Any

import structlog

from errors import NotFoundError
from models.schemas import (
    AgentDefinition,
    Edge,
    InstantiateTemplateRequest,
    IntegrationBinding,
    ModelConfig,
    Node,
    Position,
    Template,
    TemplateCategory,
)
from store import AgentStore

logger = structlog.get_logger(__name__)


def _node(node_id: str, node_type: str, y: float, label: str, description: str) -> Node:
    return Node(
        id=node_id,
        type=node_type,
        position=Position(x=100, y=y),
        data={"label": label, "description": description},
    )


def _chain(*node_ids: str) -> list[Edge]:
    return [
        Edge(id=f"e{source}-{target}", source=source, target=target)
        for source, target in zip(node_ids, node_ids[1:])
    ]


BUILTIN_TEMPLATES: tuple[Template, ...] = (
    Template(
        id="invoice-processing",
        name="Invoice Processing Agent",
        description="Automate invoice processing with AI",
        category=TemplateCategory.INVOICE_PROCESSING,
        tags=["invoice", "finance", "automation"],
        popularity=4.8,
        nodes=[
            _node("1", "trigger", 100, "New Invoice", "Triggers when a new invoice is received"),
            _node("2", "action", 250, "Extract Data", "Extracts data from invoice"),
            _node("3", "condition", 400, "Validate Invoice", "Checks if invoice is valid"),
        ],
        edges=_chain("1", "2", "3"),
        code={"2": '// Invoice processing logic\nconsole.log("Processing invoice...");'},
        default_model_config=ModelConfig(provider="openai", model_name="gpt-4"),
    ),
    Template(
        id="customer-support",
        name="Customer Support Agent",
        description="AI-powered customer support automation",
        category=TemplateCategory.CUSTOMER_SUPPORT,
        tags=["support", "customer", "chat"],
        popularity=4.6,
        nodes=[
            _node("1", "trigger", 100, "Customer Message", "Triggers when a customer sends a message"),
            _node("2", "action", 250, "Analyze Intent", "Analyzes customer intent"),
            _node("3", "action", 400, "Generate Response", "Generates a response to the customer"),
        ],
        edges=_chain("1", "2", "3"),
        code={"2": '// Customer support logic\nconsole.log("Analyzing customer message...");'},
        default_model_config=ModelConfig(provider="openai", model_name="gpt-3.5-turbo"),
        required_integrations=["slack"],
    ),
    Template(
        id="inventory-management",
        name="Inventory Management Agent",
        description="Watch stock levels and reorder before items run out",
        category=TemplateCategory.INVENTORY_MANAGEMENT,
        tags=["inventory", "erp", "reorder"],
        popularity=4.5,
        nodes=[
            _node("1", "trigger", 100, "Daily Stock Check", "Runs once a day"),
            _node("2", "data", 250, "Query Inventory", "Loads stock levels from the ERP"),
            _node("3", "condition", 400, "Below Reorder Point", "Checks each product's threshold"),
            _node("4", "model", 550, "Draft Purchase Order", "Drafts reorder quantities"),
            _node("5", "action", 700, "Create Purchase Order", "Submits the order to the ERP"),
        ],
        edges=_chain("1", "2", "3", "4", "5"),
        required_integrations=["erp"],
    ),
)


class TemplateCatalog:
    """Read-only catalogue of agent templates."""

    def __init__(self, templates: tuple[Template, ...] = BUILTIN_TEMPLATES) -> None:
        self._templates = {template.id: template for template in templates}

    def list(self, category: TemplateCategory | None = None) -> list[Template]:
        """Templates, most popular first."""
        templates = [
            t for t in self._templates.values() if category is None or t.category == category
        ]
        return sorted(templates, key=lambda t: t.popularity, reverse=True)

    def get(self, template_id: str) -> Template:
        """Look up a template.

        Raises:
            NotFoundError: If the template does not exist.
        """
        template = self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template '{template_id}' not found")
        return template

    def instantiate(
        self,
        store: AgentStore,
        template_id: str,
        overrides: InstantiateTemplateRequest | None = None,
    ) -> AgentDefinition:
        """Create a draft agent from a template."""
        template = self.get(template_id)
        overrides = overrides or InstantiateTemplateRequest()

        partial: dict[str, Any] = {
            "name": overrides.name or template.name,
            "description": overrides.description or template.description,
            "nodes": [node.model_dump() for node in template.nodes],
            "edges": [edge.model_dump() for edge in template.edges],
            "code": dict(template.code),
            "llm_config": template.default_model_config.model_dump(),
            "integrations": [
                IntegrationBinding(id=integration_id).model_dump()
                for integration_id in template.required_integrations
            ],
        }
        if overrides.owner_id:
            partial["owner_id"] = overrides.owner_id

        agent = store.create(partial)
        logger.info("template_instantiated", template_id=template_id, agent_id=agent.id)
        return agent
