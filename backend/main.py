"""FastAPI application entry point for the AI Agent Playground backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agents.classifier import Classifier, KeywordClassifier, LLMClassifier
from agents.erp_agent import create_customer_agent, create_inventory_agent, create_order_agent
from agents.llm import LLMClient
from api.routes import PlaygroundServices, router, set_services
from capabilities.registry import ErpIntegration, create_default_registry
from config import configure_logging, settings
from dispatcher import Dispatcher
from errors import PlaygroundError
from metrics import MetricsCollector
from models.database import AgentRepository
from models.schemas import CapabilityTag
from pipeline import FulfillmentPipeline
from simulator import ExecutionSimulator
from store import AgentStore
from templates import TemplateCatalog

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the agent store, the optional snapshot repository, the ERP
    integration with its capability agents, and the simulator.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        use_mock_llm=settings.use_mock_llm,
        persistence_enabled=settings.persistence_enabled,
    )

    store = AgentStore()

    repository: AgentRepository | None = None
    if settings.persistence_enabled:
        try:
            repository = AgentRepository(settings.database_path)
            await repository.init()
            store.load(await repository.load_agents())
        except Exception as e:
            # Keep the API available even if persistence initialization fails.
            logger.warning("agent_repository_init_failed", error=str(e))
            repository = None

    registry = create_default_registry(timeout=settings.erp_timeout_seconds)
    metrics_collector = MetricsCollector()

    dispatcher: Dispatcher | None = None
    pipeline: FulfillmentPipeline | None = None
    try:
        await registry.initialize(
            "erp",
            {"base_url": settings.erp_api_base_url, "api_key": settings.erp_api_key},
        )
        erp = registry.require("erp", ErpIntegration)
    except PlaygroundError as e:
        logger.warning("erp_integration_unavailable", error=str(e))
    else:
        llm_client = LLMClient(
            default_model=settings.agent_model,
            metrics_collector=metrics_collector,
        )
        classifier: Classifier
        if settings.use_mock_llm:
            classifier = KeywordClassifier()
        else:
            classifier = LLMClassifier(llm_client, model=settings.router_model)

        dispatcher = Dispatcher(
            agents={
                CapabilityTag.INVENTORY: create_inventory_agent(erp, llm_client),
                CapabilityTag.ORDER: create_order_agent(erp, llm_client),
                CapabilityTag.CUSTOMER: create_customer_agent(erp, llm_client),
            },
            classifier=classifier,
        )
        pipeline = FulfillmentPipeline(erp.orders, erp.inventory)

    simulator = ExecutionSimulator(
        store,
        step_delay=settings.simulation_step_delay_seconds,
        timeout=settings.simulation_timeout_seconds,
        history_size=settings.simulation_history_size,
        metrics_collector=metrics_collector,
        repository=repository,
    )

    services = PlaygroundServices(
        store=store,
        simulator=simulator,
        templates=TemplateCatalog(),
        registry=registry,
        dispatcher=dispatcher,
        pipeline=pipeline,
        repository=repository,
    )
    set_services(services)

    # Store on app.state for access
    app.state.services = services

    logger.info("resources_initialized", agents=len(store), erp_ready=dispatcher is not None)
    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")

    await simulator.cleanup_all()
    await registry.aclose()
    set_services(None)

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="AI Agent Playground",
    description="Backend API for designing workflow agents, dry-running them against "
    "mock data, and serving ERP requests through capability agents.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["playground"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that points to the API documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "AI Agent Playground API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
