"""Dry-run execution of agent definitions.

The ExecutionSimulator runs an agent's graph against a mock data set and
records the trace as a SimulationRun. Each run moves through

    idle -> running -> success | error

and is owned by exactly one background task once it has been scheduled, so
log writes of different runs never interleave. At most one run per agent may
be active; starting another raises ConcurrencyError.

Log timestamps come from a clamped clock and strictly increase within a run.
Metrics are attached only when the run reaches a terminal state.
"""

import asyncio
import contextlib
import json
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any

import structlog

from agents.llm import count_tokens_estimate
from errors import ConcurrencyError, NotFoundError
from metrics import MetricsCollector, RunMetricsData
from models.schemas import (
    AgentDefinition,
    LogEntry,
    LogLevel,
    MockDataSet,
    Node,
    NodeType,
    SimulationRun,
    SimulationStatus,
)
from store import AgentStore
from workflow.graph import GraphModel

if TYPE_CHECKING:
    from models.database import AgentRepository

logger = structlog.get_logger(__name__)

# Node kinds that would call a model or an external system when run for real.
TOKEN_CONSUMING_TYPES = frozenset({NodeType.MODEL.value, NodeType.ACTION.value})
KNOWN_NODE_TYPES = frozenset(t.value for t in NodeType)

_CLOCK_STEP = 1e-6


def _invoice(n: int) -> dict[str, Any]:
    quantity = n % 7 + 1
    unit_price = 50 + (n * 37) % 400
    return {
        "invoiceNumber": f"INV-2023-{n:04d}",
        "customerId": f"CUST-{n % 12 + 1:03d}",
        "quantity": quantity,
        "unitPrice": unit_price,
        "total": quantity * unit_price,
    }


MOCK_DATA_SETS: dict[str, MockDataSet] = {
    ds.id: ds
    for ds in (
        MockDataSet(
            id="invoices-small",
            name="Invoices (Small)",
            description="A small dataset of 10 invoices for testing",
            records=[_invoice(n) for n in range(1, 11)],
        ),
        MockDataSet(
            id="invoices-large",
            name="Invoices (Large)",
            description="A large dataset of 100 invoices for performance testing",
            records=[_invoice(n) for n in range(1, 101)],
        ),
        MockDataSet(
            id="inventory",
            name="Inventory Data",
            description="Inventory records with stock levels and product details",
            records=[
                {"productId": "P1001", "name": "Widget", "quantity": 42, "locationId": "WH-1"},
                {"productId": "P1002", "name": "Gadget", "quantity": 18, "locationId": "WH-1"},
                {"productId": "P1003", "name": "Gizmo", "quantity": 0, "locationId": "WH-2"},
            ],
        ),
        MockDataSet(
            id="customers",
            name="Customer Records",
            description="Customer information and purchase history",
            records=[
                {"id": "CUST-001", "name": "Acme Corporation", "type": "Enterprise"},
                {"id": "CUST-002", "name": "Globex", "type": "SMB"},
            ],
        ),
        MockDataSet(
            id="invoice-1",
            name="Sample Invoice",
            records=[
                {
                    "invoiceNumber": "INV-2023-0042",
                    "date": "2023-05-15",
                    "dueDate": "2023-06-15",
                    "customer": {"id": "CUST-001", "name": "Acme Corporation"},
                    "items": [
                        {"id": "ITEM-001", "description": "Web Development Services",
                         "quantity": 40, "unitPrice": 150, "total": 6000},
                        {"id": "ITEM-002", "description": "Server Maintenance",
                         "quantity": 10, "unitPrice": 85, "total": 850},
                    ],
                    "subtotal": 6850,
                    "tax": 685,
                    "total": 7535,
                }
            ],
        ),
        MockDataSet(
            id="order-1",
            name="Sample Order",
            records=[
                {
                    "orderNumber": "ORD-2023-1234",
                    "date": "2023-05-10",
                    "customer": {"id": "CUST-001", "name": "Acme Corporation"},
                    "items": [
                        {"id": "PROD-001", "name": "Enterprise Software License",
                         "quantity": 5, "unitPrice": 1200, "total": 6000},
                        {"id": "PROD-002", "name": "Support Package - Premium",
                         "quantity": 1, "unitPrice": 2500, "total": 2500},
                    ],
                    "shipping": {"method": "Express", "cost": 150},
                    "subtotal": 8500,
                    "tax": 850,
                    "total": 9500,
                }
            ],
        ),
        MockDataSet(
            id="customer-1",
            name="Sample Customer",
            records=[
                {
                    "id": "CUST-001",
                    "name": "Acme Corporation",
                    "type": "Enterprise",
                    "industry": "Technology",
                    "contacts": [{"name": "John Doe", "title": "CTO",
                                  "email": "john.doe@acme.com"}],
                }
            ],
        ),
        MockDataSet(id="custom-1", name="Custom Data", description="Empty data set"),
    )
}


def generate_run_id() -> str:
    return f"run_{uuid.uuid4().hex[:12]}"


class ExecutionSimulator:
    """Schedules and tracks simulation runs.

    Thread Safety:
        The run registry is guarded by an asyncio.Lock. After ``run()``
        returns, only the run's background task writes to the record.

    Attributes:
        store: Source of agent definitions.
        step_delay: Simulated processing time per step, in seconds.
        timeout: Upper bound for one run, in seconds.
        history_size: Finished runs kept in memory after they have been
            saved; older ones are evicted and served from the repository.
    """

    def __init__(
        self,
        store: AgentStore,
        step_delay: float = 0.5,
        timeout: float = 300.0,
        history_size: int = 100,
        metrics_collector: MetricsCollector | None = None,
        repository: "AgentRepository | None" = None,
    ) -> None:
        self.store = store
        self.step_delay = step_delay
        self.timeout = timeout
        self.history_size = history_size
        self.metrics_collector = metrics_collector or MetricsCollector()
        self.repository = repository
        self._runs: dict[str, SimulationRun] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._active: dict[str, str] = {}
        self._persisted: deque[str] = deque()
        self._lock = asyncio.Lock()
        logger.info("execution_simulator_initialized", step_delay=step_delay, timeout=timeout)

    # -----------------------------------------------------------------
    # Log helpers (single writer per run)
    # -----------------------------------------------------------------

    @staticmethod
    def _stamp(run: SimulationRun) -> float:
        last = run.logs[-1].timestamp if run.logs else run.start_time
        return max(time.time(), last + _CLOCK_STEP)

    def _log(
        self,
        run: SimulationRun,
        level: LogLevel,
        message: str,
        node_id: str | None = None,
    ) -> None:
        run.logs.append(
            LogEntry(timestamp=self._stamp(run), level=level, message=message, node_id=node_id)
        )

    def _finish(
        self,
        run: SimulationRun,
        status: SimulationStatus,
        error_message: str | None = None,
    ) -> None:
        run.end_time = max(time.time(), run.logs[-1].timestamp if run.logs else run.start_time)
        data = self.metrics_collector.finish(run.id) or RunMetricsData()
        run.metrics = data.to_simulation_metrics(
            execution_time_ms=int((run.end_time - run.start_time) * 1000)
        )
        run.error_message = error_message
        run.status = status

    def _release(self, run: SimulationRun) -> None:
        if self._active.get(run.agent_id) == run.id:
            del self._active[run.agent_id]

    # -----------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------

    async def run(self, agent_id: str, mock_data_id: str) -> SimulationRun:
        """Start a simulation and return its live record.

        Raises:
            NotFoundError: If the agent does not exist.
            ConcurrencyError: If the agent already has a running simulation.
        """
        async with self._lock:
            agent = self.store.get_by_id(agent_id)
            if agent is None:
                raise NotFoundError(f"Agent '{agent_id}' not found")

            active_id = self._active.get(agent_id)
            if active_id is not None:
                raise ConcurrencyError(
                    f"Agent '{agent_id}' already has a running simulation ({active_id})"
                )

            run = SimulationRun(
                id=generate_run_id(),
                agent_id=agent_id,
                mock_data_id=mock_data_id,
                status=SimulationStatus.IDLE,
                start_time=time.time(),
            )
            self._runs[run.id] = run
            self._active[agent_id] = run.id
            self.metrics_collector.start(run.id)

            run.status = SimulationStatus.RUNNING
            self._log(run, LogLevel.INFO, "Starting simulation...")

            task = asyncio.create_task(self._execute(run, agent), name=f"simulation_{run.id}")
            self._tasks[run.id] = task

            def _remove_task(t: asyncio.Task[None], rid: str = run.id) -> None:
                self._tasks.pop(rid, None)

            task.add_done_callback(_remove_task)

        logger.info("simulation_started", run_id=run.id, agent_id=agent_id, mock_data_id=mock_data_id)
        return run

    def get_run(self, run_id: str) -> SimulationRun:
        """Live record of a run.

        Raises:
            NotFoundError: If the run is unknown.
        """
        run = self._runs.get(run_id)
        if run is None:
            raise NotFoundError(f"Simulation run '{run_id}' not found")
        return run

    async def fetch_run(self, run_id: str) -> SimulationRun:
        """Live record of a run, or its saved snapshot once evicted.

        Raises:
            NotFoundError: If the run is neither in memory nor saved.
        """
        run = self._runs.get(run_id)
        if run is None and self.repository is not None:
            run = await self.repository.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Simulation run '{run_id}' not found")
        return run

    def list_runs(self, agent_id: str | None = None) -> list[SimulationRun]:
        """Runs, newest first, optionally for one agent."""
        runs = [r for r in self._runs.values() if agent_id is None or r.agent_id == agent_id]
        return sorted(runs, key=lambda r: r.start_time, reverse=True)

    def active_run(self, agent_id: str) -> SimulationRun | None:
        run_id = self._active.get(agent_id)
        return self._runs.get(run_id) if run_id else None

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def wait(self, run_id: str, timeout: float | None = None) -> SimulationRun:
        """Wait until a run leaves the running state (or ``timeout`` elapses)."""
        run = await self.fetch_run(run_id)
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return run

    async def cancel(self, run_id: str) -> SimulationRun:
        """Cancel a running simulation. No-op for finished runs.

        Raises:
            NotFoundError: If the run is unknown.
        """
        if run_id not in self._runs:
            return await self.fetch_run(run_id)
        run = self._runs[run_id]

        # Take the task under the lock, cancel outside it: the task's
        # CancelledError handler touches the registry too.
        task: asyncio.Task[None] | None = None
        async with self._lock:
            task = self._tasks.pop(run_id, None)

        if task is not None and not task.done():
            if run.status is SimulationStatus.RUNNING:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            else:
                # Already finished, still saving its snapshot.
                await task

        # A task cancelled before it ever ran has no chance to finalize.
        if run.status is SimulationStatus.RUNNING:
            self._log(run, LogLevel.ERROR, "Simulation cancelled")
            self._finish(run, SimulationStatus.ERROR, "Simulation cancelled")
            async with self._lock:
                self._release(run)
            await self._persist(run)

        logger.info("simulation_cancelled", run_id=run_id, status=run.status.value)
        return run

    async def cleanup_all(self) -> None:
        """Cancel every running simulation. Called on shutdown."""
        async with self._lock:
            run_ids = list(self._tasks)

        logger.info("simulation_cleanup_start", running=len(run_ids))
        for run_id in run_ids:
            await self.cancel(run_id)
        logger.info("simulation_cleanup_complete")

    # -----------------------------------------------------------------
    # Background execution
    # -----------------------------------------------------------------

    async def _execute(self, run: SimulationRun, agent: AgentDefinition) -> None:
        log = logger.bind(run_id=run.id, agent_id=agent.id)
        try:
            await asyncio.wait_for(self._simulate(run, agent), timeout=self.timeout)

        except asyncio.CancelledError:
            log.info("simulation_cancelled_in_task")
            self._log(run, LogLevel.ERROR, "Simulation cancelled")
            self._finish(run, SimulationStatus.ERROR, "Simulation cancelled")
            self._release(run)
            await asyncio.shield(self._persist(run))
            raise

        except TimeoutError:
            message = f"Simulation timed out after {self.timeout}s"
            log.error("simulation_timeout", timeout_seconds=self.timeout)
            self._log(run, LogLevel.ERROR, message)
            self._finish(run, SimulationStatus.ERROR, message)

        except Exception as e:
            log.error("simulation_failed", error_type=type(e).__name__, error=str(e))
            self._log(run, LogLevel.ERROR, f"Simulation failed: {e}")
            self._finish(run, SimulationStatus.ERROR, str(e))

        else:
            self._log(run, LogLevel.SUCCESS, "Simulation completed successfully")
            self._finish(run, SimulationStatus.SUCCESS)
            log.info(
                "simulation_completed",
                execution_time_ms=run.metrics.execution_time_ms if run.metrics else 0,
            )

        async with self._lock:
            self._release(run)
        await asyncio.shield(self._persist(run))

    async def _simulate(self, run: SimulationRun, agent: AgentDefinition) -> None:
        dataset = MOCK_DATA_SETS.get(run.mock_data_id)
        records: list[dict[str, Any]] = dataset.records if dataset else []

        await asyncio.sleep(self.step_delay)
        self._log(run, LogLevel.INFO, "Processing data...")
        if dataset is None:
            self._log(
                run,
                LogLevel.WARNING,
                f"Unknown mock data set '{run.mock_data_id}', using empty input",
            )

        graph = GraphModel(agent)
        graph.validate()

        nodes = graph.topological_order()
        if not nodes:
            self._log(run, LogLevel.WARNING, "Agent has no nodes to simulate")
            return

        mock_input = json.dumps(records)
        for node in nodes:
            await asyncio.sleep(self.step_delay)
            self._simulate_node(run, agent, node, mock_input)

    def _simulate_node(
        self,
        run: SimulationRun,
        agent: AgentDefinition,
        node: Node,
        mock_input: str,
    ) -> None:
        if node.type not in KNOWN_NODE_TYPES:
            self._log(
                run,
                LogLevel.WARNING,
                f"Skipped node '{node.label}': unknown type '{node.type}'",
                node_id=node.id,
            )
            self.metrics_collector.record_node(run.id, succeeded=False)
            return

        if node.type in TOKEN_CONSUMING_TYPES:
            payload = json.dumps(node.data)
            prompt_tokens = count_tokens_estimate(payload + agent.code.get(node.id, "") + mock_input)
            self.metrics_collector.record_llm_call(
                run.id,
                prompt_tokens=prompt_tokens,
                completion_tokens=count_tokens_estimate(payload),
            )

        self._log(run, LogLevel.INFO, f"Executed {node.type} node '{node.label}'", node_id=node.id)
        self.metrics_collector.record_node(run.id, succeeded=True)

    async def _persist(self, run: SimulationRun) -> None:
        if self.repository is None:
            return
        if not await self.repository.save_run(run):
            return

        # Evict only runs that are on disk.
        if run.id not in self._persisted:
            self._persisted.append(run.id)
        while len(self._persisted) > self.history_size:
            evicted = self._persisted.popleft()
            self._runs.pop(evicted, None)
            logger.debug("simulation_run_evicted", run_id=evicted)
