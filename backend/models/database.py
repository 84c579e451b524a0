"""SQLite-based snapshot persistence using aiosqlite.

This module provides the AgentRepository class for persisting agent
definitions and finished simulation runs to a SQLite database. All
operations are async and designed to fail gracefully: a database error
should never break an edit or a running simulation.

Tables:
    agents: One JSON snapshot per agent definition.
    simulation_runs: One JSON snapshot per finished simulation run.

Usage:
    >>> from models.database import AgentRepository
    >>> repository = AgentRepository("./data/playground.db")
    >>> await repository.init()
    >>> await repository.save_agent(agent)
    >>> agents = await repository.load_agents()
"""

from pathlib import Path

import aiosqlite
import pydantic
import structlog

from models.schemas import AgentDefinition, SimulationRun

logger = structlog.get_logger(__name__)


class AgentRepository:
    """Async SQLite store for agent and run snapshots.

    Rows hold the pydantic JSON dump of each record plus the columns needed
    for lookups and ordering. All public methods except ``init`` catch
    exceptions internally and log them rather than propagating them.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the repository.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Parent directories are created automatically on init().
        """
        self.db_path = db_path

    async def init(self) -> None:
        """Create database tables if they do not exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS agents (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        status TEXT NOT NULL,
                        data TEXT NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS simulation_runs (
                        id TEXT PRIMARY KEY,
                        agent_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        data TEXT NOT NULL,
                        start_time REAL NOT NULL,
                        updated_at REAL NOT NULL
                    )
                """)
                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_runs_agent_start
                    ON simulation_runs(agent_id, start_time DESC)
                """)
                await db.commit()
            logger.info("agent_repository_initialized", db_path=self.db_path)
        except Exception as e:
            logger.error(
                "agent_repository_init_failed",
                db_path=self.db_path,
                error=str(e),
            )
            raise

    # -----------------------------------------------------------------
    # Agents
    # -----------------------------------------------------------------

    async def save_agent(self, agent: AgentDefinition) -> None:
        """Upsert the snapshot of an agent definition.

        A snapshot older than the stored one (by ``updated_at``) is ignored,
        so saves that finish out of order never revert a newer edit.
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO agents (id, name, status, data, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        status = excluded.status,
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    WHERE excluded.updated_at >= agents.updated_at
                    """,
                    (
                        agent.id,
                        agent.name,
                        agent.status.value,
                        agent.model_dump_json(),
                        agent.updated_at,
                    ),
                )
                await db.commit()
            logger.debug("agent_saved", agent_id=agent.id)
        except Exception as e:
            logger.error("agent_save_failed", agent_id=agent.id, error=str(e))

    async def delete_agent(self, agent_id: str) -> None:
        """Delete an agent snapshot and the runs recorded for it."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("DELETE FROM simulation_runs WHERE agent_id = ?", (agent_id,))
                await db.execute("DELETE FROM agents WHERE id = ?", (agent_id,))
                await db.commit()
            logger.debug("agent_deleted_from_db", agent_id=agent_id)
        except Exception as e:
            logger.error("agent_delete_failed", agent_id=agent_id, error=str(e))

    async def load_agents(self) -> list[AgentDefinition]:
        """Load every stored agent, skipping rows that no longer parse.

        Returns:
            Agents ordered by last update (newest first).
        """
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT id, data FROM agents ORDER BY updated_at DESC")
                rows = await cursor.fetchall()
        except Exception as e:
            logger.error("agent_load_failed", error=str(e))
            return []

        agents: list[AgentDefinition] = []
        for agent_id, data in rows:
            try:
                agents.append(AgentDefinition.model_validate_json(data))
            except pydantic.ValidationError as e:
                logger.warning("agent_row_invalid", agent_id=agent_id, error=str(e))
        return agents

    # -----------------------------------------------------------------
    # Simulation runs
    # -----------------------------------------------------------------

    async def save_run(self, run: SimulationRun) -> bool:
        """Upsert the snapshot of a simulation run.

        The last log timestamp versions a run (logs are append-only with
        increasing timestamps); an older snapshot never replaces a newer one.

        Returns:
            True if the write went through (including a skipped stale
            snapshot), False if it failed.
        """
        updated_at = run.logs[-1].timestamp if run.logs else run.start_time
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO simulation_runs
                        (id, agent_id, status, data, start_time, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        status = excluded.status,
                        data = excluded.data,
                        updated_at = excluded.updated_at
                    WHERE excluded.updated_at >= simulation_runs.updated_at
                    """,
                    (
                        run.id,
                        run.agent_id,
                        run.status.value,
                        run.model_dump_json(),
                        run.start_time,
                        updated_at,
                    ),
                )
                await db.commit()
            logger.debug("simulation_run_saved", run_id=run.id, status=run.status.value)
            return True
        except Exception as e:
            logger.error("simulation_run_save_failed", run_id=run.id, error=str(e))
            return False

    async def get_run(self, run_id: str) -> SimulationRun | None:
        """Stored snapshot of one run, or None if absent or unreadable."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT data FROM simulation_runs WHERE id = ?", (run_id,)
                )
                row = await cursor.fetchone()
            return SimulationRun.model_validate_json(row[0]) if row else None
        except Exception as e:
            logger.error("simulation_run_get_failed", run_id=run_id, error=str(e))
            return None

    async def list_runs(self, agent_id: str, limit: int = 50) -> list[SimulationRun]:
        """Most recent stored runs of an agent (newest first)."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    """
                    SELECT data FROM simulation_runs
                    WHERE agent_id = ?
                    ORDER BY start_time DESC
                    LIMIT ?
                    """,
                    (agent_id, limit),
                )
                rows = await cursor.fetchall()
            return [SimulationRun.model_validate_json(row[0]) for row in rows]
        except Exception as e:
            logger.error("simulation_run_list_failed", agent_id=agent_id, error=str(e))
            return []
