"""
Dry-run sandbox - query-plan checks against the real engine.

The sandbox only ever runs EXPLAIN (or a zero-row wrapper on engines
without a usable EXPLAIN). It never returns result rows and always rolls
back. The blocking driver call runs in a worker thread so the event loop,
and with it cancellation, stays responsive.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Optional, Protocol

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from bizsql.config.settings import settings
from bizsql.llm.resilience import CircuitBreaker, retry_async
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import CircuitOpenError, DryRunError, PipelineCancelled


@dataclass(frozen=True)
class ExplainResult:
    estimated_rows: Optional[int] = None
    estimated_cost: Optional[float] = None
    syntax_error: Optional[str] = None


class DryRunSandbox(Protocol):
    async def explain(self, sql: str, timeout: float, token: Optional[CancellationToken] = None) -> ExplainResult:
        ...


class SQLAlchemySandbox:
    """
    ``DryRunSandbox`` over a SQLAlchemy engine.

    Supports MySQL and PostgreSQL plans (row and cost estimates) and SQLite
    (EXPLAIN QUERY PLAN, validity only). Other dialects get a
    ``WHERE 1=0`` wrapper that validates the query without reading rows.
    """

    def __init__(
        self,
        engine: Engine,
        breaker: Optional[CircuitBreaker] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.engine = engine
        self.breaker = breaker or CircuitBreaker(
            "dry_run",
            failure_threshold=settings.circuit_breaker_threshold,
            reset_timeout=settings.circuit_breaker_reset_seconds,
        )
        self.max_attempts = settings.retry_max_attempts if max_attempts is None else max_attempts
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay

    @classmethod
    def from_url(cls, url: str) -> "SQLAlchemySandbox":
        engine = create_engine(url, pool_pre_ping=True, pool_recycle=3600)
        logger.info(f"Dry-run sandbox on {engine.dialect.name} ({engine.url.render_as_string(hide_password=True)})")
        return cls(engine)

    async def explain(self, sql: str, timeout: float, token: Optional[CancellationToken] = None) -> ExplainResult:
        """
        Raises:
            DryRunError: sandbox unreachable or timing out after retries
            PipelineCancelled: the token fired while waiting
        """
        async def attempt() -> ExplainResult:
            if token is not None:
                token.raise_if_cancelled("dry_run")
            call = asyncio.to_thread(self._explain_sync, sql)
            if token is not None:
                return await token.run(call, timeout=timeout, stage="dry_run")
            return await asyncio.wait_for(call, timeout=timeout)

        try:
            return await retry_async(
                lambda: self.breaker.call(attempt),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                description="dry run",
            )
        except PipelineCancelled:
            raise
        except DryRunError:
            raise
        except CircuitOpenError as e:
            raise DryRunError(str(e), stage="dry_run") from e
        except asyncio.TimeoutError as e:
            raise DryRunError(f"Dry run timed out after {timeout}s", stage="dry_run") from e

    def _explain_sync(self, sql: str) -> ExplainResult:
        statement = sql.strip().rstrip(";")
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as e:
            raise DryRunError(f"Sandbox connection failed: {e}", stage="dry_run") from e

        with conn:
            try:
                return self._explain_for_dialect(conn, statement)
            except DBAPIError as e:
                if e.connection_invalidated:
                    raise DryRunError(f"Sandbox connection lost: {e}", stage="dry_run") from e
                message = str(e.orig) if e.orig is not None else str(e)
                logger.debug(f"Dry run rejected SQL: {message}")
                return ExplainResult(syntax_error=message)
            finally:
                conn.rollback()

    def _explain_for_dialect(self, conn, statement: str) -> ExplainResult:
        dialect = self.engine.dialect.name

        if dialect == "sqlite":
            plan = conn.exec_driver_sql(f"EXPLAIN QUERY PLAN {statement}").fetchall()
            return ExplainResult(estimated_rows=None, estimated_cost=float(len(plan)))

        if dialect in ("mysql", "mariadb"):
            rows = conn.execute(text(f"EXPLAIN {statement}")).mappings().all()
            estimate = 1
            for row in rows:
                estimate *= max(1, int(row.get("rows") or 1))
            return ExplainResult(estimated_rows=estimate if rows else 0, estimated_cost=None)

        if dialect == "postgresql":
            raw = conn.execute(text(f"EXPLAIN (FORMAT JSON) {statement}")).scalar()
            plan = (json.loads(raw) if isinstance(raw, str) else raw)[0]["Plan"]
            return ExplainResult(estimated_rows=int(plan.get("Plan Rows", 0)), estimated_cost=float(plan.get("Total Cost", 0.0)))

        conn.execute(text(f"SELECT * FROM ({statement}) dry_run_q WHERE 1=0")).fetchall()
        return ExplainResult()
