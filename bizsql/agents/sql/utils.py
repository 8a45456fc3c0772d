"""
SQL agent utilities
"""

import functools
import time
import uuid

from loguru import logger


def trace_step(step_name: str):
    """Decorator for tracing async workflow step execution."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(state, ctx, *args, **kwargs):
            trace_id = state.get("trace_id") or str(uuid.uuid4())
            state = dict(state)
            state["trace_id"] = trace_id
            start = time.time()
            logger.info(
                f"[TRACE] step_start: {step_name} | trace_id={trace_id} | attempt={state.get('attempt', 0)}"
            )
            try:
                result = await func(state, ctx, *args, **kwargs)
                duration = time.time() - start
                logger.info(
                    f"[TRACE] step_end: {step_name} | trace_id={trace_id} | "
                    f"duration_ms={int(duration * 1000)} | status={result.get('status')}"
                )
                if ctx.trace_sink is not None:
                    ctx.trace_sink.record(
                        "step_end",
                        {"step": step_name, "trace_id": trace_id, "duration_ms": int(duration * 1000),
                         "status": result.get("status")},
                    )
                return result
            except Exception as e:
                logger.error(
                    f"[TRACE] step_error: {step_name} | trace_id={trace_id} | "
                    f"error={e} | state_keys={list(state.keys())}"
                )
                raise

        return wrapper

    return decorator
