"""
Dispatcher — Aria's Action Engine.

The dispatcher turns a ``Decision`` into a user-presentable result. It is the
boundary between "deciding to do something" and "doing it".

For each decision type:

- invoke: resolve the capability, pass the safety gate, run it under a
  timeout, record an invocation-result memory on success
- plan:   return a fixed step-by-step outline (planning does not execute)
- reply:  delegate to the text generator, falling back to an apology echo
- adapt:  record an adaptation event and acknowledge it

Nothing raised by a capability, the gate, or the generator crosses this
boundary. Every failure comes back as a ``DispatchResult`` with a typed
status and the captured detail.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import threading
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import structlog

from aria.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from aria.config import SafetyConfig
from aria.errors import CapabilityExecutionError, CapabilityNotFound, GeneratorUnavailable, SafetyCheckFailed
from aria.harness.safety import SafetyGate
from aria.memory.bounded import BoundedMemoryStore
from aria.metrics import MetricsRegistry
from aria.types import Decision, DecisionType, MemoryKind, MemoryRecord

logger = structlog.get_logger(__name__)


class DispatchStatus(str, Enum):
    OK = "ok"
    CAPABILITY_NOT_FOUND = "capability_not_found"
    SAFETY_CHECK_FAILED = "safety_check_failed"
    EXECUTION_FAILED = "execution_failed"
    DEGRADED = "degraded"               # reply fell back to the apology echo


@dataclass
class DispatchResult:
    """
    What the dispatcher hands back for one decision.

    ``text`` is always a non-empty, user-presentable string. ``result`` carries
    the raw capability output on successful invocations; ``error`` carries the
    captured detail on failures.
    """
    text: str
    status: DispatchStatus = DispatchStatus.OK
    decision_type: DecisionType = DecisionType.REPLY
    capability_id: Optional[str] = None
    result: Any = None
    error: Optional[str] = None
    execution_time: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == DispatchStatus.OK

    def __str__(self) -> str:
        return self.text


class TextGenerator(Protocol):
    """Anything that can write a reply. ``generate`` may be sync or async."""

    def generate(self, prompt: str, context: dict[str, Any]) -> Any: ...


PLAN_STEPS = (
    "Analyze requirements",
    "Identify necessary capabilities",
    "Execute step-by-step",
    "Validate results",
)


def _safe_release(sem: asyncio.BoundedSemaphore) -> None:
    """Release a BoundedSemaphore, ignoring ValueError from double-release."""
    try:
        sem.release()
    except ValueError:
        pass  # Already released by timeout handler


def _jsonable(value: Any) -> Any:
    """Coerce an opaque capability result into plain JSON data."""
    try:
        return json.loads(json.dumps(value, default=str))
    except (TypeError, ValueError):
        return str(value)


class Dispatcher:
    """
    Executes decisions against the capability registry.

    The dispatcher intercepts each invocation to:
    1. Check the capability exists and is enabled
    2. Run the safety gate (schema, predicate, input scan)
    3. Apply the per-capability or default timeout
    4. Execute the function (sync in a worker thread, async via wait_for)
    5. Capture results or errors
    6. Record successful results in bounded memory
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        safety_gate: SafetyGate,
        memory: BoundedMemoryStore,
        config: Optional[SafetyConfig] = None,
        generator: Optional[TextGenerator] = None,
        generator_timeout: float = 60.0,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self._registry = registry
        self._safety_gate = safety_gate
        self._memory = memory
        self._config = config or SafetyConfig()
        self._generator = generator
        self._generator_timeout = generator_timeout
        self._metrics = metrics or MetricsRegistry()
        self._default_timeout = self._config.capability_default_timeout
        self._max_output_length = self._config.max_output_length
        self._sync_slot = asyncio.BoundedSemaphore(self._config.max_concurrent_sync)

        logger.info(
            "dispatcher.initialized",
            timeout=self._default_timeout,
            max_output=self._max_output_length,
            generator=type(generator).__name__ if generator else None,
        )

    @property
    def generator(self) -> Optional[TextGenerator]:
        return self._generator

    def set_generator(self, generator: Optional[TextGenerator]) -> None:
        self._generator = generator

    def set_memory(self, memory: BoundedMemoryStore) -> None:
        """Point invocation-result recording at a different store (state import)."""
        self._memory = memory

    async def dispatch(self, decision: Decision, context: Optional[dict[str, Any]] = None) -> DispatchResult:
        """Execute ``decision``. Never raises."""
        start = time.monotonic()
        self._metrics.inc("dispatch_total")
        self._metrics.add_gauge("dispatch_in_flight", 1)
        try:
            if decision.type == DecisionType.INVOKE:
                result = await self._invoke(decision)
            elif decision.type == DecisionType.PLAN:
                result = self._plan(decision)
            elif decision.type == DecisionType.ADAPT:
                result = self._adapt(decision)
            else:
                result = await self._reply(decision, context or {})
        except Exception as e:
            # Internal fault in the dispatcher itself; still end in text.
            logger.error(
                "dispatcher.internal_error",
                decision_id=decision.id,
                error=f"{type(e).__name__}: {e}",
                traceback=traceback.format_exc(),
            )
            result = DispatchResult(
                text=f"I encountered an error: {e}",
                status=DispatchStatus.EXECUTION_FAILED,
                decision_type=decision.type,
                error=f"{type(e).__name__}: {e}",
            )
        finally:
            self._metrics.add_gauge("dispatch_in_flight", -1)

        result.execution_time = result.execution_time or (time.monotonic() - start)
        self._metrics.inc(f"dispatch_{result.status.value}")
        self._metrics.observe("dispatch_seconds", result.execution_time)
        return result

    # -------------------------------------------------------------------------
    # invoke
    # -------------------------------------------------------------------------

    async def _invoke(self, decision: Decision) -> DispatchResult:
        capability_id = str(decision.action.get("capability_id", ""))
        parameters = decision.action.get("parameters") or {}

        logger.info(
            "dispatcher.invoking",
            capability_id=capability_id,
            decision_id=decision.id,
            parameter_keys=list(parameters.keys()) if isinstance(parameters, dict) else [],
        )

        capability = self._registry.get(capability_id)
        if capability is None or not capability.enabled:
            err = CapabilityNotFound(capability_id)
            return DispatchResult(
                text=str(err),
                status=DispatchStatus.CAPABILITY_NOT_FOUND,
                decision_type=DecisionType.INVOKE,
                capability_id=capability_id,
                error=str(err),
            )

        check = self._safety_gate.check(capability, parameters)
        if not check.allowed:
            err = SafetyCheckFailed(capability_id, check.reason)
            return DispatchResult(
                text=f"Safety check failed for capability: {capability.name}. {check.reason}".strip(),
                status=DispatchStatus.SAFETY_CHECK_FAILED,
                decision_type=DecisionType.INVOKE,
                capability_id=capability_id,
                error=err.reason,
            )

        start_time = time.monotonic()
        try:
            output = await self._execute(capability, parameters)
        except CapabilityExecutionError as e:
            elapsed = time.monotonic() - start_time
            return DispatchResult(
                text=f"Error executing {capability.name}: {e.detail}",
                status=DispatchStatus.EXECUTION_FAILED,
                decision_type=DecisionType.INVOKE,
                capability_id=capability_id,
                error=e.detail,
                execution_time=elapsed,
            )

        elapsed = time.monotonic() - start_time
        self._metrics.observe(f"capability_seconds.{capability_id}", elapsed)

        output = _jsonable(output)
        self._memory.append(MemoryRecord(
            kind=MemoryKind.INVOCATION_RESULT,
            payload={
                "capability_id": capability_id,
                "parameters": _jsonable(parameters),
                "result": output,
            },
        ))

        rendered = json.dumps(output, indent=2, default=str)
        if len(rendered) > self._max_output_length:
            rendered = (
                rendered[: self._max_output_length - 100]
                + f"\n\n[Output truncated: {len(rendered)} chars total, "
                f"showing first {self._max_output_length - 100}]"
            )

        logger.info(
            "dispatcher.success",
            capability_id=capability_id,
            elapsed=round(elapsed, 3),
            result_length=len(rendered),
        )
        return DispatchResult(
            text=f"Successfully executed {capability.name}. Result: {rendered}",
            status=DispatchStatus.OK,
            decision_type=DecisionType.INVOKE,
            capability_id=capability_id,
            result=output,
            execution_time=elapsed,
        )

    async def _execute(self, capability: CapabilityDescriptor, parameters: dict[str, Any]) -> Any:
        """Run the capability under its timeout; every failure becomes CapabilityExecutionError."""
        timeout = capability.timeout if capability.timeout is not None else self._default_timeout
        handler = capability.execute
        try:
            if inspect.iscoroutinefunction(handler):
                return await asyncio.wait_for(handler(parameters), timeout=timeout)
            result = await self._execute_sync_handler(handler, parameters, timeout)
            if inspect.isawaitable(result):
                return await asyncio.wait_for(result, timeout=timeout)
            return result
        except asyncio.TimeoutError:
            logger.warning("dispatcher.timeout", capability_id=capability.id, timeout=timeout)
            raise CapabilityExecutionError(
                capability.id, f"Capability execution timed out after {timeout}s"
            ) from None
        except Exception as e:
            error_detail = f"{type(e).__name__}: {e}"
            logger.error(
                "dispatcher.execution_error",
                capability_id=capability.id,
                error=error_detail,
                traceback=traceback.format_exc(),
            )
            raise CapabilityExecutionError(capability.id, error_detail) from e

    async def _execute_sync_handler(
        self,
        handler: Callable[[dict[str, Any]], Any],
        parameters: dict[str, Any],
        timeout: float,
    ) -> Any:
        """
        Execute a synchronous handler in a dedicated daemon thread.

        The event loop only waits on a completion event, so a stuck handler
        costs a thread and a semaphore slot but never blocks the caller past
        ``timeout``.
        """
        try:
            await asyncio.wait_for(self._sync_slot.acquire(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise RuntimeError(
                "Sync capability executor is saturated with long-running tasks."
            ) from exc

        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        result_box: dict[str, Any] = {}
        released = threading.Event()

        def _invoke() -> None:
            try:
                result_box["result"] = handler(parameters)
            except Exception as exc:  # pragma: no cover - surfaced to caller
                result_box["error"] = exc
            finally:
                if not released.is_set():
                    released.set()
                    try:
                        loop.call_soon_threadsafe(_safe_release, self._sync_slot)
                    except RuntimeError:  # pragma: no cover – shutdown race
                        pass
                try:
                    loop.call_soon_threadsafe(done.set)
                except RuntimeError:  # pragma: no cover – shutdown race
                    pass

        try:
            thread = threading.Thread(target=_invoke, daemon=True)
            thread.start()
        except Exception:
            self._sync_slot.release()
            raise

        try:
            await asyncio.wait_for(done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            # The stuck thread may never release its slot.
            if not released.is_set():
                released.set()
                _safe_release(self._sync_slot)
            raise

        if "error" in result_box:
            raise result_box["error"]
        return result_box.get("result")

    # -------------------------------------------------------------------------
    # plan / adapt / reply
    # -------------------------------------------------------------------------

    def _plan(self, decision: Decision) -> DispatchResult:
        message = decision.action.get("message", "")
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(PLAN_STEPS, 1))
        text = (
            f"I'll create a plan to handle your complex request: \"{message}\"\n\n"
            f"This requires multiple steps. Let me break it down:\n{steps}\n\n"
            "Would you like me to proceed with this plan?"
        )
        return DispatchResult(
            text=text,
            status=DispatchStatus.OK,
            decision_type=DecisionType.PLAN,
            metadata={"steps": list(PLAN_STEPS)},
        )

    def _adapt(self, decision: Decision) -> DispatchResult:
        self._memory.append(MemoryRecord(
            kind=MemoryKind.ADAPTATION_EVENT,
            payload={"message": decision.action.get("message", ""), "decision_id": decision.id},
        ))
        self._metrics.inc("adaptation_requests")
        return DispatchResult(
            text="I'm learning from this interaction to better serve you in the future.",
            status=DispatchStatus.OK,
            decision_type=DecisionType.ADAPT,
        )

    async def _reply(self, decision: Decision, context: dict[str, Any]) -> DispatchResult:
        message = str(decision.action.get("message", ""))
        try:
            text = await self._generate(message, context)
        except GeneratorUnavailable as e:
            logger.warning("dispatcher.generator_fallback", decision_id=decision.id, error=str(e))
            return DispatchResult(
                text=(
                    f"I understand your message: \"{message}\". However, I'm having "
                    "trouble generating a response right now. Please try again."
                ),
                status=DispatchStatus.DEGRADED,
                decision_type=DecisionType.REPLY,
                error=str(e),
            )
        return DispatchResult(text=text, status=DispatchStatus.OK, decision_type=DecisionType.REPLY)

    async def _generate(self, message: str, context: dict[str, Any]) -> str:
        if self._generator is None:
            raise GeneratorUnavailable("no text generator configured")
        try:
            raw = self._generator.generate(message, context)
            if inspect.isawaitable(raw):
                raw = await asyncio.wait_for(raw, timeout=self._generator_timeout)
        except asyncio.TimeoutError as e:
            raise GeneratorUnavailable(f"generator timed out after {self._generator_timeout}s") from e
        except Exception as e:
            raise GeneratorUnavailable(f"{type(e).__name__}: {e}") from e
        text = str(raw or "").strip()
        if not text:
            raise GeneratorUnavailable("generator returned an empty reply")
        return text

    @property
    def stats(self) -> dict[str, Any]:
        total = self._metrics.counter("dispatch_total")
        ok = self._metrics.counter("dispatch_ok")
        return {
            "total_dispatches": total,
            "successes": ok,
            "capability_not_found": self._metrics.counter("dispatch_capability_not_found"),
            "safety_check_failed": self._metrics.counter("dispatch_safety_check_failed"),
            "execution_failed": self._metrics.counter("dispatch_execution_failed"),
            "degraded": self._metrics.counter("dispatch_degraded"),
            "success_rate": ok / max(1, total),
            "average_seconds": round(self._metrics.average("dispatch_seconds"), 4),
            "in_flight": int(self._metrics.gauge("dispatch_in_flight")),
        }
