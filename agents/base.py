"""
Base Agent class and background task queue
Hospitality Reputation Tracker
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging
import traceback

logger = logging.getLogger(__name__)


# ─── Errors ──────────────────────────────────────────────────────────────────


class ReputationError(Exception):
    """Base class for errors raised inside adapters and agents."""


class ResolutionError(ReputationError):
    """Identity lookup failed upstream."""


class FetchError(ReputationError):
    """A rating source returned something unusable."""


class GatewayError(ReputationError):
    """The LLM gateway rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# ─── Agent ───────────────────────────────────────────────────────────────────


@dataclass
class AgentResult:
    """Standardized result envelope returned by every agent."""
    agent_name: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def __repr__(self):
        status = "✅" if self.success else "❌"
        dur = f" ({self.duration_seconds:.1f}s)" if self.duration_seconds else ""
        return f"{status} {self.agent_name}{dur}"


class Agent(ABC):
    """
    Abstract base class for long-running jobs (refresh, heal, insights).
    Subclasses implement the coroutine `run(data)`.
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"agent.{name}")

    @abstractmethod
    async def run(self, data: Any) -> Any:
        raise NotImplementedError

    async def execute(self, data: Any = None) -> AgentResult:
        """
        Wraps `run()` with timing, structured logging, and error handling.
        Never raises: failures come back as an unsuccessful AgentResult.
        """
        started_at = datetime.utcnow()
        self.logger.info(f"[{self.name}] Starting...")
        try:
            result = await self.run(data)
            finished_at = datetime.utcnow()
            duration = (finished_at - started_at).total_seconds()
            self.logger.info(f"[{self.name}] Completed in {duration:.2f}s")
            return AgentResult(
                agent_name=self.name,
                success=True,
                data=result,
                started_at=started_at,
                finished_at=finished_at,
            )
        except Exception as e:
            finished_at = datetime.utcnow()
            self.logger.error(f"[{self.name}] Failed: {e}\n{traceback.format_exc()}")
            return AgentResult(
                agent_name=self.name,
                success=False,
                error=str(e),
                started_at=started_at,
                finished_at=finished_at,
            )

    def __repr__(self):
        return f"<Agent: {self.name}>"


# ─── Background tasks ────────────────────────────────────────────────────────


class TaskQueue:
    """
    Fire-and-forget background jobs on the running event loop.

    Spawned jobs are not awaited by the caller; each job's outcome is kept
    as an AgentResult in `results` and never propagates to the spawner.
    Only the most recent `max_results` outcomes are kept.
    """

    def __init__(self, max_results: int = 100):
        self.logger = logging.getLogger("tasks")
        self._tasks: List[asyncio.Task] = []
        self.results: Deque[AgentResult] = deque(maxlen=max_results)

    def spawn(self, job: Callable[[], Awaitable[AgentResult]], label: str = "task") -> asyncio.Task:
        async def runner() -> AgentResult:
            try:
                result = await job()
            except Exception as e:
                self.logger.error(f"❌ Background {label} crashed: {e}")
                result = AgentResult(agent_name=label, success=False, error=str(e))
            self.results.append(result)
            return result

        task = asyncio.get_running_loop().create_task(runner(), name=label)
        self._tasks.append(task)
        task.add_done_callback(self._discard)
        self.logger.info(f"Spawned background {label}")
        return task

    def _discard(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self) -> List[AgentResult]:
        """Wait for every job spawned so far (used by shutdown and tests)."""
        while True:
            waiting = [t for t in self._tasks if not t.done()]
            if not waiting:
                break
            await asyncio.gather(*waiting, return_exceptions=True)
        return list(self.results)
