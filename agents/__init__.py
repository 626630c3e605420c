from .base import Agent, AgentResult, TaskQueue, ReputationError, ResolutionError, FetchError, GatewayError
from .fetchers import BaseFetcher, MockFetcher, build_fetchers
from .resolver import IdentityResolver, MockResolver
from .orchestrator import RefreshOrchestrator, RefreshInProgress
from .auto_heal import AutoHealSweep
from .aggregator import GroupAggregator
from .insights import ReviewInsightsAgent, LlmGateway

__all__ = [
    "Agent", "AgentResult", "TaskQueue",
    "ReputationError", "ResolutionError", "FetchError", "GatewayError",
    "BaseFetcher", "MockFetcher", "build_fetchers",
    "IdentityResolver", "MockResolver",
    "RefreshOrchestrator", "RefreshInProgress",
    "AutoHealSweep", "GroupAggregator",
    "ReviewInsightsAgent", "LlmGateway",
]
