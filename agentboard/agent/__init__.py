from .base import AgentMetrics, BaseAgent, CallableAgent
from .registry import AgentRegistry

__all__ = ["AgentMetrics", "AgentRegistry", "BaseAgent", "CallableAgent"]
