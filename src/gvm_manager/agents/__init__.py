"""
Agent controller integration.
"""

from .client import AgentControllerClient
from .manager import AgentManager, AgentResponse

__all__ = [
    "AgentControllerClient",
    "AgentManager",
    "AgentResponse",
]
