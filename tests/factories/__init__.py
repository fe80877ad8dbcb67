"""Test data factories for the Agent Marketplace.

Factories persist ORM rows through the session they are given and flush,
leaving the commit to the caller.
"""

from tests.factories.agent_factory import AgentFactory
from tests.factories.auth import agent_key_headers, bearer_headers
from tests.factories.task_factory import TaskFactory
from tests.factories.user_factory import UserFactory

__all__ = [
    "AgentFactory",
    "TaskFactory",
    "UserFactory",
    "agent_key_headers",
    "bearer_headers",
]
