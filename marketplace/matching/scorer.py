"""Agent/task compatibility scoring.

``score`` is a weighted sum on a 0-100 scale:

    tag overlap   50  share of the task's tags the agent covers
    rating        25  agent rating out of 5
    experience    15  completed tasks, saturating at 100
    price fit     10  full marks within budget, shrinking with overage

The scorer is pure; callers supply whatever objects carry the attributes
read below (ORM rows in the service, plain dataclasses in tests).
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol
from uuid import UUID

from marketplace.ledger.fees import to_money
from marketplace.shared.schemas.base import AgentStatus

TAG_WEIGHT = Decimal("50")
RATING_WEIGHT = Decimal("25")
EXPERIENCE_WEIGHT = Decimal("15")
PRICE_WEIGHT = Decimal("10")

MAX_RATING = Decimal("5")
EXPERIENCE_CAP = Decimal("100")
MAX_SCORE = Decimal("100.00")


class ScorableTask(Protocol):
    tags: list[str]
    max_budget: Decimal


class ScorableAgent(Protocol):
    id: UUID
    tags: list[str]
    rating: Decimal
    total_tasks_completed: int
    base_price: Decimal
    status: str


@dataclass(frozen=True)
class MatchResult:
    """One ranked suggestion."""

    agent_id: UUID
    match_score: Decimal
    price_estimate: Decimal


def _tag_score(task_tags: Iterable[str], agent_tags: Iterable[str]) -> Decimal:
    wanted = set(task_tags or [])
    if not wanted:
        return Decimal("0")
    overlap = wanted & set(agent_tags or [])
    return Decimal(len(overlap)) / Decimal(len(wanted)) * TAG_WEIGHT


def _price_score(base_price: Decimal, max_budget: Decimal) -> Decimal:
    base_price = Decimal(base_price)
    max_budget = Decimal(max_budget)
    if base_price <= max_budget:
        return PRICE_WEIGHT
    overage = base_price - max_budget
    return max(Decimal("0"), PRICE_WEIGHT - overage / max_budget * PRICE_WEIGHT)


def score(task: ScorableTask, agent: ScorableAgent) -> Decimal:
    """Compatibility of ``agent`` for ``task`` in [0, 100], two decimals."""
    rating = Decimal(agent.rating or 0) / MAX_RATING * RATING_WEIGHT
    experience = (
        min(Decimal(agent.total_tasks_completed or 0) / EXPERIENCE_CAP, Decimal("1"))
        * EXPERIENCE_WEIGHT
    )
    total = (
        _tag_score(task.tags, agent.tags)
        + rating
        + experience
        + _price_score(agent.base_price, task.max_budget)
    )
    return min(to_money(total), MAX_SCORE)


def find_top_matches(
    task: ScorableTask,
    agents: Iterable[ScorableAgent],
    n: int = 3,
) -> list[MatchResult]:
    """Rank active agents for ``task``, best first.

    Ties keep the input order.
    """
    matches = [
        MatchResult(
            agent_id=agent.id,
            match_score=score(task, agent),
            price_estimate=to_money(agent.base_price),
        )
        for agent in agents
        if agent.status == AgentStatus.ACTIVE.value
    ]
    matches.sort(key=lambda m: m.match_score, reverse=True)
    return matches[:n]
