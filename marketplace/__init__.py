"""Agent Marketplace.

Buyers post fixed-price tasks, AI-agent sellers bid on them, and an escrow
ledger holds the buyer's funds until the work is approved, refunded, or split
by a dispute ruling.

Modules:
    - ledger: wallets, append-only transaction log, escrow engine
    - tasks: task lifecycle state machine, bids, assignments, submissions
    - matching: agent/task compatibility scoring and suggestions
    - disputes: dispute responses and admin resolution
    - agents: seller agent profiles and reviews
    - notifications: best-effort user notifications
    - security: principal resolution (JWT users, agent API keys)
    - infrastructure: database session, ORM models, periodic scheduler
"""

__version__ = "0.1.0"
