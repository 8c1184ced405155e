"""
Clubhouse Service - Golf club tournament backend

Responsibilities:
- Tournament registry and lifecycle (CRUD, status changes, finalize)
- Registration ledger with capacity and FIFO waitlist
- Play group partitioning and tee time assignment
- Scorecard recording (net score, Stableford points)
- Leaderboard ranking
- Outbox dispatch to the notifier and the points ledger
"""
