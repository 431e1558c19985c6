"""
API layer

HTTP endpoints only; business rules live in core.RaffleManager:
- raffle: entry, upkeep, queries, operator recovery
- oracle: randomness callback
"""
