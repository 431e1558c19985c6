"""
Core business logic

This package holds the raffle lifecycle:
- State machine: the only writer of Raffle.state
- Manager: entry, resolution, settlement and recovery
- Locks: row-level concurrency control
"""
