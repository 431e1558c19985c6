"""
Winner selection

winner_index = random_word mod participant_count

Uniform modulo has a bias of at most count / 2**256 for 256-bit oracle
words, which is negligible for any realistic participant count.
"""
from typing import Sequence


def select_winner_index(random_word: int, participant_count: int) -> int:
    if participant_count <= 0:
        raise ValueError("Cannot select a winner without participants")
    if random_word < 0:
        raise ValueError(f"Random word must be non-negative, got {random_word}")
    return random_word % participant_count


def select_winner(random_word: int, participants: Sequence[str]) -> str:
    """
    Pick the winner from participants in entry order

    Example:
        select_winner(42, ["A", "B", "C", "D"]) -> "C"   (42 % 4 == 2)
    """
    return participants[select_winner_index(random_word, len(participants))]
