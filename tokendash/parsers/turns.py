"""Group a session's exchanges into human turns."""
from __future__ import annotations

from typing import Iterable

from tokendash.models import Exchange, Turn


def group_turns(exchanges: Iterable[Exchange]) -> list[Turn]:
    """Fold exchanges into turns.

    An exchange carrying a prompt opens a new turn. Promptless exchanges
    (tool-use follow-up calls) join the open turn, or open a promptless turn
    when they come first.
    """
    groups: list[tuple[Exchange, list[Exchange]]] = []
    for exchange in exchanges:
        if exchange.userMessage is not None or not groups:
            groups.append((exchange, [exchange]))
        else:
            groups[-1][1].append(exchange)

    return [Turn(userMessage=first.userMessage, exchanges=members) for first, members in groups]
