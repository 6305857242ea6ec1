"""
Scopeboard - Game engine for a hot-seat construction project board game.

Players move around a board of project phases, draw Work, Bank, Investor,
Life and Expeditor cards, and race to finish their project scope on time
and on budget. The engine provides:
- Immutable game state with a single mutation contract
- A typed, synchronous event bus for UI layers
- Space, card and dice effect resolution driven by CSV data
- Turn and required-action lifecycle with negotiation snapshots
"""

__version__ = "0.1.0"
