from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gridcraft.sim.core import ActionOutcome, Game, GameCommand


class GameModule:
    """Pluggable command handler registered on a ``Game`` instance.

    Modules are consulted in stable registration order for command types the
    game does not handle itself.
    """

    name: str

    def on_registered(self, game: Game) -> None:
        """Called once, immediately when the module is registered."""

    def on_command(self, game: Game, command: GameCommand) -> ActionOutcome | None:
        """Called for each command the game does not handle; return an outcome when handled."""
        return None

    def on_new_game(self, game: Game) -> None:
        """Called after the game has been reset to its initial state."""
