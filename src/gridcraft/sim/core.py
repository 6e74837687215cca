from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from gridcraft.sim.location import CELL_DEGREES, ORIGIN, GeoPoint, point_to_cell, window_around
from gridcraft.sim.rules import GameModule
from gridcraft.sim.world import (
    EMPTY_CELL,
    INTERACTION_RADIUS,
    MEMORYLESS_EVICTION_MARGIN,
    OVERLAY_POLICIES,
    OVERLAY_POLICY_MEMORYLESS,
    OVERLAY_POLICY_PERSISTENT,
    SPAWN_PROBABILITY,
    CellCoord,
    CellOracle,
    CellOverlay,
    CellWindow,
    VisibleCell,
    WorldView,
)

if TYPE_CHECKING:
    from gridcraft.content.io import GamePersistence

logger = logging.getLogger(__name__)

WIN_THRESHOLD = 256
VIEW_HALF_HEIGHT = 8
VIEW_HALF_WIDTH = 12
MAX_RECENT_OUTCOMES = 64

MOVEMENT_MODE_DISCRETE = "discrete"
MOVEMENT_MODE_CONTINUOUS = "continuous"
MOVEMENT_MODES = {MOVEMENT_MODE_DISCRETE, MOVEMENT_MODE_CONTINUOUS}

OUTCOME_MOVED = "moved"
OUTCOME_PICKED_UP = "picked_up"
OUTCOME_CRAFTED = "crafted"
OUTCOME_WON = "won"
OUTCOME_NEW_GAME = "new_game"
OUTCOME_MODE_CHANGED = "mode_changed"
OUTCOME_INSPECTED = "inspected"
OUTCOME_OUT_OF_RANGE = "out_of_range"
OUTCOME_ALREADY_HOLDING = "already_holding"
OUTCOME_NOT_HOLDING = "not_holding"
OUTCOME_NO_TOKEN = "no_token"
OUTCOME_CRAFT_MISMATCH = "craft_mismatch"
OUTCOME_GAME_WON = "game_won"
OUTCOME_INVALID_COMMAND = "invalid_command"
OUTCOME_UNKNOWN_COMMAND = "unknown_command"
APPLIED_OUTCOMES = {
    OUTCOME_MOVED,
    OUTCOME_PICKED_UP,
    OUTCOME_CRAFTED,
    OUTCOME_WON,
    OUTCOME_NEW_GAME,
    OUTCOME_MODE_CHANGED,
}

DIRECTION_STEPS: dict[str, tuple[int, int]] = {
    "north": (1, 0),
    "south": (-1, 0),
    "east": (0, 1),
    "west": (0, -1),
}


@dataclass(frozen=True)
class GameRules:
    origin: GeoPoint = ORIGIN
    cell_degrees: float = CELL_DEGREES
    interaction_radius: int = INTERACTION_RADIUS
    spawn_probability: float = SPAWN_PROBABILITY
    win_threshold: int = WIN_THRESHOLD
    overlay_policy: str = OVERLAY_POLICY_PERSISTENT
    view_half_height: int = VIEW_HALF_HEIGHT
    view_half_width: int = VIEW_HALF_WIDTH
    world_seed: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.cell_degrees, (int, float)) or self.cell_degrees <= 0:
            raise ValueError("cell_degrees must be > 0")
        if not isinstance(self.interaction_radius, int) or self.interaction_radius < 0:
            raise ValueError("interaction_radius must be a non-negative integer")
        if not isinstance(self.win_threshold, int) or self.win_threshold <= 0:
            raise ValueError("win_threshold must be a positive integer")
        if self.overlay_policy not in OVERLAY_POLICIES:
            raise ValueError(f"invalid overlay_policy: {self.overlay_policy}")
        if self.view_half_height < 0 or self.view_half_width < 0:
            raise ValueError("view half extents must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": self.origin.to_dict(),
            "cell_degrees": self.cell_degrees,
            "interaction_radius": self.interaction_radius,
            "spawn_probability": self.spawn_probability,
            "win_threshold": self.win_threshold,
            "overlay_policy": self.overlay_policy,
            "view_half_height": self.view_half_height,
            "view_half_width": self.view_half_width,
            "world_seed": self.world_seed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameRules":
        defaults = cls()
        return cls(
            origin=GeoPoint.from_dict(data["origin"]) if "origin" in data else defaults.origin,
            cell_degrees=float(data.get("cell_degrees", defaults.cell_degrees)),
            interaction_radius=int(data.get("interaction_radius", defaults.interaction_radius)),
            spawn_probability=float(data.get("spawn_probability", defaults.spawn_probability)),
            win_threshold=int(data.get("win_threshold", defaults.win_threshold)),
            overlay_policy=str(data.get("overlay_policy", defaults.overlay_policy)),
            view_half_height=int(data.get("view_half_height", defaults.view_half_height)),
            view_half_width=int(data.get("view_half_width", defaults.view_half_width)),
            world_seed=str(data.get("world_seed", defaults.world_seed)),
        )


@dataclass
class GameState:
    player: GeoPoint
    held_token: int | None = None
    has_won: bool = False
    movement_mode: str = MOVEMENT_MODE_DISCRETE

    def __post_init__(self) -> None:
        if self.held_token is not None and (isinstance(self.held_token, bool) or not isinstance(self.held_token, int)):
            raise ValueError("held_token must be an integer or None")
        if not isinstance(self.has_won, bool):
            raise ValueError("has_won must be a boolean")
        if self.movement_mode not in MOVEMENT_MODES:
            raise ValueError(f"invalid movement_mode: {self.movement_mode}")

    @classmethod
    def initial(cls, rules: GameRules, movement_mode: str = MOVEMENT_MODE_DISCRETE) -> "GameState":
        return cls(player=rules.origin, movement_mode=movement_mode)


@dataclass
class GameCommand:
    command_type: str
    params: dict[str, Any] = field(default_factory=dict)
    source: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.command_type, str) or not self.command_type:
            raise ValueError("command_type must be a non-empty string")
        if not isinstance(self.params, dict):
            raise ValueError("params must be a dict")
        if self.source is not None and not isinstance(self.source, str):
            raise ValueError("source must be a string or None")

    def to_dict(self) -> dict[str, Any]:
        return {"command_type": self.command_type, "params": self.params, "source": self.source}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GameCommand":
        return cls(
            command_type=str(data["command_type"]),
            params=dict(data.get("params", {})),
            source=data.get("source"),
        )


@dataclass(frozen=True)
class ActionOutcome:
    action: str
    outcome: str
    message: str
    coord: CellCoord | None = None
    held_token: int | None = None

    @property
    def applied(self) -> bool:
        return self.outcome in APPLIED_OUTCOMES

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "outcome": self.outcome,
            "message": self.message,
            "coord": self.coord.to_dict() if self.coord is not None else None,
            "held_token": self.held_token,
        }


def _describe_cell(coord: CellCoord, *, has_token: bool, value: int | None) -> str:
    contents = f"Token: {value}" if has_token else "Empty"
    return f"Cell {coord.to_key()}: {contents}"


class Game:
    """Single owner of game state, overlay and the action API.

    All mutations funnel through ``execute`` so the state machine invariants
    are enforced in one place. Successful mutations are saved immediately
    when a persistence adapter is attached.
    """

    def __init__(
        self,
        rules: GameRules | None = None,
        oracle: CellOracle | None = None,
        *,
        state: GameState | None = None,
        overlay: CellOverlay | None = None,
        persistence: GamePersistence | None = None,
    ) -> None:
        self.rules = rules if rules is not None else GameRules()
        self.oracle = (
            oracle
            if oracle is not None
            else CellOracle(spawn_probability=self.rules.spawn_probability, seed=self.rules.world_seed)
        )
        self.state = state if state is not None else GameState.initial(self.rules)
        self.overlay = overlay if overlay is not None else CellOverlay()
        self.view = WorldView(self.oracle, self.overlay)
        self.persistence = persistence
        self.modules: list[GameModule] = []
        self.recent_outcomes: deque[ActionOutcome] = deque(maxlen=MAX_RECENT_OUTCOMES)
        self.last_save_error: str | None = None
        self._pending_commands: deque[GameCommand] = deque()

    # -- queries -----------------------------------------------------------

    def player_cell(self) -> CellCoord:
        return point_to_cell(self.state.player, self.rules.origin, self.rules.cell_degrees)

    def visible_window(self) -> CellWindow:
        return window_around(self.player_cell(), self.rules.view_half_height, self.rules.view_half_width)

    def is_interactive(self, coord: CellCoord) -> bool:
        return self.view.is_interactive(coord, self.player_cell(), self.rules.interaction_radius)

    def cells_in_window(self, window: CellWindow | None = None) -> list[VisibleCell]:
        target = window if window is not None else self.visible_window()
        return self.view.cells_in_window(target, self.player_cell(), self.rules.interaction_radius)

    def status_text(self) -> str:
        holding = (
            f"Holding token: {self.state.held_token}"
            if self.state.held_token is not None
            else "Holding: (empty)"
        )
        if self.state.has_won:
            return f"VICTORY! You crafted a token worth {self.state.held_token}!\n{holding}"
        return holding

    # -- modules and command queue ----------------------------------------

    def get_module(self, module_name: str) -> GameModule | None:
        for module in self.modules:
            if module.name == module_name:
                return module
        return None

    def register_module(self, module: GameModule) -> None:
        if self.get_module(module.name) is not None:
            raise ValueError(f"duplicate module name: {module.name}")
        self.modules.append(module)
        module.on_registered(self)

    def append_command(self, command: GameCommand | dict[str, Any]) -> None:
        normalized = command if isinstance(command, GameCommand) else GameCommand.from_dict(command)
        self._pending_commands.append(normalized)

    def pending_commands(self) -> list[GameCommand]:
        return list(self._pending_commands)

    def discard_commands(self, source: str) -> int:
        kept = [command for command in self._pending_commands if command.source != source]
        dropped = len(self._pending_commands) - len(kept)
        self._pending_commands.clear()
        self._pending_commands.extend(kept)
        return dropped

    def process_commands(self) -> list[ActionOutcome]:
        outcomes: list[ActionOutcome] = []
        while self._pending_commands:
            outcomes.append(self.execute(self._pending_commands.popleft()))
        return outcomes

    def execute(self, command: GameCommand) -> ActionOutcome:
        try:
            outcome = self._execute_command(command)
        except (KeyError, TypeError, ValueError) as exc:
            outcome = ActionOutcome(
                action=command.command_type,
                outcome=OUTCOME_INVALID_COMMAND,
                message=f"invalid {command.command_type} command: {exc}",
                held_token=self.state.held_token,
            )
        self.recent_outcomes.append(outcome)
        return outcome

    def _execute_command(self, command: GameCommand) -> ActionOutcome:
        params = command.params
        command_type = command.command_type
        if command_type == "step":
            return self._move_by(int(params.get("di", 0)), int(params.get("dj", 0)))
        if command_type == "move_to":
            return self._move_to(GeoPoint(lat=float(params["lat"]), lng=float(params["lng"])))
        if command_type == "reset_position":
            return self._apply_position(self.rules.origin, action="reset_position")
        if command_type == "click_cell":
            return self._click_cell(CellCoord(int(params["i"]), int(params["j"])))
        if command_type == "pickup":
            return self._pickup(CellCoord(int(params["i"]), int(params["j"])))
        if command_type == "craft":
            return self._craft(CellCoord(int(params["i"]), int(params["j"])))
        if command_type == "inspect_cell":
            return self._inspect_cell(CellCoord(int(params["i"]), int(params["j"])))
        if command_type == "new_game":
            return self._new_game()
        if command_type == "set_movement_mode":
            return self._set_movement_mode(str(params["mode"]))

        for module in self.modules:
            handled = module.on_command(self, command)
            if handled is not None:
                return handled

        return ActionOutcome(
            action=command_type,
            outcome=OUTCOME_UNKNOWN_COMMAND,
            message=f"unknown command: {command_type}",
            held_token=self.state.held_token,
        )

    # -- public action API -------------------------------------------------

    def move_by(self, di: int, dj: int) -> ActionOutcome:
        return self.execute(GameCommand("step", {"di": di, "dj": dj}))

    def step(self, direction: str) -> ActionOutcome:
        if direction not in DIRECTION_STEPS:
            raise ValueError(f"unknown direction: {direction}")
        di, dj = DIRECTION_STEPS[direction]
        return self.move_by(di, dj)

    def move_to(self, point: GeoPoint) -> ActionOutcome:
        return self.execute(GameCommand("move_to", {"lat": point.lat, "lng": point.lng}))

    def reset_position(self) -> ActionOutcome:
        return self.execute(GameCommand("reset_position"))

    def click_cell(self, coord: CellCoord) -> ActionOutcome:
        return self.execute(GameCommand("click_cell", coord.to_dict()))

    def pickup(self, coord: CellCoord) -> ActionOutcome:
        return self.execute(GameCommand("pickup", coord.to_dict()))

    def craft(self, coord: CellCoord) -> ActionOutcome:
        return self.execute(GameCommand("craft", coord.to_dict()))

    def inspect_cell(self, coord: CellCoord) -> ActionOutcome:
        return self.execute(GameCommand("inspect_cell", coord.to_dict()))

    def new_game(self) -> ActionOutcome:
        return self.execute(GameCommand("new_game"))

    def set_movement_mode(self, mode: str) -> ActionOutcome:
        return self.execute(GameCommand("set_movement_mode", {"mode": mode}))

    # -- transitions -------------------------------------------------------

    def _won_outcome(self, action: str, coord: CellCoord | None = None) -> ActionOutcome:
        return ActionOutcome(
            action=action,
            outcome=OUTCOME_GAME_WON,
            message=f"The game is won ({self.state.held_token}). Start a new game to keep playing.",
            coord=coord,
            held_token=self.state.held_token,
        )

    def _move_by(self, di: int, dj: int) -> ActionOutcome:
        cell_degrees = self.rules.cell_degrees
        return self._apply_position(self.state.player.offset(di * cell_degrees, dj * cell_degrees), action="step")

    def _move_to(self, point: GeoPoint) -> ActionOutcome:
        return self._apply_position(point, action="move_to")

    def _apply_position(self, point: GeoPoint, *, action: str) -> ActionOutcome:
        if self.state.has_won:
            return self._won_outcome(action)
        self.state.player = point
        if self.rules.overlay_policy == OVERLAY_POLICY_MEMORYLESS:
            evicted = self.overlay.evict_outside(self.visible_window().expanded(MEMORYLESS_EVICTION_MARGIN))
            if evicted:
                logger.debug("evicted %d overlay entries outside the visible window", evicted)
        self._save()
        cell = self.player_cell()
        return ActionOutcome(
            action=action,
            outcome=OUTCOME_MOVED,
            message=f"Moved to cell {cell.to_key()}",
            coord=cell,
            held_token=self.state.held_token,
        )

    def _out_of_range(self, action: str, coord: CellCoord) -> ActionOutcome:
        state = self.view.effective_state(coord)
        return ActionOutcome(
            action=action,
            outcome=OUTCOME_OUT_OF_RANGE,
            message=f"{_describe_cell(coord, has_token=state.has_token, value=state.value)} (Too far)",
            coord=coord,
            held_token=self.state.held_token,
        )

    def _click_cell(self, coord: CellCoord) -> ActionOutcome:
        if self.state.has_won:
            return self._won_outcome("click_cell", coord)
        if not self.is_interactive(coord):
            return self._out_of_range("click_cell", coord)
        if self.state.held_token is None:
            return self._pickup(coord)
        return self._craft(coord)

    def _pickup(self, coord: CellCoord) -> ActionOutcome:
        if self.state.has_won:
            return self._won_outcome("pickup", coord)
        if not self.is_interactive(coord):
            return self._out_of_range("pickup", coord)
        if self.state.held_token is not None:
            return ActionOutcome(
                action="pickup",
                outcome=OUTCOME_ALREADY_HOLDING,
                message=f"You are already holding a token ({self.state.held_token}).",
                coord=coord,
                held_token=self.state.held_token,
            )
        state = self.view.effective_state(coord)
        if not state.has_token:
            return ActionOutcome(
                action="pickup",
                outcome=OUTCOME_NO_TOKEN,
                message=f"Cell {coord.to_key()} has no token to pick up.",
                coord=coord,
                held_token=None,
            )
        self.overlay.set(coord, EMPTY_CELL)
        self.state.held_token = state.value
        won = self._check_win()
        self._save()
        message = f"Cell {coord.to_key()}: Picked up token: {state.value}"
        return ActionOutcome(
            action="pickup",
            outcome=OUTCOME_WON if won else OUTCOME_PICKED_UP,
            message=f"{message}\n{self.status_text()}" if won else message,
            coord=coord,
            held_token=self.state.held_token,
        )

    def _craft(self, coord: CellCoord) -> ActionOutcome:
        if self.state.has_won:
            return self._won_outcome("craft", coord)
        if not self.is_interactive(coord):
            return self._out_of_range("craft", coord)
        held = self.state.held_token
        if held is None:
            return ActionOutcome(
                action="craft",
                outcome=OUTCOME_NOT_HOLDING,
                message="You need to hold a token before crafting.",
                coord=coord,
                held_token=None,
            )
        state = self.view.effective_state(coord)
        if not state.has_token or state.value != held:
            return ActionOutcome(
                action="craft",
                outcome=OUTCOME_CRAFT_MISMATCH,
                message=(
                    f"{_describe_cell(coord, has_token=state.has_token, value=state.value)}. "
                    f"You are holding a token ({held}). To craft, click a cell with an equal token."
                ),
                coord=coord,
                held_token=held,
            )
        crafted = held * 2
        self.overlay.set(coord, EMPTY_CELL)
        self.state.held_token = crafted
        won = self._check_win()
        self._save()
        message = f"Cell {coord.to_key()}: Combined and consumed, you now hold: {crafted}"
        return ActionOutcome(
            action="craft",
            outcome=OUTCOME_WON if won else OUTCOME_CRAFTED,
            message=f"{message}\n{self.status_text()}" if won else message,
            coord=coord,
            held_token=crafted,
        )

    def _inspect_cell(self, coord: CellCoord) -> ActionOutcome:
        state = self.view.effective_state(coord)
        reach = "Within interaction range" if self.is_interactive(coord) else "Too far"
        return ActionOutcome(
            action="inspect_cell",
            outcome=OUTCOME_INSPECTED,
            message=f"{_describe_cell(coord, has_token=state.has_token, value=state.value)} ({reach})",
            coord=coord,
            held_token=self.state.held_token,
        )

    def _check_win(self) -> bool:
        held = self.state.held_token
        if self.state.has_won or held is None or held < self.rules.win_threshold:
            return False
        self.state.has_won = True
        logger.info("win threshold %d reached with token %d", self.rules.win_threshold, held)
        return True

    def _new_game(self) -> ActionOutcome:
        self.overlay.clear()
        self.state = GameState.initial(self.rules, movement_mode=self.state.movement_mode)
        for module in self.modules:
            module.on_new_game(self)
        self._save()
        return ActionOutcome(
            action="new_game",
            outcome=OUTCOME_NEW_GAME,
            message="New game started at the origin.",
            coord=self.player_cell(),
            held_token=None,
        )

    def _set_movement_mode(self, mode: str) -> ActionOutcome:
        if mode not in MOVEMENT_MODES:
            raise ValueError(f"invalid movement mode: {mode}")
        self.state = replace(self.state, movement_mode=mode)
        self._save()
        return ActionOutcome(
            action="set_movement_mode",
            outcome=OUTCOME_MODE_CHANGED,
            message=f"Movement mode: {mode}",
            held_token=self.state.held_token,
        )

    def _save(self) -> None:
        if self.persistence is None:
            return
        try:
            self.persistence.save(self)
        except (OSError, ValueError) as exc:
            self.last_save_error = str(exc)
            logger.warning("save failed, keeping in-memory state: %s", exc)
            return
        self.last_save_error = None
