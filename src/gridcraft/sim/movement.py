from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from gridcraft.sim.core import (
    MOVEMENT_MODE_CONTINUOUS,
    MOVEMENT_MODE_DISCRETE,
    MOVEMENT_MODES,
    ActionOutcome,
    Game,
    GameCommand,
)
from gridcraft.sim.location import GeoPoint
from gridcraft.sim.rules import GameModule

logger = logging.getLogger(__name__)

MIN_FEED_CHANGE_DEGREES = 1e-5
CONTINUOUS_SOURCE_ID = "continuous_feed"
MOVEMENT_FALLBACK_COMMAND = "movement_fallback"
OUTCOME_FEED_UNAVAILABLE = "feed_unavailable"

SampleListener = Callable[["PositionSample"], None]
ErrorListener = Callable[[Exception], None]


class PositionFeedUnavailable(RuntimeError):
    """Raised when an external position feed cannot be subscribed to."""


@dataclass(frozen=True)
class PositionSample:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        self.to_point()

    def to_point(self) -> GeoPoint:
        return GeoPoint(lat=self.latitude, lng=self.longitude)

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PositionSample":
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


class PositionFeed(Protocol):
    def subscribe(self, on_sample: SampleListener, on_error: ErrorListener) -> Callable[[], None]:
        """Start delivering samples; returns a callable that unsubscribes."""


class ScriptedPositionFeed:
    """In-process feed driven by explicit pushes or a recorded track."""

    def __init__(self, samples: Sequence[PositionSample] = (), *, available: bool = True) -> None:
        self.available = available
        self._track = list(samples)
        self._cursor = 0
        self._next_token = 1
        self._listeners: dict[int, tuple[SampleListener, ErrorListener]] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, on_sample: SampleListener, on_error: ErrorListener) -> Callable[[], None]:
        if not self.available:
            raise PositionFeedUnavailable("position feed is not available")
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = (on_sample, on_error)

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def push(self, sample: PositionSample) -> None:
        for on_sample, _ in list(self._listeners.values()):
            on_sample(sample)

    def fail(self, error: Exception) -> None:
        for _, on_error in list(self._listeners.values()):
            on_error(error)

    def emit_next(self) -> bool:
        if self._cursor >= len(self._track):
            return False
        sample = self._track[self._cursor]
        self._cursor += 1
        self.push(sample)
        return True


def load_position_track_json(path: str | Path) -> list[PositionSample]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("position track must be a list of samples")
    samples: list[PositionSample] = []
    for index, row in enumerate(payload):
        if not isinstance(row, dict):
            raise ValueError(f"position track[{index}] must be an object")
        samples.append(PositionSample.from_dict(row))
    return samples


class DiscreteStepSource:
    """Button-style movement: each command moves one cell immediately."""

    mode = MOVEMENT_MODE_DISCRETE

    def __init__(self, game: Game) -> None:
        self.game = game
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        self._active = True

    def stop(self) -> None:
        self._active = False

    def _apply(self, command: GameCommand) -> ActionOutcome | None:
        if not self._active:
            return None
        return self.game.execute(command)

    def north(self) -> ActionOutcome | None:
        return self._apply(GameCommand("step", {"di": 1, "dj": 0}))

    def south(self) -> ActionOutcome | None:
        return self._apply(GameCommand("step", {"di": -1, "dj": 0}))

    def east(self) -> ActionOutcome | None:
        return self._apply(GameCommand("step", {"di": 0, "dj": 1}))

    def west(self) -> ActionOutcome | None:
        return self._apply(GameCommand("step", {"di": 0, "dj": -1}))

    def reset(self) -> ActionOutcome | None:
        return self._apply(GameCommand("reset_position"))


class ContinuousFeedSource:
    """Feeds absolute positions from an external stream into the game queue.

    Samples are only queued; the owner drains them with
    ``Game.process_commands`` on its own loop.
    """

    mode = MOVEMENT_MODE_CONTINUOUS

    def __init__(
        self,
        game: Game,
        feed: PositionFeed,
        *,
        min_change_degrees: float = MIN_FEED_CHANGE_DEGREES,
    ) -> None:
        if min_change_degrees < 0:
            raise ValueError("min_change_degrees must be >= 0")
        self.game = game
        self.feed = feed
        self.min_change_degrees = min_change_degrees
        self.dropped_samples = 0
        self._active = False
        self._unsubscribe: Callable[[], None] | None = None
        self._last_applied: GeoPoint | None = None

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._active:
            return
        self._unsubscribe = self.feed.subscribe(self._on_sample, self._on_error)
        self.rebase()
        self._active = True

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        dropped = self.game.discard_commands(CONTINUOUS_SOURCE_ID)
        if dropped:
            logger.debug("discarded %d queued feed commands on stop", dropped)

    def rebase(self) -> None:
        """Measure the next sample against the player's current position."""
        self._last_applied = self.game.state.player

    def _is_significant(self, point: GeoPoint) -> bool:
        if self._last_applied is None:
            return True
        change = max(abs(point.lat - self._last_applied.lat), abs(point.lng - self._last_applied.lng))
        return change >= self.min_change_degrees

    def _on_sample(self, sample: PositionSample) -> None:
        if not self._active:
            return
        point = sample.to_point()
        if not self._is_significant(point):
            self.dropped_samples += 1
            return
        self._last_applied = point
        self.game.append_command(
            GameCommand("move_to", {"lat": point.lat, "lng": point.lng}, source=CONTINUOUS_SOURCE_ID)
        )

    def _on_error(self, error: Exception) -> None:
        if not self._active:
            return
        self.game.append_command(
            GameCommand(MOVEMENT_FALLBACK_COMMAND, {"reason": str(error)}, source=CONTINUOUS_SOURCE_ID)
        )


class MovementController(GameModule):
    """Keeps at most one movement source active and handles feed fallback."""

    name = "movement"

    def __init__(self, feed: PositionFeed | None = None, *, min_change_degrees: float = MIN_FEED_CHANGE_DEGREES) -> None:
        self.feed = feed
        self.min_change_degrees = min_change_degrees
        self.notice: str | None = None
        self._game: Game | None = None
        self.discrete: DiscreteStepSource | None = None
        self.continuous: ContinuousFeedSource | None = None

    def on_registered(self, game: Game) -> None:
        self._game = game
        self.discrete = DiscreteStepSource(game)
        if self.feed is not None:
            self.continuous = ContinuousFeedSource(game, self.feed, min_change_degrees=self.min_change_degrees)

    def _require_game(self) -> Game:
        if self._game is None:
            raise ValueError("movement controller is not registered on a game")
        return self._game

    def _require_discrete(self) -> DiscreteStepSource:
        if self.discrete is None:
            raise ValueError("movement controller is not registered on a game")
        return self.discrete

    @property
    def active_source(self) -> DiscreteStepSource | ContinuousFeedSource | None:
        for source in (self.discrete, self.continuous):
            if source is not None and source.active:
                return source
        return None

    def start(self) -> ActionOutcome:
        """Activate the source matching the game's stored movement mode."""
        return self.switch_mode(self._require_game().state.movement_mode)

    def stop(self) -> None:
        for source in (self.discrete, self.continuous):
            if source is not None:
                source.stop()

    def switch_mode(self, mode: str) -> ActionOutcome:
        game = self._require_game()
        if mode not in MOVEMENT_MODES:
            raise ValueError(f"invalid movement mode: {mode}")
        self.stop()
        if mode == MOVEMENT_MODE_CONTINUOUS:
            if self.continuous is None:
                return self._fall_back("no position feed configured")
            try:
                self.continuous.start()
            except Exception as exc:
                return self._fall_back(str(exc))
        else:
            self._require_discrete().start()
        self.notice = None
        return game.set_movement_mode(mode)

    def toggle_mode(self) -> ActionOutcome:
        current = self._require_game().state.movement_mode
        target = MOVEMENT_MODE_DISCRETE if current == MOVEMENT_MODE_CONTINUOUS else MOVEMENT_MODE_CONTINUOUS
        return self.switch_mode(target)

    def _fall_back(self, reason: str) -> ActionOutcome:
        game = self._require_game()
        self.stop()
        self._require_discrete().start()
        game.set_movement_mode(MOVEMENT_MODE_DISCRETE)
        self.notice = f"Position feed unavailable ({reason}); switched to discrete movement."
        logger.warning("position feed fallback: %s", reason)
        return ActionOutcome(
            action=MOVEMENT_FALLBACK_COMMAND,
            outcome=OUTCOME_FEED_UNAVAILABLE,
            message=self.notice,
            held_token=game.state.held_token,
        )

    def on_new_game(self, game: Game) -> None:
        if self.continuous is not None and self.continuous.active:
            self.continuous.rebase()

    def on_command(self, game: Game, command: GameCommand) -> ActionOutcome | None:
        if command.command_type != MOVEMENT_FALLBACK_COMMAND:
            return None
        return self._fall_back(str(command.params.get("reason", "unknown error")))
