"""
Build state machine and progress notifications.

One report build moves Idle -> Collecting -> (Enriching) -> Done; a fatal error moves
it to Failed, which surfaces the error and returns to Idle. Progress listeners receive a
ProgressEvent after every step and None once the build is over ("no progress").
"""
import logging
from enum import Enum
from typing import Callable, Iterable, Iterator, List, Optional, Any, Tuple

from errors import InvalidTransition
from normalize.models import ProgressEvent

logger = logging.getLogger(__name__)

LABEL_COLLECTING = 'Aggregating contributions'
LABEL_ENRICHING = 'Counting tasks'


class BuildState(str, Enum):
    IDLE = 'idle'
    COLLECTING = 'collecting'
    ENRICHING = 'enriching'
    DONE = 'done'
    FAILED = 'failed'


TRANSITIONS = {
    BuildState.IDLE: {BuildState.COLLECTING},
    BuildState.COLLECTING: {BuildState.ENRICHING, BuildState.DONE, BuildState.FAILED, BuildState.IDLE},
    BuildState.ENRICHING: {BuildState.DONE, BuildState.FAILED, BuildState.IDLE},
    BuildState.DONE: {BuildState.IDLE, BuildState.COLLECTING},
    BuildState.FAILED: {BuildState.IDLE},
}

ProgressCallback = Callable[[Optional[ProgressEvent]], None]


class ProgressReporter:
    def __init__(self):
        self.state = BuildState.IDLE
        self.current: Optional[ProgressEvent] = None
        self._listeners: List[ProgressCallback] = []
        self._state_listeners: List[Callable[[BuildState], None]] = []

    def on_progress(self, callback: ProgressCallback):
        self._listeners.append(callback)

    def on_state(self, callback: Callable[[BuildState], None]):
        self._state_listeners.append(callback)

    def _notify(self, event: Optional[ProgressEvent]):
        self.current = event
        for cb in list(self._listeners):
            cb(event)

    def emit(self, label: str, processed: int, total: int):
        self._notify(ProgressEvent(label, min(processed, total), total))

    def clear(self):
        self._notify(None)

    def transition(self, state: BuildState):
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"cannot move from {self.state.value} to {state.value}")
        logger.debug("build state %s -> %s", self.state.value, state.value)
        self.state = state
        for cb in list(self._state_listeners):
            cb(state)

    def drive(self, steps: Iterable[Any], label: str, total: int, processed: int = 0,
              guard: Optional[Callable[[], None]] = None) -> Iterator[Tuple[Any, Any]]:
        """
        The single driver loop: run each step in order, yield (step, result) and emit progress
        after it. `guard` runs before and after every step and may raise to stop the loop;
        a result produced after the guard trips is dropped.
        """
        for step in steps:
            if guard is not None:
                guard()
            result = step.run()
            if guard is not None:
                guard()
            processed += 1
            self.emit(label, processed, max(total, processed))
            yield step, result


__all__ = ["BuildState", "ProgressReporter", "TRANSITIONS", "LABEL_COLLECTING", "LABEL_ENRICHING"]
