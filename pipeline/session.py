"""
Report session context.

Holds the state that outlives a single call but belongs to one report selection: the
identity alias table, the shared query cache and a generation counter. Each new build
calls begin(), which resets the alias table and invalidates any build still in flight.
"""
import threading
from typing import Optional

from normalize.identity import IdentityResolver
from storage.cache import BoundedCache


class ReportSession:
    def __init__(self, cache: Optional[BoundedCache] = None, resolver: Optional[IdentityResolver] = None):
        self.cache = cache
        self.resolver = resolver or IdentityResolver()
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self) -> int:
        """Start a new report session: reset aliases and return the new generation."""
        with self._lock:
            self._generation += 1
            self.resolver.reset()
            return self._generation

    def invalidate(self) -> int:
        """Make every in-flight build stale without starting a new one."""
        with self._lock:
            self._generation += 1
            return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation
