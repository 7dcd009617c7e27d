# trustgraph/graph/store.py
"""
Graph state store.

Single writer for one exploration session. All mutation goes through
dispatch(); commands are queued FIFO and applied one at a time, so two
merges never interleave regardless of how many tasks or threads submit
them. Readers get immutable GraphState snapshots.
"""

import threading
from collections import deque
from typing import Deque, Optional

from ..logging import get_logger
from .commands import Command, GraphState, SetRoot, apply
from .models import GraphNode

logger = get_logger(__name__)


class GraphStateStore:
    """
    Owner of one session's graph state.

    Multiple sessions use multiple stores; there is no module-level instance.
    """

    def __init__(self, initial: Optional[GraphState] = None):
        self._state = initial or GraphState()
        self._queue: Deque[Command] = deque()
        self._lock = threading.Lock()
        self._draining = False

    @property
    def state(self) -> GraphState:
        """Latest applied state."""
        return self._state

    @property
    def generation(self) -> int:
        """Bumped on every root change; used to detect abandoned work."""
        return self._state.generation

    def is_current(self, generation: int) -> bool:
        return generation == self._state.generation

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        return self._state.nodes.get(node_id)

    def is_expanded(self, node_id: str) -> bool:
        return node_id in self._state.expanded

    def dispatch(self, command: Command) -> GraphState:
        """
        Queue a command and drain the queue.

        If another caller is already draining, the command is applied by that
        caller and this call returns without waiting.

        Returns:
            State after draining (or the current state if another caller drains)
        """
        with self._lock:
            self._queue.append(command)
            if self._draining:
                return self._state
            self._draining = True

        try:
            while True:
                with self._lock:
                    if not self._queue:
                        self._draining = False
                        return self._state
                    next_command = self._queue.popleft()
                self._state = apply(self._state, next_command)
                if isinstance(next_command, SetRoot):
                    logger.info(
                        "graph_root_set",
                        root=next_command.root.id[:8],
                        generation=self._state.generation,
                    )
        except Exception:
            with self._lock:
                self._queue.clear()
                self._draining = False
            raise
