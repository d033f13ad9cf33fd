"""Pipeline graph operations.

This module provides graph-based operations over a workflow definition's
stage dependencies: adjacency lookups, cycle detection and a deterministic
topological order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar_pipelines.core.definition import WorkflowDefinition

__all__ = ["PipelineGraph"]


class PipelineGraph:
    """Dependency graph of a workflow's stages.

    Edges point from a dependency to its dependent. Dependencies that name an
    unknown stage are kept in :attr:`_dependencies` (so the validator can
    report them) but never appear in :attr:`_dependents`.

    Attributes:
        definition: The workflow definition this graph represents.
        _dependencies: Stage id to the ids it depends on, in declared order.
        _dependents: Stage id to the ids that depend on it, in declaration order.
        _position: Stage id to its index in the declaration order.
    """

    def __init__(self, definition: WorkflowDefinition) -> None:
        """Initialize a pipeline graph from a definition.

        Args:
            definition: The workflow definition to represent as a graph.
        """
        self.definition = definition
        self._dependencies: dict[str, list[str]] = {}
        self._dependents: dict[str, list[str]] = {}
        self._position: dict[str, int] = {}
        self._build_adjacency()

    def _build_adjacency(self) -> None:
        """Build adjacency lists from stage dependencies."""
        for index, stage in enumerate(self.definition.stages):
            # First declaration wins for duplicate ids; the validator rejects them anyway.
            if stage.id in self._position:
                continue
            self._position[stage.id] = index
            self._dependencies[stage.id] = list(stage.dependencies)
            self._dependents.setdefault(stage.id, [])

        for stage_id, dependencies in self._dependencies.items():
            for dependency in dependencies:
                if dependency in self._dependents and stage_id not in self._dependents[dependency]:
                    self._dependents[dependency].append(stage_id)

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> PipelineGraph:
        """Create a pipeline graph from a definition.

        Example:
            >>> graph = PipelineGraph.from_definition(my_definition)
        """
        return cls(definition)

    @property
    def stage_ids(self) -> list[str]:
        """Unique stage ids in declaration order."""
        return list(self._position)

    def position(self, stage_id: str) -> int:
        """Index of the stage in the declaration order."""
        return self._position[stage_id]

    def get_dependencies(self, stage_id: str) -> list[str]:
        """Stages ``stage_id`` depends on, as declared."""
        return list(self._dependencies.get(stage_id, []))

    def get_dependents(self, stage_id: str) -> list[str]:
        """Stages that declare a dependency on ``stage_id``."""
        return list(self._dependents.get(stage_id, []))

    def get_roots(self) -> list[str]:
        """Stages without dependencies."""
        return [stage_id for stage_id, deps in self._dependencies.items() if not deps]

    def get_leaves(self) -> list[str]:
        """Stages nothing depends on."""
        return [stage_id for stage_id, dependents in self._dependents.items() if not dependents]

    def find_cycle(self, *, include_self_loops: bool = True) -> list[str] | None:
        """Find a dependency cycle.

        Depth-first search over dependency edges keeping the current recursion
        stack; reaching a stage that is still on the stack is a back edge.

        Args:
            include_self_loops: Whether a stage depending on itself counts.
                Without them a longer cycle elsewhere is still found.

        Returns:
            The cycle as a list of stage ids, first id repeated at the end,
            or None if the graph is acyclic.

        Example:
            >>> graph.find_cycle()
            ['a', 'c', 'b', 'a']
        """
        visited: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(stage_id: str) -> list[str] | None:
            visited.add(stage_id)
            stack.append(stage_id)
            on_stack.add(stage_id)

            for dependency in self._dependencies.get(stage_id, []):
                if dependency not in self._dependencies or (dependency == stage_id and not include_self_loops):
                    continue
                if dependency in on_stack:
                    return [*stack[stack.index(dependency) :], dependency]
                if dependency not in visited:
                    cycle = visit(dependency)
                    if cycle:
                        return cycle

            stack.pop()
            on_stack.discard(stage_id)
            return None

        for stage_id in self._dependencies:
            if stage_id not in visited:
                cycle = visit(stage_id)
                if cycle:
                    return cycle
        return None

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def topological_order(self) -> list[str]:
        """Stage ids ordered so every stage follows all of its dependencies.

        DFS post-order visiting dependencies first, starting from stages in
        declaration order, so the result is reproducible for a given
        definition. Unknown dependencies are ignored.

        Returns:
            Stage ids in execution order.

        Example:
            >>> PipelineGraph(definition).topological_order()
            ['extract', 'clean', 'load']
        """
        order: list[str] = []
        visited: set[str] = set()

        def visit(stage_id: str) -> None:
            if stage_id in visited or stage_id not in self._dependencies:
                return
            visited.add(stage_id)
            for dependency in self._dependencies[stage_id]:
                visit(dependency)
            order.append(stage_id)

        for stage_id in self._dependencies:
            visit(stage_id)
        return order

    def get_stage_depth(self, stage_id: str) -> int:
        """Length of the longest dependency chain leading to ``stage_id``.

        Roots have depth 0. Returns -1 for unknown stages.
        """
        if stage_id not in self._dependencies:
            return -1

        depths: dict[str, int] = {}
        for current in self.topological_order():
            known = [depths[dep] for dep in self._dependencies[current] if dep in depths]
            depths[current] = max(known) + 1 if known else 0
        return depths[stage_id]
