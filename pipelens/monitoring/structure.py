"""
Structural analysis of pipeline definitions.

A definition is turned into a networkx directed graph which gives the
complexity score used by the health scorer and the parallel step groups used
by the bottleneck analyzer.
"""

from typing import Dict, List, Optional, Protocol

import networkx as nx
import structlog

from .exceptions import InvalidPipelineStructureError
from .models import PipelineDefinition, PipelineRun

logger = structlog.get_logger()

DEFAULT_COMPLEXITY = 3

# Upper bounds of structural size for complexity scores 1-4; larger is 5.
_COMPLEXITY_BOUNDS = (3, 7, 15, 30)


def complexity_for_size(size: int) -> int:
    """Map a structural size onto a 1-5 complexity score."""
    for score, bound in enumerate(_COMPLEXITY_BOUNDS, start=1):
        if size <= bound:
            return score
    return len(_COMPLEXITY_BOUNDS) + 1


def complexity_from_run(run: Optional[PipelineRun]) -> int:
    """Estimate complexity from the distinct steps of a run."""
    if run is None or not run.steps:
        return DEFAULT_COMPLEXITY
    return complexity_for_size(len({step.step_id for step in run.steps}))


def build_graph(definition: PipelineDefinition) -> nx.DiGraph:
    """
    Build a directed graph from a pipeline definition.

    Raises:
        InvalidPipelineStructureError: If an edge references an unknown step
            or the edges form a cycle
    """
    graph = nx.DiGraph()
    for step in definition.steps:
        graph.add_node(step.id, name=step.name, type=step.type)

    for edge in definition.edges:
        missing = [s for s in (edge.source, edge.target) if s not in graph]
        if missing:
            raise InvalidPipelineStructureError(
                f"Edge {edge.source} -> {edge.target} references unknown step(s): "
                f"{', '.join(missing)}"
            )
        graph.add_edge(edge.source, edge.target)

    if not nx.is_directed_acyclic_graph(graph):
        cycle = [source for source, _ in nx.find_cycle(graph)]
        raise InvalidPipelineStructureError(
            f"Circular dependency detected in pipeline {definition.id}",
            cycle_path=cycle,
        )
    return graph


class PipelineStructure:
    """Graph view over a validated pipeline definition."""

    def __init__(self, definition: PipelineDefinition):
        self.definition = definition
        self.graph = build_graph(definition)

    @property
    def branch_count(self) -> int:
        """Number of steps that fan out to more than one successor."""
        return sum(1 for node in self.graph.nodes if self.graph.out_degree(node) > 1)

    @property
    def size(self) -> int:
        return self.graph.number_of_nodes() + 2 * self.branch_count

    @property
    def complexity_score(self) -> int:
        return complexity_for_size(self.size)

    def execution_levels(self) -> List[List[str]]:
        """Steps grouped by the earliest point they can run."""
        return [sorted(level) for level in nx.topological_generations(self.graph)]

    def parallel_groups(self) -> List[List[str]]:
        """Levels holding more than one step."""
        return [level for level in self.execution_levels() if len(level) > 1]

    def parallel_siblings(self, step_id: str) -> List[str]:
        """Other steps that could run alongside ``step_id``."""
        for level in self.execution_levels():
            if step_id in level:
                return [s for s in level if s != step_id]
        return []


class PipelineDefinitionProvider(Protocol):
    """Source of pipeline definitions."""

    def get_definition(self, pipeline_id: str) -> Optional[PipelineDefinition]:
        ...


class InMemoryDefinitionProvider:
    """Keeps validated definitions in a dict."""

    def __init__(self):
        self._definitions: Dict[str, PipelineDefinition] = {}
        self.logger = logger.bind(component="definition_provider")

    def register(self, definition: PipelineDefinition) -> PipelineStructure:
        structure = PipelineStructure(definition)
        self._definitions[definition.id] = definition
        self.logger.info(
            "Pipeline definition registered",
            pipeline_id=definition.id,
            steps=len(definition.steps),
            complexity=structure.complexity_score,
        )
        return structure

    def get_definition(self, pipeline_id: str) -> Optional[PipelineDefinition]:
        return self._definitions.get(pipeline_id)


def fetch_definition(
    provider: Optional[PipelineDefinitionProvider], pipeline_id: str
) -> Optional[PipelineDefinition]:
    """Look up a definition, treating a failing provider as having none."""
    if provider is None:
        return None
    try:
        return provider.get_definition(pipeline_id)
    except Exception as e:
        logger.warning(
            "Definition provider failed",
            pipeline_id=pipeline_id,
            error=str(e),
        )
        return None
