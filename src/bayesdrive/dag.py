from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import networkx as nx
import numpy as np
import pandas as pd

from bayesdrive.errors import DagError
from bayesdrive.summary import normal_quantile

logger = logging.getLogger(__name__)

_NODE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_ARROW = re.compile(r"\s*(->|<-)\s*")

EdgeKey = Union[str, Tuple[str, str]]


@dataclass(frozen=True)
class PathInfo:
    nodes: Tuple[str, ...]
    backdoor: bool
    open: bool

    def __str__(self) -> str:
        return " - ".join(self.nodes)


@dataclass(frozen=True)
class Independency:
    x: str
    y: str
    given: Tuple[str, ...] = ()

    def __str__(self) -> str:
        if not self.given:
            return f"{self.x} _||_ {self.y}"
        return f"{self.x} _||_ {self.y} | {', '.join(self.given)}"


class Dag:
    def __init__(self, graph: nx.DiGraph, latent: Iterable[str] = ()):
        if not nx.is_directed_acyclic_graph(graph):
            cycle = nx.find_cycle(graph)
            raise DagError(f"Graph contains a cycle: {' -> '.join(u for u, _ in cycle)}")
        self.graph = graph
        self.latent = frozenset(latent)
        unknown = self.latent - set(graph.nodes)
        if unknown:
            raise DagError(f"Latent nodes not in graph: {sorted(unknown)}")

    def __repr__(self) -> str:
        return f"Dag({self.to_text()!r})"

    @property
    def nodes(self) -> List[str]:
        return list(nx.topological_sort(self.graph))

    @property
    def edges(self) -> List[Tuple[str, str]]:
        return sorted(self.graph.edges)

    @property
    def observed(self) -> Set[str]:
        return set(self.graph.nodes) - self.latent

    def _check(self, *nodes: str) -> None:
        unknown = [n for n in nodes if n not in self.graph]
        if unknown:
            raise DagError(f"Unknown nodes: {unknown}")

    def parents(self, node: str) -> Set[str]:
        self._check(node)
        return set(self.graph.predecessors(node))

    def children(self, node: str) -> Set[str]:
        self._check(node)
        return set(self.graph.successors(node))

    def ancestors(self, node: str) -> Set[str]:
        self._check(node)
        return nx.ancestors(self.graph, node)

    def descendants(self, node: str) -> Set[str]:
        self._check(node)
        return nx.descendants(self.graph, node)

    def is_d_separated(self, x: str, y: str, given: Iterable[str] = ()) -> bool:
        given = set(given)
        self._check(x, y, *given)
        return nx.is_d_separator(self.graph, {x}, {y}, given)

    def _path_open(self, path: Sequence[str], given: Set[str]) -> bool:
        for prev, node, nxt in zip(path, path[1:], path[2:]):
            collider = self.graph.has_edge(prev, node) and self.graph.has_edge(nxt, node)
            if collider:
                if node not in given and not (nx.descendants(self.graph, node) & given):
                    return False
            elif node in given:
                return False
        return True

    def paths(self, x: str, y: str, given: Iterable[str] = ()) -> List[PathInfo]:
        """All paths between x and y ignoring direction, flagged backdoor/open."""
        given = set(given)
        self._check(x, y, *given)
        skeleton = self.graph.to_undirected(as_view=True)
        result = []
        for path in nx.all_simple_paths(skeleton, x, y):
            backdoor = self.graph.has_edge(path[1], path[0])
            result.append(PathInfo(tuple(path), backdoor, self._path_open(path, given)))
        return sorted(result, key=lambda p: (len(p.nodes), p.nodes))

    def to_text(self) -> str:
        lines = [f"{u} -> {v}" for u, v in self.edges]
        lines += sorted(n for n in self.graph.nodes if self.graph.degree(n) == 0)
        return "; ".join(lines)


def parse_dag(text: str, latent: Iterable[str] = ()) -> Dag:
    graph = nx.DiGraph()
    statements = [s.strip() for s in re.split(r"[;\n]", text) if s.strip()]
    if not statements:
        raise DagError("Empty DAG")
    for statement in statements:
        tokens = _ARROW.split(statement)
        names = tokens[0::2]
        arrows = tokens[1::2]
        for name in names:
            if not _NODE.match(name):
                raise DagError(f"Bad node name {name!r} in statement {statement!r}")
        for name in names:
            graph.add_node(name)
        for (left, right), arrow in zip(zip(names, names[1:]), arrows):
            if left == right:
                raise DagError(f"Self loop on {left!r}")
            if arrow == "->":
                graph.add_edge(left, right)
            else:
                graph.add_edge(right, left)
    return Dag(graph, latent=latent)


def _minimal_separators(
    graph: nx.DiGraph, x: str, y: str, candidates: Set[str], max_size: Optional[int] = None
) -> List[Tuple[str, ...]]:
    found: List[Set[str]] = []
    limit = len(candidates) if max_size is None else min(max_size, len(candidates))
    for size in range(limit + 1):
        for combo in combinations(sorted(candidates), size):
            chosen = set(combo)
            if any(f <= chosen for f in found):
                continue
            if nx.is_d_separator(graph, {x}, {y}, chosen):
                found.append(chosen)
    return [tuple(sorted(s)) for s in found]


def adjustment_sets(dag: Dag, exposure: str, outcome: str) -> List[Tuple[str, ...]]:
    dag._check(exposure, outcome)
    if exposure == outcome:
        raise DagError("Exposure and outcome must differ")
    candidates = dag.observed - {exposure, outcome} - dag.descendants(exposure)
    backdoor_graph = dag.graph.copy()
    backdoor_graph.remove_edges_from(list(dag.graph.out_edges(exposure)))
    sets = _minimal_separators(backdoor_graph, exposure, outcome, candidates)
    logger.debug("Adjustment sets for %s -> %s: %s", exposure, outcome, sets)
    return sorted(sets, key=lambda s: (len(s), s))


def implied_conditional_independencies(dag: Dag, max_size: Optional[int] = None) -> List[Independency]:
    result = []
    order = {n: i for i, n in enumerate(dag.nodes)}
    observed = sorted(dag.observed, key=order.get)
    for i, x in enumerate(observed):
        for y in observed[i + 1:]:
            if dag.graph.has_edge(x, y) or dag.graph.has_edge(y, x):
                continue
            sets = _minimal_separators(dag.graph, x, y, dag.observed - {x, y}, max_size)
            if not sets:
                continue
            smallest = min(len(s) for s in sets)
            for given in sets:
                if len(given) == smallest:
                    result.append(Independency(x, y, given))
    return result


def _residualize(values: np.ndarray, design: np.ndarray) -> np.ndarray:
    coef, *_ = np.linalg.lstsq(design, values, rcond=None)
    return values - design @ coef


def test_independencies(dag: Dag, df: pd.DataFrame, prob: float = 0.89) -> pd.DataFrame:
    missing = sorted(dag.observed - set(df.columns))
    if missing:
        raise DagError(f"DAG nodes missing from data: {missing}")
    z = normal_quantile(0.5 + prob / 2)
    rows = []
    for ind in implied_conditional_independencies(dag):
        cols = [ind.x, ind.y, *ind.given]
        data = df[cols].dropna().astype(float)
        n = len(data)
        design = np.column_stack([np.ones(n)] + [data[c].to_numpy() for c in ind.given])
        rx = _residualize(data[ind.x].to_numpy(), design)
        ry = _residualize(data[ind.y].to_numpy(), design)
        r = float(np.corrcoef(rx, ry)[0, 1])
        se = 1.0 / np.sqrt(max(n - len(ind.given) - 3, 1))
        centre = np.arctanh(np.clip(r, -0.999999, 0.999999))
        lower, upper = np.tanh(centre - z * se), np.tanh(centre + z * se)
        rows.append(
            {
                "independency": str(ind),
                "estimate": r,
                "lower": float(lower),
                "upper": float(upper),
                "consistent": bool(lower <= 0.0 <= upper),
            }
        )
    return pd.DataFrame(rows, columns=["independency", "estimate", "lower", "upper", "consistent"])


# pytest would otherwise collect the function above as a test
test_independencies.__test__ = False


def _edge_coefficient(coefs: Mapping[EdgeKey, float], parent: str, child: str) -> float:
    for key in ((parent, child), f"{parent}->{child}", f"{parent} -> {child}"):
        if key in coefs:
            return float(coefs[key])
    raise DagError(f"No coefficient for edge {parent} -> {child}")


def simulate_linear_gaussian(
    dag: Dag,
    coefs: Mapping[EdgeKey, float],
    n: int,
    noise_sd: Union[float, Mapping[str, float]] = 1.0,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    values: Dict[str, np.ndarray] = {}
    for node in dag.nodes:
        sd = noise_sd.get(node, 1.0) if isinstance(noise_sd, Mapping) else noise_sd
        x = rng.normal(0.0, sd, n)
        for parent in sorted(dag.graph.predecessors(node)):
            x = x + _edge_coefficient(coefs, parent, node) * values[parent]
        values[node] = x
    return pd.DataFrame(values)
