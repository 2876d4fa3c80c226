"""Tests for DAG parsing and the graphical queries used to pick regressions."""

from __future__ import annotations

import numpy as np
import pytest

from bayesdrive import dag as dags
from bayesdrive.errors import DagError


def test_parse_chains_and_reverse_arrows():
    dag = dags.parse_dag("A -> B -> C\nD <- C; E")
    assert dag.edges == [("A", "B"), ("B", "C"), ("C", "D")]
    assert "E" in dag.nodes
    assert dag.parents("C") == {"B"}
    assert dag.children("C") == {"D"}
    assert dag.ancestors("D") == {"A", "B", "C"}
    assert dag.descendants("A") == {"B", "C", "D"}


@pytest.mark.parametrize("text", ["", "A -> B; B -> A", "A -> 1B", "A -> A", "A -> -> B"])
def test_parse_rejects_bad_graphs(text):
    with pytest.raises(DagError):
        dags.parse_dag(text)


def test_unknown_node_queries():
    dag = dags.parse_dag("X -> Y")
    with pytest.raises(DagError):
        dag.parents("Z")
    with pytest.raises(DagError):
        dags.adjustment_sets(dag, "X", "Z")


def test_fork_needs_the_common_cause():
    dag = dags.parse_dag("Z -> X; Z -> Y; X -> Y")
    assert dags.adjustment_sets(dag, "X", "Y") == [("Z",)]


def test_pipe_and_collider_need_nothing():
    pipe = dags.parse_dag("X -> M -> Y")
    assert dags.adjustment_sets(pipe, "X", "Y") == [()]
    collider = dags.parse_dag("X -> Y; X -> C; Y -> C")
    assert dags.adjustment_sets(collider, "X", "Y") == [()]


def test_alternative_minimal_sets():
    dag = dags.parse_dag("A -> X; A -> B; B -> Y; X -> Y")
    assert dags.adjustment_sets(dag, "X", "Y") == [("A",), ("B",)]


def test_unobserved_confounder_has_no_adjustment_set():
    dag = dags.parse_dag("U -> X; U -> Y; X -> Y", latent=["U"])
    assert dags.adjustment_sets(dag, "X", "Y") == []


def test_paths_flag_backdoors_and_openness():
    dag = dags.parse_dag("Z -> X; Z -> Y; X -> Y")
    paths = dag.paths("X", "Y")
    assert [p.nodes for p in paths] == [("X", "Y"), ("X", "Z", "Y")]
    assert [p.backdoor for p in paths] == [False, True]
    assert all(p.open for p in paths)
    closed = dag.paths("X", "Y", given=["Z"])
    assert closed[1].open is False


def test_collider_path_opens_when_conditioned():
    dag = dags.parse_dag("X -> C; Y -> C")
    assert dag.is_d_separated("X", "Y")
    assert not dag.is_d_separated("X", "Y", given=["C"])
    (path,) = dag.paths("X", "Y")
    assert path.open is False
    assert dag.paths("X", "Y", given=["C"])[0].open is True


def test_implied_conditional_independencies():
    pipe = dags.parse_dag("X -> M -> Y")
    assert [str(i) for i in dags.implied_conditional_independencies(pipe)] == ["X _||_ Y | M"]
    collider = dags.parse_dag("X -> C; Y -> C")
    implied = [str(i) for i in dags.implied_conditional_independencies(collider)]
    assert implied in (["X _||_ Y"], ["Y _||_ X"])


def test_simulated_pipe_matches_its_independencies():
    dag = dags.parse_dag("X -> M -> Y")
    df = dags.simulate_linear_gaussian(dag, {("X", "M"): 0.8, "M->Y": 0.8}, n=2000, seed=3)
    assert list(df.columns) == ["X", "M", "Y"]
    assert np.corrcoef(df["X"], df["Y"])[0, 1] > 0.3
    result = dags.test_independencies(dag, df)
    assert list(result["independency"]) == ["X _||_ Y | M"]
    assert abs(result["estimate"].iloc[0]) < 0.1
    assert result["lower"].iloc[0] < result["upper"].iloc[0]


def test_simulation_needs_every_edge_coefficient():
    dag = dags.parse_dag("X -> M -> Y")
    with pytest.raises(DagError):
        dags.simulate_linear_gaussian(dag, {("X", "M"): 1.0}, n=10)


def test_independency_check_needs_columns(driving_df):
    dag = dags.parse_dag("age -> experience; wind -> experience")
    with pytest.raises(DagError, match="missing"):
        dags.test_independencies(dag, driving_df)
