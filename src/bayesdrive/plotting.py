import logging
import os
from typing import Mapping, Optional

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import pandas as pd

from bayesdrive.checks import counterfactual
from bayesdrive.dag import Dag
from bayesdrive.summary import PI, precis

logger = logging.getLogger(__name__)


def _axes(ax=None, figsize=(6, 4)):
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize, constrained_layout=True)
        return fig, ax
    return ax.figure, ax


def _grid(ax) -> None:
    ax.grid(visible=True, which="major", linestyle="-", color="gray", lw=0.5, alpha=0.5)


def dag_layout(dag: Dag) -> dict:
    graph = dag.graph.copy()
    for depth, generation in enumerate(nx.topological_generations(graph)):
        for node in generation:
            graph.nodes[node]["layer"] = depth
    return nx.multipartite_layout(graph, subset_key="layer")


def plot_dag(dag: Dag, ax=None, highlight: Optional[Mapping[str, str]] = None):
    fig, ax = _axes(ax, figsize=(5, 3.5))
    pos = dag_layout(dag)
    colors = []
    for node in dag.graph.nodes:
        if highlight and node in highlight:
            colors.append(highlight[node])
        elif node in dag.latent:
            colors.append("lightgray")
        else:
            colors.append("white")
    nx.draw_networkx_nodes(dag.graph, pos, ax=ax, node_color=colors, edgecolors="black", node_size=1600)
    nx.draw_networkx_labels(dag.graph, pos, ax=ax, font_size=8)
    nx.draw_networkx_edges(dag.graph, pos, ax=ax, arrows=True, arrowsize=15, node_size=1600)
    ax.set_axis_off()
    return fig


def plot_prior_lines(
    x: np.ndarray,
    lines: np.ndarray,
    ax=None,
    bounds=None,
    xlabel: str = "predictor (std)",
    ylabel: str = "outcome",
    max_lines: int = 100,
):
    fig, ax = _axes(ax)
    for line in lines[:max_lines]:
        ax.plot(x, line, color="black", alpha=0.2, lw=1)
    if bounds is not None:
        for b in bounds:
            ax.axhline(b, color="red", ls="--", lw=1)
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.set_title("Prior predictive lines")
    _grid(ax)
    return fig


def plot_posterior_regression(
    fit,
    predictor: str,
    ax=None,
    prob: float = 0.89,
    n: int = 1000,
    points: int = 50,
    seed: Optional[int] = None,
):
    fig, ax = _axes(ax)
    data = fit.data
    x_obs = data[predictor].to_numpy(dtype=float)
    x = np.linspace(x_obs.min(), x_obs.max(), points)
    cf = counterfactual(fit, predictor, x, n=n, prob=prob, seed=seed)
    ax.scatter(x_obs, data[fit.spec.outcome], s=12, facecolors="none", edgecolors="tab:blue", alpha=0.7)
    ax.fill_between(x, cf["pred_lower"], cf["pred_upper"], color="gray", alpha=0.2, lw=0)
    ax.fill_between(x, cf["mu_lower"], cf["mu_upper"], color="gray", alpha=0.5, lw=0)
    ax.plot(x, cf["mu_mean"], color="black", lw=1.5)
    ax.set_xlabel(predictor)
    ax.set_ylabel(fit.spec.outcome)
    _grid(ax)
    return fig


def plot_ppc(table: pd.DataFrame, ax=None):
    fig, ax = _axes(ax)
    ax.errorbar(
        table["observed"],
        table["mu_mean"],
        yerr=[table["mu_mean"] - table["pred_lower"], table["pred_upper"] - table["mu_mean"]],
        fmt="o",
        ms=3,
        color="tab:blue",
        ecolor="lightgray",
        elinewidth=1,
    )
    lo = float(min(table["observed"].min(), table["pred_lower"].min()))
    hi = float(max(table["observed"].max(), table["pred_upper"].max()))
    ax.plot([lo, hi], [lo, hi], color="black", ls="--", lw=1)
    ax.set_xlabel("observed")
    ax.set_ylabel("predicted")
    ax.set_title("Posterior predictive check")
    _grid(ax)
    return fig


def plot_precis(obj, ax=None, prob: float = 0.89, skip_sigma: bool = False):
    table = precis(obj, prob=prob)
    if skip_sigma and hasattr(obj, "spec"):
        table = table.drop(index=obj.spec.sigma, errors="ignore")
    lo_col, hi_col = table.columns[2], table.columns[3]
    fig, ax = _axes(ax, figsize=(5, 0.4 * len(table) + 1))
    y = np.arange(len(table))[::-1]
    ax.hlines(y, table[lo_col], table[hi_col], color="black", lw=1.5)
    ax.plot(table["mean"], y, "o", mfc="white", mec="black")
    ax.axvline(0.0, color="gray", ls="--", lw=1)
    ax.set_yticks(y)
    ax.set_yticklabels(table.index)
    ax.set_xlabel("Value")
    _grid(ax)
    return fig


def plot_coeftab(fits: Mapping[str, object], params=None, ax=None, prob: float = 0.89):
    rows = []
    for name, fit in fits.items():
        table = precis(fit, prob=prob)
        for param, row in table.iterrows():
            if params is None or param in params:
                rows.append((f"{param} [{name}]", row["mean"], row.iloc[2], row.iloc[3]))
    fig, ax = _axes(ax, figsize=(5, 0.35 * len(rows) + 1))
    y = np.arange(len(rows))[::-1]
    for yi, (_, mean, lo, hi) in zip(y, rows):
        ax.hlines(yi, lo, hi, color="black", lw=1.5)
        ax.plot(mean, yi, "o", mfc="white", mec="black")
    ax.axvline(0.0, color="gray", ls="--", lw=1)
    ax.set_yticks(y)
    ax.set_yticklabels([r[0] for r in rows])
    _grid(ax)
    return fig


def plot_samples_density(samples, ax=None, prob: float = 0.89, label: Optional[str] = None):
    fig, ax = _axes(ax)
    x = np.asarray(samples, dtype=float)
    ax.hist(x, bins=50, density=True, color="tab:blue", alpha=0.5)
    lo, hi = PI(x, prob=prob)
    ax.axvspan(lo, hi, color="gray", alpha=0.2)
    if label:
        ax.set_xlabel(label)
    ax.set_ylabel("Density")
    _grid(ax)
    return fig


def save_figure(fig, path: str, dpi: int = 150) -> str:
    out_dir = os.path.dirname(path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    fig.savefig(path, dpi=dpi)
    plt.close(fig)
    logger.info("Saved figure %s", path)
    return path
