"""
Tables, CSV exports and charts built from simulation snapshots.

Everything here reads engine output only: metrics histories, messages,
nodes and completed SimulationResult records.
"""
import logging
from collections import Counter
from typing import Dict, Iterable, List, Sequence

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import pandas as pd

from messages import Message
from metrics import MetricsSnapshot, SimulationResult
from nodes import Node, NodeKind

logger = logging.getLogger(__name__)

COMPARISON_COLUMNS = [
    "Simulation",
    "EVs",
    "Charging Stations",
    "Speed (ms)",
    "Throughput (auth/min)",
    "End-to-End Delay (s)",
    "Success Rate (%)",
    "Total Messages",
    "Network Utilization (%)",
    "Avg Processing Time (s)",
]

NODE_COLORS = {
    NodeKind.USP: "gold",
    NodeKind.EV: "skyblue",
    NodeKind.CHARGING_STATION: "lightgreen",
}


def metrics_history_frame(history: Iterable[MetricsSnapshot]) -> pd.DataFrame:
    columns = ["timestamp", "throughput", "end_to_end_delay_s", "network_utilization", "success_rate"]
    return pd.DataFrame([s.to_dict() for s in history], columns=columns)


def messages_frame(messages: Iterable[Message]) -> pd.DataFrame:
    rows = [{
        "id": m.id,
        "from": m.sender,
        "to": m.recipient,
        "type": m.type.value,
        "phase": m.phase.value,
        "step": m.step,
        "timestamp": m.timestamp,
        "encrypted": m.encrypted,
    } for m in messages]
    return pd.DataFrame(rows, columns=["id", "from", "to", "type", "phase", "step", "timestamp", "encrypted"])


def results_frame(results: Iterable[SimulationResult]) -> pd.DataFrame:
    rows = []
    for result in results:
        row = {"id": result.id, "name": result.name, "timestamp": result.timestamp,
               "ev_count": result.config.ev_count, "cs_count": result.config.cs_count,
               "step_delay_ms": result.config.step_delay_ms}
        row.update(result.final_metrics.to_dict())
        row["success_rate"] = result.final_metrics.success_rate
        rows.append(row)
    return pd.DataFrame(rows)


def comparison_frame(results: Sequence[SimulationResult]) -> pd.DataFrame:
    """One row per run with the headline numbers used to compare runs"""
    rows = []
    for result in results:
        m = result.final_metrics
        rows.append([
            result.name,
            result.config.ev_count,
            result.config.cs_count,
            result.config.step_delay_ms,
            round(m.throughput, 1),
            round(m.end_to_end_delay / 1000, 2),
            round(m.success_rate, 1),
            m.total_messages,
            round(m.network_utilization, 1),
            round(m.average_processing_time / 1000, 2),
        ])
    return pd.DataFrame(rows, columns=COMPARISON_COLUMNS)


def comparison_trend_frame(results: Sequence[SimulationResult]) -> pd.DataFrame:
    """Metrics histories of several runs side by side, aligned by sample index"""
    frames = []
    for result in results:
        history = metrics_history_frame(result.metrics_history)
        frames.append(pd.DataFrame({
            f"{result.name}_throughput": history["throughput"],
            f"{result.name}_delay": history["end_to_end_delay_s"],
            f"{result.name}_utilization": history["network_utilization"],
            f"{result.name}_successRate": history["success_rate"],
        }))
    if not frames:
        return pd.DataFrame()
    trend = pd.concat(frames, axis=1)
    trend.index.name = "time"
    return trend


def export_comparison_csv(results: Sequence[SimulationResult], path: str) -> str:
    if len(results) < 2:
        raise ValueError("At least 2 simulations are needed to export comparison data")
    comparison_frame(results).to_csv(path, index=False)
    logger.info("Comparison of %d runs written to %s", len(results), path)
    return path


def export_metrics_history_csv(history: Iterable[MetricsSnapshot], path: str) -> str:
    metrics_history_frame(history).to_csv(path, index=False)
    return path


def summarize_results(results: Sequence[SimulationResult]) -> Dict[str, Dict[str, float]]:
    """Mean and standard deviation of the headline metrics across runs"""
    if not results:
        return {}
    series = {
        "throughput": [r.final_metrics.throughput for r in results],
        "end_to_end_delay": [r.final_metrics.end_to_end_delay for r in results],
        "success_rate": [r.final_metrics.success_rate for r in results],
        "total_messages": [r.final_metrics.total_messages for r in results],
    }
    return {name: {"mean": float(np.mean(values)), "std": float(np.std(values))}
            for name, values in series.items()}


def run_summary(result: SimulationResult) -> Dict:
    m = result.final_metrics
    return {
        "name": result.name,
        "final_throughput": m.throughput,
        "final_delay_s": m.end_to_end_delay / 1000,
        "final_success_rate": m.success_rate,
        "total_messages": m.total_messages,
        "network_utilization": m.network_utilization,
        "average_processing_time_ms": m.average_processing_time,
    }


def build_topology_graph(nodes: Iterable[Node], messages: Iterable[Message] = ()) -> nx.DiGraph:
    """
    Directed graph of the topology. Nodes carry their kind, status and
    position; each edge counts the messages sent along it.
    """
    graph = nx.DiGraph()
    for node in nodes:
        graph.add_node(node.id, kind=node.kind, status=node.status.value, pos=node.position)

    counts = Counter((m.sender, m.recipient) for m in messages)
    for (sender, recipient), count in counts.items():
        graph.add_edge(sender, recipient, messages=count)
    return graph


def plot_topology(graph: nx.DiGraph, path: str) -> str:
    fig, ax = plt.subplots(figsize=(10, 8))
    pos = nx.get_node_attributes(graph, "pos")
    colors = [NODE_COLORS[graph.nodes[n]["kind"]] for n in graph.nodes]
    nx.draw(graph, pos, ax=ax, with_labels=True, node_size=900, node_color=colors, arrows=True)
    edge_labels = nx.get_edge_attributes(graph, "messages")
    nx.draw_networkx_edge_labels(graph, pos, edge_labels=edge_labels, ax=ax)
    ax.set_title("Network Topology")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def plot_metrics_history(history: Sequence[MetricsSnapshot], path: str) -> str:
    """Four panels: throughput, end-to-end delay, utilization and success rate over the run"""
    frame = metrics_history_frame(history)
    fig, axs = plt.subplots(2, 2, figsize=(12, 9))

    panels = [
        (axs[0, 0], "throughput", "Throughput", "Auth/min"),
        (axs[0, 1], "end_to_end_delay_s", "End-to-End Delay", "Delay (s)"),
        (axs[1, 0], "network_utilization", "Network Utilization", "Utilization (%)"),
        (axs[1, 1], "success_rate", "Success Rate", "Success (%)"),
    ]
    for ax, column, title, ylabel in panels:
        ax.plot(frame.index, frame[column])
        ax.set_title(title)
        ax.set_xlabel("Sample")
        ax.set_ylabel(ylabel)

    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def plot_comparison(results: Sequence[SimulationResult], path: str) -> str:
    """Bar charts of throughput, delay and success rate per run"""
    frame = comparison_frame(results)
    metrics: List[tuple] = [
        ("Throughput (auth/min)", "Throughput"),
        ("End-to-End Delay (s)", "End-to-End Delay (s)"),
        ("Success Rate (%)", "Success Rate (%)"),
    ]
    fig, axs = plt.subplots(1, 3, figsize=(15, 5))
    for ax, (column, label) in zip(axs, metrics):
        values = frame[column].tolist()
        ax.bar(frame["Simulation"], values)
        ax.set_title(label)
        top = max(values) if values else 0
        ax.set_ylim(0, top * 1.2 if top > 0 else 1)
        ax.tick_params(axis="x", rotation=30)

    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path
