import json
import logging
import os
import sys
from datetime import datetime

from config import SimulationConfig, build_parser
from errors import SimulationError
from protocol_documentation import describe_protocol
from reporting import (
    build_topology_graph,
    export_comparison_csv,
    export_metrics_history_csv,
    plot_comparison,
    plot_metrics_history,
    plot_topology,
    run_summary,
    summarize_results,
)
from simulation import EVNetworkSimulation


def configure_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format='%(asctime)s [%(name)s] %(message)s')


def run_simulations(config: SimulationConfig, runs: int) -> EVNetworkSimulation:
    """Run the simulation runs times on one topology and return the simulator"""
    simulation = EVNetworkSimulation(config)
    for i in range(runs):
        result = simulation.start(config.step_delay_ms)
        if result is None:
            print(f"Run {i + 1} did not complete")
            continue
        m = result.final_metrics
        print(f"{result.name}: {m.total_messages} messages, "
              f"{m.successful_authentications} successful / {m.failed_authentications} failed, "
              f"throughput {m.throughput:.1f} auth/min, delay {m.end_to_end_delay / 1000:.2f}s")
    return simulation


def save_outputs(simulation: EVNetworkSimulation, config: SimulationConfig, plots: bool = True):
    """Write JSON results, CSV exports and charts into the output directory"""
    os.makedirs(config.output_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    results = simulation.results

    payload = {
        "parameters": {
            "ev_count": config.ev_count,
            "cs_count": config.cs_count,
            "step_delay_ms": config.step_delay_ms,
            "seed": config.seed,
            "failure_probability": config.failure_probability,
            "key_scheme": config.key_scheme,
        },
        "runs": [r.to_dict() for r in results],
        "summary": [run_summary(r) for r in results],
        "statistics": summarize_results(results),
        "messages": simulation.log.to_records(),
    }
    with open(f"{config.output_dir}/results_{timestamp}.json", 'w') as f:
        json.dump(payload, f, indent=2)

    if results:
        export_metrics_history_csv(results[-1].metrics_history,
                                   f"{config.output_dir}/metrics_history_{timestamp}.csv")
    if len(results) >= 2:
        export_comparison_csv(results, f"{config.output_dir}/simulation_comparison_{timestamp}.csv")

    if not plots:
        return
    print("\nGenerating charts...")
    if results:
        plot_metrics_history(results[-1].metrics_history, f"{config.output_dir}/metrics_{timestamp}.png")
    graph = build_topology_graph(simulation.nodes, simulation.messages)
    plot_topology(graph, f"{config.output_dir}/topology_{timestamp}.png")
    if len(results) >= 2:
        plot_comparison(results, f"{config.output_dir}/comparison_{timestamp}.png")


def main(argv=None) -> int:
    """Command line entry point for the EV charging authentication simulation"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.describe:
        print(describe_protocol())
        return 0

    try:
        config = SimulationConfig.from_args(args)
    except SimulationError as exc:
        parser.error(str(exc))
    configure_logging(config.log_level)

    print("EV Charging Network Authentication Simulation")
    print("-" * 45)
    print(f"{config.ev_count} EVs, {config.cs_count} charging stations, "
          f"{config.step_delay_ms:.0f} ms per step, {args.runs} run(s)\n")

    try:
        simulation = run_simulations(config, args.runs)
    except SimulationError as exc:
        print(f"Simulation failed: {exc}")
        return 1

    save_outputs(simulation, config, plots=not args.no_plots)
    print(f"\nSimulation complete. Results saved in {config.output_dir}/")
    return 0


if __name__ == "__main__":
    sys.exit(main())
