"""
Simulation parameters: defaults, environment overrides and command line flags.
"""
import argparse
import os
from dataclasses import dataclass, replace
from typing import Optional

from errors import ConfigurationError
from primitives import KEY_SCHEMES

ENV_PREFIX = "EVSIM_"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class SimulationConfig:
    ev_count: int = 3
    cs_count: int = 2
    step_delay_ms: float = 1000.0
    seed: Optional[int] = None
    failure_probability: float = 0.0
    strict_topology: bool = False
    key_scheme: str = "token"
    real_time: bool = False
    output_dir: str = "results"
    log_level: str = "INFO"

    def validate(self) -> "SimulationConfig":
        if self.ev_count < 0 or self.cs_count < 0:
            raise ConfigurationError("EV and charging station counts must be non-negative")
        validate_step_delay(self.step_delay_ms)
        if not 0.0 <= self.failure_probability <= 1.0:
            raise ConfigurationError(f"failure_probability must be within [0, 1], got {self.failure_probability}")
        if self.key_scheme not in KEY_SCHEMES:
            raise ConfigurationError(f"Unknown key scheme {self.key_scheme!r}; choose from {', '.join(KEY_SCHEMES)}")
        return self

    @classmethod
    def from_env(cls, environ=None) -> "SimulationConfig":
        """Defaults overridden by EVSIM_* environment variables"""
        env = os.environ if environ is None else environ
        config = cls()
        seed = env.get(ENV_PREFIX + "SEED")
        return replace(
            config,
            ev_count=int(env.get(ENV_PREFIX + "EV_COUNT", config.ev_count)),
            cs_count=int(env.get(ENV_PREFIX + "CS_COUNT", config.cs_count)),
            step_delay_ms=float(env.get(ENV_PREFIX + "STEP_DELAY_MS", config.step_delay_ms)),
            seed=int(seed) if seed else None,
            failure_probability=float(env.get(ENV_PREFIX + "FAILURE_PROBABILITY", config.failure_probability)),
            strict_topology=_env_bool(env.get(ENV_PREFIX + "STRICT", "false")),
            key_scheme=env.get(ENV_PREFIX + "KEY_SCHEME", config.key_scheme),
            output_dir=env.get(ENV_PREFIX + "OUTPUT_DIR", config.output_dir),
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", config.log_level),
        )

    @classmethod
    def from_args(cls, args: argparse.Namespace, base: Optional["SimulationConfig"] = None) -> "SimulationConfig":
        """Apply parsed command line flags on top of base (environment defaults if omitted)"""
        config = base or cls.from_env()
        return replace(
            config,
            ev_count=args.evs,
            cs_count=args.stations,
            step_delay_ms=args.delay,
            seed=args.seed,
            failure_probability=args.failure_probability,
            strict_topology=args.strict or config.strict_topology,
            key_scheme=args.key_scheme,
            real_time=args.real_time,
            output_dir=args.output_dir,
            log_level=args.log_level,
        ).validate()


def validate_step_delay(step_delay_ms: float):
    if step_delay_ms <= 0:
        raise ConfigurationError(f"Step delay must be positive, got {step_delay_ms} ms")


def build_parser(defaults: Optional[SimulationConfig] = None) -> argparse.ArgumentParser:
    d = defaults or SimulationConfig.from_env()
    parser = argparse.ArgumentParser(description='EV Charging Network Authentication Simulation')
    parser.add_argument('--evs', type=int, default=d.ev_count, help='Number of electric vehicles')
    parser.add_argument('--stations', type=int, default=d.cs_count, help='Number of charging stations')
    parser.add_argument('--delay', type=float, default=d.step_delay_ms, help='Delay per protocol step in ms')
    parser.add_argument('--runs', type=int, default=1, help='Number of simulation runs')
    parser.add_argument('--seed', type=int, default=d.seed, help='Random seed for challenges and nonces')
    parser.add_argument('--failure_probability', type=float, default=d.failure_probability,
                        help='Probability that an authentication handshake is rejected')
    parser.add_argument('--key_scheme', choices=KEY_SCHEMES, default=d.key_scheme, help='Node key material')
    parser.add_argument('--strict', action='store_true', help='Fail the run when a handshake has no counterpart')
    parser.add_argument('--real_time', action='store_true', help='Actually wait for each step delay')
    parser.add_argument('--output_dir', type=str, default=d.output_dir, help='Output directory')
    parser.add_argument('--log_level', type=str, default=d.log_level, help='Logging level')
    parser.add_argument('--describe', action='store_true', help='Print the protocol description and exit')
    parser.add_argument('--no_plots', action='store_true', help='Skip chart generation')
    return parser
