"""CLI interface for compliance checks.

Usage: python -m netcomply <policies.yaml> <device.yaml> [<device.yaml> ...]
"""

import os
import sys

from .common.config import ComplianceConfig, load_typed_config
from .common.logger import setup_logger
from .compliance.context import EvaluationContext
from .compliance.errors import ComplianceError
from .compliance.loader import load_devices, load_policies
from .compliance.result import ResultOption
from .compliance.runner import ComplianceRunner
from .rules.sandbox import configure_sandboxes


def main(argv=None) -> int:
    """Main entry point for the compliance CLI."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) < 2:
        print("Usage: python -m netcomply <policies.yaml> <device.yaml> [...]", file=sys.stderr)
        return 2

    try:
        config = load_typed_config()
    except FileNotFoundError:
        # Use defaults if config not found
        config = ComplianceConfig()

    setup_logger(
        log_dir=config.logging.log_dir or None,
        level=config.logging.level,
    )
    configure_sandboxes(config.sandbox)

    try:
        policies, exemptions = load_policies(args[0])
        devices = []
        for path in args[1:]:
            devices.extend(load_devices(path, exemptions))
    except ComplianceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    runner = ComplianceRunner.from_config(config.runner)
    run = runner.run(policies, devices, EvaluationContext())

    for result in run.results:
        print(result)

    summary = run.summary()
    print(
        "Summary: "
        + ", ".join(f"{option.name}={summary[option.value]}" for option in ResultOption)
    )

    # Exit with appropriate code
    exit_code = 1 if run.non_conforming() else 0
    if run.abandoned:
        # Stuck evaluation threads would block interpreter shutdown
        sys.stdout.flush()
        sys.stderr.flush()
        os._exit(exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
