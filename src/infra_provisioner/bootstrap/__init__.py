"""Instance bootstrap: idempotent boot steps and the health endpoint."""

from infra_provisioner.bootstrap.params import BootstrapParams
from infra_provisioner.bootstrap.sequencer import (
    BootstrapReport,
    BootstrapSequencer,
    BootstrapStep,
    Criticality,
    StepError,
    StepResult,
    configure_json_log,
)
from infra_provisioner.bootstrap.steps import (
    BootstrapContext,
    CommandError,
    CommandRunner,
    default_steps,
)


def run_bootstrap(
    params: BootstrapParams,
    *,
    steps: list[BootstrapStep[BootstrapContext]] | None = None,
    ctx: BootstrapContext | None = None,
) -> BootstrapReport:
    """Run the bootstrap steps (``default_steps()`` unless given) for *params*."""
    sequencer = BootstrapSequencer(steps if steps is not None else default_steps())
    return sequencer.run(ctx or BootstrapContext(params=params))


__all__ = [
    "BootstrapContext",
    "BootstrapParams",
    "BootstrapReport",
    "BootstrapSequencer",
    "BootstrapStep",
    "CommandError",
    "CommandRunner",
    "Criticality",
    "StepError",
    "StepResult",
    "configure_json_log",
    "default_steps",
    "run_bootstrap",
]
