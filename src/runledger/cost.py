"""
Billing cost of workflow jobs.

Costs are integers in tenths of a cent so sums never pick up float drift.
Rates follow
https://docs.github.com/en/billing/managing-billing-for-your-products/managing-billing-for-github-actions/about-billing-for-github-actions#per-minute-rates
"""

from typing import Dict, Optional, Tuple

from runledger.github.model import WorkflowRunUsage

FREE_RUNNER = "Free"

RATE_BY_RUNNER: Dict[str, int] = {
    # x64 runners
    "UBUNTU": 8,  # $0.008
    "UBUNTU_2_CORE": 8,  # $0.008
    "UBUNTU_4_CORE": 16,  # $0.016
    "UBUNTU_8_CORE": 32,  # $0.032
    "UBUNTU_16_CORE": 64,  # $0.064
    "UBUNTU_32_CORE": 128,  # $0.128
    "UBUNTU_64_CORE": 256,  # $0.256
    # arm64 runners
    "UBUNTU_ARM": 5,  # $0.005
    "UBUNTU_2_CORE_ARM": 5,  # $0.005
    "UBUNTU_4_CORE_ARM": 10,  # $0.01
    "UBUNTU_8_CORE_ARM": 20,  # $0.02
    "UBUNTU_16_CORE_ARM": 40,  # $0.04
    "UBUNTU_32_CORE_ARM": 80,  # $0.08
    "UBUNTU_64_CORE_ARM": 160,  # $0.16
    "WINDOWS": 16,  # $0.016
    "WINDOWS_4_CORE": 32,  # $0.032
    "WINDOWS_8_CORE": 64,  # $0.064
    "WINDOWS_16_CORE": 128,  # $0.128
    "WINDOWS_32_CORE": 256,  # $0.256
    "WINDOWS_64_CORE": 512,  # $0.512
    "MACOS": 80,  # $0.08
    "MACOS_12_CORE": 120,  # $0.12
}


class UnknownRunnerError(Exception):
    runner: str
    job_id: int

    def __init__(self, runner: str, job_id: int):
        self.runner = runner
        self.job_id = job_id
        super().__init__(f"no rate available for runner {runner} (job {job_id})")


def billable_minutes(duration_ms: int) -> int:
    return duration_ms // 60_000


def cost_of(
    job_id: int,
    usage: Optional[WorkflowRunUsage],
    rates: Dict[str, int] = RATE_BY_RUNNER,
) -> Tuple[str, int]:
    """
    Find the billing entry for ``job_id`` and return ``(runner, cost)``.

    A job that is in no runner bucket did not cost anything and is reported as
    ``Free``. A job billed under a runner type missing from ``rates`` raises
    :class:`UnknownRunnerError`.
    """
    if usage is None:
        return FREE_RUNNER, 0

    for runner, runner_usage in usage.billable.items():
        for job_run in runner_usage.job_runs:
            if job_run.job_id != job_id:
                continue
            if runner not in rates:
                raise UnknownRunnerError(runner, job_id)
            return runner, billable_minutes(job_run.duration_ms) * rates[runner]

    return FREE_RUNNER, 0
