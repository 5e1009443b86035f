import pytest

from runledger.cost import (
    FREE_RUNNER,
    RATE_BY_RUNNER,
    UnknownRunnerError,
    billable_minutes,
    cost_of,
)

from gather_fakes import make_usage


def test_billable_minutes_rounds_down():
    assert billable_minutes(0) == 0
    assert billable_minutes(59_999) == 0
    assert billable_minutes(60_000) == 1
    assert billable_minutes(150_000) == 2


def test_cost_of_known_runner():
    usage = make_usage({"UBUNTU": [(1, 150_000)], "UBUNTU_4_CORE": [(2, 600_000)]})

    assert cost_of(1, usage) == ("UBUNTU", 2 * RATE_BY_RUNNER["UBUNTU"])
    assert cost_of(2, usage) == ("UBUNTU_4_CORE", 10 * 16)


def test_cost_of_job_not_in_usage_is_free():
    usage = make_usage({"UBUNTU": [(1, 150_000)]})

    assert cost_of(99, usage) == (FREE_RUNNER, 0)
    assert cost_of(1, None) == (FREE_RUNNER, 0)


def test_cost_of_unknown_runner_fails():
    usage = make_usage({"QUANTUM_1024_QUBIT": [(7, 60_000)]})

    with pytest.raises(UnknownRunnerError) as exc_info:
        cost_of(7, usage)

    assert exc_info.value.runner == "QUANTUM_1024_QUBIT"
    assert exc_info.value.job_id == 7


def test_unknown_runner_only_matters_for_its_jobs():
    usage = make_usage({"QUANTUM_1024_QUBIT": [(7, 60_000)], "UBUNTU_ARM": [(8, 60_000)]})

    assert cost_of(8, usage) == ("UBUNTU_ARM", 5)


def test_cost_of_custom_rates():
    usage = make_usage({"SELF_HOSTED": [(3, 120_000)]})

    assert cost_of(3, usage, rates={"SELF_HOSTED": 1}) == ("SELF_HOSTED", 2)
