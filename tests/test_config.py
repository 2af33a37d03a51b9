"""Tests for orchestration policy loading."""

import pytest

from appdock.config import OrchestrationPolicy, deep_merge, load_policy


def test_defaults():
    policy = OrchestrationPolicy()
    assert policy.limits.max_concurrent_global == 100
    assert policy.limits.max_concurrent_per_owner == 3
    assert policy.limits.max_queue_depth == 50
    assert policy.breaker.failure_threshold == 3
    assert policy.breaker.cooldown == 30.0
    assert policy.default_port == 8000
    assert policy.timeouts.aggregate_for("enterprise") == 900.0


def test_from_dict_matches_defaults():
    assert OrchestrationPolicy.from_dict({}) == OrchestrationPolicy()


def test_deep_merge():
    base = {"a": {"x": 1, "y": 2}, "b": 1}
    assert deep_merge(base, {"a": {"y": 3}, "c": 4}) == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
    assert base == {"a": {"x": 1, "y": 2}, "b": 1}


def test_load_policy_from_yaml(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text(
        "limits:\n  max_concurrent_per_owner: 5\n"
        "health_check:\n  path: ready\n"
        "timeouts:\n  aggregate:\n    simple: 120\n"
    )
    policy = load_policy(str(path), environ={})
    assert policy.limits.max_concurrent_per_owner == 5
    assert policy.limits.max_concurrent_global == 100
    assert policy.health_check.path == "/ready"
    assert policy.timeouts.aggregate_for("simple") == 120.0
    assert policy.timeouts.aggregate_for("complex") == 600.0


def test_env_overrides_file(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("limits:\n  max_concurrent_global: 10\n")
    policy = load_policy(
        str(path),
        environ={"APPDOCK_MAX_CONCURRENT_GLOBAL": "20", "APPDOCK_COOLDOWN": "2.5", "APPDOCK_DEFAULT_PORT": "3000"},
    )
    assert policy.limits.max_concurrent_global == 20
    assert policy.breaker.cooldown == 2.5
    assert policy.default_port == 3000


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_policy("/nonexistent/policy.yaml", environ={})


def test_non_numeric_env():
    with pytest.raises(ValueError, match="APPDOCK_MAX_QUEUE_DEPTH"):
        load_policy(environ={"APPDOCK_MAX_QUEUE_DEPTH": "lots"})


@pytest.mark.parametrize(
    "data",
    [
        {"limits": {"max_concurrent_global": 0}},
        {"breaker": {"failure_threshold": -1}},
        {"default_port": 70000},
        {"timeouts": {"aggregate": {"huge": 10}}},
        {"timeouts": {"store": 0}},
        {"cleanup": {"max_age": -1}},
    ],
)
def test_invalid_values(data):
    with pytest.raises(ValueError):
        OrchestrationPolicy.from_dict(data)


def test_retry_delay_capped():
    policy = OrchestrationPolicy.from_dict({"retry": {"base_delay": 10, "max_delay": 15}})
    assert policy.retry.delay_for(1) == 10
    assert policy.retry.delay_for(2) == 15


def test_stale_after_derived_from_timeouts():
    policy = OrchestrationPolicy()
    # longest aggregate budget + admission wait + one teardown
    assert policy.stale_after() == 900.0 + 60.0 + 60.0
    assert policy.timeouts.store == 30.0
    assert policy.cleanup.max_age is None


def test_cleanup_section_and_env(tmp_path):
    path = tmp_path / "policy.yaml"
    path.write_text("cleanup:\n  stale_after: 120\n  max_age: 3600\n")
    policy = load_policy(str(path), environ={"APPDOCK_STORE_TIMEOUT": "5.5"})
    assert policy.stale_after() == 120.0
    assert policy.cleanup.max_age == 3600.0
    assert policy.timeouts.store == 5.5
