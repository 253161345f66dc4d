import networkx as nx
import numpy as np
import pytest

from spatial_epi import alert_policy, loaders
from spatial_epi.network import Locale, reweightConnections

THRESHOLDS = [0.005, 0.01, 0.025]


def _policy(name, alert_levels, period=1, gracePeriod=0, schedule=None):
    return alert_policy.createAlertPolicy(
        loaders.PolicyParameters(policy=name, period=period, gracePeriod=gracePeriod),
        alert_levels,
        THRESHOLDS,
        schedule or [],
    )


@pytest.fixture
def world(alert_levels):
    locales = [
        Locale(0, "a", "A", 1000, 0.0, 0.0),
        Locale(1, "b", "B", 3000, 1.0, 0.0),
        Locale(2, "c", "C", 1000, 0.0, 1.0),
    ]
    graph = nx.DiGraph()
    for i in range(3):
        for j in range(3):
            if i != j:
                graph.add_edge(i, j, distance=1.0)
    reweightConnections(graph, locales)
    for locale in locales:
        alert_policy.setAlertLevel(locale, 1, graph, locales, alert_levels)
    return locales, graph


@pytest.mark.parametrize("rate,expected", [(0.0, 1), (0.004, 1), (0.005, 2), (0.02, 3), (0.025, 4), (1.0, 4)])
def test_targetLevel(alert_levels, rate, expected):
    assert alert_policy.targetLevel(rate, THRESHOLDS, alert_levels) == expected


@pytest.mark.parametrize("current,target,expected", [(1, 4, 4), (4, 1, 3), (3, 3, 3), (2, 3, 3), (3, 2, 2)])
def test_nextLevel_jumps_up_and_steps_down(current, target, expected):
    assert alert_policy.nextLevel(current, target) == expected


def test_setAlertLevel_updates_control_and_flow(world, alert_levels):
    locales, graph = world

    changed = alert_policy.setAlertLevel(locales[0], 3, graph, locales, alert_levels)

    assert changed
    assert locales[0].control == pytest.approx(0.32)
    assert locales[0].flowRate == pytest.approx(0.01)
    assert graph.edges[0, 1]["flow_rate"] == pytest.approx(0.01)
    assert graph.edges[1, 0]["flow_rate"] == pytest.approx(0.01)
    # untouched connections keep the minimum of level 1 flows
    assert graph.edges[1, 2]["flow_rate"] == pytest.approx(0.1)


def test_setAlertLevel_unchanged(world, alert_levels):
    locales, graph = world

    assert not alert_policy.setAlertLevel(locales[0], 1, graph, locales, alert_levels)


@pytest.mark.parametrize("level", [0, 5])
def test_setAlertLevel_out_of_range(world, alert_levels, level):
    locales, graph = world

    with pytest.raises(ValueError):
        alert_policy.setAlertLevel(locales[0], level, graph, locales, alert_levels)


def test_createAlertPolicy_unknown(alert_levels):
    with pytest.raises(ValueError):
        _policy("nope", alert_levels)


@pytest.mark.parametrize("time,expected", [(0, False), (13, False), (14, True), (15, False), (21, True), (28, True)])
def test_isEvaluationTime(alert_levels, time, expected):
    policy = _policy("local", alert_levels, period=7, gracePeriod=14)

    assert policy.isEvaluationTime(time) is expected


def test_static_never_changes(world, alert_levels):
    locales, graph = world
    policy = _policy("static", alert_levels)
    for locale in locales:
        locale.positiveRate = 1.0

    for time in range(100):
        assert policy.step(time, locales, graph, np.random.default_rng(time)) == 0

    assert [locale.alertLevel for locale in locales] == [1, 1, 1]
    assert policy.levelChanges == 0


def test_static_allows_external_override(world, alert_levels):
    locales, graph = world
    policy = _policy("static", alert_levels)

    alert_policy.setAlertLevel(locales[1], 4, graph, locales, alert_levels)
    policy.step(1, locales, graph, np.random.default_rng(1))

    assert locales[1].alertLevel == 4


def test_local_random_moves_at_most_one_level(world, alert_levels):
    locales, graph = world
    policy = _policy("local-random", alert_levels)
    random_state = np.random.default_rng(7)

    for time in range(200):
        before = [locale.alertLevel for locale in locales]
        policy.step(time, locales, graph, random_state)
        after = [locale.alertLevel for locale in locales]
        assert all(abs(a - b) <= 1 for a, b in zip(before, after))
        assert all(1 <= level <= 4 for level in after)

    assert policy.levelChanges > 0


def test_local_policy_jumps_up_then_steps_down(world, alert_levels):
    locales, graph = world
    policy = _policy("local", alert_levels)

    locales[0].positiveRate = 0.5
    locales[1].positiveRate = 0.007
    locales[2].positiveRate = 0.0
    policy.step(1, locales, graph, np.random.default_rng(1))
    assert [locale.alertLevel for locale in locales] == [4, 2, 1]

    for locale in locales:
        locale.positiveRate = 0.0
    policy.step(2, locales, graph, np.random.default_rng(1))
    assert [locale.alertLevel for locale in locales] == [3, 1, 1]
    policy.step(3, locales, graph, np.random.default_rng(1))
    assert [locale.alertLevel for locale in locales] == [2, 1, 1]
    assert policy.levelChanges == 5


def test_local_policy_waits_for_evaluation_day(world, alert_levels):
    locales, graph = world
    policy = _policy("local", alert_levels, period=7, gracePeriod=14)
    locales[0].positiveRate = 1.0
    locales[1].positiveRate = locales[2].positiveRate = 0.0

    assert policy.step(10, locales, graph, np.random.default_rng(1)) == 0
    assert locales[0].alertLevel == 1
    assert policy.step(14, locales, graph, np.random.default_rng(1)) == 1
    assert locales[0].alertLevel == 4


def test_global_max(world, alert_levels):
    locales, graph = world
    policy = _policy("global-max", alert_levels)
    locales[0].positiveRate = 0.012
    locales[1].positiveRate = 0.0
    locales[2].positiveRate = 0.0

    policy.step(1, locales, graph, np.random.default_rng(1))

    assert [locale.alertLevel for locale in locales] == [3, 3, 3]


def test_global_mean_is_population_weighted(world, alert_levels):
    locales, graph = world
    policy = _policy("global-mean", alert_levels)
    # (1000 * 0.06 + 3000 * 0 + 1000 * 0) / 5000 = 0.012
    locales[0].positiveRate = 0.06
    locales[1].positiveRate = 0.0
    locales[2].positiveRate = 0.0

    policy.step(1, locales, graph, np.random.default_rng(1))

    assert [locale.alertLevel for locale in locales] == [3, 3, 3]


def test_global_policies_step_down_one_level(world, alert_levels):
    locales, graph = world
    for locale in locales:
        alert_policy.setAlertLevel(locale, 4, graph, locales, alert_levels)
        locale.positiveRate = 0.0

    for name in ("global-max", "global-mean"):
        policy = _policy(name, alert_levels)
        before = [locale.alertLevel for locale in locales]
        policy.step(1, locales, graph, np.random.default_rng(1))
        assert [locale.alertLevel for locale in locales] == [level - 1 for level in before]


def test_scripted_follows_schedule(world, alert_levels):
    locales, graph = world
    schedule = [
        loaders.ScheduledChange(time=2, localeId="a", level=3),
        loaders.ScheduledChange(time=5, localeId=None, level=2),
    ]
    policy = _policy("scripted", alert_levels, period=7, gracePeriod=14, schedule=schedule)
    random_state = np.random.default_rng(1)

    policy.step(1, locales, graph, random_state)
    assert [locale.alertLevel for locale in locales] == [1, 1, 1]
    policy.step(2, locales, graph, random_state)
    assert [locale.alertLevel for locale in locales] == [3, 1, 1]
    policy.step(6, locales, graph, random_state)
    assert [locale.alertLevel for locale in locales] == [2, 2, 2]
    assert policy.levelChanges == 4
