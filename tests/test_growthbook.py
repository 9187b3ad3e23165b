#!/usr/bin/env python

import json
import os
from gbsdk import (
    AbstractConditionEvaluator,
    AbstractOverrideProvider,
    GrowthBook,
    Experiment,
    Feature,
    FeatureRule,
    FeatureSource,
    OverrideExperiment,
    logger,
)

from gbsdk.core import (
    getBucketRanges,
    gbhash,
    chooseVariation,
    getQueryStringOverride,
    inNamespace,
    getEqualWeights,
    Namespace,
)

import pytest

logger.setLevel("DEBUG")


def pytest_generate_tests(metafunc):
    folder = os.path.abspath(os.path.dirname(__file__))
    jsonfile = os.path.join(folder, "cases.json")
    with open(jsonfile, encoding="utf-8") as file:
        data = json.load(file)

    for func, cases in data.items():
        key = func + "_data"
        if key in metafunc.fixturenames:
            metafunc.parametrize(key, cases)


def test_hash(hash_data):
    seed, value, expected = hash_data
    assert gbhash(seed, value) == expected


def round_list(item):
    is_tuple = type(item) is tuple

    if is_tuple:
        item = list(item)

    for i, value in enumerate(item):
        item[i] = round(value, 6)

    return item


def round_list_of_lists(item):
    for i, value in enumerate(item):
        item[i] = round_list(value)
    return item


def test_get_bucket_range(getBucketRange_data):
    _, args, expected = getBucketRange_data
    numVariations, coverage, weights = args

    actual = getBucketRanges(numVariations, coverage, weights)

    assert round_list_of_lists(actual) == round_list_of_lists(expected)


def test_choose_variation(chooseVariation_data):
    _, n, ranges, expected = chooseVariation_data
    assert chooseVariation(n, ranges) == expected


def test_get_qs_override(getQueryStringOverride_data):
    _, id, url, expected = getQueryStringOverride_data
    assert getQueryStringOverride(id, url) == expected


def test_namespace(inNamespace_data):
    _, id, namespace, expected = inNamespace_data
    assert inNamespace(id, Namespace(*namespace)) == expected


def test_equal_weights(getEqualWeights_data):
    numVariations, expected = getEqualWeights_data
    weights = getEqualWeights(numVariations)
    assert round_list(weights) == round_list(expected)


def test_feature(feature_data):
    _, ctx, key, expected = feature_data
    gb = GrowthBook(**ctx)
    res = gb.feature(key)

    assert res.to_dict() == expected


def test_run(run_data):
    _, ctx, exp, variationId, inExperiment, value = run_data
    gb = GrowthBook(**ctx)

    res = gb.run(Experiment(**exp))
    assert res.variationId == variationId
    assert res.inExperiment == inExperiment
    assert res.value == value


def test_hash_is_in_unit_interval_with_three_decimals():
    for i in range(200):
        n = gbhash("exp", str(i))
        assert 0 <= n < 1
        assert round(n * 1000) == pytest.approx(n * 1000)
        assert gbhash("exp", str(i)) == n


def test_bucket_ranges_are_ordered_and_cover_the_coverage():
    weights = [0.1, 0.2, 0.3, 0.4]
    ranges = getBucketRanges(4, 0.6, weights)

    assert len(ranges) == 4
    for (start, end), (next_start, _) in zip(ranges, ranges[1:]):
        assert end <= next_start
    assert sum(end - start for start, end in ranges) == pytest.approx(0.6)


def getTrackingMock(gb: GrowthBook):
    calls = []

    def track(experiment, result):
        return calls.append([experiment, result])

    gb._global_ctx.options.on_experiment_viewed = track
    return lambda: calls


def test_tracking():
    gb = GrowthBook(attributes={"id": "1"})

    getMockedCalls = getTrackingMock(gb)

    exp1 = Experiment(
        key="my-tracked-test",
        variations=[0, 1],
    )
    exp2 = Experiment(
        key="my-other-tracked-test",
        variations=[0, 1],
    )

    res1 = gb.run(exp1)
    res2 = gb.run(exp1)
    res3 = gb.run(exp2)

    calls = getMockedCalls()
    assert len(calls) == 3
    assert calls[0] == [exp1, res1]
    assert calls[1] == [exp1, res2]
    assert calls[2] == [exp2, res3]


def test_run_is_idempotent():
    gb = GrowthBook(attributes={"id": "user123"})
    exp = Experiment(key="exp1", variations=["v0", "v1"])

    results = [gb.run(exp).to_dict() for _ in range(5)]

    assert all(r == results[0] for r in results)
    assert results[0]["variationId"] == 1


def test_forced_variation_skips_hashing_and_tracking(monkeypatch):
    import gbsdk.core

    def fail(*args):
        raise AssertionError("hash should not be computed")

    monkeypatch.setattr(gbsdk.core, "gbhash", fail)

    gb = GrowthBook(attributes={"id": "1"}, forced_variations={"exp1": 1})
    getMockedCalls = getTrackingMock(gb)

    res = gb.run(Experiment(key="exp1", variations=["a", "b"]))

    assert res.inExperiment is False
    assert res.variationId == 1
    assert res.value is None
    assert len(getMockedCalls()) == 0


def test_qa_mode_never_tracks():
    gb = GrowthBook(attributes={"id": "1"}, qa_mode=True)
    getMockedCalls = getTrackingMock(gb)

    for i in range(10):
        gb.set_attributes({"id": str(i)})
        res = gb.run(Experiment(key="my-test", variations=[0, 1]))
        assert res.inExperiment is False

    assert len(getMockedCalls()) == 0


def test_disabled_never_assigns():
    gb = GrowthBook(attributes={"id": "1"}, enabled=False)
    getMockedCalls = getTrackingMock(gb)

    res = gb.run(Experiment(key="my-test", variations=[0, 1], weights=[0.5, 0.5]))

    assert res.to_dict() == {
        "variationId": 0,
        "inExperiment": False,
        "hashAttribute": "id",
        "hashValue": "",
    }
    assert len(getMockedCalls()) == 0


def test_experiment_force_is_not_tracked():
    gb = GrowthBook(attributes={"id": "6"})
    exp = Experiment(key="forced-test", variations=[0, 1])
    assert gb.run(exp).value == 0

    getMockedCalls = getTrackingMock(gb)

    gb.set_overrides({
        "forced-test": {
            "force": 1,
        },
    })
    res = gb.run(exp)
    assert res.variationId == 1
    assert res.inExperiment is False

    calls = getMockedCalls()
    assert len(calls) == 0


def test_overrides_do_not_mutate_the_experiment():
    gb = GrowthBook(
        attributes={"id": "1"},
        overrides={
            "my-test": {
                "coverage": 0.01,
                "status": "stopped",
            },
        },
    )
    exp = Experiment(key="my-test", variations=[0, 1], coverage=0.5, force=1)

    assert gb.run(exp).inExperiment is False
    assert exp.coverage == 0.5
    assert exp.force == 1
    assert exp.active is True


def test_tracking_receives_overridden_experiment():
    gb = GrowthBook(
        attributes={"id": "2"},
        overrides={"my-test": OverrideExperiment(weights=[0.1, 0.9])},
    )
    getMockedCalls = getTrackingMock(gb)
    exp = Experiment(key="my-test", variations=[0, 1])

    res = gb.run(exp)

    calls = getMockedCalls()
    assert res.variationId == 1
    assert len(calls) == 1
    assert calls[0][0] is not exp
    assert calls[0][0].weights == [0.1, 0.9]
    assert exp.weights is None


def test_handles_weird_experiment_values():
    gb = GrowthBook(attributes={"id": "1"})

    assert (
        gb.run(
            Experiment(
                key="my-test",
                variations=[0, 1],
                include=lambda: 1 / 0,
            )
        ).inExperiment
        is False
    )

    # Should fail gracefully
    gb._global_ctx.options.on_experiment_viewed = lambda experiment, result: 1 / 0
    assert gb.run(Experiment(key="my-test", variations=[0, 1])).value == 1


def test_runs_custom_include_callback():
    gb = GrowthBook(attributes={"id": "1"})
    assert (
        gb.run(
            Experiment(key="my-test", variations=[0, 1], include=lambda: False)
        ).inExperiment
        is False
    )
    assert (
        gb.run(
            Experiment(key="my-test", variations=[0, 1], include=lambda: True)
        ).inExperiment
        is True
    )


def test_supports_custom_user_hash_keys():
    gb = GrowthBook(attributes={"id": "1", "company": "abc"})

    exp = Experiment(key="my-test", variations=[0, 1], hashAttribute="company")

    res = gb.run(exp)

    assert res.hashAttribute == "company"
    assert res.hashValue == "abc"


def test_querystring_force_disabled_tracking():
    gb = GrowthBook(
        attributes={"id": "1"},
        url="http://example.com?forced-test-qs=1",
    )
    getMockedCalls = getTrackingMock(gb)

    exp = Experiment(
        key="forced-test-qs",
        variations=[0, 1],
    )
    res = gb.run(exp)

    assert res.variationId == 1
    assert len(getMockedCalls()) == 0


class StaticOverrideProvider(AbstractOverrideProvider):
    def __init__(self, forced):
        self.forced = forced

    def get_forced_variation(self, key):
        return self.forced.get(key)


def test_custom_override_provider_replaces_querystring():
    gb = GrowthBook(
        attributes={"id": "1"},
        url="http://example.com?my-test=1",
        override_provider=StaticOverrideProvider({"other-test": 1}),
    )

    res = gb.run(Experiment(key="my-test", variations=[0, 1]))
    assert res.inExperiment is True

    res = gb.run(Experiment(key="other-test", variations=[0, 1]))
    assert res.inExperiment is False
    assert res.variationId == 1


def test_broken_override_provider_is_ignored():
    class Broken(AbstractOverrideProvider):
        def get_forced_variation(self, key):
            raise RuntimeError("boom")

    gb = GrowthBook(attributes={"id": "1"}, override_provider=Broken())
    assert gb.run(Experiment(key="my-test", variations=[0, 1])).inExperiment is True


class CountryEvaluator(AbstractConditionEvaluator):
    def evaluate(self, attributes, condition):
        return attributes.get("country") == condition.get("country")


def test_condition_evaluator_for_experiments():
    exp = Experiment(key="my-test", variations=[0, 1], condition={"country": "US"})

    gb = GrowthBook(
        attributes={"id": "1", "country": "US"},
        condition_evaluator=CountryEvaluator(),
    )
    assert gb.run(exp).inExperiment is True

    gb.set_attributes({"id": "1", "country": "CA"})
    assert gb.run(exp).inExperiment is False


def test_callable_conditions():
    gb = GrowthBook(attributes={"id": "1", "age": 30})

    adults = Experiment(
        key="my-test", variations=[0, 1], condition=lambda attrs: attrs["age"] >= 18
    )
    assert gb.run(adults).inExperiment is True

    broken = Experiment(
        key="my-test", variations=[0, 1], condition=lambda attrs: attrs["missing"]
    )
    assert gb.run(broken).inExperiment is False


def test_condition_evaluator_for_rules():
    features = {
        "feature": Feature(
            defaultValue="default",
            rules=[
                FeatureRule(condition={"country": "US"}, force="us"),
                FeatureRule(force="everyone"),
            ],
        )
    }
    gb = GrowthBook(
        attributes={"id": "1", "country": "CA"},
        features=features,
        condition_evaluator=CountryEvaluator(),
    )
    assert gb.feature("feature").value == "everyone"

    gb.set_attributes({"id": "1", "country": "US"})
    assert gb.feature("feature").value == "us"


def test_feature_helpers():
    gb = GrowthBook(
        features={
            "on": {"defaultValue": True},
            "off": {"defaultValue": 0},
            "text": {"defaultValue": "blue"},
        }
    )

    assert gb.is_on("on") is True
    assert gb.is_off("off") is True
    assert gb.is_off("missing") is True
    assert gb.get_feature_value("text", "red") == "blue"
    assert gb.get_feature_value("missing", "red") == "red"
    assert gb.eval_feature("text").source == FeatureSource.DEFAULT_VALUE
    assert gb.feature("missing").source == "unknownFeature"


def test_feature_experiment_is_tracked():
    gb = GrowthBook(
        attributes={"id": "1"},
        features={
            "feature": {
                "defaultValue": "x",
                "rules": [{"key": "my-test", "variations": ["a", "b"]}],
            }
        },
    )
    getMockedCalls = getTrackingMock(gb)

    res = gb.feature("feature")

    calls = getMockedCalls()
    assert len(calls) == 1
    assert calls[0][0].key == "my-test"
    assert calls[0][1] is res.experimentResult


def test_get_features_and_overrides():
    gb = GrowthBook(
        features={"flag1": {"defaultValue": "A", "rules": [{"force": "B"}]}},
        overrides={"my-test": {"status": "draft", "coverage": 0.5}},
    )

    features = gb.get_features()
    assert list(features.keys()) == ["flag1"]
    assert features["flag1"].to_dict() == {
        "defaultValue": "A",
        "rules": [{"force": "B"}],
    }

    overrides = gb.get_overrides()
    assert overrides["my-test"].to_dict() == {
        "weights": None,
        "status": "draft",
        "coverage": 0.5,
        "force": None,
    }


def test_returned_features_do_not_change_the_snapshot():
    gb = GrowthBook(
        features={"flag1": {"defaultValue": "A"}},
        overrides={"my-test": {"status": "draft"}},
    )

    gb.get_features().clear()
    gb.get_overrides()["other-test"] = OverrideExperiment(coverage=0)

    assert gb.feature("flag1").value == "A"
    assert list(gb.get_overrides().keys()) == ["my-test"]
