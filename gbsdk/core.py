import copy
import logging
import math
import re

from urllib.parse import urlparse, parse_qs
from typing import Any, Callable, Optional, Tuple, List
from .common_types import (
    AbstractOverrideProvider,
    EvaluationContext,
    Experiment,
    FeatureResult,
    FeatureSource,
    Namespace,
    Result,
)


logger = logging.getLogger("gbsdk.core")

_INTEGER = re.compile(r"[+-]?[0-9]+")


def fnv1a32(value: str) -> int:
    hval = 0x811C9DC5
    prime = 0x01000193
    uint32_max = 2 ** 32
    for b in value.encode("utf-8"):
        hval = hval ^ b
        hval = (hval * prime) % uint32_max
    return hval

def gbhash(seed: str, value: str) -> float:
    n = fnv1a32(value + seed)
    return (n % 1000) / 1000

def toAttributeString(attributeValue: Any) -> Optional[str]:
    """Coerce an attribute to the string used for hashing.

    Returns None for missing values and for lists and dicts, which have no
    stable string form across SDKs.
    """
    if attributeValue is None:
        return None
    if isinstance(attributeValue, bool):
        return "true" if attributeValue else "false"
    if isinstance(attributeValue, str):
        return attributeValue
    if isinstance(attributeValue, int):
        return str(attributeValue)
    if isinstance(attributeValue, float):
        if attributeValue.is_integer():
            return str(int(attributeValue))
        return repr(attributeValue)
    return None

def toNumber(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        n = float(value)
    elif isinstance(value, str):
        try:
            n = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(n):
        return None
    return n

def inNamespace(hashValue: str, namespace: Namespace) -> bool:
    n = toNumber(hashValue)
    # Non-numeric ids are never filtered by a namespace
    if n is None:
        return True
    return namespace.rangeStart <= n <= namespace.rangeEnd

def inRange(n: float, range: Tuple[float, float]) -> bool:
    return range[0] <= n < range[1]

def chooseVariation(n: float, ranges: List[Tuple[float, float]]) -> int:
    for i, r in enumerate(ranges):
        if inRange(n, r):
            return i
    return -1

def getQueryStringOverride(id: str, url: str) -> Optional[int]:
    if not url:
        return None
    res = urlparse(url)
    if not res.query:
        return None
    qs = parse_qs(res.query)
    if id not in qs:
        return None
    variation = qs[id][0]
    if variation is None or not _INTEGER.fullmatch(variation):
        return None
    return int(variation)


class QueryStringOverrideProvider(AbstractOverrideProvider):
    """Forced variations read from `?<experiment key>=<variation>` in a URL."""

    def __init__(self, url: str = "") -> None:
        self.url = url

    def get_forced_variation(self, key: str) -> Optional[int]:
        return getQueryStringOverride(key, self.url)


def getEqualWeights(numVariations: int) -> List[float]:
    if numVariations < 1:
        return []
    return [1 / numVariations for _ in range(numVariations)]


def getBucketRanges(
    numVariations: int, coverage: float = 1, weights: List[float] = None
) -> List[Tuple[float, float]]:
    if coverage < 0:
        coverage = 0
    if coverage > 1:
        coverage = 1
    if weights is None:
        weights = getEqualWeights(numVariations)
    if len(weights) != numVariations:
        logger.warning(
            "Expected %d weights, got %d, using an even split", numVariations, len(weights)
        )
        weights = getEqualWeights(numVariations)

    cumulative: float = 0
    ranges = []
    for w in weights:
        start = cumulative
        cumulative += w
        ranges.append((start, start + coverage * w))

    return ranges

def _getHashValue(attr: str, evalContext: EvaluationContext) -> Tuple[str, str]:
    attributes = evalContext.user.attributes
    idValue = toAttributeString(attributes.get("id", None)) or ""
    hashValue = toAttributeString(attributes.get(attr, None))
    if hashValue is None:
        hashValue = idValue
    return (idValue, hashValue)

def _conditionPasses(condition, evalContext: EvaluationContext, default: bool) -> bool:
    attributes = evalContext.user.attributes
    try:
        if callable(condition):
            return bool(condition(attributes))
        evaluator = evalContext.global_ctx.condition_evaluator
        if evaluator is None:
            return default
        return bool(evaluator.evaluate(attributes, condition))
    except Exception:
        logger.warning("Condition raised an Exception, treating it as false")
        return False

def _isIncludedInRollout(seed: str, coverage: float, evalContext: EvaluationContext) -> bool:
    (idValue, _) = _getHashValue("id", evalContext)
    if idValue == "":
        return False
    return gbhash(seed, idValue) <= coverage

def _getForcedVariation(key: str, evalContext: EvaluationContext) -> Optional[int]:
    provider = evalContext.user.override_provider or QueryStringOverrideProvider(
        evalContext.user.url
    )
    try:
        return provider.get_forced_variation(key)
    except Exception:
        logger.warning("Override provider raised an Exception, experiment %s", key)
        return None

def eval_feature(
    key: str,
    evalContext: EvaluationContext = None,
    tracking_cb: Callable[[Experiment, Result], None] = None
) -> FeatureResult:
    """Core feature evaluation logic as a standalone function"""

    if evalContext is None:
        raise ValueError("evalContext is required - eval_feature")

    feature = evalContext.global_ctx.features.get(key, None)
    if feature is None:
        logger.warning("Unknown feature %s", key)
        return FeatureResult(None, FeatureSource.UNKNOWN_FEATURE)

    for rule in feature.rules:
        if rule.condition is not None:
            if not _conditionPasses(rule.condition, evalContext, default=True):
                logger.debug(
                    "Skip rule because of failed condition, feature %s", key
                )
                continue

        if rule.force is not None:
            if rule.coverage is not None and not _isIncludedInRollout(
                seed=key, coverage=rule.coverage, evalContext=evalContext
            ):
                logger.debug(
                    "Skip rule because user not included in percentage rollout, feature %s",
                    key,
                )
                continue

            logger.debug("Force value from rule, feature %s", key)
            return FeatureResult(rule.force, FeatureSource.FORCE)

        if rule.variations is None:
            logger.warning("Skip invalid rule, feature %s", key)
            continue

        exp = Experiment(
            key=rule.key or key,
            variations=rule.variations,
            coverage=rule.coverage,
            weights=rule.weights,
            hashAttribute=rule.hashAttribute,
            namespace=rule.namespace,
        )

        result = run_experiment(experiment=exp, evalContext=evalContext, tracking_cb=tracking_cb)

        if not result.inExperiment:
            logger.debug(
                "Skip rule because user not included in experiment, feature %s", key
            )
            continue

        logger.debug("Assign value from experiment, feature %s", key)
        return FeatureResult(result.value, FeatureSource.EXPERIMENT, exp, result)

    logger.debug("Use default value for feature %s", key)
    return FeatureResult(feature.defaultValue, FeatureSource.DEFAULT_VALUE)

def run_experiment(experiment: Experiment,
                   evalContext: EvaluationContext = None,
                   tracking_cb: Callable[[Experiment, Result], None] = None
                ) -> Result:
    if evalContext is None:
        raise ValueError("evalContext is required - run_experiment")
    # 1. Fewer than 2 variations or SDK disabled
    if not experiment.variations or len(experiment.variations) < 2:
        logger.warning(
            "Experiment %s has less than 2 variations, skip", experiment.key
        )
        return _getExperimentResult(experiment)
    if not evalContext.global_ctx.options.enabled:
        logger.debug(
            "Skip experiment %s because the SDK is disabled", experiment.key
        )
        return _getExperimentResult(experiment)
    # 2. Forced externally, e.g. via the querystring
    qs = _getForcedVariation(experiment.key, evalContext)
    if qs is not None:
        logger.debug(
            "Force variation %d from override provider, experiment %s",
            qs,
            experiment.key,
        )
        return _getExperimentResult(experiment, variationId=qs)
    # 3. Forced in the context
    forced = evalContext.user.forced_variations.get(experiment.key, None)
    if forced is not None:
        logger.debug(
            "Force variation %d from context, experiment %s",
            forced,
            experiment.key,
        )
        return _getExperimentResult(experiment, variationId=forced)
    # 4. Merge overrides into a working copy
    override = evalContext.global_ctx.overrides.get(experiment.key, None)
    if override is not None:
        experiment = copy.copy(experiment)
        experiment.update(override)
    # 5. Not active
    if not experiment.active:
        logger.debug("Experiment %s is not active, skip", experiment.key)
        return _getExperimentResult(experiment)
    # 6. Get the user hash value
    (idValue, hashValue) = _getHashValue(experiment.hashAttribute, evalContext)
    if not hashValue:
        logger.debug(
            "Skip experiment %s because user's hashAttribute value is empty",
            experiment.key,
        )
        return _getExperimentResult(experiment)
    # 7. Not in namespace
    if experiment.namespace and not inNamespace(hashValue, experiment.namespace):
        logger.debug("Skip experiment %s because of namespace", experiment.key)
        return _getExperimentResult(experiment, hashValue=hashValue)
    # 8. Include callback
    if experiment.include:
        try:
            if not experiment.include():
                logger.debug(
                    "Skip experiment %s because include() returned false",
                    experiment.key,
                )
                return _getExperimentResult(experiment, hashValue=hashValue)
        except Exception:
            logger.warning(
                "Skip experiment %s because include() raised an Exception",
                experiment.key,
            )
            return _getExperimentResult(experiment, hashValue=hashValue)
    # 9. Condition
    if experiment.condition is not None and not _conditionPasses(
        experiment.condition, evalContext, default=False
    ):
        logger.debug(
            "Skip experiment %s because user failed the condition", experiment.key
        )
        return _getExperimentResult(experiment, hashValue=hashValue)
    # 10. Get bucket ranges and choose variation
    c = experiment.coverage
    ranges = getBucketRanges(
        len(experiment.variations), c if c is not None else 1, experiment.weights
    )
    n = gbhash(experiment.key, idValue)
    assigned = chooseVariation(n, ranges)
    if assigned < 0:
        logger.debug(
            "Skip experiment %s because user is not included in the rollout",
            experiment.key,
        )
        return _getExperimentResult(experiment, hashValue=hashValue)
    # 11. Forced experiment
    if experiment.force is not None:
        logger.debug(
            "Force variation %d in experiment %s", experiment.force, experiment.key
        )
        return _getExperimentResult(
            experiment, variationId=experiment.force, hashValue=hashValue
        )
    # 12. QA mode
    if evalContext.global_ctx.options.qa_mode:
        logger.debug("Skip experiment %s because of QA Mode", experiment.key)
        return _getExperimentResult(experiment, hashValue=hashValue)

    result = Result(
        variationId=assigned,
        inExperiment=True,
        value=experiment.variations[assigned],
        hashAttribute=experiment.hashAttribute,
        hashValue=hashValue,
    )

    # 13. Fire the tracking callback
    if tracking_cb:
        try:
            tracking_cb(experiment, result)
        except Exception:
            logger.exception("Error in tracking callback, experiment %s", experiment.key)

    logger.debug("Assigned variation %d in experiment %s", assigned, experiment.key)
    return result

def _getExperimentResult(
    experiment: Experiment,
    variationId: int = 0,
    hashValue: str = "",
) -> Result:
    return Result(
        variationId=variationId,
        inExperiment=False,
        hashAttribute=experiment.hashAttribute,
        hashValue=hashValue,
    )
