#!/usr/bin/env python

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union
from enum import Enum
from abc import ABC, abstractmethod


class ExperimentStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    DRAFT = "draft"


class FeatureSource(str, Enum):
    FORCE = "force"
    EXPERIMENT = "experiment"
    DEFAULT_VALUE = "defaultValue"
    UNKNOWN_FEATURE = "unknownFeature"


class Namespace(NamedTuple):
    id: str
    rangeStart: float
    rangeEnd: float


def _toNamespace(namespace) -> Optional[Namespace]:
    if namespace is None or isinstance(namespace, Namespace):
        return namespace
    if isinstance(namespace, dict):
        return Namespace(
            namespace.get("id", ""),
            namespace.get("rangeStart", 0),
            namespace.get("rangeEnd", 1),
        )
    return Namespace(*namespace)


class AbstractConditionEvaluator(ABC):
    """Decides whether a targeting condition matches a set of attributes.

    The condition language itself is not defined by the SDK, so the matcher is
    supplied by the application. Conditions that are plain callables bypass the
    evaluator and are called with the attributes directly.
    """

    @abstractmethod
    def evaluate(self, attributes: Dict[str, Any], condition: Any) -> bool:
        pass


class AbstractOverrideProvider(ABC):
    """Source of externally forced variations, e.g. QA links."""

    @abstractmethod
    def get_forced_variation(self, key: str) -> Optional[int]:
        pass


class OverrideExperiment(object):
    def __init__(
        self,
        weights: List[float] = None,
        status: Union[ExperimentStatus, str] = ExperimentStatus.RUNNING,
        coverage: float = None,
        force: int = None,
    ) -> None:
        self.weights = weights
        self.status = ExperimentStatus(status)
        self.coverage = coverage
        self.force = force

    @classmethod
    def from_dict(cls, data: dict) -> "OverrideExperiment":
        return cls(
            weights=data.get("weights", None),
            status=data.get("status", None) or ExperimentStatus.RUNNING,
            coverage=data.get("coverage", None),
            force=data.get("force", None),
        )

    def to_dict(self) -> dict:
        return {
            "weights": self.weights,
            "status": self.status.value,
            "coverage": self.coverage,
            "force": self.force,
        }


class Experiment(object):
    def __init__(
        self,
        key: str,
        variations: list,
        weights: List[float] = None,
        active: bool = True,
        coverage: float = None,
        condition=None,
        namespace: Namespace = None,
        include: Callable[[], bool] = None,
        force: int = None,
        hashAttribute: str = "id",
    ) -> None:
        self.key = key
        self.variations = variations
        self.weights = weights
        self.active = active
        self.coverage = coverage
        self.condition = condition
        self.namespace = _toNamespace(namespace)
        self.include = include
        self.force = force
        self.hashAttribute = hashAttribute or "id"

    def to_dict(self) -> dict:
        obj = {
            "key": self.key,
            "variations": self.variations,
            "weights": self.weights,
            "active": self.active,
            "coverage": self.coverage,
            "namespace": list(self.namespace) if self.namespace else None,
            "force": self.force,
            "hashAttribute": self.hashAttribute,
        }
        if self.condition is not None and not callable(self.condition):
            obj["condition"] = self.condition
        return obj

    def update(self, override: OverrideExperiment) -> None:
        self.weights = override.weights
        self.coverage = override.coverage
        self.force = override.force
        self.active = override.status == ExperimentStatus.RUNNING


class Result(object):
    def __init__(
        self,
        variationId: int = 0,
        inExperiment: bool = False,
        value=None,
        hashAttribute: str = "id",
        hashValue: str = "",
    ) -> None:
        self.variationId = variationId
        self.inExperiment = inExperiment
        self.value = value
        self.hashAttribute = hashAttribute
        self.hashValue = hashValue

    def to_dict(self) -> dict:
        obj = {
            "variationId": self.variationId,
            "inExperiment": self.inExperiment,
            "hashAttribute": self.hashAttribute,
            "hashValue": self.hashValue,
        }
        if self.inExperiment:
            obj["value"] = self.value
        return obj


class FeatureRule(object):
    def __init__(
        self,
        key: str = "",
        variations: list = None,
        weights: List[float] = None,
        coverage: float = None,
        condition=None,
        namespace: Namespace = None,
        force=None,
        hashAttribute: str = "id",
    ) -> None:
        self.key = key
        self.variations = variations
        self.weights = weights
        self.coverage = coverage
        self.condition = condition
        self.namespace = _toNamespace(namespace)
        self.force = force
        self.hashAttribute = hashAttribute or "id"

    @classmethod
    def from_dict(cls, data: dict) -> "FeatureRule":
        return cls(
            key=data.get("key", ""),
            variations=data.get("variations", None),
            weights=data.get("weights", None),
            coverage=data.get("coverage", None),
            condition=data.get("condition", None),
            namespace=data.get("namespace", None),
            force=data.get("force", None),
            hashAttribute=data.get("hashAttribute", "id"),
        )

    def to_dict(self) -> dict:
        data: Dict[str, Any] = {}
        if self.key:
            data["key"] = self.key
        if self.variations is not None:
            data["variations"] = self.variations
        if self.weights is not None:
            data["weights"] = self.weights
        if self.coverage is not None:
            data["coverage"] = self.coverage
        if self.condition is not None and not callable(self.condition):
            data["condition"] = self.condition
        if self.namespace is not None:
            data["namespace"] = list(self.namespace)
        if self.force is not None:
            data["force"] = self.force
        if self.hashAttribute != "id":
            data["hashAttribute"] = self.hashAttribute
        return data


class Feature(object):
    def __init__(self, defaultValue=None, rules: list = None) -> None:
        self.defaultValue = defaultValue
        self.rules: List[FeatureRule] = []
        if rules is not None and not isinstance(rules, list):
            raise ValueError("Feature rules must be a list")
        for rule in rules or []:
            if isinstance(rule, FeatureRule):
                self.rules.append(rule)
            elif isinstance(rule, dict):
                self.rules.append(FeatureRule.from_dict(rule))
            else:
                raise ValueError("Invalid feature rule: %r" % (rule,))

    def to_dict(self) -> dict:
        return {
            "defaultValue": self.defaultValue,
            "rules": [rule.to_dict() for rule in self.rules],
        }


class FeatureResult(object):
    def __init__(
        self,
        value,
        source: Union[FeatureSource, str],
        experiment: Experiment = None,
        experimentResult: Result = None,
    ) -> None:
        self.value = value
        self.source = FeatureSource(source)
        self.experiment = experiment
        self.experimentResult = experimentResult
        self.on = bool(value)
        self.off = not bool(value)

    def to_dict(self) -> dict:
        data = {
            "value": self.value,
            "source": self.source.value,
            "on": self.on,
            "off": self.off,
        }
        if self.experiment:
            data["experiment"] = self.experiment.to_dict()
        if self.experimentResult:
            data["experimentResult"] = self.experimentResult.to_dict()

        return data


@dataclass
class Options:
    api_host: Optional[str] = "https://cdn.growthbook.io"
    client_key: Optional[str] = None
    cache_ttl: int = 60
    enabled: bool = True
    qa_mode: bool = False
    on_experiment_viewed: Optional[Callable[[Experiment, Result], None]] = None
    refresh_handler: Optional[Callable[[bool], None]] = None


@dataclass(frozen=True)
class UserContext:
    url: Optional[str] = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    forced_variations: Dict[str, int] = field(default_factory=dict)
    override_provider: Optional[AbstractOverrideProvider] = None


# Replaced as a whole on every refresh, never mutated in place.
@dataclass(frozen=True)
class GlobalContext:
    options: Options
    features: Dict[str, Feature] = field(default_factory=dict)
    overrides: Dict[str, OverrideExperiment] = field(default_factory=dict)
    condition_evaluator: Optional[AbstractConditionEvaluator] = None


@dataclass(frozen=True)
class EvaluationContext:
    user: UserContext
    global_ctx: GlobalContext
