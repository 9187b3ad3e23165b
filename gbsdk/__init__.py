from .growthbook import *

from .common_types import (
    AbstractConditionEvaluator,
    AbstractOverrideProvider,
    Experiment,
    ExperimentStatus,
    Feature,
    FeatureResult,
    FeatureRule,
    FeatureSource,
    Namespace,
    Options,
    OverrideExperiment,
    Result,
)
from .cache_interfaces import AbstractFeatureCache, InMemoryFeatureCache
from .core import QueryStringOverrideProvider
from .exceptions import GrowthBookError, FetchError

__version__ = "0.3.0"
