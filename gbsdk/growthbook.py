#!/usr/bin/env python
"""
Client-side feature flag and A/B experiment evaluation.

A `GrowthBook` instance owns one evaluation context. Features and experiment
overrides are refreshed in the background by a `FeatureRepository` and swapped
in as a single snapshot, so every `feature()` or `run()` call sees one
consistent view.
"""

import json
import threading
import logging

from dataclasses import replace
from typing import Optional, Any, Tuple, Dict, Callable

import aiohttp
from urllib3 import PoolManager

from .cache_interfaces import AbstractFeatureCache, InMemoryFeatureCache
from .common_types import (
    AbstractConditionEvaluator,
    AbstractOverrideProvider,
    EvaluationContext,
    Experiment,
    Feature,
    FeatureResult,
    GlobalContext,
    Options,
    OverrideExperiment,
    Result,
    UserContext,
)
from .core import eval_feature as core_eval_feature, run_experiment
from .exceptions import FetchError

logger = logging.getLogger("gbsdk")

DEFAULT_API_HOST = "https://cdn.growthbook.io"


class FeatureRepository(object):
    """Loads feature and override documents with an in-memory cache in front.

    Each load returns `(data, is_remote)`: `is_remote` is False when the
    document was served from the cache and True when it came from the network.
    """

    def __init__(self) -> None:
        self.cache: AbstractFeatureCache = InMemoryFeatureCache()
        self.http: Optional[PoolManager] = None

    def set_cache(self, cache: AbstractFeatureCache) -> None:
        self.cache = cache

    def clear_cache(self):
        self.cache.clear()

    def load_features(
        self, api_host: str, client_key: str, ttl: int = 600
    ) -> Tuple[Dict, bool]:
        return self._load(self._get_features_url(api_host, client_key), client_key, ttl)

    def load_overrides(
        self, api_host: str, client_key: str, ttl: int = 600
    ) -> Tuple[Dict, bool]:
        return self._load(self._get_overrides_url(api_host, client_key), client_key, ttl)

    async def load_features_async(
        self, api_host: str, client_key: str, ttl: int = 600
    ) -> Tuple[Dict, bool]:
        return await self._load_async(
            self._get_features_url(api_host, client_key), client_key, ttl
        )

    async def load_overrides_async(
        self, api_host: str, client_key: str, ttl: int = 600
    ) -> Tuple[Dict, bool]:
        return await self._load_async(
            self._get_overrides_url(api_host, client_key), client_key, ttl
        )

    def _load(self, url: str, client_key: str, ttl: int) -> Tuple[Dict, bool]:
        if not client_key:
            raise ValueError("Must specify `client_key` to refresh features")

        cached = self.cache.get(url)
        if cached is not None:
            return cached, False

        res = self._fetch_and_decode(url)
        self.cache.set(url, res, ttl)
        logger.debug("Fetched %s from API, stored in cache", url)
        return res, True

    async def _load_async(self, url: str, client_key: str, ttl: int) -> Tuple[Dict, bool]:
        if not client_key:
            raise ValueError("Must specify `client_key` to refresh features")

        cached = self.cache.get(url)
        if cached is not None:
            return cached, False

        res = await self._fetch_and_decode_async(url)
        self.cache.set(url, res, ttl)
        logger.debug("Fetched %s from API, stored in cache", url)
        return res, True

    # Perform the GET request (separate method for easy mocking)
    def _get(self, url: str):
        self.http = self.http or PoolManager()
        return self.http.request("GET", url)

    def _fetch_and_decode(self, url: str) -> Dict:
        try:
            r = self._get(url)
        except Exception as e:
            logger.warning("Failed to fetch %s: %s", url, e)
            raise FetchError(url, str(e)) from e

        if r.status >= 400:
            logger.warning(
                "Failed to fetch %s, received status code %d", url, r.status
            )
            raise FetchError(url, "received status code %d" % r.status, status=r.status)

        try:
            decoded = json.loads(r.data.decode("utf-8"))
        except ValueError as e:
            logger.warning("Failed to decode JSON from %s", url)
            raise FetchError(url, "invalid JSON response", status=r.status) from e
        return self._check_document(url, decoded)

    async def _fetch_and_decode_async(self, url: str) -> Dict:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        logger.warning(
                            "Failed to fetch %s, received status code %d", url, response.status
                        )
                        raise FetchError(
                            url, "received status code %d" % response.status, status=response.status
                        )
                    decoded = await response.json()
        except FetchError:
            raise
        except aiohttp.ClientError as e:
            logger.warning("HTTP request failed: %s", e)
            raise FetchError(url, str(e)) from e
        except ValueError as e:
            logger.warning("Failed to decode JSON from %s", url)
            raise FetchError(url, "invalid JSON response") from e
        return self._check_document(url, decoded)

    @staticmethod
    def _check_document(url: str, decoded) -> Dict:
        if not isinstance(decoded, dict):
            logger.warning("Unexpected response shape from %s", url)
            raise FetchError(url, "response is not a JSON object")
        return decoded

    @staticmethod
    def _get_features_url(api_host: str, client_key: str) -> str:
        api_host = (api_host or DEFAULT_API_HOST).rstrip("/")
        return api_host + "/api/features/" + client_key

    @staticmethod
    def _get_overrides_url(api_host: str, client_key: str) -> str:
        api_host = (api_host or DEFAULT_API_HOST).rstrip("/")
        return api_host + "/config/" + client_key


# Singleton instance
feature_repo = FeatureRepository()


def _to_features(features: dict) -> Dict[str, Feature]:
    if features is not None and not isinstance(features, dict):
        raise ValueError("Features must be a JSON object")
    parsed: Dict[str, Feature] = {}
    for key, feature in (features or {}).items():
        if isinstance(feature, Feature):
            parsed[key] = feature
        elif isinstance(feature, dict):
            parsed[key] = Feature(
                rules=feature.get("rules", []),
                defaultValue=feature.get("defaultValue", None),
            )
        else:
            raise ValueError("Feature %s is not a JSON object" % key)
    return parsed


def _to_overrides(overrides: dict) -> Dict[str, OverrideExperiment]:
    if overrides is not None and not isinstance(overrides, dict):
        raise ValueError("Experiment overrides must be a JSON object")
    parsed: Dict[str, OverrideExperiment] = {}
    for key, override in (overrides or {}).items():
        if isinstance(override, OverrideExperiment):
            parsed[key] = override
        elif isinstance(override, dict):
            parsed[key] = OverrideExperiment.from_dict(override)
        else:
            raise ValueError("Override for %s is not a JSON object" % key)
    return parsed


class GrowthBook(object):
    def __init__(
        self,
        enabled: bool = True,
        attributes: dict = None,
        url: str = "",
        features: dict = None,
        overrides: dict = None,
        qa_mode: bool = False,
        on_experiment_viewed=None,
        api_host: str = "",
        client_key: str = "",
        cache_ttl: int = 600,
        forced_variations: dict = None,
        condition_evaluator: AbstractConditionEvaluator = None,
        override_provider: AbstractOverrideProvider = None,
        refresh_handler: Callable[[bool], None] = None,
        repository: FeatureRepository = None,
        # Deprecated args
        trackingCallback=None,
        qaMode: bool = False,
        forcedVariations: dict = None,
    ):
        self._attributes: Dict[str, Any] = dict(attributes or {})
        self._url = url
        self._api_host = api_host
        self._client_key = client_key
        self._cache_ttl = cache_ttl
        self._forced_variations: Dict[str, int] = dict(forced_variations or forcedVariations or {})
        self._override_provider = override_provider
        self._repository = repository or feature_repo

        # Only writers take the lock, evaluations read the snapshot reference once
        self._lock = threading.Lock()
        self._global_ctx = GlobalContext(
            options=Options(
                api_host=self._api_host,
                client_key=self._client_key,
                cache_ttl=self._cache_ttl,
                enabled=enabled,
                qa_mode=qa_mode or qaMode,
                on_experiment_viewed=on_experiment_viewed or trackingCallback,
                refresh_handler=refresh_handler,
            ),
            features=_to_features(features),
            overrides=_to_overrides(overrides),
            condition_evaluator=condition_evaluator,
        )

    def set_features(self, features: dict) -> None:
        parsed = _to_features(features)
        with self._lock:
            self._global_ctx = replace(self._global_ctx, features=parsed)

    def get_features(self) -> Dict[str, Feature]:
        return dict(self._global_ctx.features)

    def set_overrides(self, overrides: dict) -> None:
        parsed = _to_overrides(overrides)
        with self._lock:
            self._global_ctx = replace(self._global_ctx, overrides=parsed)

    def get_overrides(self) -> Dict[str, OverrideExperiment]:
        return dict(self._global_ctx.overrides)

    def set_attributes(self, attributes: dict) -> None:
        self._attributes = dict(attributes)

    def get_attributes(self) -> dict:
        return self._attributes

    def set_forced_variations(self, forced_variations: Dict[str, int]) -> None:
        self._forced_variations = dict(forced_variations)

    def set_url(self, url: str) -> None:
        self._url = url

    def get_context(self) -> EvaluationContext:
        return self._get_eval_context()

    # Refresh delegate, called by whatever loads features and overrides

    def features_fetched_successfully(self, features: dict, is_remote: bool) -> None:
        try:
            self.set_features(features)
        except (ValueError, TypeError) as e:
            self.features_fetch_failed(e, is_remote)
            return
        if is_remote:
            self._notify_refresh(True)

    def features_fetch_failed(self, error: Exception, is_remote: bool) -> None:
        logger.warning("Failed to refresh features: %s", error)
        if is_remote:
            self._notify_refresh(False)

    def overrides_fetched_successfully(self, overrides: dict, is_remote: bool) -> None:
        try:
            self.set_overrides(overrides)
        except (ValueError, TypeError) as e:
            self.overrides_fetch_failed(e, is_remote)
            return
        if is_remote:
            self._notify_refresh(True)

    def overrides_fetch_failed(self, error: Exception, is_remote: bool) -> None:
        logger.warning("Failed to refresh experiment overrides: %s", error)
        if is_remote:
            self._notify_refresh(False)

    def _notify_refresh(self, success: bool) -> None:
        handler = self._global_ctx.options.refresh_handler
        if not handler:
            return
        try:
            handler(success)
        except Exception:
            logger.exception("Error in refresh handler")

    def refresh_cache(self) -> None:
        if not self._client_key:
            raise ValueError("Must specify `client_key` to refresh features")

        try:
            data, is_remote = self._repository.load_overrides(
                self._api_host, self._client_key, self._cache_ttl
            )
        except FetchError as e:
            self.overrides_fetch_failed(e, is_remote=True)
        else:
            self.overrides_fetched_successfully(data.get("experiments", {}), is_remote)

        try:
            data, is_remote = self._repository.load_features(
                self._api_host, self._client_key, self._cache_ttl
            )
        except FetchError as e:
            self.features_fetch_failed(e, is_remote=True)
        else:
            self.features_fetched_successfully(data.get("features", {}), is_remote)

    async def refresh_cache_async(self) -> None:
        if not self._client_key:
            raise ValueError("Must specify `client_key` to refresh features")

        try:
            data, is_remote = await self._repository.load_overrides_async(
                self._api_host, self._client_key, self._cache_ttl
            )
        except FetchError as e:
            self.overrides_fetch_failed(e, is_remote=True)
        else:
            self.overrides_fetched_successfully(data.get("experiments", {}), is_remote)

        try:
            data, is_remote = await self._repository.load_features_async(
                self._api_host, self._client_key, self._cache_ttl
            )
        except FetchError as e:
            self.features_fetch_failed(e, is_remote=True)
        else:
            self.features_fetched_successfully(data.get("features", {}), is_remote)

    def _get_eval_context(self) -> EvaluationContext:
        return EvaluationContext(
            user=UserContext(
                url=self._url,
                attributes=dict(self._attributes),
                forced_variations=dict(self._forced_variations),
                override_provider=self._override_provider,
            ),
            global_ctx=self._global_ctx,
        )

    def feature(self, key: str) -> FeatureResult:
        context = self._get_eval_context()
        return core_eval_feature(
            key=key,
            evalContext=context,
            tracking_cb=context.global_ctx.options.on_experiment_viewed,
        )

    def eval_feature(self, key: str) -> FeatureResult:
        return self.feature(key)

    def is_on(self, key: str) -> bool:
        return self.feature(key).on

    def is_off(self, key: str) -> bool:
        return self.feature(key).off

    def get_feature_value(self, key: str, fallback):
        res = self.feature(key)
        return res.value if res.value is not None else fallback

    def run(self, experiment: Experiment) -> Result:
        context = self._get_eval_context()
        return run_experiment(
            experiment=experiment,
            evalContext=context,
            tracking_cb=context.global_ctx.options.on_experiment_viewed,
        )


class GrowthBookBuilder(object):
    """Collects settings and creates a `GrowthBook` instance.

    With an api key, `initialize()` triggers the first cache refresh, so
    features and overrides are available (from cache or network) right away.
    Without one the instance only evaluates what was passed to the builder.
    """

    def __init__(
        self,
        api_key: str,
        host_url: str,
        attributes: dict,
        tracking_callback: Callable[[Experiment, Result], None],
    ) -> None:
        self.api_key = api_key
        self.host_url = host_url
        self.attributes = attributes
        self.tracking_callback = tracking_callback
        self.qa_mode = False
        self.enabled = True
        self.url = ""
        self.refresh_handler: Optional[Callable[[bool], None]] = None
        self.forced_variations: Dict[str, int] = {}
        self.condition_evaluator: Optional[AbstractConditionEvaluator] = None
        self.override_provider: Optional[AbstractOverrideProvider] = None
        self.repository: Optional[FeatureRepository] = None
        self.features: Optional[dict] = None
        self.overrides: Optional[dict] = None

    def set_qa_mode(self, is_enabled: bool) -> "GrowthBookBuilder":
        self.qa_mode = is_enabled
        return self

    def set_enabled(self, is_enabled: bool) -> "GrowthBookBuilder":
        self.enabled = is_enabled
        return self

    def set_refresh_handler(self, refresh_handler: Callable[[bool], None]) -> "GrowthBookBuilder":
        self.refresh_handler = refresh_handler
        return self

    def set_url(self, url: str) -> "GrowthBookBuilder":
        self.url = url
        return self

    def set_features(self, features: dict) -> "GrowthBookBuilder":
        self.features = features
        return self

    def set_overrides(self, overrides: dict) -> "GrowthBookBuilder":
        self.overrides = overrides
        return self

    def set_forced_variations(self, forced_variations: Dict[str, int]) -> "GrowthBookBuilder":
        self.forced_variations = forced_variations
        return self

    def set_condition_evaluator(self, evaluator: AbstractConditionEvaluator) -> "GrowthBookBuilder":
        self.condition_evaluator = evaluator
        return self

    def set_override_provider(self, provider: AbstractOverrideProvider) -> "GrowthBookBuilder":
        self.override_provider = provider
        return self

    def set_repository(self, repository: FeatureRepository) -> "GrowthBookBuilder":
        self.repository = repository
        return self

    def initialize(self) -> GrowthBook:
        gb = GrowthBook(
            enabled=self.enabled,
            attributes=self.attributes,
            url=self.url,
            features=self.features,
            overrides=self.overrides,
            qa_mode=self.qa_mode,
            on_experiment_viewed=self.tracking_callback,
            api_host=self.host_url,
            client_key=self.api_key,
            forced_variations=self.forced_variations,
            condition_evaluator=self.condition_evaluator,
            override_provider=self.override_provider,
            refresh_handler=self.refresh_handler,
            repository=self.repository,
        )
        if self.api_key:
            gb.refresh_cache()
        return gb
