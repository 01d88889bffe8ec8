from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from tenant_config.metrics import observe_soft_faults
from tenant_config.tenants.defaults import DEFAULT_FEATURE_CATALOG, LEGACY_FEATURE_ALIASES, FeatureCatalog
from tenant_config.tenants.errors import UnknownFeatureError
from tenant_config.tenants.schemas import FeatureValue


logger = logging.getLogger("tenant_config.features")


@dataclass(frozen=True)
class BooleanFeatureLeaf:
    enabled: bool


@dataclass(frozen=True)
class StructuredFeatureLeaf:
    name: str | None = None
    enabled: bool | None = None
    settings: dict[str, Any] | None = field(default=None, hash=False)


FeatureLeaf = BooleanFeatureLeaf | StructuredFeatureLeaf


def parse_feature_leaf(value: Any) -> FeatureLeaf | None:
    if isinstance(value, bool):
        return BooleanFeatureLeaf(enabled=value)
    if isinstance(value, FeatureValue):
        return StructuredFeatureLeaf(name=value.name, enabled=value.enabled, settings=dict(value.settings))
    if not isinstance(value, Mapping):
        return None

    name = value.get("name", value.get("feature_name"))
    enabled = value.get("enabled", value.get("is_enabled"))
    settings = value.get("settings")
    return StructuredFeatureLeaf(
        name=name if isinstance(name, str) and name else None,
        enabled=enabled if isinstance(enabled, bool) else None,
        settings=dict(settings) if isinstance(settings, Mapping) else None,
    )


def _as_feature_map(remote: Any) -> dict[str, Any]:
    if isinstance(remote, Mapping):
        return dict(remote)
    # Feature rows as stored by the per-feature table: [{feature_key, feature_name, is_enabled, settings}].
    if isinstance(remote, list):
        rows: dict[str, Any] = {}
        for row in remote:
            if isinstance(row, Mapping) and isinstance(row.get("feature_key"), str):
                rows[row["feature_key"]] = row
        return rows
    return {}


class FeatureFlagResolver:
    def __init__(self, catalog: FeatureCatalog | None = None) -> None:
        self.catalog = catalog if catalog is not None else DEFAULT_FEATURE_CATALOG

    def resolve(self, remote: Any, catalog: FeatureCatalog | None = None) -> dict[str, FeatureValue]:
        source = catalog if catalog is not None else self.catalog
        raw = _as_feature_map(remote)
        resolved: dict[str, FeatureValue] = {}
        malformed = 0

        for key, default in source.items():
            if key in raw:
                value = raw[key]
            else:
                value = self._legacy_value(raw, key)
                if value is None:
                    resolved[key] = default.model_copy(deep=True)
                    continue

            leaf = parse_feature_leaf(value)
            if leaf is None:
                malformed += 1
                resolved[key] = default.model_copy(deep=True)
                continue
            resolved[key] = self._merge(default, leaf)

        if malformed:
            logger.warning("replaced %d malformed feature entries with catalog defaults", malformed)
            observe_soft_faults("malformed_feature", malformed)
        return resolved

    def toggle(self, features: Mapping[str, FeatureValue], key: str, enabled: bool) -> dict[str, FeatureValue]:
        if key not in self.catalog:
            raise UnknownFeatureError(key)
        current = self.resolve(dict(features))
        current[key] = current[key].model_copy(update={"enabled": enabled})
        return current

    def is_enabled(self, features: Mapping[str, FeatureValue], key: str) -> bool:
        feature = features.get(key)
        if feature is None:
            default = self.catalog.get(key)
            return default.enabled if default is not None else False
        return feature.enabled

    def dump(self, features: Mapping[str, FeatureValue]) -> dict[str, dict[str, Any]]:
        return {key: value.model_dump(mode="json") for key, value in features.items()}

    def _legacy_value(self, raw: dict[str, Any], key: str) -> Any:
        for legacy_key, canonical in LEGACY_FEATURE_ALIASES.items():
            if canonical == key and legacy_key in raw:
                return raw[legacy_key]
        return None

    def _merge(self, default: FeatureValue, leaf: FeatureLeaf) -> FeatureValue:
        if isinstance(leaf, BooleanFeatureLeaf):
            return FeatureValue(name=default.name, enabled=leaf.enabled, settings={})
        return FeatureValue(
            name=leaf.name if leaf.name is not None else default.name,
            enabled=leaf.enabled if leaf.enabled is not None else default.enabled,
            settings=leaf.settings if leaf.settings is not None else dict(default.settings),
        )
