"""Configuration for the offline sync manager."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import voluptuous as vol
import yaml

from .const import (
    CONF_BASE_URL,
    CONF_DATASETS,
    CONF_DEFAULT_TTL,
    CONF_DRAIN_INTERVAL,
    CONF_HEADERS,
    CONF_MAX_RETRIES,
    CONF_PREFETCH_INTERVAL,
    CONF_PROBE_INTERVAL,
    CONF_REQUEST_TIMEOUT,
    CONF_STORE_PATH,
    DEFAULT_DRAIN_INTERVAL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PREFETCH_INTERVAL,
    DEFAULT_PROBE_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STORE_PATH,
    DEFAULT_TTL,
    OFFLINE_DATASETS,
    DatasetSpec,
)
from .exceptions import OfflineSyncError


def _api_path(value: Any) -> str:
    path = vol.All(str, vol.Length(min=1))(value).strip()
    if not path.startswith("/"):
        raise vol.Invalid(f"dataset path must start with '/': {path}")
    return path


DATASET_SCHEMA = vol.Schema(
    {
        vol.Required("key"): vol.All(str, vol.Length(min=1)),
        vol.Required("path"): _api_path,
        vol.Optional("ttl", default=DEFAULT_TTL): vol.All(vol.Coerce(int), vol.Range(min=1)),
    }
)

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_BASE_URL): vol.All(str, vol.Match(r"^https?://"), msg="base_url must be an http(s) URL"),
        vol.Optional(CONF_STORE_PATH, default=DEFAULT_STORE_PATH): vol.Coerce(str),
        vol.Optional(CONF_REQUEST_TIMEOUT, default=DEFAULT_REQUEST_TIMEOUT): vol.All(
            vol.Coerce(float), vol.Range(min=1)
        ),
        vol.Optional(CONF_DRAIN_INTERVAL, default=DEFAULT_DRAIN_INTERVAL): vol.All(vol.Coerce(int), vol.Range(min=5)),
        vol.Optional(CONF_PREFETCH_INTERVAL, default=DEFAULT_PREFETCH_INTERVAL): vol.All(
            vol.Coerce(int), vol.Range(min=60)
        ),
        vol.Optional(CONF_PROBE_INTERVAL, default=DEFAULT_PROBE_INTERVAL): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(CONF_MAX_RETRIES, default=DEFAULT_MAX_RETRIES): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(CONF_DEFAULT_TTL, default=DEFAULT_TTL): vol.All(vol.Coerce(int), vol.Range(min=1)),
        vol.Optional(CONF_DATASETS): [DATASET_SCHEMA],
        vol.Optional(CONF_HEADERS, default={}): {str: vol.Coerce(str)},
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(slots=True)
class OfflineSyncConfig:
    """Settings required to run the offline sync manager."""

    base_url: str
    store_path: str = DEFAULT_STORE_PATH
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    drain_interval: int = DEFAULT_DRAIN_INTERVAL
    prefetch_interval: int = DEFAULT_PREFETCH_INTERVAL
    probe_interval: int = DEFAULT_PROBE_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    default_ttl: int = DEFAULT_TTL
    datasets: tuple[DatasetSpec, ...] = tuple(OFFLINE_DATASETS)
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> OfflineSyncConfig:
        try:
            data = CONFIG_SCHEMA(dict(options))
        except vol.Invalid as err:
            raise OfflineSyncError(f"invalid offline sync options: {err}", reason="invalid_config") from err
        datasets = data.get(CONF_DATASETS)
        keys = [item["key"] for item in datasets or ()]
        if len(keys) != len(set(keys)):
            raise OfflineSyncError("dataset keys must be unique", reason="invalid_config")
        return cls(
            base_url=data[CONF_BASE_URL].rstrip("/"),
            store_path=data[CONF_STORE_PATH],
            request_timeout=data[CONF_REQUEST_TIMEOUT],
            drain_interval=data[CONF_DRAIN_INTERVAL],
            prefetch_interval=data[CONF_PREFETCH_INTERVAL],
            probe_interval=data[CONF_PROBE_INTERVAL],
            max_retries=data[CONF_MAX_RETRIES],
            default_ttl=data[CONF_DEFAULT_TTL],
            datasets=tuple(datasets) if datasets is not None else tuple(OFFLINE_DATASETS),
            headers=dict(data[CONF_HEADERS]),
        )

    def to_options(self) -> dict[str, Any]:
        return {
            CONF_BASE_URL: self.base_url,
            CONF_STORE_PATH: self.store_path,
            CONF_REQUEST_TIMEOUT: self.request_timeout,
            CONF_DRAIN_INTERVAL: self.drain_interval,
            CONF_PREFETCH_INTERVAL: self.prefetch_interval,
            CONF_PROBE_INTERVAL: self.probe_interval,
            CONF_MAX_RETRIES: self.max_retries,
            CONF_DEFAULT_TTL: self.default_ttl,
            CONF_DATASETS: [dict(item) for item in self.datasets],
            CONF_HEADERS: dict(self.headers),
        }


def load_config(path: str | Path, **overrides: Any) -> OfflineSyncConfig:
    """Read options from a YAML file; keyword overrides win over the file."""

    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as err:
        raise OfflineSyncError(f"cannot read config {path}: {err}", reason="invalid_config") from err
    if not isinstance(raw, Mapping):
        raise OfflineSyncError(f"config {path} must contain a mapping", reason="invalid_config")
    options = dict(raw)
    options.update({key: value for key, value in overrides.items() if value is not None})
    return OfflineSyncConfig.from_options(options)
