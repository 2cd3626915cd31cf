"""
Configuration loading and validation for WikiScout.
Pydantic describes the schema; YAML or JSON files provide the values.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
    model_validator,
)

from wiki_scout.crawler.url_normalizer import CATEGORY_EXCLUSION_PATTERNS, DEFAULT_BASE_URL

__all__ = (
    "CrawlConfig",
    "CacheConfig",
    "EmbeddingConfig",
    "SearchConfig",
    "ScoutConfig",
    "load_config",
)


class CrawlConfig(BaseModel):
    """Settings for one crawl run."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: HttpUrl = Field(DEFAULT_BASE_URL, description="Wiki origin; root-relative links resolve against it.")
    seeds: List[str] = Field(default_factory=list, description="Seed URLs or root-relative paths.")
    max_depth: Optional[int] = Field(None, ge=0, description="Maximum link depth (None = unlimited).")
    max_pages: Optional[int] = Field(None, ge=1, description="Hard page budget (None = unlimited).")
    concurrency: int = Field(5, ge=1, description="Concurrent fetch workers.")
    rate_limit: float = Field(2.0, gt=0, description="Aggregate requests per second.")
    retry_times: int = Field(3, ge=0, description="Retries on 408/429/5xx and connection errors.")
    backoff_base: float = Field(1.0, ge=0, description="Base delay of the exponential backoff (seconds).")
    timeout: float = Field(30.0, gt=0, description="Timeout per fetch (seconds).")
    user_agent: str = Field("WikiScoutBot/1.0", min_length=1, description="User-Agent header.")
    progress_interval: int = Field(10, ge=1, description="Pages between progress snapshots.")
    category: Optional[str] = Field(None, description="Drop links matching this category's exclusion patterns.")

    @field_validator("base_url", mode="before")
    def _strip_trailing_slash(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("category")
    def _known_category(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in CATEGORY_EXCLUSION_PATTERNS:
            raise ValueError(f"unknown category {v!r}, expected one of {sorted(CATEGORY_EXCLUSION_PATTERNS)}")
        return v


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    cache_dir: Path = Field(Path("cache/html"), description="Directory of the HTML content cache.")
    ttl_seconds: Optional[float] = Field(None, gt=0, description="Entry lifetime (None = until purged).")


class EmbeddingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    model_name: str = Field("BAAI/bge-small-en-v1.5", min_length=1)
    dimensions: int = Field(384, ge=1)
    cache_size: int = Field(100, ge=1)
    cache_ttl: float = Field(300.0, gt=0, description="Seconds a cached query vector stays valid.")
    timeout: Optional[float] = Field(10.0, gt=0)
    prewarm_queries: List[str] = Field(default_factory=list)


class SearchConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    index_path: Optional[Path] = Field(None, description="JSON file of the document index.")
    lexical_weight: float = Field(0.5, ge=0)
    vector_weight: float = Field(0.5, ge=0)
    single_source_penalty: float = Field(0.8, ge=0, le=1)
    candidate_multiplier: int = Field(3, ge=1)
    default_limit: int = Field(10, ge=1)
    max_limit: int = Field(100, ge=1)
    query_timeout: Optional[float] = Field(5.0, gt=0)
    rerank: bool = Field(True, description="Rescore the top candidates with a cross-encoder.")
    rerank_model: str = Field("BAAI/bge-reranker-base", min_length=1)

    @model_validator(mode="after")
    def _check_weights(self) -> SearchConfig:
        if self.lexical_weight + self.vector_weight <= 0:
            raise ValueError("lexical_weight and vector_weight cannot both be 0")
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        return self


class ScoutConfig(BaseModel):
    """Top-level configuration: one section per subsystem."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of YAML must be a mapping, got {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Top level of JSON must be a mapping, got {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None]) -> ScoutConfig:
    """
    Read YAML or JSON and return a validated ScoutConfig.
    Raises FileNotFoundError when the file (or the default config) is missing.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(_DEFAULT_CFG))
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Unsupported config format: {suffix}")

    try:
        return ScoutConfig(**data)
    except ValidationError:
        raise
