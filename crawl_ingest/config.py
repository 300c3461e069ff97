"""
Crawl configuration.

The crawl itself is described by a JSON file validated once at start-up
into an immutable :class:`CrawlConfig`.  Process-level switches (which
file to read, file logging, dry runs) come from environment variables
through ``pydantic_settings.BaseSettings``.
"""

from __future__ import annotations

import json
import pathlib
from typing import Literal

import pydantic
import pydantic_settings

from crawl_ingest.models import crawl
from crawl_ingest.utils import errors, logger

log = logger.create_logger("Config")

_STRICT = pydantic.ConfigDict(frozen=True, extra="forbid")


class BigQueryConfig(pydantic.BaseModel):
    """Destination dataset and table.

    Attributes:
        dataset_id: BigQuery dataset, created when missing.
        table_id: Day-partitioned table, created when missing.
        location: Dataset location used on creation.
    """

    model_config = _STRICT

    dataset_id: str = pydantic.Field(min_length=1)
    table_id: str = pydantic.Field(min_length=1)
    location: str = "US"


class BrowserConfig(pydantic.BaseModel):
    """Chromium launch options."""

    model_config = _STRICT

    headless: bool = True
    args: tuple[str, ...] = ()
    user_agent: str | None = None


class CrawlerOptions(pydantic.BaseModel):
    """Tuning for the fetch engine.

    Attributes:
        max_concurrency: Pages rendered in parallel.
        max_requests: Stop queueing after this many fetches; ``0`` is unlimited.
        navigation_timeout_ms: Per-page navigation timeout.
        wait_until: Playwright load state awaited after navigation.
        deadline_seconds: Give up draining after this long; ``None`` waits forever.
    """

    model_config = _STRICT

    max_concurrency: int = pydantic.Field(default=4, ge=1, le=64)
    max_requests: int = pydantic.Field(default=0, ge=0)
    navigation_timeout_ms: int = pydantic.Field(default=30000, gt=0)
    wait_until: Literal["commit", "domcontentloaded", "load", "networkidle"] = "load"
    deadline_seconds: float | None = pydantic.Field(default=None, gt=0)


class CrawlConfig(pydantic.BaseModel):
    """Validated, immutable description of one crawl run."""

    model_config = _STRICT

    start_url: str
    domain: str
    project_id: str = pydantic.Field(min_length=1)
    base_path: str = "/"
    skip_external: bool = False
    cookies_only: bool = False
    bigquery: BigQueryConfig
    browser: BrowserConfig = pydantic.Field(default_factory=BrowserConfig)
    crawler: CrawlerOptions = pydantic.Field(default_factory=CrawlerOptions)

    @pydantic.field_validator("start_url")
    @classmethod
    def _check_start_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("start_url must be an absolute http(s) URL")
        return value

    @pydantic.model_validator(mode="after")
    def _check_scope(self) -> CrawlConfig:
        try:
            self.scope_rule()
        except pydantic.ValidationError as exc:
            raise ValueError("; ".join(err["msg"] for err in exc.errors())) from exc
        return self

    def scope_rule(self) -> crawl.ScopeRule:
        """Return the scope rule derived from ``domain`` and ``base_path``."""
        return crawl.ScopeRule(domain=self.domain, base_path=self.base_path)


class Settings(pydantic_settings.BaseSettings):
    """Environment-driven process settings.

    Attributes:
        config_path: JSON configuration file to load.
        write_to_file: Mirror log output into ``.logs/``.
        dry_run: Write records to memory instead of BigQuery.
    """

    config_path: pathlib.Path = pydantic.Field(
        default=pathlib.Path("config.json"), validation_alias="CRAWL_CONFIG_PATH"
    )
    write_to_file: bool = pydantic.Field(default=False, validation_alias="WRITE_TO_FILE")
    dry_run: bool = pydantic.Field(default=False, validation_alias="CRAWL_DRY_RUN")


def _format_problems(exc: pydantic.ValidationError) -> list[str]:
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "<root>"
        problems.append(f"{location}: {err['msg']}")
    return problems


def parse_config(data: object) -> CrawlConfig:
    """Validate already-decoded configuration data.

    Raises:
        ConfigurationError: Listing every failing field.
    """
    try:
        return CrawlConfig.model_validate(data)
    except pydantic.ValidationError as exc:
        problems = _format_problems(exc)
        raise errors.ConfigurationError(
            "Error(s) in configuration file:\n  " + "\n  ".join(problems),
            problems=problems,
        ) from exc


def load_config(path: pathlib.Path | str) -> CrawlConfig:
    """Read and validate the JSON configuration at *path*.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON,
            or does not match the configuration schema.
    """
    path = pathlib.Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise errors.ConfigurationError(f"Cannot read configuration file {path}: {exc}") from exc

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise errors.ConfigurationError(f"Configuration file {path} is not valid JSON: {exc}") from exc

    config = parse_config(data)
    log.success("Configuration validated successfully", {"path": str(path), "domain": config.domain})
    return config
