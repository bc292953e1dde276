"""Configuration loading for foldstory."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class SearchConfig(BaseModel):
    api_base_url: str = "https://api.alphafind.dyn.cloud.e-infra.cz"
    limit: int = 10
    superposition: bool = True
    max_retries: int = 3
    initial_backoff_ms: int = 1000
    min_backoff_ms: int = 1000
    max_backoff_ms: int = 10000
    timeout_s: float = 30.0  # hard ceiling for a whole search, independent of retries
    request_timeout_s: float = 10.0


class MappingConfig(BaseModel):
    pdbe_api_url: str = "https://www.ebi.ac.uk/pdbe/api/mappings/uniprot"
    alphafold_api_url: str = "https://alphafold.ebi.ac.uk/api"
    request_timeout_s: float = 10.0


class StoryConfig(BaseModel):
    structure_url_template: str = "https://alphafold.ebi.ac.uk/files/AF-{id}-F1-model_v4.bcif"
    structure_format: str = "bcif"
    query_color: str = "green"
    target_color: str = "blue"
    linger_duration_ms: int = 0
    transition_duration_ms: int = 0
    strict_keys: bool = False


class ViewerConfig(BaseModel):
    scene_change_debounce_ms: int = 100
    snapshot_wait_attempts: int = 5
    snapshot_wait_delay_ms: int = 100


class Config(BaseModel):
    search: SearchConfig = Field(default_factory=SearchConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)
    story: StoryConfig = Field(default_factory=StoryConfig)
    viewer: ViewerConfig = Field(default_factory=ViewerConfig)
    history_size: int = 10
    preload_default: bool = True


def _project_root() -> Path:
    """Return the foldstory project root directory."""
    return Path(__file__).parent.parent


def load_config(config_path: Path | None = None) -> Config:
    """Load config from YAML file. Falls back to defaults if file missing."""
    if config_path is None:
        config_path = _project_root() / "config.yaml"

    if config_path.exists():
        raw: dict[str, Any] = yaml.safe_load(config_path.read_text()) or {}
        return Config(**raw)

    return Config()
