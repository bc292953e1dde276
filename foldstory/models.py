"""Pydantic models for foldstory."""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Vector3 = tuple[float, float, float]
Matrix3 = tuple[Vector3, Vector3, Vector3]


class InputType(str, Enum):
    PDB = "pdb"
    UNIPROT = "uniprot"
    INVALID = "invalid"


class SearchType(str, Enum):
    ALPHAFIND = "alphafind"


class ProgressStage(str, Enum):
    INITIALIZING = "initializing"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"


# --- Search ---


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=10, ge=1)
    superposition: bool = True


class SearchQuery(BaseModel):
    """A search as issued by the user. A new query supersedes any in flight."""
    model_config = ConfigDict(frozen=True)

    input_value: str
    input_type: InputType | None = None
    search_type: SearchType = SearchType.ALPHAFIND
    options: SearchOptions = Field(default_factory=SearchOptions)


class SearchResult(BaseModel):
    """One aligned candidate structure, in the service's ranking order."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    object_id: str
    aligned_percentage: float = Field(ge=0.0, le=1.0)
    rmsd: float = Field(ge=0.0)
    rotation_matrix: Matrix3 | None = None
    translation_vector: Vector3 | None = None
    sequence_aligned_percentage: float = Field(default=0.0, ge=0.0, le=1.0)
    tm_score: float = Field(ge=0.0, le=1.0)
    tm_score_target: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("rotation_matrix", mode="before")
    @classmethod
    def _unwrap_matrix(cls, value: Any) -> Any:
        # The service occasionally wraps the matrix in an extra list
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], list) \
                and value[0] and isinstance(value[0][0], list):
            return value[0]
        return value

    @field_validator("translation_vector", mode="before")
    @classmethod
    def _unwrap_vector(cls, value: Any) -> Any:
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], list):
            return value[0]
        return value


class SearchResponse(BaseModel):
    """Body of one poll of the search endpoint."""
    model_config = ConfigDict(extra="ignore")

    results: list[SearchResult] | None = None
    queue_position: int | None = None
    search_time: float | None = None
    message: str | None = None
    is_partial_result: bool = Field(
        default=False,
        validation_alias=AliasChoices("is_partial_result", "isPartialResult"),
    )


class ProgressInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ProgressStage
    queue_position: int | None = None
    attempt: int
    max_attempts: int
    message: str = ""
    partial_results_count: int | None = None


# --- Story ---


class ProcedureNode(BaseModel):
    """One step of a visualization procedure (download, parse, component, ...)."""
    model_config = ConfigDict(frozen=True)

    kind: str
    params: dict[str, Any] = Field(default_factory=dict)
    children: tuple["ProcedureNode", ...] = ()

    def to_dict(self) -> dict[str, Any]:
        node: dict[str, Any] = {"kind": self.kind}
        if self.params:
            node["params"] = dict(self.params)
        if self.children:
            node["children"] = [child.to_dict() for child in self.children]
        return node


class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    key: str
    header: str
    description: str
    procedure: ProcedureNode
    linger_duration_ms: int = 0
    transition_duration_ms: int = 0
    result: SearchResult | None = None  # set for result-backed scenes


class StoryMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str


class SceneAsset(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    content: bytes


class Story(BaseModel):
    """Ordered, uniquely keyed scenes. Replaced wholesale, never edited."""
    model_config = ConfigDict(frozen=True)

    metadata: StoryMetadata
    scenes: tuple[Scene, ...] = ()
    assets: tuple[SceneAsset, ...] = ()

    @property
    def keys(self) -> list[str]:
        return [s.key for s in self.scenes]


# --- Engine-facing documents ---


class Snapshot(BaseModel):
    """The materialized engine state for one scene."""
    model_config = ConfigDict(frozen=True)

    key: str
    title: str
    description: str
    linger_duration_ms: int = 0
    transition_duration_ms: int = 0
    root: ProcedureNode


class SnapshotSequenceMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    version: str
    timestamp: str


class SnapshotSequence(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str = "multiple"
    metadata: SnapshotSequenceMetadata
    snapshots: tuple[Snapshot, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "metadata": self.metadata.model_dump(),
            "snapshots": [
                {
                    "key": s.key,
                    "title": s.title,
                    "description": s.description,
                    "linger_duration_ms": s.linger_duration_ms,
                    "transition_duration_ms": s.transition_duration_ms,
                    "root": s.root.to_dict(),
                }
                for s in self.snapshots
            ],
        }


# --- Application state ---


class SyncState(BaseModel):
    """Everything the UI observes. Each transition publishes a new instance."""
    model_config = ConfigDict(frozen=True)

    query: SearchQuery | None = None
    search_type: SearchType = SearchType.ALPHAFIND
    validation_error: str | None = None
    is_validating: bool = False
    is_searching: bool = False
    results: tuple[SearchResult, ...] = ()
    progress: ProgressInfo | None = None
    selected_result: SearchResult | None = None
    story: Story | None = None
    active_scene_key: str | None = None
    pending_clear: bool = False
    history: tuple[SearchQuery, ...] = ()
