"""Story building: turn a ranked result set into keyed, renderable scenes."""

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime, timezone

from foldstory.config import StoryConfig
from foldstory.errors import DuplicateSceneKey
from foldstory.models import (
    Matrix3,
    ProcedureNode,
    Scene,
    SearchResult,
    Snapshot,
    SnapshotSequence,
    SnapshotSequenceMetadata,
    Story,
    StoryMetadata,
    Vector3,
)
from foldstory.procedure import ProcedureBuilder, column_major

logger = logging.getLogger(__name__)

SCENE_KEY_PREFIX = "scene_"
SNAPSHOT_FORMAT_VERSION = "1"

# Column-major rotation used by the authored preview scene
SAMPLE_ROTATION = [
    -0.7202161, -0.33009904, -0.61018308,
    0.36257631, 0.57075962, -0.73673053,
    0.59146191, -0.75184312, -0.29138417,
]


def scene_key(object_id: str) -> str:
    return f"{SCENE_KEY_PREFIX}{object_id}"


def _scene_id(query_id: str, key: str) -> str:
    # Stable across rebuilds of the same input
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"foldstory:{query_id}:{key}"))


def structure_url(protein_id: str, config: StoryConfig) -> str:
    return config.structure_url_template.format(id=protein_id.upper())


def superposition_procedure(
    query_id: str,
    target_id: str,
    config: StoryConfig,
    rotation_matrix: Matrix3 | None = None,
    translation_vector: Vector3 | None = None,
    rotation: list[float] | None = None,
) -> ProcedureNode:
    """Query structure plus the target superposed onto it.

    ``rotation_matrix`` is row-major as delivered by the search service;
    ``rotation`` is an already column-major flat list.
    """
    builder = ProcedureBuilder()

    query = (
        builder.download(structure_url(query_id, config))
        .parse(config.structure_format)
        .model_structure()
    )
    query.component("polymer").representation("cartoon").color(config.query_color)

    target = (
        builder.download(structure_url(target_id, config))
        .parse(config.structure_format)
        .model_structure()
    )
    if rotation_matrix is not None:
        rotation = column_major(rotation_matrix)
    if rotation is not None or translation_vector is not None:
        target.transform(rotation=rotation, translation=translation_vector)
    target.component("polymer").representation("cartoon").color(config.target_color)

    return builder.build()


def describe_result(query_id: str, result: SearchResult, index: int, total: int) -> str:
    """Markdown summary shown next to a scene."""
    query = query_id.upper()
    target = result.object_id.upper()
    return (
        f"# {query} vs {target}\n\n"
        f"Alignment {index} of {total}: query **{query}** superposed with **{target}**.\n\n"
        f"- RMSD: {result.rmsd:.2f}\n"
        f"- TM-score: {result.tm_score:.4f}\n"
        f"- Aligned: {result.aligned_percentage * 100:.1f}%\n"
        f"- Sequence aligned: {result.sequence_aligned_percentage * 100:.1f}%\n"
        f"- TM-score (target): {result.tm_score_target:.4f}\n"
    )


def build_story(
    query_id: str,
    results: Sequence[SearchResult],
    config: StoryConfig | None = None,
    strict: bool | None = None,
) -> Story:
    """Build one scene per result, in result order.

    Keys are ``scene_<object_id>``. A repeated object id keeps its first
    occurrence; with ``strict`` it raises ``DuplicateSceneKey`` instead.
    """
    config = config or StoryConfig()
    strict = config.strict_keys if strict is None else strict

    unique: list[SearchResult] = []
    seen: set[str] = set()
    for result in results:
        key = scene_key(result.object_id)
        if key in seen:
            if strict:
                raise DuplicateSceneKey(f"Duplicate scene key {key!r} for query {query_id}")
            logger.warning("Dropping duplicate result %s for query %s", result.object_id, query_id)
            continue
        seen.add(key)
        unique.append(result)

    scenes = []
    for i, result in enumerate(unique):
        key = scene_key(result.object_id)
        scenes.append(Scene(
            id=_scene_id(query_id, key),
            key=key,
            header=f"Alignment {i + 1}",
            description=describe_result(query_id, result, i + 1, len(unique)),
            procedure=superposition_procedure(
                query_id,
                result.object_id,
                config,
                rotation_matrix=result.rotation_matrix,
                translation_vector=result.translation_vector,
            ),
            linger_duration_ms=config.linger_duration_ms,
            transition_duration_ms=config.transition_duration_ms,
            result=result,
        ))

    logger.debug("Built story for %s with %d scenes", query_id, len(scenes))
    return Story(
        metadata=StoryMetadata(title=f"Structure {query_id.upper()}"),
        scenes=tuple(scenes),
    )


def build_template_story(query_id: str, target_id: str, config: StoryConfig | None = None) -> Story:
    """Single authored scene previewing a query/target pair."""
    config = config or StoryConfig()
    key = "scene_01"
    return Story(
        metadata=StoryMetadata(title=f"Structure {query_id.upper()}"),
        scenes=(
            Scene(
                id=_scene_id(query_id, key),
                key=key,
                header="Default View",
                description=(
                    f"# {query_id.upper()} Structure\n\n"
                    "Showing the protein structure in cartoon representation "
                    f"superposed with {target_id.upper()}."
                ),
                procedure=superposition_procedure(
                    query_id, target_id, config, rotation=SAMPLE_ROTATION,
                    translation_vector=(0.0, 0.0, 0.0),
                ),
            ),
        ),
    )


def to_snapshot_sequence(story: Story, timestamp: datetime | None = None) -> SnapshotSequence:
    """Render a story into the document the engine loads, one snapshot per scene."""
    timestamp = timestamp or datetime.now(timezone.utc)
    return SnapshotSequence(
        metadata=SnapshotSequenceMetadata(
            title=story.metadata.title,
            version=SNAPSHOT_FORMAT_VERSION,
            timestamp=timestamp.isoformat(),
        ),
        snapshots=tuple(
            Snapshot(
                key=scene.key,
                title=scene.header,
                description=scene.description,
                linger_duration_ms=scene.linger_duration_ms,
                transition_duration_ms=scene.transition_duration_ms,
                root=scene.procedure,
            )
            for scene in story.scenes
        ),
    )
