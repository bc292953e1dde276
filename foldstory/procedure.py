"""Builder for structured visualization procedures.

A procedure is a tree of steps handed to the visualization engine:

    root
      download(url) -> parse(format) -> model_structure -> [transform]
        -> component(selector) -> representation(type) -> color(color)

Builders are mutable while a scene is assembled; ``build()`` returns an
immutable ``ProcedureNode`` tree.
"""

from typing import Any

from foldstory.models import Matrix3, ProcedureNode, Vector3


def column_major(matrix: Matrix3) -> list[float]:
    """Flatten a row-major 3x3 matrix into column-major order."""
    return [float(matrix[row][col]) for col in range(3) for row in range(3)]


class StepBuilder:
    def __init__(self, kind: str, params: dict[str, Any] | None = None) -> None:
        self.kind = kind
        self.params = params or {}
        self.children: list["StepBuilder"] = []

    def _add(self, kind: str, **params: Any) -> "StepBuilder":
        child = StepBuilder(kind, {k: v for k, v in params.items() if v is not None})
        self.children.append(child)
        return child

    def parse(self, format: str) -> "StepBuilder":
        return self._add("parse", format=format)

    def model_structure(self, model_index: int | None = None) -> "StepBuilder":
        return self._add("structure", type="model", model_index=model_index)

    def transform(self, rotation: list[float] | None = None,
                  translation: Vector3 | list[float] | None = None) -> "StepBuilder":
        """Apply a rigid transform. ``rotation`` is 9 floats, column-major."""
        if rotation is not None and len(rotation) != 9:
            raise ValueError(f"rotation must have 9 elements, got {len(rotation)}")
        if translation is not None and len(translation) != 3:
            raise ValueError(f"translation must have 3 elements, got {len(translation)}")
        self._add(
            "transform",
            rotation=list(rotation) if rotation is not None else None,
            translation=[float(t) for t in translation] if translation is not None else None,
        )
        return self

    def component(self, selector: str = "all") -> "StepBuilder":
        return self._add("component", selector=selector)

    def representation(self, type: str = "cartoon") -> "StepBuilder":
        return self._add("representation", type=type)

    def color(self, color: str) -> "StepBuilder":
        self._add("color", color=color)
        return self

    def build(self) -> ProcedureNode:
        return ProcedureNode(
            kind=self.kind,
            params=dict(self.params),
            children=tuple(child.build() for child in self.children),
        )


class ProcedureBuilder(StepBuilder):
    def __init__(self) -> None:
        super().__init__("root")

    def download(self, url: str) -> StepBuilder:
        return self._add("download", url=url)
