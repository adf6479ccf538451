"""Group visible sections into navigable steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Sequence, Tuple

from anamnesis.schema_defaults import DEFAULT_SECTIONS_PER_STEP

if TYPE_CHECKING:  # pragma: no cover - import cycle only matters for typing
    from anamnesis.visibility import VisibleSection


@dataclass(frozen=True)
class Step:
    index: int
    sections: Tuple["VisibleSection", ...]

    @property
    def key(self) -> Tuple[int, ...]:
        """Template section indices of this step; unchanged when other steps appear or vanish."""

        return tuple(section.index for section in self.sections)

    @property
    def field_ids(self) -> List[str]:
        return [item.field_id for section in self.sections for item in section.fields]

    @property
    def first_field_id(self) -> str:
        ids = self.field_ids
        return ids[0] if ids else ""

    @property
    def title(self) -> str:
        return " / ".join(section.title for section in self.sections)


def partition(
    visible_sections: Sequence["VisibleSection"],
    sections_per_step: int = DEFAULT_SECTIONS_PER_STEP,
) -> List[Step]:
    """Split ``visible_sections`` into steps, skipping sections with no fields."""

    size = max(1, int(sections_per_step))
    non_empty = [section for section in visible_sections if section.fields]
    return [
        Step(index=index, sections=tuple(non_empty[start:start + size]))
        for index, start in enumerate(range(0, len(non_empty), size))
    ]


def progress_percent(step_index: int, total_steps: int) -> int:
    """Return progress for ``step_index`` as a whole percentage."""

    if total_steps <= 0:
        return 0
    return min(round(step_index / total_steps * 100), 100)


def step_field_ids(steps: Sequence[Step], step_index: int) -> List[str]:
    """Return the field ids of ``steps[step_index]`` or an empty list."""

    if 0 <= step_index < len(steps):
        return steps[step_index].field_ids
    return []
