"""Field list to Dataset snapshot mapping."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from telemctl.core.errors import MappingError, ProjectValidationError
from telemctl.core.model import (
    CompositeValue,
    DataFrame,
    Dataset,
    DatasetValue,
    DecoderMethod,
    FrameDetection,
    Group,
    GroupValues,
    Project,
)

QUICK_PLOT_TITLE = "Quick Plot"
QUICK_PLOT_GROUP = "Quick Plot Data"

# widget hint -> (required axes, optional axes)
COMPOSITE_WIDGETS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "accelerometer": (("x", "y", "z"), ()),
    "gyroscope": (("x", "y", "z"), ()),
    "map": (("lat", "lon"), ("alt",)),
    "gps": (("lat", "lon"), ("alt",)),
}


@dataclass(frozen=True)
class CompositeMapping:
    group: str
    widget: str
    axes: tuple[tuple[str, int], ...]


def _composite_for_group(group: Group) -> CompositeMapping | None:
    axes_for_widget = COMPOSITE_WIDGETS.get(group.widget)
    if axes_for_widget is None:
        return None
    required, optional = axes_for_widget

    by_axis: dict[str, Dataset] = {}
    for dataset in group.datasets:
        if dataset.widget not in (*required, *optional):
            continue
        if dataset.widget in by_axis:
            raise ProjectValidationError(
                f"Group '{group.title}' ({group.widget}) declares axis '{dataset.widget}' more than once"
            )
        by_axis[dataset.widget] = dataset

    missing = [axis for axis in required if axis not in by_axis]
    if missing:
        raise ProjectValidationError(
            f"Group '{group.title}' ({group.widget}) is missing dataset(s) for axis: {', '.join(missing)}"
        )
    axes = tuple((axis, by_axis[axis].index) for axis in (*required, *optional) if axis in by_axis)
    return CompositeMapping(group=group.title, widget=group.widget, axes=axes)


def composite_mappings(project: Project) -> tuple[CompositeMapping, ...]:
    mappings: list[CompositeMapping] = []
    for group in project.groups:
        mapping = _composite_for_group(group)
        if mapping is not None:
            mappings.append(mapping)
    return tuple(mappings)


def _to_number(value: str) -> float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


class FrameBuilder:
    """Maps ordered field lists onto the datasets of one project.

    Index and composite mappings are computed once; build a new instance when
    the project changes.
    """

    def __init__(self, project: Project) -> None:
        self.project = project
        self.required_fields = project.field_count
        self._groups = tuple(
            (group.title, group.widget, group.datasets) for group in project.groups
        )
        self._composites = composite_mappings(project)

    def build(self, fields: Sequence[str], timestamp: datetime | None = None) -> DataFrame:
        if len(fields) < self.required_fields:
            raise MappingError(
                f"Frame has {len(fields)} field(s) but project '{self.project.title}' "
                f"needs {self.required_fields} (highest index {self.project.max_index})"
            )
        fields = tuple(str(value) for value in fields)

        groups = []
        for title, widget, datasets in self._groups:
            values = []
            for dataset in datasets:
                raw = fields[dataset.index]
                numeric = _to_number(raw)
                values.append(
                    DatasetValue(
                        title=dataset.title,
                        index=dataset.index,
                        value=raw,
                        numeric=numeric,
                        units=dataset.units,
                        alarm=dataset.alarm is not None and numeric is not None and numeric >= dataset.alarm,
                    )
                )
            groups.append(GroupValues(title=title, widget=widget, datasets=tuple(values)))

        composites = []
        for mapping in self._composites:
            axes = []
            for axis, index in mapping.axes:
                numeric = _to_number(fields[index])
                if numeric is None:
                    raise MappingError(
                        f"Group '{mapping.group}' axis '{axis}' is not numeric: {fields[index]!r}"
                    )
                axes.append((axis, numeric))
            composites.append(CompositeValue(group=mapping.group, widget=mapping.widget, axes=tuple(axes)))

        return DataFrame(
            title=self.project.title,
            timestamp=timestamp or datetime.now(timezone.utc),
            fields=fields,
            groups=tuple(groups),
            composites=tuple(composites),
        )


def split_fields(text: str, separator: str = ",") -> list[str]:
    """Built-in field extraction for projects without a parser script."""
    return [value.strip() for value in text.split(separator)]


def quick_plot_project(field_count: int, *, separator: str = ",") -> Project:
    """Ad-hoc project for newline-terminated CSV lines: one channel per field."""
    datasets = tuple(Dataset(title=f"Channel {index + 1}", index=index) for index in range(max(field_count, 1)))
    return Project(
        title=QUICK_PLOT_TITLE,
        decoder=DecoderMethod.PLAIN_TEXT,
        frame_detection=FrameDetection.END_DELIMITER_ONLY,
        frame_start=b"",
        frame_end=b"\n",
        hex_delimiters=False,
        groups=(Group(title=QUICK_PLOT_GROUP, widget="multiplot", datasets=datasets),),
        separator=separator,
    )
