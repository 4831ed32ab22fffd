from __future__ import annotations

from datetime import datetime, timezone

import pytest

from telemctl.core.errors import MappingError, ProjectValidationError
from telemctl.core.frame_builder import FrameBuilder, composite_mappings, quick_plot_project, split_fields
from telemctl.core.model import Dataset, DecoderMethod, FrameDetection, Group, Project


def _project(*groups: Group) -> Project:
    return Project(
        title="Bench",
        decoder=DecoderMethod.PLAIN_TEXT,
        frame_detection=FrameDetection.END_DELIMITER_ONLY,
        frame_start=b"",
        frame_end=b"\n",
        hex_delimiters=False,
        groups=groups,
    )


def test_fields_map_by_index() -> None:
    project = _project(
        Group(
            title="Power",
            widget="",
            datasets=(
                Dataset(title="Voltage", index=2, units="V"),
                Dataset(title="Current", index=0, units="A", alarm=1.5),
            ),
        )
    )
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    frame = FrameBuilder(project).build(["1.7", "ignored", "12.1"], stamp)

    assert frame.timestamp == stamp
    voltage, current = frame.values
    assert voltage.value == "12.1"
    assert voltage.numeric == pytest.approx(12.1)
    assert not voltage.alarm
    assert current.alarm


def test_short_field_list_rejected() -> None:
    project = _project(Group(title="G", widget="", datasets=(Dataset(title="D", index=3),)))
    builder = FrameBuilder(project)
    with pytest.raises(MappingError):
        builder.build(["1", "2", "3"])
    assert builder.build(["1", "2", "3", "4"]).values[0].value == "4"


def test_extra_fields_are_kept_in_frame() -> None:
    project = _project(Group(title="G", widget="", datasets=(Dataset(title="D", index=0),)))
    frame = FrameBuilder(project).build(["1", "2"])
    assert frame.fields == ("1", "2")


def test_non_numeric_value_is_published_as_text() -> None:
    project = _project(Group(title="G", widget="", datasets=(Dataset(title="Mode", index=0, alarm=1),)))
    value = FrameBuilder(project).build(["idle"]).values[0]
    assert value.value == "idle"
    assert value.numeric is None
    assert not value.alarm


def test_accelerometer_composite() -> None:
    project = _project(
        Group(
            title="IMU",
            widget="accelerometer",
            datasets=(
                Dataset(title="X", index=0, widget="x"),
                Dataset(title="Y", index=1, widget="y"),
                Dataset(title="Z", index=2, widget="z"),
            ),
        )
    )
    frame = FrameBuilder(project).build(["0.1", "-0.2", "9.8"])
    (composite,) = frame.composites
    assert composite.widget == "accelerometer"
    assert composite.axis("z") == pytest.approx(9.8)

    with pytest.raises(MappingError):
        FrameBuilder(project).build(["0.1", "nan", "9.8"])


def test_gps_without_longitude_rejected() -> None:
    project = _project(
        Group(
            title="Position",
            widget="map",
            datasets=(Dataset(title="Lat", index=0, widget="lat"), Dataset(title="Alt", index=1, widget="alt")),
        )
    )
    with pytest.raises(ProjectValidationError, match="lon"):
        composite_mappings(project)


def test_split_fields_strips_whitespace() -> None:
    assert split_fields(" 1 ; 2;3\r", ";") == ["1", "2", "3"]


def test_quick_plot_project_has_one_channel_per_field() -> None:
    project = quick_plot_project(3)
    assert project.frame_detection is FrameDetection.END_DELIMITER_ONLY
    assert project.frame_end == b"\n"
    assert [dataset.title for dataset in project.datasets] == ["Channel 1", "Channel 2", "Channel 3"]
    frame = FrameBuilder(project).build(["1", "2", "3"])
    assert frame.groups[0].title == "Quick Plot Data"
    assert [value.numeric for value in frame.values] == [1.0, 2.0, 3.0]
