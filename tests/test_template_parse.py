import io
import json
from datetime import timedelta

import pytest

from imagebuild.template import TemplateError, parse, parse_duration, parse_file


def _parse(doc) -> object:
    return parse(io.StringIO(json.dumps(doc)))


def test_parse_builders_and_provisioners():
    template = _parse(
        {
            "description": "base image",
            "min_packer_version": "1.0.0",
            "variables": {"region": "us-east-1"},
            "builders": [
                {"type": "amazon-chroot", "source_ami": "ami-1"},
                {"type": "docker", "name": "dev"},
            ],
            "provisioners": [
                {
                    "type": "shell",
                    "inline": ["echo hi"],
                    "only": ["dev"],
                    "except": ["amazon-chroot"],
                    "override": {"dev": {"inline": ["echo dev"]}},
                    "pause_before": "1m30s",
                }
            ],
            "post-processors": ["compress"],
        }
    )

    assert template.description == "base image"
    assert template.min_version == "1.0.0"
    assert template.variables == {"region": "us-east-1"}
    assert list(template.builders) == ["amazon-chroot", "dev"]
    assert template.builders["amazon-chroot"].config == {"source_ami": "ami-1"}
    assert template.builders["dev"].type == "docker"
    assert template.builders["dev"].config is None
    assert template.post_processors == ["compress"]

    (prov,) = template.provisioners
    assert prov.type == "shell"
    assert prov.only == ["dev"]
    assert prov.except_builders == ["amazon-chroot"]
    assert prov.override == {"dev": {"inline": ["echo dev"]}}
    assert prov.pause_before == timedelta(seconds=90)
    assert prov.config == {"inline": ["echo hi"]}


def test_unknown_root_keys_are_reported_sorted():
    with pytest.raises(TemplateError) as excinfo:
        _parse({"builders": [], "zeta": 1, "alpha": 2})

    assert excinfo.value.errors == [
        "Unknown root level key in template: 'alpha'",
        "Unknown root level key in template: 'zeta'",
    ]
    assert str(excinfo.value).startswith("2 errors occurred:")


def test_errors_are_accumulated_across_entries():
    with pytest.raises(TemplateError) as excinfo:
        _parse(
            {
                "builders": [
                    {"name": "no-type"},
                    {"type": "docker"},
                    {"type": "docker"},
                ],
                "provisioners": [{"inline": []}, {"type": "shell", "pause_before": "soon"}],
            }
        )

    assert excinfo.value.errors == [
        "builder 1: missing 'type'",
        "builder 3: builder with name 'docker' already exists",
        "provisioner 1: missing 'type'",
        "provisioner 2: invalid duration 'soon'",
    ]


def test_root_type_mismatch_is_an_error():
    with pytest.raises(TemplateError, match="'builders' expected type 'list'"):
        _parse({"builders": {"type": "docker"}})


def test_invalid_json_is_an_error():
    with pytest.raises(TemplateError, match="invalid JSON"):
        parse(io.StringIO("{not json"))


def test_parse_file(tmp_path):
    path = tmp_path / "template.json"
    path.write_text(json.dumps({"builders": [{"type": "null"}]}), encoding="utf-8")

    template = parse_file(str(path))

    assert list(template.builders) == ["null"]
    assert template.provisioners == []


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", timedelta(0)),
        ("10s", timedelta(seconds=10)),
        ("1h2m3s", timedelta(hours=1, minutes=2, seconds=3)),
        ("500ms", timedelta(milliseconds=500)),
        ("1.5h", timedelta(minutes=90)),
        ("-2m", timedelta(minutes=-2)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "10", "1x", "m", "1h 2m"])
def test_parse_duration_rejects_bad_input(text):
    with pytest.raises(ValueError, match="invalid duration"):
        parse_duration(text)
