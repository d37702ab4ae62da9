import pytest

from stepkit.config_namespace import ConfigNamespace
from stepkit.engine.step import StepAction
from stepkit.step_registry import StepRef, StepRegistry

from imagebuild.steps.registry import get_step_registry


class _NoopStep:
    def __init__(self, name):
        self.name = name

    def run(self, ctx, state):
        return StepAction.CONTINUE

    def cleanup(self, state):
        return None


def _noop_builder(cfg, *, name):
    cfg.get_str("label", default=None)
    return _NoopStep(name)


def test_namespace_typed_getters():
    cfg = ConfigNamespace(
        {
            "path": " out ",
            "force": True,
            "mounts": [["bind", "/dev", "/dev"]],
            "steps": [{"type": "output_dir"}],
        },
        path="steps[0]",
    )

    assert cfg.get_str("path") == "out"
    assert cfg.get_bool("force") is True
    assert cfg.get_str_rows("mounts", width=3) == [["bind", "/dev", "/dev"]]
    assert cfg.get_list_mapping("steps") == [{"type": "output_dir"}]
    assert cfg.get_str("missing", default=None) is None
    assert cfg.get_bool("other", default=False) is False
    cfg.assert_consumed()


def test_namespace_missing_required_key():
    cfg = ConfigNamespace({}, path="steps[2]")

    with pytest.raises(ValueError, match=r"Missing required config key: steps\[2\]\.path"):
        cfg.get_str("path")


def test_namespace_type_errors():
    cfg = ConfigNamespace({"force": "yes", "path": 5, "steps": ["x"]}, path="")

    with pytest.raises(TypeError, match="force must be a boolean"):
        cfg.get_bool("force")
    with pytest.raises(TypeError, match="path must be a string"):
        cfg.get_str("path")
    with pytest.raises(TypeError, match=r"steps\[0\] must be a mapping"):
        cfg.get_list_mapping("steps")


def test_namespace_empty_values():
    cfg = ConfigNamespace({"path": "  ", "steps": []}, path="run")

    with pytest.raises(ValueError, match="run.path cannot be empty"):
        cfg.get_str("path")
    with pytest.raises(ValueError, match="run.steps cannot be empty"):
        cfg.get_list_mapping("steps")


def test_namespace_unknown_keys_reported_with_consumed():
    cfg = ConfigNamespace({"path": "x", "typo": 1}, path="steps[0]")
    cfg.get_str("path")

    with pytest.raises(ValueError, match=r"Unknown config keys under steps\[0\]: typo \(consumed: path\)"):
        cfg.assert_consumed()


def test_non_mapping_is_rejected():
    with pytest.raises(TypeError, match=r"steps\[1\] must be a mapping"):
        ConfigNamespace(["x"], path="steps[1]")


def test_str_rows_validation():
    cfg = ConfigNamespace({"rows": [["a", "b"], ["c", 1]]}, path="")

    assert ConfigNamespace({"rows": [["a", "b"]]}, path="").get_str_rows("rows", width=2) == [["a", "b"]]
    with pytest.raises(TypeError, match=r"rows\[1\] entries must be non-empty strings"):
        cfg.get_str_rows("rows", width=2)


def test_registry_builds_and_validates():
    registry = StepRegistry.from_refs([StepRef(id="noop", builder=_noop_builder, doc="Does nothing.")])

    step = registry.build("noop", ConfigNamespace({"label": "x"}, path="steps[0]"), name="first")

    assert step.name == "first"
    assert registry.available() == ("noop",)
    assert registry.describe() == ({"step_type": "noop", "doc": "Does nothing."},)


def test_registry_rejects_duplicates_and_suggests_unknown():
    ref = StepRef(id="output_dir", builder=_noop_builder)

    with pytest.raises(ValueError, match="Duplicate step type id: output_dir"):
        StepRegistry.from_refs([ref, ref])

    registry = StepRegistry.from_refs([ref])
    with pytest.raises(ValueError, match="did you mean: output_dir"):
        registry.get("output_dirs")


def test_registry_build_enforces_consumed_keys():
    registry = StepRegistry.from_refs([StepRef(id="noop", builder=_noop_builder)])

    with pytest.raises(ValueError, match="Unknown config keys"):
        registry.build("noop", ConfigNamespace({"lable": "x"}, path="steps[0]"), name="n")


def test_registry_rejects_builder_returning_non_step():
    registry = StepRegistry.from_refs([StepRef(id="bad", builder=lambda cfg, *, name: object())])

    with pytest.raises(TypeError, match="without run"):
        registry.build("bad", ConfigNamespace({}, path=""), name="bad")


def test_builtin_registry_lists_steps():
    assert get_step_registry().available() == ("mount_extra", "output_dir")
