import pytest

from releasekit import BuildError, FlagError, Pipeline
from releasekit.flags import env_flags, resolve_flags


def test_env_flags_strips_prefix_and_lowercases():
    environ = {"RELEASEKIT_FLAG_GEM_VERSION": "1.2.3", "PATH": "/bin", "RELEASEKIT_FLAG_": "x"}

    assert env_flags(environ) == {"gem_version": "1.2.3"}


def test_env_flags_reads_process_environment(monkeypatch):
    monkeypatch.setenv("RELEASEKIT_FLAG_TEST", "foo")

    assert Pipeline.env_flags()["test"] == "foo"


@pytest.mark.parametrize(
    ("default", "supplied", "env", "expected"),
    [
        ("D", "C", "E", "E"),
        ("D", "C", None, "C"),
        ("D", None, None, "D"),
        (None, None, None, None),
        (None, None, "E", "E"),
    ],
)
def test_flag_precedence(default, supplied, env, expected):
    defaults = {} if default is None else {"name": default}
    given = {} if supplied is None else {"name": supplied}
    environ = {} if env is None else {"RELEASEKIT_FLAG_NAME": env}

    merged = resolve_flags(defaults, given, environ=environ)

    assert merged.get("name") == expected


def test_disabling_env_skips_environment_layer():
    merged = resolve_flags({"name": "D"}, {}, environ={"RELEASEKIT_FLAG_NAME": "E"}, use_env=False)

    assert merged == {"name": "D"}


def test_pipeline_resolves_layers_at_construction():
    class Flagged(Pipeline):
        pass

    Flagged.set_flag("channel", "stable")
    Flagged.set_flag("arch", "x86_64")

    pipeline = Flagged(
        {"channel": "beta", "region": "eu"},
        environ={"RELEASEKIT_FLAG_ARCH": "arm64"},
    )

    assert pipeline.flag("channel") == "beta"
    assert pipeline.flag("arch") == "arm64"
    assert pipeline.flag("region") == "eu"
    assert pipeline.flag("missing") is None


def test_missing_required_flags_fail_construction():
    class Needy(Pipeline):
        pass

    Needy.expect_flags("a", "b")

    with pytest.raises(BuildError) as excinfo:
        Needy({"a": "1"}, use_env=False)

    assert str(excinfo.value) == "Missing required flags: b"


def test_all_missing_flags_are_listed():
    class Needy(Pipeline):
        pass

    Needy.expect_flags("token", "version")

    with pytest.raises(BuildError, match=r"Missing required flags: token, version"):
        Needy(use_env=False)


def test_required_flag_can_come_from_environment():
    class Needy(Pipeline):
        pass

    Needy.expect_flags("token")

    pipeline = Needy(environ={"RELEASEKIT_FLAG_TOKEN": "secret"})

    assert pipeline.flag("token") == "secret"


def test_instance_set_flag_does_not_touch_template():
    class Mutable(Pipeline):
        pass

    Mutable.set_flag("channel", "stable")
    pipeline = Mutable(use_env=False)
    pipeline.set_flag("channel", "nightly")

    assert pipeline.flag("channel") == "nightly"
    assert Mutable.template().flags["channel"] == "stable"


def test_require_flag_raises_flag_error_with_message():
    class Guarded(Pipeline):
        pass

    pipeline = Guarded({"present": "yes"}, use_env=False)

    assert pipeline.require_flag("present", "needed") == "yes"
    with pytest.raises(FlagError, match="token is required to publish"):
        pipeline.require_flag("token", "token is required to publish")


def test_esc_flag_quotes_value_or_returns_none():
    class Quoting(Pipeline):
        pass

    pipeline = Quoting({"message": "hello world"}, use_env=False)

    assert pipeline.esc_flag("message") == "'hello world'"
    assert pipeline.esc_flag("absent") is None


def test_flag_names_must_be_strings():
    class Typed(Pipeline):
        pass

    with pytest.raises(TypeError):
        Typed.set_flag(1, "x")
