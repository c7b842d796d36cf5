import pytest

from releasekit import BuildError, Capability, CapabilityRegistry, Pipeline, register_capability
from releasekit.capabilities import attached_capabilities


def _dummy_class_method(cls):
    return "class value"


def _dummy_instance_method(self):
    return "instance value"


def _fail_on_attach(cls):
    cls.fail_build("Failer was included")


def _registry_with_dummy_and_failer() -> CapabilityRegistry:
    registry = CapabilityRegistry()
    register_capability(
        "Dummy",
        type_ops={"dummy_class_method": _dummy_class_method},
        instance_ops={"dummy_instance_method": _dummy_instance_method},
        registry=registry,
    )
    register_capability("Failer", on_attach=_fail_on_attach, registry=registry)
    return registry


def test_explicit_policy_attaches_only_named_capability():
    registry = _registry_with_dummy_and_failer()

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Dummy")
    pipeline = Builder(use_env=False)

    assert [c.name for c in Builder.capabilities()] == ["Dummy"]
    assert Builder.dummy_class_method() == "class value"
    assert pipeline.dummy_instance_method() == "instance value"


def test_policy_none_attaches_nothing():
    registry = _registry_with_dummy_and_failer()

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_no_capabilities()
    pipeline = Builder(use_env=False)

    assert Builder.capabilities() == ()
    with pytest.raises(AttributeError):
        pipeline.dummy_instance_method()
    with pytest.raises(AttributeError):
        Builder.dummy_class_method()


def test_policy_all_runs_failing_hook_and_aborts_construction():
    registry = _registry_with_dummy_and_failer()

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_all_capabilities()

    with pytest.raises(BuildError, match="Failer was included"):
        Builder(use_env=False)

    assert [c.name for c in Builder.capabilities()] == ["Dummy"]


def test_policy_all_attaches_in_registration_order():
    registry = CapabilityRegistry()
    seen: list[str] = []
    for name in ("Zeta", "Alpha", "Mid"):
        register_capability(name, on_attach=lambda cls, name=name: seen.append(name), registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_all_capabilities()
    Builder(use_env=False)

    assert seen == ["Zeta", "Alpha", "Mid"]
    assert [c.name for c in Builder.capabilities()] == ["Zeta", "Alpha", "Mid"]


def test_repeated_resolution_never_reattaches():
    registry = CapabilityRegistry()
    calls: list[type] = []
    register_capability("Counter", on_attach=calls.append, registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Counter")
    Builder.attach_capabilities()
    Builder.attach_capabilities()
    Builder(use_env=False)
    Builder(use_env=False)

    assert calls == [Builder]
    assert len(attached_capabilities(Builder)) == 1


def test_names_match_by_simple_name():
    registry = CapabilityRegistry()
    register_capability(
        "acme.common.Credentials",
        instance_ops={"credentials_path": lambda self: "~/.gem/credentials"},
        registry=registry,
    )
    register_capability("acme.common.Other", registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("elsewhere.Credentials")
    pipeline = Builder(use_env=False)

    assert [c.name for c in Builder.capabilities()] == ["acme.common.Credentials"]
    assert pipeline.credentials_path() == "~/.gem/credentials"


def test_include_capabilities_accumulates_names():
    class Builder(Pipeline):
        pass

    Builder.include_capabilities("A")
    Builder.include_capabilities("B", "C")

    assert Builder.template().capability_policy == ("A", "B", "C")

    Builder.include_all_capabilities()
    Builder.include_capabilities("D")
    assert Builder.template().capability_policy == ("D",)


def test_duplicate_registration_is_rejected():
    registry = CapabilityRegistry()
    register_capability("Dummy", registry=registry)

    with pytest.raises(ValueError, match="Duplicate capability name: Dummy"):
        register_capability("Dummy", registry=registry)


def test_operation_shadowing_pipeline_attribute_is_rejected():
    registry = CapabilityRegistry()
    register_capability("Clobber", instance_ops={"run": lambda self: None}, registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Clobber")

    with pytest.raises(ValueError, match="shadows an existing attribute"):
        Builder(use_env=False)


@pytest.mark.parametrize(
    "ops",
    [
        {"type_ops": {"mro": lambda cls: None}},
        {"instance_ops": {"pipeline": lambda self: None}},
        {"instance_ops": {"phase": lambda self: None}},
    ],
)
def test_operation_shadowing_builtin_or_context_attribute_is_rejected(ops):
    registry = CapabilityRegistry()
    register_capability("Clobber", registry=registry, **ops)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Clobber")

    with pytest.raises(ValueError, match="shadows an existing attribute"):
        Builder(use_env=False)
    assert Builder.capabilities() == ()


def test_invalid_operation_definitions_are_rejected():
    with pytest.raises(TypeError):
        Capability(name="Broken", instance_ops={"thing": "not callable"})
    with pytest.raises(ValueError):
        Capability(name="Broken", type_ops={"not an identifier": lambda cls: None})
    with pytest.raises(TypeError):
        Capability(name="  ")


def test_hook_failure_leaves_capability_detached():
    registry = CapabilityRegistry()
    attempts: list[int] = []

    def flaky(cls):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("first attach fails")

    register_capability("Flaky", on_attach=flaky, registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Flaky")

    with pytest.raises(RuntimeError):
        Builder(use_env=False)
    assert Builder.capabilities() == ()

    Builder(use_env=False)
    assert [c.name for c in Builder.capabilities()] == ["Flaky"]


def test_hook_can_install_steps_and_defaults():
    registry = CapabilityRegistry()

    def install(cls):
        cls.set_flag("installed", "yes")
        cls.phase("setup", lambda ctx: ctx.push_artifact("env", "ready"), name="install_env")

    register_capability("Environment", on_attach=install, registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Environment")
    pipeline = Builder(use_env=False)
    pipeline.run_phase("setup")

    assert pipeline.flag("installed") == "yes"
    assert pipeline.artifact("setup", "env") == "ready"


def test_steps_reach_instance_operations_through_context():
    registry = _registry_with_dummy_and_failer()

    class Builder(Pipeline):
        capability_registry = registry

    Builder.include_capabilities("Dummy")
    Builder.phase("build", lambda ctx: ctx.push_artifact("value", ctx.dummy_instance_method()))

    pipeline = Builder(use_env=False)
    pipeline.run_phase("build")

    assert pipeline.artifact("build", "value") == "instance value"


def test_derived_type_inherits_attachments_without_rerunning_hook():
    registry = CapabilityRegistry()
    calls: list[type] = []
    register_capability(
        "Dummy",
        instance_ops={"dummy_instance_method": _dummy_instance_method},
        on_attach=calls.append,
        registry=registry,
    )

    class Parent(Pipeline):
        capability_registry = registry

    Parent.include_capabilities("Dummy")
    Parent.attach_capabilities()

    class Child(Parent):
        pass

    child = Child(use_env=False)

    assert calls == [Parent]
    assert child.dummy_instance_method() == "instance value"


def test_unmatched_policy_entry_is_logged(capsys, monkeypatch):
    monkeypatch.delenv("RELEASEKIT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("RELEASEKIT_LOG_SINK", raising=False)
    registry = CapabilityRegistry()
    register_capability("Credentials", registry=registry)

    class Builder(Pipeline):
        capability_registry = registry

    Builder.set_log_sink("stdout")
    Builder.set_log_level("warn")
    Builder.include_capabilities("Credentails")
    Builder.attach_capabilities()

    out = capsys.readouterr().out
    assert "No registered capability matches 'Credentails'" in out
    assert "Credentials" in out
