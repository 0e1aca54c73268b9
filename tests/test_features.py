import pytest

from lockplan.modules.errors import UnknownFeature
from lockplan.modules.features import FeatureResolver, RootRequest, resolve_features
from lockplan.modules.lockfile import ingest


def _root(packages, name, features=(), default=True, kind="normal"):
    return RootRequest(packages.find(name).package_id, tuple(features), default, kind)


def _features(res, packages, name, platform=None):
    return res.features_of(packages.find(name).package_id, platform)


def _names(res):
    return sorted(i.package_id.name for i in res.instances)


@pytest.fixture
def unification(entry, lock):
    def build(b_kind):
        return ingest(lock(
            entry("a", "0.1.0", source=None, deps=[
                {"name": "b", "version": "1.0.0", "kind": b_kind},
                {"name": "c", "version": "1.0.0", "features": ["x"]},
            ]),
            entry("b", deps=[{"name": "c", "version": "1.0.0", "features": ["y"]}]),
            entry("c", features={"x": [], "y": []}),
        ))
    return build


def test_features_unify_across_normal_consumers(unification, linux):
    packages = unification("normal")
    res = resolve_features(packages, [_root(packages, "a")], linux)
    assert _features(res, packages, "c") == ("x", "y")


def test_dev_only_consumer_does_not_leak_into_normal_graph(unification, linux):
    packages = unification("dev")
    res = resolve_features(packages, [_root(packages, "a", kind="dev")], linux)
    assert _names(res) == ["a", "c"]
    assert _features(res, packages, "c") == ("x",)
    dev = resolve_features(packages, [_root(packages, "a", kind="dev")], linux, dev=True)
    assert _features(dev, packages, "c") == ("x", "y")


def test_target_pruning(entry, lock, linux, macos):
    packages = ingest(lock(
        entry("app", "0.1.0", source=None, deps=[
            {"name": "epoll", "version": "1.0.0", "target": 'cfg(target_os = "linux")'},
            {"name": "kqueue", "version": "1.0.0", "target": {"os": ["macos", "freebsd"]}},
        ]),
        entry("epoll"),
        entry("kqueue"),
    ))
    roots = [_root(packages, "app")]
    assert _names(resolve_features(packages, roots, linux)) == ["app", "epoll"]
    assert _names(resolve_features(packages, roots, macos)) == ["app", "kqueue"]


@pytest.fixture
def optional_pkg(entry, lock):
    def build(features):
        return ingest(lock(
            entry("p", "0.1.0", source=None, deps=[
                {"name": "q", "version": "1.0.0", "optional": True, "default-features": False},
            ], features=features),
            entry("q", features={"extra": [], "default": ["extra"]}),
        ))
    return build


def test_optional_dependency_is_off_by_default(optional_pkg, linux):
    packages = optional_pkg({})
    assert _names(resolve_features(packages, [_root(packages, "p")], linux)) == ["p"]


def test_implicit_feature_activates_optional_dependency(optional_pkg, linux):
    packages = optional_pkg({})
    res = resolve_features(packages, [_root(packages, "p", ["q"])], linux)
    assert _names(res) == ["p", "q"]
    assert _features(res, packages, "p") == ("q",)
    assert _features(res, packages, "q") == ()


def test_dep_prefix_activates_without_implicit_feature(optional_pkg, linux):
    packages = optional_pkg({"fancy": ["dep:q"]})
    res = resolve_features(packages, [_root(packages, "p", ["fancy"])], linux)
    assert _names(res) == ["p", "q"]
    assert _features(res, packages, "p") == ("fancy",)
    with pytest.raises(UnknownFeature):
        resolve_features(packages, [_root(packages, "p", ["q"])], linux)


def test_dep_slash_feature(optional_pkg, linux):
    packages = optional_pkg({"fancy": ["q/extra"]})
    res = resolve_features(packages, [_root(packages, "p", ["fancy"])], linux)
    assert _features(res, packages, "p") == ("fancy", "q")
    assert _features(res, packages, "q") == ("extra",)


def test_weak_dependency_feature(optional_pkg, linux):
    packages = optional_pkg({"fancy": ["q?/extra"]})
    res = resolve_features(packages, [_root(packages, "p", ["fancy"])], linux)
    assert _names(res) == ["p"]
    res = resolve_features(packages, [_root(packages, "p", ["fancy", "q"])], linux)
    assert _features(res, packages, "q") == ("extra",)
    # ordem inversa: q ativado antes de fancy
    res = resolve_features(packages, [_root(packages, "p", ["q", "fancy"])], linux)
    assert _features(res, packages, "q") == ("extra",)


def test_unknown_feature(optional_pkg, linux):
    packages = optional_pkg({})
    with pytest.raises(UnknownFeature) as exc:
        resolve_features(packages, [_root(packages, "p", ["nope"])], linux)
    assert exc.value.feature == "nope"
    with pytest.raises(UnknownFeature):
        resolve_features(packages, [_root(packages, "p", ["ghost/x"])], linux)


def test_cyclic_implications_terminate(entry, lock, linux):
    packages = ingest(lock(entry("p", "0.1.0", source=None, features={"a": ["b"], "b": ["c", "a"], "c": []})))
    res = resolve_features(packages, [_root(packages, "p", ["a"])], linux)
    assert _features(res, packages, "p") == ("a", "b", "c")


def test_undeclared_default_is_empty(entry, lock, linux):
    packages = ingest(lock(entry("p", "0.1.0", source=None)))
    res = resolve_features(packages, [_root(packages, "p")], linux)
    assert _features(res, packages, "p") == ()


def test_default_features_switch(workspace_lock, linux):
    packages = ingest(workspace_lock)
    res = resolve_features(packages, [_root(packages, "lib")], linux)
    assert _features(res, packages, "lib") == ("default", "std")
    res = resolve_features(packages, [_root(packages, "lib", default=False)], linux)
    assert _features(res, packages, "lib") == ()


def test_any_default_request_enables_default(entry, lock, linux):
    packages = ingest(lock(
        entry("app", "0.1.0", source=None, deps=[
            {"name": "lib", "version": "1.0.0", "default-features": False},
            {"name": "mid", "version": "1.0.0"},
        ]),
        entry("mid", deps=[{"name": "lib", "version": "1.0.0"}]),
        entry("lib", features={"default": ["std"], "std": []}),
    ))
    res = resolve_features(packages, [_root(packages, "app")], linux)
    assert _features(res, packages, "lib") == ("default", "std")


def test_feature_growth_is_monotonic(optional_pkg, linux):
    packages = optional_pkg({"fancy": ["q/extra"], "plain": []})
    small = resolve_features(packages, [_root(packages, "p", ["plain"])], linux)
    big = resolve_features(packages, [_root(packages, "p", ["plain", "fancy"])], linux)
    for inst in small.instances:
        grown = big.get(inst.package_id, inst.platform)
        assert set(inst.features) <= set(grown.features)


@pytest.fixture
def cross_lock(entry, lock):
    return ingest(lock(
        entry("app", "0.1.0", source=None, deps=[
            {"name": "shared", "version": "1.0.0", "features": ["rt"]},
            {"name": "gen", "version": "1.0.0", "kind": "build"},
            {"name": "derive", "version": "1.0.0"},
        ]),
        entry("gen", deps=[{"name": "shared", "version": "1.0.0", "features": ["fs"]}]),
        entry("derive", proc_macro=True),
        entry("shared", features={"rt": [], "fs": []}),
    ))


def test_host_equal_target_unifies_build_and_normal(cross_lock, linux):
    res = resolve_features(cross_lock, [_root(cross_lock, "app")], linux)
    assert _features(res, cross_lock, "shared") == ("fs", "rt")
    assert {i.platform for i in res.instances} == {linux}


def test_cross_compilation_separates_host_instances(cross_lock, linux, arm_linux):
    res = resolve_features(cross_lock, [_root(cross_lock, "app")], arm_linux, host=linux)
    assert _features(res, cross_lock, "shared", arm_linux) == ("rt",)
    assert _features(res, cross_lock, "shared", linux) == ("fs",)
    platforms = {i.package_id.name: i.platform for i in res.instances if i.package_id.name != "shared"}
    assert platforms == {"app": arm_linux, "gen": linux, "derive": linux}


def test_resolver_state_does_not_leak_between_passes(optional_pkg, linux):
    packages = optional_pkg({})
    resolver = FeatureResolver(packages, linux)
    first = resolver.resolve([_root(packages, "p", ["q"])])
    second = resolver.resolve([_root(packages, "p")])
    assert _names(first) == ["p", "q"]
    assert _names(second) == ["p"]
