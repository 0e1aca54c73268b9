import pytest

from lockplan.modules.emit import plan_body
from lockplan.modules.errors import DependencyCycle
from lockplan.modules.lockfile import ingest
from lockplan.modules.model import BUILD, DEV, NORMAL
from lockplan.modules.resolver import parse_roots, resolve_target


def _graph(packages, platform, roots=None, host=None, kind="normal"):
    return resolve_target(packages, parse_roots(packages, roots, kind), platform, host)


def _labels(graph):
    return [(u.package_id.name, u.context) for u in graph.units]


def test_topological_order_and_edges(workspace_lock, linux):
    graph = _graph(ingest(workspace_lock), linux)
    assert _labels(graph) == [("cc", NORMAL), ("lib", NORMAL), ("libc", NORMAL), ("app", NORMAL)]
    app = graph.find("app")[0]
    assert [(e.name, e.kind) for e in graph.dependencies(app)] == [("cc", BUILD), ("lib", NORMAL), ("libc", NORMAL)]
    assert graph.roots == (app,)


def test_no_dangling_edges_and_dependencies_first(workspace_lock, linux):
    graph = _graph(ingest(workspace_lock), linux)
    pos = {u: i for i, u in enumerate(graph.units)}
    for e in graph.edges:
        assert e.source in pos and e.target in pos
        assert pos[e.target] < pos[e.source]


def test_required_by(workspace_lock, linux):
    graph = _graph(ingest(workspace_lock), linux)
    app = graph.find("app")[0]
    assert all(graph.required_by[u] == (app,) for u in graph.units)


def test_normal_cycle_is_rejected(entry, lock, linux):
    packages = ingest(lock(
        entry("a", "0.1.0", source=None, deps=[{"name": "b", "version": "1.0.0"}]),
        entry("b", deps=[{"name": "a", "version": "0.1.0"}]),
    ))
    with pytest.raises(DependencyCycle) as exc:
        _graph(packages, linux)
    assert exc.value.path == ["a 0.1.0", "b 1.0.0", "a 0.1.0"]


def test_dev_edge_may_close_a_cycle(entry, lock, linux):
    packages = ingest(lock(
        entry("a", "0.1.0", source=None, deps=[{"name": "b", "version": "1.0.0", "kind": "dev"}]),
        entry("b", deps=[{"name": "a", "version": "0.1.0"}]),
    ))
    graph = _graph(packages, linux, kind="dev")
    assert sorted(_labels(graph)) == [("a", DEV), ("a", NORMAL), ("b", DEV)]


@pytest.fixture
def dev_lock(entry, lock):
    def build(fixture_features):
        return ingest(lock(
            entry("app", "0.1.0", source=None, deps=[
                {"name": "lib", "version": "1.0.0"},
                {"name": "fixture", "version": "1.0.0", "kind": "dev"},
            ]),
            entry("fixture", deps=[{"name": "lib", "version": "1.0.0", "features": list(fixture_features)}]),
            entry("lib", features={"test-util": []}),
        ))
    return build


def test_dev_pass_reuses_identical_production_units(dev_lock, linux):
    graph = _graph(dev_lock([]), linux, kind="dev")
    assert sorted(_labels(graph)) == [("app", DEV), ("app", NORMAL), ("fixture", DEV), ("lib", NORMAL)]
    lib = graph.find("lib")[0]
    app, app_dev = graph.find("app", NORMAL)[0], graph.find("app", DEV)[0]
    assert graph.roots == (app, app_dev)
    assert graph.required_by[lib] == (app, app_dev)
    assert graph.required_by[graph.find("fixture")[0]] == (app_dev,)


def test_dev_only_features_get_their_own_unit(dev_lock, linux):
    graph = _graph(dev_lock(["test-util"]), linux, kind="dev")
    libs = {u.context: u.features for u in graph.find("lib")}
    assert libs == {NORMAL: (), DEV: ("test-util",)}
    app_dev = graph.find("app", DEV)[0]
    assert {e.target.context for e in graph.dependencies(app_dev)} == {DEV}


def test_without_dev_roots_no_dev_units(dev_lock, linux):
    graph = _graph(dev_lock(["test-util"]), linux)
    assert sorted(_labels(graph)) == [("app", NORMAL), ("lib", NORMAL)]


def test_cross_compilation_contexts(workspace_lock, linux, arm_linux):
    graph = _graph(ingest(workspace_lock), arm_linux, host=linux)
    contexts = {u.package_id.name: (u.context, u.platform.triple) for u in graph.units}
    assert contexts["cc"] == (BUILD, linux.triple)
    assert contexts["lib"] == (NORMAL, arm_linux.triple)


def test_dev_pass_only_expands_dev_roots(entry, lock, linux):
    packages = ingest(lock(
        entry("a", "0.1.0", source=None, deps=[{"name": "z", "version": "1.0.0"}]),
        entry("b", "0.1.0", source=None, deps=[{"name": "t", "version": "1.0.0", "kind": "dev"}]),
        entry("t", deps=[{"name": "z", "version": "1.0.0", "features": ["t"]}]),
        entry("z", features={"t": []}),
    ))
    graph = _graph(packages, linux, roots=["a", {"package": "b", "kind": "dev"}])
    assert sorted(_labels(graph)) == [
        ("a", NORMAL), ("b", DEV), ("b", NORMAL), ("t", DEV), ("z", DEV), ("z", NORMAL),
    ]
    assert {u.context: u.features for u in graph.find("z")} == {NORMAL: (), DEV: ("t",)}
    body = plan_body(graph)
    assert all(record["required-by"] for record in body["units"].values())
