import pytest

from lockplan.modules.errors import DanglingDependency, ParseError, UnknownFeature
from lockplan.modules.features import RootRequest
from lockplan.modules.lockfile import ingest
from lockplan.modules.resolver import parse_request, parse_roots, resolve_request, resolve_targets


def test_parse_request(workspace_lock):
    packages = ingest(workspace_lock)
    req = parse_request(packages, {
        "roots": ["app", {"package": "lib", "features": "std", "default-features": False, "kind": "build"}],
        "targets": ["x86_64-unknown-linux-gnu", {"triple": "aarch64-apple-darwin"}],
        "host": "x86_64-unknown-linux-gnu",
    })
    assert req.roots[0] == RootRequest(packages.find("app").package_id)
    assert req.roots[1].features == ("std",)
    assert req.roots[1].default_features is False
    assert req.roots[1].kind == "build"
    assert [t.triple for t in req.targets] == ["x86_64-unknown-linux-gnu", "aarch64-apple-darwin"]
    assert req.targets[1].os == "macos"
    assert req.host.triple == "x86_64-unknown-linux-gnu"


def test_request_defaults_come_from_config(workspace_lock):
    packages = ingest(workspace_lock)
    req = parse_request(packages, None)
    assert [t.triple for t in req.targets] == ["x86_64-unknown-linux-gnu"]
    assert req.host is None
    assert [r.package.name for r in req.roots] == ["app"]


@pytest.mark.parametrize("doc,error", [
    ({"roots": ["ghost"]}, DanglingDependency),
    ({"roots": [{"package": "app", "kind": "test"}]}, ParseError),
    ({"roots": [{"package": "app", "flavour": 1}]}, ParseError),
    ({"targets": ["linux"]}, ParseError),
    ({"extra": True}, ParseError),
    (["app"], ParseError),
])
def test_bad_requests(workspace_lock, doc, error):
    with pytest.raises(error):
        parse_request(ingest(workspace_lock), doc)


def test_no_workspace_members_and_no_roots(entry, lock):
    with pytest.raises(ParseError):
        parse_roots(ingest(lock(entry("lib"))), None)


def test_targets_resolved_in_given_order(workspace_lock, linux, macos, arm_linux):
    packages = ingest(workspace_lock)
    roots = parse_roots(packages, None)
    graphs = resolve_targets(packages, roots, [macos, arm_linux, linux], jobs=3)
    assert [g.target for g in graphs] == [macos, arm_linux, linux]
    sequential = resolve_targets(packages, roots, [macos, arm_linux, linux], jobs=1)
    assert graphs == sequential


def test_first_failure_is_raised(workspace_lock, linux, macos):
    packages = ingest(workspace_lock)
    roots = [RootRequest(packages.find("lib").package_id, ("nope",))]
    with pytest.raises(UnknownFeature):
        resolve_targets(packages, roots, [linux, macos], jobs=2)


def test_resolve_request(workspace_lock):
    packages = ingest(workspace_lock)
    req = parse_request(packages, {"targets": ["x86_64-pc-windows-msvc"]})
    (graph,) = resolve_request(packages, req)
    names = sorted(u.package_id.name for u in graph.units)
    assert names == ["app", "cc", "lib", "winapi"]
