import pytest

from lockplan.modules.errors import ParseError
from lockplan.modules.platform import (
    AllOf, AnyOf, evaluate, parse_cfg, parse_predicate, platform_from_mapping, platform_from_triple, render,
)


@pytest.mark.parametrize("triple,os_name,arch,env,family,width", [
    ("x86_64-unknown-linux-gnu", "linux", "x86_64", "gnu", ("unix",), "64"),
    ("x86_64-pc-windows-msvc", "windows", "x86_64", "msvc", ("windows",), "64"),
    ("x86_64-apple-darwin", "macos", "x86_64", "", ("unix",), "64"),
    ("aarch64-linux-android", "android", "aarch64", "", ("unix",), "64"),
    ("i686-unknown-linux-musl", "linux", "x86", "musl", ("unix",), "32"),
    ("wasm32-wasi", "wasi", "wasm32", "", ("wasm",), "32"),
])
def test_platform_from_triple(triple, os_name, arch, env, family, width):
    p = platform_from_triple(triple)
    assert (p.os, p.arch, p.env, p.family, p.pointer_width) == (os_name, arch, env, family, width)
    assert p.triple == triple


def test_platform_from_mapping_overrides_and_rejects_unknown():
    p = platform_from_mapping({"triple": "x86_64-unknown-linux-gnu", "env": "musl"})
    assert p.env == "musl" and p.os == "linux"
    q = platform_from_mapping({"os": "darwin", "arch": "arm64"})
    assert (q.os, q.arch, q.family) == ("macos", "aarch64", ("unix",))
    with pytest.raises(ParseError):
        platform_from_mapping({"triple": "x86_64-unknown-linux-gnu", "flavor": "x"})


@pytest.mark.parametrize("pred,expected", [
    ("cfg(unix)", True),
    ("cfg(windows)", False),
    ('cfg(target_os = "linux")', True),
    ('cfg(target_os = "macos")', False),
    ('cfg(all(unix, target_arch = "x86_64"))', True),
    ('cfg(any(windows, target_os = "macos"))', False),
    ("cfg(not(windows))", True),
    ("cfg(all())", True),
    ("cfg(any())", False),
    ('cfg(target_pointer_width = "64")', True),
    ('cfg(target_env = "gnu")', True),
    ('cfg(target_family = "unix")', True),
    ('cfg(target_endian = "little")', True),
    ('cfg(target_vendor = "apple")', False),
    ("x86_64-unknown-linux-gnu", True),
    ("x86_64-pc-windows-msvc", False),
])
def test_cfg_on_linux(linux, pred, expected):
    assert evaluate(parse_predicate(pred), linux) is expected


@pytest.mark.parametrize("pred,expected", [
    ({"os": "linux"}, False),
    ({"os": "macos"}, True),
    ({"arch": ["x86_64", "aarch64"]}, True),
    ({"not": {"os": "linux"}}, True),
    ({"any": []}, False),
    ({"all": []}, True),
    ({"unix": True}, True),
    ({"all": [{"family": "unix"}, "cfg(not(windows))"]}, True),
])
def test_structured_predicates_on_macos(macos, pred, expected):
    assert evaluate(parse_predicate(pred), macos) is expected


def test_empty_predicate_is_unconditional(linux):
    assert parse_predicate(None) is None
    assert parse_predicate("") is None
    assert evaluate(None, linux)


@pytest.mark.parametrize("text", [
    'cfg(target_foo = "x")',
    'cfg(feature = "serde")',
    'cfg(os = "linux")',
    "cfg(unix",
    "cfg(debug_assertions)",
    "not a predicate",
    'cfg(target_os = linux)',
])
def test_bad_cfg_strings(text):
    with pytest.raises(ParseError):
        parse_predicate(text)


def test_bad_structured_attribute():
    with pytest.raises(ParseError):
        parse_predicate({"flavor": "sweet"})


def test_render_is_canonical():
    pred = parse_cfg('cfg(all(unix,target_os="linux"))')
    assert isinstance(pred, AllOf)
    assert render(pred) == 'cfg(all(unix, target_os = "linux"))'
    assert render(parse_predicate({"arch": ["x86", "arm"]})) == 'cfg(any(target_arch = "x86", target_arch = "arm"))'
    assert isinstance(parse_predicate({"arch": ["x86"]}), AnyOf)
