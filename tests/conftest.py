import hashlib
import os
import tempfile

# config isolada antes de importar o lockplan (config/log carregam no import)
_CFG_DIR = tempfile.mkdtemp(prefix="lockplan-test-")
_CFG = os.path.join(_CFG_DIR, "config.yml")
with open(_CFG, "w", encoding="utf-8") as _f:
    _f.write("log_file: false\nlog_level: error\njobs: 2\n")
os.environ["LOCKPLAN_CONFIG"] = _CFG

import pytest

from lockplan.modules.platform import platform_from_triple

REGISTRY = "registry+https://github.com/rust-lang/crates.io-index"

LINUX = platform_from_triple("x86_64-unknown-linux-gnu")
MACOS = platform_from_triple("x86_64-apple-darwin")
ARM_LINUX = platform_from_triple("aarch64-unknown-linux-gnu")


def _checksum(name, version):
    return hashlib.sha256(f"{name}-{version}".encode("utf-8")).hexdigest()


def make_entry(name, version="1.0.0", deps=(), source=REGISTRY, checksum=True, **manifest):
    """Entrada de lockfile; kwargs viram o fragmento de manifesto inline."""
    entry = {"name": name, "version": version, "source": source, "dependencies": list(deps)}
    if checksum and source is not None and str(source).startswith("registry+"):
        entry["checksum"] = _checksum(name, version)
    if manifest:
        entry["manifest"] = {k.replace("_", "-"): v for k, v in manifest.items()}
    return entry


def make_lock(*entries):
    return {"version": 1, "packages": list(entries)}


@pytest.fixture
def entry():
    return make_entry


@pytest.fixture
def lock():
    return make_lock


@pytest.fixture
def linux():
    return LINUX


@pytest.fixture
def macos():
    return MACOS


@pytest.fixture
def arm_linux():
    return ARM_LINUX


@pytest.fixture
def workspace_lock():
    """
    app (path) -> lib (registry, feature std padrão)
               -> cc (build-dependency)
               -> winapi (só windows)
               -> libc (só unix)
    """
    return make_lock(
        make_entry("app", "0.1.0", source=None, deps=[
            {"name": "lib", "version": "1.2.0"},
            {"name": "cc", "version": "1.0.0", "kind": "build"},
            {"name": "winapi", "version": "0.3.9", "target": "cfg(windows)"},
            {"name": "libc", "version": "0.2.100", "target": "cfg(unix)"},
        ], features={"default": []}, build_script=True),
        make_entry("lib", "1.2.0", features={"default": ["std"], "std": []}),
        make_entry("cc", "1.0.0"),
        make_entry("winapi", "0.3.9"),
        make_entry("libc", "0.2.100", links="c"),
    )
