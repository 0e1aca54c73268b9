#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/versions.py — Versões semânticas e requisitos de versão

- SemVer: parsing estrito (major.minor.patch[-pre][+build]) e precedência semver 2.0
- VersionReq: requisitos no formato cargo (^, ~, =, >=, <, curingas) traduzidos
  para packaging.specifiers.SpecifierSet
- Regra de pre-release: uma versão pre-release só satisfaz um requisito que
  cite o mesmo major.minor.patch com pre-release
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering
from typing import List, Optional, Tuple, Union

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import Version

from lockplan.modules.errors import ParseError

_NUM = r"0|[1-9]\d*"
_IDENT = r"[0-9A-Za-z-]+"
SEMVER_RE = re.compile(
    rf"^(?P<major>{_NUM})\.(?P<minor>{_NUM})\.(?P<patch>{_NUM})"
    rf"(?:-(?P<pre>{_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+(?P<build>{_IDENT}(?:\.{_IDENT})*))?$"
)
# comparador cargo: op opcional + versão parcial (1, 1.2, 1.2.3, 1.*, *)
COMPARATOR_RE = re.compile(
    r"^(?P<op>\^|~|=|>=|<=|>|<)?\s*"
    r"(?P<major>\d+|\*|x|X)(?:\.(?P<minor>\d+|\*|x|X))?(?:\.(?P<patch>\d+|\*|x|X))?"
    rf"(?:-(?P<pre>{_IDENT}(?:\.{_IDENT})*))?"
    rf"(?:\+{_IDENT}(?:\.{_IDENT})*)?$"
)
_WILD = {"*", "x", "X"}


def _pre_key(pre: Tuple[str, ...]):
    # identificadores numéricos < alfanuméricos; sem pre-release > com pre-release
    if not pre:
        return (1,)
    parts = []
    for ident in pre:
        if ident.isdigit():
            parts.append((0, int(ident), ""))
        else:
            parts.append((1, 0, ident))
    return (0, tuple(parts))


@total_ordering
@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int
    patch: int
    pre: Tuple[str, ...] = field(default=())
    build: str = ""

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        s = str(text or "").strip()
        m = SEMVER_RE.match(s)
        if not m:
            raise ParseError(f"versão inválida: '{text}'", version=str(text))
        pre = tuple(m.group("pre").split(".")) if m.group("pre") else ()
        for ident in pre:
            if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
                raise ParseError(f"versão inválida (zero à esquerda no pre-release): '{text}'", version=s)
        return cls(int(m.group("major")), int(m.group("minor")), int(m.group("patch")),
                   pre, m.group("build") or "")

    @property
    def release(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    def sort_key(self):
        return (self.release, _pre_key(self.pre))

    def __lt__(self, other: "SemVer") -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def __str__(self) -> str:
        s = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            s += "-" + ".".join(self.pre)
        if self.build:
            s += "+" + self.build
        return s


def parse_version(v: Union[str, SemVer]) -> SemVer:
    """Aceita SemVer já construído ou string."""
    if isinstance(v, SemVer):
        return v
    return SemVer.parse(v)


# ---------------------------------------------------------------------
# Requisitos de versão
# ---------------------------------------------------------------------

def _upper_bound(op: str, major: int, minor: Optional[int], patch: Optional[int]) -> Tuple[int, int, int]:
    """Limite superior exclusivo (sobre o release) de ^ e ~."""
    if op == "~":
        return (major + 1, 0, 0) if minor is None else (major, minor + 1, 0)
    if major > 0 or minor is None:
        return (major + 1, 0, 0)
    if minor > 0 or patch is None:
        return (0, minor + 1, 0)
    return (0, 0, patch + 1)


def _comparator_clauses(op: str, major: int, minor: Optional[int], patch: Optional[int]) -> List[str]:
    """Traduz um comparador cargo em cláusulas PEP 440 sobre o release M.m.p."""
    def v(a, b=0, c=0):
        return f"{a}.{b}.{c}"

    if op in ("", "^", "~"):
        return [f">={v(major, minor or 0, patch or 0)}", f"<{v(*_upper_bound(op, major, minor, patch))}"]
    if op == "=":
        if minor is None:
            return [f">={v(major)}", f"<{v(major + 1)}"]
        if patch is None:
            return [f">={v(major, minor)}", f"<{v(major, minor + 1)}"]
        return [f"=={v(major, minor, patch)}"]
    if op == ">":
        if minor is None:
            return [f">={v(major + 1)}"]
        if patch is None:
            return [f">={v(major, minor + 1)}"]
        return [f">{v(major, minor, patch)}"]
    if op == ">=":
        return [f">={v(major, minor or 0, patch or 0)}"]
    if op == "<":
        return [f"<{v(major, minor or 0, patch or 0)}"]
    if op == "<=":
        if minor is None:
            return [f"<{v(major + 1)}"]
        if patch is None:
            return [f"<{v(major, minor + 1)}"]
        return [f"<={v(major, minor, patch)}"]
    raise ValueError(op)


def _pre_comparator_matches(op: str, bound: SemVer, ver: SemVer) -> bool:
    """Comparador que cita pre-release: decidido por precedência semver completa."""
    key, bkey = ver.sort_key(), bound.sort_key()
    if op == "=":
        return key == bkey
    if op == ">":
        return key > bkey
    if op == ">=":
        return key >= bkey
    if op == "<":
        return key < bkey
    if op == "<=":
        return key <= bkey
    return key >= bkey and ver.release < _upper_bound(op, bound.major, bound.minor, bound.patch)


@dataclass(frozen=True)
class VersionReq:
    """
    Requisito cargo já traduzido.
      raw: texto original
      specifier: SpecifierSet com os comparadores sem pre-release
      pre_comparators: comparadores com pre-release (op, limite completo)
    """
    raw: str
    specifier: SpecifierSet
    pre_comparators: Tuple[Tuple[str, SemVer], ...] = ()

    @classmethod
    def parse(cls, text: str) -> "VersionReq":
        raw = str(text or "").strip()
        if not raw:
            raise ParseError("requisito de versão vazio", req=raw)
        clauses: List[str] = []
        pre_comparators = []
        for part in raw.split(","):
            part = part.strip()
            m = COMPARATOR_RE.match(part)
            if not m:
                raise ParseError(f"requisito de versão inválido: '{raw}'", req=raw)
            op = m.group("op") or ""
            major_s, minor_s, patch_s = m.group("major"), m.group("minor"), m.group("patch")
            if major_s in _WILD:
                if op:
                    raise ParseError(f"curinga com operador em '{raw}'", req=raw)
                continue  # "*" casa qualquer release
            major = int(major_s)
            minor = None if minor_s is None or minor_s in _WILD else int(minor_s)
            patch = None if patch_s is None or patch_s in _WILD or minor is None else int(patch_s)
            if minor_s in _WILD or patch_s in _WILD:
                if op not in ("", "="):
                    raise ParseError(f"curinga com operador em '{raw}'", req=raw)
                op = "="
            if m.group("pre"):
                if minor is None or patch is None:
                    raise ParseError(f"pre-release exige versão completa em '{raw}'", req=raw)
                pre_comparators.append((op, SemVer(major, minor, patch, tuple(m.group("pre").split(".")))))
                continue
            clauses.extend(_comparator_clauses(op, major, minor, patch))
        try:
            spec = SpecifierSet(",".join(clauses))
        except InvalidSpecifier as e:
            raise ParseError(f"requisito de versão inválido: '{raw}' ({e})", req=raw) from e
        return cls(raw, spec, tuple(pre_comparators))

    def matches(self, version: Union[str, SemVer]) -> bool:
        ver = parse_version(version)
        # pre-releases só casam quando algum comparador cita o mesmo release com pre-release
        if ver.pre and not any(b.release == ver.release for _, b in self.pre_comparators):
            return False
        if not all(_pre_comparator_matches(op, b, ver) for op, b in self.pre_comparators):
            return False
        release = Version("{}.{}.{}".format(*ver.release))
        return self.specifier.contains(release, prereleases=True)

    def __str__(self) -> str:
        return self.raw


def parse_req(text: str) -> VersionReq:
    return VersionReq.parse(text)


__all__ = ["SemVer", "VersionReq", "parse_version", "parse_req"]
