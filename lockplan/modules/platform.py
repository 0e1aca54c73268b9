#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/platform.py — Plataformas alvo e avaliador de predicados

Funcionalidades:
- TargetPlatform a partir de um triple conhecido (x86_64-unknown-linux-gnu, ...)
  ou de um mapeamento explícito, derivando family/endian/pointer_width
- Parser de predicados cfg do cargo: cfg(unix), cfg(target_os = "linux"),
  cfg(any(...)), cfg(all(...)), cfg(not(...)); triple puro como predicado
- Predicados estruturados (YAML/JSON): {os: linux}, {arch: [x86_64, aarch64]},
  {any: [...]}, {all: [...]}, {not: {...}}
- Atributo desconhecido é ParseError na ingestão, nunca "falso" silencioso
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from lockplan.modules.errors import ParseError
from lockplan.modules.model import TargetPlatform

# ---------------------------------------------------------------------
# Tabelas de triples
# ---------------------------------------------------------------------

KNOWN_VENDORS = {"unknown", "pc", "apple", "sun", "nvidia", "fortanix", "uwp", "wrs", "esp", "kmc"}

UNIX_OSES = {
    "linux", "android", "macos", "ios", "tvos", "watchos", "freebsd", "netbsd",
    "openbsd", "dragonfly", "solaris", "illumos", "haiku", "emscripten", "fuchsia",
    "redox", "aix", "hurd",
}

OS_ALIASES = {"darwin": "macos", "windows": "windows"}

BIG_ENDIAN_ARCHES = {"mips", "mips64", "powerpc", "powerpc64", "s390x", "sparc", "sparc64", "m68k"}
ARCH_32 = {"x86", "arm", "mips", "powerpc", "riscv32", "wasm32", "sparc", "m68k", "hexagon", "csky", "xtensa"}


def _canonical_arch(raw: str) -> Tuple[str, str]:
    """(target_arch, endian) a partir do primeiro componente do triple."""
    a = raw.lower()
    if re.match(r"^i[3-6]86$", a):
        return "x86", "little"
    if a in ("arm64", "aarch64"):
        return "aarch64", "little"
    if a == "aarch64_be":
        return "aarch64", "big"
    if a.startswith(("armv", "thumbv")) or a in ("arm", "armeb", "armebv7r"):
        return "arm", "big" if "eb" in a else "little"
    if a.startswith("riscv64"):
        return "riscv64", "little"
    if a.startswith("riscv32"):
        return "riscv32", "little"
    if a == "powerpc64le":
        return "powerpc64", "little"
    if a in ("mipsel", "mipsisa32r6el"):
        return "mips", "little"
    if a in ("mips64el", "mipsisa64r6el"):
        return "mips64", "little"
    if a == "sparcv9":
        return "sparc64", "big"
    return a, "big" if a in BIG_ENDIAN_ARCHES else "little"


def _canonical_env(raw: str) -> str:
    e = raw.lower()
    for prefix in ("gnu", "musl", "msvc", "sgx", "uclibc", "newlib", "relibc", "ohos"):
        if e.startswith(prefix):
            return prefix
    return ""


def _family_for(os_name: str, arch: str) -> Tuple[str, ...]:
    fam: List[str] = []
    if os_name in UNIX_OSES:
        fam.append("unix")
    if os_name == "windows":
        fam.append("windows")
    if arch.startswith("wasm"):
        fam.append("wasm")
    return tuple(sorted(fam))


def platform_from_triple(triple: str) -> TargetPlatform:
    """
    Deriva um TargetPlatform de um triple.
    Formatos: arch-vendor-os[-env], arch-os-env, arch-vendor-os, arch-os.
    """
    t = str(triple or "").strip()
    parts = t.split("-")
    if len(parts) < 2 or not all(parts):
        raise ParseError(f"triple inválido: '{triple}'", triple=t)
    arch, endian = _canonical_arch(parts[0])
    rest = parts[1:]
    vendor = "unknown"
    if len(rest) >= 2 and rest[0] in KNOWN_VENDORS:
        vendor, rest = rest[0], rest[1:]
    # thumbv7em-none-eabihf: os "none"
    os_raw = rest[0]
    env_raw = "-".join(rest[1:])
    os_name = OS_ALIASES.get(os_raw, os_raw)
    if os_name.startswith("wasi"):
        os_name = "wasi"
    if os_name == "linux" and env_raw.startswith("android"):
        os_name, env_raw = "android", ""
    if os_name.startswith("macos") or os_name.startswith("darwin"):
        os_name = "macos"
    if os_name.startswith("windows"):
        os_name = "windows"
    env = _canonical_env(env_raw)
    pointer_width = "32" if arch in ARCH_32 else "64"
    if arch == "x86_64" and env_raw.endswith("x32"):
        pointer_width = "32"
    return TargetPlatform(
        triple=t,
        os=os_name,
        arch=arch,
        env=env,
        family=_family_for(os_name, arch),
        vendor=vendor,
        endian=endian,
        pointer_width=pointer_width,
    )


def platform_from_mapping(data: Union[str, Dict[str, Any]]) -> TargetPlatform:
    """
    Aceita um triple (string) ou um dict com triple e/ou atributos explícitos.
    Atributos explícitos sobrescrevem os derivados do triple.
    """
    if isinstance(data, TargetPlatform):
        return data
    if isinstance(data, str):
        return platform_from_triple(data)
    if not isinstance(data, dict):
        raise ParseError(f"plataforma inválida: {data!r}", platform=repr(data))
    known = {"triple", "config", "os", "arch", "env", "family", "vendor", "endian", "pointer-width", "pointer_width"}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        raise ParseError(f"atributos de plataforma desconhecidos: {', '.join(unknown)}", attributes=unknown)
    triple = data.get("triple") or data.get("config")
    if triple:
        base = platform_from_triple(triple).to_dict()
    else:
        if not data.get("os") or not data.get("arch"):
            raise ParseError("plataforma sem triple precisa de 'os' e 'arch'", platform=str(data))
        arch, endian = _canonical_arch(str(data["arch"]))
        os_name = OS_ALIASES.get(str(data["os"]), str(data["os"]))
        env = str(data.get("env") or "")
        vendor = str(data.get("vendor") or "unknown")
        base = {
            "triple": "-".join(p for p in (arch, vendor, os_name, env) if p),
            "os": os_name,
            "arch": arch,
            "env": env,
            "family": list(_family_for(os_name, arch)),
            "vendor": vendor,
            "endian": endian,
            "pointer-width": "32" if arch in ARCH_32 else "64",
        }
    for key in ("os", "env", "vendor", "endian"):
        if data.get(key) is not None:
            base[key] = str(data[key])
    if data.get("arch") is not None:
        base["arch"] = _canonical_arch(str(data["arch"]))[0]
    if base["os"] in OS_ALIASES:
        base["os"] = OS_ALIASES[base["os"]]
    pw = data.get("pointer-width", data.get("pointer_width"))
    if pw is not None:
        base["pointer-width"] = str(pw)
    fam = data.get("family")
    if fam is not None:
        base["family"] = [fam] if isinstance(fam, str) else list(fam)
    return TargetPlatform(
        triple=str(base["triple"]),
        os=base["os"],
        arch=base["arch"],
        env=base["env"],
        family=tuple(sorted(str(f) for f in base["family"])),
        vendor=base["vendor"],
        endian=base["endian"],
        pointer_width=base["pointer-width"],
    )


# ---------------------------------------------------------------------
# Predicados
# ---------------------------------------------------------------------

# nome no cfg / chave estruturada -> atributo do TargetPlatform
ATTRIBUTES = {
    "target_os": "os", "os": "os",
    "target_arch": "arch", "arch": "arch",
    "target_env": "env", "env": "env",
    "target_family": "family", "family": "family",
    "target_vendor": "vendor", "vendor": "vendor",
    "target_endian": "endian", "endian": "endian",
    "target_pointer_width": "pointer_width", "pointer_width": "pointer_width",
}
# nomes que aparecem sem valor: cfg(unix) == cfg(target_family = "unix")
FLAGS = {"unix": ("family", "unix"), "windows": ("family", "windows")}

_CFG_NAMES = {v: k for k, v in ATTRIBUTES.items() if k.startswith("target_")}


@dataclass(frozen=True)
class Attr:
    """Comparação de um atributo: family é pertinência, o resto igualdade."""
    attr: str
    value: str

    def __str__(self) -> str:
        for flag, (attr, value) in FLAGS.items():
            if (attr, value) == (self.attr, self.value):
                return flag
        return f'{_CFG_NAMES[self.attr]} = "{self.value}"'


@dataclass(frozen=True)
class Triple:
    triple: str

    def __str__(self) -> str:
        return self.triple


@dataclass(frozen=True)
class AllOf:
    items: Tuple[Any, ...]

    def __str__(self) -> str:
        return "all(" + ", ".join(str(i) for i in self.items) + ")"


@dataclass(frozen=True)
class AnyOf:
    items: Tuple[Any, ...]

    def __str__(self) -> str:
        return "any(" + ", ".join(str(i) for i in self.items) + ")"


@dataclass(frozen=True)
class Not:
    item: Any

    def __str__(self) -> str:
        return f"not({self.item})"


Predicate = Union[Attr, Triple, AllOf, AnyOf, Not]


def render(pred: Predicate) -> str:
    """Texto cfg canônico (triples ficam puros)."""
    if isinstance(pred, Triple):
        return pred.triple
    return f"cfg({pred})"


# ----------------------
# Parser de cfg
# ----------------------
_TOKEN_RE = re.compile(r'\s*(?:(?P<ident>[A-Za-z_][A-Za-z0-9_]*)|(?P<str>"(?:[^"\\]|\\.)*")|(?P<punct>[(),=]))')
_TRIPLE_RE = re.compile(r"^[A-Za-z0-9_.]+(?:-[A-Za-z0-9_.]+)+$")


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise ParseError(f"predicado inválido em '{text}' (posição {pos})", predicate=text)
        pos = m.end()
        if m.group("ident"):
            tokens.append(("ident", m.group("ident")))
        elif m.group("str"):
            body = m.group("str")[1:-1]
            tokens.append(("str", re.sub(r"\\(.)", r"\1", body)))
        else:
            tokens.append(("punct", m.group("punct")))
    return tokens


class _CfgParser:
    def __init__(self, text: str):
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _error(self, msg: str) -> ParseError:
        return ParseError(f"{msg} em '{self.text}'", predicate=self.text)

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Tuple[str, str]:
        tok = self._peek()
        if tok is None:
            raise self._error("fim inesperado do predicado")
        self.pos += 1
        return tok

    def _expect(self, value: str) -> None:
        tok = self._next()
        if tok != ("punct", value):
            raise self._error(f"esperado '{value}', encontrado '{tok[1]}'")

    def parse(self) -> Predicate:
        tok = self._next()
        if tok != ("ident", "cfg"):
            raise self._error("esperado 'cfg('")
        self._expect("(")
        pred = self._pred()
        self._expect(")")
        if self._peek() is not None:
            raise self._error("texto extra após o predicado")
        return pred

    def _list(self) -> Tuple[Predicate, ...]:
        self._expect("(")
        items: List[Predicate] = []
        while self._peek() != ("punct", ")"):
            items.append(self._pred())
            if self._peek() == ("punct", ","):
                self._next()
            elif self._peek() != ("punct", ")"):
                raise self._error("esperado ',' ou ')'")
        self._expect(")")
        return tuple(items)

    def _pred(self) -> Predicate:
        kind, name = self._next()
        if kind != "ident":
            raise self._error(f"esperado identificador, encontrado '{name}'")
        if name in ("all", "any") and self._peek() == ("punct", "("):
            items = self._list()
            return AllOf(items) if name == "all" else AnyOf(items)
        if name == "not" and self._peek() == ("punct", "("):
            self._expect("(")
            inner = self._pred()
            self._expect(")")
            return Not(inner)
        if self._peek() == ("punct", "="):
            self._next()
            kind, value = self._next()
            if kind != "str":
                raise self._error(f"valor de '{name}' deve ser string")
            attr = ATTRIBUTES.get(name)
            if attr is None or not name.startswith("target_"):
                raise self._error(f"atributo de plataforma desconhecido '{name}'")
            return Attr(attr, value)
        if name in FLAGS:
            return Attr(*FLAGS[name])
        raise self._error(f"atributo de plataforma desconhecido '{name}'")


def parse_cfg(text: str) -> Predicate:
    """Parseia 'cfg(...)' ou um triple puro."""
    s = str(text).strip()
    if s.startswith("cfg"):
        return _CfgParser(s).parse()
    if _TRIPLE_RE.match(s):
        return Triple(s)
    raise ParseError(f"predicado de plataforma inválido: '{text}'", predicate=s)


def _parse_structured(data: Any) -> Predicate:
    if isinstance(data, str):
        return parse_cfg(data)
    if not isinstance(data, dict) or len(data) != 1:
        raise ParseError(f"predicado estruturado deve ter exatamente uma chave: {data!r}", predicate=repr(data))
    (key, value), = data.items()
    key = str(key)
    if key in ("any", "all"):
        if not isinstance(value, list):
            raise ParseError(f"'{key}' espera uma lista de predicados", predicate=repr(data))
        items = tuple(_parse_structured(v) for v in value)
        return AnyOf(items) if key == "any" else AllOf(items)
    if key == "not":
        return Not(_parse_structured(value))
    if key == "triple":
        return Triple(str(value))
    if key in FLAGS:
        flag = Attr(*FLAGS[key])
        return flag if value in (True, None) else Not(flag)
    attr = ATTRIBUTES.get(key)
    if attr is None:
        raise ParseError(f"atributo de plataforma desconhecido '{key}'", attribute=key)
    if isinstance(value, list):
        # "um de {Y, Z}"
        return AnyOf(tuple(Attr(attr, str(v)) for v in value))
    return Attr(attr, str(value))


def parse_predicate(raw: Any) -> Optional[Predicate]:
    """None/"" -> None (aresta incondicional)."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return parse_cfg(raw)
    return _parse_structured(raw)


# ----------------------
# Avaliação
# ----------------------
def evaluate(pred: Optional[Predicate], platform: TargetPlatform) -> bool:
    if pred is None:
        return True
    if isinstance(pred, Attr):
        if pred.attr == "family":
            return pred.value in platform.family
        return getattr(platform, pred.attr) == pred.value
    if isinstance(pred, Triple):
        return pred.triple == platform.triple
    if isinstance(pred, AllOf):
        return all(evaluate(p, platform) for p in pred.items)
    if isinstance(pred, AnyOf):
        return any(evaluate(p, platform) for p in pred.items)
    if isinstance(pred, Not):
        return not evaluate(pred.item, platform)
    raise TypeError(f"predicado desconhecido: {pred!r}")


__all__ = [
    "platform_from_triple", "platform_from_mapping",
    "Attr", "Triple", "AllOf", "AnyOf", "Not", "Predicate",
    "parse_cfg", "parse_predicate", "evaluate", "render",
]
