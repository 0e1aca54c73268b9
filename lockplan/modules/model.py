#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/model.py — Modelo de descritores do lockplan

Só dados + invariantes, sem comportamento de resolução:
- SourceId: união etiquetada (RegistrySource | GitSource | PathSource)
- PackageId: (nome, versão, fonte) com igualdade estrutural
- Dependency / PackageRecord: arestas declaradas e entradas do lockfile
- TargetPlatform: descritor concreto do alvo de compilação
- BuildUnit / Edge: nós e arestas do grafo de build final

Todos os tipos são dataclasses congeladas: a deduplicação do grafo depende de
igualdade/hash por valor, nunca de identidade de objeto.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from lockplan.modules.versions import SemVer

# Tipos de dependência (também usados como contexto de BuildUnit)
NORMAL = "normal"
BUILD = "build"
DEV = "dev"
DEP_KINDS = (NORMAL, BUILD, DEV)

# ---------------------------------------------------------------------
# Fontes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class RegistrySource:
    index_url: str
    kind = "registry"

    def key(self) -> str:
        return f"registry+{self.index_url}"

    def __str__(self) -> str:
        return self.key()


@dataclass(frozen=True)
class GitSource:
    """
    Checkout git fixado numa revisão.
    reference (branch/tag) é informativo e não participa da identidade.
    """
    url: str
    rev: str
    reference: Optional[str] = field(default=None, compare=False)
    kind = "git"

    def key(self) -> str:
        return f"git+{self.url}#{self.rev}"

    def __str__(self) -> str:
        return self.key()


@dataclass(frozen=True)
class PathSource:
    path: str
    kind = "path"

    def key(self) -> str:
        return f"path+{self.path}"

    def __str__(self) -> str:
        return self.key()


SourceId = Union[RegistrySource, GitSource, PathSource]

# ---------------------------------------------------------------------
# Pacotes
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PackageId:
    name: str
    version: SemVer
    source: SourceId

    def sort_key(self):
        return (self.name, self.version.sort_key(), self.source.key())

    def __str__(self) -> str:
        return f"{self.name} {self.version} ({self.source.key()})"


@dataclass(frozen=True)
class Dependency:
    """
    Aresta declarada por um PackageRecord, já resolvida para um PackageId.
      name: nome usado pelo consumidor (nome no toml; alias quando renomeada)
      package_id: pacote concreto
      target: predicado de plataforma (platform.Predicate) ou None
      target_raw: texto original do predicado, mantido para mensagens/saída
    """
    name: str
    package_id: PackageId
    kind: str = NORMAL
    optional: bool = False
    default_features: bool = True
    features: Tuple[str, ...] = ()
    target: Any = None
    target_raw: Optional[str] = None

    @property
    def rename(self) -> Optional[str]:
        return self.name if self.name != self.package_id.name else None


@dataclass(frozen=True)
class PackageRecord:
    """
    Entrada resolvida do lockfile + dados do fragmento de manifesto.
      features: tabela feature -> implicações (tupla de tuplas, ordenada por nome)
    """
    package_id: PackageId
    checksum: Optional[str] = None
    dependencies: Tuple[Dependency, ...] = ()
    features: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    build_script: bool = False
    links: Optional[str] = None
    edition: Optional[str] = None
    proc_macro: bool = False

    @property
    def name(self) -> str:
        return self.package_id.name

    @property
    def version(self) -> SemVer:
        return self.package_id.version

    def feature_table(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self.features)

    def dependencies_named(self, toml_name: str) -> Tuple[Dependency, ...]:
        return tuple(d for d in self.dependencies if d.name == toml_name)

    def optional_names(self) -> Tuple[str, ...]:
        return tuple(sorted({d.name for d in self.dependencies if d.optional}))

    def explicit_dep_names(self) -> Tuple[str, ...]:
        """Dependências referenciadas como 'dep:nome' (sem feature implícita)."""
        names = set()
        for _, implied in self.features:
            for entry in implied:
                if entry.startswith("dep:"):
                    names.add(entry[4:])
        return tuple(sorted(names))


# ---------------------------------------------------------------------
# Plataforma
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class TargetPlatform:
    """
    Alvo concreto de compilação.
      triple: nome do alvo (ex.: x86_64-unknown-linux-gnu)
      family: tupla (ex.: ("unix",)); wasm32 pode ter ("wasm",)
    """
    triple: str
    os: str
    arch: str
    env: str = ""
    family: Tuple[str, ...] = ()
    vendor: str = "unknown"
    endian: str = "little"
    pointer_width: str = "64"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "triple": self.triple,
            "os": self.os,
            "arch": self.arch,
            "env": self.env,
            "family": list(self.family),
            "vendor": self.vendor,
            "endian": self.endian,
            "pointer-width": self.pointer_width,
        }

    def __str__(self) -> str:
        return self.triple


# ---------------------------------------------------------------------
# Grafo de build
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class BuildUnit:
    package_id: PackageId
    features: Tuple[str, ...]
    platform: TargetPlatform
    context: str = NORMAL

    def sort_key(self):
        return (self.package_id.name, self.package_id.version.sort_key(), self.package_id.source.key(),
                self.platform.triple, self.context, self.features)

    def __str__(self) -> str:
        feats = ",".join(self.features)
        return f"{self.package_id.name} {self.package_id.version} [{self.platform.triple}/{self.context}] {{{feats}}}"


@dataclass(frozen=True)
class Edge:
    source: BuildUnit
    target: BuildUnit
    kind: str = NORMAL
    name: str = ""  # nome externo (alias quando renomeada)

    @property
    def rename(self) -> Optional[str]:
        return self.name if self.name and self.name != self.target.package_id.name else None


__all__ = [
    "NORMAL", "BUILD", "DEV", "DEP_KINDS",
    "RegistrySource", "GitSource", "PathSource", "SourceId",
    "PackageId", "Dependency", "PackageRecord", "TargetPlatform",
    "BuildUnit", "Edge",
]
