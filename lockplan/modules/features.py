#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/features.py — Resolução de features por ponto fixo

Para um conjunto de raízes e um par (alvo, host) calcula, por instância
(PackageId, TargetPlatform), o conjunto final de features e as arestas de
dependência ativadas.

Worklist explícita (deque) de pedidos (instância, feature). Habilitar um pacote
ativa na hora as dependências obrigatórias; as features delas entram na fila.

Regras de plataforma:
  - build-dependencies e proc-macros compilam para o host
  - o resto herda a plataforma do consumidor
  - host == alvo: as instâncias coincidem e as features unificam
Dev-dependencies só são seguidas a partir de raízes dev (passo separado).
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Set, Tuple

from lockplan.modules import log
from lockplan.modules.errors import ParseError, UnknownFeature
from lockplan.modules.lockfile import PackageSet
from lockplan.modules.model import BUILD, DEV, NORMAL, Dependency, PackageId, PackageRecord, TargetPlatform
from lockplan.modules.platform import evaluate

logger = log.get_logger("features")

ROOT_KINDS = (NORMAL, BUILD, DEV)

Instance = Tuple[PackageId, TargetPlatform]


@dataclass(frozen=True)
class RootRequest:
    """
    Pedido de raiz.
      kind: normal (alvo), build (host) ou dev (alvo + dev-dependencies)
    """
    package: PackageId
    features: Tuple[str, ...] = ()
    default_features: bool = True
    kind: str = NORMAL

    def __post_init__(self):
        if self.kind not in ROOT_KINDS:
            raise ParseError(f"tipo de raiz desconhecido: '{self.kind}'", kind=self.kind)


@dataclass(frozen=True)
class ResolvedInstance:
    package_id: PackageId
    platform: TargetPlatform
    features: Tuple[str, ...]
    edges: Tuple[Tuple[Dependency, Instance], ...]  # na ordem de declaração
    dev: bool = False  # dev-dependencies seguidas

    @property
    def key(self) -> Instance:
        return (self.package_id, self.platform)


@dataclass(frozen=True)
class FeatureResolution:
    target: TargetPlatform
    host: TargetPlatform
    instances: Tuple[ResolvedInstance, ...]
    roots: Tuple[Tuple[RootRequest, Instance], ...]
    dev_pass: bool = False

    def get(self, package_id: PackageId, platform: Optional[TargetPlatform] = None) -> ResolvedInstance:
        platform = platform or self.target
        for inst in self.instances:
            if inst.package_id == package_id and inst.platform == platform:
                return inst
        raise KeyError(f"{package_id} @ {platform}")

    def features_of(self, package_id: PackageId, platform: Optional[TargetPlatform] = None) -> Tuple[str, ...]:
        return self.get(package_id, platform).features


class FeatureResolver:
    """
    Estado de uma passada: nada persiste entre chamadas de resolve().
    """

    def __init__(self, packages: PackageSet, target: TargetPlatform, host: Optional[TargetPlatform] = None):
        self.packages = packages
        self.target = target
        self.host = host or target

    # ----------------------
    # estado
    # ----------------------
    def _reset(self, follow_dev: Set[Instance]):
        self._queue: Deque[Tuple[Instance, str]] = deque()
        self._features: Dict[Instance, Set[str]] = {}
        self._edges: Dict[Instance, Dict[int, Instance]] = {}
        self._active: Dict[Instance, Set[str]] = {}
        self._pending_weak: Dict[Tuple[Instance, str], List[str]] = {}
        self._seen: Set[Tuple[Instance, str]] = set()
        self._follow_dev = follow_dev
        self._steps = 0

    def _record(self, inst: Instance) -> PackageRecord:
        return self.packages.get(inst[0])

    def _platform_for(self, consumer: TargetPlatform, kind: str, record: PackageRecord) -> TargetPlatform:
        if kind == BUILD or record.proc_macro:
            return self.host
        return consumer

    def root_instance(self, root: RootRequest) -> Instance:
        record = self.packages.get(root.package)
        base = self.host if root.kind == BUILD else self.target
        return (root.package, self._platform_for(base, NORMAL, record))

    # ----------------------
    # pacotes e arestas
    # ----------------------
    def _enable_package(self, inst: Instance) -> None:
        if inst in self._features:
            return
        self._features[inst] = set()
        self._edges[inst] = {}
        self._active[inst] = set()
        logger.debug("Instância habilitada: %s @ %s", inst[0], inst[1])
        for idx, dep in enumerate(self._record(inst).dependencies):
            if not dep.optional:
                self._activate_edge(inst, idx, dep)

    def _activate_edge(self, inst: Instance, idx: int, dep: Dependency) -> None:
        if idx in self._edges[inst]:
            return
        if dep.kind == DEV and inst not in self._follow_dev:
            return
        if not evaluate(dep.target, inst[1]):
            logger.debug("Aresta podada: %s -> %s (%s) em %s", inst[0], dep.name, dep.target_raw, inst[1])
            return
        dep_record = self.packages.get(dep.package_id)
        tinst = (dep.package_id, self._platform_for(inst[1], dep.kind, dep_record))
        self._edges[inst][idx] = tinst
        self._enable_package(tinst)
        for f in dep.features:
            self._queue.append((tinst, f))
        if dep.default_features:
            self._queue.append((tinst, "default"))

    def _activate_optional(self, inst: Instance, name: str) -> None:
        if name in self._active[inst]:
            return
        self._active[inst].add(name)
        record = self._record(inst)
        for idx, dep in enumerate(record.dependencies):
            if dep.name == name and dep.optional:
                self._activate_edge(inst, idx, dep)
        for feat in self._pending_weak.pop((inst, name), []):
            self._dep_feature(inst, name, feat)

    def _dep_feature(self, inst: Instance, name: str, feat: str) -> None:
        """Pede `feat` em todas as arestas ativas chamadas `name`."""
        record = self._record(inst)
        for idx, dep in enumerate(record.dependencies):
            if dep.name == name and idx in self._edges[inst]:
                self._queue.append((self._edges[inst][idx], feat))

    # ----------------------
    # features
    # ----------------------
    def _enable_feature(self, inst: Instance, feat: str) -> None:
        if (inst, feat) in self._seen:
            return
        self._seen.add((inst, feat))
        record = self._record(inst)
        table = record.feature_table()

        if feat.startswith("dep:"):
            name = feat[4:]
            if name not in record.optional_names():
                raise UnknownFeature(record.package_id, feat,
                                     f"pacote {record.package_id}: '{feat}' não é dependência opcional")
            self._activate_optional(inst, name)
            return

        if "/" in feat:
            name, sub = feat.split("/", 1)
            weak = name.endswith("?")
            name = name.rstrip("?")
            deps = record.dependencies_named(name)
            if not deps:
                raise UnknownFeature(record.package_id, feat,
                                     f"pacote {record.package_id}: '{feat}' cita dependência inexistente '{name}'")
            optional = any(d.optional for d in deps)
            if weak:
                if optional and name not in self._active[inst]:
                    self._pending_weak.setdefault((inst, name), []).append(sub)
                    return
            elif optional:
                if name not in record.explicit_dep_names() and name not in table:
                    self._features[inst].add(name)
                self._activate_optional(inst, name)
            self._dep_feature(inst, name, sub)
            return

        if feat in table:
            self._features[inst].add(feat)
            for implied in table[feat]:
                self._queue.append((inst, implied))
            return

        if feat == "default":
            return

        if feat in record.optional_names() and feat not in record.explicit_dep_names():
            self._features[inst].add(feat)
            self._activate_optional(inst, feat)
            return

        raise UnknownFeature(record.package_id, feat)

    # ----------------------
    # ponto fixo
    # ----------------------
    def resolve(self, roots: Iterable[RootRequest], dev: bool = False) -> FeatureResolution:
        """
        dev=False: dev-dependencies ignoradas (raízes dev entram como normais).
        dev=True: só as raízes dev, seguindo também suas dev-dependencies.
        """
        roots = [r for r in roots if not dev or r.kind == DEV]
        seeded = [(r, self.root_instance(r)) for r in roots]
        self._reset({inst for r, inst in seeded if dev and r.kind == DEV})

        for root, inst in seeded:
            self._enable_package(inst)
            for f in root.features:
                self._queue.append((inst, f))
            if root.default_features:
                self._queue.append((inst, "default"))

        while self._queue:
            self._steps += 1
            inst, feat = self._queue.popleft()
            self._enable_feature(inst, feat)

        instances = []
        for inst in sorted(self._features, key=lambda i: (i[0].sort_key(), i[1].triple)):
            edges = tuple((self._record(inst).dependencies[idx], tinst)
                          for idx, tinst in sorted(self._edges[inst].items()))
            instances.append(ResolvedInstance(
                package_id=inst[0],
                platform=inst[1],
                features=tuple(sorted(self._features[inst])),
                edges=edges,
                dev=inst in self._follow_dev,
            ))
        logger.debug("Resolução de features (%s, dev=%s): %d instâncias em %d passos",
                     self.target.triple, dev, len(instances), self._steps)
        return FeatureResolution(
            target=self.target,
            host=self.host,
            instances=tuple(instances),
            roots=tuple(seeded),
            dev_pass=dev,
        )


def resolve_features(packages: PackageSet, roots: Iterable[RootRequest], target: TargetPlatform,
                     host: Optional[TargetPlatform] = None, dev: bool = False) -> FeatureResolution:
    """Atalho funcional para uma passada."""
    return FeatureResolver(packages, target, host).resolve(roots, dev=dev)


__all__ = ["RootRequest", "ResolvedInstance", "FeatureResolution", "FeatureResolver", "resolve_features"]
