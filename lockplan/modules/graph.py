#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/graph.py — Síntese do grafo de build

Materializa BuildUnits a partir das resoluções de features:
  - passo de produção: contexto normal (ou build para instâncias só do host
    quando o host difere do alvo)
  - passo dev: reutiliza a unidade de produção quando features, plataforma e
    dependências não-dev (já mapeadas) coincidem e não há arestas dev;
    caso contrário cria uma unidade de contexto dev
Ordem de emissão topológica (dependências primeiro) via Kahn + heapq;
empates por nome, versão, fonte, plataforma, contexto, features.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from lockplan.modules import log
from lockplan.modules.errors import DependencyCycle
from lockplan.modules.features import FeatureResolution, Instance, ResolvedInstance
from lockplan.modules.lockfile import PackageSet
from lockplan.modules.model import BUILD, DEV, NORMAL, BuildUnit, Edge, TargetPlatform

logger = log.get_logger("graph")


@dataclass(frozen=True)
class BuildGraph:
    """
    Grafo final de um alvo.
      units: ordem topológica (dependências primeiro)
      edges: agrupadas por unidade de origem, na ordem de `units`
      roots: unidades pedidas como raiz (sem repetição, ordem do pedido)
      required_by: unidade -> raízes que a alcançam
    """
    target: TargetPlatform
    host: TargetPlatform
    units: Tuple[BuildUnit, ...]
    edges: Tuple[Edge, ...]
    roots: Tuple[BuildUnit, ...]
    required_by: Dict[BuildUnit, Tuple[BuildUnit, ...]] = field(default_factory=dict, compare=False, hash=False)
    packages: Optional[PackageSet] = field(default=None, compare=False, hash=False, repr=False)

    def dependencies(self, unit: BuildUnit) -> List[Edge]:
        return [e for e in self.edges if e.source == unit]

    def find(self, name: str, context: Optional[str] = None) -> List[BuildUnit]:
        return [u for u in self.units if u.package_id.name == name and (context is None or u.context == context)]


# ---------------------------------------------------------------------
# Ordenação
# ---------------------------------------------------------------------

def _edge_key(e: Edge):
    return (e.name, e.kind, e.target.sort_key())


def _cycle_path(remaining: Set[BuildUnit], deps: Dict[BuildUnit, Set[BuildUnit]]) -> List[BuildUnit]:
    """Segue dependências restantes a partir da menor unidade até repetir um nó."""
    start = min(remaining, key=lambda u: u.sort_key())
    path: List[BuildUnit] = []
    index: Dict[BuildUnit, int] = {}
    node = start
    while node not in index:
        index[node] = len(path)
        path.append(node)
        node = min((d for d in deps[node] if d in remaining), key=lambda u: u.sort_key())
    return path[index[node]:] + [node]


def topological_order(units: List[BuildUnit], edges: List[Edge]) -> List[BuildUnit]:
    """
    Kahn sobre arestas normal/build (dev pode fechar ciclo sem erro).
    Ciclo -> DependencyCycle com o caminho.
    """
    deps: Dict[BuildUnit, Set[BuildUnit]] = {u: set() for u in units}
    dependents: Dict[BuildUnit, Set[BuildUnit]] = {u: set() for u in units}
    for e in edges:
        if e.kind == DEV:
            continue
        deps[e.source].add(e.target)
        dependents[e.target].add(e.source)

    indeg = {u: len(d) for u, d in deps.items()}
    heap = [(u.sort_key(), i, u) for i, u in enumerate(units) if indeg[u] == 0]
    heapq.heapify(heap)
    seq = len(units)
    order: List[BuildUnit] = []
    while heap:
        _, _, u = heapq.heappop(heap)
        order.append(u)
        for m in dependents[u]:
            indeg[m] -= 1
            if indeg[m] == 0:
                heapq.heappush(heap, (m.sort_key(), seq, m))
                seq += 1

    if len(order) != len(units):
        remaining = {u for u in units if indeg[u] > 0}
        path = _cycle_path(remaining, deps)
        raise DependencyCycle([f"{u.package_id.name} {u.package_id.version}" for u in path])
    return order


# ---------------------------------------------------------------------
# Síntese
# ---------------------------------------------------------------------

def _production_units(res: FeatureResolution) -> Dict[Instance, BuildUnit]:
    out: Dict[Instance, BuildUnit] = {}
    for inst in res.instances:
        context = BUILD if inst.platform != res.target else NORMAL
        out[inst.key] = BuildUnit(inst.package_id, inst.features, inst.platform, context)
    return out


def _connect(res: FeatureResolution, unit_of: Dict[Instance, BuildUnit]) -> Dict[BuildUnit, List[Edge]]:
    out: Dict[BuildUnit, List[Edge]] = {}
    for inst in res.instances:
        src = unit_of[inst.key]
        seen = out.setdefault(src, [])
        for dep, tinst in inst.edges:
            e = Edge(src, unit_of[tinst], dep.kind, dep.name)
            if e not in seen:
                seen.append(e)
    return out


def _dev_order(res: FeatureResolution) -> List[ResolvedInstance]:
    """Instâncias do passo dev em ordem topológica sobre arestas não-dev."""
    by_key = {i.key: i for i in res.instances}
    pseudo = {k: BuildUnit(i.package_id, i.features, i.platform, DEV) for k, i in by_key.items()}
    edges = [Edge(pseudo[i.key], pseudo[t], dep.kind, dep.name)
             for i in res.instances for dep, t in i.edges if dep.kind != DEV]
    back = {u: k for k, u in pseudo.items()}
    return [by_key[back[u]] for u in topological_order(list(pseudo.values()), edges)]


def _signature(triples) -> List[Tuple[str, str, BuildUnit]]:
    return sorted(set(triples), key=lambda t: (t[0], t[1], t[2].sort_key()))


def synthesize(production: FeatureResolution, dev: Optional[FeatureResolution] = None,
               packages: Optional[PackageSet] = None) -> BuildGraph:
    """
    FeatureResolution(s) -> BuildGraph.
    `dev` é o resultado do passo dev (ou None quando não há raízes dev).
    """
    unit_of = _production_units(production)
    out_edges = _connect(production, unit_of)
    roots: List[BuildUnit] = [unit_of[inst] for _, inst in production.roots]

    if dev is not None:
        dev_unit: Dict[Instance, BuildUnit] = {}
        for inst in _dev_order(dev):
            mapped = _signature((d.name, d.kind, dev_unit[t]) for d, t in inst.edges if d.kind != DEV)
            prod = unit_of.get(inst.key)
            reuse = (
                prod is not None
                and prod.features == inst.features
                and not any(d.kind == DEV for d, _ in inst.edges)
                and mapped == _signature((e.name, e.kind, e.target) for e in out_edges.get(prod, []))
            )
            if reuse:
                dev_unit[inst.key] = prod
            else:
                dev_unit[inst.key] = BuildUnit(inst.package_id, inst.features, inst.platform, DEV)
                logger.debug("Unidade dev: %s", dev_unit[inst.key])

        for inst in dev.instances:
            src = dev_unit[inst.key]
            if src.context != DEV:
                continue
            seen = out_edges.setdefault(src, [])
            for d, t in inst.edges:
                e = Edge(src, dev_unit[t], d.kind, d.name)
                if e not in seen:
                    seen.append(e)
        roots.extend(dev_unit[inst] for r, inst in dev.roots if r.kind == DEV)

    units = sorted(out_edges, key=lambda u: u.sort_key())
    all_edges = [e for u in units for e in out_edges[u]]
    order = topological_order(units, all_edges)
    edges = tuple(e for u in order for e in sorted(out_edges[u], key=_edge_key))

    uniq_roots: List[BuildUnit] = []
    for r in roots:
        if r not in uniq_roots:
            uniq_roots.append(r)

    graph = BuildGraph(
        target=production.target,
        host=production.host,
        units=tuple(order),
        edges=edges,
        roots=tuple(uniq_roots),
        required_by=_required_by(uniq_roots, out_edges),
        packages=packages,
    )
    logger.info("Grafo %s: %d unidades, %d arestas", production.target.triple, len(graph.units), len(graph.edges))
    return graph


def _required_by(roots: List[BuildUnit], out_edges: Dict[BuildUnit, List[Edge]]) -> Dict[BuildUnit, Tuple[BuildUnit, ...]]:
    """Para cada unidade, as raízes que a alcançam (por qualquer aresta)."""
    req: Dict[BuildUnit, List[BuildUnit]] = {}
    for root in roots:
        stack, visited = [root], {root}
        while stack:
            u = stack.pop()
            req.setdefault(u, []).append(root)
            for e in out_edges.get(u, []):
                if e.target not in visited:
                    visited.add(e.target)
                    stack.append(e.target)
    return {u: tuple(rs) for u, rs in req.items()}


__all__ = ["BuildGraph", "synthesize", "topological_order"]
