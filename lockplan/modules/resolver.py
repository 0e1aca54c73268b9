#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/resolver.py — Orquestração: features -> grafo, por alvo

- parse_roots / load_request: pedido de raízes e alvos (YAML/JSON)
- resolve_target: passo de produção + passo dev (se houver raízes dev)
- resolve_targets: vários alvos independentes num ThreadPoolExecutor;
  resultados na ordem dada, primeira falha propagada
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from lockplan.modules import config, log, utils
from lockplan.modules.errors import ParseError
from lockplan.modules.features import ROOT_KINDS, FeatureResolver, RootRequest
from lockplan.modules.graph import BuildGraph, synthesize
from lockplan.modules.lockfile import PackageSet, default_roots
from lockplan.modules.model import DEV, NORMAL, TargetPlatform
from lockplan.modules.platform import platform_from_mapping

logger = log.get_logger("resolver")

ROOT_FIELDS = {"package", "features", "default-features", "default_features", "kind"}
REQUEST_FIELDS = {"roots", "targets", "host"}


@dataclass(frozen=True)
class ResolveRequest:
    roots: Tuple[RootRequest, ...]
    targets: Tuple[TargetPlatform, ...]
    host: Optional[TargetPlatform] = None


# ---------------------------------------------------------------------
# Pedido
# ---------------------------------------------------------------------

def _root(packages: PackageSet, raw: Any, default_kind: str) -> RootRequest:
    if isinstance(raw, str):
        return RootRequest(packages.find(raw).package_id, kind=default_kind)
    if not isinstance(raw, dict) or not raw.get("package"):
        raise ParseError(f"raiz inválida: {raw!r}")
    unknown = sorted(set(raw) - ROOT_FIELDS)
    if unknown:
        raise ParseError(f"campos desconhecidos na raiz {raw.get('package')}: {', '.join(unknown)}")
    feats = raw.get("features") or []
    if isinstance(feats, str):
        feats = [f for f in feats.replace(",", " ").split() if f]
    default = raw.get("default-features", raw.get("default_features", True))
    kind = str(raw.get("kind") or default_kind)
    if kind not in ROOT_KINDS:
        raise ParseError(f"tipo de raiz desconhecido: '{kind}'", kind=kind)
    return RootRequest(packages.find(str(raw["package"])).package_id, tuple(feats), bool(default), kind)


def parse_roots(packages: PackageSet, raw: Optional[Iterable[Any]], default_kind: str = NORMAL) -> List[RootRequest]:
    """Sem raízes explícitas: todos os membros do workspace (fontes path)."""
    if not raw:
        roots = [RootRequest(r.package_id, kind=default_kind) for r in default_roots(packages)]
        if not roots:
            raise ParseError("nenhuma raiz pedida e o lockfile não tem membros de workspace (fonte path)")
        return roots
    return [_root(packages, r, default_kind) for r in raw]


def parse_request(packages: PackageSet, doc: Any) -> ResolveRequest:
    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise ParseError("pedido deve ser um mapeamento {roots, targets, host}")
    unknown = sorted(set(doc) - REQUEST_FIELDS)
    if unknown:
        raise ParseError(f"campos desconhecidos no pedido: {', '.join(unknown)}")
    targets = doc.get("targets") or [config.get("default_target")]
    if not isinstance(targets, list):
        targets = [targets]
    host = doc.get("host") or config.get("host_target")
    return ResolveRequest(
        roots=tuple(parse_roots(packages, doc.get("roots"))),
        targets=tuple(platform_from_mapping(t) for t in targets),
        host=platform_from_mapping(host) if host else None,
    )


def load_request(path: str, packages: PackageSet) -> ResolveRequest:
    logger.debug("Carregando pedido: %s", path)
    return parse_request(packages, utils.load_document(path))


# ---------------------------------------------------------------------
# Resolução
# ---------------------------------------------------------------------

def resolve_target(packages: PackageSet, roots: Sequence[RootRequest], target: TargetPlatform,
                   host: Optional[TargetPlatform] = None) -> BuildGraph:
    """Um alvo: passo de produção e, havendo raízes dev, o passo dev."""
    logger.info("Resolvendo alvo %s (host %s)", target.triple, (host or target).triple)
    resolver = FeatureResolver(packages, target, host)
    with log.phase(logger, "features", target=target.triple):
        production = resolver.resolve(roots, dev=False)
        dev = resolver.resolve(roots, dev=True) if any(r.kind == DEV for r in roots) else None
    with log.phase(logger, "grafo", target=target.triple):
        return synthesize(production, dev, packages)


def resolve_targets(packages: PackageSet, roots: Sequence[RootRequest], targets: Sequence[TargetPlatform],
                    host: Optional[TargetPlatform] = None, jobs: Optional[int] = None) -> List[BuildGraph]:
    jobs = int(jobs or config.get("jobs", 1) or 1)
    if jobs <= 1 or len(targets) <= 1:
        return [resolve_target(packages, roots, t, host) for t in targets]
    with ThreadPoolExecutor(max_workers=min(jobs, len(targets))) as ex:
        futures = [ex.submit(resolve_target, packages, roots, t, host) for t in targets]
        # result() na ordem dos alvos: a primeira falha sobe e nada parcial é devolvido
        return [f.result() for f in futures]


def resolve_request(packages: PackageSet, request: ResolveRequest, jobs: Optional[int] = None) -> List[BuildGraph]:
    return resolve_targets(packages, request.roots, request.targets, request.host, jobs)


__all__ = [
    "ResolveRequest", "parse_roots", "parse_request", "load_request",
    "resolve_target", "resolve_targets", "resolve_request",
]
