#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/emit.py — Emissão do plano de build

- Chave de unidade: "<nome> <versão> (<fonte>)" + " [host]" / " [dev]"
- Documento: {format, generator, generator-version, target, host, roots, units}
- Vários alvos: {format, generator, generator-version, plans: {triple: plano}}
- Serialização JSON (ordem de inserção, separadores fixos) ou YAML
- write_plan: gravação atômica com proteção contra plano de versão mais nova
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional, Sequence

import yaml
from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from lockplan import __version__
from lockplan.modules import log, utils
from lockplan.modules.errors import EmissionKeyCollision, ParseError, PlanVersionError
from lockplan.modules.graph import BuildGraph
from lockplan.modules.model import DEV, BuildUnit

logger = log.get_logger("emit")

PLAN_FORMAT = 1
GENERATOR = "lockplan"
FORMATS = ("json", "yaml")


def unit_key(unit: BuildUnit, target) -> str:
    pid = unit.package_id
    key = f"{pid.name} {pid.version} ({pid.source.key()})"
    if unit.platform != target:
        key += " [host]"
    if unit.context == DEV:
        key += " [dev]"
    return key


def _keys(graph: BuildGraph) -> Dict[BuildUnit, str]:
    keys: Dict[BuildUnit, str] = {}
    owner: Dict[str, BuildUnit] = {}
    for u in graph.units:
        k = unit_key(u, graph.target)
        if k in owner:
            raise EmissionKeyCollision(f"duas unidades serializam para '{k}': {owner[k]} e {u}", key=k)
        owner[k] = u
        keys[u] = k
    return keys


def _unit_record(graph: BuildGraph, unit: BuildUnit, keys: Dict[BuildUnit, str]) -> Dict[str, Any]:
    record = graph.packages.get(unit.package_id) if graph.packages is not None else None
    deps = [{"key": keys[e.target], "name": e.name, "rename": e.rename, "kind": e.kind}
            for e in graph.dependencies(unit)]
    return {
        "source": unit.package_id.source.key(),
        "name": unit.package_id.name,
        "version": str(unit.package_id.version),
        "checksum": record.checksum if record else None,
        "platform": unit.platform.triple,
        "context": unit.context,
        "features": list(unit.features),
        "dependencies": deps,
        "build-script": record.build_script if record else False,
        "links": record.links if record else None,
        "edition": record.edition if record else None,
        "proc-macro": record.proc_macro if record else False,
        "required-by": [keys[r] for r in graph.required_by.get(unit, ())],
    }


def plan_body(graph: BuildGraph) -> Dict[str, Any]:
    """Plano de um alvo, sem o cabeçalho de gerador."""
    keys = _keys(graph)
    return {
        "target": graph.target.triple,
        "host": graph.host.triple,
        "roots": [keys[r] for r in graph.roots],
        "units": {keys[u]: _unit_record(graph, u, keys) for u in graph.units},
    }


def _header() -> Dict[str, Any]:
    return {"format": PLAN_FORMAT, "generator": GENERATOR, "generator-version": __version__}


def plan_document(graph: BuildGraph) -> Dict[str, Any]:
    doc = _header()
    doc.update(plan_body(graph))
    return doc


def plans_document(graphs: Sequence[BuildGraph]) -> Dict[str, Any]:
    """Vários alvos num único documento, na ordem dada."""
    doc = _header()
    plans: Dict[str, Any] = {}
    for g in graphs:
        if g.target.triple in plans:
            raise EmissionKeyCollision(f"alvo repetido no documento: {g.target.triple}", key=g.target.triple)
        plans[g.target.triple] = plan_body(g)
    doc["plans"] = plans
    return doc


def serialize(doc: Dict[str, Any], fmt: str = "json") -> str:
    if fmt == "json":
        return json.dumps(doc, indent=2, separators=(",", ": "), ensure_ascii=False) + "\n"
    if fmt == "yaml":
        return yaml.safe_dump(doc, sort_keys=False, default_flow_style=False, allow_unicode=True)
    raise ValueError(f"formato de saída desconhecido: {fmt} (use {', '.join(FORMATS)})")


def plan_digest(text: str) -> str:
    """sha256 do plano serializado (cache endereçado por conteúdo)."""
    return utils.sha256_text(text)


# ---------------------------------------------------------------------
# Gravação
# ---------------------------------------------------------------------

def existing_generator_version(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    try:
        doc = utils.load_document(path)
    except ParseError:
        doc = None
    if not isinstance(doc, dict) or doc.get("generator") != GENERATOR or not doc.get("generator-version"):
        raise PlanVersionError(f"{path} existe e não é um plano do {GENERATOR}; use force para sobrescrever",
                               path=path)
    return str(doc["generator-version"])


def check_overwrite(path: str, version: str = __version__) -> None:
    """Recusa sobrescrever plano gerado por versão mais nova (>= major.minor existente)."""
    existing = existing_generator_version(path)
    if existing is None:
        return
    try:
        ev = Version(existing)
    except InvalidVersion as e:
        raise PlanVersionError(f"generator-version inválida em {path}: '{existing}'", path=path) from e
    spec = SpecifierSet(f">={ev.major}.{ev.minor}")
    if not spec.contains(Version(version), prereleases=True):
        raise PlanVersionError(
            f"{path} foi gerado pelo {GENERATOR} {existing}; esta versão ({version}) não satisfaz '{spec}'",
            path=path, existing=existing, current=version)


def write_plan(path: str, text: str, force: bool = False) -> str:
    if not force:
        check_overwrite(path)
    utils.atomic_write(path, text)
    logger.info("Plano gravado em %s (sha256 %s)", path, plan_digest(text)[:12])
    return path


def emit(graphs: List[BuildGraph], fmt: str = "json") -> str:
    """Um alvo -> documento simples; vários -> documento com `plans`."""
    if len(graphs) == 1:
        return serialize(plan_document(graphs[0]), fmt)
    return serialize(plans_document(graphs), fmt)


__all__ = [
    "unit_key", "plan_body", "plan_document", "plans_document", "serialize",
    "plan_digest", "check_overwrite", "write_plan", "emit",
]
