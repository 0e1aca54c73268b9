#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/lockfile.py — Ingestão de lockfile e fragmentos de manifesto

- Lê documentos YAML/JSON (lockfile com `packages:`, manifestos com `manifests:`)
- Valida campos obrigatórios e rejeita chaves desconhecidas
- Canonicaliza fontes (registry / git / path) e valida checksums por tipo de fonte
- Resolve cada referência de dependência para exatamente um PackageId
- Produz um PackageSet imutável; re-ingerir o mesmo texto dá um PackageSet igual
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from lockplan.modules import config, log, utils
from lockplan.modules.errors import DanglingDependency, InconsistentSource, ParseError
from lockplan.modules.model import (
    BUILD, DEP_KINDS, DEV, NORMAL, Dependency, GitSource, PackageId, PackageRecord, PathSource,
    RegistrySource,
)
from lockplan.modules.platform import parse_predicate, render
from lockplan.modules.sources import SourceCanonicalizer
from lockplan.modules.versions import SemVer, VersionReq

logger = log.get_logger("lockfile")

LOCK_FORMATS = (1,)
REQUIRED_FIELDS = ["name", "version"]
PACKAGE_FIELDS = {"name", "version", "source", "checksum", "dependencies", "manifest"}
DEPENDENCY_FIELDS = {
    "name", "package", "version", "req", "source", "optional",
    "default-features", "default_features", "features", "target", "kind",
}
MANIFEST_FIELDS = {
    "name", "version", "source", "features", "default", "build-script", "build",
    "links", "edition", "proc-macro", "proc_macro",
}
KIND_ALIASES = {"normal": NORMAL, "build": BUILD, "dev": DEV, "development": DEV}

CHECKSUM_RE = re.compile(r"^[0-9a-f]{64}$")
# "serde", "serde 1.0.130", "serde 1.0.130 (registry+https://...)"
DEP_STRING_RE = re.compile(r"^(?P<name>[^\s()]+)(?:\s+(?P<version>[^\s()]+))?(?:\s+\((?P<source>[^)]+)\))?$")
FEATURE_ENTRY_RE = re.compile(r"^(?:dep:[^/?:\s]+|[^/?:\s]+(?:\??/[^/?:\s]+)?)$")


# ---------------------------------------------------------------------
# PackageSet
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PackageSet:
    """
    Conjunto imutável de PackageRecords (ordenado por nome, versão, fonte).
    Igualdade estrutural sobre `records`; o índice é derivado.
    """
    records: Tuple[PackageRecord, ...]
    _index: Dict[PackageId, PackageRecord] = field(default_factory=dict, compare=False, hash=False, repr=False)

    def __post_init__(self):
        idx = {r.package_id: r for r in self.records}
        if len(idx) != len(self.records):
            raise ParseError("PackageSet com PackageId duplicado")
        object.__setattr__(self, "_index", idx)

    def __iter__(self) -> Iterator[PackageRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, package_id: PackageId) -> bool:
        return package_id in self._index

    def get(self, package_id: PackageId) -> PackageRecord:
        try:
            return self._index[package_id]
        except KeyError:
            raise DanglingDependency(f"pacote {package_id} ausente do lockfile", package=str(package_id)) from None

    def by_name(self, name: str) -> List[PackageRecord]:
        return [r for r in self.records if r.name == name]

    def find(self, spec: str) -> PackageRecord:
        """Localiza por 'nome', 'nome versão' ou 'nome versão (fonte)' (usado para raízes)."""
        ref = _parse_dep_string(spec)
        matches = [r for r in self.by_name(ref["name"])
                   if ref.get("version") is None or str(r.version) == ref["version"]]
        if ref.get("source"):
            src = SourceCanonicalizer(config.registry_aliases())(ref["source"])
            matches = [r for r in matches if r.package_id.source == src]
        if not matches:
            raise DanglingDependency(f"raiz '{spec}' não corresponde a nenhum pacote", root=spec)
        if len(matches) > 1:
            raise InconsistentSource(
                f"raiz '{spec}' é ambígua: " + ", ".join(str(r.package_id) for r in matches)
                + " (use 'nome versão (fonte)')", root=spec)
        return matches[0]


def default_roots(package_set: PackageSet) -> List[PackageRecord]:
    """Membros do workspace: pacotes com fonte local (path)."""
    return [r for r in package_set if isinstance(r.package_id.source, PathSource)]


# ---------------------------------------------------------------------
# Helpers de validação
# ---------------------------------------------------------------------

def _parse_dep_string(s: str) -> Dict[str, Any]:
    m = DEP_STRING_RE.match(str(s).strip())
    if not m:
        raise ParseError(f"referência de dependência inválida: '{s}'", reference=str(s))
    return {k: v for k, v in m.groupdict().items() if v is not None}


def _check_fields(data: Mapping[str, Any], allowed: Iterable[str], where: str) -> None:
    unknown = sorted(str(k) for k in data if k not in allowed)
    if unknown:
        raise ParseError(f"campos desconhecidos em {where}: {', '.join(unknown)}", where=where, fields=unknown)


def _bool(data: Mapping[str, Any], keys: Iterable[str], default: bool, where: str) -> bool:
    for k in keys:
        if k in data and data[k] is not None:
            if not isinstance(data[k], bool):
                raise ParseError(f"campo '{k}' deve ser booleano em {where}", where=where, field=k)
            return data[k]
    return default


def _version_text(value: Any, field: str, where: str, allow_int: bool = False) -> Optional[str]:
    """Versões vêm como texto; YAML sem aspas transforma 1.10 em 1.1."""
    if value is None or isinstance(value, str):
        return value
    if allow_int and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    raise ParseError(f"campo '{field}' deve ser texto em {where} (use aspas: '{value}')",
                     where=where, field=field)


def _str_list(value: Any, what: str, where: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ParseError(f"{what} deve ser lista de strings em {where}", where=where)
    return tuple(value)


def _validate_checksum(pid: PackageId, checksum: Any) -> Optional[str]:
    src = pid.source
    if checksum in (None, ""):
        if isinstance(src, RegistrySource):
            raise ParseError(f"pacote de registry sem checksum: {pid}", package=str(pid))
        return None
    if isinstance(src, (GitSource, PathSource)):
        raise ParseError(f"checksum não permitido para fonte {src.kind}: {pid}", package=str(pid))
    value = str(checksum).strip().lower()
    if not CHECKSUM_RE.match(value):
        raise ParseError(f"checksum sha256 inválido para {pid}: '{checksum}'", package=str(pid))
    return value


def _feature_table(raw: Any, default: Tuple[str, ...], where: str) -> Tuple[Tuple[str, Tuple[str, ...]], ...]:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ParseError(f"'features' deve ser um mapeamento em {where}", where=where)
    table: Dict[str, List[str]] = {}
    for name, implied in raw.items():
        if not isinstance(name, str) or not name or "/" in name or name.startswith("dep:"):
            raise ParseError(f"nome de feature inválido '{name}' em {where}", where=where, feature=str(name))
        entries = list(_str_list(implied, f"implicações de '{name}'", where))
        for e in entries:
            if not FEATURE_ENTRY_RE.match(e):
                raise ParseError(f"implicação de feature inválida '{e}' em {where}", where=where, feature=name)
        table[name] = entries
    if default:
        merged = table.setdefault("default", [])
        for d in default:
            if d not in merged:
                merged.append(d)
    return tuple((k, tuple(table[k])) for k in sorted(table))


# ---------------------------------------------------------------------
# Ingestão
# ---------------------------------------------------------------------

class _Ingestor:
    """Estado de uma única ingestão (memo de fontes incluso)."""

    def __init__(self, aliases: Optional[Mapping[str, List[str]]]):
        self.canonical = SourceCanonicalizer(aliases)
        self.ids: List[PackageId] = []
        self.by_name: Dict[str, List[PackageId]] = {}

    # ----------------------
    # referência -> PackageId
    # ----------------------
    def lookup(self, name: str, version: Optional[str], req: Optional[str], source: Any, consumer: str) -> PackageId:
        cands = list(self.by_name.get(name, []))
        if source is not None:
            src = self.canonical(source)
            cands = [c for c in cands if c.source == src]
        wanted = ""
        if version is not None:
            ver = SemVer.parse(version)
            cands = [c for c in cands if c.version == ver]
            wanted = f" {ver}"
        elif req is not None:
            vreq = VersionReq.parse(req)
            cands = [c for c in cands if vreq.matches(c.version)]
            wanted = f" {vreq}"
        if not cands:
            raise DanglingDependency(
                f"{consumer} depende de '{name}{wanted}', que não existe no lockfile",
                consumer=consumer, dependency=f"{name}{wanted}")
        versions = sorted({c.version for c in cands})
        if len(versions) > 1:
            raise ParseError(
                f"referência ambígua de {consumer} para '{name}{wanted}': versões "
                + ", ".join(str(v) for v in versions) + " (fixe a versão)",
                consumer=consumer, dependency=name)
        if len(cands) > 1:
            raise InconsistentSource(
                f"{consumer}: '{name} {versions[0]}' existe em várias fontes ("
                + ", ".join(sorted(c.source.key() for c in cands)) + ") e a dependência não indica qual",
                consumer=consumer, dependency=name)
        return cands[0]

    # ----------------------
    # pacotes
    # ----------------------
    def package_id(self, entry: Mapping[str, Any], where: str) -> PackageId:
        for f in REQUIRED_FIELDS:
            if entry.get(f) in (None, ""):
                raise ParseError(f"campo obrigatório '{f}' ausente em {where}", where=where, field=f)
        name = entry["name"]
        if not isinstance(name, str):
            raise ParseError(f"nome inválido em {where}", where=where)
        version = _version_text(entry["version"], "version", where)
        return PackageId(name, SemVer.parse(version), self.canonical(entry.get("source")))

    def register(self, pid: PackageId) -> None:
        if pid in self.by_name.get(pid.name, []):
            raise ParseError(f"pacote duplicado no lockfile: {pid}", package=str(pid))
        self.ids.append(pid)
        self.by_name.setdefault(pid.name, []).append(pid)

    def dependency(self, raw: Any, consumer: PackageId) -> Dependency:
        where = f"dependências de {consumer}"
        if isinstance(raw, str):
            ref = _parse_dep_string(raw)
            pid = self.lookup(ref["name"], ref.get("version"), None, ref.get("source"), str(consumer))
            return Dependency(name=ref["name"], package_id=pid)
        if not isinstance(raw, dict):
            raise ParseError(f"dependência inválida em {where}: {raw!r}", where=where)
        _check_fields(raw, DEPENDENCY_FIELDS, where)
        toml_name = raw.get("name")
        if not isinstance(toml_name, str) or not toml_name:
            raise ParseError(f"dependência sem 'name' em {where}", where=where)
        if raw.get("version") is not None and raw.get("req") is not None:
            raise ParseError(f"dependência '{toml_name}' com 'version' e 'req' em {where}", where=where)
        kind_raw = str(raw.get("kind") or NORMAL)
        kind = KIND_ALIASES.get(kind_raw)
        if kind is None:
            raise ParseError(f"tipo de dependência desconhecido '{kind_raw}' em {where}",
                             where=where, kind=kind_raw, known=list(DEP_KINDS))
        optional = _bool(raw, ("optional",), False, where)
        if optional and kind == DEV:
            raise ParseError(f"dev-dependency '{toml_name}' não pode ser opcional ({consumer})", where=where)
        package = str(raw.get("package") or toml_name)
        version = _version_text(raw.get("version"), "version", where)
        req = _version_text(raw.get("req"), "req", where, allow_int=True)
        pid = self.lookup(package, version, req, raw.get("source"), str(consumer))
        pred = parse_predicate(raw.get("target"))
        return Dependency(
            name=toml_name,
            package_id=pid,
            kind=kind,
            optional=optional,
            default_features=_bool(raw, ("default-features", "default_features"), True, where),
            features=_str_list(raw.get("features"), "'features'", where),
            target=pred,
            target_raw=None if pred is None else render(pred),
        )

    def fragment_target(self, frag: Mapping[str, Any], where: str) -> PackageId:
        for f in REQUIRED_FIELDS:
            if frag.get(f) in (None, ""):
                raise ParseError(f"campo obrigatório '{f}' ausente em {where}", where=where, field=f)
        return self.lookup(str(frag["name"]), _version_text(frag["version"], "version", where), None,
                           frag.get("source"), where)


def _manifest_data(frag: Mapping[str, Any], where: str) -> Dict[str, Any]:
    _check_fields(frag, MANIFEST_FIELDS, where)
    default = _str_list(frag.get("default"), "'default'", where)
    links = frag.get("links")
    edition = frag.get("edition")
    return {
        "features": _feature_table(frag.get("features"), default, where),
        "build_script": _bool(frag, ("build-script", "build"), False, where),
        "links": None if links is None else str(links),
        "edition": None if edition is None else str(edition),
        "proc_macro": _bool(frag, ("proc-macro", "proc_macro"), False, where),
    }


def _as_document(obj: Union[str, Mapping[str, Any], None], what: str) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, str):
        obj = utils.parse_document(obj)
    if not isinstance(obj, dict):
        raise ParseError(f"{what} deve ser um mapeamento no topo do documento")
    return dict(obj)


def _fragments(manifests: Any) -> List[Mapping[str, Any]]:
    """Aceita lista de fragmentos, documento {'manifests': [...]}, ou lista de documentos."""
    if manifests is None:
        return []
    if isinstance(manifests, str):
        manifests = utils.parse_document(manifests)
    if isinstance(manifests, dict):
        if "manifests" in manifests:
            return _fragments(manifests["manifests"])
        return [manifests]
    if not isinstance(manifests, list):
        raise ParseError("fragmentos de manifesto devem ser uma lista")
    out: List[Mapping[str, Any]] = []
    for m in manifests:
        if isinstance(m, (dict, str)) and not (isinstance(m, dict) and "name" in m):
            out.extend(_fragments(m))
        elif isinstance(m, dict):
            out.append(m)
        else:
            raise ParseError(f"fragmento de manifesto inválido: {m!r}")
    return out


def ingest(lock: Union[str, Mapping[str, Any]], manifests: Any = None,
           aliases: Optional[Mapping[str, List[str]]] = None) -> PackageSet:
    """
    Lockfile (texto ou dict) + fragmentos de manifesto -> PackageSet.
    aliases: tabela de registries; por padrão a da configuração.
    """
    doc = _as_document(lock, "lockfile")
    fmt = doc.get("version", 1)
    if fmt not in LOCK_FORMATS:
        raise ParseError(f"formato de lockfile não suportado: {fmt}", format=fmt)
    entries = doc.get("packages")
    if not isinstance(entries, list):
        raise ParseError("lockfile sem lista 'packages'")
    if aliases is None:
        aliases = config.registry_aliases()

    ing = _Ingestor(aliases)

    # 1. identidades
    ids: List[PackageId] = []
    for i, entry in enumerate(entries):
        where = f"packages[{i}]"
        if not isinstance(entry, dict):
            raise ParseError(f"entrada inválida em {where}", where=where)
        _check_fields(entry, PACKAGE_FIELDS, where)
        pid = ing.package_id(entry, where)
        ing.register(pid)
        ids.append(pid)

    # 2. fragmentos de manifesto (inline + documento + argumento)
    manifest_by_id: Dict[PackageId, Dict[str, Any]] = {}

    def _attach(pid: PackageId, frag: Mapping[str, Any], where: str) -> None:
        if pid in manifest_by_id:
            raise ParseError(f"mais de um fragmento de manifesto para {pid}", package=str(pid))
        manifest_by_id[pid] = _manifest_data(frag, where)

    for i, entry in enumerate(entries):
        inline = entry.get("manifest")
        if inline is not None:
            if not isinstance(inline, dict):
                raise ParseError(f"'manifest' inválido em packages[{i}]")
            _attach(ids[i], inline, f"packages[{i}].manifest")
    for frag in _fragments(doc.get("manifests")) + _fragments(manifests):
        where = f"manifesto {frag.get('name', '?')} {frag.get('version', '?')}"
        _attach(ing.fragment_target(frag, where), frag, where)

    # 3. dependências + registros
    records: List[PackageRecord] = []
    for i, entry in enumerate(entries):
        pid = ids[i]
        raw_deps = entry.get("dependencies") or []
        if not isinstance(raw_deps, list):
            raise ParseError(f"'dependencies' deve ser lista em packages[{i}]")
        deps = tuple(ing.dependency(d, pid) for d in raw_deps)
        m = manifest_by_id.get(pid, {})
        records.append(PackageRecord(
            package_id=pid,
            checksum=_validate_checksum(pid, entry.get("checksum")),
            dependencies=deps,
            features=m.get("features", ()),
            build_script=m.get("build_script", False),
            links=m.get("links"),
            edition=m.get("edition"),
            proc_macro=m.get("proc_macro", False),
        ))

    records.sort(key=lambda r: r.package_id.sort_key())
    logger.info("Lockfile ingerido: %d pacotes, %d fragmentos de manifesto", len(records), len(manifest_by_id))
    return PackageSet(tuple(records))


def load_lockfile(path: str, manifest_paths: Iterable[str] = (),
                  aliases: Optional[Mapping[str, List[str]]] = None) -> PackageSet:
    """Carrega lockfile e manifestos do disco (YAML ou JSON)."""
    logger.info("Carregando lockfile: %s", path)
    with log.phase(logger, "ingestão", path=path):
        doc = utils.load_document(path)
        return ingest(doc, load_manifests(manifest_paths), aliases=aliases)


def load_manifests(paths: Iterable[str]) -> List[Mapping[str, Any]]:
    """Lê documentos de manifesto e devolve a lista achatada de fragmentos."""
    frags: List[Mapping[str, Any]] = []
    for p in paths:
        logger.debug("Carregando manifesto: %s", p)
        frags.extend(_fragments(utils.load_document(p)))
    return frags


__all__ = ["PackageSet", "ingest", "load_lockfile", "load_manifests", "default_roots"]
