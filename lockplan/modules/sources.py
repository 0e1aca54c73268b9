#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/sources.py — Canonicalização de identificadores de fonte

Função pura: descritor cru (+ tabela de aliases de registry) -> SourceId.
Formas aceitas:
  - None/""                              -> PathSource(".") (membro do workspace)
  - "registry+URL" | "sparse+URL" | URL  -> RegistrySource
  - alias de registry ("crates-io")      -> RegistrySource da URL canônica do alias
  - "git+URL?branch=x#rev"               -> GitSource (rev obrigatória)
  - "path+file:///dir"                   -> PathSource
  - {"registry": ...} | {"git": url, "rev": ...} | {"path": ...}

Nenhum registro global: o memo é privado de cada SourceCanonicalizer.
"""

from __future__ import annotations

import posixpath
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, urlsplit, urlunsplit

from lockplan.modules.errors import ParseError
from lockplan.modules.model import GitSource, PathSource, RegistrySource, SourceId


def normalize_url(url: str) -> str:
    """Minúsculas em esquema/host, sem barra final nem query/fragmento."""
    raw = str(url).strip()
    prefix = ""
    if raw.startswith("sparse+"):
        prefix, raw = "sparse+", raw[len("sparse+"):]
    parts = urlsplit(raw)
    if not parts.scheme or not parts.netloc:
        raise ParseError(f"URL de fonte inválida: '{url}'", url=str(url))
    path = parts.path.rstrip("/")
    return prefix + urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, "", ""))


def _normalize_git_url(url: str) -> str:
    norm = normalize_url(url)
    if norm.endswith(".git"):
        norm = norm[:-4]
    return norm


def _alias_index(aliases: Optional[Mapping[str, List[str]]]) -> Dict[str, str]:
    """url normalizada (ou alias) -> URL canônica (primeira da lista do alias)."""
    out: Dict[str, str] = {}
    for alias, urls in (aliases or {}).items():
        if isinstance(urls, str):
            urls = [urls]
        urls = [normalize_url(u) for u in urls]
        if not urls:
            continue
        canonical = urls[0]
        out[alias] = canonical
        for u in urls:
            out[u] = canonical
    return out


class SourceCanonicalizer:
    """
    Canonicaliza descritores de fonte com memo local.
    Uma instância por ingestão; nada é compartilhado entre chamadas.
    """

    def __init__(self, aliases: Optional[Mapping[str, List[str]]] = None):
        self._aliases = _alias_index(aliases)
        self._memo: Dict[Any, SourceId] = {}

    def __call__(self, raw: Any) -> SourceId:
        if raw is not None and not isinstance(raw, (str, dict)):
            return self._canonicalize(raw)
        key = raw if not isinstance(raw, dict) else tuple(sorted((str(k), str(v)) for k, v in raw.items()))
        hit = self._memo.get(key)
        if hit is None:
            hit = self._canonicalize(raw)
            self._memo[key] = hit
        return hit

    # ----------------------
    # formas
    # ----------------------
    def _registry(self, url_or_alias: str) -> RegistrySource:
        s = str(url_or_alias).strip()
        if s in self._aliases:
            return RegistrySource(self._aliases[s])
        if s.startswith("registry+"):
            s = s[len("registry+"):]
        norm = normalize_url(s)
        return RegistrySource(self._aliases.get(norm, norm))

    def _git(self, url: str, rev: Optional[str] = None, reference: Optional[str] = None) -> GitSource:
        s = str(url).strip()
        if s.startswith("git+"):
            s = s[len("git+"):]
        parts = urlsplit(s)
        if parts.fragment and not rev:
            rev = parts.fragment
        if parts.query and not reference:
            q = parse_qs(parts.query)
            for k in ("branch", "tag", "rev"):
                if q.get(k):
                    reference = f"{k}={q[k][0]}"
                    break
        if not rev:
            raise ParseError(f"fonte git sem revisão fixada: '{url}'", url=str(url))
        return GitSource(_normalize_git_url(s), str(rev).strip(), reference)

    def _path(self, path: str) -> PathSource:
        s = str(path).strip()
        if s.startswith("path+"):
            s = s[len("path+"):]
        if s.startswith("file://"):
            s = s[len("file://"):]
        return PathSource(posixpath.normpath(s.replace("\\", "/")) if s else ".")

    def _canonicalize(self, raw: Any) -> SourceId:
        if raw is None or raw == "":
            return PathSource(".")
        if isinstance(raw, dict):
            if "registry" in raw:
                return self._registry(raw["registry"])
            if "git" in raw:
                ref = None
                for k in ("branch", "tag"):
                    if raw.get(k):
                        ref = f"{k}={raw[k]}"
                return self._git(raw["git"], raw.get("rev"), ref or raw.get("reference"))
            if "path" in raw:
                return self._path(raw["path"])
            raise ParseError(f"descritor de fonte desconhecido: {raw}", source=str(raw))
        if not isinstance(raw, str):
            raise ParseError(f"descritor de fonte inválido: {raw!r}", source=repr(raw))
        s = raw.strip()
        if s.startswith("git+"):
            return self._git(s)
        if s.startswith("path+"):
            return self._path(s)
        if s.startswith(("registry+", "sparse+")) or s in self._aliases:
            return self._registry(s)
        if s.split("://", 1)[0].lower() in ("http", "https", "file"):
            return self._registry(s)
        raise ParseError(f"descritor de fonte desconhecido: '{raw}'", source=s)


def canonicalize_source(raw: Any, aliases: Optional[Mapping[str, List[str]]] = None) -> SourceId:
    """Atalho sem memo para uma única fonte."""
    return SourceCanonicalizer(aliases)(raw)


__all__ = ["SourceCanonicalizer", "canonicalize_source", "normalize_url"]
