#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
modules/errors.py — Taxonomia de erros do lockplan

Cada erro carrega contexto suficiente (pacote, feature, caminho do ciclo)
para ser mostrado ao usuário sem reformatação.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PlanError(Exception):
    """Erro base de toda resolução/emissão."""

    kind = "PlanError"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ParseError(PlanError):
    """Lockfile/manifesto malformado (versão, tipo de dependência, predicado...)."""

    kind = "ParseError"


class DanglingDependency(PlanError):
    """Dependência declarada sem PackageRecord correspondente."""

    kind = "DanglingDependency"


class UnknownFeature(PlanError):
    kind = "UnknownFeature"

    def __init__(self, package: Any, feature: str, message: Optional[str] = None):
        super().__init__(
            message or f"pacote {package} não declara a feature nem a dependência opcional '{feature}'",
            package=str(package),
            feature=feature,
        )
        self.package = package
        self.feature = feature


class DependencyCycle(PlanError):
    kind = "DependencyCycle"

    def __init__(self, path: List[Any]):
        self.path = list(path)
        super().__init__(
            "ciclo de dependências normal/build: " + " -> ".join(str(p) for p in self.path),
            path=[str(p) for p in self.path],
        )


class InconsistentSource(PlanError):
    """Mesmo nome+versão vindo de fontes diferentes sem desambiguação."""

    kind = "InconsistentSource"


class EmissionKeyCollision(PlanError):
    """Duas BuildUnits distintas serializariam para a mesma chave (defeito interno)."""

    kind = "EmissionKeyCollision"


class PlanVersionError(PlanError):
    """Plano existente foi gerado por uma versão mais nova do lockplan."""

    kind = "PlanVersionError"


__all__ = [
    "PlanError", "ParseError", "DanglingDependency", "UnknownFeature",
    "DependencyCycle", "InconsistentSource", "EmissionKeyCollision",
    "PlanVersionError",
]
