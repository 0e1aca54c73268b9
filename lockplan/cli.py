#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
cli.py — CLI do lockplan (lockfile -> plano de build por alvo)

Comandos:
  resolve   ingere lockfile + manifestos, resolve e grava o plano
  check     só ingere e valida o lockfile
  platform  mostra o descritor de um alvo / avalia um predicado
  config    get/set/list/reset da configuração
"""

from __future__ import annotations
import argparse
import json
import sys
from typing import Any, List

from lockplan import __version__
from lockplan.modules import (
    config as config_mod,
    emit as emit_mod,
    lockfile as lock_mod,
    log as log_mod,
    platform as platform_mod,
    resolver as resolver_mod,
    utils as utils_mod,
)
from lockplan.modules.errors import PlanError
from lockplan.modules.features import RootRequest
from lockplan.modules.model import DEV, NORMAL

# ANSI colors simples
C = {
    "reset": "\033[0m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "cyan": "\033[36m",
    "bold": "\033[1m",
}

def color(text: str, col: str) -> str:
    return f"{C.get(col, '')}{text}{C['reset']}"

logger = log_mod.get_logger("cli")

def _print_json_or_plain(data: Any, as_json: bool) -> None:
    if as_json:
        print(json.dumps(data, ensure_ascii=False, indent=2))
    else:
        if isinstance(data, dict):
            for k, v in data.items():
                print(f"{color(str(k), 'cyan')}: {v}")
        elif isinstance(data, list):
            for item in data:
                print(item)
        else:
            print(data)

def _setup_logging(args) -> None:
    level = getattr(args, "log_level", None)
    if getattr(args, "verbose", False):
        level = "debug"
    log_mod.set_level(level or config_mod.get("log_level", "info"))

def _fail(e: Exception) -> int:
    print(color(f"[ERRO] {e}", "red"), file=sys.stderr)
    return 2

def _split_features(values: List[str]) -> List[str]:
    out = []
    for v in values or []:
        out.extend(f for f in v.replace(",", " ").split() if f)
    return out

# ---------------------------
# Command handlers
# ---------------------------

def _build_request(args, packages):
    """Pedido vindo de --request, sobrescrito pelas opções da linha de comando."""
    doc = utils_mod.load_document(args.request) if args.request else {}
    if args.root and isinstance(doc, dict):
        doc = dict(doc, roots=list(args.root))
    req = resolver_mod.parse_request(packages, doc)
    roots = list(req.roots)
    kind = DEV if args.dev else NORMAL
    if args.features or args.no_default_features or args.dev:
        feats = tuple(_split_features(args.features))
        roots = [RootRequest(r.package, tuple(r.features) + feats,
                             r.default_features and not args.no_default_features,
                             kind if r.kind == NORMAL else r.kind)
                 for r in roots]
    targets = req.targets
    if args.target:
        targets = tuple(platform_mod.platform_from_mapping(t) for t in args.target)
    host = platform_mod.platform_from_mapping(args.host) if args.host else req.host
    return resolver_mod.ResolveRequest(tuple(roots), targets, host)

def cmd_resolve(args):
    """
    lockplan resolve <lockfile> [-m MANIFESTO...] [--request PEDIDO] [--root PKG...]
                     [--features F] [--no-default-features] [--dev]
                     [-t ALVO...] [--host ALVO] [-f json|yaml] [-o SAIDA] [--force] [-j N]
    """
    try:
        packages = lock_mod.load_lockfile(args.lockfile, args.manifest or [])
        request = _build_request(args, packages)
        graphs = resolver_mod.resolve_request(packages, request, jobs=args.jobs)
        fmt = args.format or config_mod.get("output_format", "json")
        with log_mod.phase(logger, "emissão", format=fmt):
            text = emit_mod.emit(graphs, fmt)
        out = args.output or config_mod.get("output_file")
        if out == "-":
            sys.stdout.write(text)
        else:
            emit_mod.write_plan(out, text, force=args.force)
            units = sum(len(g.units) for g in graphs)
            print(color(f"[OK] Plano gravado em {out} ({len(graphs)} alvo(s), {units} unidades)", "green"))
        if args.digest:
            print(emit_mod.plan_digest(text), file=sys.stderr if out == "-" else sys.stdout)
        return 0
    except (PlanError, OSError) as e:
        logger.debug("resolve falhou", exc_info=True)
        return _fail(e)

def cmd_check(args):
    """
    lockplan check <lockfile> [-m MANIFESTO...]
    """
    try:
        packages = lock_mod.load_lockfile(args.lockfile, args.manifest or [])
    except (PlanError, OSError) as e:
        return _fail(e)
    members = [str(r.package_id) for r in lock_mod.default_roots(packages)]
    summary = {
        "packages": len(packages),
        "workspace": members,
        "sources": sorted({r.package_id.source.kind for r in packages}),
    }
    print(color("[OK] Lockfile válido", "green"))
    _print_json_or_plain(summary, getattr(args, "json", False))
    return 0

def cmd_platform(args):
    """
    lockplan platform <alvo> [--eval PREDICADO...]
    """
    try:
        plat = platform_mod.platform_from_mapping(args.triple)
        if not args.eval:
            _print_json_or_plain(plat.to_dict(), getattr(args, "json", False))
            return 0
        rc = 0
        for raw in args.eval:
            pred = platform_mod.parse_predicate(raw)
            ok = platform_mod.evaluate(pred, plat)
            print(f"{platform_mod.render(pred) if pred else '(vazio)'}: {color(str(ok).lower(), 'green' if ok else 'yellow')}")
            if not ok:
                rc = 1
        return rc
    except PlanError as e:
        return _fail(e)

def cmd_config(args):
    """
    lockplan config get <chave>
    lockplan config set <chave> <valor> [--system]
    lockplan config list
    lockplan config reset [--system]
    """
    act = args.action
    if act == "get":
        if not args.key:
            print("Uso: lockplan config get <chave>")
            return 1
        print(config_mod.get(args.key))
        return 0
    elif act == "set":
        if not args.key or args.value is None:
            print("Uso: lockplan config set <chave> <valor> [--system]")
            return 1
        try:
            value = utils_mod.parse_document(args.value)
        except PlanError:
            value = args.value
        config_mod.set(args.key, value, system=args.system)
        print(f"[OK] Configuração '{args.key}' definida para '{value}' ({'global' if args.system else 'usuário'})")
        return 0
    elif act == "list":
        for k, v in config_mod.all().items():
            print(f"{k}: {v}")
        return 0
    elif act == "reset":
        config_mod.reset(system=args.system)
        print(f"[OK] Configuração restaurada para padrões {'globais' if args.system else 'de usuário'}")
        return 0
    else:
        print("Ação desconhecida:", act)
        return 1

# -----------------------------------------------------------------------------
# Build argument parser and connect commands
# -----------------------------------------------------------------------------

def build_parser():
    p = argparse.ArgumentParser(prog="lockplan", description="lockplan - lockfile para plano de build por alvo")
    p.add_argument("--version", action="version", version=f"lockplan {__version__}")
    p.add_argument("--verbose", "-v", action="store_true", help="Modo verboso")
    p.add_argument("--log-level", choices=sorted(log_mod.LEVELS), default=None, help="Nível de log do console")
    p.add_argument("--json", action="store_true", help="Imprime JSON quando aplicável")
    sub = p.add_subparsers(dest="command")

    # resolve
    sr = sub.add_parser("resolve", aliases=["r"], help="Resolver lockfile e gravar o plano")
    sr.add_argument("lockfile")
    sr.add_argument("--manifest", "-m", action="append", default=[], help="Documento de manifestos (repetível)")
    sr.add_argument("--request", "-r", default=None, help="Pedido YAML/JSON {roots, targets, host}")
    sr.add_argument("--root", action="append", default=[], help="Pacote raiz: 'nome' ou 'nome versão' (repetível)")
    sr.add_argument("--features", "-F", action="append", default=[], help="Features das raízes (vírgula ou espaço)")
    sr.add_argument("--no-default-features", action="store_true")
    sr.add_argument("--dev", action="store_true", help="Incluir dev-dependencies das raízes")
    sr.add_argument("--target", "-t", action="append", default=[], help="Alvo (repetível)")
    sr.add_argument("--host", default=None, help="Plataforma host (padrão: o próprio alvo)")
    sr.add_argument("--format", "-f", choices=list(emit_mod.FORMATS), default=None)
    sr.add_argument("--output", "-o", default=None, help="Arquivo de saída ('-' para stdout)")
    sr.add_argument("--force", action="store_true", help="Sobrescrever plano de versão mais nova")
    sr.add_argument("--jobs", "-j", type=int, default=None)
    sr.add_argument("--digest", action="store_true", help="Imprimir sha256 do plano")
    sr.set_defaults(func=cmd_resolve)

    # check
    sc = sub.add_parser("check", aliases=["c"], help="Validar lockfile e manifestos")
    sc.add_argument("lockfile")
    sc.add_argument("--manifest", "-m", action="append", default=[])
    sc.set_defaults(func=cmd_check)

    # platform
    sp = sub.add_parser("platform", help="Descritor de alvo / avaliar predicados")
    sp.add_argument("triple")
    sp.add_argument("--eval", "-e", action="append", default=[], help="Predicado cfg(...) ou triple (repetível)")
    sp.set_defaults(func=cmd_platform)

    # config
    scf = sub.add_parser("config", help="Gerenciar configuração do lockplan")
    scf.add_argument("action", choices=["get", "set", "list", "reset"], help="Ação sobre a configuração")
    scf.add_argument("key", nargs="?", help="Chave da configuração")
    scf.add_argument("value", nargs="?", help="Valor (para set)")
    scf.add_argument("--system", action="store_true", help="Salvar/operar no config global (/etc)")
    scf.set_defaults(func=cmd_config)

    return p

def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    _setup_logging(args)

    try:
        rc = args.func(args)
        if isinstance(rc, int):
            sys.exit(rc)
        sys.exit(0)
    except Exception as e:
        logger.exception("Erro ao executar comando")
        print(color(f"[ERRO] {e}", "red"), file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
