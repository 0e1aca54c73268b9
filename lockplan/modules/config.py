#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
config.py — Módulo de configuração do lockplan

- Suporta $LOCKPLAN_CONFIG > ~/.config/lockplan/config.yml > /etc/lockplan/config.yml > defaults
- Formato YAML
- Permite leitura, escrita, reset e listagem completa da config
- Tabela de aliases de registries usada na canonicalização de fontes
"""

import os
import yaml

# Caminhos padrão
USER_CONFIG = os.path.expanduser("~/.config/lockplan/config.yml")
SYSTEM_CONFIG = "/etc/lockplan/config.yml"

CRATES_IO_INDEX = "https://github.com/rust-lang/crates.io-index"

# Valores padrão (completo)
DEFAULTS = {
    # Logs
    "log_dir": os.path.expanduser("~/.cache/lockplan/log"),
    "log_level": "info",
    "log_file": True,

    # Plataformas
    "default_target": "x86_64-unknown-linux-gnu",
    "host_target": None,  # None = mesmo que o target (sem cross-compilação)

    # Emissão
    "output_format": "json",  # json | yaml
    "output_file": "lockplan.json",

    # Resolução de vários targets em paralelo
    "jobs": 4,

    # alias -> URLs de índice que denotam o mesmo registry
    "registries": {
        "crates-io": [
            CRATES_IO_INDEX,
            "sparse+https://index.crates.io/",
        ],
    },
}

_config = DEFAULTS.copy()

def _load_from(path: str) -> dict:
    """Carrega configuração de um arquivo YAML se existir."""
    if not os.path.isfile(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        return {}
    return data

def load_config() -> dict:
    """Carrega config seguindo a hierarquia: env > user > system > defaults"""
    global _config

    # 1. Variável de ambiente
    env_path = os.getenv("LOCKPLAN_CONFIG")
    if env_path and os.path.exists(env_path):
        _config = {**DEFAULTS, **_load_from(env_path)}
        return _config

    # 2. Configuração do usuário
    if os.path.exists(USER_CONFIG):
        _config = {**DEFAULTS, **_load_from(USER_CONFIG)}
        return _config

    # 3. Configuração global
    if os.path.exists(SYSTEM_CONFIG):
        _config = {**DEFAULTS, **_load_from(SYSTEM_CONFIG)}
        return _config

    # 4. Defaults
    _config = DEFAULTS.copy()
    return _config

def _save(cfg: dict, system: bool = False) -> None:
    """Salva configuração em YAML (usuário ou sistema)."""
    path = SYSTEM_CONFIG if system else USER_CONFIG
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, default_flow_style=False, allow_unicode=True)

def get(key: str, default=None):
    """Obtém valor de uma chave da configuração (com fallback)."""
    if not _config:
        load_config()
    return _config.get(key, DEFAULTS.get(key, default))

def set(key: str, value, system: bool = False):
    """Define valor para uma chave e salva em config.yml."""
    cfg = load_config()
    cfg[key] = value
    _save(cfg, system=system)
    _config.update(cfg)

def all() -> dict:
    """Retorna configuração completa (merge de defaults + arquivo carregado)."""
    return load_config()

def reset(system: bool = False):
    """Restaura configuração para os valores padrão."""
    _save(DEFAULTS.copy(), system=system)
    load_config()

def registry_aliases() -> dict:
    """
    Retorna a tabela alias -> [urls] dos registries.

    Os valores configurados se somam aos padrões: um usuário pode declarar um
    mirror extra para crates-io sem perder as URLs oficiais.
    """
    merged = {k: list(v) for k, v in DEFAULTS["registries"].items()}
    for alias, urls in (get("registries") or {}).items():
        if isinstance(urls, str):
            urls = [urls]
        bucket = merged.setdefault(str(alias), [])
        for u in urls:
            if u not in bucket:
                bucket.append(str(u))
    return merged

# Carrega config logo no import
load_config()

# Execução direta para debug
if __name__ == "__main__":
    import json
    print("Config atual:")
    print(json.dumps(all(), indent=2, ensure_ascii=False))
