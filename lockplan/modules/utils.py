import os
import json
import hashlib
import tempfile

import yaml

from lockplan.modules import log
from lockplan.modules.errors import ParseError


# -------------------------
# Sistema de arquivos
# -------------------------
def ensure_dir(path: str):
    """Cria diretório se não existir"""
    if path:
        os.makedirs(path, exist_ok=True)


def atomic_write(path: str, text: str) -> str:
    """
    Grava texto de forma atômica: escreve num temporário no mesmo diretório
    e renomeia por cima do destino.
    """
    dest_dir = os.path.dirname(os.path.abspath(path))
    ensure_dir(dest_dir)
    fd, tmp = tempfile.mkstemp(prefix=".lockplan-", dir=dest_dir)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    log.debug("Gravado %s (%d bytes)", path, len(text.encode("utf-8")))
    return path


# -------------------------
# Leitura de documentos
# -------------------------
def load_yaml(path: str) -> dict:
    """Carrega YAML em dict"""
    with open(path, "r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"YAML inválido em {path}: {e}", path=path) from e


def load_json(path: str) -> dict:
    """Carrega JSON em dict"""
    with open(path, "r", encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as e:
            raise ParseError(f"JSON inválido em {path}: {e}", path=path) from e


def load_document(path: str) -> dict:
    """JSON para .json, YAML para o resto (YAML também aceita JSON)."""
    if path.endswith(".json"):
        return load_json(path)
    return load_yaml(path)


def parse_document(text: str):
    """Parseia texto YAML/JSON já carregado em memória"""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ParseError(f"documento YAML/JSON inválido: {e}") from e


# -------------------------
# Digests
# -------------------------
def sha256_text(text: str) -> str:
    """SHA256 hex de um texto UTF-8"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
