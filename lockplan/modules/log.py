import logging
import os
import sys
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from datetime import datetime

from lockplan.modules import config

# -------------------------
# Configuração inicial
# -------------------------
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

_root_logger = logging.getLogger("lockplan")
_root_logger.setLevel(logging.DEBUG)  # captura tudo


class ColorFormatter(logging.Formatter):
    """Formata mensagens do console; cores só quando o stream é um terminal"""
    COLORS = {
        logging.DEBUG: "\033[36m",   # ciano
        logging.INFO: "\033[32m",    # verde
        logging.WARNING: "\033[33m", # amarelo
        logging.ERROR: "\033[31m",   # vermelho
        logging.CRITICAL: "\033[41m" # fundo vermelho
    }
    RESET = "\033[0m"

    def __init__(self, fmt=None, use_color=True):
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record):
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        module = f"[{record.name[len('lockplan.'):]}]" if record.name.startswith("lockplan.") else ""
        msg = super().format(record)
        head = f"[{ts}] {record.levelname.lower():<8}{module}"
        if not self.use_color:
            return f"{head} {msg}"
        color = self.COLORS.get(record.levelno, self.RESET)
        return f"{color}{head}{self.RESET} {msg}"


def _setup_handlers():
    """Console em stderr (stdout fica livre para o plano) + arquivo rotativo"""
    if _root_logger.handlers:
        return  # já configurado

    stream = sys.stderr
    ch = logging.StreamHandler(stream)
    ch.setLevel(LEVELS.get(str(config.get("log_level", "info")).lower(), logging.INFO))
    ch.setFormatter(ColorFormatter("%(message)s", use_color=hasattr(stream, "isatty") and stream.isatty()))
    _root_logger.addHandler(ch)

    log_dir = config.get("log_dir")
    if not config.get("log_file") or not log_dir:
        return
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(os.path.join(log_dir, "lockplan.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
    except OSError as e:
        # sem diretório gravável: segue só com console
        _root_logger.warning("Log em arquivo desativado (%s): %s", log_dir, e)
        return
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(threadName)s] [%(name)s] %(message)s",
        "%Y-%m-%d %H:%M:%S"
    ))
    _root_logger.addHandler(fh)


_setup_handlers()


# -------------------------
# API pública
# -------------------------
def get_logger(name: str = "lockplan"):
    """Obtém sub-logger (ex.: log.get_logger("features"))"""
    return _root_logger.getChild(name)


def set_level(level: str):
    """Altera nível dos handlers de console (o arquivo continua em debug)"""
    lvl = LEVELS.get(str(level).lower())
    if lvl is None:
        raise ValueError(f"Nível inválido: {level}")
    for handler in _root_logger.handlers:
        if not isinstance(handler, RotatingFileHandler):
            handler.setLevel(lvl)


@contextmanager
def phase(logger, name: str, **fields):
    """
    Cronometra uma fase da resolução (ingestão, features, grafo, emissão).
    Sucesso vai em debug; falha registra a fase e o tipo do erro e propaga.
    """
    extra = " ".join(f"{k}={v}" for k, v in fields.items())
    start = time.perf_counter()
    logger.debug("fase %s iniciada %s", name, extra)
    try:
        yield
    except Exception as e:
        logger.debug("fase %s falhou após %.1f ms: %s", name, (time.perf_counter() - start) * 1000, type(e).__name__)
        raise
    logger.debug("fase %s concluída em %.1f ms %s", name, (time.perf_counter() - start) * 1000, extra)


# Atalho (sem precisar chamar get_logger)
def debug(msg, *args, **kwargs): _root_logger.debug(msg, *args, **kwargs)
