"""lockplan — lockfile -> plano de build por alvo"""

__version__ = "0.4.0"
