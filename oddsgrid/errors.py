from __future__ import annotations


class OddsgridError(RuntimeError):
    pass


class ConfigError(OddsgridError):
    pass
