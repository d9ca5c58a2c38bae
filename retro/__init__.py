import logging

from retro.retro_config import EngineConfig
from retro.retro_datatypes import ParseError, RetroError, UnknownFunctionError
from retro.retro_runtime import ExecutionResult, RetroHost, ScriptEngine, retro_api_method

logging.getLogger("retro").addHandler(logging.NullHandler())

__all__ = [
    "ScriptEngine",
    "ExecutionResult",
    "EngineConfig",
    "RetroHost",
    "retro_api_method",
    "RetroError",
    "ParseError",
    "UnknownFunctionError",
]
