"""
Renders runtime values the way scripts see them when printed or interpolated.
"""
import collections.abc
import math

from retro.retro_datatypes import UNDEFINED, _Undefined, VarRef


class Printer:
    """Formats values into the strings RetroScript shows for them."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, str):
            return self._pformat_str
        if isinstance(obj, collections.abc.Mapping):
            return self._pformat_dict
        if isinstance(obj, (list, tuple)):
            return self._pformat_list
        return lambda o, l: str(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bool: self._pformat_bool,
            int: self._pformat_int,
            float: self._pformat_float,
            type(None): self._pformat_none,
            _Undefined: self._pformat_undefined,
            VarRef: self._pformat_var_ref,
            list: self._pformat_list,
            tuple: self._pformat_list,
            dict: self._pformat_dict,
        }

    def _pformat_str(self, obj, level):
        # Top-level strings print bare; nested ones are quoted.
        return str(obj) if level == 0 else f'"{obj}"'

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_int(self, obj, level):
        return str(obj)

    def _pformat_float(self, obj, level):
        if math.isnan(obj):
            return 'NaN'
        if math.isinf(obj):
            return 'Infinity' if obj > 0 else '-Infinity'
        if obj.is_integer() and abs(obj) < 1e21:
            return str(int(obj))
        return repr(obj)

    def _pformat_none(self, obj, level):
        return 'null'

    def _pformat_undefined(self, obj, level):
        return 'undefined'

    def _pformat_var_ref(self, obj, level):
        return f"${obj.name}"

    def _pformat_list(self, obj, level):
        # Null entries print empty, as in a joined array.
        return ",".join("" if item is None or item is UNDEFINED else self.pformat(item, level) for item in obj)

    def _pformat_dict(self, obj, level):
        if not obj:
            return "{}"
        items = ", ".join(f"{k}: {self.pformat(v, level + 1)}" for k, v in obj.items())
        return "{" + items + "}"


_printer = Printer()


def display(value) -> str:
    """String form of a value as used by print, interpolation and concatenation."""
    return _printer.pformat(value)


__all__ = ["Printer", "display", "UNDEFINED"]
