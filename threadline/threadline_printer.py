"""
A pretty-printer for threadline fragments and runtime values.
"""
import collections.abc
from fractions import Fraction

from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, Symbol, ScopeTag,
)


class Printer:
    """Formats fragments into readable source and runtime values into REPL output."""

    def __init__(self, indent_width=2, max_width=80):
        self._indent_char = " " * indent_width
        self.max_width = max_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, collections.abc.Mapping): return self._pformat_hash
        if isinstance(obj, (list, tuple)): return self._pformat_list
        if callable(obj): return self._pformat_procedure
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            Atom: self._pformat_atom,
            QuoteForm: self._pformat_quote,
            CallForm: self._pformat_call,
            Symbol: self._pformat_symbol_value,
            str: self._pformat_str,
            bool: self._pformat_bool,
            int: self._pformat_primitive,
            float: self._pformat_primitive,
            Fraction: self._pformat_fraction,
            type(None): self._pformat_void,
            ScopeTag: lambda o, l: repr(o),
        }

    # --- Literals ---

    def _pformat_primitive(self, obj, level):
        return str(obj)

    def _pformat_fraction(self, obj, level):
        if obj.denominator == 1:
            return str(obj.numerator)
        return f"{obj.numerator}/{obj.denominator}"

    def _pformat_bool(self, obj, level):
        return '#t' if obj else '#f'

    def _pformat_void(self, obj, level):
        return '#<void>'

    def _pformat_str(self, obj, level):
        escaped = obj.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n').replace('\t', '\\t')
        return f'"{escaped}"'

    # --- Fragments ---

    def _pformat_atom(self, obj, level):
        value = obj.value
        if isinstance(value, Symbol):
            return str(value)
        if isinstance(value, tuple) and not value:
            return "()"
        return self.pformat(value, level)

    def _pformat_quote(self, obj, level):
        return "'" + self.pformat(obj.datum, level)

    def _pformat_call(self, obj, level):
        parts = [self.pformat(obj.head, level)] + [self.pformat(o, level + 1) for o in obj.operands]
        flat = "(" + " ".join(parts) + ")"
        if '\n' not in flat and len(self._indent_char * level) + len(flat) <= self.max_width:
            return flat
        # Too wide: head and first operand on one line, the rest indented below.
        indent = self._indent_char * (level + 1)
        head_line = "(" + " ".join(parts[:2])
        rest = [indent + p for p in parts[2:]]
        return "\n".join([head_line] + rest) + ")"

    # --- Runtime values ---

    def _pformat_symbol_value(self, obj, level):
        return f"'{obj}"

    def _pformat_datum(self, obj, level):
        if isinstance(obj, Symbol):
            return str(obj)
        if isinstance(obj, (list, tuple)):
            return "(" + " ".join(self._pformat_datum(x, level) for x in obj) + ")"
        return self.pformat(obj, level)

    def _pformat_list(self, obj, level):
        return "'" + self._pformat_datum(obj, level)

    def _pformat_hash(self, obj, level):
        items = " ".join(f"({self._pformat_datum(k, level)} . {self._pformat_datum(v, level)})"
                         for k, v in obj.items())
        return f"'#hash({items})"

    def _pformat_procedure(self, obj, level):
        name = getattr(obj, 'name', None) or getattr(obj, '__name__', None)
        if isinstance(name, str) and name and not name.startswith('<'):
            return f"#<procedure:{name.lstrip('_').replace('_', '-')}>"
        return "#<procedure>"
