"""
Transforms the raw parser AST into source fragments.

Every fragment built here is tagged with the scope of the reading context,
which is what later lets threading forms hand their use-site scope on to
the call forms they generate.
"""

import re
from fractions import Fraction
from typing import Any, Iterator, List, Optional

from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, SourceFragment, Symbol, ScopeTag,
)

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '\\': '\\', '"': '"'}
_ESCAPE_RE = re.compile(r'\\(.)', re.DOTALL)


def _unescape(body: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


class ThreadlineTransformer:
    def _loc(self, node: dict) -> Optional[dict]:
        line = node.get('line'); col = node.get('col')
        if line is None or col is None:
            return None
        return {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}

    def transform(self, node: Any, scope: Optional[ScopeTag] = None) -> Any:
        """Transforms a parse result (or a bare AST node) into fragments.

        A `program` node becomes a list of top-level fragments.
        """
        if isinstance(node, dict) and 'ast' in node and 'tag' not in node:
            node = node['ast']
        return self._transform(node, scope)

    def _transform(self, node: Any, scope: Optional[ScopeTag]) -> Any:
        if isinstance(node, list):
            return [self._transform(n, scope) for n in self._items(node)]

        if not isinstance(node, dict):
            raise TypeError(f"Unexpected parser node: {node!r}")

        tag = node.get('tag')
        match tag:
            case 'program':
                return [self._transform(n, scope) for n in self._items(node.get('children'))]
            case 'form' | 'paren_form' | 'bracket_form':
                return self._form(node, scope)
            case 'quoted':
                items = list(self._items(node.get('children')))
                if len(items) != 1:
                    raise ValueError("quote shorthand expects exactly one datum")
                return QuoteForm(self._transform(items[0], scope), scope, self._loc(node))
            case 'datum':
                items = list(self._items(node.get('children')))
                if len(items) != 1:
                    raise ValueError(f"datum node with {len(items)} children")
                return self._transform(items[0], scope)

            # Atomics
            case 'string':
                text = node['text']
                return Atom(_unescape(text[1:-1]), scope, self._loc(node))
            case 'boolean':
                return Atom(node['text'] in ('#t', '#true'), scope, self._loc(node))
            case 'number':
                return Atom(self._number(node['text']), scope, self._loc(node))
            case 'symbol':
                return Atom(Symbol(node['text']), scope, self._loc(node))

            case _:
                raise NotImplementedError(f"No transformer for tag '{tag}'")

    def _form(self, node: dict, scope: Optional[ScopeTag]) -> SourceFragment:
        loc = self._loc(node)
        parts: List[SourceFragment] = [self._transform(n, scope) for n in self._items(node.get('children'))]
        if not parts:
            return Atom((), scope, loc)
        head, operands = parts[0], parts[1:]
        # (quote x) and 'x read as the same fragment
        if isinstance(head, Atom) and head.is_symbol and head.value == 'quote' and len(operands) == 1:
            return QuoteForm(operands[0], scope, loc)
        return CallForm(head, operands, scope, loc)

    def _number(self, text: str):
        if '/' in text:
            value = Fraction(text)
            return value.numerator if value.denominator == 1 else value
        if '.' in text:
            return float(text)
        return int(text)

    def _items(self, children: Any) -> Iterator[dict]:
        """Yields tagged child nodes, flattening repetition lists and untagged wrappers."""
        if children is None:
            return
        if isinstance(children, dict):
            if 'tag' in children:
                yield children
                return
            if 'children' in children:
                yield from self._items(children['children'])
                return
            for value in children.values():
                yield from self._items(value)
            return
        for child in children:
            yield from self._items(child)
