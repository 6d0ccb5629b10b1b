"""
The host evaluator that runs fragments.

Threading forms are expanded here at their use site and the expansion is
evaluated in place. Application of a call form is resolved through the
scope tag the form carries: a tag with an installed application mechanism
replaces plain positional invocation.
"""

import collections.abc
import os
import sys
from typing import Any, Callable, Dict, List, Optional

from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, SourceFragment, Symbol, ScopeTag, DEFAULT_SCOPE,
    ThreadlineError, ThreadingSyntaxError, UnboundIdentifier, NotCallableError, ArityError,
)
from threadline.threadline_threading import THREADING_FORMS, expand


# =================================================================
# Application mechanisms
# =================================================================

def positional_application(func: Any, args: list) -> Any:
    """Plain application: invoke `func` positionally on `args`."""
    if not callable(func):
        from threadline.threadline_printer import Printer
        raise NotCallableError(f"application: not a procedure: {Printer().pformat(func)}")
    return func(*args)


def lookup_application(func: Any, args: list) -> Any:
    """Application that also lets a key be applied to a table.

    Callables are invoked as usual. Any other value applied to a single
    mapping operand is looked up in that mapping.
    """
    if callable(func):
        return func(*args)
    if len(args) == 1 and isinstance(args[0], collections.abc.Mapping):
        table = args[0]
        if func not in table:
            raise KeyError(func)
        return table[func]
    return positional_application(func, args)


# =================================================================
# Runtime structures
# =================================================================

class Environment:
    """Lexical bindings with a parent chain."""
    def __init__(self, parent: Optional['Environment'] = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent

    def find_owner(self, name: str) -> Optional['Environment']:
        env = self
        while env is not None:
            if name in env.bindings:
                return env
            env = env.parent
        return None

    def __contains__(self, name: str) -> bool:
        return self.find_owner(name) is not None

    def __getitem__(self, name: str) -> Any:
        owner = self.find_owner(name)
        if owner is None:
            raise UnboundIdentifier(name)
        return owner.bindings[name]

    def __setitem__(self, name: str, value: Any):
        self.bindings[name] = value

    def keys(self):
        return self.bindings.keys()

    def __repr__(self) -> str:
        keys = ', '.join(self.bindings.keys())
        parent_id = f", parent=#{id(self.parent)}" if self.parent else ""
        return f"<Environment bindings=[{keys}]{parent_id}>"


class Closure:
    """A procedure created by `lambda`.

    Closures are Python callables so that application mechanisms and
    library procedures such as `map` can invoke them directly.
    """
    def __init__(self, params: List[str], rest: Optional[str], body: List[SourceFragment],
                 env: Environment, evaluator: 'Evaluator', name: Optional[str] = None):
        self.params = params
        self.rest = rest
        self.body = body
        self.env = env
        self.evaluator = evaluator
        self.name = name

    def __call__(self, *args):
        return self.evaluator.call_closure(self, list(args))

    def __repr__(self) -> str:
        return f"<Closure {self.name or 'lambda'} params={self.params!r} rest={self.rest!r}>"


# =================================================================
# Evaluator
# =================================================================

class Evaluator:
    """The threadline execution engine."""

    def __init__(self, default_scope: ScopeTag = DEFAULT_SCOPE):
        self.default_scope = default_scope
        self.side_effects: List[Any] = []
        self.call_stack: List[dict] = []
        self.current_node: Optional[SourceFragment] = None
        self._special_forms: Dict[str, Callable[[CallForm, Environment], Any]] = {
            'quote': self._eval_quote_call,
            'if': self._eval_if,
            'and': self._eval_and,
            'or': self._eval_or,
            'let': self._eval_let,
            'lambda': self._eval_lambda,
            'λ': self._eval_lambda,
            'define': self._eval_define,
            'begin': self._eval_begin,
        }

    def _dbg(self, *parts):
        if os.environ.get("THREADLINE_DEBUG"):
            try:
                print("[DBG]", *parts, file=sys.stderr)
            except Exception:
                pass

    def _push_frame(self, name, func, args, call_site_node):
        self.call_stack.append({
            'name': name,
            'func': func,
            'args': args,
            'call_site': getattr(call_site_node, 'loc', None),
        })

    def _pop_frame(self):
        if self.call_stack:
            self.call_stack.pop()

    # --- Entry points ---

    def eval(self, node: SourceFragment, env: Environment) -> Any:
        """Public entry point for evaluation."""
        self.current_node = node
        return self._eval(node, env)

    def eval_body(self, nodes, env: Environment) -> Any:
        result = None
        for node in nodes:
            result = self._eval(node, env)
        return result

    def _eval(self, node: SourceFragment, env: Environment) -> Any:
        match node:
            case Atom(value=Symbol() as name):
                return self._lookup(name, node, env)
            case Atom(value=value):
                return value
            case QuoteForm(datum=datum):
                return self.to_datum(datum)
            case CallForm():
                self.current_node = node
                return self._eval_call(node, env)
            case _:
                raise TypeError(f"Cannot evaluate {type(node).__name__}: {node!r}")

    def _lookup(self, name: Symbol, node: Atom, env: Environment) -> Any:
        owner = env.find_owner(name)
        if owner is None:
            raise UnboundIdentifier(str(name), node)
        return owner.bindings[name]

    def to_datum(self, node: SourceFragment) -> Any:
        """Converts a quoted fragment into plain data."""
        match node:
            case Atom(value=()):
                return []
            case Atom(value=value):
                return value
            case QuoteForm(datum=datum):
                return [Symbol('quote'), self.to_datum(datum)]
            case CallForm(head=head, operands=operands):
                return [self.to_datum(head)] + [self.to_datum(o) for o in operands]
        raise TypeError(f"Cannot quote {type(node).__name__}")

    # --- Calls ---

    def _keyword(self, node: CallForm, env: Environment) -> Optional[str]:
        head = node.head
        if isinstance(head, Atom) and head.is_symbol and head.value not in env:
            return head.value
        return None

    def _eval_call(self, node: CallForm, env: Environment) -> Any:
        keyword = self._keyword(node, env)
        if keyword in self._special_forms:
            return self._special_forms[keyword](node, env)
        if keyword in THREADING_FORMS:
            expanded = expand(node)
            self._dbg("expand", keyword, "->", repr(expanded))
            return self._eval(expanded, env)

        func = self._eval(node.head, env)
        args = [self._eval(o, env) for o in node.operands]
        return self.apply_form(node, func, args)

    def application_for(self, node: CallForm) -> Callable[[Any, list], Any]:
        """Resolves the application mechanism from the form's own scope tag."""
        tag = node.scope if node.scope is not None else self.default_scope
        if tag is not None and tag.application is not None:
            return tag.application
        return positional_application

    def apply_form(self, node: CallForm, func: Any, args: list) -> Any:
        application = self.application_for(node)
        name = self._callable_name(func, node)
        self._push_frame(name, func, args, node)
        try:
            result = application(func, args)
        except ThreadlineError as e:
            if e.fragment is None:
                e.fragment = node
            raise
        self._pop_frame()
        return result

    def _callable_name(self, func, node: CallForm) -> str:
        name = getattr(func, 'name', None)
        if isinstance(name, str) and name:
            return name
        head = node.head
        if isinstance(head, Atom) and head.is_symbol:
            return str(head.value)
        return '<call>'

    def call_closure(self, closure: Closure, args: list) -> Any:
        n = len(closure.params)
        if len(args) < n or (closure.rest is None and len(args) != n):
            expected = f"at least {n}" if closure.rest is not None else str(n)
            raise ArityError(f"{closure.name or 'lambda'}: expected {expected} arguments, got {len(args)}")
        call_env = Environment(closure.env)
        for param, value in zip(closure.params, args):
            call_env[param] = value
        if closure.rest is not None:
            call_env[closure.rest] = list(args[n:])
        return self.eval_body(closure.body, call_env)

    # --- Special forms ---

    def _syntax_items(self, node: SourceFragment) -> List[SourceFragment]:
        """Reads a parenthesized syntax list such as a parameter or binding list."""
        if isinstance(node, Atom) and isinstance(node.value, tuple) and not node.value:
            return []
        if isinstance(node, CallForm):
            return [node.head, *node.operands]
        raise ThreadingSyntaxError("expected a parenthesized list", node)

    def _symbol_name(self, node: SourceFragment) -> str:
        if isinstance(node, Atom) and node.is_symbol:
            return str(node.value)
        raise ThreadingSyntaxError("expected an identifier", node)

    def _eval_quote_call(self, node: CallForm, env: Environment) -> Any:
        if len(node.operands) != 1:
            raise ThreadingSyntaxError("quote: expected exactly one datum", node)
        return self.to_datum(node.operands[0])

    def _eval_if(self, node: CallForm, env: Environment) -> Any:
        ops = node.operands
        if len(ops) not in (2, 3):
            raise ThreadingSyntaxError("if: expected a test, a then branch and an optional else branch", node)
        if self._eval(ops[0], env) is not False:
            return self._eval(ops[1], env)
        return self._eval(ops[2], env) if len(ops) == 3 else None

    def _eval_and(self, node: CallForm, env: Environment) -> Any:
        result: Any = True
        for op in node.operands:
            result = self._eval(op, env)
            if result is False:
                return False
        return result

    def _eval_or(self, node: CallForm, env: Environment) -> Any:
        for op in node.operands:
            result = self._eval(op, env)
            if result is not False:
                return result
        return False

    def _eval_let(self, node: CallForm, env: Environment) -> Any:
        if len(node.operands) < 2:
            raise ThreadingSyntaxError("let: expected bindings and a body", node)
        bindings, body = node.operands[0], node.operands[1:]
        let_env = Environment(env)
        for binding in self._syntax_items(bindings):
            pair = self._syntax_items(binding)
            if len(pair) != 2:
                raise ThreadingSyntaxError("let: each binding needs a name and a value", binding)
            # Values are evaluated in the enclosing environment.
            let_env[self._symbol_name(pair[0])] = self._eval(pair[1], env)
        return self.eval_body(body, let_env)

    def _make_closure(self, params_node: SourceFragment, body, env: Environment,
                      name: Optional[str] = None) -> Closure:
        if isinstance(params_node, Atom) and params_node.is_symbol:
            return Closure([], str(params_node.value), list(body), env, self, name)
        params = [self._symbol_name(p) for p in self._syntax_items(params_node)]
        return Closure(params, None, list(body), env, self, name)

    def _eval_lambda(self, node: CallForm, env: Environment) -> Any:
        if len(node.operands) < 2:
            raise ThreadingSyntaxError("lambda: expected parameters and a body", node)
        return self._make_closure(node.operands[0], node.operands[1:], env)

    def _eval_define(self, node: CallForm, env: Environment) -> Any:
        if len(node.operands) < 2:
            raise ThreadingSyntaxError("define: expected a name and a value", node)
        target = node.operands[0]
        if isinstance(target, CallForm):
            # (define (name param ...) body ...)
            name = self._symbol_name(target.head)
            params = CallForm(target.operands[0], target.operands[1:]) if target.operands else Atom(())
            env[name] = self._make_closure(params, node.operands[1:], env, name)
            return None
        env[self._symbol_name(target)] = self._eval(node.operands[1], env)
        return None

    def _eval_begin(self, node: CallForm, env: Environment) -> Any:
        return self.eval_body(node.operands, env)
