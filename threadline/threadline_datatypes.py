"""
Defines the core data types for threadline.

This module provides the source fragment types that the threading rewrites
consume and produce, the scope tag that travels with every generated
fragment, and the error hierarchy shared by the rewrites and the host
evaluator.
"""

import enum
from typing import Any, Callable, Iterable, Optional, Tuple, Union


# =================================================================
# Errors
# =================================================================

class ThreadlineError(Exception):
    """Base class for all threadline errors.

    `fragment` holds the offending source fragment when one is known, so
    that a runner can point at its location.
    """
    def __init__(self, message: str, fragment: Any = None):
        super().__init__(message)
        self.fragment = fragment


class ClassificationError(ThreadlineError, TypeError):
    """A step is none of Atom, QuoteForm or CallForm."""
    pass


class ThreadingSyntaxError(ThreadlineError, SyntaxError):
    """A threading form at its use site has the wrong shape."""
    pass


class UnboundIdentifier(ThreadlineError, KeyError):
    def __init__(self, name: str, fragment: Any = None):
        super().__init__(name, fragment)
        self.name = name

    def __str__(self) -> str:
        return f"unbound identifier: {self.name}"


class NotCallableError(ThreadlineError, TypeError):
    pass


class ArityError(ThreadlineError, TypeError):
    pass


# =================================================================
# Scope tags
# =================================================================

class ScopeTag:
    """Identifies the application-resolution environment of a use site.

    A tag is read-only. `application`, when set, is a callable taking
    `(func, args)` that replaces plain positional invocation for every call
    form carrying this tag.
    """
    __slots__ = ("_name", "_application")

    def __init__(self, name: str, application: Optional[Callable[[Any, list], Any]] = None):
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_application", application)

    @property
    def name(self) -> str:
        return self._name

    @property
    def application(self) -> Optional[Callable[[Any, list], Any]]:
        return self._application

    def __setattr__(self, key, value):
        raise AttributeError("ScopeTag is read-only")

    def __repr__(self) -> str:
        mode = "custom" if self._application is not None else "default"
        return f"<ScopeTag {self._name!r} app={mode}>"


DEFAULT_SCOPE = ScopeTag("default")


class Insertion(enum.Enum):
    """Where the threaded accumulator lands among a call form's operands."""
    LEADING = "leading"
    TRAILING = "trailing"


# =================================================================
# Source fragments
# =================================================================

class Symbol(str):
    """An identifier name. Distinct from a string literal of the same text."""
    def __repr__(self) -> str:
        return f"Symbol({str.__repr__(self)})"


class SourceFragment:
    """Abstract base for unevaluated source structure.

    Fragments are immutable. Equality is structural: the scope tag and the
    source location are metadata and take no part in comparison.
    """
    __slots__ = ("scope", "loc")

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def _init_meta(self, scope: Optional[ScopeTag], loc: Optional[dict]):
        object.__setattr__(self, "scope", scope)
        object.__setattr__(self, "loc", loc)

    def with_scope(self, scope: Optional[ScopeTag]) -> "SourceFragment":
        """Returns a copy of this fragment (not its children) carrying `scope`."""
        raise NotImplementedError

    def __repr__(self) -> str:
        from threadline.threadline_printer import Printer
        return f"<{type(self).__name__} {Printer().pformat(self)}>"


class Atom(SourceFragment):
    """An identifier (`Symbol`) or a self-evaluating literal."""
    __slots__ = ("value",)

    def __init__(self, value: Any, scope: Optional[ScopeTag] = None, loc: Optional[dict] = None):
        object.__setattr__(self, "value", value)
        self._init_meta(scope, loc)

    @property
    def is_symbol(self) -> bool:
        return isinstance(self.value, Symbol)

    def with_scope(self, scope):
        return Atom(self.value, scope, self.loc)

    def __eq__(self, other):
        if not isinstance(other, Atom):
            return NotImplemented
        # Symbol('x') and 'x' compare equal as str; keep them apart here.
        return (self.is_symbol == other.is_symbol
                and type(self.value) is type(other.value)
                and self.value == other.value)

    def __hash__(self):
        return hash(("atom", self.is_symbol, self.value))


class QuoteForm(SourceFragment):
    """A quoted literal, written `'datum` or `(quote datum)`."""
    __slots__ = ("datum",)

    def __init__(self, datum: SourceFragment, scope: Optional[ScopeTag] = None, loc: Optional[dict] = None):
        object.__setattr__(self, "datum", datum)
        self._init_meta(scope, loc)

    def with_scope(self, scope):
        return QuoteForm(self.datum, scope, self.loc)

    def __eq__(self, other):
        if not isinstance(other, QuoteForm):
            return NotImplemented
        return self.datum == other.datum

    def __hash__(self):
        return hash(("quote", self.datum))


class CallForm(SourceFragment):
    """A parenthesized form `(head operand ...)`."""
    __slots__ = ("head", "operands")

    def __init__(self, head: SourceFragment, operands: Iterable[SourceFragment] = (),
                 scope: Optional[ScopeTag] = None, loc: Optional[dict] = None):
        object.__setattr__(self, "head", head)
        object.__setattr__(self, "operands", tuple(operands))
        self._init_meta(scope, loc)

    def with_scope(self, scope):
        return CallForm(self.head, self.operands, scope, self.loc)

    def __eq__(self, other):
        if not isinstance(other, CallForm):
            return NotImplemented
        return self.head == other.head and self.operands == other.operands

    def __hash__(self):
        return hash(("call", self.head, self.operands))


# Convenience constructors used throughout the rewrites and the tests.

def sym(name: str, scope: Optional[ScopeTag] = None) -> Atom:
    return Atom(Symbol(name), scope)


def call(head: Union[str, SourceFragment], *operands: Any, scope: Optional[ScopeTag] = None) -> CallForm:
    """Builds a call form; bare strings become symbols, other values literals."""
    return CallForm(_as_fragment(head), [_as_fragment(o) for o in operands], scope)


def quote(datum: Any, scope: Optional[ScopeTag] = None) -> QuoteForm:
    return QuoteForm(_as_fragment(datum), scope)


def _as_fragment(x: Any) -> SourceFragment:
    if isinstance(x, SourceFragment):
        return x
    if isinstance(x, str) and not isinstance(x, Symbol):
        return Atom(Symbol(x))
    return Atom(x)


# =================================================================
# Pipeline requests and step classification
# =================================================================

class PipelineRequest:
    """A complete description of one threading run."""
    __slots__ = ("initial", "steps", "insertion", "scope")

    def __init__(self, initial: SourceFragment, steps: Iterable[SourceFragment],
                 insertion: Insertion, scope: Optional[ScopeTag]):
        self.initial = initial
        self.steps: Tuple[SourceFragment, ...] = tuple(steps)
        self.insertion = insertion
        self.scope = scope

    def __repr__(self) -> str:
        return (f"PipelineRequest(initial={self.initial!r}, steps={list(self.steps)!r}, "
                f"insertion={self.insertion.name}, scope={self.scope!r})")


class Atomic:
    """A step usable directly as a callable term."""
    __slots__ = ("term",)

    def __init__(self, term: Union[Atom, QuoteForm]):
        self.term = term

    def __repr__(self) -> str:
        return f"Atomic({self.term!r})"

    def __eq__(self, other):
        return isinstance(other, Atomic) and self.term == other.term


class Parenthesized:
    """A call-form step split into its head and operands."""
    __slots__ = ("head", "operands")

    def __init__(self, head: SourceFragment, operands: Tuple[SourceFragment, ...]):
        self.head = head
        self.operands = operands

    def __repr__(self) -> str:
        return f"Parenthesized({self.head!r}, {list(self.operands)!r})"

    def __eq__(self, other):
        return (isinstance(other, Parenthesized)
                and self.head == other.head
                and self.operands == other.operands)


Classified = Union[Atomic, Parenthesized]
