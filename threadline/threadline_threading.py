"""
The threading rewrites: `~>`, `~>>` and their short-circuit and lambda forms.

Every function here is a pure tree transformation. Nothing is evaluated.
Each call form built while threading carries the scope tag of the use site
it was expanded from, so that the host resolves application in the caller's
environment rather than in ours.
"""

import itertools
from typing import Callable, Dict, Iterable, Optional, Sequence

from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, SourceFragment, Symbol,
    ScopeTag, Insertion, PipelineRequest,
    Atomic, Parenthesized, Classified,
    ClassificationError, ThreadingSyntaxError,
)

QUOTE = Symbol("quote")

_gensym_counter = itertools.count(1)


def gensym(prefix: str = "tmp") -> Symbol:
    """Returns a fresh identifier that no reader-produced symbol can spell."""
    return Symbol(f"%{prefix}{next(_gensym_counter)}")


# =================================================================
# Step classification
# =================================================================

def _is_quote_call(step: CallForm) -> bool:
    head = step.head
    return (isinstance(head, Atom) and head.is_symbol and head.value == QUOTE
            and len(step.operands) == 1)


def classify_step(step: SourceFragment) -> Classified:
    """Splits a step into an atomic callable term or a head plus operands.

    Quote forms are checked before call forms: `(quote k)` is a single
    callable term and must never have the accumulator spliced into it.
    """
    match step:
        case QuoteForm():
            return Atomic(step)
        case CallForm() if _is_quote_call(step):
            return Atomic(QuoteForm(step.operands[0], step.scope, step.loc))
        case Atom():
            return Atomic(step)
        case CallForm():
            return Parenthesized(step.head, step.operands)
        case _:
            raise ClassificationError(
                f"cannot thread through {type(step).__name__}: expected an atom, quote or call form",
                step,
            )


# =================================================================
# Insertion
# =================================================================

def insert_leading(acc: SourceFragment, classified: Classified, scope: Optional[ScopeTag]) -> CallForm:
    if isinstance(classified, Atomic):
        return CallForm(classified.term, (acc,), scope)
    return CallForm(classified.head, (acc,) + tuple(classified.operands), scope)


def insert_trailing(acc: SourceFragment, classified: Classified, scope: Optional[ScopeTag]) -> CallForm:
    if isinstance(classified, Atomic):
        return CallForm(classified.term, (acc,), scope)
    return CallForm(classified.head, tuple(classified.operands) + (acc,), scope)


_INSERTERS: Dict[Insertion, Callable[[SourceFragment, Classified, Optional[ScopeTag]], CallForm]] = {
    Insertion.LEADING: insert_leading,
    Insertion.TRAILING: insert_trailing,
}


def inserter_for(insertion: Insertion):
    try:
        return _INSERTERS[insertion]
    except KeyError:
        raise ValueError(f"unknown insertion policy: {insertion!r}") from None


# =================================================================
# Pipeline driver
# =================================================================

def pipeline(initial: SourceFragment, steps: Iterable[SourceFragment],
             insertion: Insertion, scope: Optional[ScopeTag]) -> SourceFragment:
    """Folds `initial` through `steps` left to right.

    With no steps the initial fragment comes back unchanged.
    """
    insert = inserter_for(insertion)
    acc = initial
    for step in steps:
        acc = insert(acc, classify_step(step), scope)
    return acc


def run(request: PipelineRequest) -> SourceFragment:
    return pipeline(request.initial, request.steps, request.insertion, request.scope)


def thread_first(initial: SourceFragment, steps: Iterable[SourceFragment],
                 scope: Optional[ScopeTag]) -> SourceFragment:
    return pipeline(initial, steps, Insertion.LEADING, scope)


def thread_last(initial: SourceFragment, steps: Iterable[SourceFragment],
                scope: Optional[ScopeTag]) -> SourceFragment:
    return pipeline(initial, steps, Insertion.TRAILING, scope)


# =================================================================
# Short-circuit and lambda forms
# =================================================================

def _kw(name: str, scope: Optional[ScopeTag]) -> Atom:
    return Atom(Symbol(name), scope)


def _let1(name: Symbol, value: SourceFragment, body: SourceFragment, scope: Optional[ScopeTag]) -> CallForm:
    binding = CallForm(Atom(name, scope), (value,), scope)
    return CallForm(_kw("let", scope), (CallForm(binding, (), scope), body), scope)


def and_thread(initial: SourceFragment, steps: Sequence[SourceFragment],
               insertion: Insertion, scope: Optional[ScopeTag]) -> SourceFragment:
    """Threads like `pipeline` but yields #f as soon as any value is #f.

    Each intermediate value is bound to a fresh temporary so it is
    evaluated once:

        (let ((t0 initial))
          (if t0 (let ((t1 (step1 t0))) (if t1 ... #f)) #f))
    """
    steps = list(steps)
    if not steps:
        return initial
    insert = inserter_for(insertion)
    # Classify up front so a bad step fails before anything is built.
    classified = [classify_step(s) for s in steps]
    temps = [gensym() for _ in range(len(steps) + 1)]
    false = Atom(False, scope)

    body: SourceFragment = Atom(temps[-1], scope)
    for i in range(len(steps) - 1, -1, -1):
        value = insert(Atom(temps[i], scope), classified[i], scope)
        guarded = CallForm(_kw("if", scope), (Atom(temps[i + 1], scope), body, false), scope)
        body = _let1(temps[i + 1], value, guarded, scope)
    guarded = CallForm(_kw("if", scope), (Atom(temps[0], scope), body, false), scope)
    return _let1(temps[0], initial, guarded, scope)


def lambda_thread(steps: Iterable[SourceFragment], insertion: Insertion,
                  scope: Optional[ScopeTag], variadic: bool = False) -> CallForm:
    """Builds `(lambda (arg) <arg threaded through steps>)`.

    The variadic form binds the whole argument list, `(lambda args ...)`.
    """
    arg = gensym("arg")
    params: SourceFragment = Atom(arg, scope) if variadic else CallForm(Atom(arg, scope), (), scope)
    body = pipeline(Atom(arg, scope), steps, insertion, scope)
    return CallForm(_kw("lambda", scope), (params, body), scope)


def lambda_and_thread(steps: Iterable[SourceFragment], insertion: Insertion,
                      scope: Optional[ScopeTag]) -> CallForm:
    arg = gensym("arg")
    body = and_thread(Atom(arg, scope), list(steps), insertion, scope)
    return CallForm(_kw("lambda", scope), (CallForm(Atom(arg, scope), (), scope), body), scope)


# =================================================================
# Use-site expanders
# =================================================================

def _split_initial(form: CallForm):
    if not form.operands:
        raise ThreadingSyntaxError(f"{form.head.value}: expected an initial value", form)
    return form.operands[0], form.operands[1:]


def expand_thread_first(form: CallForm) -> SourceFragment:
    initial, steps = _split_initial(form)
    return thread_first(initial, steps, form.scope)


def expand_thread_last(form: CallForm) -> SourceFragment:
    initial, steps = _split_initial(form)
    return thread_last(initial, steps, form.scope)


def expand_and_thread_first(form: CallForm) -> SourceFragment:
    initial, steps = _split_initial(form)
    return and_thread(initial, steps, Insertion.LEADING, form.scope)


def expand_and_thread_last(form: CallForm) -> SourceFragment:
    initial, steps = _split_initial(form)
    return and_thread(initial, steps, Insertion.TRAILING, form.scope)


def _lambda_expander(insertion: Insertion, variadic: bool = False):
    def expand(form: CallForm) -> SourceFragment:
        return lambda_thread(form.operands, insertion, form.scope, variadic)
    return expand


def _lambda_and_expander(insertion: Insertion):
    def expand(form: CallForm) -> SourceFragment:
        return lambda_and_thread(form.operands, insertion, form.scope)
    return expand


THREADING_FORMS: Dict[str, Callable[[CallForm], SourceFragment]] = {
    "~>": expand_thread_first,
    "~>>": expand_thread_last,
    "and~>": expand_and_thread_first,
    "and~>>": expand_and_thread_last,
    "lambda~>": _lambda_expander(Insertion.LEADING),
    "lambda~>>": _lambda_expander(Insertion.TRAILING),
    "lambda~>*": _lambda_expander(Insertion.LEADING, variadic=True),
    "lambda~>>*": _lambda_expander(Insertion.TRAILING, variadic=True),
    "lambda-and~>": _lambda_and_expander(Insertion.LEADING),
    "lambda-and~>>": _lambda_and_expander(Insertion.TRAILING),
}
# Unicode spellings
THREADING_FORMS["λ~>"] = THREADING_FORMS["lambda~>"]
THREADING_FORMS["λ~>>"] = THREADING_FORMS["lambda~>>"]
THREADING_FORMS["λ~>*"] = THREADING_FORMS["lambda~>*"]
THREADING_FORMS["λ~>>*"] = THREADING_FORMS["lambda~>>*"]
THREADING_FORMS["λ-and~>"] = THREADING_FORMS["lambda-and~>"]
THREADING_FORMS["λ-and~>>"] = THREADING_FORMS["lambda-and~>>"]


def expand(form: CallForm) -> SourceFragment:
    """Expands a use-site threading form, dispatching on its keyword."""
    head = form.head
    if not (isinstance(head, Atom) and head.is_symbol and head.value in THREADING_FORMS):
        raise ThreadingSyntaxError("not a threading form", form)
    return THREADING_FORMS[head.value](form)


def is_threading_form(node: SourceFragment) -> bool:
    return (isinstance(node, CallForm) and isinstance(node.head, Atom)
            and node.head.is_symbol and node.head.value in THREADING_FORMS)


def expand_all(node: SourceFragment) -> SourceFragment:
    """Expands every threading form in a tree, leaving quoted data untouched.

    Used to show what a form rewrites to. Evaluation does not need it: the
    evaluator expands each form when it reaches it.
    """
    while is_threading_form(node):
        node = expand(node)
    if isinstance(node, CallForm):
        return CallForm(expand_all(node.head), [expand_all(o) for o in node.operands], node.scope, node.loc)
    return node
