from fractions import Fraction

import pytest

from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, Symbol, ScopeTag, DEFAULT_SCOPE, Insertion, PipelineRequest,
    ThreadlineError, ClassificationError, ThreadingSyntaxError, UnboundIdentifier,
    NotCallableError, ArityError,
    sym, call, quote,
)


def test_symbol_and_string_atoms_differ():
    assert Atom(Symbol("x")) != Atom("x")
    assert Atom(Symbol("x")).is_symbol
    assert not Atom("x").is_symbol


def test_literal_atoms_compare_by_type():
    assert Atom(1) != Atom(True)
    assert Atom(1) != Atom(1.0)
    assert Atom(Fraction(3, 4)) == Atom(Fraction(3, 4))


def test_equality_ignores_scope_and_location():
    a = CallForm(sym("f"), [Atom(1)], scope=ScopeTag("one"), loc={'line': 1, 'col': 1})
    b = CallForm(sym("f", ScopeTag("two")), [Atom(1)])
    assert a == b
    assert hash(a) == hash(b)


def test_fragments_are_hashable_and_usable_as_keys():
    seen = {call("f", 1): "a", quote("k"): "b", sym("x"): "c"}
    assert seen[call("f", 1)] == "a"
    assert seen[quote("k")] == "b"
    assert seen[sym("x")] == "c"


@pytest.mark.parametrize("fragment, attr", [
    (sym("x"), "value"),
    (quote("k"), "datum"),
    (call("f", 1), "head"),
    (call("f", 1), "scope"),
])
def test_fragments_are_immutable(fragment, attr):
    with pytest.raises(AttributeError):
        setattr(fragment, attr, None)


def test_call_operands_are_a_tuple_copy():
    ops = [Atom(1), Atom(2)]
    form = CallForm(sym("f"), ops)
    ops.append(Atom(3))
    assert form.operands == (Atom(1), Atom(2))


def test_with_scope_returns_tagged_copy():
    tag = ScopeTag("site")
    form = call("f", 1)
    tagged = form.with_scope(tag)
    assert tagged is not form
    assert tagged.scope is tag
    assert form.scope is None
    assert tagged == form


def test_call_helper_builds_symbols_and_literals():
    form = call("f", "a", 2, Atom("text"))
    assert form.head == Atom(Symbol("f"))
    assert form.operands == (Atom(Symbol("a")), Atom(2), Atom("text"))


def test_scope_tag_is_read_only():
    tag = ScopeTag("site", application=lambda f, args: None)
    with pytest.raises(AttributeError):
        tag.name = "other"
    assert tag.name == "site"
    assert tag.application is not None
    assert DEFAULT_SCOPE.application is None
    assert "custom" in repr(tag)


def test_pipeline_request_freezes_steps():
    steps = [sym("f")]
    request = PipelineRequest(sym("x"), steps, Insertion.LEADING, DEFAULT_SCOPE)
    steps.append(sym("g"))
    assert request.steps == (sym("f"),)
    assert "LEADING" in repr(request)


def test_fragment_repr_uses_source_syntax():
    assert repr(call("f", quote("k"), Atom("s"))) == "<CallForm (f 'k \"s\")>"


@pytest.mark.parametrize("error_cls, base", [
    (ClassificationError, TypeError),
    (ThreadingSyntaxError, SyntaxError),
    (UnboundIdentifier, KeyError),
    (NotCallableError, TypeError),
    (ArityError, TypeError),
])
def test_error_hierarchy(error_cls, base):
    assert issubclass(error_cls, ThreadlineError)
    assert issubclass(error_cls, base)


def test_errors_carry_fragment():
    frag = sym("f")
    err = NotCallableError("boom", frag)
    assert err.fragment is frag
    assert str(err) == "boom"
    assert str(UnboundIdentifier("zz")) == "unbound identifier: zz"
