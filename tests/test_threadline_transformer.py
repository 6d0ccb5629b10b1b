from fractions import Fraction

import pytest

from threadline.threadline_transformer import ThreadlineTransformer
from threadline.threadline_datatypes import (
    Atom, QuoteForm, CallForm, Symbol, ScopeTag, sym, call, quote,
)

SCOPE = ScopeTag("reader")


@pytest.fixture(scope="module")
def transformer():
    """Returns a ThreadlineTransformer instance."""
    return ThreadlineTransformer()


# Helpers that build koine-shaped nodes.

def leaf(tag, text, line=1, col=1):
    return {'tag': tag, 'text': text, 'line': line, 'col': col}


def form(*children, line=1, col=1):
    return {'tag': 'form', 'text': '', 'line': line, 'col': col, 'children': list(children)}


def program(*children):
    return {'status': 'success', 'ast': {'tag': 'program', 'children': list(children)}}


LEAF_CASES = [
    ("symbol", leaf('symbol', 'string-upcase'), sym("string-upcase")),
    ("operator_symbol", leaf('symbol', '~>>'), sym("~>>")),
    ("int", leaf('number', '42'), Atom(42)),
    ("negative_int", leaf('number', '-7'), Atom(-7)),
    ("float", leaf('number', '2.5'), Atom(2.5)),
    ("fraction", leaf('number', '3/4'), Atom(Fraction(3, 4))),
    ("whole_fraction", leaf('number', '4/2'), Atom(2)),
    ("true", leaf('boolean', '#t'), Atom(True)),
    ("true_long", leaf('boolean', '#true'), Atom(True)),
    ("false", leaf('boolean', '#f'), Atom(False)),
    ("string", leaf('string', '"a b c d"'), Atom("a b c d")),
    ("string_escapes", leaf('string', r'"say \"hi\"\n"'), Atom('say "hi"\n')),
]


@pytest.mark.parametrize("test_id, node, expected", LEAF_CASES, ids=[c[0] for c in LEAF_CASES])
def test_leaves(transformer, test_id, node, expected):
    assert transformer.transform(node) == expected


def test_program_yields_list_of_fragments(transformer):
    out = transformer.transform(program(leaf('number', '1'), leaf('symbol', 'x')))
    assert out == [Atom(1), sym("x")]


def test_form_becomes_call_form(transformer):
    node = form(leaf('symbol', 'f'), leaf('number', '1'), form(leaf('symbol', 'g')))
    assert transformer.transform(node) == call("f", 1, call("g"))


def test_empty_form_is_empty_atom(transformer):
    assert transformer.transform(form()) == Atom(())


def test_quote_shorthand_and_long_hand_agree(transformer):
    short = {'tag': 'quoted', 'line': 1, 'col': 1, 'children': [leaf('symbol', 'k')]}
    long_hand = form(leaf('symbol', 'quote'), leaf('symbol', 'k'))
    assert transformer.transform(short) == quote("k")
    assert transformer.transform(long_hand) == quote("k")
    assert isinstance(transformer.transform(long_hand), QuoteForm)


def test_every_fragment_carries_reader_scope(transformer):
    node = form(leaf('symbol', '~>'), leaf('number', '1'),
                form(leaf('symbol', '+'), leaf('number', '2')),
                {'tag': 'quoted', 'children': [leaf('symbol', 'k')]})
    out = transformer.transform(node, SCOPE)
    assert out.scope is SCOPE
    assert out.head.scope is SCOPE
    assert all(o.scope is SCOPE for o in out.operands)
    assert out.operands[1].head.scope is SCOPE


def test_location_is_attached(transformer):
    out = transformer.transform(form(leaf('symbol', 'f', line=3, col=5), line=3, col=4))
    assert out.loc['line'] == 3 and out.loc['col'] == 4
    assert out.head.loc['col'] == 5


def test_repetition_lists_and_untagged_wrappers_are_flattened(transformer):
    node = {'tag': 'form', 'children': [
        leaf('symbol', 'f'),
        [leaf('number', '1'), [leaf('number', '2')]],
        {'children': [leaf('number', '3')]},
        None,
    ]}
    assert transformer.transform(node) == call("f", 1, 2, 3)


def test_datum_wrapper_is_unwrapped(transformer):
    assert transformer.transform({'tag': 'datum', 'children': [leaf('symbol', 'x')]}) == sym("x")


def test_unknown_tag_raises(transformer):
    with pytest.raises(NotImplementedError):
        transformer.transform({'tag': 'mystery', 'text': '?'})
