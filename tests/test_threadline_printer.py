from fractions import Fraction

import pytest

from threadline.threadline_printer import Printer
from threadline.threadline_datatypes import Atom, CallForm, Symbol, sym, call, quote


@pytest.fixture
def printer():
    return Printer(indent_width=2)


# Test cases: (id, object, expected_string)
FORMAT_TEST_CASES = [
    ("int", 123, "123"),
    ("float", -1.5, "-1.5"),
    ("fraction", Fraction(3, 4), "3/4"),
    ("whole_fraction", Fraction(4, 2), "2"),
    ("true", True, "#t"),
    ("false", False, "#f"),
    ("void", None, "#<void>"),
    ("string", 'a "b"', '"a \\"b\\""'),
    ("symbol_value", Symbol("k"), "'k"),
    ("list_value", ["X", 1, Symbol("a")], "'(\"X\" 1 a)"),
    ("nested_list_value", [[1, 2], []], "'((1 2) ())"),
    ("hash_value", {Symbol("a"): 1}, "'#hash((a . 1))"),
    ("atom_symbol", sym("string-upcase"), "string-upcase"),
    ("atom_string", Atom("a b"), '"a b"'),
    ("atom_empty", Atom(()), "()"),
    ("quote_form", quote("k"), "'k"),
    ("call_form", call("f", 1, Atom("s"), quote("k")), "(f 1 \"s\" 'k)"),
    ("call_with_quote_head", CallForm(quote("k"), [sym("x")]), "('k x)"),
    ("nested_call", call("-", 1, call("/", 2, call("+", 3, 5))), "(- 1 (/ 2 (+ 3 5)))"),
]


@pytest.mark.parametrize("test_id, obj, expected", FORMAT_TEST_CASES, ids=[c[0] for c in FORMAT_TEST_CASES])
def test_pformat(printer, test_id, obj, expected):
    assert printer.pformat(obj) == expected


def test_wide_calls_break_across_lines():
    printer = Printer(indent_width=2, max_width=20)
    out = printer.pformat(call("string-append", Atom("aaaaaaaa"), Atom("bbbbbbbb"), Atom("cccccccc")))
    lines = out.splitlines()
    assert lines[0] == '(string-append "aaaaaaaa"'
    assert lines[1] == '  "bbbbbbbb"'
    assert lines[2] == '  "cccccccc")'


def test_procedures_print_by_name(printer):
    def _string_upcase(s):
        return s.upper()
    assert printer.pformat(_string_upcase) == "#<procedure:string-upcase>"
    assert printer.pformat(lambda x: x) == "#<procedure>"
