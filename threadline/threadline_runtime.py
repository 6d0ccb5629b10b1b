# threadline runtime

import inspect
import operator
from dataclasses import dataclass, field
from fractions import Fraction
from functools import reduce
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from koine import Parser

from threadline.threadline_datatypes import (
    SourceFragment, Symbol, ScopeTag, DEFAULT_SCOPE,
    ThreadingSyntaxError, ClassificationError, UnboundIdentifier, NotCallableError, ArityError,
)
from threadline.threadline_interpreter import Evaluator, Environment
from threadline.threadline_threading import expand_all
from threadline.threadline_transformer import ThreadlineTransformer

GRAMMAR_PATH = Path(__file__).parent / "threadline_grammar.yaml"
PRELUDE_PATH = Path(__file__).parent / "prelude.tl"


def load_grammar(path: Path = GRAMMAR_PATH) -> Parser:
    """Loads the threadline grammar and returns a koine Parser."""
    with path.open(encoding="utf-8") as f:
        grammar_def = yaml.safe_load(f)
    return Parser(grammar_def)


def _exact(value):
    # Exact results that are whole come back as ints, as in (/ 4 2) => 2.
    if isinstance(value, Fraction) and value.denominator == 1:
        return value.numerator
    return value


# ===================================================================
# The Standard Library
# ===================================================================

# Names that cannot be spelled as `_method_name`.
OPERATOR_ALIASES = {
    '+': 'add',
    '-': 'sub',
    '*': 'mul',
    '/': 'div',
    '=': 'num-eq',
    '<': 'lt',
    '>': 'gt',
    '<=': 'lte',
    '>=': 'gte',
    'number->string': 'number-to-string',
    'string->symbol': 'string-to-symbol',
    'symbol->string': 'symbol-to-string',
}


class StdLib:
    """Contains Python implementations for the threadline built-ins."""
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator

    def bind(self, env: Environment):
        """Binds every `_name` method as `name` (underscores become dashes, `-q` becomes `?`)."""
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                lib_name = name[1:].replace('_', '-')
                if lib_name.endswith('-q'):
                    lib_name = lib_name[:-2] + '?'
                env[lib_name] = member
        for alias, target in OPERATOR_ALIASES.items():
            env[alias] = env[target]

    # --- Math ---
    def _add(self, *xs): return _exact(sum(xs, 0))
    def _sub(self, a, *rest):
        if not rest:
            return -a
        return _exact(reduce(operator.sub, rest, a))
    def _mul(self, *xs): return _exact(reduce(operator.mul, xs, 1))
    def _div(self, a, *rest):
        if not rest:
            rest, a = (a,), 1
        result = a
        for b in rest:
            if isinstance(result, (int, Fraction)) and isinstance(b, (int, Fraction)) \
                    and not isinstance(result, bool) and not isinstance(b, bool):
                result = Fraction(result) / b
            else:
                result = result / b
        return _exact(result)
    def _add1(self, x): return x + 1
    def _sub1(self, x): return x - 1
    def _num_eq(self, a, *rest): return all(a == b for b in rest)
    def _lt(self, *xs): return all(a < b for a, b in zip(xs, xs[1:]))
    def _gt(self, *xs): return all(a > b for a, b in zip(xs, xs[1:]))
    def _lte(self, *xs): return all(a <= b for a, b in zip(xs, xs[1:]))
    def _gte(self, *xs): return all(a >= b for a, b in zip(xs, xs[1:]))
    def _zero_q(self, x): return x == 0
    def _number_to_string(self, x):
        from threadline.threadline_printer import Printer
        return Printer().pformat(x)

    # --- Logic ---
    def _not(self, x): return x is False
    def _equal_q(self, a, b): return a == b

    # --- Strings ---
    def _string_upcase(self, s): return s.upper()
    def _string_downcase(self, s): return s.lower()
    def _string_replace(self, s, old, new): return s.replace(old, new)
    def _string_split(self, s, sep=None):
        if sep is None:
            return s.split()
        return s.split(sep)
    def _string_append(self, *parts): return "".join(parts)
    def _string_length(self, s): return len(s)
    def _string_join(self, strings, sep=" "): return sep.join(strings)
    def _string_to_symbol(self, s): return Symbol(s)
    def _symbol_to_string(self, s): return str(s)

    # --- Lists ---
    def _list(self, *xs): return list(xs)
    def _first(self, xs):
        if not xs:
            raise TypeError("first: expected a non-empty list")
        return xs[0]
    def _rest(self, xs):
        if not xs:
            raise TypeError("rest: expected a non-empty list")
        return list(xs[1:])
    def _length(self, xs): return len(xs)
    def _reverse(self, xs): return list(reversed(xs))
    def _append(self, *lists): return [x for xs in lists for x in xs]
    def _map(self, f, xs): return [f(x) for x in xs]
    def _filter(self, pred, xs): return [x for x in xs if pred(x) is not False]
    def _foldl(self, f, init, xs):
        acc = init
        for x in xs:
            acc = f(x, acc)
        return acc
    def _apply(self, f, args): return f(*args)

    # --- Tables ---
    def _hash(self, *kvs):
        if len(kvs) % 2:
            raise ArityError("hash: expected an even number of arguments")
        return dict(zip(kvs[::2], kvs[1::2]))
    def _hash_ref(self, table, key, *default):
        if key in table:
            return table[key]
        if default:
            return default[0]
        raise KeyError(key)
    def _hash_set(self, table, key, value):
        updated = dict(table)
        updated[key] = value
        return updated
    def _hash_keys(self, table): return list(table.keys())

    # --- Side effects ---
    def _emit(self, topic, *messages):
        from threadline.threadline_printer import Printer
        p = Printer()
        text = " ".join(m if isinstance(m, str) else p.pformat(m) for m in messages)
        self.evaluator.side_effects.append({'topics': [str(topic)], 'message': text})
        return None


# ===================================================================
# Script runner
# ===================================================================

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_token: Optional[dict] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and 'line' in self.error_token:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            if not msg.startswith("Error on line "):
                col_info = f", col {col}" if col is not None else ""
                return f"Error on line {line}{col_info}: {msg}"
        return msg


class ScriptRunner:
    """Parses, transforms, and executes threadline source.

    `scope` is the scope tag given to every fragment read from source; its
    application mechanism governs how the resulting call forms apply.
    """

    _parser: Optional[Parser] = None
    _transformer: Optional[ThreadlineTransformer] = None

    def __init__(self, scope: Optional[ScopeTag] = None, load_prelude: bool = True):
        self.scope = scope or DEFAULT_SCOPE
        self._load_prelude = load_prelude
        self._initialized = False

        if ScriptRunner._parser is None:
            ScriptRunner._parser = load_grammar()
        if ScriptRunner._transformer is None:
            ScriptRunner._transformer = ThreadlineTransformer()
        self.parser = ScriptRunner._parser
        self.transformer = ScriptRunner._transformer

        self.evaluator = Evaluator(self.scope)
        self.root_env = Environment()
        StdLib(self.evaluator).bind(self.root_env)

    def _initialize(self):
        """Evaluates prelude.tl into the root environment once."""
        if self._initialized:
            return
        self._initialized = True
        if not self._load_prelude or not PRELUDE_PATH.exists():
            return
        source = PRELUDE_PATH.read_text(encoding="utf-8")
        parse_out = self.parser.parse(source)
        if isinstance(parse_out, dict) and parse_out.get('status', 'success') != 'success':
            raise RuntimeError(f"Failed to parse prelude.tl:\n{self._format_parse_error(parse_out, source)}")
        # The prelude always reads under the default scope.
        for node in self.transformer.transform(parse_out, DEFAULT_SCOPE):
            self.evaluator.eval(node, self.root_env)

    # --- Reading ---

    def read(self, source_code: str) -> List[SourceFragment]:
        """Parses and transforms source into scope-tagged fragments. Raises SyntaxError."""
        parse_out = self.parser.parse(source_code)
        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                raise SyntaxError(self._format_parse_error(parse_out, source_code))
            parse_out = parse_out.get('ast')
        return self.transformer.transform(parse_out, self.scope)

    def expand_source(self, source_code: str) -> List[SourceFragment]:
        """Reads source and expands every threading form in it without evaluating."""
        return [expand_all(node) for node in self.read(source_code)]

    # --- Error formatting ---

    def _format_parse_error(self, parse_out, source: str) -> str:
        node = (parse_out or {}).get('error_node') or {}
        base = (parse_out or {}).get('error_message') or (parse_out or {}).get('message') or str(parse_out)
        line = node.get('line')
        col = node.get('col')
        if line is not None and col is not None:
            return f"ParseError: {base} (line {line}, col {col})\n{self._source_context(source, line, col)}"
        return f"ParseError: {base}"

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not line or line < 1 or line > len(lines):
            return ""
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        width = len(str(end))
        out = []
        for i in range(start, end + 1):
            prefix = ">" if i == line else " "
            ln = str(i).rjust(width)
            out.append(f"{prefix} {ln} | {lines[i - 1]}")
            if i == line and col is not None:
                caret = " " * max(col - 1, 0)
                out.append(f"  {' ' * width} | {caret}^")
        return "\n".join(out)

    def _format_stacktrace(self) -> str:
        from threadline.threadline_printer import Printer
        pf = Printer().pformat
        frames = []
        for frame in self.evaluator.call_stack:
            name = frame.get('name') or '<call>'
            args = " ".join(pf(a) for a in frame.get('args') or [])
            frames.append(f"({name} {args})" if args else f"({name})")
        if not frames:
            return ""
        return "Call stack: " + " ".join(frames)

    def _format_runtime_error(self, e: Exception, source: str) -> tuple[str, Optional[dict]]:
        match e:
            case ThreadingSyntaxError() | ClassificationError():
                msg = f"SyntaxError: {e}"
            case UnboundIdentifier() as ub:
                msg = f"UnboundIdentifier: {ub.name}"
            case NotCallableError():
                msg = f"NotCallable: {e}"
            case ArityError():
                msg = f"ArityError: {e}"
            case KeyError(args=(key, *_)):
                from threadline.threadline_printer import Printer
                msg = f"KeyError: no value for key {Printer().pformat(key)}"
            case TypeError() | ValueError() | ZeroDivisionError():
                msg = f"{type(e).__name__}: {e}"
            case _:
                msg = f"InternalError: {e}"

        token = None
        offender = getattr(e, 'fragment', None) or self.evaluator.current_node
        loc = getattr(offender, 'loc', None) if offender is not None else None
        if isinstance(loc, dict):
            line = loc.get('line'); col = loc.get('col')
            token = {'line': line, 'col': col, 'tag': loc.get('tag'), 'text': loc.get('text')}
            if line is not None and col is not None:
                msg = f"{msg}\n(line {line}, col {col})\n{self._source_context(source, line, col)}"

        st = self._format_stacktrace()
        if st:
            msg += "\n" + st
        return msg, token

    # --- Execution ---

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        self.evaluator.side_effects.clear()
        self.evaluator.call_stack.clear()
        self.evaluator.current_node = None
        try:
            self._initialize()
        except Exception as e:
            msg = f"InternalError: {e}"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg, side_effects=self.evaluator.side_effects)
        self.evaluator.side_effects.clear()

        # 1. Parse
        try:
            parse_out = self.parser.parse(source_code)
        except Exception:
            msg = "ParseError: parse failed"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg, side_effects=self.evaluator.side_effects)

        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                msg = self._format_parse_error(parse_out, source_code)
                self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
                return ExecutionResult(
                    status='error',
                    error_message=msg,
                    error_token=parse_out.get('error_node'),
                    side_effects=self.evaluator.side_effects
                )

        # 2. Transform
        try:
            fragments = self.transformer.transform(parse_out, self.scope)
        except Exception as e:
            msg = f"InternalError: transform failed: {e}"
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(status='error', error_message=msg, side_effects=self.evaluator.side_effects)

        # 3. Evaluate
        try:
            result = None
            for node in fragments:
                result = self.evaluator.eval(node, self.root_env)
        except Exception as e:
            self.evaluator._dbg("runtime error", type(e).__name__, e)
            err_msg, err_token = self._format_runtime_error(e, source_code)
            self.evaluator.side_effects.append({'topics': ['stderr'], 'message': err_msg})
            return ExecutionResult(
                status='error',
                error_message=err_msg,
                error_token=err_token,
                side_effects=self.evaluator.side_effects
            )

        return ExecutionResult(status='success', value=result, side_effects=self.evaluator.side_effects)
