import sys
from pathlib import Path

from threadline.threadline_runtime import ScriptRunner
from threadline.threadline_printer import Printer

EXPAND_PREFIX = ":expand "


# A basic input prompt, replaced in tests.
def read_line(prompt: str) -> str:
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return sys.stdin.readline()


def print_effects(result):
    for effect in result.side_effects:
        if effect.get('topics') == ['stdout']:
            print(effect.get('message', ''))


def run_script_file(file_path: str):
    """Run a threadline file non-interactively and exit with appropriate status."""
    runner = ScriptRunner()
    printer = Printer()
    try:
        source = Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = runner.handle_script(source)
    print_effects(result)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)
    if result.value is not None:
        print(printer.pformat(result.value))


def show_expansion(runner: ScriptRunner, printer: Printer, source: str):
    """Print what each top-level form rewrites to, without evaluating it."""
    try:
        expanded = runner.expand_source(source)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return
    for node in expanded:
        print(printer.pformat(node))


def main():
    """Run a script file when provided, otherwise start the interactive REPL."""
    if len(sys.argv) > 1:
        arg = sys.argv[1]
        if not arg.startswith("-"):
            run_script_file(arg)
            return

    print("threadline REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit. ':expand <form>' shows a rewrite.")

    runner = ScriptRunner()
    printer = Printer()

    while True:
        try:
            raw = read_line(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()

            if not line:
                continue
            if line == "exit":
                break
            if line.startswith(EXPAND_PREFIX):
                show_expansion(runner, printer, line[len(EXPAND_PREFIX):])
                continue

            result = runner.handle_script(line)

            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)
                continue

            print_effects(result)
            if result.value is not None:
                print(printer.pformat(result.value))

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nExiting.")
