"""Local stand-in compiler for CLI compiler integration tests."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

FAILURE_MARKER = "SYNTAX ERROR"


def main(argv: list[str] | None = None) -> int:
    """Copy the source into the output as a JS comment block, or fail like elm."""

    parser = argparse.ArgumentParser()
    parser.add_argument("source")
    parser.add_argument("--output", required=True)
    parser.add_argument("--optimize", action="store_true")
    args = parser.parse_args(argv)

    source = Path(args.source)
    text = source.read_text("utf-8")
    if FAILURE_MARKER in text:
        line_no = next(
            number
            for number, line in enumerate(text.splitlines(), start=1)
            if FAILURE_MARKER in line
        )
        sys.stderr.write(
            f"-- PARSE ERROR ------------------------------------------ {source}\n"
            "\n"
            "Something went wrong while parsing this module.\n"
            "\n"
            f"{line_no}| {FAILURE_MARKER}\n",
        )
        return 1

    header = "// optimized\n" if args.optimize else ""
    body = "".join(f"// {line}\n" for line in text.splitlines())
    Path(args.output).write_text(f"{header}// compiled from {source.name}\n{body}", "utf-8")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
