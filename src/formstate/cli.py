"""
Command line entry point.

    formstate check FORM [--response R] [--config C] [--verbose]
    formstate graph FORM [-o FILE] [--mode simple|detailed|clustered]

FORM and R are .json or .yaml/.yml documents (see formstate.serialization),
C is a YAML engine configuration (see formstate.config).

`check` exits with status 1 when the form has dependency cycles, the
response holds Invalid answers, or any input fails to load.
"""

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from formstate.analyzer import analyze_form
from formstate.backends import DotMode, generate_dot, save_dot_file
from formstate.config import EngineConfig, load_config
from formstate.errors import FormStateError
from formstate.serialization import load_form, load_response
from formstate.session import FormSession
from formstate.validation import Invalid, Valid

logger = logging.getLogger(__name__)


def _check(args: argparse.Namespace) -> int:
    form = load_form(args.form)
    config = load_config(args.config) if args.config else EngineConfig()
    response = load_response(args.response) if args.response else None

    report = analyze_form(form)
    print(f"Form: {form.name}")
    print(f"  Items: {report.total_items} ({report.total_questions} questions, {report.total_groups} groups)")
    print(f"  Pages: {report.total_pages}")
    print(f"  Expressions: {report.total_expressions}")
    for warning in report.warnings:
        print(f"  WARNING: {warning}")

    session = FormSession(form, config=config, response=response)
    snapshot = session.snapshot
    for error in snapshot.all_errors:
        print(f"  ERROR: {error}")

    results = session.validate_all()
    invalid = 0
    for key, result in results.items():
        if isinstance(result, Invalid):
            invalid += 1
            for message in result.messages:
                print(f"  INVALID {key}: {message}")
        if isinstance(result, (Valid, Invalid)):
            for warning in result.warnings:
                print(f"  WARN {key}: {warning}")

    print(f"Validation: {len(results) - invalid} valid, {invalid} invalid")
    return 1 if invalid or report.has_cycles else 0


def _graph(args: argparse.Namespace) -> int:
    form = load_form(args.form)
    mode = DotMode(args.mode)
    if args.output:
        save_dot_file(form, args.output, mode=mode)
        print(f"Saved to: {args.output}")
    else:
        print(generate_dot(form, mode=mode))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="formstate", description="Form state engine tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    check = subparsers.add_parser("check", help="Analyze a form and validate a response")
    check.add_argument("form", help="Path to the form definition (.json/.yaml)")
    check.add_argument("--response", help="Path to a response document to validate")
    check.add_argument("--config", help="Path to a YAML engine configuration")
    check.set_defaults(handler=_check)

    graph = subparsers.add_parser("graph", help="Emit the expression dependency graph as DOT")
    graph.add_argument("form", help="Path to the form definition (.json/.yaml)")
    graph.add_argument("-o", "--output", help="Write the DOT graph to this file")
    graph.add_argument("--mode", choices=[m.value for m in DotMode], default=DotMode.SIMPLE.value)
    graph.set_defaults(handler=_graph)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.handler(args)
    except (FormStateError, OSError, ValueError, KeyError, yaml.YAMLError) as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
