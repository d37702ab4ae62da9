from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="imagebuild", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    build = sub.add_parser("build", help="Run a build pipeline")
    build.add_argument("--config", default=None, help="Path to the build config (YAML)")

    validate = sub.add_parser("validate", help="Check a JSON build template")
    validate.add_argument("template", help="Path to the template file")

    sub.add_parser("list-steps", help="List available step types")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    if args.command == "build":
        from .app.build import main as build_main

        return int(build_main(args.config))

    if args.command == "validate":
        from .template.parse import TemplateError, parse_file

        try:
            template = parse_file(args.template)
        except (OSError, TemplateError) as exc:
            print(f"Template validation failed: {exc}", file=sys.stderr)
            return 1
        print(
            f"Template validated successfully ({len(template.builders)} builder(s), "
            f"{len(template.provisioners)} provisioner(s))."
        )
        return 0

    if args.command == "list-steps":
        from .steps.registry import list_steps

        list_steps()
        return 0

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
