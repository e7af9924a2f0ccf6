"""
CLI commands for parsing, validating and converting FHIR resource files.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import FhirOptions
from .dispatcher import verify_bindings
from .exceptions import FhirRecordError
from .models import ContentFormat, FhirVersion, ParseRequest, ValidationRequest
from .parser_service import FhirParserService
from .validation_service import FhirValidationService

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def _version_arg(value: str) -> FhirVersion:
    try:
        return FhirVersion.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _format_arg(value: str) -> ContentFormat:
    try:
        return ContentFormat.from_name(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def infer_format(path: Path, explicit: Optional[ContentFormat] = None) -> ContentFormat:
    """Return ``explicit`` or guess from the file suffix (JSON unless ``.xml``)."""
    if explicit is not None:
        return explicit
    return ContentFormat.XML if path.suffix.lower() == ".xml" else ContentFormat.JSON


def _read_resource(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"✗ Cannot read {path}: {e}", file=sys.stderr)
        return None


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def cmd_parse(args):
    """Parse a resource file and print the result."""
    setup_logging(args.verbose)
    content = _read_resource(args.file)
    if content is None:
        return 1

    service = FhirParserService(FhirOptions.from_env())
    result = asyncio.run(
        service.parse(
            ParseRequest(
                resource_content=content,
                content_type=infer_format(args.file, args.format).content_type,
                fhir_version_override=args.fhir_version,
            )
        )
    )
    _print_json(result.to_dict())
    return 0 if result.success else 1


def cmd_validate(args):
    """Validate a resource file and print the result."""
    setup_logging(args.verbose)
    content = _read_resource(args.file)
    if content is None:
        return 1

    service = FhirValidationService(FhirOptions.from_env())
    result = asyncio.run(
        service.validate(
            ValidationRequest(
                resource_content=content,
                content_type=infer_format(args.file, args.format).content_type,
                profile_url=args.profile,
                fhir_version_override=args.fhir_version,
                strict_validation=args.strict or None,
            )
        )
    )
    _print_json(result.to_dict())
    return 0 if result.is_valid else 1


def cmd_convert(args):
    """Convert a resource file between JSON and XML."""
    setup_logging(args.verbose)
    content = _read_resource(args.file)
    if content is None:
        return 1

    options = FhirOptions.from_env()
    if args.fhir_version is not None:
        options = options.with_overrides(version=args.fhir_version)
    service = FhirParserService(options)

    try:
        converted = asyncio.run(
            service.convert_format(content, args.from_format, args.to_format)
        )
    except FhirRecordError as e:
        print(f"✗ Conversion failed: {e}", file=sys.stderr)
        return 1

    if args.output:
        args.output.write_text(converted, encoding="utf-8")
        print(f"✓ Wrote {args.to_format} resource to: {args.output}")
    else:
        print(converted)
    return 0


def cmd_version(args):
    """Show the configured and supported FHIR versions."""
    options = FhirOptions.from_env()
    _print_json(
        {
            "fhir_version": options.version.value,
            "supported_versions": [v.value for v in FhirVersion],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for ``fhir-record``."""
    parser = argparse.ArgumentParser(
        description="FHIR resource parsing, validation and conversion CLI",
        prog="fhir-record",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--fhir-version",
        type=_version_arg,
        default=None,
        help="FHIR version override: R4 or R5 (default: FHIR_VERSION or R4)"
    )

    file_common = argparse.ArgumentParser(add_help=False, parents=[common])
    file_common.add_argument("file", type=Path, help="Resource file to read")
    file_common.add_argument(
        "--format",
        type=_format_arg,
        default=None,
        help="Input format: json or xml (default: from file suffix, else json)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    parse_parser = subparsers.add_parser(
        "parse",
        parents=[file_common],
        help="Parse a resource and print its metadata"
    )
    parse_parser.set_defaults(func=cmd_parse)

    validate_parser = subparsers.add_parser(
        "validate",
        parents=[file_common],
        help="Validate a resource"
    )
    validate_parser.add_argument(
        "--profile",
        default=None,
        help="Profile URL to validate against (reported as not supported)"
    )
    validate_parser.add_argument(
        "--strict",
        action="store_true",
        help="Reject unknown elements, coercions and unknown codes"
    )
    validate_parser.set_defaults(func=cmd_validate)

    convert_parser = subparsers.add_parser(
        "convert",
        parents=[common],
        help="Convert a resource between JSON and XML"
    )
    convert_parser.add_argument("file", type=Path, help="Resource file to read")
    convert_parser.add_argument(
        "--from",
        dest="from_format",
        required=True,
        help="Source format: json or xml"
    )
    convert_parser.add_argument(
        "--to",
        dest="to_format",
        required=True,
        help="Target format: json or xml"
    )
    convert_parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Write the converted resource to this file instead of stdout"
    )
    convert_parser.set_defaults(func=cmd_convert)

    version_parser = subparsers.add_parser(
        "version",
        help="Show configured and supported FHIR versions"
    )
    version_parser.set_defaults(func=cmd_version)

    return parser


def main(argv: Optional[Sequence[str]] = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    verify_bindings()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
