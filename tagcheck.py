#!/usr/bin/env python3
"""
Container Image Tag Checker

Reports, for each image reference, the newest registry tag that has the same
shape as the tag currently in use (e.g. 'v3.8.0' -> 'v3.9.1', while ignoring
'latest', 'sha-abc123' or '3.9.1').
"""

__version__ = "0.1.0"

import argparse
import json
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, TextIO

import jsonschema
import requests

from registry_api import (
    ImageReferenceError, MissingTagError, RegistryClient, TagCheckError,
    parse_image_reference,
)
from version_utils import NoCandidates, resolve

# Constants
USER_AGENT = f"tagcheck/{__version__} python-requests/{requests.__version__}"
DEFAULT_CONCURRENCY = 5
DEFAULT_LOG_LEVEL = "WARNING"

# Configuration schema
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "images": {
            "type": "array",
            "items": {
                "oneOf": [
                    {"type": "string", "minLength": 1},
                    {
                        "type": "object",
                        "properties": {
                            "image": {"type": "string", "minLength": 1},
                            "registry": {"type": "string", "minLength": 1}
                        },
                        "required": ["image"],
                        "additionalProperties": False
                    }
                ]
            }
        },
        "differences": {"type": "boolean"},
        "concurrency": {"type": "integer", "minimum": 1}
    },
    "additionalProperties": False
}


class NoSimilarTagError(TagCheckError):
    """Registry has no tag shaped like the one in use."""

    def __init__(self):
        super().__init__("no similar tag format found in registry")


@dataclass
class ImageEntry:
    image: str
    registry: Optional[str] = None


@dataclass
class CheckResult:
    image: str
    original_tag: Optional[str] = None
    latest_tag: Optional[str] = None
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.latest_tag is not None and self.latest_tag != self.original_tag


def setup_logging(level: str) -> logging.Logger:
    """Setup logging configuration."""
    logger = logging.getLogger('tagcheck')
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
    logger.propagate = False

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S %Z'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # registry_api and version_utils log under their module names
    for name in ('registry_api', 'version_utils'):
        module_logger = logging.getLogger(name)
        module_logger.setLevel(logger.level)
        module_logger.propagate = False
        if not module_logger.handlers:
            module_logger.handlers = list(logger.handlers)

    return logger


def load_config(config_file: str) -> Dict[str, Any]:
    """Load and validate configuration from JSON file."""
    logger = logging.getLogger('tagcheck')
    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
        jsonschema.validate(config, CONFIG_SCHEMA)
        return config
    except FileNotFoundError:
        logger.error(f"Config file {config_file} not found")
        raise
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing config file: {e}")
        raise
    except jsonschema.ValidationError as e:
        logger.error(f"Configuration validation failed: {e.message}")
        raise


def config_entries(config: Dict[str, Any]) -> List[ImageEntry]:
    entries = []
    for item in config.get('images', []):
        if isinstance(item, str):
            entries.append(ImageEntry(item))
        else:
            entries.append(ImageEntry(item['image'], item.get('registry')))
    return entries


def read_image_list(stream: Iterable[str]) -> List[str]:
    """Read image references, one per line, skipping blanks and '#' comments."""
    images = []
    for line in stream:
        line = line.split('#', 1)[0].strip()
        if line:
            images.append(line)
    return images


def read_image_file(path: str) -> List[str]:
    if path == '-':
        return read_image_list(sys.stdin)
    with open(path, 'r') as f:
        return read_image_list(f)


class TagChecker:
    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY,
                 log_level: str = DEFAULT_LOG_LEVEL,
                 client: Optional[RegistryClient] = None):
        """
        Initialize the checker.

        Args:
            concurrency: Maximum number of images checked at the same time
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            client: Registry client; a default one is created if omitted
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self.logger = setup_logging(log_level)
        self.client = client or RegistryClient(user_agent=USER_AGENT)

    def find_latest_tag(self, image: str, registry: Optional[str] = None) -> CheckResult:
        """
        Find the newest tag shaped like the image's current tag.

        Args:
            image: Image reference including the tag in use
            registry: Override registry from config

        Returns:
            CheckResult with original_tag and latest_tag set

        Raises:
            ImageReferenceError, MissingTagError, NoSimilarTagError, RegistryAPIError
        """
        ref = parse_image_reference(image)
        if registry:
            ref = ref.with_registry(registry)
        if ref.tag is None:
            raise MissingTagError()

        self.logger.info(f"Checking {ref}...")
        tags = self.client.list_tags(ref)
        self.logger.debug(f"Found {len(tags)} tags for {ref.name}")

        outcome = resolve(ref.tag, tags)
        if isinstance(outcome, NoCandidates):
            raise NoSimilarTagError()

        if outcome.tag != ref.tag:
            self.logger.info(f"Newer tag for {image}: {ref.tag} -> {outcome.tag}")
        return CheckResult(image, ref.tag, outcome.tag)

    def _check_entry(self, entry: ImageEntry) -> CheckResult:
        try:
            return self.find_latest_tag(entry.image, entry.registry)
        except (TagCheckError, ImageReferenceError) as e:
            self.logger.info(f"Could not check {entry.image}: {e}")
            return CheckResult(entry.image, error=str(e))

    def check_images(self, entries: List[ImageEntry]) -> List[CheckResult]:
        """Check every image, in parallel, returning results in input order."""
        if not entries:
            return []

        max_workers = min(self.concurrency, len(entries))
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(self._check_entry, entry) for entry in entries]
            return [future.result() for future in futures]


def report(results: List[CheckResult], differences: bool = False,
           out: Optional[TextIO] = None, err: Optional[TextIO] = None) -> bool:
    """Print results as 'image<TAB>tag' lines.

    Returns True if any image failed.
    """
    out = out or sys.stdout
    err = err or sys.stderr
    has_error = False
    for result in results:
        if result.error is not None:
            err.write(f"{result.image}\t{result.error}\n")
            has_error = True
        elif not differences or result.changed:
            out.write(f"{result.image}\t{result.latest_tag}\n")
    out.flush()
    return has_error


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tagcheck',
        description='Find the newest registry tag with the same shape as the tag in use'
    )
    parser.add_argument(
        'images',
        nargs='*',
        metavar='IMAGE',
        help='Image references to check (e.g. nginx:1.25.3, ghcr.io/org/app:v1.2.0)'
    )
    parser.add_argument(
        '-d', '--differences',
        action='store_true',
        default=None,
        help='Only print images whose newest tag differs (env: DIFFERENCES)'
    )
    parser.add_argument(
        '--concurrency',
        type=_positive_int,
        default=None,
        help=f'Maximum number of images to check at once (env: CONCURRENCY, default: {DEFAULT_CONCURRENCY})'
    )
    parser.add_argument(
        '-f', '--file',
        action='append',
        default=[],
        metavar='FILE',
        help="Read image references from FILE, one per line ('-' for stdin)"
    )
    parser.add_argument(
        '--config',
        default=os.environ.get('CONFIG_FILE'),
        help='Path to configuration JSON file (env: CONFIG_FILE)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=os.environ.get('LOG_LEVEL', DEFAULT_LOG_LEVEL).upper(),
        help=f'Logging level (env: LOG_LEVEL, default: {DEFAULT_LOG_LEVEL})'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    return parser


def _resolve_settings(parser: argparse.ArgumentParser, args: argparse.Namespace,
                      config: Dict[str, Any]):
    """Apply precedence CLI > environment > config file > defaults."""
    differences = args.differences
    if differences is None and 'DIFFERENCES' in os.environ:
        differences = os.environ['DIFFERENCES'].lower() == 'true'
    if differences is None:
        differences = config.get('differences', False)

    concurrency = args.concurrency
    if concurrency is None and os.environ.get('CONCURRENCY'):
        try:
            concurrency = _positive_int(os.environ['CONCURRENCY'])
        except argparse.ArgumentTypeError as e:
            parser.error(f"CONCURRENCY: {e}")
    if concurrency is None:
        concurrency = config.get('concurrency', DEFAULT_CONCURRENCY)

    return differences, concurrency


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        config = load_config(args.config) if args.config else {}
        differences, concurrency = _resolve_settings(parser, args, config)

        entries = config_entries(config)
        for path in args.file:
            entries.extend(ImageEntry(image) for image in read_image_file(path))
        entries.extend(ImageEntry(image) for image in args.images)

        if not entries and not args.file and not sys.stdin.isatty():
            entries = [ImageEntry(image) for image in read_image_list(sys.stdin)]
        if not entries:
            parser.error("no images given")

        checker = TagChecker(concurrency, args.log_level)
        results = checker.check_images(entries)
    except (OSError, json.JSONDecodeError, jsonschema.ValidationError) as e:
        logging.getLogger('tagcheck').error(f"Fatal error: {e}")
        return 1

    try:
        has_error = report(results, differences)
    except BrokenPipeError:
        # Reader went away; silence the flush at interpreter exit
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        has_error = any(result.error is not None for result in results)

    return 1 if has_error else 0


if __name__ == '__main__':
    sys.exit(main())
