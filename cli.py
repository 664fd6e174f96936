# =============================================================================
# Periksa PHP Code Analyzer - AST-based Security and Quality Analysis
# =============================================================================
#
# Author: Keith Pachulski
# Company: Red Cell Security, LLC
# Email: keith@redcellsecurity.org
# Website: www.redcellsecurity.org
#
# Copyright (c) 2025 Keith Pachulski. All rights reserved.
#
# License: This software is licensed under the MIT License.
#          You are free to use, modify, and distribute this software
#          in accordance with the terms of the license.
#
# Purpose: This script is part of the Periksa PHP Code Analyzer, which inspects
#          PHP source code through its abstract syntax tree to find security
#          vulnerabilities and quality defects. The tool caches parsed trees,
#          runs pluggable analyzers and OWASP-classified security rules over
#          every file, scores findings with a CVSS-like model, and aggregates
#          deduplicated per-file and project-wide reports.
#
# DISCLAIMER: This software is provided "as-is," without warranty of any kind,
#             express or implied, including but not limited to the warranties
#             of merchantability, fitness for a particular purpose, and non-infringement.
#             In no event shall the authors or copyright holders be liable for any claim,
#             damages, or other liability, whether in an action of contract, tort, or otherwise,
#             arising from, out of, or in connection with the software or the use or other dealings
#             in the software.
#
# =============================================================================

import argparse
import logging
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import List, Optional

from core import ANALYZER_NAMES, SEVERITY_LEVELS, Config, ConfigurationError
from engine import create_default_engine
from language_modules import get_available_languages, load_language_analyzers
from reporter import SUPPORTED_FORMATS, get_reporter
from rules.owasp_rules import get_owasp_category_name

__version__ = '1.0.0'

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for the application."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ]
    )


def validate_target_path(path: str) -> Path:
    """Validate that the target path exists and is accessible."""
    target = Path(path)

    if not target.exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {path}")

    if not (target.is_file() or target.is_dir()):
        raise argparse.ArgumentTypeError(f"Path is not a file or directory: {path}")

    if not os.access(target, os.R_OK):
        raise argparse.ArgumentTypeError(f"Path is not readable: {path}")

    return target


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"Must be a positive integer: {value}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog='periksa',
        description='AST-based security and quality analyzer for PHP source code',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a single PHP file
  periksa /path/to/index.php

  # Analyze a project with 8 workers and a JSON report
  periksa /path/to/project --workers 8 --format json --output report.json

  # Fail the build only on critical findings
  periksa /path/to/project --risk-threshold critical

  # Show the detection rules
  periksa --list-rules
        """
    )

    parser.add_argument(
        'target',
        nargs='?',
        type=validate_target_path,
        help='File or directory to analyze'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        help='Output file path for the report (default: periksa_report.<format>)'
    )

    parser.add_argument(
        '--format', '-f',
        choices=SUPPORTED_FORMATS,
        default='html',
        help='Report format (default: html)'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Path to custom configuration file (YAML format)'
    )

    parser.add_argument(
        '--risk-threshold',
        choices=SEVERITY_LEVELS,
        help='Lowest severity that makes the run fail (default from config: medium)'
    )

    parser.add_argument(
        '--exclude',
        type=str,
        action='append',
        help='Exclude files/directories matching pattern (can be used multiple times)'
    )

    parser.add_argument(
        '--workers', '-w',
        type=positive_int,
        help='Number of concurrent workers'
    )

    parser.add_argument(
        '--timeout-ms',
        type=positive_int,
        help='Per-file analysis timeout in milliseconds'
    )

    parser.add_argument(
        '--disable-analyzer',
        choices=ANALYZER_NAMES,
        action='append',
        help='Disable one of the built-in analyzers (can be used multiple times)'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress all output except errors'
    )

    # Information arguments
    parser.add_argument(
        '--list-rules',
        action='store_true',
        help='List all available detection rules'
    )

    parser.add_argument(
        '--list-analyzers',
        action='store_true',
        help='List the built-in analyzers'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Periksa PHP Code Analyzer v{__version__}'
    )

    return parser


def list_rules(config: Config) -> None:
    """Display every rule of the built-in analyzers."""
    for analyzer in load_language_analyzers('php', config):
        print(f"{analyzer.name.capitalize()} rules:")
        print("=" * 50)
        for rule in analyzer.get_rules():
            owasp = getattr(rule, 'owasp_category', None)
            suffix = f" [{rule_owasp_label(owasp)}]" if owasp else ""
            print(f"{rule.rule_id:<28} {rule.severity:<9} {rule.name}{suffix}")
        print()


def rule_owasp_label(owasp) -> str:
    code = getattr(owasp, 'value', owasp)
    return f"{code} {get_owasp_category_name(code)}"


def list_analyzers(config: Config) -> None:
    """Display the built-in analyzers and whether they are enabled."""
    print("Built-in Analyzers:")
    print("=" * 35)

    for language in get_available_languages():
        for analyzer in load_language_analyzers(language['name'], config):
            state = 'enabled' if config.is_analyzer_enabled(analyzer.name) else 'disabled'
            extensions = ', '.join(analyzer.file_extensions)
            detectors = len(analyzer.get_detectors())
            print(f" {analyzer.name:<12} {state:<9} {language['name']} ({detectors} detectors; {extensions})")


def run_batch(engine, files: List[str], cancel_event: threading.Event):
    """Run the batch off the main thread so Ctrl-C stops further dispatch."""
    with ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(engine.analyze_batch, files, cancel_event)
        try:
            while not future.done():
                wait([future], timeout=0.2)
        except KeyboardInterrupt:
            cancel_event.set()
            logger.warning("Interrupted, waiting for running files to finish")
            raise
        return future.result()


def build_config(args: argparse.Namespace) -> Config:
    """Load configuration and apply command line overrides."""
    config = Config(args.config) if args.config else Config()

    if args.risk_threshold:
        config.set_risk_threshold(args.risk_threshold)

    if args.exclude:
        config.set_exclusions(args.exclude)

    if args.workers:
        config.set_worker_count(args.workers)

    if args.timeout_ms:
        config.set_per_file_timeout_ms(args.timeout_ms)

    for name in args.disable_analyzer or []:
        config.set_analyzer_enabled(name, False)

    return config


def print_summary(batch, report_path: str, threshold: str) -> None:
    summary = batch.get_summary()
    print("\nAnalysis complete!")
    print(f"Files analyzed: {summary['successful_files']} ({summary['failed_files']} failed)")
    print(f"Total issues found: {summary['total_issues']}")
    for severity in SEVERITY_LEVELS:
        count = summary['severity_distribution'].get(severity, 0)
        if count:
            print(f"  {severity:<9} {count}")
    print(f"Average quality score: {summary['average_quality_score']} ({summary['quality_grade']})")
    print(f"Report generated: {report_path}")

    if batch.passes(threshold):
        print(f"\nNo issues at or above '{threshold}' severity.")
    else:
        print(f"\nIssues at or above '{threshold}' severity detected. Review the report for details.")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI application."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate conflicting arguments
    if args.verbose and args.quiet:
        parser.error("--verbose and --quiet cannot be used together")

    setup_logging(args.verbose, args.quiet)
    logger = logging.getLogger(__name__)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    # Handle information requests
    if args.list_rules:
        list_rules(config)
        return 0

    if args.list_analyzers:
        list_analyzers(config)
        return 0

    if args.target is None:
        parser.error("the following arguments are required: target")

    output_path = args.output or f"periksa_report.{args.format}"
    cancel_event = threading.Event()

    try:
        engine = create_default_engine(config)

        if not args.quiet:
            print(f"Starting analysis of: {args.target}")

        files = engine.discover_files(args.target)
        reports = run_batch(engine, files, cancel_event)
        batch = engine.create_batch_report(reports)
        logger.debug(f"Engine statistics: {engine.get_stats()}")

        reporter = get_reporter(args.format)
        report_path = reporter.generate_report(batch, output_path)

        threshold = config.get_risk_threshold()
        if not args.quiet:
            print_summary(batch, report_path, threshold)

        return 0 if batch.passes(threshold) else 1

    except KeyboardInterrupt:
        if not args.quiet:
            print("\nAnalysis interrupted by user")
        return 130

    except Exception as e:
        logger.error(f"Analysis failed: {str(e)}")
        if args.verbose:
            logger.exception("Detailed error information:")
        return 1


if __name__ == '__main__':
    sys.exit(main())
