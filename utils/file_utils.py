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

import os
import logging
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Tuple, Union
import chardet

logger = logging.getLogger(__name__)

# Minimum chardet confidence before trusting a detected encoding
ENCODING_CONFIDENCE = 0.6

# Directories never worth descending into
SKIPPED_DIRECTORIES = {'.git', '.svn', '.hg', '__pycache__', 'node_modules'}

LANGUAGE_MAP = {
    '.php': 'php',
    '.phtml': 'php',
    '.php5': 'php',
    '.php7': 'php',
    '.php8': 'php',
    '.inc': 'php'
}


def is_php_file(file_path: Path, extensions: Optional[Sequence[str]] = None) -> bool:
    suffix = Path(file_path).suffix.lower()
    if extensions is None:
        return suffix in LANGUAGE_MAP
    return suffix in {ext.lower() if ext.startswith('.') else f".{ext.lower()}" for ext in extensions}


def decode_source(raw_data: bytes) -> Tuple[str, str]:
    """
    Decode file bytes, trying UTF-8, then chardet detection, then latin-1.

    Returns:
        tuple: (text, encoding used)
    """
    try:
        return raw_data.decode('utf-8'), 'utf-8'
    except UnicodeDecodeError:
        pass

    detected = chardet.detect(raw_data)
    encoding = detected.get('encoding') if detected else None
    if encoding and detected.get('confidence', 0) > ENCODING_CONFIDENCE:
        try:
            return raw_data.decode(encoding, errors='replace'), encoding
        except LookupError:
            logger.debug(f"Unknown encoding reported by chardet: {encoding}")

    # latin-1 can decode any byte sequence
    return raw_data.decode('latin-1', errors='replace'), 'latin-1'


def read_source_file(file_path: Union[str, Path], max_size: Optional[int] = None) -> Tuple[str, str]:
    """
    Read a source file with encoding detection.

    Args:
        file_path: Path to the file
        max_size (int, optional): Maximum file size in bytes

    Returns:
        tuple: (content, encoding)

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file exceeds max_size or looks binary
    """
    path = Path(file_path)
    file_size = path.stat().st_size
    if max_size and file_size > max_size:
        raise ValueError(f"File too large to analyze: {path} ({file_size} bytes)")

    with open(path, 'rb') as f:
        raw_data = f.read()

    if b'\x00' in raw_data[:8192]:
        raise ValueError(f"Binary content in {path}")

    return decode_source(raw_data)


def discover_source_files(target: Union[str, Path], extensions: Sequence[str],
                          should_exclude: Optional[Callable[[Path], bool]] = None) -> Iterator[Path]:
    """
    Yield analyzable files under a file or directory, in sorted order.

    Args:
        target: File or directory to scan
        extensions: Accepted extensions, with or without the leading dot
        should_exclude: Predicate rejecting paths (exclusion patterns)
    """
    root = Path(target)
    if root.is_file():
        if is_php_file(root, extensions) and not (should_exclude and should_exclude(root)):
            yield root
        return

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
        for filename in sorted(filenames):
            path = Path(dirpath) / filename
            if not is_php_file(path, extensions):
                continue
            if should_exclude and should_exclude(path):
                logger.debug(f"Excluded by pattern: {path}")
                continue
            yield path
