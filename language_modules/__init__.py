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

import importlib
import logging
from typing import List, Dict, Any, Optional

from .base_analyzer import BaseRule, BaseSecurityRule, OwaspCategory, RiskLevel, RiskRecord, RuleContext

logger = logging.getLogger(__name__)

__all__ = [
    'BaseRule', 'BaseSecurityRule', 'OwaspCategory', 'RiskLevel', 'RiskRecord', 'RuleContext',
    'register_language_module', 'get_available_languages',
    'load_language_analyzers'
]

# Registry of available language modules
AVAILABLE_LANGUAGES: List[Dict[str, Any]] = []


def register_language_module(language_name: str, module_path: str, factory: str = 'create_default_analyzers') -> None:
    """
    Register a language module for dynamic loading.

    Args:
        language_name (str): Name of the analyzed language
        module_path (str): Python module path holding the analyzers
        factory (str): Function in that module returning analyzer instances
    """
    if language_name not in [lang['name'] for lang in AVAILABLE_LANGUAGES]:
        AVAILABLE_LANGUAGES.append({
            'name': language_name,
            'module_path': module_path,
            'factory': factory
        })


def get_available_languages() -> list:
    return AVAILABLE_LANGUAGES.copy()


def load_language_analyzers(language_name: str, config: Optional[Any] = None) -> list:
    """
    Import a language module and build its analyzers.

    Raises:
        ValueError: If the language is not registered
    """
    for lang in AVAILABLE_LANGUAGES:
        if lang['name'] == language_name:
            module = importlib.import_module(lang['module_path'])
            analyzers = getattr(module, lang['factory'])(config)
            logger.debug(f"Loaded {len(analyzers)} analyzers for {language_name}")
            return analyzers
    raise ValueError(f"Language module not available: {language_name}")


# Auto-register known language modules
register_language_module('php', 'language_modules.php.analyzer')
