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

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from core import Issue

# OWASP Top 10 2021 Categories
OWASP_CATEGORIES = {
    'A01': {
        'name': 'Broken Access Control',
        'description': 'Restrictions on what authenticated users are allowed to do are often not properly enforced',
        'impact': 'High - attackers can act as users or administrators, or reach files outside the web root'
    },
    'A02': {
        'name': 'Cryptographic Failures',
        'description': 'Failures related to cryptography which often lead to sensitive data exposure',
        'impact': 'High - sensitive data exposure, credential cracking'
    },
    'A03': {
        'name': 'Injection',
        'description': 'Injection flaws occur when untrusted data is sent to an interpreter',
        'impact': 'Critical - data loss, corruption, unauthorized access, complete system compromise'
    },
    'A04': {
        'name': 'Insecure Design',
        'description': 'Missing or ineffective control design',
        'impact': 'Variable - depends on protection needs of application and data'
    },
    'A05': {
        'name': 'Security Misconfiguration',
        'description': 'Insecure default configurations, verbose errors and unnecessary features',
        'impact': 'Medium - unauthorized access to system data or functionality'
    },
    'A06': {
        'name': 'Vulnerable and Outdated Components',
        'description': 'Components with known vulnerabilities or removed APIs',
        'impact': 'Variable - ranges from minimal to complete host takeover'
    },
    'A07': {
        'name': 'Identification and Authentication Failures',
        'description': 'Authentication and credential management implemented incorrectly',
        'impact': 'High - compromise of user accounts and service credentials'
    },
    'A08': {
        'name': 'Software and Data Integrity Failures',
        'description': 'Code and infrastructure that does not protect against integrity violations',
        'impact': 'High - object injection, unauthorized code execution'
    },
    'A09': {
        'name': 'Security Logging and Monitoring Failures',
        'description': 'Insufficient logging and monitoring',
        'impact': 'Medium - delayed attack detection, forensic difficulties'
    },
    'A10': {
        'name': 'Server-Side Request Forgery',
        'description': 'Web application fetching a remote resource without validating the URL',
        'impact': 'High - internal network scanning, sensitive data exposure'
    }
}


@dataclass
class VulnerabilityProfile:
    """
    Reference data for one vulnerability type detected in PHP code.
    """
    vulnerability_type: str
    name: str
    owasp_category: str
    cwe_ids: List[int]
    remediation: str
    references: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'vulnerability_type': self.vulnerability_type,
            'name': self.name,
            'owasp_category': self.owasp_category,
            'owasp_name': OWASP_CATEGORIES.get(self.owasp_category, {}).get('name', ''),
            'cwe_ids': list(self.cwe_ids),
            'remediation': self.remediation,
            'references': list(self.references),
            'tags': list(self.tags)
        }


VULNERABILITY_PROFILES = {
    'sql_injection': VulnerabilityProfile(
        vulnerability_type='sql_injection',
        name='SQL Injection',
        owasp_category='A03',
        cwe_ids=[89, 564],
        remediation="Use prepared statements with bound parameters (PDO::prepare or mysqli_prepare) "
                    "and never build SQL by concatenating request data.",
        references=[
            "https://owasp.org/Top10/A03_2021-Injection/",
            "https://cwe.mitre.org/data/definitions/89.html",
            "https://cheatsheetseries.owasp.org/cheatsheets/SQL_Injection_Prevention_Cheat_Sheet.html"
        ],
        tags=['database', 'injection']
    ),
    'command_injection': VulnerabilityProfile(
        vulnerability_type='command_injection',
        name='OS Command Injection',
        owasp_category='A03',
        cwe_ids=[78],
        remediation="Avoid shell execution. Where unavoidable, pass every argument through "
                    "escapeshellarg() and validate it against an allowlist.",
        references=[
            "https://owasp.org/Top10/A03_2021-Injection/",
            "https://cwe.mitre.org/data/definitions/78.html",
            "https://cheatsheetseries.owasp.org/cheatsheets/OS_Command_Injection_Defense_Cheat_Sheet.html"
        ],
        tags=['shell', 'injection']
    ),
    'code_injection': VulnerabilityProfile(
        vulnerability_type='code_injection',
        name='Code Injection',
        owasp_category='A03',
        cwe_ids=[94, 95],
        remediation="Remove eval(), create_function() and the /e modifier. Dispatch through "
                    "an explicit map of allowed callables instead.",
        references=[
            "https://owasp.org/Top10/A03_2021-Injection/",
            "https://cwe.mitre.org/data/definitions/94.html"
        ],
        tags=['eval', 'injection']
    ),
    'file_inclusion': VulnerabilityProfile(
        vulnerability_type='file_inclusion',
        name='File Inclusion',
        owasp_category='A03',
        cwe_ids=[98],
        remediation="Include only constant paths or map user choices onto an allowlist of files; "
                    "disable allow_url_include.",
        references=[
            "https://owasp.org/www-project-web-security-testing-guide/latest/4-Web_Application_Security_Testing/07-Input_Validation_Testing/11.1-Testing_for_Local_File_Inclusion",
            "https://cwe.mitre.org/data/definitions/98.html"
        ],
        tags=['include', 'lfi', 'rfi']
    ),
    'path_traversal': VulnerabilityProfile(
        vulnerability_type='path_traversal',
        name='Path Traversal',
        owasp_category='A01',
        cwe_ids=[22],
        remediation="Resolve paths with realpath() and verify they stay under the intended base "
                    "directory; use basename() for user supplied file names.",
        references=[
            "https://owasp.org/Top10/A01_2021-Broken_Access_Control/",
            "https://cwe.mitre.org/data/definitions/22.html"
        ],
        tags=['filesystem', 'traversal']
    ),
    'xss': VulnerabilityProfile(
        vulnerability_type='xss',
        name='Cross-Site Scripting',
        owasp_category='A03',
        cwe_ids=[79],
        remediation="Encode output with htmlspecialchars($value, ENT_QUOTES, 'UTF-8') or use a "
                    "template engine with automatic escaping.",
        references=[
            "https://owasp.org/Top10/A03_2021-Injection/",
            "https://cwe.mitre.org/data/definitions/79.html",
            "https://cheatsheetseries.owasp.org/cheatsheets/Cross_Site_Scripting_Prevention_Cheat_Sheet.html"
        ],
        tags=['output', 'xss']
    ),
    'insecure_deserialization': VulnerabilityProfile(
        vulnerability_type='insecure_deserialization',
        name='Insecure Deserialization',
        owasp_category='A08',
        cwe_ids=[502],
        remediation="Use json_decode() for untrusted data, or pass ['allowed_classes' => false] "
                    "to unserialize().",
        references=[
            "https://owasp.org/Top10/A08_2021-Software_and_Data_Integrity_Failures/",
            "https://cwe.mitre.org/data/definitions/502.html",
            "https://cheatsheetseries.owasp.org/cheatsheets/Deserialization_Cheat_Sheet.html"
        ],
        tags=['deserialization', 'object_injection']
    ),
    'weak_cryptography': VulnerabilityProfile(
        vulnerability_type='weak_cryptography',
        name='Weak Cryptography',
        owasp_category='A02',
        cwe_ids=[327, 328],
        remediation="Use password_hash()/password_verify() for passwords, hash('sha256') or "
                    "better for integrity, and sodium_* or openssl with AES-GCM for encryption.",
        references=[
            "https://owasp.org/Top10/A02_2021-Cryptographic_Failures/",
            "https://cwe.mitre.org/data/definitions/327.html",
            "https://cheatsheetseries.owasp.org/cheatsheets/Password_Storage_Cheat_Sheet.html"
        ],
        tags=['crypto', 'hashing']
    ),
    'hardcoded_credentials': VulnerabilityProfile(
        vulnerability_type='hardcoded_credentials',
        name='Hardcoded Credentials',
        owasp_category='A07',
        cwe_ids=[798],
        remediation="Load secrets from the environment or a secrets manager (getenv(), vault) "
                    "and rotate any credential that was committed.",
        references=[
            "https://owasp.org/Top10/A07_2021-Identification_and_Authentication_Failures/",
            "https://cwe.mitre.org/data/definitions/798.html"
        ],
        tags=['secrets', 'credentials']
    )
}


def get_owasp_category(code: str) -> Optional[Dict[str, str]]:
    """Get OWASP category metadata by code (e.g. 'A03')."""
    return OWASP_CATEGORIES.get(code)


def get_owasp_category_name(code: Optional[str]) -> str:
    if not code:
        return ''
    return OWASP_CATEGORIES.get(code, {}).get('name', code)


def get_vulnerability_profile(vulnerability_type: str) -> Optional[VulnerabilityProfile]:
    return VULNERABILITY_PROFILES.get(vulnerability_type)


def get_profiles_by_category(code: str) -> List[VulnerabilityProfile]:
    """Get all vulnerability profiles mapped to an OWASP category."""
    return [profile for profile in VULNERABILITY_PROFILES.values() if profile.owasp_category == code]


def enrich_issue(issue: Issue) -> Issue:
    """
    Attach OWASP name and references to a security issue.

    Args:
        issue (Issue): Issue produced by a security rule

    Returns:
        Issue: The same issue, with 'owasp_name' and 'references' metadata
    """
    vulnerability_type = issue.metadata.get('vulnerability_type')
    profile = VULNERABILITY_PROFILES.get(vulnerability_type) if vulnerability_type else None

    if issue.owasp_category:
        issue.metadata.setdefault('owasp_name', get_owasp_category_name(issue.owasp_category))
    if profile is not None:
        issue.metadata.setdefault('references', list(profile.references))
        if not issue.cwe_ids:
            issue.cwe_ids = list(profile.cwe_ids)
    return issue
