"""
Version constraint matching for Minecraft runtime versions

A constraint expression is what a mod declares about the game versions it
supports, e.g. "1.20.1", ["1.20.1", "1.20.2"], ">=1.20.0 <=1.20.4", "1.20.x",
">=1.20", "~1.20.4" or the forge dialect's "[1.20,1.21)".
"""

import re
from typing import Iterable, List, Optional, Sequence, Tuple, Union

Constraint = Union[str, Sequence["Constraint"], None]

_COMPARATOR = re.compile(r'^(>=|<=|>|<)\s*(\d[\w.+-]*)$')
_WILDCARD_TAIL = re.compile(r'\.[x*].*$', re.IGNORECASE)
_MAVEN_INTERVAL = re.compile(r'^([\[(])\s*([^,\s]*)\s*,\s*([^,\s]*)\s*([\])])$')
_SNAPSHOT = re.compile(r'\d+w\d+[a-z]?')
_NON_RELEASE_KEYWORDS = (
    'alpha', 'beta', 'snapshot', 'pre', 'rc', 'experimental',
    'dev', 'test', 'nightly', 'preview'
)


def version_tuple(version: str) -> Tuple[int, ...]:
    """
    Converts a version string into a tuple of ints for comparison.
    Anything after the first hyphen (pre-release/build tag) is dropped.

    Args:
        version: Version string (ej: "1.20.4-rc.1")

    Returns:
        Tuple of integer components ((1, 20, 4) for the example)
    """
    clean = str(version).strip().split('-')[0]
    parts = []
    for part in clean.split('.'):
        match = re.match(r'\d+', part)
        parts.append(int(match.group(0)) if match else 0)
    return tuple(parts)


def compare_versions(version_a: str, version_b: str) -> int:
    """
    Compares two versions numerically; missing trailing components are zero

    Returns:
        -1 if a < b, 0 if equal, 1 if a > b
    """
    a = version_tuple(version_a)
    b = version_tuple(version_b)
    length = max(len(a), len(b))
    a = a + (0,) * (length - len(a))
    b = b + (0,) * (length - len(b))
    if a == b:
        return 0
    return 1 if a > b else -1


def _satisfies(operator: str, target: str, bound: str) -> bool:
    result = compare_versions(target, bound)
    if operator == '>=':
        return result >= 0
    if operator == '>':
        return result > 0
    if operator == '<=':
        return result <= 0
    if operator == '<':
        return result < 0
    return False


def _match_range(expression: str, target: str) -> Optional[bool]:
    """">=A <=B" with both bounds inclusive"""
    tokens = expression.split()
    lower = next((t for t in tokens if t.startswith('>=')), None)
    upper = next((t for t in tokens if t.startswith('<=')), None)
    if not lower or not upper:
        return None
    min_version = lower[2:].strip()
    max_version = upper[2:].strip()
    if not min_version or not max_version:
        return None
    return (compare_versions(target, min_version) >= 0
            and compare_versions(target, max_version) <= 0)


def _match_maven_interval(expression: str, target: str) -> Optional[bool]:
    match = _MAVEN_INTERVAL.match(expression)
    if not match:
        return None
    start, lower, upper, end = match.groups()
    if lower:
        if start == '[' and compare_versions(target, lower) < 0:
            return False
        if start == '(' and compare_versions(target, lower) <= 0:
            return False
    if upper:
        if end == ']' and compare_versions(target, upper) > 0:
            return False
        if end == ')' and compare_versions(target, upper) >= 0:
            return False
    return True


def matches(constraint: Constraint, target: str) -> bool:
    """
    Decides whether a constraint expression accepts a target runtime version.
    Unrecognized expressions never match and never raise.

    Args:
        constraint: Constraint expression or list of expressions
        target: Runtime version to test (ej: "1.20.2")

    Returns:
        True if the constraint accepts the target
    """
    if constraint is None or not target:
        return False

    target = str(target).strip()

    if isinstance(constraint, (list, tuple)):
        return any(matches(item, target) for item in constraint)

    if not isinstance(constraint, str):
        return False

    expression = constraint.strip()
    if not expression:
        return False

    # Exact
    if expression == target:
        return True

    # Combined range ">=A <=B"
    if '>=' in expression and '<=' in expression:
        result = _match_range(expression, target)
        if result is not None:
            return result

    # Trailing wildcard "1.20.x" / "1.20.*"
    if expression.endswith('.x') or expression.endswith('.X') or expression.endswith('.*'):
        base = _WILDCARD_TAIL.sub('', expression)
        return target.startswith(base + '.')

    # Single comparator
    comparator = _COMPARATOR.match(expression)
    if comparator:
        return _satisfies(comparator.group(1), target, comparator.group(2))

    # Approximately equal: same major.minor
    if expression.startswith('~'):
        base_parts = expression[1:].strip().split('.')
        target_parts = target.split('.')
        if len(base_parts) < 2 or len(target_parts) < 2:
            return base_parts[0] == target_parts[0]
        return base_parts[0] == target_parts[0] and base_parts[1] == target_parts[1]

    # Conjunction of comparators ">=1.20 <1.21"
    tokens = expression.split()
    if len(tokens) > 1 and all(_COMPARATOR.match(t) for t in tokens):
        return all(
            _satisfies(m.group(1), target, m.group(2))
            for m in (_COMPARATOR.match(t) for t in tokens)
        )

    if expression == '*':
        return True

    result = _match_maven_interval(expression, target)
    if result is not None:
        return result

    return False


def collapse_versions(versions: Iterable[str]) -> Optional[str]:
    """
    Reduces a list of supported versions to a single constraint.
    One element is returned as is, several become ">=min <=max".

    Args:
        versions: Declared versions (ej: ["1.20.2", "1.20.4"])

    Returns:
        Constraint string or None for an empty list
    """
    items: List[str] = [str(v).strip() for v in versions if v and str(v).strip()]
    if not items:
        return None
    if len(items) == 1:
        return items[0]
    ordered = sorted(items, key=version_tuple)
    return f">={ordered[0]} <={ordered[-1]}"


def extract_version_from_filename(file_name: str) -> Optional[str]:
    """
    Best-effort version guess from an archive filename

    Only a fallback for archives without usable metadata.

    Args:
        file_name: Archive filename (ej: "sodium-fabric-0.5.8+mc1.20.4.jar")

    Returns:
        Version string or None
    """
    if not file_name:
        return None
    clean = re.sub(r'\.jar(\.disabled)?$', '', file_name, flags=re.IGNORECASE)
    patterns = [
        r'[-_](\d+\.\d+\.\d+[\w.+-]*)',
        r'[-_]v(\d+\.\d+\.\d+[\w.+-]*)',
        r'\s+(\d+\.\d+\.\d+[\w.+-]*)',
        r'[\[(](\d+\.\d+\.\d+[\w.-]*?)[)\]]',
        r'mc\d+\.\d+\.\d+[^\d]*(\d+\.\d+[.\d]*[\w-]*)',
        r'(\d+\.\d+[.\d]*[\w-]*)$',
    ]
    for pattern in patterns:
        match = re.search(pattern, clean)
        if match and match.group(1):
            return match.group(1)
    return None


def is_release_version(version: str) -> bool:
    """True for plain release versions, False for snapshots and pre-releases"""
    if not version or not isinstance(version, str):
        return False
    lower = version.lower()
    if _SNAPSHOT.search(lower):
        return False
    return not any(keyword in lower for keyword in _NON_RELEASE_KEYWORDS)
