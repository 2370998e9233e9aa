"""
Filter syntax parser for ABP-style filter lists.

The base parser is deliberately shallow: it classifies each line as a block,
allow or element-hiding rule and extracts the pattern text. Domain scoping and
resource-type flags are not read from list syntax; they are only set through
explicit configuration (see ``FilterEngine.add_custom_rule``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class RuleKind(Enum):
    """Classification of a rule."""

    BLOCK = "block"
    ALLOW = "allow"
    HIDE = "hide"
    REDIRECT = "redirect"


class ResourceType(Enum):
    """Types of requests handed to the engine by the interception layer."""

    SCRIPT = "script"
    IMAGE = "image"
    STYLESHEET = "stylesheet"
    XMLHTTPREQUEST = "xmlhttprequest"
    SUBDOCUMENT = "subdocument"
    DOCUMENT = "document"
    POPUP = "popup"
    OTHER = "other"


# Resource type name -> ResourceFlags attribute gating it
RESOURCE_FLAG_MAP = {
    "script": "script",
    "image": "image",
    "stylesheet": "stylesheet",
    "xmlhttprequest": "xhr",
    "xhr": "xhr",
    "subdocument": "subdocument",
    "popup": "popup",
}


@dataclass(frozen=True)
class ResourceFlags:
    """Per-rule applicability switches. All enabled by default."""

    script: bool = True
    image: bool = True
    stylesheet: bool = True
    xhr: bool = True
    subdocument: bool = True
    third_party: bool = True
    popup: bool = True

    def applies_to(self, resource_type: str) -> bool:
        """Check whether a rule with these flags applies to a resource type.

        Unrecognised resource types are always applicable.
        """
        attr = RESOURCE_FLAG_MAP.get(resource_type.lower())
        if attr is None:
            return True
        return bool(getattr(self, attr))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ResourceFlags:
        known = {k: bool(v) for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class Rule:
    """Parsed filter rule."""

    pattern: str
    kind: RuleKind = RuleKind.BLOCK
    domains: frozenset[str] | None = None  # Inclusion scope
    exceptions: frozenset[str] | None = None  # Exclusion scope
    resource_flags: ResourceFlags = field(default_factory=ResourceFlags)
    raw: str = ""

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError("Rule pattern must be non-empty")

    def is_decisive(self) -> bool:
        """Whether a match on this rule settles the block decision."""
        return self.kind in (RuleKind.BLOCK, RuleKind.ALLOW)

    def with_scope(
        self,
        domains: Iterable[str] | None = None,
        exceptions: Iterable[str] | None = None,
        resource_flags: ResourceFlags | None = None,
    ) -> Rule:
        """Return a copy of this rule with an explicit scope applied."""
        return Rule(
            pattern=self.pattern,
            kind=self.kind,
            domains=frozenset(domains) if domains is not None else self.domains,
            exceptions=frozenset(exceptions) if exceptions is not None else self.exceptions,
            resource_flags=resource_flags or self.resource_flags,
            raw=self.raw,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "kind": self.kind.value,
            "domains": sorted(self.domains) if self.domains is not None else None,
            "exceptions": sorted(self.exceptions) if self.exceptions is not None else None,
            "resource_flags": asdict(self.resource_flags),
            "raw": self.raw,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Rule:
        domains = data.get("domains")
        exceptions = data.get("exceptions")
        return cls(
            pattern=data["pattern"],
            kind=RuleKind(data.get("kind", "block")),
            domains=frozenset(domains) if domains is not None else None,
            exceptions=frozenset(exceptions) if exceptions is not None else None,
            resource_flags=ResourceFlags.from_dict(data.get("resource_flags") or {}),
            raw=data.get("raw", ""),
        )


def classify_line(line: str) -> RuleKind:
    """Classify a filter line by its syntax."""
    if line.startswith("@@"):
        return RuleKind.ALLOW
    if "##" in line:
        return RuleKind.HIDE
    return RuleKind.BLOCK


def extract_pattern(line: str) -> str:
    """Strip the exception marker and any ``$`` options from a filter line."""
    if line.startswith("@@"):
        line = line[2:]

    # Options follow the first "$"
    modifier_pos = line.find("$")
    if modifier_pos != -1:
        line = line[:modifier_pos]

    return line


def parse_rule(line: str) -> Rule | None:
    """Parse a single filter line.

    Returns None for blank lines, comments, section headers, and lines that
    leave no pattern once options are removed.
    """
    line = line.strip()

    # Skip empty lines, comments and [Adblock Plus 2.0] style headers
    if not line or line.startswith("!") or line.startswith("["):
        return None

    pattern = extract_pattern(line)
    if not pattern:
        logger.debug("Skipping filter line with empty pattern: %s", line[:80])
        return None

    return Rule(pattern=pattern, kind=classify_line(line), raw=line)


def parse_filter_rules(content: str) -> tuple[Rule, ...]:
    """Parse a filter list body into an ordered rule sequence."""
    rules: list[Rule] = []

    for line in content.splitlines():
        rule = parse_rule(line)
        if rule is not None:
            rules.append(rule)

    logger.debug("Parsed %d rules", len(rules))
    return tuple(rules)
