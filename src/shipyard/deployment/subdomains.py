"""Custom subdomain rules, detailed validation and suggestions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

SUBDOMAIN_MIN_LENGTH = 3
SUBDOMAIN_MAX_LENGTH = 63
MAX_SUGGESTIONS = 10

SUBDOMAIN_PATTERN = re.compile(r"[a-z0-9](?:[a-z0-9-]*[a-z0-9])?", re.IGNORECASE)
RESERVED_SUBDOMAINS: frozenset[str] = frozenset(
    {
        "api",
        "www",
        "mail",
        "ftp",
        "admin",
        "app",
        "dev",
        "test",
        "staging",
        "blog",
        "docs",
        "help",
        "support",
        "status",
        "portal",
        "dashboard",
    },
)


@dataclass(slots=True)
class SubdomainRules:
    min_length: int = SUBDOMAIN_MIN_LENGTH
    max_length: int = SUBDOMAIN_MAX_LENGTH
    allowed_characters: str = "letters (a-z), numbers (0-9), and hyphens (-)"
    restrictions: tuple[str, ...] = (
        "Cannot start or end with hyphens",
        "Cannot contain consecutive hyphens",
        "Cannot use reserved words (api, www, mail, etc.)",
    )
    examples: tuple[str, ...] = ("myproject", "awesome-app", "portfolio2024")


@dataclass(slots=True)
class SubdomainValidation:
    """Detailed validation: errors make the label invalid, warnings do not."""

    subdomain: str
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rules: SubdomainRules = field(default_factory=SubdomainRules)


@dataclass(slots=True)
class SubdomainSuggestion:
    subdomain: str
    domain: str
    available: bool


def is_valid_subdomain(subdomain: str) -> bool:
    """3-63 characters, letters/digits/hyphens, no leading or trailing hyphen."""

    if not SUBDOMAIN_MIN_LENGTH <= len(subdomain) <= SUBDOMAIN_MAX_LENGTH:
        return False
    return SUBDOMAIN_PATTERN.fullmatch(subdomain) is not None


def validate_subdomain_detailed(subdomain: str) -> SubdomainValidation:
    errors: list[str] = []
    warnings: list[str] = []

    if len(subdomain) < SUBDOMAIN_MIN_LENGTH:
        errors.append(f"Subdomain must be at least {SUBDOMAIN_MIN_LENGTH} characters long")
    if len(subdomain) > SUBDOMAIN_MAX_LENGTH:
        errors.append(f"Subdomain cannot exceed {SUBDOMAIN_MAX_LENGTH} characters")
    if SUBDOMAIN_PATTERN.fullmatch(subdomain) is None:
        errors.append(
            "Subdomain can only contain letters, numbers, and hyphens, "
            "and cannot start or end with hyphens",
        )

    if "--" in subdomain:
        warnings.append("Consecutive hyphens may cause confusion")
    if subdomain.isdigit():
        warnings.append("Numeric-only subdomains may be confusing")
    if subdomain.lower() in RESERVED_SUBDOMAINS:
        warnings.append("This subdomain uses a reserved word and may cause conflicts")

    return SubdomainValidation(
        subdomain=subdomain,
        valid=not errors,
        errors=errors,
        warnings=warnings,
    )


def is_subdomain_available(subdomain: str) -> bool:
    """Availability is checked against the reserved list only."""

    return subdomain.lower() not in RESERVED_SUBDOMAINS


def full_domain(subdomain: str, base_domain: str) -> str:
    return f"{subdomain.lower()}.{base_domain}"


def suggest_subdomains(base: str, *, base_domain: str) -> list[SubdomainSuggestion]:
    """Up to ``MAX_SUGGESTIONS`` valid variants of ``base``, in a stable order."""

    clean = re.sub(r"[^a-z0-9]", "", base.lower())
    candidates = (
        clean,
        f"{clean}1",
        f"{clean}2",
        f"{clean}2024",
        f"{clean}app",
        f"my-{clean}",
        f"{clean}-app",
        f"{clean}-web",
        f"{clean}-site",
        f"{clean}-dev",
        f"awesome-{clean}",
        f"{clean}-prod",
    )

    suggestions: list[SubdomainSuggestion] = []
    seen: set[str] = set()
    for candidate in candidates:
        if candidate in seen or not is_valid_subdomain(candidate):
            continue
        seen.add(candidate)
        suggestions.append(
            SubdomainSuggestion(
                subdomain=candidate,
                domain=full_domain(candidate, base_domain),
                available=is_subdomain_available(candidate),
            ),
        )
        if len(suggestions) >= MAX_SUGGESTIONS:
            break
    return suggestions
