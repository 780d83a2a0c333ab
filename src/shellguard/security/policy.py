"""
Security policy with pattern-based command classification.

A denylist, not a sandbox. Obfuscated commands can slip past the patterns;
the snapshot store is what makes their effects recoverable.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from shellguard._types import Severity, Verdict


class SecurityViolation(Exception):
    """
    Raised when a blocked command is surfaced as an exception.

    Attributes:
        command: The command that was blocked.
        reason: Why the command was blocked.
    """

    def __init__(self, reason: str, command: str = "") -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Security violation: {reason}")


# Tier 1: never run. Compiled regex with human-readable descriptions.
DANGEROUS_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Filesystem destruction
    (
        re.compile(
            r"\brm\s+(?:-{1,2}[\w-]+\s+)*"
            r"(?:/(?:bin|boot|dev|etc|home|lib|lib64|opt|root|sbin|srv|usr|var)?|~|\$HOME|\$\{HOME\})"
            r"/?\*?(?=\s|$|[;&|)])"
        ),
        "Recursive delete of root or home directory",
    ),
    # Direct disk access
    (re.compile(r"\bdd\b[^|;&]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)"), "Direct disk write via dd"),
    (
        re.compile(r">\s*/dev/(?:sd[a-z]|hd[a-z]|vd[a-z]|xvd[a-z]|nvme\d|mmcblk\d|disk\d)"),
        "Direct write to a block device",
    ),
    (re.compile(r"\bmkfs(?:\.\w+)?\b"), "Filesystem creation/destruction"),
    (re.compile(r"\bwipefs\b"), "Filesystem signature wipe"),
    (re.compile(r"\bshred\b[^|;&]*\s/dev/"), "Device wipe via shred"),
    # Fork bombs
    (re.compile(r":\s*\(\s*\)\s*\{.*\}"), "Fork bomb pattern"),
    (re.compile(r"\b(\w+)\s*\(\s*\)\s*\{[^}]*\b\1\s*\|\s*\1\b"), "Fork bomb pattern"),
    # Remote code execution
    (
        re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?(?:ba|da|k|z)?sh\b"),
        "Remote code execution via curl|sh",
    ),
    (
        re.compile(r"\b(?:curl|wget)\b[^|]*\|\s*(?:sudo\s+)?python[\d.]*\b"),
        "Remote code execution via curl|python",
    ),
    (
        re.compile(r"\b(?:ba|z)?sh\s+<\(\s*(?:curl|wget)\b"),
        "Remote code execution via process substitution",
    ),
    (re.compile(r"\beval\s+.*\$"), "eval of expanded shell variables"),
    # Privileged system state
    (re.compile(r"\b(?:shutdown|reboot|halt|poweroff)\b"), "System shutdown or reboot"),
    (re.compile(r"\binit\s+[06]\b"), "System shutdown or reboot via init"),
    (re.compile(r"\bsystemctl\s+(?:reboot|poweroff|halt|kexec)\b"), "System shutdown or reboot via systemctl"),
    (re.compile(r"\bchmod\s+(?:-R\s+)?0?777\s+/(?=\s|$)"), "Dangerous permission change on root"),
    (re.compile(r"\bchown\s+-R\s+\S+\s+/(?=\s|$)"), "Recursive ownership change on root"),
]

# Tier 2: allowed only after a human approves.
CONFIRMATION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(?:npm|yarn|pnpm)\s+publish\b"), "Package publish"),
    (re.compile(r"\bgit\s+push\b.*\s(?:--force(?:-with-lease)?|-f)\b"), "Force push rewrites remote history"),
    (re.compile(r"\bsudo\b"), "Privilege escalation via sudo"),
    (
        re.compile(r"\bdocker\s+(?:system|image|container|volume|network|builder)\s+prune\b"),
        "Destructive container prune",
    ),
]

# Tier 3: shell metacharacters and command substitution.
INJECTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"[;&|`]"), "Shell metacharacter"),
    (re.compile(r"\$\("), "Command substitution"),
]

# Commands that may use metacharacters.
SAFE_USAGE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^(?:npm|yarn|pnpm)\s"),
    re.compile(r"^git\s"),
    re.compile(r"^echo\s"),
]

INJECTION_REASON = "Potential shell injection detected"

# `2>&1`, `>&2`, `<&0` are redirections, not command separators.
_FD_DUPLICATION = re.compile(r"\d*[<>]&\d+")
_BARE_COMMAND = re.compile(r"^[\w./-]+(?:\s|$)")


@dataclass
class SecurityPolicy:
    """
    Three-tier command classifier.

    Tiers are evaluated in order and the first match wins, so a command that
    is both dangerous and confirmation-worthy is blocked:

    1. ``blocked_patterns`` -> ``Verdict.blocked`` (critical)
    2. ``confirmation_patterns`` -> ``Verdict.requires_confirmation``
    3. injection heuristics, unless a safe-usage rule applies -> ``Verdict.blocked`` (error)
    4. otherwise ``Verdict.allowed``
    """

    blocked_patterns: list[tuple[re.Pattern[str], str]] = field(
        default_factory=lambda: list(DANGEROUS_PATTERNS)
    )
    confirmation_patterns: list[tuple[re.Pattern[str], str]] = field(
        default_factory=lambda: list(CONFIRMATION_PATTERNS)
    )
    safe_usage_patterns: list[re.Pattern[str]] = field(
        default_factory=lambda: list(SAFE_USAGE_PATTERNS)
    )
    check_injection: bool = True

    @classmethod
    def standard(cls) -> SecurityPolicy:
        """
        Create the standard security policy (recommended).

        Blocks known-dangerous patterns and likely injections, and asks for
        confirmation on privileged or irreversible remote operations.
        """
        return cls()

    def classify(self, command: str) -> Verdict:
        """
        Classify a command. Pure and deterministic, never raises.

        Args:
            command: The raw command text.

        Returns:
            The Verdict. Empty commands are allowed (a shell no-op).
        """
        text = command.strip()
        if not text:
            return Verdict.allowed()

        for pattern, reason in self.blocked_patterns:
            if pattern.search(text):
                return Verdict.blocked(reason, pattern=pattern.pattern, severity=Severity.CRITICAL)

        for pattern, reason in self.confirmation_patterns:
            if pattern.search(text):
                return Verdict.requires_confirmation(reason, pattern=pattern.pattern)

        if self.check_injection:
            scrubbed = _FD_DUPLICATION.sub(" ", text)
            for pattern, _ in INJECTION_PATTERNS:
                if pattern.search(scrubbed) and not self._is_safe_usage(scrubbed):
                    return Verdict.blocked(INJECTION_REASON, pattern=pattern.pattern, severity=Severity.ERROR)

        return Verdict.allowed()

    def _is_safe_usage(self, command: str) -> bool:
        if any(pattern.search(command) for pattern in self.safe_usage_patterns):
            return True
        return _is_simple_conjunction(command)

    def add_blocked_pattern(self, pattern: str, reason: str) -> None:
        """
        Add a custom blocked pattern.

        Args:
            pattern: Regex pattern string.
            reason: Human-readable reason for blocking.
        """
        self.blocked_patterns.append((re.compile(pattern), reason))

    def add_confirmation_pattern(self, pattern: str, reason: str) -> None:
        """Add a custom pattern that requires human confirmation."""
        self.confirmation_patterns.append((re.compile(pattern), reason))


def _is_simple_conjunction(command: str) -> bool:
    """True for ``a && b`` where both sides are bare commands."""
    parts = command.split("&&")
    if len(parts) != 2:
        return False
    for part in parts:
        part = part.strip()
        if not _BARE_COMMAND.match(part):
            return False
        if any(pattern.search(part) for pattern, _ in INJECTION_PATTERNS):
            return False
    return True
