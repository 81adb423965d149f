#!filepath: src/devotional_app/emails.py
from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from devotional_app.utils.logger import get_logger

logger = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates" / "email"

KNOWN_PLACEHOLDERS = frozenset(
    {
        "ConfirmationURL",
        "Token",
        "TokenHash",
        "SiteURL",
        "Email",
        "NewEmail",
        "RedirectTo",
        "Data",
    }
)

REQUIRED_PLACEHOLDERS: dict[str, frozenset[str]] = {
    "confirm_signup": frozenset({"ConfirmationURL"}),
    "magic_link": frozenset({"ConfirmationURL"}),
    "reset_password": frozenset({"ConfirmationURL"}),
    "invite_user": frozenset({"ConfirmationURL", "SiteURL"}),
    "change_email": frozenset({"ConfirmationURL", "Email", "NewEmail"}),
}

_ACTION_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_RE = re.compile(r"^\s*\.([A-Za-z]+)(?:\.[A-Za-z_][A-Za-z0-9_]*)*\s*$")


class EmailTemplateError(ValueError):
    """Template uses unknown placeholders or lacks required ones."""


@dataclass(frozen=True, slots=True)
class EmailTemplate:
    """Auth email body, substituted by the auth provider at send time.

    Args:
        name: Flow name, such as ``magic_link``.
        text: Raw HTML.
    """

    name: str
    text: str

    @property
    def placeholders(self) -> set[str]:
        """Top-level field names referenced, such as ``ConfirmationURL``.

        Raises:
            EmailTemplateError: If an action is not a plain field reference.
        """
        found: set[str] = set()
        for m in _ACTION_RE.finditer(self.text or ""):
            field = _FIELD_RE.match(m.group(1))
            if field is None:
                raise EmailTemplateError(
                    f"Email {self.name} has unsupported action {m.group(0)}"
                )
            found.add(field.group(1))
        return found

    def check(self) -> None:
        """Validate placeholders against the flow's rules.

        Raises:
            EmailTemplateError: On unknown or missing placeholders.
        """
        used = self.placeholders
        unknown = sorted(used - KNOWN_PLACEHOLDERS)
        if unknown:
            raise EmailTemplateError(
                f"Email {self.name} uses unknown placeholders {', '.join(unknown)}"
            )
        required = REQUIRED_PLACEHOLDERS.get(self.name, frozenset())
        missing = sorted(required - used)
        if missing:
            raise EmailTemplateError(
                f"Email {self.name} missing required placeholders {', '.join(missing)}"
            )


def load_template(name: str, templates_dir: Optional[Path] = None) -> EmailTemplate:
    base = templates_dir or TEMPLATES_DIR
    path = base / f"{name}.html"
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise EmailTemplateError(f"Email template {name} not readable at {path}: {e}") from e
    return EmailTemplate(name=name, text=text)


def check_templates(templates_dir: Optional[Path] = None) -> dict[str, Optional[str]]:
    """Check every known flow.

    Returns:
        dict[str, Optional[str]]: Flow name to error message, None when valid.
    """
    results: dict[str, Optional[str]] = {}
    for name in REQUIRED_PLACEHOLDERS:
        try:
            load_template(name, templates_dir).check()
            results[name] = None
        except EmailTemplateError as e:
            logger.error(str(e))
            results[name] = str(e)
    return results
