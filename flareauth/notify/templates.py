"""
FlareAuth Notify Templates - sandboxed Jinja2 rendering of notifications.

Each template id has one file per channel part:

    {template}/{channel}.subject.txt   (email only)
    {template}/{channel}.txt           plain text body (required)
    {template}/{channel}.html          HTML body (optional, autoescaped)

Host directories passed as ``template_dirs`` are searched first, so a host
can override any built-in by shipping a file with the same name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from jinja2 import ChoiceLoader, DictLoader, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2.exceptions import TemplateError, TemplateNotFound
from jinja2.sandbox import SandboxedEnvironment

from ..config import AuthConfig
from ..result import Err, Ok, Result
from .faults import TemplateFault
from .task import Channel

logger = logging.getLogger("flareauth.notify.templates")


BUILTIN_TEMPLATES: dict[str, str] = {
    # Step-up codes
    "two_factor_code/email.subject.txt": "{{ project_name }} verification code",
    "two_factor_code/email.txt": (
        "Your {{ project_name }} verification code is {{ code }}.\n"
        "It is valid for {{ expiry_seconds }} seconds. "
        "If you did not try to sign in, change your password."
    ),
    "two_factor_code/email.html": (
        "<p>Your {{ project_name }} verification code is <strong>{{ code }}</strong>.</p>"
        "<p>It is valid for {{ expiry_seconds }} seconds. "
        "If you did not try to sign in, change your password.</p>"
    ),
    "two_factor_code/sms.txt": (
        "{{ message | default(project_name ~ ' sign-in') }}: "
        "Your OTP is {{ code }} (valid for {{ expiry_seconds }} seconds)"
    ),
    # Email verification
    "email_verification/email.subject.txt": "Verify your {{ project_name }} email address",
    "email_verification/email.txt": (
        "Confirm your email address by opening the link below:\n\n{{ action_url }}\n\n"
        "The link expires in {{ expiry_minutes }} minutes."
    ),
    "email_verification/email.html": (
        "<p>Confirm your email address:</p>"
        '<p><a href="{{ action_url }}">Verify email</a></p>'
        "<p>The link expires in {{ expiry_minutes }} minutes.</p>"
    ),
    # Password reset
    "password_reset/email.subject.txt": "Reset your {{ project_name }} password",
    "password_reset/email.txt": (
        "We received a request to reset your password.\n\n"
        "Open {{ action_url }} or use this reset token:\n\n{{ token }}\n\n"
        "It expires in {{ expiry_minutes }} minutes. "
        "If you did not ask for a reset, ignore this message."
    ),
    "password_reset/email.html": (
        "<p>We received a request to reset your password.</p>"
        '<p><a href="{{ action_url }}">Reset password</a></p>'
        "<p>It expires in {{ expiry_minutes }} minutes. "
        "If you did not ask for a reset, ignore this message.</p>"
    ),
}


@dataclass(frozen=True)
class RenderedContent:
    """Channel-ready message body."""

    text: str
    subject: Optional[str] = None
    html: Optional[str] = None


class NotificationRenderer:
    """Renders notification tasks in a sandboxed Jinja2 environment."""

    def __init__(
        self,
        template_dirs: Sequence[str | Path] = (),
        project_name: str = "FlareAuth",
        globals: Optional[Mapping[str, Any]] = None,
    ):
        loaders = [FileSystemLoader([str(Path(d)) for d in template_dirs])] if template_dirs else []
        loaders.append(DictLoader(BUILTIN_TEMPLATES))

        self.env = SandboxedEnvironment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
            undefined=StrictUndefined,
            keep_trailing_newline=False,
            enable_async=True,
        )
        self.env.globals["project_name"] = project_name
        if globals:
            self.env.globals.update(globals)

    @classmethod
    def from_config(
        cls,
        config: AuthConfig,
        template_dirs: Sequence[str | Path] = (),
        globals: Optional[Mapping[str, Any]] = None,
    ) -> NotificationRenderer:
        return cls(template_dirs, project_name=config.project_name, globals=globals)

    async def render(
        self,
        template: str,
        channel: Channel | str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> Result[RenderedContent]:
        channel = Channel(channel)
        base = f"{template}/{channel.value}"
        context = dict(variables or {})

        try:
            text = await self._render_part(f"{base}.txt", context, required=True)
            subject = await self._render_part(f"{base}.subject.txt", context)
            html = await self._render_part(f"{base}.html", context)
        except TemplateNotFound:
            return Err(TemplateFault(
                f"No {channel.value} template for {template!r}",
                template_name=template,
            ))
        except TemplateError as exc:
            logger.error("Failed to render template %s: %s", base, exc)
            fault = TemplateFault(f"Failed to render {template!r}", template_name=template)
            fault.__cause__ = exc
            return Err(fault)

        if subject is not None:
            subject = " ".join(subject.split())
        return Ok(RenderedContent(text=text, subject=subject, html=html))

    async def _render_part(self, name: str, context: dict[str, Any], required: bool = False) -> Optional[str]:
        try:
            tmpl = self.env.get_template(name)
        except TemplateNotFound:
            if required:
                raise
            return None
        return await tmpl.render_async(**context)
