from __future__ import annotations

from agentdesk.core.config import get_settings
from agentdesk.core.errors import ComposerConfigError
from agentdesk.providers.composer.base import ReplyComposer
from agentdesk.providers.composer.template import TemplateReplyComposer


def get_reply_composer(name: str | None = None) -> ReplyComposer:
    provider = (name or get_settings().reply_composer or "template").lower()
    if provider == "template":
        return TemplateReplyComposer()
    raise ComposerConfigError(f"Unknown reply composer: {provider}")
