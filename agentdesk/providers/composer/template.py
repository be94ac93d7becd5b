from __future__ import annotations

from typing import Any

from agentdesk.domain.enums import Tone
from agentdesk.domain.models import Agent
from agentdesk.providers.composer.base import ComposedReply
from agentdesk.providers.relevance.base import ScoredFragment


# Keep each cited fragment short enough for a chat bubble.
MAX_FRAGMENT_CHARS = 400

_OPENERS: dict[Tone, str] = {
    Tone.PROFESSIONAL: "Thank you for your question.",
    Tone.FRIENDLY: "Happy to help!",
    Tone.TECHNICAL: "Here are the relevant details.",
    Tone.CASUAL: "Sure thing!",
}

_NO_ANSWER: dict[Tone, str] = {
    Tone.PROFESSIONAL: (
        "I'm sorry, but I don't have information about that in the {business} knowledge base. "
        "I can connect you with a member of our team who can help."
    ),
    Tone.FRIENDLY: (
        "Sorry, I couldn't find anything about that in the {business} knowledge base. "
        "Would you like me to connect you with someone from the team?"
    ),
    Tone.TECHNICAL: (
        "No matching entry exists in the {business} knowledge base for this question. "
        "A human specialist can follow up with you."
    ),
    Tone.CASUAL: (
        "Hmm, I don't have anything on that in the {business} knowledge base. "
        "I can get a real person from the team to help you out."
    ),
}


def _tone_of(agent: Agent) -> Tone:
    try:
        return Tone(agent.tone)
    except ValueError:
        return Tone.PROFESSIONAL


def _excerpt(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= MAX_FRAGMENT_CHARS:
        return collapsed
    return collapsed[: MAX_FRAGMENT_CHARS - 3].rstrip() + "..."


class TemplateReplyComposer:
    """Deterministic composer that quotes retrieved knowledge in the agent's tone."""

    name = "template"

    def compose(
        self,
        *,
        agent: Agent,
        question: str,
        fragments: list[ScoredFragment],
        history: list[dict[str, Any]],
    ) -> ComposedReply:
        # Templates are stateless; history and question wording do not change the output.
        _ = question, history
        tone = _tone_of(agent)
        if not fragments:
            # Never fabricate: an ungrounded question gets an explicit "not covered" reply.
            return ComposedReply(
                text=_NO_ANSWER[tone].format(business=agent.business_name),
                confidence=0.0,
                grounded=False,
            )

        lines = [_OPENERS[tone], f"Here's what the {agent.business_name} knowledge base says:"]
        for fragment in fragments:
            lines.append(f"- {_excerpt(fragment.content)} (source: {fragment.source_name})")
        return ComposedReply(
            text="\n".join(lines),
            confidence=max(fragment.score for fragment in fragments),
            grounded=True,
            fragment_ids=[fragment.fragment_id for fragment in fragments],
        )
