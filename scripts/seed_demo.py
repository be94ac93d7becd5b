from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from agentdesk.domain.enums import Tone
from agentdesk.domain.models import Agent, KnowledgeFragment, utc_now
from agentdesk.persistence.db import SessionLocal
from agentdesk.services.agents import build_system_prompt


DEMO_TENANT_ID = "t1"
DEMO_AGENT_ID = "demo-agent"
DEMO_AGENT_NAME = "Ava"
DEMO_BUSINESS_NAME = "Acme Outfitters"


@dataclass(frozen=True)
class DemoDocument:
    fragment_id: str
    source_name: str
    content: str


def build_demo_documents() -> tuple[DemoDocument, ...]:
    return (
        DemoDocument(
            fragment_id="demo-refunds",
            source_name="refund-policy.md",
            content="Refunds are processed within 5 business days of receiving the returned item.",
        ),
        DemoDocument(
            fragment_id="demo-shipping",
            source_name="shipping.md",
            content="Standard shipping takes 3 to 7 days. Express shipping arrives in 2 days.",
        ),
        DemoDocument(
            fragment_id="demo-hours",
            source_name="support-hours.md",
            content="Support is available Monday to Friday, 9am to 6pm Eastern time.",
        ),
        DemoDocument(
            fragment_id="demo-returns",
            source_name="returns.md",
            content="Items can be returned within 30 days with the original receipt.",
        ),
    )


async def seed_demo() -> int:
    async with SessionLocal() as session:
        agent = await session.get(Agent, DEMO_AGENT_ID)
        if agent is None:
            now = utc_now()
            session.add(
                Agent(
                    id=DEMO_AGENT_ID,
                    tenant_id=DEMO_TENANT_ID,
                    name=DEMO_AGENT_NAME,
                    business_name=DEMO_BUSINESS_NAME,
                    description="Answers order and returns questions.",
                    tone=Tone.FRIENDLY.value,
                    system_prompt=build_system_prompt(
                        name=DEMO_AGENT_NAME,
                        business_name=DEMO_BUSINESS_NAME,
                        tone=Tone.FRIENDLY,
                    ),
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
            )
            await session.flush()

        existing = await session.execute(
            select(KnowledgeFragment.id).where(KnowledgeFragment.agent_id == DEMO_AGENT_ID).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            await session.commit()
            print("Demo agent already seeded; skipping.")
            return 0

        documents = build_demo_documents()
        for document in documents:
            session.add(
                KnowledgeFragment(
                    id=document.fragment_id,
                    agent_id=DEMO_AGENT_ID,
                    tenant_id=DEMO_TENANT_ID,
                    source_name=document.source_name,
                    content=document.content,
                    metadata_json={"source_type": "demo"},
                    uploaded_at=utc_now(),
                )
            )
        await session.commit()
        print(f"Seeded demo agent with {len(documents)} knowledge fragments.")
        return 0


def main() -> int:
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
