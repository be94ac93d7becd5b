"""Conversation store: session lifecycle and ordered message append.

A conversation is ``Open`` from its first customer message until it is
resolved (explicitly, by the idle sweep, or by the auto-resolve policy).
``Resolved`` is terminal: later messages for the same session id start a new
conversation. Every state change for one ``(agent_id, session_id)`` pair runs
under that pair's lock from :mod:`agentdesk.services.session_locks`; writers
in other processes are arbitrated by conditional updates on the open flag.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from agentdesk.core.errors import ConflictError, InvalidInputError, NotFoundError, UnavailableError
from agentdesk.domain.enums import MessageRole, ResolutionReason, Role
from agentdesk.domain.models import Conversation, Message, utc_now
from agentdesk.persistence.repos import conversations as conversations_repo
from agentdesk.persistence.repos import messages as messages_repo
from agentdesk.services.agents import load_owned_agent
from agentdesk.services.session_locks import SessionLockTable, get_session_locks
from agentdesk.services.tenancy import Principal, is_allowed, require_role


logger = logging.getLogger(__name__)

# One retry covers a writer in another process winning the unique-index race
# or resolving the conversation between our read and our write.
_APPEND_ATTEMPTS = 2


class _ResolvedElsewhere(Exception):
    """The open conversation was resolved by a concurrent writer."""


@dataclass
class ConversationRecord:
    conversation: Conversation
    messages: list[Message]

    @property
    def state(self) -> str:
        return "resolved" if self.conversation.is_resolved else "open"


def _require_content(content: str | None) -> str:
    if content is None or not content.strip():
        raise InvalidInputError("Message content must not be empty", details={"field": "content"})
    return content


async def _load_conversation(
    session: AsyncSession, conversation_id: str, principal: Principal
) -> Conversation:
    try:
        conversation = await conversations_repo.get_conversation(session, conversation_id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while loading conversation") from exc
    if conversation is None or not is_allowed(principal, conversation.tenant_id):
        raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
    return conversation


async def append_customer_message(
    session: AsyncSession,
    *,
    agent_id: str,
    session_id: str,
    content: str,
    principal: Principal,
    locks: SessionLockTable | None = None,
) -> tuple[Conversation, Message]:
    require_role(principal, Role.SERVICE)
    content = _require_content(content)
    if not session_id or not session_id.strip():
        raise InvalidInputError("session_id must not be empty", details={"field": "session_id"})
    agent = await load_owned_agent(session, agent_id, principal)
    # Copy identifiers out of the ORM object; a rollback below expires it.
    owned_agent_id = agent.id
    tenant_id = agent.tenant_id
    if locks is None:
        locks = get_session_locks()

    async with locks.hold(owned_agent_id, session_id):
        for attempt in range(1, _APPEND_ATTEMPTS + 1):
            try:
                now = utc_now()
                conversation = await conversations_repo.get_open_conversation(
                    session, owned_agent_id, session_id
                )
                created = conversation is None
                if conversation is None:
                    conversation = await conversations_repo.add_conversation(
                        session,
                        Conversation(
                            id=uuid4().hex,
                            agent_id=owned_agent_id,
                            tenant_id=tenant_id,
                            session_id=session_id,
                            is_resolved=False,
                            started_at=now,
                            last_activity_at=now,
                        ),
                    )
                ordinal = await messages_repo.next_ordinal(session, conversation.id)
                message = await messages_repo.add_message(
                    session,
                    conversation_id=conversation.id,
                    role=MessageRole.CUSTOMER.value,
                    content=content,
                    ordinal=ordinal,
                )
                if not await conversations_repo.touch_open_conversation(session, conversation.id, now):
                    raise _ResolvedElsewhere(conversation.id)
                await session.commit()
                set_committed_value(conversation, "last_activity_at", now)
            except (IntegrityError, _ResolvedElsewhere) as exc:
                await session.rollback()
                if attempt >= _APPEND_ATTEMPTS:
                    raise UnavailableError("Concurrent write conflict while appending message") from exc
                logger.warning(
                    "customer_append_retry agent_id=%s session_id=%s attempt=%s",
                    owned_agent_id,
                    session_id,
                    attempt,
                )
                continue
            except SQLAlchemyError as exc:
                await session.rollback()
                raise UnavailableError("Database error while appending message") from exc

            if created:
                logger.info(
                    "conversation_opened conversation_id=%s agent_id=%s session_id=%s",
                    conversation.id,
                    owned_agent_id,
                    session_id,
                )
            return conversation, message
    # The loop either returns or raises; this keeps type checkers satisfied.
    raise UnavailableError("Unable to append message")


async def append_agent_message(
    session: AsyncSession,
    *,
    conversation_id: str,
    content: str,
    principal: Principal,
    locks: SessionLockTable | None = None,
) -> Message:
    require_role(principal, Role.SERVICE, Role.ADMIN)
    content = _require_content(content)
    conversation = await _load_conversation(session, conversation_id, principal)
    if locks is None:
        locks = get_session_locks()

    async with locks.hold(conversation.agent_id, conversation.session_id):
        for attempt in range(1, _APPEND_ATTEMPTS + 1):
            try:
                # Re-read under the lock: a resolve may have landed since the first load.
                current = await conversations_repo.get_conversation(session, conversation_id, for_update=True)
                if current is None or current.is_resolved:
                    await session.rollback()
                    raise ConflictError(
                        "Conversation is resolved; start a new one with a customer message",
                        details={"conversation_id": conversation_id},
                    )
                ordinal = await messages_repo.next_ordinal(session, conversation_id)
                message = await messages_repo.add_message(
                    session,
                    conversation_id=conversation_id,
                    role=MessageRole.AGENT.value,
                    content=content,
                    ordinal=ordinal,
                )
                if not await conversations_repo.touch_open_conversation(
                    session, conversation_id, message.created_at
                ):
                    await session.rollback()
                    raise ConflictError(
                        "Conversation was resolved while the reply was written",
                        details={"conversation_id": conversation_id},
                    )
                await session.commit()
                set_committed_value(current, "last_activity_at", message.created_at)
                return message
            except IntegrityError as exc:
                await session.rollback()
                if attempt >= _APPEND_ATTEMPTS:
                    raise UnavailableError("Concurrent write conflict while appending message") from exc
                logger.warning(
                    "agent_append_retry conversation_id=%s attempt=%s", conversation_id, attempt
                )
            except SQLAlchemyError as exc:
                await session.rollback()
                raise UnavailableError("Database error while appending message") from exc
    raise UnavailableError("Unable to append message")


async def _resolve_locked(
    session: AsyncSession,
    conversation_id: str,
    reason: ResolutionReason,
    *,
    idle_before: datetime | None = None,
) -> bool:
    # Caller holds the session lock; the conditional write arbitrates across processes.
    changed = await conversations_repo.resolve_open_conversation(
        session,
        conversation_id,
        reason=reason.value,
        resolved_at=utc_now(),
        idle_before=idle_before,
    )
    await session.commit()
    return changed


async def _resolve(
    session: AsyncSession,
    *,
    conversation_id: str,
    principal: Principal,
    reason: ResolutionReason,
    locks: SessionLockTable | None,
) -> Conversation:
    conversation = await _load_conversation(session, conversation_id, principal)
    if locks is None:
        locks = get_session_locks()
    async with locks.hold(conversation.agent_id, conversation.session_id):
        try:
            changed = await _resolve_locked(session, conversation_id, reason)
            await session.refresh(conversation)
        except SQLAlchemyError as exc:
            await session.rollback()
            raise UnavailableError("Database error while resolving conversation") from exc
    if changed:
        logger.info("conversation_resolved conversation_id=%s reason=%s", conversation_id, reason.value)
    return conversation


async def mark_resolved(
    session: AsyncSession,
    *,
    conversation_id: str,
    principal: Principal,
    reason: ResolutionReason = ResolutionReason.EXPLICIT,
    locks: SessionLockTable | None = None,
) -> Conversation:
    # Idempotent: resolving a resolved conversation succeeds without changes.
    require_role(principal, Role.ADMIN)
    return await _resolve(
        session, conversation_id=conversation_id, principal=principal, reason=reason, locks=locks
    )


async def auto_resolve(
    session: AsyncSession,
    *,
    conversation_id: str,
    principal: Principal,
    locks: SessionLockTable | None = None,
) -> Conversation:
    # Resolution decided by the dispatcher policy on behalf of the channel.
    require_role(principal, Role.SERVICE)
    return await _resolve(
        session,
        conversation_id=conversation_id,
        principal=principal,
        reason=ResolutionReason.AUTO,
        locks=locks,
    )


async def resolve_if_idle(
    session: AsyncSession,
    *,
    conversation_id: str,
    agent_id: str,
    session_id: str,
    cutoff: datetime,
    locks: SessionLockTable | None = None,
) -> bool:
    # Background path: no principal, only ever moves Open -> Resolved.
    # Activity committed after selection, by any process, keeps the conversation open.
    if locks is None:
        locks = get_session_locks()
    async with locks.hold(agent_id, session_id):
        return await _resolve_locked(
            session, conversation_id, ResolutionReason.IDLE_TIMEOUT, idle_before=cutoff
        )


async def get_conversation(
    session: AsyncSession, *, conversation_id: str, principal: Principal
) -> ConversationRecord:
    require_role(principal, Role.ADMIN)
    conversation = await _load_conversation(session, conversation_id, principal)
    try:
        messages = await messages_repo.list_messages(session, conversation.id)
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while loading messages") from exc
    return ConversationRecord(conversation=conversation, messages=messages)


async def list_conversations(
    session: AsyncSession,
    *,
    agent_id: str,
    principal: Principal,
    resolved: bool | None = None,
) -> list[ConversationRecord]:
    require_role(principal, Role.ADMIN)
    agent = await load_owned_agent(session, agent_id, principal)
    try:
        conversations = await conversations_repo.list_conversations(
            session, agent.id, resolved=resolved
        )
        transcripts = await messages_repo.list_messages_for(
            session, [conversation.id for conversation in conversations]
        )
    except SQLAlchemyError as exc:
        raise UnavailableError("Database error while listing conversations") from exc
    return [
        ConversationRecord(conversation=conversation, messages=transcripts.get(conversation.id, []))
        for conversation in conversations
    ]
