import logging
from datetime import datetime
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select

from knowledge.api.deps import get_embedder_dependency, get_web_searcher
from knowledge.auth import RequestContext, get_request_context
from knowledge.models import Chat, Message
from knowledge.schemas import (
    AnswerResponse,
    ChatCreate,
    ChatResponse,
    CitationItem,
    MessageItem,
    QueryRequest,
)
from knowledge.services.corpus import RequesterContext
from knowledge.services.embeddings import Embedder
from knowledge.services.retrieval import CascadeContext, WebSearcher, answer_query

logger = logging.getLogger(__name__)
router = APIRouter()


def to_chat_response(chat: Chat) -> ChatResponse:
    return ChatResponse(
        id=chat.id, user_id=chat.user_id, title=chat.title, created_at=chat.created_at
    )


async def get_own_chat(ctx: RequestContext, chat_id: UUID) -> Chat:
    chat = await ctx.session.get(Chat, chat_id)
    if not chat or (chat.user_id != ctx.user_id and not ctx.is_admin):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    return chat


@router.post("/v0/query", response_model=AnswerResponse)
async def query(
    request: QueryRequest,
    ctx: RequestContext = Depends(get_request_context),
    embedder: Embedder | None = Depends(get_embedder_dependency),
    web: WebSearcher | None = Depends(get_web_searcher),
) -> AnswerResponse:
    """
    Answer a question through the retrieval cascade: curated Q&A, then the
    documents the caller's role may read, then web search.

    With a chat_id, the question and answer are appended to that chat.
    """
    chat = await get_own_chat(ctx, request.chat_id) if request.chat_id else None
    asked_at = datetime.utcnow()

    cascade = CascadeContext(
        session=ctx.session,
        requester=RequesterContext(role=ctx.role, user_id=ctx.user_id),
        embedder=embedder,
        web=web,
    )
    answer = await answer_query(request.query, cascade, chat_id=chat.id if chat else None)

    message_id = None
    if chat:
        ctx.session.add(
            Message(
                id=uuid4(),
                chat_id=chat.id,
                role="user",
                content=request.query,
                created_at=asked_at,
            )
        )
        message_id = uuid4()
        ctx.session.add(
            Message(
                id=message_id,
                chat_id=chat.id,
                role="assistant",
                content=answer.text or "",
                provenance=answer.provenance,
                created_at=datetime.utcnow(),
            )
        )
        chat.updated_at = datetime.utcnow()
        await ctx.session.commit()

    return AnswerResponse(
        provenance=answer.provenance,
        answer=answer.text,
        confidence=answer.confidence,
        citations=[CitationItem(**c) for c in answer.citations],
        notice=answer.notice,
        from_internal_memory=answer.from_internal_memory,
        interaction_id=answer.interaction_id,
        message_id=message_id,
    )


@router.post("/v0/chats", response_model=ChatResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    request: ChatCreate,
    ctx: RequestContext = Depends(get_request_context),
) -> ChatResponse:
    chat = Chat(id=uuid4(), user_id=ctx.user_id, title=request.title)
    ctx.session.add(chat)
    await ctx.session.commit()
    return to_chat_response(chat)


@router.get("/v0/chats", response_model=list[ChatResponse])
async def list_chats(
    limit: int = Query(50, ge=1, le=200),
    ctx: RequestContext = Depends(get_request_context),
) -> list[ChatResponse]:
    result = await ctx.session.execute(
        select(Chat)
        .where(Chat.user_id == ctx.user_id)
        .order_by(Chat.updated_at.desc())
        .limit(limit)
    )
    return [to_chat_response(c) for c in result.scalars().all()]


@router.get("/v0/chats/{chat_id}/messages", response_model=list[MessageItem])
async def list_messages(
    chat_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
) -> list[MessageItem]:
    chat = await get_own_chat(ctx, chat_id)
    result = await ctx.session.execute(
        select(Message).where(Message.chat_id == chat.id).order_by(Message.created_at)
    )
    return [
        MessageItem(
            id=m.id,
            role=m.role,
            content=m.content,
            provenance=m.provenance,
            created_at=m.created_at,
        )
        for m in result.scalars().all()
    ]
