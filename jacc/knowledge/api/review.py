import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from knowledge.api.admin import to_faq_response
from knowledge.api.query import to_chat_response
from knowledge.auth import RequestContext, require_admin
from knowledge.errors import ChatNotFound, CorrectionNotFound, InvalidReviewInput
from knowledge.models import ChatReview, MessageCorrection, ReviewStatus
from knowledge.schemas import (
    CorrectionRequest,
    CorrectionResponse,
    FaqEntryResponse,
    MessageItem,
    PromoteRequest,
    ReviewDetailResponse,
    ReviewListItem,
    ReviewListResponse,
    ReviewRequest,
    ReviewResponse,
    ReviewStatsResponse,
)
from knowledge.services.review import (
    add_correction,
    get_review_detail,
    list_reviews,
    promote_to_curated,
    record_review,
    review_stats,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def to_review_response(review: ChatReview) -> ReviewResponse:
    return ReviewResponse(
        id=review.id,
        chat_id=review.chat_id,
        review_status=review.review_status,
        review_notes=review.review_notes,
        reviewed_by=review.reviewed_by,
        corrections_made=review.corrections_made,
        total_messages=review.total_messages,
        last_reviewed_at=review.last_reviewed_at,
    )


def to_correction_response(correction: MessageCorrection) -> CorrectionResponse:
    return CorrectionResponse(
        id=correction.id,
        chat_id=correction.chat_id,
        message_id=correction.message_id,
        original_content=correction.original_content,
        corrected_content=correction.corrected_content,
        created_by=correction.created_by,
        promoted_faq_id=correction.promoted_faq_id,
        created_at=correction.created_at,
    )


@router.get("/reviews/stats", response_model=ReviewStatsResponse)
async def get_review_stats(
    ctx: RequestContext = Depends(require_admin),
) -> ReviewStatsResponse:
    return ReviewStatsResponse(**await review_stats(ctx.session))


@router.get("/reviews", response_model=ReviewListResponse)
async def get_reviews(
    review_status: ReviewStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: RequestContext = Depends(require_admin),
) -> ReviewListResponse:
    """Chats for the review dashboard; status=pending includes never-reviewed chats."""
    summaries = await list_reviews(ctx.session, review_status, limit=limit, offset=offset)
    return ReviewListResponse(
        reviews=[
            ReviewListItem(
                chat_id=s.chat.id,
                user_id=s.chat.user_id,
                title=s.chat.title,
                message_count=s.message_count,
                review_status=s.review.review_status if s.review else ReviewStatus.PENDING,
                reviewed_by=s.review.reviewed_by if s.review else None,
                last_reviewed_at=s.review.last_reviewed_at if s.review else None,
                updated_at=s.chat.updated_at,
            )
            for s in summaries
        ]
    )


@router.get("/reviews/{chat_id}", response_model=ReviewDetailResponse)
async def get_review(
    chat_id: UUID,
    ctx: RequestContext = Depends(require_admin),
) -> ReviewDetailResponse:
    detail = await get_review_detail(ctx.session, chat_id)
    if not detail:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")

    return ReviewDetailResponse(
        chat=to_chat_response(detail.chat),
        messages=[
            MessageItem(
                id=m.id,
                role=m.role,
                content=m.content,
                provenance=m.provenance,
                created_at=m.created_at,
            )
            for m in detail.messages
        ],
        review=to_review_response(detail.review) if detail.review else None,
        corrections=[to_correction_response(c) for c in detail.corrections],
    )


@router.put("/reviews/{chat_id}", response_model=ReviewResponse)
async def put_review(
    chat_id: UUID,
    request: ReviewRequest,
    ctx: RequestContext = Depends(require_admin),
) -> ReviewResponse:
    """Create or overwrite the chat's review. Corrections are left untouched."""
    try:
        review = await record_review(
            ctx.session, chat_id, request.review_status, request.review_notes, ctx.user_id
        )
    except ChatNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return to_review_response(review)


@router.post(
    "/reviews/{chat_id}/corrections",
    response_model=CorrectionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_correction(
    chat_id: UUID,
    request: CorrectionRequest,
    ctx: RequestContext = Depends(require_admin),
) -> CorrectionResponse:
    try:
        correction = await add_correction(
            ctx.session, chat_id, request.message_id, request.corrected_content, ctx.user_id
        )
    except ChatNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidReviewInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return to_correction_response(correction)


@router.post("/corrections/{correction_id}/promote", response_model=FaqEntryResponse)
async def promote_correction(
    correction_id: UUID,
    request: PromoteRequest,
    ctx: RequestContext = Depends(require_admin),
) -> FaqEntryResponse:
    """Turn a correction into a curated answer for the question that prompted it."""
    try:
        entry = await promote_to_curated(
            ctx.session,
            correction_id,
            ctx.user_id,
            category=request.category,
            tags=request.tags,
            priority=request.priority,
        )
    except CorrectionNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidReviewInput as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return to_faq_response(entry)
