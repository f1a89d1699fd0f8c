from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import case, select
from sqlalchemy.orm import aliased

from ..auth.dependencies import get_current_user, require_staff
from ..config import settings
from ..database import db_session
from ..models import FeedbackTicket, User
from ..rate_limit import limiter, user_or_client_key
from ..schemas import TicketCreate, TicketRead, TicketStatusUpdate
from ..security.audit import log_security_event
from ..security.validation import sanitize_html

router = APIRouter(prefix="/feedback", tags=["feedback"])

_PRIORITY_ORDER = case(
    (FeedbackTicket.priority == "urgent", 1),
    (FeedbackTicket.priority == "high", 2),
    (FeedbackTicket.priority == "medium", 3),
    (FeedbackTicket.priority == "low", 4),
    else_=5,
)


def _ticket_rows(session, *where):
    author = aliased(User)
    assignee = aliased(User)
    stmt = (
        select(FeedbackTicket, author.username, assignee.username)
        .outerjoin(author, author.id == FeedbackTicket.user_id)
        .outerjoin(assignee, assignee.id == FeedbackTicket.assigned_to)
    )
    if where:
        stmt = stmt.where(*where)
    return session.execute(stmt.order_by(_PRIORITY_ORDER, FeedbackTicket.created_at.desc())).all()


def _to_read(ticket: FeedbackTicket, username, assigned_username) -> TicketRead:
    return TicketRead(
        id=ticket.id,
        user_id=ticket.user_id,
        username=username,
        type=ticket.type,
        title=ticket.title,
        description=ticket.description,
        status=ticket.status,
        priority=ticket.priority,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        assigned_to=ticket.assigned_to,
        assigned_username=assigned_username,
    )


@router.post("/tickets", response_model=TicketRead, status_code=201)
@limiter.limit(settings.feedback_rate_limit, key_func=user_or_client_key)
def create_ticket(
    request: Request,
    body: TicketCreate,
    current_user: User = Depends(get_current_user),
) -> TicketRead:
    with db_session() as session:
        ticket = FeedbackTicket(
            user_id=current_user.id,
            type=body.type,
            title=sanitize_html(body.title.strip()),
            description=sanitize_html(body.description.strip()),
            priority=body.priority,
            status="open",
        )
        session.add(ticket)
        session.flush()
        result = _to_read(ticket, current_user.username, None)

    log_security_event("feedback_ticket_created", request, current_user,
                       ticket_id=result.id, type=body.type, priority=body.priority)
    return result


@router.get("/tickets", response_model=List[TicketRead])
def list_tickets(_staff: User = Depends(require_staff)) -> List[TicketRead]:
    """All tickets, urgent first, then newest."""
    with db_session() as session:
        rows = _ticket_rows(session)
    return [_to_read(t, u, a) for t, u, a in rows]


@router.patch("/tickets/{ticket_id}", response_model=TicketRead)
def update_ticket(
    request: Request,
    ticket_id: str,
    body: TicketStatusUpdate,
    staff: User = Depends(require_staff),
) -> TicketRead:
    with db_session() as session:
        ticket = session.get(FeedbackTicket, ticket_id)
        if ticket is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ticket not found.")
        old_status = ticket.status
        ticket.status = body.status
        if body.status == "in_progress" and ticket.assigned_to is None:
            ticket.assigned_to = staff.id
        session.flush()
        ticket_row, username, assigned_username = _ticket_rows(session, FeedbackTicket.id == ticket_id)[0]

    log_security_event("feedback_ticket_updated", request, staff,
                       ticket_id=ticket_id, old_status=old_status, new_status=body.status)
    return _to_read(ticket_row, username, assigned_username)
