"""FastAPI dependencies resolving the collaborators built in ``create_app``."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .config import Settings
from .database import get_db
from .messaging import EventPublisher
from .notifications import NotificationDispatcher, SmtpEmailer
from .storage import MediaStorage
from .workflow.orders import OrderWorkflow
from .workflow.reviews import ReviewService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_emailer(request: Request) -> SmtpEmailer:
    return request.app.state.emailer


def get_storage(request: Request) -> MediaStorage:
    return request.app.state.storage


def get_events(request: Request) -> EventPublisher:
    return request.app.state.events


def get_order_workflow(
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    events: EventPublisher = Depends(get_events),
) -> OrderWorkflow:
    return OrderWorkflow(db, dispatcher=dispatcher, events=events)


def get_review_service(db: Session = Depends(get_db)) -> ReviewService:
    return ReviewService(db)
