"""
FastAPI dependencies handing out the process-wide collaborators built in
create_app(). Routers never import these objects directly.
"""
from fastapi import Request

from socialhub.clients.media import MediaStore
from socialhub.services.conversations import ConversationCoordinator
from socialhub.services.notifications import NotificationWriter


def get_notifications(request: Request) -> NotificationWriter:
    return request.app.state.notifications


def get_conversations(request: Request) -> ConversationCoordinator:
    return request.app.state.conversations


def get_media(request: Request) -> MediaStore:
    return request.app.state.media
