"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from app.models.chat_message import ChatMessageRecord

All models are imported here so Alembic can detect them during migration
autogenerate.
"""

from app.models.chat_message import ChatMessageRecord
from app.models.external_session import ExternalSession

__all__ = [
    "ChatMessageRecord",
    "ExternalSession",
]
