"""Session storage models."""

from datetime import datetime
from typing import Any, Self
from uuid import UUID

from pydantic import BaseModel, Field

from sessionstore.core.db import MongoModel
from sessionstore.utils import now


class AdditionalToken(BaseModel):
    """Auxiliary credential for an external service, scoped to one session."""

    value: str
    created_at: datetime = Field(default_factory=now)


class Session[ID, UserID](MongoModel):
    """User authentication session.

    Indexed on secret - unique, user_id.
    ``id`` is None until the store assigns one; only UUID ids are generated.
    A session read through a listing or a secret lookup has ``secret=None``.
    """

    id: ID | None = Field(default=None, alias="_id", serialization_alias="id")  # type: ignore[assignment]
    secret: str | None = Field(default=None, repr=False)
    user_id: UserID
    ip_addresses: list[str] = Field(default_factory=list)
    last_usage: datetime = Field(default_factory=now)
    user_agent: str = ""
    auth_method: str = ""
    tokens: dict[str, list[AdditionalToken]] = Field(default_factory=dict)


class LastEnter[UserID](MongoModel):
    """Most recent activity of a user, keyed by user id."""

    id: UserID = Field(alias="_id", serialization_alias="id")  # type: ignore[assignment]
    last_enter: datetime
    ip_addresses: list[str] = Field(default_factory=list)


class SessionView[ID](BaseModel):
    """Session as shown to its owner (API representation)."""

    id: ID = Field(..., description="Session ID")
    ip_addresses: list[str] = Field(..., description="IP addresses the session was used from")
    last_usage: datetime = Field(..., description="Last time the session was used")
    user_agent: str = Field(..., description="User agent that created the session")
    auth_method: str = Field(..., description="How the session was established")

    @classmethod
    def from_domain(cls, session: "Session[ID, Any]") -> Self:
        """Create view model from domain model."""
        return cls(
            id=session.id,
            ip_addresses=session.ip_addresses,
            last_usage=session.last_usage,
            user_agent=session.user_agent,
            auth_method=session.auth_method,
        )


DefaultSession = Session[UUID, UUID]
