from __future__ import annotations

from fastapi import Header, Request

from peopleflow.db import is_object_id
from peopleflow.errors import ApiError
from peopleflow.schemas import Actor


def require_actor(
    request: Request,
    x_actor_id: str | None = Header(default=None),
    x_actor_name: str | None = Header(default=None),
) -> Actor:
    actor_id = (x_actor_id or "").strip()
    actor_name = (x_actor_name or "").strip()
    if not actor_id or not actor_name:
        raise ApiError(
            status_code=401,
            code="ACTOR_REQUIRED",
            message="X-Actor-Id and X-Actor-Name headers are required.",
        )
    if not is_object_id(actor_id):
        raise ApiError(status_code=401, code="INVALID_ACTOR", message="X-Actor-Id is not a valid identifier.")

    request.state.actor = actor_name
    request.state.actor_id = actor_id.lower()
    return Actor(id=actor_id.lower(), name=actor_name)
