"""claimflow API authentication.

Actors authenticate with an API key (X-Claimflow-API-Key header). The key
registry is a JSON object read from CLAIMFLOW_API_KEYS_JSON:

    {"<key>": {"actor_id": "u-17", "name": "A. Mballa", "roles": ["CLAIMS_HANDLER"]}}

Fails closed on missing or invalid credentials. Unknown roles are rejected.
Capability checks happen in the workflow engine, not here.
"""

import hmac
import json
import logging
import os
from typing import Annotated

from fastapi import Depends, Request
from pydantic import BaseModel, Field, ValidationError

from claimflow.api.errors import ApiHttpError
from claimflow.workflow.policy import ALL_ROLES, Actor, Role

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Claimflow-API-Key"
CLAIMFLOW_API_KEYS_ENV = "CLAIMFLOW_API_KEYS_JSON"


class ApiKeyRecord(BaseModel):
    """API key registry entry."""

    actor_id: str = Field(..., min_length=1)
    name: str | None = None
    roles: list[str] = Field(default_factory=list)


def _load_api_key_registry() -> dict[str, ApiKeyRecord]:
    """Load the API key registry from the environment.

    Returns an empty dict if the variable is missing or not a JSON object;
    malformed entries are skipped.
    """
    raw = os.environ.get(CLAIMFLOW_API_KEYS_ENV)
    if not raw:
        return {}

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse %s; treating as empty registry", CLAIMFLOW_API_KEYS_ENV)
        return {}

    if not isinstance(parsed, dict):
        logger.warning("%s is not a dict; treating as empty registry", CLAIMFLOW_API_KEYS_ENV)
        return {}

    registry: dict[str, ApiKeyRecord] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or not isinstance(value, dict):
            continue
        try:
            registry[key] = ApiKeyRecord.model_validate(value)
        except ValidationError:
            logger.warning("Skipping malformed API key registry entry")
            continue

    return registry


def _constant_time_lookup(
    provided_key: str, registry: dict[str, ApiKeyRecord]
) -> ApiKeyRecord | None:
    """Look up an API key comparing against every entry in constant time."""
    matched_record: ApiKeyRecord | None = None
    provided_bytes = provided_key.encode("utf-8")

    for registered_key, record in registry.items():
        if hmac.compare_digest(provided_bytes, registered_key.encode("utf-8")):
            matched_record = record

    return matched_record


def _normalize_roles(roles: list[str]) -> frozenset[Role]:
    """Validate roles, rejecting unknown ones (fail closed).

    Raises:
        ApiHttpError: 401 if any role is unknown.
    """
    normalized: set[Role] = set()
    for role in roles:
        upper_role = role.upper().strip()
        if upper_role not in ALL_ROLES:
            raise ApiHttpError(status_code=401, code="UNAUTHORIZED", message="Invalid credentials")
        normalized.add(Role(upper_role))
    return frozenset(normalized)


def authenticate_request(request: Request) -> Actor:
    """Resolve the calling actor from the API key header.

    Raises:
        ApiHttpError: 401 if the key is missing, unknown or carries unknown roles.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if not api_key:
        raise ApiHttpError(status_code=401, code="UNAUTHORIZED", message="Missing API key")

    record = _constant_time_lookup(api_key, _load_api_key_registry())
    if record is None:
        raise ApiHttpError(status_code=401, code="UNAUTHORIZED", message="Invalid API key")

    return Actor(
        actor_id=record.actor_id,
        roles=_normalize_roles(record.roles),
        name=record.name,
    )


async def require_actor(request: Request) -> Actor:
    """FastAPI dependency that authenticates the caller and stores the actor on request.state."""
    actor = authenticate_request(request)
    request.state.actor = actor
    return actor


RequireActor = Annotated[Actor, Depends(require_actor)]
