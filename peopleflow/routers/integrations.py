from fastapi import APIRouter, Depends, Response, status

from peopleflow.dependencies import get_integration_store
from peopleflow.schemas import (
    Actor,
    ApiKeyRequest,
    IntegrationRead,
    IntegrationStatusRequest,
    IntegrationStatusResponse,
    LastSyncRequest,
    LastSyncResponse,
    MetadataValueRequest,
)
from peopleflow.security import require_actor
from peopleflow.services.integrations import IntegrationStore, normalize_integration_type

router = APIRouter(tags=["integrations"])


@router.get("/api/integrations", response_model=list[IntegrationRead])
def list_integrations(store: IntegrationStore = Depends(get_integration_store)) -> list[IntegrationRead]:
    return store.get_all()


@router.get("/api/integrations/active", response_model=list[IntegrationRead])
def list_active_integrations(store: IntegrationStore = Depends(get_integration_store)) -> list[IntegrationRead]:
    return store.get_active()


@router.get("/api/integrations/{integration_type}", response_model=IntegrationRead)
def get_integration(
    integration_type: str,
    store: IntegrationStore = Depends(get_integration_store),
) -> IntegrationRead:
    return store.get_integration(integration_type)


@router.put("/api/integrations/{integration_type}/api-key", response_model=IntegrationRead)
def save_integration_api_key(
    integration_type: str,
    payload: ApiKeyRequest,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> IntegrationRead:
    store.save_api_key(integration_type, payload.api_key)
    return store.get_integration(integration_type)


@router.get("/api/integrations/{integration_type}/status", response_model=IntegrationStatusResponse)
def get_integration_status(
    integration_type: str,
    store: IntegrationStore = Depends(get_integration_store),
) -> IntegrationStatusResponse:
    parsed = normalize_integration_type(integration_type)
    return IntegrationStatusResponse(type=parsed.value, active=store.get_status(parsed))


@router.put("/api/integrations/{integration_type}/status", response_model=IntegrationStatusResponse)
def set_integration_status(
    integration_type: str,
    payload: IntegrationStatusRequest,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> IntegrationStatusResponse:
    parsed = normalize_integration_type(integration_type)
    store.set_status(parsed, payload.active)
    return IntegrationStatusResponse(type=parsed.value, active=payload.active)


@router.get("/api/integrations/{integration_type}/metadata", response_model=dict[str, str])
def get_integration_metadata(
    integration_type: str,
    store: IntegrationStore = Depends(get_integration_store),
) -> dict[str, str]:
    return store.get_all_metadata(integration_type)


@router.put("/api/integrations/{integration_type}/metadata/{key}", response_model=dict[str, str])
def set_integration_metadata(
    integration_type: str,
    key: str,
    payload: MetadataValueRequest,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> dict[str, str]:
    store.set_metadata(integration_type, key, payload.value)
    return store.get_all_metadata(integration_type)


@router.delete("/api/integrations/{integration_type}/metadata/{key}", status_code=status.HTTP_204_NO_CONTENT)
def delete_integration_metadata(
    integration_type: str,
    key: str,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> Response:
    store.delete_metadata(integration_type, key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/api/integrations/{integration_type}/last-sync", response_model=LastSyncResponse)
def set_integration_last_sync(
    integration_type: str,
    payload: LastSyncRequest,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> LastSyncResponse:
    parsed = normalize_integration_type(integration_type)
    stamp = store.set_last_sync(parsed, payload.last_sync)
    return LastSyncResponse(type=parsed.value, last_sync=stamp)


@router.delete("/api/integrations/{integration_type}", status_code=status.HTTP_204_NO_CONTENT)
def delete_integration(
    integration_type: str,
    _actor: Actor = Depends(require_actor),
    store: IntegrationStore = Depends(get_integration_store),
) -> Response:
    store.delete_integration(integration_type)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
