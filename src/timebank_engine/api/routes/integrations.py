"""Time-tracking provider integration endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, status

from timebank_engine.api.dependencies import (
    HR_ROLE,
    ActorId,
    ActorRole,
    AppDatabase,
    ClientFactory,
    DbSession,
    TenantId,
)
from timebank_engine.api.schemas import (
    ErrorResponse,
    IdentityLinkRequest,
    IdentityLinkResponse,
    ProviderConfigRequest,
    ProviderConfigResponse,
    ProviderStatusResponse,
    SyncRequest,
    SyncSummaryResponse,
)
from timebank_engine.exceptions import PermissionDeniedError
from timebank_engine.services.connection_service import ConnectionService, mask_secret
from timebank_engine.services.identity_linker import IdentityLinker
from timebank_engine.services.ingestor import sync_tenant
from timebank_engine.timeutils import sync_range

router = APIRouter(prefix="/integrations/provider", tags=["integrations"])

PROVIDER_ERRORS = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


# ============================================================================
# Connection
# ============================================================================


@router.get("", response_model=ProviderConfigResponse)
async def get_provider_config(db: DbSession, tenant_id: TenantId) -> ProviderConfigResponse:
    """Get the connection config with a masked credential."""
    connection = await ConnectionService(db).get(tenant_id)
    if connection is None:
        return ProviderConfigResponse(configured=False)
    return ProviderConfigResponse(
        configured=True,
        workspace_id=connection.workspace_id,
        api_key_masked=mask_secret(connection.api_key),
        created_at=connection.created_at,
        updated_at=connection.updated_at,
    )


@router.post("", response_model=ProviderConfigResponse, responses=PROVIDER_ERRORS)
async def save_provider_config(
    db: DbSession,
    tenant_id: TenantId,
    actor_id: ActorId,
    client_factory: ClientFactory,
    payload: ProviderConfigRequest,
) -> ProviderConfigResponse:
    """Validate the credential by listing users, then persist it."""
    connection = await ConnectionService(db).save(
        tenant_id,
        payload.api_key,
        payload.workspace_id,
        client_factory,
        actor_id=actor_id,
    )
    await db.commit()

    return ProviderConfigResponse(
        configured=True,
        workspace_id=connection.workspace_id,
        api_key_masked=mask_secret(connection.api_key),
        created_at=connection.created_at,
        updated_at=connection.updated_at,
    )


@router.get("/status", response_model=ProviderStatusResponse)
async def get_provider_status(db: DbSession, tenant_id: TenantId) -> ProviderStatusResponse:
    """Sync health plus employees still lacking a link."""
    result = await ConnectionService(db).status(tenant_id)
    return ProviderStatusResponse.model_validate(result)


# ============================================================================
# Sync
# ============================================================================


@router.post(
    "/sync",
    response_model=SyncSummaryResponse,
    responses={**PROVIDER_ERRORS, 403: {"model": ErrorResponse}},
)
async def sync_entries(
    db: DbSession,
    database: AppDatabase,
    tenant_id: TenantId,
    role: ActorRole,
    client_factory: ClientFactory,
    payload: SyncRequest,
) -> SyncSummaryResponse:
    """Run one sync pass for the tenant and return its counters."""
    start, end = sync_range(payload.start_date, payload.end_date)
    if payload.allow_closed_period and role != HR_ROLE:
        raise PermissionDeniedError("allow_closed_period only for hr")

    connection = await ConnectionService(db).require(tenant_id)
    workspace_id, api_key = connection.workspace_id, connection.api_key
    await db.close()

    summary = await sync_tenant(
        database,
        client_factory,
        tenant_id,
        workspace_id,
        api_key,
        start,
        end,
        allow_closed_period=payload.allow_closed_period,
    )
    return SyncSummaryResponse.model_validate(summary)


# ============================================================================
# Identity links
# ============================================================================


@router.get("/links", response_model=list[IdentityLinkResponse])
async def list_links(db: DbSession, tenant_id: TenantId) -> list[IdentityLinkResponse]:
    """List persisted provider user links."""
    links = await IdentityLinker(db).list_links(tenant_id)
    return [
        IdentityLinkResponse(
            employee_id=link.employee_id,
            employee_name=name,
            external_user_id=link.external_user_id,
            external_user_name=link.external_user_name,
            external_user_email=link.external_user_email,
            last_synced_at=link.last_synced_at,
        )
        for link, name in links
    ]


@router.put(
    "/links",
    response_model=IdentityLinkResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def set_link(
    db: DbSession,
    tenant_id: TenantId,
    payload: IdentityLinkRequest,
) -> IdentityLinkResponse:
    """Pin an employee to a provider user; sync never overrides it."""
    link = await IdentityLinker(db).set_link(
        tenant_id, payload.employee_id, payload.external_user_id
    )
    await db.commit()
    return IdentityLinkResponse.model_validate(link)


@router.delete(
    "/links/{employee_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_link(
    db: DbSession,
    tenant_id: TenantId,
    employee_id: Annotated[int, Path(gt=0)],
) -> None:
    """Remove an employee's link."""
    await IdentityLinker(db).remove_link(tenant_id, employee_id)
    await db.commit()
