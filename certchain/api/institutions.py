from __future__ import annotations

from fastapi import APIRouter, status
from pydantic import BaseModel

from certchain.api.dependencies import AdminDep, ServicesDep
from certchain.api.errors import http_error
from certchain.core.errors import CredentialServiceError
from certchain.models.institution import Institution

router = APIRouter(prefix="/v1/institutions", tags=["institutions"])


class InstitutionIn(BaseModel):
    name: str
    identity: str


class InstitutionOut(BaseModel):
    name: str
    identity: str
    is_minter: bool


def _out(i: Institution) -> InstitutionOut:
    return InstitutionOut(name=i.name, identity=i.identity, is_minter=i.is_minter)


@router.get("", response_model=list[InstitutionOut])
async def list_institutions(
    services: ServicesDep, _admin: AdminDep
) -> list[InstitutionOut]:
    return [_out(i) for i in await services.institutions.list()]


@router.post("", response_model=InstitutionOut, status_code=status.HTTP_201_CREATED)
async def add_institution(
    body: InstitutionIn, services: ServicesDep, _admin: AdminDep
) -> InstitutionOut:
    try:
        institution = await services.institutions.add(
            name=body.name, identity=body.identity
        )
    except CredentialServiceError as e:
        raise http_error(e) from None
    return _out(institution)


@router.post("/{identity}/minter", response_model=InstitutionOut)
async def grant_minter(
    identity: str, services: ServicesDep, _admin: AdminDep
) -> InstitutionOut:
    try:
        institution = await services.institutions.grant_minter(identity)
    except CredentialServiceError as e:
        raise http_error(e) from None
    return _out(institution)
