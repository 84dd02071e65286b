"""Read-only HTTP view of the resource catalog."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from backend.controllers.dependencies import get_repository
from backend.domain.exceptions import PersistenceError
from backend.domain.models import Resource, ResourceKind
from backend.repository.data_repository import DataRepository
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/api/resources", tags=["resources"])


class ResourceResponse(BaseModel):
    id: int
    kind: ResourceKind
    name: str
    subcategory: Optional[str] = None
    type: Optional[str] = None
    quantity: int
    status: str

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceResponse":
        return cls(
            id=resource.resource_id,
            kind=resource.kind,
            name=resource.name,
            subcategory=resource.subcategory,
            type=resource.type,
            quantity=resource.quantity,
            status=resource.status,
        )


@router.get("", response_model=list[ResourceResponse])
def list_resources(
    kind: Optional[ResourceKind] = Query(default=None),
    repository: DataRepository = Depends(get_repository),
) -> list[ResourceResponse]:
    try:
        resources = repository.list_resources(kind)
    except PersistenceError as exc:
        logger.exception("Resource listing failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list resources",
        ) from exc
    return [ResourceResponse.from_resource(resource) for resource in resources]
