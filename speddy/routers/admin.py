"""Admin operations."""

import structlog
from fastapi import APIRouter, Depends

from ..auth import ADMIN_ROLES, CurrentUser, require_roles
from ..dependencies import get_instance_service
from ..models import BulkGenerateResponse, GenerateInstancesRequest
from ..scheduling.instances import InstanceGenerationOptions
from ..services.instance_service import InstanceService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.post(
    "/instances/generate",
    response_model=BulkGenerateResponse,
    summary="Create instances for every scheduled template",
)
async def generate_all_instances(
    body: GenerateInstancesRequest,
    admin: CurrentUser = Depends(require_roles(*ADMIN_ROLES)),
    service: InstanceService = Depends(get_instance_service),
):
    """
    Materialize all templates up to the requested horizon.

    Requires an admin role. Failing templates are reported in ``errors``.
    """
    logger.info(
        "Bulk instance generation requested",
        admin_user=admin.id,
        weeks_ahead=body.weeks_ahead,
        until_date=body.until_date.isoformat() if body.until_date else None,
    )
    result = await service.generate_for_all_templates(
        InstanceGenerationOptions(weeks_ahead=body.weeks_ahead, until_date=body.until_date)
    )
    return BulkGenerateResponse(**result)
