from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from portal.api.routers.work_orders import Attachments, CurrentActor, _handle_work_order_error
from portal.domain.errors import WorkOrderError
from portal.infra.audit import set_audit_context

router = APIRouter()


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_photo(
    photo_id: str,
    request: Request,
    actor: CurrentActor,
    attachments: Attachments,
) -> Response:
    set_audit_context(request, action="work_order.photo_delete", resource=f"photos/{photo_id}")
    try:
        attachments.detach(photo_id, actor)
    except WorkOrderError as exc:
        _handle_work_order_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)
