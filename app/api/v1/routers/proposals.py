from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.models.user import User
from app.schemas.finance import FinanceApplicationDTO, FinanceApplicationListResponse
from app.services import authz, finance_applications, proposals

router = APIRouter(prefix="/proposals", tags=["proposals"])


@router.get(
    "/{proposal_id}/finance-applications",
    response_model=FinanceApplicationListResponse,
    summary="Finance applications submitted for a proposal, newest first",
)
async def list_finance_applications(
    proposal_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    current_user: User = Depends(deps.require_authenticated_user),
    db: AsyncSession = Depends(get_db),
) -> FinanceApplicationListResponse:
    proposal = await proposals.get_proposal(db, proposal_id)
    if proposal is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    if not authz.can_access_proposal(current_user, ctx, proposal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this proposal")
    applications = await finance_applications.list_for_proposal(db, proposal.id)
    items = [FinanceApplicationDTO.model_validate(application) for application in applications]
    return FinanceApplicationListResponse(items=items, total=len(items))
