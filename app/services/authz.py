from typing import TYPE_CHECKING

from app.models.proposal import Proposal
from app.models.user import User, UserRole

if TYPE_CHECKING:
    from app.api.deps import TenantContext


def can_access_proposal(user: User, ctx: "TenantContext", proposal: Proposal) -> bool:
    """Whether ``user`` may read or submit financing for ``proposal``.

    Super admins cross tenants; everyone else must share the proposal's org,
    and sales reps only see proposals they authored.
    """
    if not user.is_active:
        return False
    if user.is_super_admin:
        return True
    if proposal.org_id != user.org_id or proposal.org_id != ctx.org_id:
        return False
    if user.role == UserRole.SALES_REP.value:
        return proposal.user_id is None or str(proposal.user_id) == str(user.id)
    return True
