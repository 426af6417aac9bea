from study_access.db.models.access_code_redemptions import AccessCodeRedemption
from study_access.db.models.access_codes import AccessCode
from study_access.db.models.entitlement_mirrors import EntitlementMirror
from study_access.db.models.entitlement_overrides import EntitlementOverride
from study_access.db.models.parent_claims import ParentClaim
from study_access.db.models.promo_grants import PromoGrant
from study_access.db.models.side_effect_claims import SideEffectClaim
from study_access.db.models.users import User

__all__ = [
    "AccessCode",
    "AccessCodeRedemption",
    "EntitlementMirror",
    "EntitlementOverride",
    "ParentClaim",
    "PromoGrant",
    "SideEffectClaim",
    "User",
]
