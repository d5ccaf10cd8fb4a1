"""
API routers for the billing service.

Routers:
- billing: Stripe webhook, checkout/portal, subscription and usage reads
- quota: Quota check and usage recording for the document pipeline
- accounts: Account sync for the identity collaborator
"""

from src.routers.accounts import router as accounts_router
from src.routers.billing import router as billing_router
from src.routers.quota import router as quota_router

__all__ = ["accounts_router", "billing_router", "quota_router"]
