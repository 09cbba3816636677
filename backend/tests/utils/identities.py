"""Actor identities shared by the test-suite."""
from ledger.auth.jwt import jwt_auth

CASHIER_ID = "cashier-1"
ADMIN_ID = "admin-1"
BUYER_ID = "buyer-1"


def auth_headers(actor_id: str) -> dict[str, str]:
    """Bearer token header for an actor."""
    return {"Authorization": f"Bearer {jwt_auth.create_access_token(actor_id)}"}
