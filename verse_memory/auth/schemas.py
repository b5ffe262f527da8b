from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated caller, as asserted by the identity provider."""
    user_id: str
