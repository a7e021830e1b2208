from pydantic import BaseModel


class CredentialBundle(BaseModel):
    """Normalized Shopify credentials resolved from a Source at request time. Never persisted."""

    store_name: str
    api_token: str
    client_id: str | None = None
    client_secret: str | None = None

    def __repr__(self):
        # Keep tokens out of reprs that end up in logs
        return f"CredentialBundle(store_name={self.store_name!r})"
