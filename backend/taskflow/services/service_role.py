"""Service-role capability for privileged writes."""

from dataclasses import dataclass

from pydantic import SecretStr

from taskflow.config import Settings


@dataclass(frozen=True)
class ServiceRole:
    """Credential for writes made on behalf of the system rather than a user.

    Built once per process from settings (see ``api.v1.auth.get_service_role``)
    and passed explicitly to the services that perform privileged writes:
    notification inserts, tag catalog inserts, attachment storage and
    task archiving.
    """

    key: SecretStr
    storage_url: str
    bucket: str
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceRole":
        return cls(
            key=settings.storage_service_role_key,
            storage_url=settings.storage_url.rstrip("/"),
            bucket=settings.storage_bucket,
            timeout=settings.storage_timeout,
        )

    def auth_headers(self) -> dict[str, str]:
        key = self.key.get_secret_value()
        return {"Authorization": f"Bearer {key}", "apikey": key}
