"""Principal schemas."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict

from slotsync.db.enums import ActorType, Role


class Principal(BaseModel):
    """
    Authenticated caller handed over by the auth service.

    Passed explicitly into every booking operation; role checks happen at
    the router boundary.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    role: Role

    @property
    def is_provider(self) -> bool:
        return self.role == Role.PROVIDER

    @property
    def actor_type(self) -> ActorType:
        return ActorType.PROVIDER if self.is_provider else ActorType.PATIENT
