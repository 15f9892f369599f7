from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Literal, Optional

Role = Literal["user", "doctor", "hospital", "admin", "system"]


class Actor(BaseModel):
    """Authenticated caller, resolved once at the HTTP boundary."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role

    @classmethod
    def system(cls) -> "Actor":
        return cls(id="system", role="system")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Fields are optional so the booking engine can report which one is missing.
class BookAppointmentRequest(CamelModel):
    user_id: Optional[str] = None
    provider_id: Optional[str] = None
    provider_type: Optional[str] = None
    slot_date: Optional[str] = None
    slot_time: Optional[str] = None


class AppointmentActionRequest(CamelModel):
    appointment_id: str


class AssignDoctorRequest(CamelModel):
    appointment_id: str
    doctor_id: str


class AvailabilityRequest(CamelModel):
    provider_id: str
    provider_type: str
    slot_date: Optional[str] = None
