from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Literal, Optional, Union

ProviderType = Literal["doctor", "hospital"]
AppointmentStatus = Literal["pending", "booked", "rejected", "cancelled"]
CancelledBy = Literal["doctor", "hospital", "user", "system"]

PROVIDER_TYPES = ("doctor", "hospital")
TERMINAL_STATUSES = ("rejected", "cancelled")


class UserSnapshot(BaseModel):
    """User details frozen into an appointment at booking time."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[str] = None
    dob: Optional[str] = None


class ProviderSnapshot(BaseModel):
    """Doctor or hospital details frozen into an appointment."""

    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)

    name: Optional[str] = None
    email: Optional[str] = None
    image: Optional[str] = None
    speciality: Optional[str] = None
    degree: Optional[str] = None
    experience: Optional[str] = None
    about: Optional[str] = None
    address: Union[dict[str, Any], str, None] = None
    fees: Optional[float] = None


class Appointment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(alias="_id")
    user_id: str
    provider_id: str
    provider_type: ProviderType
    doc_id: Optional[str] = None
    hospital_id: Optional[str] = None
    slot_date: str  # day_month_year, e.g. "1_6_2026"
    slot_time: str  # "10:00 am"
    created_at: int  # epoch ms
    status: AppointmentStatus = "pending"
    cancelled: bool = False
    cancelled_by: Optional[CancelledBy] = None
    is_completed: bool = False
    # False while a cancelled appointment still holds ledger entries.
    slot_released: Optional[bool] = None
    released_from: list[str] = Field(default_factory=list)
    amount: float = 0
    user_data: UserSnapshot
    doc_data: Optional[ProviderSnapshot] = None
    hospital_data: Optional[ProviderSnapshot] = None

    @model_validator(mode="after")
    def check_provider_snapshot(self):
        if self.provider_type == "doctor" and self.doc_data is None:
            raise ValueError("doctor appointments require docData")
        if self.provider_type == "hospital" and self.hospital_data is None:
            raise ValueError("hospital appointments require hospitalData")
        return self

    @property
    def provider_data(self) -> ProviderSnapshot:
        return self.doc_data if self.provider_type == "doctor" else self.hospital_data

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def slot_holds(self) -> list:
        """(provider_id, provider_type) of every ledger holding this slot."""
        holds = [(self.provider_id, self.provider_type)]
        if self.provider_type == "hospital" and self.doc_id:
            holds.append((self.doc_id, "doctor"))
        return holds

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def for_client(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
