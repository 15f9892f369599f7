import logging
import time

from appointment_store import AppointmentStore, new_appointment_id
from directory import ProviderDirectory, UserDirectory, provider_label
from errors import SlotConflictError, UnavailableError, UpstreamError, ValidationError
from models.appointment_model import PROVIDER_TYPES, Appointment, ProviderSnapshot, UserSnapshot
from notifications import NotificationSink
from slot_ledger import SlotLedger, booked_times, slot_path

logger = logging.getLogger(__name__)


def _validate(user_id, provider_id, provider_type, slot_date, slot_time):
    if not user_id:
        raise ValidationError("User ID is required")
    if not provider_id:
        raise ValidationError("Provider ID is required")
    if not provider_type:
        raise ValidationError("Provider type is required")
    if not slot_date or not slot_time:
        raise ValidationError("Please select date and time")
    if provider_type not in PROVIDER_TYPES:
        raise ValidationError("Invalid provider type")
    slot_path(slot_date)
    if any(ch in slot_time for ch in (".", "$")):
        raise ValidationError("Invalid slot time")


class BookingEngine:
    def __init__(self, providers: ProviderDirectory, users: UserDirectory, ledger: SlotLedger,
                 appointments: AppointmentStore, notifier: NotificationSink):
        self.providers = providers
        self.users = users
        self.ledger = ledger
        self.appointments = appointments
        self.notifier = notifier

    async def book_appointment(self, user_id, provider_id, provider_type, slot_date, slot_time) -> Appointment:
        _validate(user_id, provider_id, provider_type, slot_date, slot_time)
        label = provider_label(provider_type)

        provider = await self.providers.get_provider(provider_id, provider_type)
        if not provider.get("available", False):
            raise UnavailableError(f"{label} not available")

        # Cheap early exit; the authoritative check is the conditional reserve below.
        if slot_time in booked_times(provider, slot_date):
            raise SlotConflictError()

        user = await self.users.get_user(user_id)

        provider_data = ProviderSnapshot.model_validate(provider)
        appointment = Appointment(
            id=new_appointment_id(),
            user_id=user_id,
            provider_id=provider_id,
            provider_type=provider_type,
            doc_id=provider_id if provider_type == "doctor" else None,
            hospital_id=provider_id if provider_type == "hospital" else None,
            slot_date=slot_date,
            slot_time=slot_time,
            created_at=int(time.time() * 1000),
            amount=provider.get("fees") or 0,
            user_data=UserSnapshot.model_validate(user),
            doc_data=provider_data if provider_type == "doctor" else None,
            hospital_data=provider_data if provider_type == "hospital" else None,
        )

        await self.ledger.reserve(provider_id, provider_type, slot_date, slot_time)
        try:
            await self.appointments.insert(appointment)
        except UpstreamError:
            logger.error(f"Could not save appointment for {label} {provider_id} {slot_date} {slot_time}, releasing slot")
            await self.ledger.release(provider_id, provider_type, slot_date, slot_time)
            raise

        logger.info(f"Appointment booked successfully: {appointment.id}")

        when = f"{slot_date.replace('_', '/')} at {slot_time}"
        targets = {
            "appointmentId": appointment.id,
            "providerType": provider_type,
            "userId": user_id,
            "doctorId": appointment.doc_id,
            "hospitalId": appointment.hospital_id,
        }
        await self.notifier.emit(
            "appointment_booked",
            "New Appointment Request",
            f"{appointment.user_data.name or 'A patient'} requested an appointment on {when}.",
            targets,
        )
        await self.notifier.emit(
            "appointment_booked",
            "Appointment Booked",
            f"New {provider_type} appointment with {provider_data.name or label} on {when} is awaiting approval.",
            {"appointmentId": appointment.id, "providerType": provider_type},
        )
        return appointment
