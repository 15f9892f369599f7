"""Appointment state transitions.

    pending --provider accepts-->           booked     (isCompleted)
    pending --provider rejects-->           rejected
    pending/booked --user/provider/admin--> cancelled  (slot released)
    pending --overdue (system)-->           cancelled  (slot released)

Every transition is one status-guarded update, so when two callers race on the
same appointment exactly one of them wins and the other gets InvalidStateError.
"""

import logging

from appointment_store import AppointmentStore
from directory import ProviderDirectory, provider_label
from errors import AuthorizationError, InvalidStateError, UnavailableError, UpstreamError
from models.appointment_model import Appointment, ProviderSnapshot
from models.models import Actor
from notifications import NotificationSink
from slot_ledger import SlotLedger

logger = logging.getLogger(__name__)

PROVIDER_ROLES = ("doctor", "hospital")


def is_provider_of(appointment: Appointment, actor: Actor) -> bool:
    return actor.role == appointment.provider_type and actor.id == appointment.provider_id


def _when(appointment: Appointment) -> str:
    return f"{appointment.slot_date.replace('_', '/')} at {appointment.slot_time}"


class LifecycleManager:
    def __init__(self, appointments: AppointmentStore, ledger: SlotLedger,
                 providers: ProviderDirectory, notifier: NotificationSink):
        self.appointments = appointments
        self.ledger = ledger
        self.providers = providers
        self.notifier = notifier

    async def _transition(self, appointment: Appointment, from_statuses, changes: dict) -> Appointment:
        if appointment.status not in from_statuses:
            raise InvalidStateError(f"Appointment is already {appointment.status}")
        updated = await self.appointments.transition(appointment.id, from_statuses, changes)
        if updated is None:
            current = await self.appointments.get(appointment.id)
            raise InvalidStateError(f"Appointment is already {current.status}")
        return updated

    async def complete(self, appointment_id: str, actor: Actor) -> Appointment:
        appointment = await self.appointments.get(appointment_id)
        if not is_provider_of(appointment, actor):
            raise AuthorizationError("Unauthorized action")

        updated = await self._transition(appointment, ("pending",), {"status": "booked", "isCompleted": True})
        logger.info(f"Appointment {appointment_id} accepted by {actor.role} {actor.id}")

        label = provider_label(appointment.provider_type)
        provider_name = appointment.provider_data.name or label
        await self.notifier.emit(
            "appointment_completed",
            "Appointment Booked",
            f"{label} has accepted the appointment for {appointment.user_data.name} on {appointment.slot_date}",
            {f"{appointment.provider_type}Id": appointment.provider_id, "appointmentId": appointment_id},
        )
        await self.notifier.emit(
            "appointment_completed",
            "Appointment Accepted",
            f"{provider_name} has accepted your appointment for {appointment.slot_date}.",
            {"userId": appointment.user_id, "appointmentId": appointment_id},
        )
        return updated

    async def cancel(self, appointment_id: str, actor: Actor) -> Appointment:
        appointment = await self.appointments.get(appointment_id)

        if actor.role == "user":
            if appointment.user_id != actor.id:
                raise AuthorizationError("Unauthorized action")
            from_statuses, status = ("pending", "booked"), "cancelled"
        elif actor.role in PROVIDER_ROLES:
            if not is_provider_of(appointment, actor):
                raise AuthorizationError("Unauthorized action")
            # Declining a request is a rejection; dropping an accepted one is a cancellation.
            if appointment.status == "pending":
                from_statuses, status = ("pending",), "rejected"
            else:
                from_statuses, status = ("booked",), "cancelled"
        elif actor.role == "system":
            from_statuses, status = ("pending",), "cancelled"
        elif actor.role == "admin":
            from_statuses, status = ("pending", "booked"), "cancelled"
        else:
            raise AuthorizationError("Unauthorized action")

        changes = {"status": status, "cancelled": True, "slotReleased": False}
        if actor.role != "admin":
            changes["cancelledBy"] = actor.role
        updated = await self._transition(appointment, from_statuses, changes)
        logger.info(f"Appointment {appointment_id} {status} by {actor.role} {actor.id}")

        # Release from the committed document, which includes a doctor assigned since the first read.
        await self.release_slots(updated)
        await self._notify_cancelled(updated, actor)
        return updated

    async def release_slots(self, appointment: Appointment) -> bool:
        """Free every ledger entry a cancelled appointment still holds.

        Each freed ledger is recorded on the appointment before the next one is
        touched, so a retry never pulls a time that has since been rebooked.
        Returns False when the store failed part way; the appointment keeps
        ``slotReleased: false`` and the overdue sweep retries it.
        """
        try:
            for provider_id, provider_type in appointment.slot_holds():
                if provider_id in appointment.released_from:
                    continue
                await self.ledger.release(provider_id, provider_type, appointment.slot_date, appointment.slot_time)
                await self.appointments.record_release(appointment.id, provider_id)
            await self.appointments.mark_released(appointment.id)
        except UpstreamError as e:
            logger.error(f"Slot release for appointment {appointment.id} deferred: {e.message}")
            return False
        return True

    async def _notify_cancelled(self, appointment: Appointment, actor: Actor):
        label = provider_label(appointment.provider_type)
        provider_name = appointment.provider_data.name or label
        provider_target = {f"{appointment.provider_type}Id": appointment.provider_id, "appointmentId": appointment.id}
        user_target = {"userId": appointment.user_id, "appointmentId": appointment.id}

        if actor.role == "system":
            await self.notifier.emit(
                "appointment_auto_cancelled",
                "Appointment Expired",
                f"Your pending appointment with {provider_name} scheduled for {_when(appointment)} has been "
                f"automatically cancelled as it was not approved in time. Please reschedule for a future date and time.",
                {**user_target, "providerType": appointment.provider_type,
                 "doctorId": appointment.doc_id, "hospitalId": appointment.hospital_id},
            )
            await self.notifier.emit(
                "appointment_auto_cancelled",
                "Appointment Expired",
                f"The pending appointment for {appointment.user_data.name} on {_when(appointment)} expired without approval.",
                provider_target,
            )
        elif actor.role == "user":
            await self.notifier.emit(
                "appointment_cancelled",
                "Appointment Cancelled",
                f"{appointment.user_data.name} has cancelled the appointment on {_when(appointment)}.",
                provider_target,
            )
            await self.notifier.emit(
                "appointment_cancelled",
                "Appointment Cancelled",
                f"Your appointment with {provider_name} on {_when(appointment)} has been cancelled.",
                user_target,
            )
        elif actor.role == "admin":
            await self.notifier.emit(
                "appointment_cancelled",
                "Appointment Cancelled",
                f"The appointment for {appointment.user_data.name} on {_when(appointment)} was cancelled by an administrator.",
                provider_target,
            )
            await self.notifier.emit(
                "appointment_cancelled",
                "Appointment Cancelled",
                f"Your appointment with {provider_name} on {_when(appointment)} has been cancelled.",
                user_target,
            )
        else:
            verb = "rejected" if appointment.status == "rejected" else "cancelled"
            await self.notifier.emit(
                "appointment_cancelled",
                "Appointment Cancelled",
                f"{label} has {verb} the appointment for {appointment.user_data.name} on {appointment.slot_date}",
                provider_target,
            )
            await self.notifier.emit(
                "appointment_cancelled",
                f"Appointment {verb.capitalize()}",
                f"{provider_name} has {verb} your appointment for {appointment.slot_date}.",
                user_target,
            )

    async def assign(self, appointment_id: str, doctor_id: str, actor: Actor) -> Appointment:
        """Attach a doctor to a hospital appointment booked without one.

        The doctor's own ledger takes the slot too, so the doctor cannot be
        double-booked through two hospital appointments at the same time.
        """
        if actor.role != "hospital":
            raise AuthorizationError("Only hospitals can assign doctors")
        appointment = await self.appointments.get(appointment_id)
        if not is_provider_of(appointment, actor):
            raise AuthorizationError("Unauthorized action")
        if appointment.is_terminal:
            raise InvalidStateError(f"Appointment is already {appointment.status}")
        if appointment.doc_id:
            raise InvalidStateError("A doctor is already assigned to this appointment")

        doctor = await self.providers.get_provider(doctor_id, "doctor")
        if doctor.get("hospitalId") and doctor["hospitalId"] != actor.id:
            raise AuthorizationError("Doctor does not belong to this hospital")
        if not doctor.get("available", False):
            raise UnavailableError("Doctor not available")

        await self.ledger.reserve(doctor_id, "doctor", appointment.slot_date, appointment.slot_time)
        updated = await self.appointments.attach_doctor(appointment_id, doctor_id, ProviderSnapshot.model_validate(doctor))
        if updated is None:
            await self.ledger.release(doctor_id, "doctor", appointment.slot_date, appointment.slot_time)
            raise InvalidStateError("Appointment can no longer be assigned")
        logger.info(f"Doctor {doctor_id} assigned to appointment {appointment_id} by hospital {actor.id}")

        await self.notifier.emit(
            "doctor_assigned",
            "New Appointment Assigned",
            f"You have been assigned to the appointment for {appointment.user_data.name} on {_when(appointment)}.",
            {"doctorId": doctor_id, "appointmentId": appointment_id},
        )
        await self.notifier.emit(
            "doctor_assigned",
            "Doctor Assigned",
            f"Dr. {updated.doc_data.name} will see you at {appointment.hospital_data.name} on {_when(appointment)}.",
            {"userId": appointment.user_id, "appointmentId": appointment_id},
        )
        return updated
