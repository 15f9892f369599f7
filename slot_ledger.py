"""Per-provider ledger of booked slot times.

Each provider document carries ``slots_booked``: a map from slot date to the list
of times already taken on that date. Every mutation here is a single conditional
update on one ``slots_booked.<date>`` path, so two requests racing for the same
slot cannot both win, and updates to other dates are never overwritten.
"""

import logging

from errors import NotFoundError, SlotConflictError, UnavailableError, ValidationError
from directory import ProviderDirectory, provider_label
from mongo import translate_store_errors

logger = logging.getLogger(__name__)

FORBIDDEN_KEY_CHARS = (".", "$")


def slot_path(slot_date: str) -> str:
    if any(ch in slot_date for ch in FORBIDDEN_KEY_CHARS):
        raise ValidationError("Invalid slot date")
    return f"slots_booked.{slot_date}"


def booked_times(provider: dict, slot_date: str) -> list:
    return list((provider.get("slots_booked") or {}).get(slot_date) or [])


class SlotLedger:
    def __init__(self, directory: ProviderDirectory):
        self.directory = directory

    async def booked(self, provider_id: str, provider_type: str, slot_date: str) -> list:
        provider = await self.directory.get_provider(provider_id, provider_type)
        return booked_times(provider, slot_date)

    @translate_store_errors("reserve slot")
    async def _push_if_absent(self, provider_id, provider_type, slot_date, slot_time):
        path = slot_path(slot_date)
        result = await self.directory.collection(provider_type).update_one(
            {"_id": provider_id, "available": True, path: {"$ne": slot_time}}, {"$push": {path: slot_time}}
        )
        return result.modified_count == 1

    async def reserve(self, provider_id: str, provider_type: str, slot_date: str, slot_time: str):
        """Add ``slot_time`` to the provider's ledger for ``slot_date`` if it is free.

        Raises SlotConflictError when the time is already taken. When nothing
        matched, the provider is re-read so a missing or unavailable provider is
        reported as such instead of as a conflict.
        """
        if await self._push_if_absent(provider_id, provider_type, slot_date, slot_time):
            logger.info(f"Reserved {provider_type} {provider_id} slot {slot_date} {slot_time}")
            return

        provider = await self.directory.find_provider(provider_id, provider_type)
        if not provider:
            raise NotFoundError(f"{provider_label(provider_type)} not found")
        if not provider.get("available", False):
            raise UnavailableError(f"{provider_label(provider_type)} not available")
        raise SlotConflictError()

    @translate_store_errors("release slot")
    async def release(self, provider_id: str, provider_type: str, slot_date: str, slot_time: str) -> bool:
        """Remove ``slot_time`` from the ledger. Releasing an absent time is a no-op."""
        path = slot_path(slot_date)
        result = await self.directory.collection(provider_type).update_one(
            {"_id": provider_id, path: slot_time}, {"$pull": {path: slot_time}}
        )
        released = result.modified_count == 1
        if released:
            logger.info(f"Released {provider_type} {provider_id} slot {slot_date} {slot_time}")
        else:
            logger.debug(f"Slot {slot_date} {slot_time} already free for {provider_type} {provider_id}")
        return released
