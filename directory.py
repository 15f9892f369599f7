"""Read access to provider and user profiles.

Profiles are owned by the registration side of the platform; the booking core
only ever reads them, and only touches a provider's ``slots_booked`` through
:mod:`slot_ledger`.
"""

from errors import NotFoundError, ValidationError
from models.appointment_model import PROVIDER_TYPES
from mongo import PROVIDER_COLLECTIONS, USERS, translate_store_errors

PRIVATE_FIELDS = {"password": 0}


def provider_label(provider_type: str) -> str:
    return "Doctor" if provider_type == "doctor" else "Hospital"


class ProviderDirectory:
    def __init__(self, db):
        self.db = db

    def collection(self, provider_type: str):
        if provider_type not in PROVIDER_TYPES:
            raise ValidationError("Invalid provider type")
        return self.db[PROVIDER_COLLECTIONS[provider_type]]

    @translate_store_errors("load provider")
    async def find_provider(self, provider_id: str, provider_type: str):
        return await self.collection(provider_type).find_one({"_id": provider_id}, PRIVATE_FIELDS)

    async def get_provider(self, provider_id: str, provider_type: str) -> dict:
        provider = await self.find_provider(provider_id, provider_type)
        if not provider:
            raise NotFoundError(f"{provider_label(provider_type)} not found")
        return provider


class UserDirectory:
    def __init__(self, db):
        self.db = db

    @translate_store_errors("load user")
    async def find_user(self, user_id: str):
        return await self.db[USERS].find_one({"_id": user_id}, PRIVATE_FIELDS)

    async def get_user(self, user_id: str) -> dict:
        user = await self.find_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user
