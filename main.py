import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP

from appointment_store import AppointmentStore, summarize
from auth import get_actor, require_roles
from booking import BookingEngine
from directory import ProviderDirectory, UserDirectory
from errors import AuthorizationError, BookingError
from lifecycle import LifecycleManager
from models.models import (
    Actor,
    AppointmentActionRequest,
    AssignDoctorRequest,
    AvailabilityRequest,
    BookAppointmentRequest,
)
from mongo import close_client, ensure_indexes, get_database
from notifications import NotificationSink
from scheduler import OverdueScheduler
from slot_ledger import SlotLedger, booked_times

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("lifesync")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
OVERDUE_SCHEDULER_ENABLED = os.getenv("OVERDUE_SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes")

MCP_OPERATIONS = [
    "book_appointment",
    "list_appointments",
    "cancel_appointment",
    "complete_appointment",
    "assign_doctor",
    "check_availability",
    "dashboard",
]


def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def create_app(db=None, run_scheduler: bool = OVERDUE_SCHEDULER_ENABLED) -> FastAPI:
    """Build the API around ``db``; the configured MongoDB database when None."""
    owns_client = db is None
    if db is None:
        db = get_database()

    providers = ProviderDirectory(db)
    users = UserDirectory(db)
    ledger = SlotLedger(providers)
    appointments = AppointmentStore(db)
    notifier = NotificationSink(db)
    lifecycle = LifecycleManager(appointments, ledger, providers, notifier)
    booking = BookingEngine(providers, users, ledger, appointments, notifier)
    scheduler = OverdueScheduler(appointments, lifecycle)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_client:
            await ensure_indexes(db)
        if run_scheduler:
            logger.info("[Scheduler] Running initial overdue appointment check...")
            scheduler.start()
        yield
        await scheduler.stop()
        if owns_client:
            await close_client()

    app = FastAPI(title="LifeSync Booking API", lifespan=lifespan)
    app.state.db = db
    app.state.booking = booking
    app.state.lifecycle = lifecycle
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return failure(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if not errors:
            return failure(400, "Invalid request")
        field = ".".join(str(p) for p in errors[0]["loc"][1:])
        return failure(400, " ".join(filter(None, ["Invalid request:", field, errors[0]["msg"]])))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error in {request.method} {request.url.path}")
        return failure(500, "Internal server error")

    @app.get("/health", operation_id="health")
    async def health():
        return {"success": True, "status": "ok", "scheduler_running": scheduler.running}

    @app.post("/book-appointment", operation_id="book_appointment")
    async def book_appointment(data: BookAppointmentRequest, actor: Actor = Depends(require_roles("user", "admin"))):
        """
        Book a slot with a doctor or hospital; the appointment starts out pending
        """
        user_id = data.user_id
        if actor.role == "user":
            if user_id and user_id != actor.id:
                raise AuthorizationError("Cannot book on behalf of another user")
            user_id = actor.id

        appointment = await booking.book_appointment(
            user_id, data.provider_id, data.provider_type, data.slot_date, data.slot_time
        )
        return {
            "success": True,
            "message": "Appointment booked",
            "appointmentId": appointment.id,
            "appointment": appointment.for_client(),
        }

    @app.get("/appointments", operation_id="list_appointments")
    async def list_appointments(actor: Actor = Depends(get_actor)):
        appointments_list = await appointments.list_for_actor(actor)
        return {"success": True, "appointments": [a.for_client() for a in appointments_list]}

    @app.post("/cancel-appointment", operation_id="cancel_appointment")
    async def cancel_appointment(data: AppointmentActionRequest,
                                 actor: Actor = Depends(require_roles("user", "doctor", "hospital", "admin"))):
        appointment = await lifecycle.cancel(data.appointment_id, actor)
        message = "Appointment Rejected" if appointment.status == "rejected" else "Appointment cancelled"
        return {"success": True, "message": message, "appointment": appointment.for_client()}

    @app.post("/complete-appointment", operation_id="complete_appointment")
    async def complete_appointment(data: AppointmentActionRequest,
                                   actor: Actor = Depends(require_roles("doctor", "hospital"))):
        appointment = await lifecycle.complete(data.appointment_id, actor)
        return {"success": True, "message": "Appointment Booked", "appointment": appointment.for_client()}

    @app.post("/assign-doctor", operation_id="assign_doctor")
    async def assign_doctor(data: AssignDoctorRequest, actor: Actor = Depends(require_roles("hospital"))):
        appointment = await lifecycle.assign(data.appointment_id, data.doctor_id, actor)
        return {"success": True, "message": "Doctor assigned", "appointment": appointment.for_client()}

    @app.post("/check-availability", operation_id="check_availability")
    async def check_availability(data: AvailabilityRequest):
        provider = await providers.get_provider(data.provider_id, data.provider_type)
        slots = provider.get("slots_booked") or {}
        return {
            "success": True,
            "available": bool(provider.get("available", False)),
            "slotsBooked": booked_times(provider, data.slot_date) if data.slot_date else slots,
        }

    @app.get("/dashboard", operation_id="dashboard")
    async def dashboard(actor: Actor = Depends(require_roles("doctor", "hospital", "admin"))):
        appointments_list = await appointments.list_for_actor(actor)
        return {"success": True, "dashData": summarize(appointments_list, actor.role)}

    mcp = FastApiMCP(app, include_operations=MCP_OPERATIONS)
    mcp.mount_http()

    return app


app = create_app()
