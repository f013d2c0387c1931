"""HTTP API for the CRM backend."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from zncrm.app.crm_app import CrmApp
from zncrm.gateway.auth import AuthError, Session, User
from zncrm.gateway.supabase_client import GatewayError, NotFoundError, SupabaseGateway
from zncrm.models.crm import (
    Appointment, AppointmentCreate,
    Car, CarCreate, CarOverview, CarPhoto,
    Customer, CustomerCreate, CustomerOverview,
    Invoice, InvoiceCreate, InvoiceStatusUpdate,
    Note, NoteCreate, SearchResults, StatusUpdate,
)
from zncrm.utils.date_parser import parse_day, today_local
from zncrm.utils.logger import log_error


class LoginRequest(BaseModel):
    email: str = Field(..., description="Login email")
    password: str = Field(..., description="Password")


class StatsResponse(BaseModel):
    reminders: Dict[str, Any]


class NotificationBatch(BaseModel):
    notifications: List[Dict[str, Any]]


def get_crm(app: FastAPI) -> CrmApp:
    crm = getattr(app.state, "crm", None)
    if crm is None:
        raise RuntimeError("CRM instance is not configured on the application state")
    return crm


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(crm_instance: CrmApp | None = None) -> FastAPI:
    crm = crm_instance or CrmApp()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.crm = crm
        await crm.startup()
        try:
            yield
        finally:
            await crm.shutdown()

    app = FastAPI(
        title="ZN CRM API",
        version="1.0.0",
        description="REST API for customers, cars, appointments, invoices and notes.",
        lifespan=lifespan,
    )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        log_error(f"Backend call failed for {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": f"Backend request failed: {exc}"},
        )

    async def current_user(request: Request) -> Optional[User]:
        """Auth guard: every CRM route needs a valid session token."""
        crm_app = get_crm(app)
        if not crm_app.config.api.require_auth:
            return None
        user = await crm_app.auth.get_user(_bearer_token(request))
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Not signed in",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return user

    async def user_gateway(request: Request, user: Optional[User] = Depends(current_user)) -> SupabaseGateway:
        return get_crm(app).gateway_for(_bearer_token(request))

    # -- Auth -----------------------------------------------------------------

    @app.post("/auth/login", response_model=Session)
    async def login_endpoint(payload: LoginRequest) -> Session:
        try:
            return await get_crm(app).auth.sign_in(payload.email, payload.password)
        except AuthError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid login") from exc

    @app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
    async def logout_endpoint(request: Request) -> None:
        token = _bearer_token(request)
        if token:
            await get_crm(app).auth.sign_out(token)

    @app.get("/auth/me", response_model=Optional[User])
    async def me_endpoint(user: Optional[User] = Depends(current_user)) -> Optional[User]:
        return user

    # -- Customers ------------------------------------------------------------

    @app.get("/customers", response_model=List[Customer])
    async def list_customers(gateway: SupabaseGateway = Depends(user_gateway)) -> List[Customer]:
        return await gateway.list_customers()

    @app.post("/customers", response_model=Customer, status_code=status.HTTP_201_CREATED)
    async def create_customer(
        payload: CustomerCreate, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> Customer:
        return await gateway.create_customer(payload)

    @app.get("/customers/{customer_id}", response_model=CustomerOverview)
    async def get_customer(
        customer_id: str, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> CustomerOverview:
        return await gateway.get_customer_overview(customer_id)

    @app.delete("/customers/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_customer(customer_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> None:
        await gateway.delete_customer(customer_id)

    # -- Cars -----------------------------------------------------------------

    @app.get("/cars", response_model=List[Car])
    async def list_cars(gateway: SupabaseGateway = Depends(user_gateway)) -> List[Car]:
        return await gateway.list_cars()

    @app.post("/cars", response_model=Car, status_code=status.HTTP_201_CREATED)
    async def create_car(payload: CarCreate, gateway: SupabaseGateway = Depends(user_gateway)) -> Car:
        return await gateway.create_car(payload)

    @app.get("/cars/{car_id}", response_model=CarOverview)
    async def get_car(car_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> CarOverview:
        return await gateway.get_car_overview(car_id)

    @app.delete("/cars/{car_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_car(car_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> None:
        await gateway.delete_car(car_id)

    @app.post("/cars/{car_id}/photos", response_model=CarPhoto, status_code=status.HTTP_201_CREATED)
    async def upload_car_photo(
        car_id: str,
        file: UploadFile = File(...),
        section: Optional[str] = Form(default=None),
        gateway: SupabaseGateway = Depends(user_gateway),
    ) -> CarPhoto:
        content = await file.read()
        return await gateway.upload_car_photo(
            car_id,
            filename=file.filename or "photo",
            content=content,
            content_type=file.content_type or "application/octet-stream",
            section=section,
        )

    @app.delete("/cars/{car_id}/photos/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_car_photo(
        car_id: str, photo_id: str, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> None:
        photos = await gateway.list_car_photos(car_id)
        photo = next((p for p in photos if p.id == photo_id), None)
        if photo is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Photo not found")
        await gateway.delete_car_photo(photo)

    # -- Appointments ---------------------------------------------------------

    @app.get("/appointments", response_model=List[Appointment])
    async def list_appointments(
        date: Optional[str] = None, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> List[Appointment]:
        day = None
        if date:
            parsed = parse_day(date)
            if parsed is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"Unrecognised date: {date}",
                )
            day = parsed.isoformat()
        return await gateway.list_appointments(day)

    @app.get("/appointments/today", response_model=List[Appointment])
    async def today_appointments(gateway: SupabaseGateway = Depends(user_gateway)) -> List[Appointment]:
        return await gateway.list_appointments(today_local())

    @app.post("/appointments", response_model=Appointment, status_code=status.HTTP_201_CREATED)
    async def create_appointment(
        payload: AppointmentCreate, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> Appointment:
        return await gateway.create_appointment(payload)

    @app.get("/appointments/{appointment_id}", response_model=Appointment)
    async def get_appointment(
        appointment_id: str, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> Appointment:
        return await gateway.get_appointment(appointment_id)

    @app.patch("/appointments/{appointment_id}/status", response_model=Appointment)
    async def update_appointment_status(
        appointment_id: str, payload: StatusUpdate, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> Appointment:
        return await gateway.update_appointment_status(appointment_id, payload.status)

    @app.delete("/appointments/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_appointment(appointment_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> None:
        await gateway.delete_appointment(appointment_id)

    # -- Invoices -------------------------------------------------------------

    @app.get("/invoices", response_model=List[Invoice])
    async def list_invoices(gateway: SupabaseGateway = Depends(user_gateway)) -> List[Invoice]:
        return await gateway.list_invoices()

    @app.post("/invoices", response_model=Invoice, status_code=status.HTTP_201_CREATED)
    async def create_invoice(payload: InvoiceCreate, gateway: SupabaseGateway = Depends(user_gateway)) -> Invoice:
        return await gateway.create_invoice(payload)

    @app.patch("/invoices/{invoice_id}/status", response_model=Invoice)
    async def update_invoice_status(
        invoice_id: str, payload: InvoiceStatusUpdate, gateway: SupabaseGateway = Depends(user_gateway)
    ) -> Invoice:
        return await gateway.update_invoice_status(invoice_id, payload.status)

    @app.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_invoice(invoice_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> None:
        await gateway.delete_invoice(invoice_id)

    # -- Notes ----------------------------------------------------------------

    @app.get("/notes", response_model=List[Note])
    async def list_notes(
        customer_id: Optional[str] = None,
        general: bool = False,
        limit: int = 3,
        gateway: SupabaseGateway = Depends(user_gateway),
    ) -> List[Note]:
        if general:
            return await gateway.recent_general_notes(limit=limit)
        return await gateway.list_notes(customer_id)

    @app.post("/notes", response_model=Note, status_code=status.HTTP_201_CREATED)
    async def create_note(payload: NoteCreate, gateway: SupabaseGateway = Depends(user_gateway)) -> Note:
        return await gateway.create_note(payload)

    @app.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_note(note_id: str, gateway: SupabaseGateway = Depends(user_gateway)) -> None:
        await gateway.delete_note(note_id)

    # -- Search ---------------------------------------------------------------

    @app.get("/search", response_model=SearchResults)
    async def search_endpoint(q: str = "", gateway: SupabaseGateway = Depends(user_gateway)) -> SearchResults:
        return await gateway.search(q)

    # -- Reminders and health -------------------------------------------------

    @app.get("/notifications", response_model=NotificationBatch)
    async def notifications_endpoint(
        limit: int = 20, flush: bool = True, user: Optional[User] = Depends(current_user)
    ) -> NotificationBatch:
        notifications = await get_crm(app).get_notifications(limit=limit, flush=flush)
        return NotificationBatch(notifications=notifications)

    @app.get("/stats", response_model=StatsResponse)
    async def stats_endpoint(user: Optional[User] = Depends(current_user)) -> StatsResponse:
        try:
            return StatsResponse(reminders=get_crm(app).get_reminder_stats())
        except Exception as exc:  # pragma: no cover
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to fetch stats: {exc}",
            ) from exc

    @app.get("/health")
    async def health_endpoint() -> Dict[str, Any]:
        try:
            return get_crm(app).snapshot()
        except Exception as exc:  # pragma: no cover
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"Failed to fetch health snapshot: {exc}",
            ) from exc

    return app


app = create_app()
