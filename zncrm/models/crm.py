"""Data models for CRM entities."""

from enum import Enum
from typing import Optional, List, Any
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: Any) -> Any:
    """Trim strings; empty strings become None."""
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _required_text(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
    return value


class CrmModel(BaseModel):
    """Base for rows read from the store.

    Unknown columns are ignored and numeric ids or years arrive as text.
    """
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"


class CustomerRef(CrmModel):
    """Customer columns embedded in another row (``customers(...)``)."""
    id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class CarRef(CrmModel):
    """Car columns embedded in another row (``cars(...)``)."""
    id: Optional[str] = None
    license_plate: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None


def _embedded(table: str, description: str) -> Any:
    # PostgREST names an embedded relation after its table
    return Field(default=None, validation_alias=AliasChoices(table, table[:-1]), description=description)


# --- Customers ---------------------------------------------------------------

class Customer(CrmModel):
    """Customer record."""
    id: str = Field(description="Customer ID")
    first_name: str = Field(description="First name")
    last_name: Optional[str] = Field(default=None, description="Last name")
    phone: Optional[str] = Field(default=None, description="Phone number")
    email: Optional[str] = Field(default=None, description="Email address")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()


class CustomerCreate(BaseModel):
    """Model for creating a new customer."""
    first_name: str = Field(description="First name (required)")
    last_name: Optional[str] = Field(default=None, description="Last name")
    phone: Optional[str] = Field(default=None, description="Phone number")
    email: Optional[str] = Field(default=None, description="Email address")

    @field_validator("first_name", mode="before")
    @classmethod
    def check_first_name(cls, value: Any) -> Any:
        return _required_text(value)

    @field_validator("last_name", "phone", "email", mode="before")
    @classmethod
    def blank_optionals(cls, value: Any) -> Any:
        return _blank_to_none(value)


# --- Cars --------------------------------------------------------------------

class Car(CrmModel):
    """Car record."""
    id: str = Field(description="Car ID")
    license_plate: str = Field(description="License plate")
    make: Optional[str] = Field(default=None, description="Make")
    model: Optional[str] = Field(default=None, description="Model")
    year: Optional[str] = Field(default=None, description="Build year")
    customer_id: Optional[str] = Field(default=None, description="Owning customer")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp")
    customer: Optional[CustomerRef] = _embedded("customers", "Owning customer row")

    @property
    def label(self) -> str:
        details = " ".join(part for part in (self.make, self.model) if part)
        return f"{self.license_plate} ({details})" if details else self.license_plate


class CarCreate(BaseModel):
    """Model for creating a new car."""
    license_plate: str = Field(description="License plate (required)")
    make: Optional[str] = Field(default=None, description="Make")
    model: Optional[str] = Field(default=None, description="Model")
    year: Optional[str] = Field(default=None, description="Build year")
    customer_id: Optional[str] = Field(default=None, description="Owning customer")

    @field_validator("license_plate", mode="before")
    @classmethod
    def check_plate(cls, value: Any) -> Any:
        return _required_text(value)

    @field_validator("make", "model", "year", "customer_id", mode="before")
    @classmethod
    def blank_optionals(cls, value: Any) -> Any:
        if isinstance(value, int):
            value = str(value)
        return _blank_to_none(value)


class CarPhoto(CrmModel):
    """Photo attached to a car, stored in the media bucket."""
    id: str = Field(description="Photo ID")
    car_id: Optional[str] = Field(default=None, description="Car the photo belongs to")
    section: Optional[str] = Field(default=None, description="Part of the car shown")
    image_url: str = Field(description="Public URL of the stored image")
    created_at: Optional[str] = Field(default=None, description="Upload timestamp")


# --- Appointments ------------------------------------------------------------

class AppointmentSnapshot(CrmModel):
    """The columns the reminder scheduler reads for one appointment.

    Date and time are kept as raw strings; malformed values are skipped by
    the scheduler rather than rejected here.
    """
    id: str
    title: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None


class Appointment(CrmModel):
    """Appointment record."""
    id: str = Field(description="Appointment ID")
    title: str = Field(default="", description="Appointment title")
    date: str = Field(description="Calendar day, YYYY-MM-DD")
    time: str = Field(description="Local time, HH:MM[:SS]")
    status: Optional[str] = Field(default=None, description="Workflow status")
    location: Optional[str] = Field(default=None, description="Address")
    customer_id: Optional[str] = Field(default=None, description="Linked customer")
    customer_name: Optional[str] = Field(default=None, description="Free-text customer name")
    car_id: Optional[str] = Field(default=None, description="Linked car")
    car_label: Optional[str] = Field(default=None, description="Free-text car label")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp")
    customer: Optional[CustomerRef] = _embedded("customers", "Linked customer row")
    car: Optional[CarRef] = _embedded("cars", "Linked car row")

    @field_validator("title", mode="before")
    @classmethod
    def none_title(cls, value: Any) -> Any:
        return "" if value is None else value

    @property
    def customer_display(self) -> Optional[str]:
        """Free-text customer name, else the linked customer's name."""
        if self.customer_name:
            return self.customer_name
        return self.customer.full_name if self.customer and self.customer.full_name else None

    @property
    def car_display(self) -> Optional[str]:
        if self.car_label:
            return self.car_label
        return self.car.license_plate if self.car else None


class AppointmentCreate(BaseModel):
    """Model for creating a new appointment."""
    title: str = Field(description="Appointment title (required)")
    date: str = Field(description="Calendar day, YYYY-MM-DD")
    time: str = Field(description="Local time, HH:MM")
    location: Optional[str] = Field(default=None, description="Address")
    customer_id: Optional[str] = Field(default=None, description="Linked customer")
    customer_name: Optional[str] = Field(default=None, description="Free-text customer name")
    car_id: Optional[str] = Field(default=None, description="Linked car")
    car_label: Optional[str] = Field(default=None, description="Free-text car label")

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value: Any) -> Any:
        return _required_text(value)

    @field_validator("location", "customer_id", "customer_name", "car_id", "car_label", mode="before")
    @classmethod
    def blank_optionals(cls, value: Any) -> Any:
        return _blank_to_none(value)


class StatusUpdate(BaseModel):
    """Status change for an appointment or invoice."""
    status: str = Field(description="New status")

    @field_validator("status", mode="before")
    @classmethod
    def check_status(cls, value: Any) -> Any:
        return _required_text(value)


# --- Invoices ----------------------------------------------------------------

class Invoice(CrmModel):
    """Invoice record."""
    id: str = Field(description="Invoice ID")
    amount: float = Field(description="Invoice amount")
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, description="Invoice status")
    customer_id: Optional[str] = Field(default=None, description="Billed customer")
    customer_name: Optional[str] = Field(default=None, description="Customer name at issue time")
    car_id: Optional[str] = Field(default=None, description="Linked car")
    issued_at: Optional[str] = Field(default=None, description="Issue date")
    due_date: Optional[str] = Field(default=None, description="Due date")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp")
    customer: Optional[CustomerRef] = _embedded("customers", "Billed customer row")
    car: Optional[CarRef] = _embedded("cars", "Linked car row")


class InvoiceCreate(BaseModel):
    """Model for creating a new invoice."""
    customer_id: str = Field(description="Billed customer (required)")
    amount: float = Field(description="Amount, a comma decimal separator is accepted")
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT, description="Initial status")
    customer_name: Optional[str] = Field(default=None, description="Customer name at issue time")
    car_id: Optional[str] = Field(default=None, description="Linked car")
    issued_at: Optional[str] = Field(default=None, description="Issue date")
    due_date: Optional[str] = Field(default=None, description="Due date")

    @field_validator("customer_id", mode="before")
    @classmethod
    def check_customer(cls, value: Any) -> Any:
        return _required_text(value)

    @field_validator("customer_name", "car_id", "issued_at", "due_date", mode="before")
    @classmethod
    def blank_optionals(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.replace(",", ".").strip()
        return value

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("amount must be greater than zero")
        return value


class InvoiceStatusUpdate(BaseModel):
    """Status change for an invoice."""
    status: InvoiceStatus


# --- Notes -------------------------------------------------------------------

class Note(CrmModel):
    """Note, either attached to a customer or general (customer_id is None)."""
    id: str = Field(description="Note ID")
    content: str = Field(description="Note text")
    customer_id: Optional[str] = Field(default=None, description="Linked customer")
    created_at: Optional[str] = Field(default=None, description="Creation timestamp")
    customer: Optional[CustomerRef] = _embedded("customers", "Linked customer row")


class NoteCreate(BaseModel):
    """Model for creating a new note."""
    content: str = Field(description="Note text (required)")
    customer_id: Optional[str] = Field(default=None, description="Linked customer")

    @field_validator("content", mode="before")
    @classmethod
    def check_content(cls, value: Any) -> Any:
        return _required_text(value)

    @field_validator("customer_id", mode="before")
    @classmethod
    def blank_customer(cls, value: Any) -> Any:
        return _blank_to_none(value)


# --- Aggregates --------------------------------------------------------------

class CustomerOverview(BaseModel):
    """Customer detail page: the customer and everything linked to it."""
    customer: Customer
    cars: List[Car] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)
    notes: List[Note] = Field(default_factory=list)
    invoices: List[Invoice] = Field(default_factory=list)


class CarOverview(BaseModel):
    """Car detail page: the car, its owner, appointments and photos."""
    car: Car
    customer: Optional[Customer] = None
    appointments: List[Appointment] = Field(default_factory=list)
    photos: List[CarPhoto] = Field(default_factory=list)


class SearchResults(BaseModel):
    """Matches of a global search, grouped by kind."""
    customers: List[Customer] = Field(default_factory=list)
    cars: List[Car] = Field(default_factory=list)
    appointments: List[Appointment] = Field(default_factory=list)
