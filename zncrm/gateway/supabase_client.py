"""Supabase (PostgREST + Storage) client for CRM data access."""

import asyncio
import uuid
from typing import List, Optional, Dict, Any, Iterable, Tuple, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ..models.crm import (
    Customer, CustomerCreate, CustomerOverview,
    Car, CarCreate, CarOverview, CarPhoto,
    Appointment, AppointmentCreate, AppointmentSnapshot,
    Invoice, InvoiceCreate, InvoiceStatus,
    Note, NoteCreate, SearchResults,
)
from ..utils.logger import log_info, log_error, log_debug, log_warning


SNAPSHOT_COLUMNS = "id,title,date,time,location"

# Related rows are embedded by table name, the way PostgREST resolves foreign keys
CUSTOMER_EMBED = "customers(id,first_name,last_name,phone,email)"
CAR_EMBED = "cars(id,license_plate,make,model,year)"

CUSTOMER_COLUMNS = "id,first_name,last_name,phone,email,created_at"
CAR_COLUMNS = f"id,license_plate,make,model,year,customer_id,created_at,{CUSTOMER_EMBED}"
APPOINTMENT_COLUMNS = (
    "id,title,date,time,status,location,customer_id,customer_name,car_id,car_label,created_at,"
    f"{CUSTOMER_EMBED},{CAR_EMBED}"
)
INVOICE_COLUMNS = (
    "id,amount,status,customer_id,customer_name,car_id,issued_at,due_date,created_at,"
    f"{CUSTOMER_EMBED},{CAR_EMBED}"
)
NOTE_COLUMNS = f"id,content,customer_id,created_at,{CUSTOMER_EMBED}"
PHOTO_COLUMNS = "id,car_id,section,image_url,created_at"

SEARCH_MIN_LENGTH = 2
SEARCH_LIMIT = 10
CUSTOMER_SEARCH_FIELDS = ("first_name", "last_name", "phone", "email")
CAR_SEARCH_FIELDS = ("license_plate", "make", "model")
APPOINTMENT_SEARCH_FIELDS = ("title",)

Order = Iterable[Tuple[str, bool]]


class GatewayError(Exception):
    """A backend call failed or answered with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(GatewayError):
    """The requested row does not exist (or is not visible to this session)."""


class SupabaseGateway:
    """Client for the CRM tables in a Supabase project.

    One ``httpx.AsyncClient`` is shared by every view of the gateway; views
    created with :meth:`with_access_token` only differ in the bearer token
    sent, so row-level security applies per user.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: Optional[str] = None,
        media_bucket: str = "media",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the gateway.

        Args:
            url: Supabase project URL
            api_key: Project anon key, sent as ``apikey``
            access_token: User access token; the anon key is used when omitted
            media_bucket: Storage bucket holding car photos
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token or None
        self.media_bucket = media_bucket
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._owns_client = True

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Open the HTTP connection pool."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=self.timeout,
            transport=self._transport,
        )
        log_info(f"Supabase gateway ready for {self.url}")

    async def disconnect(self) -> None:
        """Close the HTTP connection pool."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
                log_debug("Supabase gateway closed")
            except Exception as e:
                log_error(f"Error closing Supabase gateway: {e}")
        self._client = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    def with_access_token(self, access_token: str) -> "SupabaseGateway":
        """Return a view of this gateway that acts as the given user."""
        view = SupabaseGateway(
            url=self.url,
            api_key=self.api_key,
            access_token=access_token,
            media_bucket=self.media_bucket,
            timeout=self.timeout,
        )
        view._client = self._client
        view._owns_client = False
        return view

    def headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        """Headers for Supabase API calls."""
        token = access_token or self.access_token or self.api_key
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        """Send a request and raise GatewayError for failures.

        Args:
            method: HTTP method
            path: Path relative to the project URL
            params: Query parameters
            json: JSON body
            content: Raw body (storage uploads)
            headers: Extra headers
            access_token: Overrides the gateway's bearer token for this call

        Returns:
            The successful response
        """
        if self._client is None:
            raise RuntimeError("Supabase gateway not connected. Call connect() first.")

        all_headers = self.headers(access_token)
        if headers:
            all_headers.update(headers)

        log_debug(f"{method} {path} params={params}")
        try:
            response = await self._client.request(
                method, path, params=params, json=json, content=content, headers=all_headers
            )
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            message = _error_message(response)
            if response.status_code == 406 or response.status_code == 404:
                raise NotFoundError(message, response.status_code)
            raise GatewayError(message, response.status_code)
        return response

    # -- PostgREST primitives -------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[Order] = None,
        limit: Optional[int] = None,
        is_null: Optional[Iterable[str]] = None,
        any_of: Optional[Iterable[str]] = None,
        single: bool = False,
    ) -> Union[List[Dict[str, Any]], Dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name
            columns: PostgREST select expression
            filters: Column equality filters
            order: (column, ascending) pairs, applied in sequence
            limit: Maximum number of rows
            is_null: Columns that must be NULL
            any_of: PostgREST conditions of which at least one must hold (``or=``)
            single: Expect exactly one row; NotFoundError otherwise

        Returns:
            List of rows, or one row when ``single`` is set
        """
        params: Dict[str, Any] = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        for column in is_null or ():
            params[column] = "is.null"
        any_of = list(any_of or ())
        if any_of:
            params["or"] = f"({','.join(any_of)})"
        if order:
            params["order"] = ",".join(
                f"{column}.{'asc' if ascending else 'desc'}" for column, ascending in order
            )
        if limit is not None:
            params["limit"] = str(limit)

        headers = {"Accept": "application/vnd.pgrst.object+json"} if single else None
        response = await self.request("GET", f"/rest/v1/{table}", params=params, headers=headers)
        return response.json()

    async def insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored."""
        response = await self.request(
            "POST",
            f"/rest/v1/{table}",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) and rows else {}

    async def update(self, table: str, row_id: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update one row by id; returns the updated row or None when nothing matched."""
        response = await self.request(
            "PATCH",
            f"/rest/v1/{table}",
            params={"id": f"eq.{row_id}"},
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if rows else None

    async def delete(self, table: str, row_id: str) -> None:
        """Delete one row by id."""
        await self.request("DELETE", f"/rest/v1/{table}", params={"id": f"eq.{row_id}"})

    # -- Customers --------------------------------------------------------------

    async def list_customers(self) -> List[Customer]:
        rows = await self.select("customers", CUSTOMER_COLUMNS, order=[("first_name", True)])
        return [Customer(**row) for row in rows]

    async def get_customer(self, customer_id: str) -> Customer:
        row = await self.select("customers", CUSTOMER_COLUMNS, filters={"id": customer_id}, single=True)
        return Customer(**row)

    async def create_customer(self, customer: CustomerCreate) -> Customer:
        log_info(f"Creating customer: {customer.first_name}")
        row = await self.insert("customers", customer.model_dump())
        return Customer(**row)

    async def delete_customer(self, customer_id: str) -> None:
        log_info(f"Deleting customer: {customer_id}")
        await self.delete("customers", customer_id)

    async def get_customer_overview(self, customer_id: str) -> CustomerOverview:
        """Load a customer with its cars, appointments, notes and invoices."""
        customer = await self.get_customer(customer_id)
        linked = {"customer_id": customer_id}

        cars = await self.select("cars", CAR_COLUMNS, filters=linked, order=[("created_at", False)])
        appointments = await self.select(
            "appointments", APPOINTMENT_COLUMNS, filters=linked,
            order=[("date", False), ("time", False)],
        )
        notes = await self.select("notes", NOTE_COLUMNS, filters=linked, order=[("created_at", False)])
        invoices = await self.select(
            "invoices", INVOICE_COLUMNS, filters=linked, order=[("created_at", False)]
        )

        return CustomerOverview(
            customer=customer,
            cars=[Car(**row) for row in cars],
            appointments=[Appointment(**row) for row in appointments],
            notes=[Note(**row) for row in notes],
            invoices=[Invoice(**row) for row in invoices],
        )

    # -- Cars -------------------------------------------------------------------

    async def list_cars(self) -> List[Car]:
        rows = await self.select("cars", CAR_COLUMNS, order=[("created_at", False)])
        return [Car(**row) for row in rows]

    async def get_car(self, car_id: str) -> Car:
        row = await self.select("cars", CAR_COLUMNS, filters={"id": car_id}, single=True)
        return Car(**row)

    async def create_car(self, car: CarCreate) -> Car:
        log_info(f"Creating car: {car.license_plate}")
        row = await self.insert("cars", car.model_dump())
        return Car(**row)

    async def delete_car(self, car_id: str) -> None:
        log_info(f"Deleting car: {car_id}")
        await self.delete("cars", car_id)

    async def get_car_overview(self, car_id: str) -> CarOverview:
        """Load a car with its owner, appointments and photos."""
        car = await self.get_car(car_id)
        appointments = await self.select(
            "appointments", APPOINTMENT_COLUMNS, filters={"car_id": car_id},
            order=[("date", False), ("time", False)],
        )
        photos = await self.list_car_photos(car_id)

        customer = None
        if car.customer_id:
            try:
                customer = await self.get_customer(car.customer_id)
            except NotFoundError:
                log_warning(f"Car {car_id} refers to missing customer {car.customer_id}")

        return CarOverview(
            car=car,
            customer=customer,
            appointments=[Appointment(**row) for row in appointments],
            photos=photos,
        )

    async def list_car_photos(self, car_id: str) -> List[CarPhoto]:
        rows = await self.select(
            "car_photos", PHOTO_COLUMNS, filters={"car_id": car_id}, order=[("created_at", False)]
        )
        return [CarPhoto(**row) for row in rows]

    def public_url(self, path: str) -> str:
        """Public URL of an object in the media bucket."""
        return f"{self.url}/storage/v1/object/public/{self.media_bucket}/{quote(path)}"

    def storage_path_from_url(self, image_url: str) -> Optional[str]:
        """Recover the object path from a public media URL."""
        marker = f"/storage/v1/object/public/{self.media_bucket}/"
        if marker not in image_url:
            return None
        return image_url.split(marker, 1)[1]

    async def upload_car_photo(
        self,
        car_id: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
        section: Optional[str] = None,
    ) -> CarPhoto:
        """Store an image in the media bucket and link it to a car.

        Args:
            car_id: Car the photo belongs to
            filename: Original file name, kept as a suffix of the object name
            content: Image bytes
            content_type: MIME type of the image
            section: Part of the car shown (optional)

        Returns:
            The created CarPhoto row
        """
        safe_name = filename.replace("/", "_").replace(" ", "_") or "photo"
        path = f"cars/{car_id}/{uuid.uuid4().hex}-{safe_name}"

        await self.request(
            "POST",
            f"/storage/v1/object/{self.media_bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type},
        )
        log_debug(f"Uploaded {path} to bucket {self.media_bucket}")

        row = await self.insert("car_photos", {
            "car_id": car_id,
            "section": section or None,
            "image_url": self.public_url(path),
        })
        return CarPhoto(**row)

    async def delete_car_photo(self, photo: CarPhoto) -> None:
        """Remove a photo's storage object (best effort) and its row."""
        path = self.storage_path_from_url(photo.image_url)
        if path is None:
            log_warning(f"Could not derive storage path from {photo.image_url}")
        else:
            try:
                await self.request(
                    "DELETE",
                    f"/storage/v1/object/{self.media_bucket}",
                    json={"prefixes": [path]},
                )
            except GatewayError as e:
                log_error(f"Storage delete failed for {path}: {e}")

        await self.delete("car_photos", photo.id)

    # -- Appointments ---------------------------------------------------------

    async def list_appointments(self, day: Optional[str] = None) -> List[Appointment]:
        """List appointments in date/time order, optionally for one day."""
        filters = {"date": day} if day else None
        rows = await self.select(
            "appointments", APPOINTMENT_COLUMNS, filters=filters,
            order=[("date", True), ("time", True)],
        )
        return [Appointment(**row) for row in rows]

    async def list_appointments_on(self, day: str) -> List[AppointmentSnapshot]:
        """Fetch the reminder columns of every appointment on a calendar day.

        Rows that cannot be read as a snapshot (no id) are dropped.
        """
        rows = await self.select("appointments", SNAPSHOT_COLUMNS, filters={"date": day})
        snapshots = []
        for row in rows:
            try:
                snapshots.append(AppointmentSnapshot(**row))
            except ValidationError as e:
                log_debug(f"Skipping unreadable appointment row {row!r}: {e}")
        return snapshots

    async def get_appointment(self, appointment_id: str) -> Appointment:
        row = await self.select(
            "appointments", APPOINTMENT_COLUMNS, filters={"id": appointment_id}, single=True
        )
        return Appointment(**row)

    async def create_appointment(self, appointment: AppointmentCreate) -> Appointment:
        log_info(f"Creating appointment: {appointment.title} on {appointment.date} {appointment.time}")
        row = await self.insert("appointments", appointment.model_dump())
        return Appointment(**row)

    async def update_appointment_status(self, appointment_id: str, status: str) -> Appointment:
        row = await self.update("appointments", appointment_id, {"status": status})
        if row is None:
            raise NotFoundError(f"Appointment {appointment_id} not found", 404)
        return Appointment(**row)

    async def delete_appointment(self, appointment_id: str) -> None:
        log_info(f"Deleting appointment: {appointment_id}")
        await self.delete("appointments", appointment_id)

    # -- Invoices -------------------------------------------------------------

    async def list_invoices(self) -> List[Invoice]:
        rows = await self.select("invoices", INVOICE_COLUMNS, order=[("created_at", False)])
        return [Invoice(**row) for row in rows]

    async def create_invoice(self, invoice: InvoiceCreate) -> Invoice:
        """Create an invoice; the customer's name is stored alongside the id."""
        payload = invoice.model_dump(mode="json")
        if not payload.get("customer_name"):
            try:
                customer = await self.get_customer(invoice.customer_id)
                payload["customer_name"] = customer.full_name
            except NotFoundError:
                payload["customer_name"] = None

        log_info(f"Creating invoice for {payload['customer_name'] or invoice.customer_id}: {invoice.amount:.2f}")
        row = await self.insert("invoices", payload)
        return Invoice(**row)

    async def update_invoice_status(self, invoice_id: str, status: InvoiceStatus) -> Invoice:
        row = await self.update("invoices", invoice_id, {"status": InvoiceStatus(status).value})
        if row is None:
            raise NotFoundError(f"Invoice {invoice_id} not found", 404)
        return Invoice(**row)

    async def delete_invoice(self, invoice_id: str) -> None:
        log_info(f"Deleting invoice: {invoice_id}")
        await self.delete("invoices", invoice_id)

    # -- Notes ----------------------------------------------------------------

    async def list_notes(self, customer_id: Optional[str] = None) -> List[Note]:
        filters = {"customer_id": customer_id} if customer_id else None
        rows = await self.select("notes", NOTE_COLUMNS, filters=filters, order=[("created_at", False)])
        return [Note(**row) for row in rows]

    async def recent_general_notes(self, limit: int = 3) -> List[Note]:
        """Latest notes not attached to any customer."""
        rows = await self.select(
            "notes", NOTE_COLUMNS, is_null=["customer_id"],
            order=[("created_at", False)], limit=limit,
        )
        return [Note(**row) for row in rows]

    async def create_note(self, note: NoteCreate) -> Note:
        row = await self.insert("notes", note.model_dump())
        return Note(**row)

    async def delete_note(self, note_id: str) -> None:
        log_info(f"Deleting note: {note_id}")
        await self.delete("notes", note_id)

    # -- Search ---------------------------------------------------------------

    async def search(self, query: str) -> SearchResults:
        """Case-insensitive substring search over customers, cars and appointment titles.

        Queries shorter than two characters return empty results without a
        backend call. Each list holds at most ten rows.
        """
        text = (query or "").strip()
        if len(text) < SEARCH_MIN_LENGTH:
            return SearchResults()

        log_debug(f"Searching for '{text}'")
        customers, cars, appointments = await asyncio.gather(
            self.select(
                "customers", CUSTOMER_COLUMNS,
                any_of=[ilike(column, text) for column in CUSTOMER_SEARCH_FIELDS],
                limit=SEARCH_LIMIT,
            ),
            self.select(
                "cars", CAR_COLUMNS,
                any_of=[ilike(column, text) for column in CAR_SEARCH_FIELDS],
                limit=SEARCH_LIMIT,
            ),
            self.select(
                "appointments", APPOINTMENT_COLUMNS,
                any_of=[ilike(column, text) for column in APPOINTMENT_SEARCH_FIELDS],
                order=[("date", True), ("time", True)],
                limit=SEARCH_LIMIT,
            ),
        )
        return SearchResults(
            customers=[Customer(**row) for row in customers],
            cars=[Car(**row) for row in cars],
            appointments=[Appointment(**row) for row in appointments],
        )


def ilike(column: str, text: str) -> str:
    """PostgREST condition: ``column`` contains ``text``, ignoring case.

    The pattern is double-quoted so commas and parentheses in the text do not
    break an ``or=(...)`` list.
    """
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'{column}.ilike."*{escaped}*"'


def _error_message(response: httpx.Response) -> str:
    """Best readable message from a PostgREST/GoTrue/Storage error body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return f"HTTP {response.status_code}: {body[key]}"
    return f"HTTP {response.status_code}: {body}"
