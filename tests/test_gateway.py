"""Gateway tests against a mocked Supabase over httpx.MockTransport."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from zncrm.gateway.auth import AuthClient, AuthError
from zncrm.gateway.supabase_client import GatewayError, NotFoundError, SupabaseGateway, ilike
from zncrm.models.crm import CarPhoto, CustomerCreate, InvoiceCreate, InvoiceStatus, NoteCreate


BASE = "https://project.supabase.co"


def build_gateway(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> SupabaseGateway:
    return SupabaseGateway(BASE, "anon-key", transport=httpx.MockTransport(handler), **kwargs)


class Recorder:
    def __init__(self, responses: List[httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


async def test_list_appointments_on_queries_today_columns() -> None:
    recorder = Recorder([httpx.Response(200, json=[
        {"id": "a1", "title": "Oil change", "date": "2026-10-18", "time": "09:10", "location": "Main St 5"},
        {"id": 42, "title": None, "date": "2026-10-18", "time": "10:00", "location": None},
        {"title": "no id", "date": "2026-10-18", "time": "11:00"},
    ])])

    async with build_gateway(recorder) as gateway:
        snapshots = await gateway.list_appointments_on("2026-10-18")

    request = recorder.requests[0]
    assert request.url.path == "/rest/v1/appointments"
    assert request.url.params["select"] == "id,title,date,time,location"
    assert request.url.params["date"] == "eq.2026-10-18"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer anon-key"
    assert [s.id for s in snapshots] == ["a1", "42"]
    assert snapshots[1].title is None


async def test_error_status_raises_gateway_error() -> None:
    recorder = Recorder([httpx.Response(500, json={"message": "boom"})])

    async with build_gateway(recorder) as gateway:
        with pytest.raises(GatewayError) as excinfo:
            await gateway.list_customers()

    assert excinfo.value.status_code == 500
    assert "boom" in str(excinfo.value)


async def test_transport_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async with build_gateway(handler) as gateway:
        with pytest.raises(GatewayError):
            await gateway.list_appointments_on("2026-10-18")


async def test_request_before_connect_fails() -> None:
    gateway = build_gateway(Recorder([]))
    with pytest.raises(RuntimeError):
        await gateway.list_customers()


async def test_get_unknown_customer_raises_not_found() -> None:
    recorder = Recorder([httpx.Response(406, json={"code": "PGRST116", "message": "0 rows"})])

    async with build_gateway(recorder) as gateway:
        with pytest.raises(NotFoundError):
            await gateway.get_customer("missing")

    assert recorder.requests[0].headers["Accept"] == "application/vnd.pgrst.object+json"


async def test_create_customer_trims_and_nulls_blanks() -> None:
    recorder = Recorder([httpx.Response(201, json=[
        {"id": "c1", "first_name": "Anna", "last_name": None, "phone": None, "email": "a@x.nl"}
    ])])

    async with build_gateway(recorder) as gateway:
        customer = await gateway.create_customer(
            CustomerCreate(first_name="  Anna ", last_name="", phone="   ", email="a@x.nl")
        )

    body = json.loads(recorder.requests[0].content)
    assert body == {"first_name": "Anna", "last_name": None, "phone": None, "email": "a@x.nl"}
    assert recorder.requests[0].headers["Prefer"] == "return=representation"
    assert customer.full_name == "Anna"


async def test_list_customers_ordered_by_first_name() -> None:
    recorder = Recorder([httpx.Response(200, json=[])])

    async with build_gateway(recorder) as gateway:
        await gateway.list_customers()

    assert recorder.requests[0].url.params["order"] == "first_name.asc"


async def test_customer_overview_loads_linked_rows() -> None:
    recorder = Recorder([
        httpx.Response(200, json={"id": "c1", "first_name": "Anna"}),
        httpx.Response(200, json=[{"id": "car1", "license_plate": "AB-12-CD", "year": 2015}]),
        httpx.Response(200, json=[{"id": "a1", "title": "APK", "date": "2026-10-18", "time": "10:00:00"}]),
        httpx.Response(200, json=[{"id": "n1", "content": "Calls back", "customer_id": "c1"}]),
        httpx.Response(200, json=[{"id": "i1", "amount": "120.50", "status": "sent"}]),
    ])

    async with build_gateway(recorder) as gateway:
        overview = await gateway.get_customer_overview("c1")

    assert overview.customer.first_name == "Anna"
    assert overview.cars[0].year == "2015"
    assert overview.appointments[0].title == "APK"
    assert overview.invoices[0].amount == 120.5
    assert overview.invoices[0].status == InvoiceStatus.SENT
    appointment_params = recorder.requests[2].url.params
    assert appointment_params["customer_id"] == "eq.c1"
    assert appointment_params["order"] == "date.desc,time.desc"


async def test_create_invoice_fills_customer_name() -> None:
    recorder = Recorder([
        httpx.Response(200, json={"id": "c1", "first_name": "Anna", "last_name": "de Vries"}),
        httpx.Response(201, json=[{"id": "i1", "amount": 12.5, "status": "draft",
                                   "customer_id": "c1", "customer_name": "Anna de Vries"}]),
    ])

    async with build_gateway(recorder) as gateway:
        invoice = await gateway.create_invoice(InvoiceCreate(customer_id="c1", amount="12,50"))

    body = json.loads(recorder.requests[1].content)
    assert body["customer_name"] == "Anna de Vries"
    assert body["amount"] == 12.5
    assert body["status"] == "draft"
    assert invoice.customer_name == "Anna de Vries"


async def test_update_invoice_status_patches_by_id() -> None:
    recorder = Recorder([httpx.Response(200, json=[{"id": "i1", "amount": 10, "status": "paid"}])])

    async with build_gateway(recorder) as gateway:
        invoice = await gateway.update_invoice_status("i1", InvoiceStatus.PAID)

    request = recorder.requests[0]
    assert request.method == "PATCH"
    assert request.url.params["id"] == "eq.i1"
    assert json.loads(request.content) == {"status": "paid"}
    assert invoice.status == InvoiceStatus.PAID


async def test_update_of_missing_row_raises_not_found() -> None:
    recorder = Recorder([httpx.Response(200, json=[])])

    async with build_gateway(recorder) as gateway:
        with pytest.raises(NotFoundError):
            await gateway.update_appointment_status("gone", "done")


async def test_recent_general_notes_filters_null_customer() -> None:
    recorder = Recorder([httpx.Response(200, json=[{"id": "n1", "content": "Buy oil"}])])

    async with build_gateway(recorder) as gateway:
        notes = await gateway.recent_general_notes()

    params = recorder.requests[0].url.params
    assert params["customer_id"] == "is.null"
    assert params["limit"] == "3"
    assert params["order"] == "created_at.desc"
    assert notes[0].content == "Buy oil"


async def test_create_note_without_customer() -> None:
    recorder = Recorder([httpx.Response(201, json=[{"id": "n1", "content": "Quick note", "customer_id": None}])])

    async with build_gateway(recorder) as gateway:
        await gateway.create_note(NoteCreate(content=" Quick note ", customer_id=""))

    assert json.loads(recorder.requests[0].content) == {"content": "Quick note", "customer_id": None}


async def test_upload_car_photo_stores_object_then_row() -> None:
    recorder = Recorder([
        httpx.Response(200, json={"Key": "media/cars/car1/x.jpg"}),
        httpx.Response(201, json=[{"id": "p1", "car_id": "car1", "section": "front",
                                   "image_url": f"{BASE}/storage/v1/object/public/media/cars/car1/x.jpg"}]),
    ])

    async with build_gateway(recorder) as gateway:
        photo = await gateway.upload_car_photo("car1", "front view.jpg", b"img", "image/jpeg", "front")

    upload, insert = recorder.requests
    assert upload.url.path.startswith("/storage/v1/object/media/cars/car1/")
    assert upload.url.path.endswith("-front_view.jpg")
    assert upload.headers["Content-Type"] == "image/jpeg"
    assert upload.content == b"img"
    row = json.loads(insert.content)
    assert row["image_url"].startswith(f"{BASE}/storage/v1/object/public/media/cars/car1/")
    assert photo.id == "p1"


async def test_delete_car_photo_survives_storage_failure() -> None:
    recorder = Recorder([
        httpx.Response(500, json={"error": "storage down"}),
        httpx.Response(204),
    ])
    photo = CarPhoto(id="p1", car_id="car1",
                     image_url=f"{BASE}/storage/v1/object/public/media/cars/car1/x.jpg")

    async with build_gateway(recorder) as gateway:
        await gateway.delete_car_photo(photo)

    storage_delete, row_delete = recorder.requests
    assert json.loads(storage_delete.content) == {"prefixes": ["cars/car1/x.jpg"]}
    assert row_delete.url.path == "/rest/v1/car_photos"
    assert row_delete.url.params["id"] == "eq.p1"


async def test_with_access_token_shares_connection() -> None:
    recorder = Recorder([httpx.Response(200, json=[])])

    async with build_gateway(recorder) as gateway:
        user_view = gateway.with_access_token("user-token")
        await user_view.list_notes()
        await user_view.disconnect()
        assert gateway.is_connected

    assert recorder.requests[0].headers["Authorization"] == "Bearer user-token"


async def test_sign_in_and_get_user() -> None:
    recorder = Recorder([
        httpx.Response(200, json={"access_token": "tok", "refresh_token": "ref", "expires_in": 3600,
                                  "token_type": "bearer", "user": {"id": "u1", "email": "a@x.nl"}}),
        httpx.Response(200, json={"id": "u1", "email": "a@x.nl", "role": "authenticated"}),
        httpx.Response(401, json={"msg": "invalid JWT"}),
    ])

    async with build_gateway(recorder) as gateway:
        auth = AuthClient(gateway)
        session = await auth.sign_in("a@x.nl", "secret")
        user = await auth.get_user(session.access_token)
        expired = await auth.get_user("stale")
        missing = await auth.get_user(None)

    login = recorder.requests[0]
    assert login.url.path == "/auth/v1/token"
    assert login.url.params["grant_type"] == "password"
    assert recorder.requests[1].headers["Authorization"] == "Bearer tok"
    assert user is not None and user.id == "u1"
    assert expired is None
    assert missing is None
    assert len(recorder.requests) == 3


async def test_sign_in_with_bad_password_raises_auth_error() -> None:
    recorder = Recorder([httpx.Response(400, json={"error_description": "Invalid login credentials"})])

    async with build_gateway(recorder) as gateway:
        with pytest.raises(AuthError):
            await AuthClient(gateway).sign_in("a@x.nl", "wrong")


async def test_lists_embed_related_rows() -> None:
    recorder = Recorder([
        httpx.Response(200, json=[{"id": "car1", "license_plate": "AB-12-CD",
                                   "customers": {"id": "c1", "first_name": "Anna", "last_name": "de Vries"}}]),
        httpx.Response(200, json=[{"id": "a1", "title": "APK", "date": "2026-10-18", "time": "10:00",
                                   "customer_name": None,
                                   "customers": {"first_name": "Anna", "last_name": "de Vries"},
                                   "cars": {"license_plate": "AB-12-CD", "make": "VW"}}]),
        httpx.Response(200, json=[{"id": "n1", "content": "Calls back", "customers": None}]),
    ])

    async with build_gateway(recorder) as gateway:
        cars = await gateway.list_cars()
        appointments = await gateway.list_appointments("2026-10-18")
        notes = await gateway.list_notes()

    car_select, appointment_select, note_select = (r.url.params["select"] for r in recorder.requests)
    assert car_select.endswith(",customers(id,first_name,last_name,phone,email)")
    assert "customers(id,first_name,last_name,phone,email)" in appointment_select
    assert appointment_select.endswith(",cars(id,license_plate,make,model,year)")
    assert note_select == "id,content,customer_id,created_at,customers(id,first_name,last_name,phone,email)"

    assert cars[0].customer.full_name == "Anna de Vries"
    assert appointments[0].customer_display == "Anna de Vries"
    assert appointments[0].car_display == "AB-12-CD"
    assert notes[0].customer is None
    assert appointments[0].model_dump()["customer"]["first_name"] == "Anna"


async def test_free_text_customer_name_wins_over_linked_customer() -> None:
    recorder = Recorder([httpx.Response(200, json=[
        {"id": "a1", "title": "APK", "date": "2026-10-18", "time": "10:00",
         "customer_name": "Walk-in", "car_label": "Red Fiat",
         "customers": {"first_name": "Anna"}, "cars": {"license_plate": "AB-12-CD"}},
    ])])

    async with build_gateway(recorder) as gateway:
        appointment = (await gateway.list_appointments())[0]

    assert appointment.customer_display == "Walk-in"
    assert appointment.car_display == "Red Fiat"


async def test_search_queries_three_tables() -> None:
    requests: Dict[str, httpx.Request] = {}
    rows: Dict[str, List[Dict[str, Any]]] = {
        "/rest/v1/customers": [{"id": "c1", "first_name": "Anna"}],
        "/rest/v1/cars": [{"id": "car1", "license_plate": "AN-01-NA"}],
        "/rest/v1/appointments": [{"id": "a1", "title": "Anna APK", "date": "2026-10-18", "time": "10:00"}],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests[request.url.path] = request
        return httpx.Response(200, json=rows[request.url.path])

    async with build_gateway(handler) as gateway:
        results = await gateway.search("  an ")

    customers = requests["/rest/v1/customers"].url.params
    assert customers["or"] == (
        '(first_name.ilike."*an*",last_name.ilike."*an*",phone.ilike."*an*",email.ilike."*an*")'
    )
    assert customers["limit"] == "10"
    assert requests["/rest/v1/cars"].url.params["or"] == (
        '(license_plate.ilike."*an*",make.ilike."*an*",model.ilike."*an*")'
    )
    appointments = requests["/rest/v1/appointments"].url.params
    assert appointments["or"] == '(title.ilike."*an*")'
    assert appointments["order"] == "date.asc,time.asc"
    assert [c.id for c in results.customers] == ["c1"]
    assert [c.id for c in results.cars] == ["car1"]
    assert [a.id for a in results.appointments] == ["a1"]


async def test_short_search_makes_no_request() -> None:
    recorder = Recorder([])

    async with build_gateway(recorder) as gateway:
        results = await gateway.search(" a ")

    assert recorder.requests == []
    assert results.customers == [] and results.cars == [] and results.appointments == []


def test_ilike_quotes_reserved_characters() -> None:
    assert ilike("title", 'oil, "filter"') == 'title.ilike."*oil, \\"filter\\"*"'
