import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from starlette.datastructures import UploadFile

import notifications
import sitemap
from appointments import AppointmentBook, send_booking_notifications
from auth import Accounts, public_user
from catalog import ServiceCatalog
from config import Settings, get_settings
from dashboard import dashboard_stats
from database import DocumentStore, connect
from errors import ShopError, StoreError
from inventory import parse_inventory_query
from schemas import AppointmentNote, AppointmentUpdate, ContactMessage
from storage import ImageBucket, ImagePipeline, Upload, connect_bucket, url_resolves
from testimonials import TestimonialBoard
from vehicles import VehicleCatalog, summary

settings = get_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("autopro")

store = connect(settings)
bucket = connect_bucket(settings)

app = FastAPI(title="Auto Pro Repairs & Sales API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
def get_store() -> Optional[DocumentStore]:
    return store


def get_bucket() -> Optional[ImageBucket]:
    return bucket


def get_verifier():
    return url_resolves


def get_notifier(settings: Settings = Depends(get_settings)) -> notifications.Notifier:
    return notifications.from_settings(settings)


def store_failure_message(settings: Settings) -> str:
    return f"Sorry, something went wrong on our end. Please try again or call us at {settings.shop_phone}."


def require_store(
    store: Optional[DocumentStore] = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> DocumentStore:
    if store is None:
        raise StoreError(store_failure_message(settings), public=True)
    return store


def get_catalog(
    store: DocumentStore = Depends(require_store),
    bucket: Optional[ImageBucket] = Depends(get_bucket),
    settings: Settings = Depends(get_settings),
    verify=Depends(get_verifier),
) -> VehicleCatalog:
    return VehicleCatalog(store, ImagePipeline(bucket, settings, verify))


def get_book(store: DocumentStore = Depends(require_store), settings: Settings = Depends(get_settings)) -> AppointmentBook:
    return AppointmentBook(store, settings)


def get_board(store: DocumentStore = Depends(require_store)) -> TestimonialBoard:
    return TestimonialBoard(store)


def get_services(store: DocumentStore = Depends(require_store)) -> ServiceCatalog:
    return ServiceCatalog(store)


def get_accounts(store: DocumentStore = Depends(require_store), settings: Settings = Depends(get_settings)) -> Accounts:
    return Accounts(store, settings)


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def require_admin(token: Optional[str] = Depends(bearer_token), accounts: Accounts = Depends(get_accounts)) -> Dict[str, Any]:
    return accounts.require_admin(token)


@app.exception_handler(ShopError)
async def handle_shop_error(request: Request, exc: ShopError):
    body: Dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, StoreError):
        settings = get_settings()
        cause = exc.__cause__ or exc.__context__
        debug = [str(cause)] if cause is not None else []
        if not exc.public:
            body["detail"] = store_failure_message(settings)
            debug.insert(0, exc.message)
        if debug and not settings.is_production:
            body["debug"] = ": ".join(debug)
    return JSONResponse(status_code=exc.status_code, content=body)


# Request bodies
class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    phone: Optional[str] = None


class BulkUpdateRequest(BaseModel):
    ids: List[str]
    status: Optional[str] = None
    featured: Optional[bool] = None


class ContactRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    subject: Optional[str] = None
    message: Optional[str] = None
    vehicle_id: Optional[str] = None


async def _read_form(request: Request, file_fields: tuple):
    form = await request.form()
    fields: Dict[str, Any] = {}
    uploads: List[Upload] = []
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key in file_fields and value.filename:
                uploads.append(Upload(value.filename, value.content_type or "", await value.read()))
        elif key == "features":
            fields.setdefault("features", []).append(value)
        else:
            fields[key] = value
    if len(fields.get("features", [])) == 1:
        fields["features"] = fields["features"][0]
    return fields, uploads


@app.get("/")
def read_root():
    return {"message": "Auto Pro Backend Running"}


# Vehicles
@app.get("/api/vehicles")
def list_vehicles(
    request: Request,
    store: Optional[DocumentStore] = Depends(get_store),
    bucket: Optional[ImageBucket] = Depends(get_bucket),
    settings: Settings = Depends(get_settings),
):
    query = parse_inventory_query(request.query_params)
    empty = {"vehicles": [], "total": 0, "page": query.page, "pages": 0, "limit": query.limit}
    if store is None:
        return empty
    catalog = VehicleCatalog(store, ImagePipeline(bucket, settings))
    try:
        return catalog.list(query)
    except StoreError:
        logger.exception("Inventory listing failed, returning empty result")
        return empty


@app.get("/api/vehicles/stats/overview", dependencies=[Depends(require_admin)])
def vehicle_stats(catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.stats()


@app.post("/api/vehicles/bulk", dependencies=[Depends(require_admin)])
def bulk_update_vehicles(payload: BulkUpdateRequest, catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.bulk_update(payload.ids, status=payload.status, featured=payload.featured)


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.get_by_id(vehicle_id)


@app.post("/api/vehicles", status_code=201, dependencies=[Depends(require_admin)])
async def create_vehicle(request: Request, catalog: VehicleCatalog = Depends(get_catalog)):
    fields, uploads = await _read_form(request, ("images",))
    vehicle = await run_in_threadpool(catalog.create, fields, uploads)
    return {"message": "Vehicle created successfully", "vehicle": vehicle}


@app.put("/api/vehicles/{vehicle_id}", dependencies=[Depends(require_admin)])
async def update_vehicle(vehicle_id: str, request: Request, catalog: VehicleCatalog = Depends(get_catalog)):
    fields, uploads = await _read_form(request, ("newImages", "images"))
    keep_images = None
    if "keepImages" in fields:
        raw = fields.pop("keepImages")
        try:
            keep_images = json.loads(raw) if raw else []
        except ValueError:
            raise HTTPException(status_code=400, detail="keepImages must be a JSON list of image URLs")
        if not isinstance(keep_images, list):
            raise HTTPException(status_code=400, detail="keepImages must be a JSON list of image URLs")
    vehicle = await run_in_threadpool(catalog.update, vehicle_id, fields, uploads, keep_images)
    return {"message": "Vehicle updated successfully", "vehicle": vehicle}


@app.delete("/api/vehicles/{vehicle_id}", dependencies=[Depends(require_admin)])
def delete_vehicle(vehicle_id: str, catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.delete(vehicle_id)


@app.patch("/api/vehicles/{vehicle_id}/featured", dependencies=[Depends(require_admin)])
def toggle_featured(vehicle_id: str, catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.toggle_featured(vehicle_id)


@app.post("/api/admin/migrate-images", dependencies=[Depends(require_admin)])
def migrate_images(catalog: VehicleCatalog = Depends(get_catalog)):
    return catalog.migrate_images()


# Appointments
@app.post("/api/appointments")
def create_appointment(
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
    book: AppointmentBook = Depends(get_book),
    notifier: notifications.Notifier = Depends(get_notifier),
):
    created = book.book(payload)
    background_tasks.add_task(send_booking_notifications, dict(created), notifier, book)
    return {
        "success": True,
        "message": "Appointment request submitted successfully! We will contact you within 24 hours to confirm.",
        "appointment": created,
    }


@app.get("/api/appointments", dependencies=[Depends(require_admin)])
def list_appointments(
    status: Optional[str] = None,
    date: Optional[str] = None,
    book: AppointmentBook = Depends(get_book),
):
    items = book.list(status=status, on_date=date)
    return {"appointments": items, "count": len(items)}


@app.get("/api/appointments/{appointment_id}", dependencies=[Depends(require_admin)])
def get_appointment(appointment_id: str, book: AppointmentBook = Depends(get_book)):
    return book.get(appointment_id)


@app.put("/api/appointments/{appointment_id}", dependencies=[Depends(require_admin)])
def update_appointment(appointment_id: str, changes: AppointmentUpdate, book: AppointmentBook = Depends(get_book)):
    return book.update(appointment_id, changes)


@app.post("/api/appointments/{appointment_id}/notes", dependencies=[Depends(require_admin)])
def add_appointment_note(appointment_id: str, note: AppointmentNote, book: AppointmentBook = Depends(get_book)):
    return book.add_note(appointment_id, note)


# Testimonials
@app.get("/api/testimonials")
def list_testimonials(
    featured: Optional[bool] = None,
    limit: int = Query(0, ge=0, le=50),
    board: TestimonialBoard = Depends(get_board),
):
    items = board.published(featured=featured, limit=limit)
    return {"testimonials": items, "count": len(items)}


@app.post("/api/testimonials", status_code=201)
def submit_testimonial(payload: Dict[str, Any] = Body(...), board: TestimonialBoard = Depends(get_board)):
    created = board.submit(payload)
    return {"success": True, "message": "Testimonial submitted for review", "testimonial": created}


@app.get("/api/admin/testimonials", dependencies=[Depends(require_admin)])
def all_testimonials(approved: Optional[bool] = None, board: TestimonialBoard = Depends(get_board)):
    items = board.all(approved=approved)
    return {"testimonials": items, "count": len(items)}


@app.patch("/api/admin/testimonials/{testimonial_id}/{action}", dependencies=[Depends(require_admin)])
def moderate_testimonial(testimonial_id: str, action: str, board: TestimonialBoard = Depends(get_board)):
    return board.set_flag(testimonial_id, action)


@app.delete("/api/admin/testimonials/{testimonial_id}", dependencies=[Depends(require_admin)])
def delete_testimonial(testimonial_id: str, board: TestimonialBoard = Depends(get_board)):
    board.delete(testimonial_id)
    return {"message": "Testimonial deleted"}


# Service catalog
@app.get("/api/services")
def list_services(services: ServiceCatalog = Depends(get_services)):
    items = services.active()
    return {"services": items, "count": len(items)}


@app.get("/api/services/{slug}")
def get_service(slug: str, services: ServiceCatalog = Depends(get_services)):
    return services.by_slug(slug)


@app.get("/api/admin/services", dependencies=[Depends(require_admin)])
def all_services(services: ServiceCatalog = Depends(get_services)):
    items = services.all()
    return {"services": items, "count": len(items)}


@app.post("/api/services", status_code=201, dependencies=[Depends(require_admin)])
def create_service(payload: Dict[str, Any] = Body(...), services: ServiceCatalog = Depends(get_services)):
    return services.create(payload)


@app.put("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def update_service(service_id: str, payload: Dict[str, Any] = Body(...), services: ServiceCatalog = Depends(get_services)):
    return services.update(service_id, payload)


@app.delete("/api/services/{service_id}", dependencies=[Depends(require_admin)])
def delete_service(service_id: str, services: ServiceCatalog = Depends(get_services)):
    services.delete(service_id)
    return {"message": "Service deleted"}


# Auth
@app.post("/api/auth/login")
def login(payload: LoginRequest, accounts: Accounts = Depends(get_accounts)):
    return accounts.login(payload.email, payload.password)


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, accounts: Accounts = Depends(get_accounts)):
    return accounts.register(payload.name, payload.email, payload.password, payload.phone)


@app.post("/api/auth/logout")
def logout(token: Optional[str] = Depends(bearer_token), accounts: Accounts = Depends(get_accounts)):
    accounts.logout(token)
    return {"success": True, "message": "Logged out"}


@app.get("/api/auth/me")
def current_user(token: Optional[str] = Depends(bearer_token), accounts: Accounts = Depends(get_accounts)):
    session = accounts.session_for(token)
    return public_user({"id": session["user_id"], "email": session["email"], "role": session["role"]})


# Contact
@app.post("/api/contact")
def contact(
    payload: ContactRequest,
    background_tasks: BackgroundTasks,
    store: DocumentStore = Depends(require_store),
    catalog: VehicleCatalog = Depends(get_catalog),
    notifier: notifications.Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    if not all((payload.name, payload.email, payload.subject, payload.message)):
        raise HTTPException(status_code=400, detail="Missing required fields")
    try:
        message = ContactMessage(**payload.model_dump())
    except SchemaError as exc:
        error = exc.errors()[0]
        field = ".".join(str(p) for p in error.get("loc", ())) or "message"
        if field == "email":
            raise HTTPException(status_code=400, detail="Please enter a valid email address")
        raise HTTPException(status_code=400, detail=f"Invalid {field}: {error.get('msg')}")
    saved = store.insert("contactmessage", message.model_dump())
    logger.info("Contact message %s from %s", saved["id"], message.email)

    email_view = dict(saved)
    if message.vehicle_id:
        try:
            catalog.record_inquiry(message.vehicle_id)
            email_view["vehicle"] = summary(catalog.get(message.vehicle_id))
        except ShopError as exc:
            logger.warning("Could not attach vehicle %s to contact message: %s", message.vehicle_id, exc.message)

    background_tasks.add_task(_send_contact_notification, notifier, email_view, settings)
    return {"success": True, "message": "Message sent successfully"}


def _send_contact_notification(notifier: notifications.Notifier, message: Dict[str, Any], settings: Settings) -> None:
    result = notifications.notify_contact(notifier, message, settings)
    notifications.log_results([result], f"contact message {message.get('id')}")


@app.get("/api/admin/messages", dependencies=[Depends(require_admin)])
def list_messages(unread: bool = False, store: DocumentStore = Depends(require_store)):
    query = {"read": False} if unread else {}
    items = store.find("contactmessage", query, sort=[("created_at", -1)])
    return {"messages": items, "count": len(items)}


@app.patch("/api/admin/messages/{message_id}/read", dependencies=[Depends(require_admin)])
def mark_message_read(message_id: str, store: DocumentStore = Depends(require_store)):
    updated = store.update("contactmessage", message_id, {"read": True})
    if updated is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return updated


@app.get("/api/admin/analytics", dependencies=[Depends(require_admin)])
def analytics(store: DocumentStore = Depends(require_store)):
    return dashboard_stats(store)


@app.get("/sitemap.xml")
def sitemap_xml(store: Optional[DocumentStore] = Depends(get_store), settings: Settings = Depends(get_settings)):
    vehicles: List[Dict[str, Any]] = []
    if store is not None:
        try:
            vehicles = store.find("vehicle", {"status": "available"}, sort=[("created_at", -1)])
        except StoreError:
            logger.exception("Sitemap built without vehicle pages")
    xml = sitemap.render(settings.site_url, sitemap.pages_for(vehicles))
    return Response(content=xml, media_type="application/xml", headers={"Cache-Control": "public, max-age=3600"})


@app.get("/test")
def test_database(store: Optional[DocumentStore] = Depends(get_store), settings: Settings = Depends(get_settings)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "store_backend": settings.store_backend,
        "connection_status": "Not Connected",
        "collections": [],
    }

    if store is not None:
        try:
            response["collections"] = store.ping()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except StoreError as e:
            response["database"] = f"⚠️ Connected but Error: {str(e.__cause__ or e)[:50]}"
    else:
        response["database"] = "❌ Not Configured"

    # Env flags
    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    response["database_name"] = settings.database_name
    response["supabase"] = "✅ Set" if settings.supabase_url and settings.supabase_key else "❌ Not Set"
    response["email_functions"] = "✅ Set" if settings.functions_url else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
