import copy
import io
import os
import uuid
from collections import defaultdict

import pytest
from PIL import Image

# keep the app from reaching real services while it is imported
os.environ["DATABASE_URL"] = ""
os.environ["SUPABASE_URL"] = ""
os.environ["SUPABASE_KEY"] = ""
os.environ["APP_ENV"] = "development"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from config import Settings, get_settings  # noqa: E402
from database import DocumentStore, _stamp_new, _stamp_update  # noqa: E402
from errors import StoreError  # noqa: E402
from notifications import NotificationResult, Notifier  # noqa: E402
from storage import ImageBucket, ImagePipeline, Upload  # noqa: E402
from vehicles import VehicleCatalog  # noqa: E402

BUCKET_BASE = "https://files.test/storage/v1/object/public/vehicle-images/"


def _matches(doc, query):
    for key, cond in (query or {}).items():
        value = doc.get(key)
        if isinstance(cond, dict):
            for op, arg in cond.items():
                if op == "$gte" and (value is None or value < arg):
                    return False
                if op == "$lte" and (value is None or value > arg):
                    return False
                if op == "$in" and value not in arg:
                    return False
        elif value != cond:
            return False
    return True


class MemoryStore(DocumentStore):
    name = "memory"

    def __init__(self):
        self.collections = defaultdict(dict)
        self.fail = False

    def _check(self):
        if self.fail:
            raise StoreError("Database error during test") from ConnectionError("connection refused")

    def find(self, collection, query=None, sort=None, skip=0, limit=0):
        self._check()
        docs = [copy.deepcopy(d) for d in self.collections[collection].values() if _matches(d, query)]
        for field, direction in reversed(list(sort or [])):
            present = [d for d in docs if d.get(field) is not None]
            missing = [d for d in docs if d.get(field) is None]
            present.sort(key=lambda d: d[field], reverse=direction < 0)
            docs = present + missing
        docs = docs[skip:]
        return docs[:limit] if limit else docs

    def count(self, collection, query=None):
        self._check()
        return sum(1 for d in self.collections[collection].values() if _matches(d, query))

    def insert(self, collection, data):
        self._check()
        doc = _stamp_new(data)
        doc["id"] = uuid.uuid4().hex
        self.collections[collection][doc["id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    def update(self, collection, doc_id, fields):
        self._check()
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        doc.update(copy.deepcopy(_stamp_update(fields)))
        return copy.deepcopy(doc)

    def update_many(self, collection, ids, fields):
        return sum(1 for doc_id in ids if self.update(collection, doc_id, fields) is not None)

    def increment(self, collection, doc_id, field, amount=1):
        self._check()
        doc = self.collections[collection].get(doc_id)
        if doc is None:
            return None
        doc[field] = (doc.get(field) or 0) + amount
        return copy.deepcopy(doc)

    def delete(self, collection, doc_id):
        self._check()
        return self.collections[collection].pop(doc_id, None) is not None

    def ping(self):
        self._check()
        return sorted(self.collections)


class MemoryBucket(ImageBucket):
    name = "vehicle-images"

    def __init__(self):
        self.objects = {}
        self.removed = []
        self.fail_remove = set()
        self.ensured = 0

    def ensure(self):
        self.ensured += 1

    def upload(self, path, data, content_type):
        self.objects[path] = (data, content_type)

    def public_url(self, path):
        return BUCKET_BASE + path

    def remove(self, path):
        self.removed.append(path)
        if path in self.fail_remove:
            raise RuntimeError("storage unavailable")
        self.objects.pop(path, None)

    def path_for(self, url):
        if not url or not url.startswith(BUCKET_BASE):
            return None
        return url[len(BUCKET_BASE):]


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__("https://functions.test", "test-key")
        self.sent = []
        self.failing = set()
        self.explode = False

    def send(self, function, payload):
        if self.explode:
            raise RuntimeError("email provider crashed")
        self.sent.append((function, payload))
        if function in self.failing:
            return NotificationResult(function, False, "HTTP 500: provider down")
        return NotificationResult(function, True)


def image_bytes(size=(1600, 1200), fmt="PNG", color=(200, 30, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def png_upload(name="car.png", size=(1600, 1200)):
    return Upload(name, "image/png", image_bytes(size))


def add_vehicle(store, **fields):
    doc = {
        "year": 2018,
        "make": "Toyota",
        "model": "Camry",
        "price": 12000.0,
        "mileage": 60000,
        "stock_number": uuid.uuid4().hex[:8].upper(),
        "status": "available",
        "condition": "Good",
        "featured": False,
        "views": 0,
        "inquiries": 0,
        "images": [],
    }
    doc.update(fields)
    return store.insert("vehicle", doc)


@pytest.fixture
def settings():
    return Settings(
        environment="development",
        supabase_key="test-key",
        email_functions_url="https://functions.test",
        verify_uploads=False,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def bucket():
    return MemoryBucket()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def pipeline(bucket, settings):
    return ImagePipeline(bucket, settings, verify=lambda url: True)


@pytest.fixture
def catalog(store, pipeline):
    return VehicleCatalog(store, pipeline)


@pytest.fixture
def client(settings, store, bucket, notifier):
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_bucket] = lambda: bucket
    main.app.dependency_overrides[main.get_notifier] = lambda: notifier
    main.app.dependency_overrides[main.get_verifier] = lambda: (lambda url: True)
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture
def admin_headers(client, settings):
    response = client.post(
        "/api/auth/login",
        json={"email": settings.demo_admin_email, "password": settings.demo_admin_password},
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}
