"""
Pytest configuration and shared fixtures for the archive interchange test suite.

This module provides:
- Database fixtures (in-memory SQLite for fast tests)
- An in-memory BlobStorage double with per-path failure injection
- Factories for collections, vehicles and their attachments
- Zip building helpers
"""

import io
import zipfile
from datetime import date
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.db import Base
from models import (
    Collection,
    MileageEntry,
    Photo,
    ServiceRecord,
    ServiceRecordReceipt,
    ValueEntry,
    Vehicle,
    VehicleDocument,
)
from services.exceptions import BlobDeleteError, BlobDownloadError, BlobUploadError, SignedUrlError
from services.repository import CollectionRepository

# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TODAY = date(2024, 8, 1)

BUCKETS = {"photos": "photos", "documents": "documents", "receipts": "receipts"}


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def async_db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for testing."""
    async_session = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest.fixture
def repository(async_db_session) -> CollectionRepository:
    return CollectionRepository(async_db_session)


# Storage double
class FakeStorage:
    """
    BlobStorage kept in a dict keyed by (bucket, path).

    Failures are injected per storage path (sign / fetch / delete) or per
    uploaded payload (upload), since upload paths are random.
    """

    def __init__(self):
        self.blobs: Dict[tuple, bytes] = {}
        self.fail_sign: set = set()
        self.fail_fetch: set = set()
        self.fail_upload: set = set()
        self.fail_delete = False
        self.uploads: list = []
        self.deleted: list = []

    def put(self, bucket: str, path: str, data: bytes):
        self.blobs[(bucket, path)] = data

    async def create_signed_url(self, bucket: str, path: str) -> str:
        if path in self.fail_sign:
            raise SignedUrlError(f"cannot sign {path}")
        return f"fake://{bucket}/{path}"

    async def fetch(self, url: str) -> bytes:
        bucket, path = url[len("fake://"):].split("/", 1)
        if path in self.fail_fetch or (bucket, path) not in self.blobs:
            raise BlobDownloadError(f"cannot fetch {path}")
        return self.blobs[(bucket, path)]

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        if data in self.fail_upload:
            raise BlobUploadError(f"rejected {path}")
        self.uploads.append((bucket, path, content_type))
        self.blobs[(bucket, path)] = data

    async def delete(self, bucket: str, path: str) -> None:
        if self.fail_delete:
            raise BlobDeleteError(f"cannot delete {path}")
        self.deleted.append((bucket, path))
        self.blobs.pop((bucket, path), None)

    def paths_in(self, bucket: str) -> list:
        return [p for (b, p) in self.blobs if b == bucket]


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


# Test Data Factories
@pytest.fixture
def factory(async_db_session):
    """Insert helpers for seeding the store; every helper commits and returns the row."""

    class Factory:
        async def _save(self, obj):
            async_db_session.add(obj)
            await async_db_session.commit()
            await async_db_session.refresh(obj)
            return obj

        async def collection(self, name: str = "My Garage") -> Collection:
            return await self._save(Collection(name=name, owner_id="owner-1"))

        async def vehicle(self, collection: Collection, name: str, **kwargs) -> Vehicle:
            fields = {"vehicle_type": "motorcycle", "status": "active"}
            fields.update(kwargs)
            return await self._save(Vehicle(collection_id=collection.id, name=name, **fields))

        async def photo(self, vehicle: Vehicle, storage_path: str, display_order: int = 0,
                        caption: Optional[str] = None, is_showcase: bool = False) -> Photo:
            return await self._save(Photo(vehicle_id=vehicle.id, storage_path=storage_path,
                                          display_order=display_order, caption=caption,
                                          is_showcase=is_showcase))

        async def document(self, vehicle: Vehicle, title: str, storage_path: str, file_name: str,
                           document_type: str = "other") -> VehicleDocument:
            return await self._save(VehicleDocument(vehicle_id=vehicle.id, title=title,
                                                    document_type=document_type,
                                                    storage_path=storage_path, file_name=file_name,
                                                    file_type="application/pdf"))

        async def service_record(self, vehicle: Vehicle, title: str, service_date: date = TODAY,
                                 **kwargs) -> ServiceRecord:
            return await self._save(ServiceRecord(vehicle_id=vehicle.id, title=title,
                                                  service_date=service_date,
                                                  category=kwargs.pop("category", "maintenance"), **kwargs))

        async def receipt(self, record: ServiceRecord, storage_path: str, file_name: str) -> ServiceRecordReceipt:
            return await self._save(ServiceRecordReceipt(service_record_id=record.id, storage_path=storage_path,
                                                         file_name=file_name, file_type="application/pdf"))

        async def mileage(self, vehicle: Vehicle, mileage: int, recorded_date: date = TODAY) -> MileageEntry:
            return await self._save(MileageEntry(vehicle_id=vehicle.id, mileage=mileage,
                                                 recorded_date=recorded_date))

        async def value(self, vehicle: Vehicle, estimated_value: float, recorded_date: date = TODAY,
                        source: Optional[str] = None) -> ValueEntry:
            return await self._save(ValueEntry(vehicle_id=vehicle.id, estimated_value=estimated_value,
                                               recorded_date=recorded_date, source=source))

    return Factory()


@pytest_asyncio.fixture
async def garage(factory, storage):
    """
    'My Garage': Bumblebee with three photos (two captioned Garage), a document,
    a service record with one receipt, mileage and value history; Wrench, sold.
    Every blob is present in `storage`.
    """
    collection = await factory.collection("My Garage")
    bee = await factory.vehicle(collection, "Bumblebee", make="Honda", model="CBR650F", year=2019,
                                purchase_price=8500)
    wrench = await factory.vehicle(collection, "Wrench", status="sold",
                                   sale_info={"type": "sold", "date": "2024-07-25", "amount": 4000})

    photos = [
        await factory.photo(bee, "1/111-aaaaaa.jpg", 0, caption="Garage", is_showcase=True),
        await factory.photo(bee, "1/222-bbbbbb.jpg", 1, caption="Garage"),
        await factory.photo(bee, "1/333-cccccc.png", 2),
    ]
    for i, photo in enumerate(photos):
        storage.put("photos", photo.storage_path, f"photo-{i}".encode())

    doc = await factory.document(bee, "Title", "1/444-dddddd.pdf", "title scan.pdf", document_type="title")
    storage.put("documents", doc.storage_path, b"doc")

    record = await factory.service_record(bee, "Oil Change", date(2024, 5, 1), cost=45.5)
    receipt = await factory.receipt(record, "9/555-eeeeee.pdf", "oil, filter.pdf")
    storage.put("receipts", receipt.storage_path, b"receipt")

    await factory.mileage(bee, 12400, date(2024, 6, 1))
    await factory.value(bee, 9000, date(2024, 1, 1), source="KBB")

    return SimpleNamespace(collection=collection, bee=bee, wrench=wrench, photos=photos, doc=doc,
                           record=record, receipt=receipt)


# Utility Functions
def make_zip(members: Dict[str, bytes]) -> bytes:
    """Zip the given path -> bytes mapping"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for path, data in members.items():
            zf.writestr(path, data)
    return buffer.getvalue()


def zip_names(data: bytes) -> list:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return zf.namelist()


def zip_read(data: bytes, path: str) -> bytes:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return zf.read(path)
