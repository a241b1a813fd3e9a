import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models.collection import Collection
from models.document import VehicleDocument
from models.history import MileageEntry, ValueEntry
from models.photo import Photo
from models.service_record import ServiceRecord, ServiceRecordReceipt
from models.vehicle import Vehicle
from schemas.rows import DocumentRow, MileageRow, ServiceRow, ValueRow, VehicleRow
from services.exceptions import StoreQueryError, StoreWriteError

logger = logging.getLogger(__name__)


class CollectionRepository:
    """
    Data store access for the archive pipelines.

    Every insert commits on its own. The pipelines never hold a multi-row
    transaction open, so whatever was written before a failure stays written
    and is reported to the user.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _all(self, stmt) -> list:
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreQueryError(str(e))

    async def _scalar(self, stmt):
        try:
            result = await self.db.execute(stmt)
            return result.scalar()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StoreQueryError(str(e))

    async def _insert(self, obj):
        self.db.add(obj)
        try:
            await self.db.commit()
            await self.db.refresh(obj)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Store insert failed", extra={"table": obj.__tablename__, "error": str(e)})
            raise StoreWriteError(f"Could not insert into {obj.__tablename__}: {e}") from e
        return obj

    # ----------------------------------------------------------------- reads

    async def get_collection(self, collection_id: int) -> Optional[Collection]:
        return await self._scalar(select(Collection).where(Collection.id == collection_id))

    async def list_vehicles(self, collection_id: int) -> List[Vehicle]:
        return await self._all(
            select(Vehicle).where(Vehicle.collection_id == collection_id).order_by(Vehicle.name, Vehicle.id)
        )

    async def get_vehicle(self, vehicle_id: int) -> Optional[Vehicle]:
        return await self._scalar(select(Vehicle).where(Vehicle.id == vehicle_id))

    async def count_vehicles(self, collection_id: int) -> int:
        count = await self._scalar(
            select(func.count()).select_from(Vehicle).where(Vehicle.collection_id == collection_id)
        )
        return count or 0

    async def photos_for_vehicle(self, vehicle_id: int) -> List[Photo]:
        return await self._all(
            select(Photo).where(Photo.vehicle_id == vehicle_id).order_by(Photo.display_order, Photo.id)
        )

    async def documents_for_vehicle(self, vehicle_id: int) -> List[VehicleDocument]:
        return await self._all(
            select(VehicleDocument)
            .where(VehicleDocument.vehicle_id == vehicle_id)
            .order_by(VehicleDocument.created_at, VehicleDocument.id)
        )

    async def service_records_for_vehicle(self, vehicle_id: int, order_by_title: bool = False) -> List[ServiceRecord]:
        """Newest first with receipts loaded; alphabetical by title for file matching."""
        ordering = (
            (ServiceRecord.title, ServiceRecord.id)
            if order_by_title
            else (ServiceRecord.service_date.desc(), ServiceRecord.id.desc())
        )
        return await self._all(
            select(ServiceRecord)
            .where(ServiceRecord.vehicle_id == vehicle_id)
            .options(selectinload(ServiceRecord.receipts))
            .order_by(*ordering)
        )

    async def mileage_for_vehicle(self, vehicle_id: int) -> List[MileageEntry]:
        return await self._all(
            select(MileageEntry)
            .where(MileageEntry.vehicle_id == vehicle_id)
            .order_by(MileageEntry.recorded_date.desc(), MileageEntry.id.desc())
        )

    async def values_for_vehicle(self, vehicle_id: int) -> List[ValueEntry]:
        return await self._all(
            select(ValueEntry)
            .where(ValueEntry.vehicle_id == vehicle_id)
            .order_by(ValueEntry.recorded_date.desc(), ValueEntry.id.desc())
        )

    async def max_display_order(self, vehicle_id: int) -> Optional[int]:
        return await self._scalar(select(func.max(Photo.display_order)).where(Photo.vehicle_id == vehicle_id))

    async def has_showcase_photo(self, vehicle_id: int) -> bool:
        count = await self._scalar(
            select(func.count()).select_from(Photo).where(Photo.vehicle_id == vehicle_id, Photo.is_showcase.is_(True))
        )
        return bool(count)

    # ---------------------------------------------------------------- writes

    async def insert_vehicle(self, collection_id: int, row: VehicleRow) -> Vehicle:
        return await self._insert(Vehicle(
            collection_id=collection_id,
            name=row.name,
            vehicle_type=row.vehicle_type,
            make=row.make,
            model=row.model,
            year=row.year,
            nickname=row.nickname,
            vin=row.vin,
            plate_number=row.plate_number,
            mileage=row.mileage,
            tab_expiration=row.tab_expiration,
            status=row.status,
            purchase_price=row.purchase_price,
            purchase_date=row.purchase_date,
            estimated_value=row.estimated_value,
            sale_info=row.sale_info.model_dump(exclude_none=True) if row.sale_info else None,
            notes=row.notes,
            maintenance_notes=row.maintenance_notes,
        ))

    async def insert_service_record(self, vehicle_id: int, row: ServiceRow) -> ServiceRecord:
        return await self._insert(ServiceRecord(
            vehicle_id=vehicle_id,
            service_date=row.service_date,
            title=row.title,
            description=row.description,
            cost=row.cost,
            odometer=row.odometer,
            shop_name=row.shop_name,
            category=row.category,
        ))

    async def insert_document(self, vehicle_id: int, row: DocumentRow, storage_path: str,
                              file_name: str, file_type: Optional[str]) -> VehicleDocument:
        return await self._insert(VehicleDocument(
            vehicle_id=vehicle_id,
            title=row.title,
            document_type=row.document_type,
            expiration_date=row.expiration_date,
            cost=row.cost,
            notes=row.notes,
            storage_path=storage_path,
            file_name=file_name,
            file_type=file_type,
        ))

    async def insert_receipt(self, service_record_id: int, storage_path: str,
                             file_name: str, file_type: Optional[str]) -> ServiceRecordReceipt:
        return await self._insert(ServiceRecordReceipt(
            service_record_id=service_record_id,
            storage_path=storage_path,
            file_name=file_name,
            file_type=file_type,
        ))

    async def insert_photo(self, vehicle_id: int, storage_path: str, display_order: int,
                           is_showcase: bool = False, caption: Optional[str] = None) -> Photo:
        return await self._insert(Photo(
            vehicle_id=vehicle_id,
            storage_path=storage_path,
            display_order=display_order,
            is_showcase=is_showcase,
            caption=caption,
        ))

    async def insert_mileage(self, vehicle_id: int, row: MileageRow) -> MileageEntry:
        return await self._insert(MileageEntry(
            vehicle_id=vehicle_id,
            mileage=row.mileage,
            recorded_date=row.recorded_date,
            notes=row.notes,
        ))

    async def insert_value(self, vehicle_id: int, row: ValueRow) -> ValueEntry:
        return await self._insert(ValueEntry(
            vehicle_id=vehicle_id,
            estimated_value=row.estimated_value,
            recorded_date=row.recorded_date,
            source=row.source,
            notes=row.notes,
        ))
