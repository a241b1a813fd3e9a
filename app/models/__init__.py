# Alembic will detect models here
from .collection import Collection
from .vehicle import Vehicle
from .photo import Photo
from .document import VehicleDocument
from .service_record import ServiceRecord, ServiceRecordReceipt
from .history import MileageEntry, ValueEntry
