"""ORM model package."""

from jobcost.models.entities import (
    Employee,
    EmployeeRate,
    EmployeeWork,
    Invoice,
    InvoiceDirection,
    Jobsite,
    JobsiteMaterial,
    JobsiteMaterialRate,
    JobsiteTruckingRate,
    MaterialShipment,
    Production,
    SystemRate,
    SystemRateKind,
    SystemSettings,
    TruckingRateType,
    Vehicle,
    VehicleRate,
    VehicleTypeDefaultRate,
    VehicleWork,
)
from jobcost.models.reports import (
    AggregateLevel,
    AggregateRef,
    JobsiteDayReport,
    JobsitePeriodReport,
    JobsiteYearMasterReport,
    UpdateStatus,
)

__all__ = [
    "AggregateLevel",
    "AggregateRef",
    "Employee",
    "EmployeeRate",
    "EmployeeWork",
    "Invoice",
    "InvoiceDirection",
    "Jobsite",
    "JobsiteDayReport",
    "JobsiteMaterial",
    "JobsiteMaterialRate",
    "JobsitePeriodReport",
    "JobsiteTruckingRate",
    "JobsiteYearMasterReport",
    "MaterialShipment",
    "Production",
    "SystemRate",
    "SystemRateKind",
    "SystemSettings",
    "TruckingRateType",
    "UpdateStatus",
    "Vehicle",
    "VehicleRate",
    "VehicleTypeDefaultRate",
    "VehicleWork",
]
