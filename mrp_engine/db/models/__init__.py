"""
ORM models for planning inputs (products, BOMs, stock, open orders, calendar
exceptions) and the records the engine owns (runs, recommendations, dependent demand).

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

from .master_data import (  # noqa: F401
    Product,
    Bom,
    BomItem,
)
from .inventory import (  # noqa: F401
    Warehouse,
    StockLevel,
)
from .orders import (  # noqa: F401
    SupplyOrder,
    DemandOrder,
)
from .calendar import (  # noqa: F401
    CalendarException,
)
from .mrp import (  # noqa: F401
    MrpRun,
    MrpRecommendation,
    MrpDependentDemand,
)
