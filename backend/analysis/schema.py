"""
Data source definitions and the fixed vocabularies the extractor scans for.
"""
from typing import Dict, FrozenSet, List

from pydantic import BaseModel, ConfigDict


class DataSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    temporal: List[str]
    categorical: List[str]
    metrics: List[str]

    @property
    def date_field(self) -> str:
        return self.temporal[0]

    @property
    def fields(self) -> FrozenSet[str]:
        return frozenset(self.temporal + self.categorical + self.metrics)


ORDERS = DataSource(
    name="orders",
    temporal=["order_date", "ship_date"],
    categorical=[
        "region", "customer_name", "segment", "country", "city",
        "state", "category", "sub_category", "product_name", "ship_mode",
    ],
    metrics=["sales", "quantity", "discount", "profit"],
)

DATA_SOURCES: Dict[str, DataSource] = {ORDERS.name: ORDERS}

ALLOWED_FUNCTIONS = frozenset({"SUM", "DATE_TRUNC"})

# Order matters: geographic extraction returns the first name of this list
# found in the question, not the first one in the text.
STATE_NAMES = [
    "California", "Texas", "New York", "Florida", "Illinois",
    "Ohio", "Pennsylvania", "Georgia", "North Carolina",
    "Michigan", "New Jersey", "Virginia", "Washington",
    "Arizona", "Massachusetts", "Tennessee", "Indiana",
    "Missouri", "Maryland", "Wisconsin", "Colorado",
    "Minnesota", "South Carolina", "Alabama", "Louisiana",
    "Kentucky", "Oregon", "Oklahoma", "Connecticut",
    "Iowa", "Mississippi", "Arkansas", "Utah",
    "Nevada", "Kansas", "New Mexico", "West Virginia",
    "Nebraska", "Idaho", "Hawaii", "Maine",
    "New Hampshire", "Rhode Island", "Montana", "Delaware",
    "South Dakota", "North Dakota", "Alaska", "Vermont",
    "Wyoming",
]

# Human labels for result columns, used by titles and axes
FIELD_LABELS = {
    "customer_name": ("Customer", "Customers"),
    "product_name": ("Product", "Products"),
    "category": ("Category", "Categories"),
    "sub_category": ("Sub-Category", "Sub-Categories"),
    "segment": ("Segment", "Segments"),
    "region": ("Region", "Regions"),
    "country": ("Country", "Countries"),
    "state": ("State", "States"),
    "city": ("City", "Cities"),
    "ship_mode": ("Ship Mode", "Ship Modes"),
    "sales": ("Sales", "Sales"),
    "profit": ("Profit", "Profit"),
    "quantity": ("Quantity", "Quantity"),
    "discount": ("Discount", "Discount"),
}

CURRENCY_METRICS = frozenset({"sales", "profit"})


def field_label(field: str, plural: bool = False) -> str:
    singular, many = FIELD_LABELS.get(field, (field.replace("_", " ").title(),) * 2)
    return many if plural else singular
