from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, TypeVar

T = TypeVar("T")


def snake_to_camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


def to_wire(obj: Any) -> dict[str, Any]:
    """Serializa un registro a su forma camelCase omitiendo atributos a None.

    Omitir los None es lo que da semántica de parche a `save` con id: solo se
    sobrescriben los campos que el llamador rellenó.
    """
    payload: dict[str, Any] = {}
    extra = getattr(obj, "extra", None)
    if isinstance(extra, Mapping):
        payload.update(extra)
    for item in dataclasses.fields(obj):
        if item.name == "extra":
            continue
        value = getattr(obj, item.name)
        if value is None:
            continue
        payload[snake_to_camel(item.name)] = value
    return payload


def from_wire(cls: type[T], payload: Mapping[str, Any]) -> T:
    known = {snake_to_camel(item.name): item.name for item in dataclasses.fields(cls) if item.name != "extra"}
    kwargs: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in payload.items():
        attr = known.get(key)
        if attr is None:
            extra[key] = value
        else:
            kwargs[attr] = value
    if any(item.name == "extra" for item in dataclasses.fields(cls)):
        kwargs["extra"] = extra
    return cls(**kwargs)


@dataclass
class Record:
    """Base de todos los registros de colección.

    `extra` conserva claves desconocidas del documento remoto para que los
    campos añadidos por otras versiones del cliente sobrevivan a un guardado.
    """

    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    label_field: ClassVar[str] = "id"

    def activity_label(self) -> str:
        return str(getattr(self, self.label_field, None) or "")


@dataclass
class Property(Record):
    title: str | None = None
    type: str | None = None
    status: str | None = None
    operation: str | None = None
    price: float | None = None
    sale_price: float | None = None
    rent_price: float | None = None
    currency: str | None = None
    address: str | None = None
    lat: float | None = None
    lng: float | None = None
    area: float | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    parking: int | None = None
    description: str | None = None
    features: list[str] | None = None
    images: list[str] | None = None
    owner_id: str | None = None
    captacion_source: str | None = None
    captador_agent: str | None = None
    captador_agency: str | None = None
    captacion_id: str | None = None
    captacion_date: str | None = None
    sale_data: dict[str, Any] | None = None

    label_field: ClassVar[str] = "title"


@dataclass
class Client(Record):
    name: str | None = None
    type: str | None = None
    phone: str | None = None
    email: str | None = None
    status: str | None = None
    budget: str | float | None = None
    preferences: str | None = None
    notes: str | None = None

    label_field: ClassVar[str] = "name"


@dataclass
class Followup(Record):
    type: str | None = None
    status: str | None = None
    date: str | None = None
    time: str | None = None
    time_end: str | None = None
    client_id: str | None = None
    property_id: str | None = None
    title: str | None = None
    result: str | None = None
    feedback: str | None = None
    notes: str | None = None

    label_field: ClassVar[str] = "title"


@dataclass
class Sign(Record):
    type: str | None = None
    phone: str | None = None
    address: str | None = None
    neighborhood: str | None = None
    photos: list[str] | None = None
    lat: float | None = None
    lng: float | None = None
    contacted: bool | None = None
    contact_date: str | None = None
    owner_name: str | None = None
    contact_type: str | None = None
    price: float | None = None
    previously_listed: bool | None = None
    previous_listing_info: str | None = None
    has_agent: bool | None = None
    agent_info: str | None = None
    notes: str | None = None
    custom_fields: dict[str, str] | None = None

    def activity_label(self) -> str:
        return f"Cartel {self.type or ''}: {self.phone or 'Sin teléfono'}"


@dataclass
class Expense(Record):
    amount: float | None = None
    date: str | None = None
    category: str | None = None
    note: str | None = None

    def activity_label(self) -> str:
        return f"Gasto {self.category or ''}: {self.amount if self.amount is not None else ''}".strip()


@dataclass
class Sale(Record):
    property_id: str | None = None
    property_title: str | None = None
    price: float | None = None
    date: str | None = None
    notes: str | None = None
    role: str | None = None
    financials: dict[str, Any] | None = None
    colleague: dict[str, Any] | None = None
    my_earnings: float | None = None

    def activity_label(self) -> str:
        return f"Venta registrada: {self.property_title or ''}"


@dataclass
class Colleague(Record):
    name: str | None = None
    agency: str | None = None
    phone: str | None = None

    label_field: ClassVar[str] = "name"


@dataclass
class Activity(Record):
    type: str | None = None
    action: str | None = None
    description: str | None = None
    timestamp: str | None = None


@dataclass
class AgentSettings:
    agent_level: str | None = None
    commission_percentage: float | None = None
    agent_name: str | None = None
    agent_agency: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


DEFAULT_SETTINGS: dict[str, Any] = {
    "agentLevel": "bronce",
    "commissionPercentage": 60,
    "agentName": "",
    "agentAgency": "",
}


@dataclass
class PendingApproval:
    """Alta propuesta por una sub-identidad a la espera del propietario."""

    type: str
    data: dict[str, Any]
    added_by: str
    added_by_name: str | None = None
    added_at: str | None = None
    recovered: bool | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CloudConfig:
    project_id: str
    credentials_path: str
    user_id: str
    user_name: str = ""
    user_email: str = ""
    device_id: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.project_id and self.credentials_path and self.user_id)
