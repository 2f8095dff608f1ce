from __future__ import annotations

from inmogestor.domain.models import (
    AgentSettings,
    Client,
    PendingApproval,
    Property,
    Sale,
    Sign,
    from_wire,
    snake_to_camel,
    to_wire,
)


def test_snake_to_camel() -> None:
    assert snake_to_camel("created_at") == "createdAt"
    assert snake_to_camel("previous_listing_info") == "previousListingInfo"
    assert snake_to_camel("id") == "id"


def test_to_wire_omite_atributos_none() -> None:
    payload = to_wire(Client(name="Ana", phone=None, budget=150000))

    assert payload == {"name": "Ana", "budget": 150000}


def test_from_wire_conserva_claves_desconocidas_en_extra() -> None:
    client = from_wire(Client, {"id": "c1", "name": "Ana", "createdAt": "2025-01-01T00:00:00.000Z", "vip": True})

    assert client.id == "c1"
    assert client.created_at == "2025-01-01T00:00:00.000Z"
    assert client.extra == {"vip": True}
    assert to_wire(client)["vip"] is True


def test_campos_camel_case_de_property() -> None:
    prop = from_wire(Property, {"title": "Ático", "salePrice": 250000, "captadorAgent": "Luis", "saleData": {"finalPrice": 1}})

    assert prop.sale_price == 250000
    assert prop.captador_agent == "Luis"
    assert to_wire(prop) == {"title": "Ático", "salePrice": 250000, "captadorAgent": "Luis", "saleData": {"finalPrice": 1}}


def test_etiquetas_de_actividad() -> None:
    assert Property(title="Chalet").activity_label() == "Chalet"
    assert Client(name="Ana").activity_label() == "Ana"
    assert Sign(type="venta").activity_label() == "Cartel venta: Sin teléfono"
    assert Sign(type="alquiler", phone="600").activity_label() == "Cartel alquiler: 600"
    assert Sale(property_title="Piso centro").activity_label() == "Venta registrada: Piso centro"


def test_pending_approval_usa_nombres_remotos() -> None:
    entry = PendingApproval(type="client", data={"id": "x"}, added_by="u1", added_by_name="Sec", added_at="T")

    assert to_wire(entry) == {"type": "client", "data": {"id": "x"}, "addedBy": "u1", "addedByName": "Sec", "addedAt": "T"}
    assert from_wire(PendingApproval, {**to_wire(entry), "recovered": True}).recovered is True


def test_agent_settings_desde_remoto() -> None:
    settings = from_wire(AgentSettings, {"agentLevel": "oro", "commissionPercentage": 70, "theme": "dark"})

    assert settings.agent_level == "oro"
    assert settings.commission_percentage == 70
    assert settings.extra == {"theme": "dark"}
