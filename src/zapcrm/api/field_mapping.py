"""Bilingual lead field mapping for the public API boundary.

Internally a lead has one canonical (English) schema. Legacy API clients
speak Portuguese field names and temperature values; translation happens
here only, never inside the domain.
"""

from types import MappingProxyType
from typing import Any, Mapping

# Portuguese field name -> canonical field name
LEAD_FIELD_MAP: Mapping[str, str] = MappingProxyType(
    {
        "nome": "name",
        "telefone": "phone",
        "codigo_pais": "country_code",
        "email": "email",
        "etapa_id": "stage_id",
        "temperatura": "temperature",
        "responsavel_id": "assigned_to",
        "valor_estimado": "estimated_value",
        "tipo_beneficio": "benefit_type",
        "status_caso": "case_status",
        "origem": "source",
        "nome_whatsapp": "whatsapp_name",
        "criado_em": "created_at",
        "atualizado_em": "updated_at",
    }
)

CANONICAL_TO_PORTUGUESE: Mapping[str, str] = MappingProxyType(
    {en: pt for pt, en in LEAD_FIELD_MAP.items()}
)

TEMPERATURE_TO_PORTUGUESE: Mapping[str, str] = MappingProxyType(
    {"cold": "frio", "warm": "morno", "hot": "quente"}
)
TEMPERATURE_FROM_PORTUGUESE: Mapping[str, str] = MappingProxyType(
    {pt: en for en, pt in TEMPERATURE_TO_PORTUGUESE.items()}
)


def to_canonical(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Accept a lead payload in either language and return canonical keys.

    When both the Portuguese and the canonical key are present, the
    canonical one wins. Unknown keys pass through unchanged.
    """
    result: dict[str, Any] = {}

    for key, value in payload.items():
        canonical_key = LEAD_FIELD_MAP.get(key)
        if canonical_key is None:
            result[key] = value
        elif canonical_key not in payload:
            result[canonical_key] = value

    temperature = result.get("temperature")
    if isinstance(temperature, str):
        result["temperature"] = TEMPERATURE_FROM_PORTUGUESE.get(temperature, temperature)

    return result


def to_portuguese(record: Mapping[str, Any]) -> dict[str, Any]:
    """Render a canonical lead record with the legacy Portuguese field names."""
    result: dict[str, Any] = {}

    for key, value in record.items():
        if key == "temperature" and isinstance(value, str):
            value = TEMPERATURE_TO_PORTUGUESE.get(value, value)
        result[CANONICAL_TO_PORTUGUESE.get(key, key)] = value

    return result
