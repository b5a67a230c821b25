"""Clarity workbook field catalog and response storage.

Field keys form a closed namespace: every key the employee portal may save is
listed in ``WORKBOOK_FIELDS``. Keys are ``<section prefix>_<name>``; rating
fields (the professional life wheel) accept whole numbers 0-10.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Mapping

from .utils import iso

RATING_MIN = 0
RATING_MAX = 10
MAX_TEXT_LENGTH = 10_000


class UnknownWorkbookField(ValueError):
    pass


class InvalidWorkbookValue(ValueError):
    pass


@dataclass(frozen=True)
class WorkbookField:
    key: str
    label: str
    field_type: str
    section: str


SECTIONS: "OrderedDict[str, str]" = OrderedDict(
    [
        ("capsula_tempo", "Cápsula do Tempo"),
        ("roda_vida", "Roda da Vida Profissional"),
        ("matriz_habilidades", "Matriz de Habilidades"),
        ("plano_90_dias", "Plano de Ação 90 Dias"),
        ("reflexao_final", "Compromisso e Reflexão Final"),
    ]
)


def _field(key: str, label: str, section: str, field_type: str = "textarea") -> WorkbookField:
    return WorkbookField(key=key, label=label, field_type=field_type, section=section)


WORKBOOK_FIELDS: "OrderedDict[str, WorkbookField]" = OrderedDict(
    (f.key, f)
    for f in [
        _field("capsula_desafio", "Qual é o maior desafio ou frustração que você sente na sua carreira hoje?", "capsula_tempo"),
        _field("capsula_futuro", "Onde você gostaria de estar profissionalmente daqui a um ano?", "capsula_tempo"),
        _field("capsula_sentimento", "Qual sentimento você mais busca no seu dia a dia de trabalho?", "capsula_tempo"),
        _field("roda_realizacao", "1. Realização com o Trabalho", "roda_vida", "rating"),
        _field("roda_remuneracao", "2. Remuneração e Benefícios", "roda_vida", "rating"),
        _field("roda_crescimento", "3. Oportunidades de Crescimento", "roda_vida", "rating"),
        _field("roda_lideranca", "4. Relacionamento com a Liderança", "roda_vida", "rating"),
        _field("roda_pares", "5. Relacionamento com Pares", "roda_vida", "rating"),
        _field("roda_equilibrio", "6. Equilíbrio Vida/Trabalho", "roda_vida", "rating"),
        _field("roda_ambiente", "7. Ambiente e Cultura", "roda_vida", "rating"),
        _field("roda_energia", "8. Energia e Bem-estar Físico", "roda_vida", "rating"),
        _field(
            "roda_analise_1",
            "Qual área da sua roda com a nota mais baixa mais te surpreendeu? Por quê?",
            "roda_vida",
        ),
        _field(
            "roda_analise_2",
            "Qual única área, se você melhorasse em 10% nos próximos 90 dias, teria o maior impacto positivo em todas as outras?",
            "roda_vida",
        ),
        _field("matriz_forcas", "Suas Principais FORÇAS", "matriz_habilidades"),
        _field("matriz_paixoes", "Suas Principais PAIXÕES", "matriz_habilidades"),
        _field("matriz_oportunidades", "Sua ZONA DE OPORTUNIDADE", "matriz_habilidades"),
        _field("plano_prioridade", "Sua ÚNICA Prioridade", "plano_90_dias"),
        _field("plano_acoes", "Ações Específicas", "plano_90_dias"),
        _field("plano_medicao", "Como você vai medir o progresso?", "plano_90_dias"),
        _field("plano_acompanhamento", "Qual será seu sistema de acompanhamento?", "plano_90_dias"),
        _field("compromisso_pessoal", "Escreva seu compromisso pessoal com esta jornada", "reflexao_final"),
        _field("mensagem_futuro", 'Mensagem para o "Eu do Futuro"', "reflexao_final"),
        _field("maior_insight", "Qual foi o maior insight ou descoberta ao preencher este caderno?", "reflexao_final"),
    ]
)


def lookup_field(field_key: str) -> WorkbookField:
    try:
        return WORKBOOK_FIELDS[field_key]
    except KeyError:
        raise UnknownWorkbookField(field_key) from None


def fields_by_section() -> "OrderedDict[str, List[WorkbookField]]":
    grouped: "OrderedDict[str, List[WorkbookField]]" = OrderedDict((key, []) for key in SECTIONS)
    for entry in WORKBOOK_FIELDS.values():
        grouped[entry.section].append(entry)
    return grouped


def normalize_value(entry: WorkbookField, value: object) -> str:
    text = "" if value is None else str(value)
    if entry.field_type == "rating":
        text = text.strip()
        if text == "":
            return ""
        try:
            rating = int(text)
        except ValueError:
            raise InvalidWorkbookValue(f"{entry.key} expects a whole number") from None
        if not RATING_MIN <= rating <= RATING_MAX:
            raise InvalidWorkbookValue(f"{entry.key} must be between {RATING_MIN} and {RATING_MAX}")
        return str(rating)
    if len(text) > MAX_TEXT_LENGTH:
        raise InvalidWorkbookValue(f"{entry.key} is longer than {MAX_TEXT_LENGTH} characters")
    return text


def save_response(conn, employee_id: int, field_key: str, value: object) -> str:
    """Upsert one field value; raises for unknown keys or invalid values."""
    entry = lookup_field(field_key)
    normalized = normalize_value(entry, value)
    conn.execute(
        """
        INSERT INTO workbook_responses (employee_id, field_key, section, value, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (employee_id, field_key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (employee_id, entry.key, entry.section, normalized, iso()),
    )
    return normalized


def load_responses(conn, employee_id: int) -> Dict[str, str]:
    rows = conn.execute(
        "SELECT field_key, value FROM workbook_responses WHERE employee_id = ?",
        (employee_id,),
    ).fetchall()
    return {str(row["field_key"]): str(row["value"] or "") for row in rows if row["field_key"] in WORKBOOK_FIELDS}


def completion(responses: Mapping[str, str]) -> Dict[str, object]:
    """Per-section and overall share of answered fields, in percent."""
    sections = {}
    answered_total = 0
    for section, entries in fields_by_section().items():
        answered = sum(1 for entry in entries if str(responses.get(entry.key, "")).strip())
        answered_total += answered
        sections[section] = {
            "title": SECTIONS[section],
            "answered": answered,
            "total": len(entries),
            "pct": round(answered / len(entries) * 100) if entries else 0,
        }
    total = len(WORKBOOK_FIELDS)
    return {
        "answered": answered_total,
        "total": total,
        "pct": round(answered_total / total * 100) if total else 0,
        "sections": sections,
    }
