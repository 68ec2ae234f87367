"""
Summary post-processing.

Cleans the extraction summary before it is returned: strips template
boilerplate, re-renders accidental JSON, numbers run-on prose and collapses
blank lines. Applying it to its own output changes nothing.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List, Literal, Optional, Pattern, Tuple

from voice_actions.services.languages import normalize_language_code

BoilerplateRole = Literal["preamble", "closing"]
ANY_LANGUAGE = "*"

_REGISTRY: Dict[Tuple[str, str], List[Pattern[str]]] = {}


def register_boilerplate(language: str, role: BoilerplateRole, *phrases: str) -> None:
    """Register phrase patterns stripped from the start (preamble) or end (closing)."""
    bucket = _REGISTRY.setdefault((language, role), [])
    for phrase in phrases:
        if role == "preamble":
            anchored = rf"\A\s*(?:{phrase})[^\n:.!]*(?:[:.!][^\S\n]*|\n|\Z)"
        else:
            anchored = rf"(?:\n|\A|(?<=[.!?])[^\S\n]+)[^\S\n]*(?:{phrase})[^\n]*\s*\Z"
        bucket.append(re.compile(anchored, re.IGNORECASE))


def boilerplate_patterns(language: str, role: BoilerplateRole) -> List[Pattern[str]]:
    code = normalize_language_code(language)
    return list(_REGISTRY.get((code, role), [])) + list(_REGISTRY.get((ANY_LANGUAGE, role), []))


BOILERPLATE_PHRASES = {
    ("en", "preamble"): (
        r"here(?:'s| is| are)\s+(?:a |the |your )?(?:summary|breakdown|overview|recap)",
        r"(?:i(?:'ve| have)\s+)?(?:successfully\s+)?(?:extracted|identified|saved|created)\s+(?:the\s+)?(?:following|\d+|your)",
        r"items?\s+(?:were\s+|have been\s+)?extracted\s+successfully",
    ),
    ("en", "closing"): (
        r"let me know if",
        r"feel free to",
        r"is there anything else",
        r"hope this helps",
    ),
    ("fr", "preamble"): (
        r"voici\s+(?:le |un |votre |les )?(?:résumé|récapitulatif|éléments)",
        r"(?:j'ai\s+)?(?:extrait|identifié|enregistré|créé)\s+(?:les\s+)?(?:éléments|tâches|rappels|\d+)",
        r"éléments?\s+extraits?\s+avec\s+succès",
    ),
    ("fr", "closing"): (
        r"n'hésitez pas",
        r"dites-moi si",
        r"faites-moi savoir",
        r"y a-t-il autre chose",
    ),
    ("es", "preamble"): (
        r"aquí\s+(?:está|tienes)\s+(?:el |un |tu )?resumen",
        r"(?:he\s+)?(?:extraído|identificado|guardado|creado)\s+(?:los\s+)?(?:siguientes|elementos|tareas|\d+)",
        r"elementos?\s+extraídos?\s+con\s+éxito",
    ),
    ("es", "closing"): (
        r"avísame si",
        r"no dudes en",
        r"hazme saber",
        r"¿?hay algo más",
    ),
    ("de", "preamble"): (
        r"hier\s+ist\s+(?:die |eine |deine |ihre )?zusammenfassung",
        r"(?:ich habe\s+)?(?:folgende\s+)?(?:elemente|aufgaben)\s+(?:erfolgreich\s+)?extrahiert",
    ),
    ("de", "closing"): (
        r"lass mich wissen",
        r"sag mir bescheid",
        r"melde dich",
    ),
    (ANY_LANGUAGE, "preamble"): (
        r"[✅✔☑]",
    ),
}

for (_language, _role), _phrases in BOILERPLATE_PHRASES.items():
    register_boilerplate(_language, _role, *_phrases)  # type: ignore[arg-type]


SECTION_LABELS = {
    "en": ("Tasks", "Reminders", "Health Notes", "Notes", "Summary"),
    "fr": ("Tâches", "Rappels", "Notes de santé", "Notes", "Résumé"),
    "es": ("Tareas", "Recordatorios", "Notas de salud", "Notas", "Resumen"),
    "de": ("Aufgaben", "Erinnerungen", "Gesundheitsnotizen", "Notizen", "Zusammenfassung"),
}

_SECTION_KEYS = (
    ("tasks",),
    ("reminders",),
    ("healthNotes", "health_notes"),
    ("generalNotes", "general_notes", "notes"),
)

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?;])\s+")
_LABEL_PREFIX = re.compile(r"^[^\n.!?:]{1,40}:\s")


def strip_boilerplate(
    text: str, language: str, roles: Tuple[BoilerplateRole, ...] = ("preamble", "closing")
) -> str:
    result = text
    for role in roles:
        patterns = boilerplate_patterns(language, role)  # type: ignore[arg-type]
        changed = True
        while changed and result:
            changed = False
            for pattern in patterns:
                stripped = pattern.sub("", result, count=1)
                if stripped != result:
                    result = stripped
                    changed = True
    return result


def _as_json_object(text: str) -> Optional[Dict[str, Any]]:
    candidate = text.strip()
    fenced = re.fullmatch(r"```(?:json)?\s*([\s\S]+?)```", candidate, re.IGNORECASE)
    if fenced:
        candidate = fenced.group(1).strip()
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _item_text(item: Any) -> str:
    if isinstance(item, dict):
        for key in ("title", "content", "description", "text"):
            if item.get(key):
                return str(item[key]).strip()
        return ", ".join(str(v) for v in item.values() if v not in (None, "", []))
    return str(item).strip()


def _numbered(items: Iterable[str]) -> str:
    return "\n".join(f"{index}. {text}" for index, text in enumerate(items, start=1))


def render_json_summary(payload: Dict[str, Any], language: str) -> str:
    labels = SECTION_LABELS.get(normalize_language_code(language), SECTION_LABELS["en"])
    sections: List[str] = []
    for label, keys in zip(labels[:4], _SECTION_KEYS):
        entries: List[str] = []
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                entries.extend(t for t in (strip_boilerplate(_item_text(v), language).strip() for v in value) if t)
        if entries:
            sections.append(f"{label}:\n{_numbered(entries)}")
    summary = payload.get("summary")
    if isinstance(summary, str):
        summary = strip_boilerplate(summary.strip(), language).strip()
        if summary:
            sections.append(f"{labels[4]}: {summary}")
    return "\n\n".join(sections)


def number_prose(text: str) -> str:
    """Number run-on single-paragraph prose with more than three sentences."""
    if "\n" in text.strip() or _LABEL_PREFIX.match(text.strip()):
        return text
    parts = [p.strip() for p in _SENTENCE_SPLIT.split(text.strip()) if p.strip()]
    if len(parts) <= 3:
        return text
    return _numbered(parts)


def collapse_blank_lines(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def postprocess_summary(text: Optional[str], language: str = "en") -> str:
    if not text:
        return ""
    candidate = text.strip()
    # closings are stripped per rendered value; cutting them from raw JSON breaks it
    payload = _as_json_object(strip_boilerplate(candidate, language, roles=("preamble",)))
    if payload is not None:
        result = render_json_summary(payload, language)
    else:
        result = number_prose(strip_boilerplate(candidate, language))
    return collapse_blank_lines(result)


__all__ = [
    "boilerplate_patterns",
    "collapse_blank_lines",
    "number_prose",
    "postprocess_summary",
    "register_boilerplate",
    "render_json_summary",
    "strip_boilerplate",
]
