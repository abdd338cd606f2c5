"""
Locale support.

The marketplace ships four locales.  ``resolve_locale`` picks one from
an ``Accept-Language`` header and ``VOICE_CONFIG`` holds the keyword
lists the assistant uses to interpret spoken commands together with
the phrases it answers with.
"""

from typing import Dict, List, Optional


DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = ("en", "es", "fr", "de")

VOICE_CONFIG: Dict[str, Dict[str, Dict[str, object]]] = {
    "en": {
        "keywords": {
            "search": ["search", "find", "look for", "get me"],
            "book": ["book", "reserve", "schedule", "order"],
            "cancel": ["cancel", "stop", "abort", "exit"],
            "help": ["help", "assist", "support"],
            "navigate": ["go to", "open", "show me"],
            "yes": ["yes", "yeah", "sure", "okay", "confirm"],
            "no": ["no", "nope", "cancel", "stop"],
        },
        "phrases": {
            "welcome": "Welcome to Loconomy. How can I help you today?",
            "not_understood": "I didn't understand that. Could you please repeat?",
            "searching": "Searching for services...",
        },
    },
    "es": {
        "keywords": {
            "search": ["buscar", "encontrar", "conseguir"],
            "book": ["reservar", "programar", "pedir", "ordenar"],
            "cancel": ["cancelar", "parar", "salir"],
            "help": ["ayuda", "asistir", "soporte"],
            "navigate": ["ir a", "abrir", "mostrar"],
            "yes": ["sí", "claro", "vale", "confirmar"],
            "no": ["no", "cancelar", "parar"],
        },
        "phrases": {
            "welcome": "Bienvenido a Loconomy. ¿Cómo puedo ayudarte hoy?",
            "not_understood": "No entendí eso. ¿Podrías repetirlo?",
            "searching": "Buscando servicios...",
        },
    },
    "fr": {
        "keywords": {
            "search": ["chercher", "trouver", "rechercher", "obtenir"],
            "book": ["réserver", "programmer", "commander"],
            "cancel": ["annuler", "arrêter", "quitter"],
            "help": ["aide", "aider", "support"],
            "navigate": ["aller à", "ouvrir", "montrer"],
            "yes": ["oui", "bien sûr", "d'accord", "confirmer"],
            "no": ["non", "annuler", "arrêter"],
        },
        "phrases": {
            "welcome": "Bienvenue chez Loconomy. Comment puis-je vous aider aujourd'hui?",
            "not_understood": "Je n'ai pas compris. Pourriez-vous répéter?",
            "searching": "Recherche de services...",
        },
    },
    "de": {
        "keywords": {
            "search": ["suchen", "finden", "suche", "holen"],
            "book": ["buchen", "reservieren", "bestellen"],
            "cancel": ["abbrechen", "stoppen", "beenden"],
            "help": ["hilfe", "helfen", "unterstützung"],
            "navigate": ["gehen zu", "öffnen", "zeigen"],
            "yes": ["ja", "natürlich", "okay", "bestätigen"],
            "no": ["nein", "abbrechen", "stopp"],
        },
        "phrases": {
            "welcome": "Willkommen bei Loconomy. Wie kann ich Ihnen heute helfen?",
            "not_understood": "Das habe ich nicht verstanden. Könnten Sie das wiederholen?",
            "searching": "Suche nach Dienstleistungen...",
        },
    },
}


def normalize_locale(locale: Optional[str]) -> str:
    """Return a supported locale code, falling back to the default."""
    if not locale:
        return DEFAULT_LOCALE
    code = locale.strip().lower().replace("_", "-").split("-")[0]
    return code if code in SUPPORTED_LOCALES else DEFAULT_LOCALE


def resolve_locale(accept_language: Optional[str]) -> str:
    """Pick the preferred supported locale from an ``Accept-Language`` header.

    Entries are ordered by their ``q`` weight (default 1.0); the first
    supported language wins.  Malformed weights count as zero.
    """
    if not accept_language:
        return DEFAULT_LOCALE
    candidates = []
    for position, part in enumerate(accept_language.split(",")):
        pieces = part.strip().split(";")
        language = pieces[0].strip().lower()
        if not language:
            continue
        weight = 1.0
        for param in pieces[1:]:
            name, _, value = param.strip().partition("=")
            if name == "q":
                try:
                    weight = float(value)
                except ValueError:
                    weight = 0.0
        candidates.append((-weight, position, language))
    for _, _, language in sorted(candidates):
        code = language.replace("_", "-").split("-")[0]
        if code in SUPPORTED_LOCALES:
            return code
    return DEFAULT_LOCALE


def get_keywords(locale: str) -> Dict[str, List[str]]:
    return VOICE_CONFIG[normalize_locale(locale)]["keywords"]  # type: ignore[return-value]


def get_phrase(locale: str, key: str) -> str:
    phrases = VOICE_CONFIG[normalize_locale(locale)]["phrases"]
    return phrases.get(key) or VOICE_CONFIG[DEFAULT_LOCALE]["phrases"][key]  # type: ignore[union-attr,index]
