"""
Numérotation des documents : <PREFIX>-<MMYY>-<W><SS>

    INV-0325-102  => facture, mars 2025, semaine 1, séquence 02

La portée (scope) d'une séquence est (préfixe, MMYY, semaine du mois) ;
semaine = ceil(jour / 7), donc 1..5. La séquence sur deux chiffres va de 01 à 99.

L'allocation passe par un compteur par portée, incrémenté de façon atomique
(JsonCounterStore.increment) : deux créations simultanées dans la même portée
ne peuvent pas obtenir le même numéro. Un numéro alloué n'est jamais redonné,
même si l'enregistrement qui suit échoue (trou accepté).
"""
from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime
from typing import Any, Callable, Iterable, NamedTuple, Optional, TypeVar

from billing import errors
from billing.storage.counters import CounterCeilingReached, JsonCounterStore
from billing.storage.repo import DuplicateKeyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SEQUENCE = 99
DEFAULT_MAX_ATTEMPTS = 3

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PREFIX_RE = re.compile(r"^[A-Z0-9]+$")
NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z0-9]+)-(?P<month_year>\d{4})-(?P<week>[1-5])(?P<seq>\d{2})$")


class Scope(NamedTuple):
    prefix: str
    month_year: str
    week: int

    @property
    def key(self) -> str:
        return f"{self.prefix}-{self.month_year}-{self.week}"

    def number(self, seq: int) -> str:
        return f"{self.key}{seq:02d}"


class ParsedNumber(NamedTuple):
    scope: Scope
    seq: int


def parse_business_date(value: Any) -> date:
    """date, datetime ou 'YYYY-MM-DD' strict ; sinon InvalidDate."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DATE_RE.match(value.strip()):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError:
            pass
    raise errors.InvalidDate(f"Date invalide: {value!r} (format attendu YYYY-MM-DD)")


def week_of_month(d: date) -> int:
    return math.ceil(d.day / 7)


def scope_for(prefix: str, business_date: Any) -> Scope:
    if not isinstance(prefix, str) or not _PREFIX_RE.match(prefix):
        raise errors.ValidationError(f"Préfixe de numérotation invalide: {prefix!r}")
    d = parse_business_date(business_date)
    return Scope(prefix, d.strftime("%m%y"), week_of_month(d))


def parse_number(number: str) -> Optional[ParsedNumber]:
    m = NUMBER_RE.match(number or "")
    if not m:
        return None
    scope = Scope(m.group("prefix"), m.group("month_year"), int(m.group("week")))
    return ParsedNumber(scope, int(m.group("seq")))


class DocumentNumberAllocator:
    """
    Allocateur de numéros par portée.
    - counters : stockage des compteurs (clé = Scope.key)
    - existing : numéros déjà en base, utilisés pour initialiser un compteur
      inexistant (reprise de données sans compteur)
    """

    def __init__(
        self,
        counters: JsonCounterStore,
        existing: Optional[Callable[[], Iterable[str]]] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.counters = counters
        self.existing = existing
        self.max_attempts = max(1, int(max_attempts))

    def _seed(self, scope: Scope) -> int:
        if self.existing is None:
            return 0
        highest = 0
        for num in self.existing():
            parsed = parse_number(num)
            if parsed and parsed.scope == scope:
                highest = max(highest, parsed.seq)
        return highest

    def allocate(self, prefix: str, business_date: Any) -> str:
        scope = scope_for(prefix, business_date)
        try:
            seq = self.counters.increment(scope.key, ceiling=MAX_SEQUENCE, seed=lambda: self._seed(scope))
        except CounterCeilingReached:
            raise errors.SequenceExhausted(
                f"Limite de {MAX_SEQUENCE} documents atteinte pour {scope.key}. "
                "Choisissez une autre semaine ou un autre mois."
            ) from None
        number = scope.number(seq)
        logger.debug("numéro alloué %s", number)
        return number

    def claim(self, prefix: str, business_date: Any, persist: Callable[[str], T]) -> T:
        """
        Alloue un numéro puis appelle persist(numéro).
        Sur conflit d'unicité : nouveau numéro, au plus max_attempts essais, puis Conflict.
        Les autres erreurs de persist remontent telles quelles (le numéro est perdu).
        """
        last: Optional[DuplicateKeyError] = None
        for attempt in range(1, self.max_attempts + 1):
            number = self.allocate(prefix, business_date)
            try:
                return persist(number)
            except DuplicateKeyError as e:
                last = e
                logger.warning("conflit sur %s (essai %d/%d): %s", number, attempt, self.max_attempts, e)
        raise errors.Conflict(
            f"Impossible d'attribuer un numéro unique après {self.max_attempts} essais"
        ) from last
