import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

from apps.rewards.models import PrizeKind


@dataclass(frozen=True)
class Prize:
    kind: str
    value: Decimal

    @property
    def is_win(self):
        return self.kind != PrizeKind.BETTER_LUCK


@dataclass(frozen=True)
class PrizeTableEntry:
    kind: str
    weight: float
    value: Decimal

    @property
    def prize(self):
        return Prize(kind=self.kind, value=self.value)


class PrizeTable:
    """Weighted categorical distribution of scratch card prizes.

    Entries keep their configured order: a sample in [0, 1) lands in the first
    entry whose cumulative weight exceeds it, so ties resolve to the earlier row.
    """

    def __init__(self, entries):
        self.entries = tuple(self._coerce(entry) for entry in entries)
        if not self.entries:
            raise ImproperlyConfigured("Prize table must contain at least one entry.")
        total = math.fsum(entry.weight for entry in self.entries)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ImproperlyConfigured(f"Prize table weights must sum to 1.0, got {total}.")

    @classmethod
    def from_settings(cls):
        return cls(settings.SCRATCH_CARD_PRIZE_TABLE)

    @staticmethod
    def _coerce(entry):
        if isinstance(entry, PrizeTableEntry):
            kind, weight, value = entry.kind, entry.weight, entry.value
        else:
            kind, weight, value = entry.get("kind"), entry.get("weight"), entry.get("value", 0)

        if kind not in PrizeKind.values:
            raise ImproperlyConfigured(f"Unknown prize kind {kind!r}.")
        try:
            weight = float(weight)
            value = Decimal(str(value)).quantize(Decimal("0.01"))
        except (TypeError, ValueError, InvalidOperation):
            raise ImproperlyConfigured(f"Invalid weight or value in prize table entry {entry!r}.") from None
        if weight < 0 or not math.isfinite(weight):
            raise ImproperlyConfigured(f"Prize weight must be a finite number >= 0, got {weight}.")
        if value < 0:
            raise ImproperlyConfigured(f"Prize value must be >= 0, got {value}.")
        if kind == PrizeKind.BETTER_LUCK:
            value = Decimal("0.00")
        return PrizeTableEntry(kind=kind, weight=weight, value=value)

    def draw(self, rng):
        point = rng.random()
        cumulative = 0.0
        for entry in self.entries:
            cumulative += entry.weight
            if cumulative > point:
                return entry.prize
        # Float residue can leave the sum a hair under 1.0.
        return next(entry for entry in reversed(self.entries) if entry.weight > 0).prize
