"""
Credit effects of lesson attendance.

Every attendance row holds one ``CreditEffect``. Recording or editing a
row moves it from one effect to another; the counter change that move
causes is a pure function of the two effects::

                 ATTENDED   NO_SHOW   EXTRA   NONE
    attended        +1         .        .      .
    extra           .          .        +1     .
    remaining       -1         -1       .      .
    package         -1         -1       .      .

``transition_delta(old, new)`` is ``delta(new) - delta(old)``.

Every charged lesson, attended or not, takes one credit off
``remaining_lessons``, so the member balance stays equal to the sum of
the active package balances whatever the mix of attended and no-show
lessons.
"""

from dataclasses import dataclass

from .models import CreditEffect, LessonType


@dataclass(frozen=True)
class CounterDelta:
    attended: int = 0
    extra: int = 0
    remaining: int = 0
    package: int = 0

    def __add__(self, other: "CounterDelta") -> "CounterDelta":
        return CounterDelta(
            attended=self.attended + other.attended,
            extra=self.extra + other.extra,
            remaining=self.remaining + other.remaining,
            package=self.package + other.package,
        )

    def __neg__(self) -> "CounterDelta":
        return CounterDelta(-self.attended, -self.extra, -self.remaining, -self.package)

    def __sub__(self, other: "CounterDelta") -> "CounterDelta":
        return self + (-other)

    @property
    def is_zero(self) -> bool:
        return not (self.attended or self.extra or self.remaining or self.package)


EFFECT_DELTAS: dict[CreditEffect, CounterDelta] = {
    CreditEffect.ATTENDED: CounterDelta(attended=1, remaining=-1, package=-1),
    CreditEffect.NO_SHOW: CounterDelta(remaining=-1, package=-1),
    CreditEffect.EXTRA: CounterDelta(extra=1),
    CreditEffect.NONE: CounterDelta(),
}


@dataclass(frozen=True)
class Counters:
    total_lessons: int = 0
    attended_count: int = 0
    extra_count: int = 0
    remaining_lessons: int = 0

    @classmethod
    def from_member(cls, member: dict) -> "Counters":
        return cls(
            total_lessons=member.get("total_lessons") or 0,
            attended_count=member.get("attended_count") or 0,
            extra_count=member.get("extra_count") or 0,
            remaining_lessons=member.get("remaining_lessons") or 0,
        )

    def write_to(self, member: dict) -> None:
        member["total_lessons"] = self.total_lessons
        member["attended_count"] = self.attended_count
        member["extra_count"] = self.extra_count
        member["remaining_lessons"] = self.remaining_lessons


def effect_for_record(lesson_type: LessonType, attended: bool) -> CreditEffect:
    """Effect of a newly recorded row. An absent included lesson is a
    no-show and still costs a credit."""
    if LessonType(lesson_type) == LessonType.EXTRA:
        return CreditEffect.EXTRA if attended else CreditEffect.NONE
    return CreditEffect.ATTENDED if attended else CreditEffect.NO_SHOW


def effect_for_edit(lesson_type: LessonType, attended: bool) -> CreditEffect:
    """Effect of a row after an edit. Marking a row absent on edit releases
    its credit, so present -> absent restores the pre-record balance."""
    if not attended:
        return CreditEffect.NONE
    return effect_for_record(lesson_type, attended)


def charges_package(effect: CreditEffect) -> bool:
    return EFFECT_DELTAS[effect].package < 0


def transition_delta(old: CreditEffect, new: CreditEffect) -> CounterDelta:
    return EFFECT_DELTAS[new] - EFFECT_DELTAS[old]


def apply_delta(counters: Counters, delta: CounterDelta) -> Counters:
    attended = max(counters.attended_count + delta.attended, 0)
    extra = max(counters.extra_count + delta.extra, 0)
    # remaining never exceeds the lessons not yet attended
    ceiling = max(counters.total_lessons - attended, 0)
    remaining = max(counters.remaining_lessons + delta.remaining, 0)
    if delta.remaining > 0:
        remaining = min(remaining, max(ceiling, counters.remaining_lessons))
    return Counters(
        total_lessons=counters.total_lessons,
        attended_count=attended,
        extra_count=extra,
        remaining_lessons=remaining,
    )
