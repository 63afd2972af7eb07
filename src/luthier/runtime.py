"""
Runtime candidate selection.

A pure function of the runtime policy and of which binaries the doctor
found. Nothing here touches the host.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from luthier.config import RuntimeCandidate, RuntimePolicy, RuntimePreference

PREFERENCE_ORDER = {
    RuntimePreference.PROTON: [
        RuntimeCandidate.PROTON_UMU,
        RuntimeCandidate.PROTON_NATIVE,
        RuntimeCandidate.WINE,
    ],
    RuntimePreference.WINE: [
        RuntimeCandidate.WINE,
        RuntimeCandidate.PROTON_UMU,
        RuntimeCandidate.PROTON_NATIVE,
    ],
}


@dataclass(frozen=True)
class RuntimeAvailability:
    """Which runtime binaries the host provides."""
    proton: bool = False
    wine: bool = False
    umu: bool = False

    def supports(self, candidate: RuntimeCandidate) -> bool:
        if candidate is RuntimeCandidate.PROTON_UMU:
            return self.umu and self.proton
        if candidate is RuntimeCandidate.PROTON_NATIVE:
            return self.proton
        return self.wine


def _unique(candidates: Iterable[RuntimeCandidate]) -> list[RuntimeCandidate]:
    out: list[RuntimeCandidate] = []
    for candidate in candidates:
        if candidate not in out:
            out.append(candidate)
    return out


def reorder_candidates(
    base: list[RuntimeCandidate],
    preferred_order: list[RuntimeCandidate],
) -> list[RuntimeCandidate]:
    """Move preferred entries already in base to the front; never add or drop."""
    front = [candidate for candidate in preferred_order if candidate in base]
    return _unique(front + list(base))


def effective_candidates(
    policy: RuntimePolicy,
    preference: RuntimePreference = RuntimePreference.AUTO,
) -> list[RuntimeCandidate]:
    """
    Ordered candidate list for a policy.

    Always exactly {primary} plus fallback_order, de-duplicated. The
    preference axis only permutes it.
    """
    base = _unique([policy.primary, *policy.fallback_order])
    if preference is RuntimePreference.AUTO:
        return base
    return reorder_candidates(base, PREFERENCE_ORDER[preference])


def select_runtime(
    policy: RuntimePolicy,
    available: RuntimeAvailability,
    preference: RuntimePreference = RuntimePreference.AUTO,
) -> Optional[RuntimeCandidate]:
    """
    Pick the runtime to use, or None.

    Strict policies only ever consider the primary candidate, whatever the
    preference axis says. Otherwise the first available candidate wins.
    """
    if policy.strict:
        return policy.primary if available.supports(policy.primary) else None

    for candidate in effective_candidates(policy, preference):
        if available.supports(candidate):
            return candidate
    return None


def auto_select_runtime(available: RuntimeAvailability) -> Optional[RuntimeCandidate]:
    """Selection used when no config is present: umu+proton, then proton, then wine."""
    for candidate in (RuntimeCandidate.PROTON_UMU, RuntimeCandidate.PROTON_NATIVE, RuntimeCandidate.WINE):
        if available.supports(candidate):
            return candidate
    return None
