"""Tariff selection and price comparison - pure functions over catalog data"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from utility_signup.domain.exceptions import NoEligibleTariff
from utility_signup.domain.models import ComparisonResult, Provider, TariffOffer, UtilityType, PENNY


def postcode_area(postcode: str) -> str:
    """Outward code of a UK postcode ("SW1A 1AA" -> "SW1A")"""
    return postcode.strip().upper().split(" ")[0]


def matches_region(tariff: TariffOffer, postcode: Optional[str]) -> bool:
    """Tariffs without a region are national; otherwise the region must list the postcode area"""
    if not tariff.region or not postcode:
        return True
    return postcode_area(postcode) in tariff.region.upper().replace(",", " ").split()


def eligible_tariffs(
    utility_type: UtilityType,
    tariffs: Iterable[TariffOffer],
    providers: Iterable[Provider],
    now: Optional[datetime] = None,
    postcode: Optional[str] = None,
) -> List[TariffOffer]:
    """
    Filter tariffs down to those the engine may sign up to automatically.

    A tariff is eligible when:
    - it is for the requested utility type
    - its provider is active and supports API sign-up
    - its availability window covers `now`
    - it has an estimated annual cost to compare on
    - it is offered in the property's region (when a postcode is known)

    Result is ordered cheapest first, ties broken by provider id then tariff id.
    """
    now = now or datetime.now(timezone.utc)
    by_id: Dict[int, Provider] = {p.id: p for p in providers}

    def is_eligible(tariff: TariffOffer) -> bool:
        provider = by_id.get(tariff.provider_id)
        return (
            tariff.utility_type == utility_type
            and provider is not None
            and provider.api_integration
            and provider.active
            and tariff.estimated_annual_cost is not None
            and tariff.is_available(now)
            and matches_region(tariff, postcode)
        )

    return sorted(
        (t for t in tariffs if is_eligible(t)),
        key=lambda t: (Decimal(t.estimated_annual_cost), t.provider_id, t.id),
    )


def select_cheapest_tariff(
    utility_type: UtilityType,
    tariffs: Iterable[TariffOffer],
    providers: Iterable[Provider],
    now: Optional[datetime] = None,
    postcode: Optional[str] = None,
) -> TariffOffer:
    """
    Pick the cheapest eligible tariff.

    Raises:
        NoEligibleTariff: when no API-capable provider has a current tariff
    """
    candidates = eligible_tariffs(utility_type, tariffs, providers, now=now, postcode=postcode)
    if not candidates:
        raise NoEligibleTariff(f"No eligible {utility_type.value} tariff available")
    return candidates[0]


def rank_tariffs(
    utility_type: UtilityType,
    tariffs: Iterable[TariffOffer],
    providers: Iterable[Provider],
    current_annual_cost: Optional[Decimal] = None,
    now: Optional[datetime] = None,
    postcode: Optional[str] = None,
) -> List[ComparisonResult]:
    """Ranked comparison rows with savings against the current annual cost"""
    providers = list(providers)
    names = {p.id: p.name for p in providers}
    results = []
    for tariff in eligible_tariffs(utility_type, tariffs, providers, now=now, postcode=postcode):
        annual = Decimal(tariff.estimated_annual_cost)
        results.append(
            ComparisonResult(
                provider_id=tariff.provider_id,
                tariff_id=tariff.id,
                provider_name=names.get(tariff.provider_id, "Unknown Provider"),
                tariff_name=tariff.name,
                annual_cost=annual,
                monthly_cost=(annual / 12).quantize(PENNY),
                term_length=tariff.term_length or 0,
                fixed_term=tariff.fixed_term,
                standing_charge=tariff.standing_charge or Decimal("0"),
                unit_rate=tariff.unit_rate or Decimal("0"),
                special_offers=list(tariff.special_offers),
                savings=(current_annual_cost - annual) if current_annual_cost else Decimal("0"),
            )
        )
    return results


def is_better_deal(candidate_annual_cost: Decimal, current_annual_cost: Decimal, threshold: float) -> bool:
    """True when the candidate undercuts the current cost by more than `threshold` (a fraction)"""
    limit = Decimal(current_annual_cost) * (Decimal(1) - Decimal(str(threshold)))
    return Decimal(candidate_annual_cost) < limit
