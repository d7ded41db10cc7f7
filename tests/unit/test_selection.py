"""Unit tests for tariff selection and deal comparison"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from utility_signup.domain.exceptions import NoEligibleTariff
from utility_signup.domain.models import Provider, TariffOffer, UtilityType
from utility_signup.domain.selection import (
    eligible_tariffs,
    is_better_deal,
    matches_region,
    postcode_area,
    rank_tariffs,
    select_cheapest_tariff,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def provider(id: int, api: bool = True, active: bool = True) -> Provider:
    return Provider(id=id, name=f"Provider {id}", utility_type=UtilityType.GAS, api_integration=api, active=active)


def tariff(id: int, provider_id: int, cost, **kwargs) -> TariffOffer:
    return TariffOffer(
        id=id,
        provider_id=provider_id,
        name=f"Tariff {id}",
        utility_type=kwargs.pop("utility_type", UtilityType.GAS),
        estimated_annual_cost=Decimal(cost) if cost is not None else None,
        **kwargs,
    )


def test_select_cheapest_api_tariff():
    """Test cheapest tariff wins among API-capable providers"""
    providers = [provider(1), provider(2)]
    tariffs = [tariff(10, 1, "820.00"), tariff(11, 2, "790.50"), tariff(12, 1, "905.00")]

    selected = select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW)

    assert selected.id == 11


def test_select_never_returns_non_api_provider():
    """Test a cheaper tariff from a provider without API sign-up is skipped"""
    providers = [provider(1, api=False), provider(2)]
    tariffs = [tariff(10, 1, "500.00"), tariff(11, 2, "900.00")]

    selected = select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW)

    assert selected.provider_id == 2


def test_select_skips_inactive_provider_and_unknown_cost():
    providers = [provider(1, active=False), provider(2)]
    tariffs = [tariff(10, 1, "500.00"), tariff(11, 2, None), tariff(12, 2, "950.00")]

    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW).id == 12


def test_select_tie_break_is_deterministic():
    """Test equal costs fall back to provider id, then tariff id"""
    providers = [provider(1), provider(2)]
    tariffs = [tariff(30, 2, "800.00"), tariff(21, 1, "800.00"), tariff(20, 1, "800.00")]

    first = select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW)
    second = select_cheapest_tariff(UtilityType.GAS, list(reversed(tariffs)), providers, now=NOW)

    assert first.id == 20
    assert second.id == 20


def test_select_respects_availability_window():
    providers = [provider(1)]
    tariffs = [
        tariff(1, 1, "500.00", available_until=NOW - timedelta(days=1)),
        tariff(2, 1, "600.00", available_from=NOW + timedelta(days=1)),
        tariff(3, 1, "700.00", available_from=NOW - timedelta(days=30), available_until=NOW + timedelta(days=30)),
    ]

    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW).id == 3


def test_select_filters_utility_type():
    providers = [provider(1)]
    tariffs = [tariff(1, 1, "100.00", utility_type=UtilityType.WATER), tariff(2, 1, "700.00")]

    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW).id == 2


def test_select_no_eligible_tariff_raises():
    """Test NoEligibleTariff when only non-API providers publish tariffs"""
    with pytest.raises(NoEligibleTariff):
        select_cheapest_tariff(UtilityType.GAS, [tariff(1, 1, "500.00")], [provider(1, api=False)], now=NOW)


def test_select_empty_catalog_raises():
    with pytest.raises(NoEligibleTariff):
        select_cheapest_tariff(UtilityType.BROADBAND, [], [], now=NOW)


def test_regional_tariff_only_offered_in_region():
    """Test regional tariffs apply only to matching postcode areas"""
    providers = [provider(1)]
    tariffs = [tariff(1, 1, "600.00", region="M1 M2"), tariff(2, 1, "800.00")]

    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW, postcode="M1 2AB").id == 1
    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW, postcode="SW1A 1AA").id == 2


def test_regional_tariff_matches_whole_postcode_areas():
    """Test M1 is not offered an M10-only tariff"""
    providers = [provider(1)]
    tariffs = [tariff(1, 1, "500.00", region="M10"), tariff(2, 1, "900.00")]

    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW, postcode="M1 2AB").id == 2
    assert select_cheapest_tariff(UtilityType.GAS, tariffs, providers, now=NOW, postcode="M10 1AA").id == 1


def test_region_list_accepts_commas():
    assert matches_region(tariff(1, 1, "100.00", region="M1, M2,M3"), "M3 4AA")
    assert not matches_region(tariff(1, 1, "100.00", region="SW1A"), "W1A 1AA")


def test_postcode_area():
    assert postcode_area("sw1a 1aa") == "SW1A"
    assert postcode_area(" M1 2AB ") == "M1"


def test_national_tariff_matches_any_region():
    assert matches_region(tariff(1, 1, "100.00"), "BS1 4DJ")
    assert matches_region(tariff(1, 1, "100.00", region="BS1"), None)


def test_eligible_tariffs_sorted_cheapest_first():
    providers = [provider(1), provider(2)]
    tariffs = [tariff(1, 1, "900.00"), tariff(2, 2, "700.00"), tariff(3, 1, "800.00")]

    assert [t.id for t in eligible_tariffs(UtilityType.GAS, tariffs, providers, now=NOW)] == [2, 3, 1]


def test_rank_tariffs_reports_savings():
    providers = [provider(1), provider(2)]
    tariffs = [tariff(1, 1, "900.00", special_offers=("£50 cashback",)), tariff(2, 2, "840.00")]

    results = rank_tariffs(UtilityType.GAS, tariffs, providers, current_annual_cost=Decimal("1000.00"), now=NOW)

    assert [r.tariff_id for r in results] == [2, 1]
    assert results[0].savings == Decimal("160.00")
    assert results[0].monthly_cost == Decimal("70.00")
    assert results[1].special_offers == ["£50 cashback"]
    assert results[1].provider_name == "Provider 1"


def test_better_deal_threshold():
    """Test 12% cheaper crosses a 10% threshold but 5% cheaper does not"""
    assert is_better_deal(Decimal("880.00"), Decimal("1000.00"), 0.10) is True
    assert is_better_deal(Decimal("950.00"), Decimal("1000.00"), 0.10) is False
    assert is_better_deal(Decimal("900.00"), Decimal("1000.00"), 0.10) is False  # exactly 10% is not more than


def test_better_deal_never_flags_zero_cost_contract():
    """Test all-inclusive contracts (no direct cost) are never beaten"""
    assert is_better_deal(Decimal("100.00"), Decimal("0"), 0.10) is False
