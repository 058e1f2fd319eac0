#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates basic usage of the VehicleTaxCalculator: tax a vehicle sale
with a trade-in in Houston, TX, price a full deal in Los Angeles, CA, and
read back the audit trail.

Usage:
    python examples/quick_start.py
"""

from datetime import date

from vehicle_tax.calculator import (
    DealFee,
    DealTaxRequest,
    SalesTaxRequest,
    VehicleTaxCalculator,
)


def main() -> None:
    # In-memory database seeded with the bundled reference data
    calculator = VehicleTaxCalculator.from_settings()

    # $35,000 vehicle with a $10,000 trade-in in Houston, TX
    result = calculator.calculate_sales_tax(
        SalesTaxRequest(
            dealership_id="DLR-001",
            vehicle_price="35000.00",
            trade_in_value="10000.00",
            postal_code="77001",
            state="TX",
            deal_id="DEAL-1001",
            calculation_date=date.today(),
        )
    )

    print(f"Calculation:    {result.calculation_id}")
    print(f"Jurisdiction:   {result.jurisdiction.city}, {result.jurisdiction.state}")
    print(f"Vehicle Price:  ${result.vehicle_price}")
    print(f"Trade-in:       ${result.trade_in_credit.credit_amount} "
          f"({result.trade_in_credit.applied_rule})")
    print(f"Taxable Amount: ${result.taxable_amount}")
    print(f"State Tax:      ${result.breakdown.state_tax}")
    print(f"City Tax:       ${result.breakdown.city_tax}")
    print(f"District Tax:   ${result.breakdown.special_district_tax}")
    print(f"Total Tax:      ${result.total_tax}")

    if result.warnings:
        print(f"Warnings:       {', '.join(result.warnings)}")

    # A full deal in California: no trade-in credit, doc fee capped at $85
    print("\n--- Complete Deal ---")
    deal = calculator.calculate_deal_taxes(
        DealTaxRequest(
            dealership_id="DLR-001",
            vehicle_price="42000.00",
            trade_in_value="8000.00",
            postal_code="90001",
            state="CA",
            deal_id="DEAL-1002",
            doc_fee="150.00",
            service_contracts="1995.00",
            accessories=[DealFee("ACCESSORY", "Floor mats", "199.00")],
        )
    )
    for fee in deal.fees:
        print(f"{fee.name:<16}${fee.amount:>10}  {'taxable' if fee.taxable else 'exempt'}")
    print(f"Total Tax:      ${deal.total_tax}")
    print(f"Total Fees:     ${deal.total_fees}")
    print(f"Taxes + Fees:   ${deal.total_taxes_and_fees}")

    print("\n--- Audit Trail ---")
    for entry in calculator.audit_tax_calculation("DEAL-1001"):
        print(f"{entry.calculated_at:%Y-%m-%d %H:%M:%S}  {entry.calculation_type.value}  "
              f"rules v{entry.state_rules_version}  valid={entry.validation_passed}")


if __name__ == "__main__":
    main()
