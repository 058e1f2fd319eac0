"""
Command-line interface for the vehicle tax engine.

Provides subcommands for sales tax and full deal calculation, rate and
state-rule lookup, audit trail inspection, and jurisdiction data loading.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vehicle_tax import decimal_math as dm
from vehicle_tax.calculator import (
    CompleteTaxBreakdown,
    DealFee,
    DealTaxRequest,
    SalesTaxRequest,
    SalesTaxResult,
    VehicleTaxCalculator,
)
from vehicle_tax.config import EngineSettings, get_settings
from vehicle_tax.exceptions import InvalidTaxCalculationError, TaxCalculationError
from vehicle_tax.logging_config import configure_logging

console = Console()


def _build_calculator(args: argparse.Namespace) -> VehicleTaxCalculator:
    settings = get_settings()
    if args.database_url:
        settings = EngineSettings(database_url=args.database_url)
    configure_logging(args.log_level or settings.log_level)
    return VehicleTaxCalculator.from_settings(settings, seed=not args.no_seed)


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidTaxCalculationError(
            f"Invalid date {value!r}; expected YYYY-MM-DD", field="date"
        ) from None


def _parse_item(item: str, code: str, taxable: bool = True) -> DealFee:
    """``"Floor mats:199.00"`` or ``"Tire fee:5.00:exempt"``."""
    parts = item.split(":")
    if len(parts) < 2:
        raise InvalidTaxCalculationError(f"Expected NAME:AMOUNT, got {item!r}", field=code.lower())
    if len(parts) > 2 and parts[2].strip().lower() == "exempt":
        taxable = False
    return DealFee(code=code, name=parts[0].strip(), amount=parts[1].strip(), taxable=taxable)


def _money(value: str) -> str:
    return f"${dm.to_decimal(value, signed=True):,.2f}"


def _request_kwargs(args: argparse.Namespace) -> dict:
    return dict(
        dealership_id=args.dealership,
        vehicle_price=args.price,
        postal_code=args.postal_code,
        state=args.state,
        county=args.county,
        city=args.city,
        trade_in_value=args.trade_in,
        rebate_manufacturer=args.rebate_manufacturer,
        rebate_dealer=args.rebate_dealer,
        deal_id=args.deal_id,
        user_id=args.user,
        calculation_date=_parse_date(args.date),
    )


def _print_sales_tax(result: SalesTaxResult) -> None:
    j = result.jurisdiction
    location = ", ".join(p for p in (j.city, j.county, j.state) if p)

    table = Table(title=f"Sales Tax - {location} ({j.postal_code})", box=box.ROUNDED)
    table.add_column("Component")
    table.add_column("Rate", justify="right")
    table.add_column("Tax", justify="right", style="bold")
    rates = result.tax_rate
    for label, rate, tax in (
        ("State", rates.state_rate, result.breakdown.state_tax),
        ("County", rates.county_rate, result.breakdown.county_tax),
        ("City", rates.city_rate, result.breakdown.city_tax),
        ("Special district", rates.special_district_rate, result.breakdown.special_district_tax),
    ):
        table.add_row(label, dm.to_percent_string(rate), _money(tax))
    table.add_row(
        "[bold]Total[/bold]",
        f"[bold]{dm.to_percent_string(rates.total_rate)}[/bold]",
        f"[bold]{_money(result.total_tax)}[/bold]",
    )
    console.print(table)

    credit = result.trade_in_credit
    console.print(
        Panel(
            f"[bold]Vehicle Price:[/bold] {_money(result.vehicle_price)}\n"
            f"[bold]Trade-in Credit:[/bold] {_money(credit.credit_amount)} ({credit.applied_rule})\n"
            f"[bold]Taxable Amount:[/bold] {_money(result.taxable_amount)}\n"
            f"[bold]Scheme:[/bold] {result.special_scheme} "
            f"(rules v{result.state_rules_version})\n"
            f"[bold]Calculation ID:[/bold] {result.calculation_id}",
            title="Summary",
            border_style="green",
        )
    )
    _print_validation(result.warnings)


def _print_validation(messages: list[str]) -> None:
    for message in messages:
        console.print(f"[yellow]Warning: {message}[/yellow]")


def _print_deal(breakdown: CompleteTaxBreakdown) -> None:
    _print_sales_tax(breakdown.sales_tax)

    table = Table(title="Deal Fees", box=box.ROUNDED)
    table.add_column("Code", style="dim")
    table.add_column("Item")
    table.add_column("Amount", justify="right")
    table.add_column("Taxable", justify="center")
    for fee in breakdown.fees:
        table.add_row(fee.code, fee.name, _money(fee.amount), "Y" if fee.taxable else "")
    console.print(table)

    tb = breakdown.tax_breakdown
    console.print(
        Panel(
            f"[bold]Vehicle Tax:[/bold] {_money(breakdown.sales_tax.total_tax)}\n"
            f"[bold]Fee Tax:[/bold] {_money(breakdown.fee_tax)}\n"
            f"[bold]Total Tax:[/bold] {_money(breakdown.total_tax)} "
            f"(state {_money(tb.state_tax)}, county {_money(tb.county_tax)}, "
            f"city {_money(tb.city_tax)}, district {_money(tb.special_district_tax)})\n"
            f"[bold]Total Fees:[/bold] {_money(breakdown.total_fees)}\n"
            f"[bold]Total Taxable:[/bold] {_money(breakdown.total_taxable)}\n"
            f"[bold]Total Taxes & Fees:[/bold] {_money(breakdown.total_taxes_and_fees)}",
            title="Deal Summary",
            border_style="green" if breakdown.validated else "red",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def cmd_calculate(args: argparse.Namespace) -> None:
    """Calculate sales tax on a vehicle sale."""
    calc = _build_calculator(args)
    result = calc.calculate_sales_tax(SalesTaxRequest(**_request_kwargs(args)))
    if args.json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _print_sales_tax(result)


# -----------------------------------------------------------------------
# Subcommand: deal
# -----------------------------------------------------------------------


def cmd_deal(args: argparse.Namespace) -> None:
    """Calculate the complete tax and fee breakdown for a deal."""
    calc = _build_calculator(args)
    request = DealTaxRequest(
        **_request_kwargs(args),
        doc_fee=args.doc_fee,
        service_contracts=args.service_contract,
        gap=args.gap,
        accessories=[_parse_item(s, "ACCESSORY") for s in args.accessory or []],
        other_fees=[_parse_item(s, "OTHER") for s in args.fee or []],
    )
    breakdown = calc.calculate_deal_taxes(request)
    if args.json:
        console.print_json(json.dumps(breakdown.to_dict()))
    else:
        _print_deal(breakdown)


# -----------------------------------------------------------------------
# Subcommand: rates
# -----------------------------------------------------------------------


def cmd_rates(args: argparse.Namespace) -> None:
    """Look up jurisdiction rates by postal code, or list a state's jurisdictions."""
    calc = _build_calculator(args)
    as_of = _parse_date(args.date)

    if args.postal_code:
        if args.fallback:
            if not args.state:
                console.print("[red]--fallback requires --state[/red]")
                sys.exit(1)
            estimate = calc.resolver.resolve_rates_with_fallback(args.postal_code, args.state, as_of)
            rates = estimate.rates
            label = "ESTIMATE (state average)" if estimate.is_estimate else "database"
        else:
            jurisdiction = calc.resolver.resolve_by_postal_code(args.postal_code, as_of)
            rates = calc.resolver.get_rates(jurisdiction)
            label = ", ".join(p for p in (jurisdiction.city, jurisdiction.county, jurisdiction.state) if p)
        console.print(
            Panel(
                f"[bold]State:[/bold] {dm.to_percent_string(rates.state_rate)}\n"
                f"[bold]County:[/bold] {dm.to_percent_string(rates.county_rate)}\n"
                f"[bold]City:[/bold] {dm.to_percent_string(rates.city_rate)}\n"
                f"[bold]Special district:[/bold] {dm.to_percent_string(rates.special_district_rate)}\n"
                f"[bold]Total:[/bold] {dm.to_percent_string(rates.total_rate)}",
                title=f"{args.postal_code} - {label}",
                border_style="cyan",
            )
        )
        return

    if not args.state:
        console.print("[red]Provide --postal-code or --state[/red]")
        sys.exit(1)

    table = Table(title=f"Jurisdictions - {args.state.upper()}", box=box.ROUNDED)
    table.add_column("Postal Code", style="bold")
    table.add_column("County")
    table.add_column("City")
    table.add_column("Total Rate", justify="right")
    table.add_column("Effective")
    table.add_column("Verified")
    for j in calc.resolver.list_jurisdictions(args.state, as_of):
        rates = calc.resolver.get_rates(j)
        table.add_row(
            j.postal_code,
            j.county or "-",
            j.city or "-",
            dm.to_percent_string(rates.total_rate),
            j.effective_date.isoformat(),
            j.last_verified.isoformat() if j.last_verified else "never",
        )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """Show state rules, or a table of every supported state."""
    calc = _build_calculator(args)
    as_of = _parse_date(args.date)

    if args.state:
        rules = calc.state_rules.get_rules(args.state, as_of)
        lines = [f"[bold]{k}:[/bold] {v}" for k, v in rules.to_dict().items() if v not in (None, "")]
        console.print(
            Panel("\n".join(lines), title=f"{rules.state_name or rules.state_code} rules", border_style="cyan")
        )
        history = calc.state_rules.history(args.state)
        if len(history) > 1:
            table = Table(title="Version History", box=box.SIMPLE)
            table.add_column("Version", justify="right")
            table.add_column("Effective")
            table.add_column("Ends")
            table.add_column("Notes")
            for r in history:
                table.add_row(
                    str(r.version),
                    r.effective_date.isoformat(),
                    r.end_date.isoformat() if r.end_date else "-",
                    r.notes,
                )
            console.print(table)
        return

    table = Table(title="Supported States", box=box.ROUNDED, show_lines=False)
    table.add_column("State", style="bold")
    table.add_column("Name")
    table.add_column("Trade-in", justify="center")
    table.add_column("Credit Cap", justify="right")
    table.add_column("Doc Fee Cap", justify="right")
    table.add_column("Scheme")
    for r in calc.state_rules.list_states(as_of):
        table.add_row(
            r.state_code,
            r.state_name,
            "Y" if r.allows_trade_in_credit else "N",
            _money(r.trade_in_credit_cap) if r.trade_in_credit_cap else "-",
            _money(r.doc_fee_max) if r.doc_fee_capped and r.doc_fee_max else "-",
            r.special_scheme.value,
        )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: audit
# -----------------------------------------------------------------------


def cmd_audit(args: argparse.Namespace) -> None:
    """Inspect the audit trail for a deal or a single calculation."""
    calc = _build_calculator(args)

    if args.calculation_id:
        entry = calc.audit.get_by_calculation_id(args.calculation_id)
        console.print_json(json.dumps(entry.to_dict()))
        if args.reproduce:
            outcome = calc.reproduce_calculation(args.calculation_id)
            if outcome.matches:
                console.print("[green]Recomputed outputs match the recorded outputs.[/green]")
            else:
                console.print("[red]Recomputed outputs differ from the recorded outputs.[/red]")
                console.print_json(json.dumps(outcome.recomputed))
        return

    if not args.deal_id:
        console.print("[red]Provide --deal-id or --calculation-id[/red]")
        sys.exit(1)

    entries = calc.audit_tax_calculation(args.deal_id)
    table = Table(title=f"Audit Trail - Deal {args.deal_id}", box=box.ROUNDED)
    table.add_column("Calculated At")
    table.add_column("Type")
    table.add_column("Calculation ID", style="dim")
    table.add_column("By")
    table.add_column("Rules", justify="right")
    table.add_column("Valid", justify="center")
    for e in entries:
        table.add_row(
            e.calculated_at.isoformat(timespec="seconds"),
            e.calculation_type.value,
            e.calculation_id,
            e.calculated_by,
            f"v{e.state_rules_version}",
            "[green]Y[/green]" if e.validation_passed else "[red]N[/red]",
        )
    console.print(table)
    if not entries:
        console.print("[dim]No calculations recorded for this deal.[/dim]")


# -----------------------------------------------------------------------
# Subcommand: load
# -----------------------------------------------------------------------


def cmd_load(args: argparse.Namespace) -> None:
    """Bulk-load jurisdiction records from CSV."""
    calc = _build_calculator(args)
    count = calc.resolver.load_csv(args.file)
    console.print(f"[green]Loaded {count} jurisdiction records from {args.file}[/green]")


# -----------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------


def _add_deal_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--price", required=True, help="Vehicle price")
    p.add_argument("--postal-code", "-z", help="Buyer postal code")
    p.add_argument("--state", "-s", required=True, help="Two-letter state code")
    p.add_argument("--county", help="County (used when no postal code is given)")
    p.add_argument("--city", help="City (used when no postal code is given)")
    p.add_argument("--trade-in", help="Trade-in value")
    p.add_argument("--rebate-manufacturer", help="Manufacturer rebate")
    p.add_argument("--rebate-dealer", help="Dealer rebate")
    p.add_argument("--dealership", default="cli", help="Dealership id")
    p.add_argument("--deal-id", help="Deal id recorded on the audit entry")
    p.add_argument("--user", help="User id recorded on the audit entry")
    p.add_argument("--date", help="Calculation date (YYYY-MM-DD), default today")
    p.add_argument("--json", action="store_true", help="Print the result as JSON")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vehicle-tax",
        description="Multi-jurisdiction vehicle sales tax engine",
    )
    parser.add_argument("--database-url", help="SQLAlchemy database URL (default from settings)")
    parser.add_argument("--log-level", help="Log level (default from settings)")
    parser.add_argument("--no-seed", action="store_true", help="Do not seed an empty database")
    subparsers = parser.add_subparsers(dest="command")

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate sales tax on a vehicle")
    _add_deal_arguments(calc_p)
    calc_p.set_defaults(func=cmd_calculate)

    # deal
    deal_p = subparsers.add_parser("deal", help="Calculate a complete deal breakdown")
    _add_deal_arguments(deal_p)
    deal_p.add_argument("--doc-fee", help="Requested documentation fee")
    deal_p.add_argument("--service-contract", help="Service contract price")
    deal_p.add_argument("--gap", help="GAP insurance price")
    deal_p.add_argument("--accessory", action="append", help="NAME:AMOUNT (repeatable)")
    deal_p.add_argument("--fee", action="append", help="NAME:AMOUNT[:exempt] (repeatable)")
    deal_p.set_defaults(func=cmd_deal)

    # rates
    rates_p = subparsers.add_parser("rates", help="Look up jurisdiction rates")
    rates_p.add_argument("--postal-code", "-z", help="Postal code to resolve")
    rates_p.add_argument("--state", "-s", help="State code to list, or for --fallback")
    rates_p.add_argument("--date", help="As-of date (YYYY-MM-DD)")
    rates_p.add_argument(
        "--fallback", action="store_true", help="Use a state-average estimate if not found"
    )
    rates_p.set_defaults(func=cmd_rates)

    # rules
    rules_p = subparsers.add_parser("rules", help="View state tax rules")
    rules_p.add_argument("--state", "-s", help="State code to look up")
    rules_p.add_argument("--date", help="As-of date (YYYY-MM-DD)")
    rules_p.set_defaults(func=cmd_rules)

    # audit
    audit_p = subparsers.add_parser("audit", help="Inspect the audit trail")
    audit_p.add_argument("--deal-id", help="List calculations for a deal")
    audit_p.add_argument("--calculation-id", help="Show one calculation")
    audit_p.add_argument(
        "--reproduce", action="store_true", help="Recompute the calculation from its snapshot"
    )
    audit_p.set_defaults(func=cmd_audit)

    # load
    load_p = subparsers.add_parser("load", help="Load jurisdictions from CSV")
    load_p.add_argument("--file", "-f", required=True, help="CSV file with jurisdiction rows")
    load_p.set_defaults(func=cmd_load)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    try:
        args.func(args)
    except TaxCalculationError as e:
        console.print(f"[red]{e.code}: {e.message}[/red]")
        sys.exit(1)
