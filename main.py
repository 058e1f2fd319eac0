#!/usr/bin/env python3
"""
Vehicle Tax Engine - Entry Point

Calculates vehicle sales tax and complete deal breakdowns across US
jurisdictions, with every calculation recorded in an immutable audit trail.

Usage:
    python main.py calculate --price 35000 --trade-in 10000 --state TX --postal-code 77001
    python main.py deal --price 42000 --state CA --postal-code 90001 --doc-fee 150 \\
        --service-contract 1995 --accessory "Floor mats:199.00"
    python main.py rates --postal-code 60601
    python main.py rules --state MI
    python main.py --database-url sqlite:///vehicle_tax.db audit --deal-id DEAL-1001
    python main.py --database-url sqlite:///vehicle_tax.db load --file jurisdictions.csv
"""

from vehicle_tax.cli import main

if __name__ == "__main__":
    main()
