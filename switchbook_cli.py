#!/usr/bin/env python3

# Switchbook - Mechanical Keyboard Switch Catalogue
# Copyright (C) 2025 Mariano Rozanski
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""
Switchbook Maintenance CLI
Command-line interface for importing switch collections and keeping
manufacturer data consistent.

Usage:
    python switchbook_cli.py --file switches.json --user alice
    python switchbook_cli.py --seed-manufacturers manufacturers.json
    python switchbook_cli.py --manufacturer-report --verbose
    python switchbook_cli.py --create-samples
"""

import argparse
import json
import os
import sys
import traceback
from datetime import datetime
from pathlib import Path
from urllib.parse import quote_plus

from sqlalchemy import func, or_

from switchbook_api.app import create_app
from switchbook_api.config import BULK_CONFIG
from switchbook_api.database import db
from switchbook_api.models import Manufacturer, MasterSwitch, Switch, User
from switchbook_api.normalization import load_manufacturer_index, validate_manufacturers
from switchbook_api.services.bulk_ingestion import BulkIngestionService

class DatabaseConfig:
    """Database connection configuration."""

    @staticmethod
    def from_file(config_path: str) -> str:
        """Build a SQLAlchemy URL from a JSON file of connection parameters."""
        with open(config_path, 'r') as f:
            config = json.load(f)
        return (
            f"postgresql+psycopg2://{quote_plus(config['user'])}:{quote_plus(config['password'])}"
            f"@{config['host']}:{config.get('port', '5432')}/{config['database']}"
        )

class SwitchbookCLI:
    """Command-line interface for Switchbook maintenance tasks."""

    def __init__(self, database_url: str = None, verbose: bool = False):
        self.verbose = verbose
        overrides = {'SQLALCHEMY_DATABASE_URI': database_url} if database_url else None
        self.app = create_app(overrides)
        self.bulk_service = BulkIngestionService()

    def load_json_file(self, file_path: str):
        """Load and validate JSON file."""
        try:
            path = Path(file_path)
            if not path.exists():
                print(f"✗ File not found: {file_path}")
                return None

            if not path.suffix.lower() == '.json':
                print(f"✗ File must have .json extension: {file_path}")
                return None

            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if self.verbose:
                print(f"✓ Loaded JSON file: {file_path}")

            return data

        except json.JSONDecodeError as e:
            print(f"✗ Invalid JSON in file {file_path}: {e}")
            return None
        except Exception as e:
            print(f"✗ Error reading file {file_path}: {e}")
            return None

    def find_user(self, identifier: str):
        return User.query.filter(or_(User.username == identifier,
                                     func.lower(User.email) == identifier.lower())).first()

    def import_switches(self, file_path: str, user_identifier: str) -> bool:
        """Import a JSON array of switches (or {"switches": [...]}) into a user's collection."""
        data = self.load_json_file(file_path)
        if data is None:
            return False

        switches = data.get('switches') if isinstance(data, dict) else data
        if not isinstance(switches, list):
            print("✗ Expected a list of switches or an object with a 'switches' list")
            return False

        start_time = datetime.now()
        with self.app.app_context():
            user = self.find_user(user_identifier)
            if user is None:
                print(f"✗ User not found: {user_identifier}")
                return False

            if self.verbose:
                print(f"  → Importing {len(switches)} switches for {user.username}")

            totals = {'success': 0, 'failed': 0, 'errors': []}
            chunk_size = BULK_CONFIG['MAX_SWITCHES_PER_REQUEST']
            try:
                for start in range(0, len(switches), chunk_size):
                    chunk = switches[start:start + chunk_size]
                    result = self.bulk_service.create_switches(user.id, chunk)['results']
                    totals['success'] += result['success']
                    totals['failed'] += result['failed']
                    # Re-number errors so they point at the position in the file
                    for error in result['errors']:
                        label, _, message = error.partition(': ')
                        index = int(label.split()[-1]) + start
                        totals['errors'].append(f"Switch {index}: {message}")
            except Exception as e:
                print(f"✗ Import failed: {e}")
                if self.verbose:
                    traceback.print_exc()
                return False

        self.print_import_summary(totals, len(switches))
        if self.verbose:
            duration = (datetime.now() - start_time).total_seconds()
            print(f"⏱ Import completed in {duration:.2f} seconds")
        return totals['failed'] == 0

    def print_import_summary(self, totals: dict, total_count: int):
        success_icon = "✓" if totals['failed'] == 0 else "✗"
        print(f"\n{success_icon} Import Summary:")
        print(f"  Processed: {totals['success'] + totals['failed']}/{total_count}")
        print(f"  Successful: {totals['success']}")
        print(f"  Failed: {totals['failed']}")
        if totals['errors']:
            shown = totals['errors'] if self.verbose else totals['errors'][:10]
            for error in shown:
                print(f"    • {error}")
            if len(shown) < len(totals['errors']):
                print(f"    … {len(totals['errors']) - len(shown)} more (use --verbose)")

    def seed_manufacturers(self, file_path: str) -> bool:
        """Upsert manufacturers from [{"name": ..., "aliases": [...], "verified": bool}]."""
        data = self.load_json_file(file_path)
        if not isinstance(data, list):
            print("✗ Expected a list of manufacturers")
            return False

        created = updated = 0
        with self.app.app_context():
            for entry in data:
                name = (entry.get('name') or '').strip()
                if not name:
                    continue
                manufacturer = Manufacturer.query.filter(
                    func.lower(Manufacturer.name) == name.lower()).first()
                aliases = [a.strip() for a in entry.get('aliases', []) if a and a.strip()]
                if manufacturer is None:
                    db.session.add(Manufacturer(name=name, aliases=aliases,
                                                verified=entry.get('verified', True)))
                    created += 1
                else:
                    known = {a.lower() for a in manufacturer.aliases or []}
                    manufacturer.aliases = list(manufacturer.aliases or []) + [
                        a for a in aliases if a.lower() not in known]
                    if 'verified' in entry:
                        manufacturer.verified = entry['verified']
                    updated += 1
                if self.verbose:
                    print(f"  → {name}")
            db.session.commit()

        print(f"✓ Manufacturers seeded: {created} created, {updated} updated")
        return True

    def manufacturer_report(self) -> bool:
        """Print manufacturer strings on switches that do not resolve to a known manufacturer."""
        with self.app.app_context():
            names = set()
            for model in (Switch, MasterSwitch):
                rows = db.session.query(model.manufacturer).distinct().all()
                names.update(row[0] for row in rows if row[0])

            report = validate_manufacturers(sorted(names), load_manufacturer_index())

        unknown = [item for item in report if not item['isValid']]
        aliased = [item for item in report if item['isValid'] and item['normalized'] != item['input']]

        print(f"\n📊 Manufacturer Report")
        print(f"  Distinct names in use: {len(report)}")
        print(f"  Unknown: {len(unknown)}")
        print(f"  Not in canonical form: {len(aliased)}")

        for item in unknown:
            hint = f" (did you mean: {', '.join(item['suggestions'])})" if item['suggestions'] else ""
            print(f"    ✗ {item['input']}{hint}")
        if self.verbose:
            for item in aliased:
                print(f"    ⚠ {item['input']} → {item['normalized']}")

        return not unknown

def create_sample_files():
    """Create sample JSON files for testing."""
    switches_sample = {
        "switches": [
            {
                "name": "Cherry MX Red",
                "manufacturer": "cherry",
                "type": "LINEAR",
                "technology": "MECHANICAL",
                "actuationForce": 45,
                "bottomOutForce": 60,
                "preTravel": 2.0,
                "bottomOut": 4.0,
                "springWeight": "45g",
                "topHousing": "Nylon",
                "bottomHousing": "Nylon",
                "stem": "POM"
            },
            {
                "name": "Gateron Oil King",
                "manufacturer": "Gateron",
                "type": "LINEAR",
                "actuationForce": 55,
                "bottomOutForce": 65,
                "personalNotes": "Lubed from factory"
            },
            {
                "name": "Boba U4T",
                "manufacturer": "Gazzew",
                "type": "TACTILE",
                "tactileForce": 62,
                "dateObtained": "2024-03-01"
            }
        ]
    }

    manufacturers_sample = [
        {"name": "Cherry", "aliases": ["Cherry Corp", "Cherry MX"], "verified": True},
        {"name": "Gateron", "aliases": ["Gateron Optoelectronic"], "verified": True},
        {"name": "Gazzew", "aliases": [], "verified": True}
    ]

    with open('sample_switches.json', 'w') as f:
        json.dump(switches_sample, f, indent=2)
    with open('sample_manufacturers.json', 'w') as f:
        json.dump(manufacturers_sample, f, indent=2)

    print("✓ Sample files created:")
    print("  • sample_switches.json - Three switches for --file")
    print("  • sample_manufacturers.json - Manufacturers for --seed-manufacturers")

def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Switchbook Maintenance CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python switchbook_cli.py --file switches.json --user alice
  python switchbook_cli.py --seed-manufacturers manufacturers.json
  python switchbook_cli.py --manufacturer-report --verbose
  python switchbook_cli.py --create-samples
  python switchbook_cli.py --db-config db_config.json --manufacturer-report
        """
    )

    parser.add_argument('--file', '-f', help='Path to JSON file containing switches to import')
    parser.add_argument('--user', '-u', help='Username or email that receives the imported switches')
    parser.add_argument('--seed-manufacturers', help='Path to JSON file of manufacturers to upsert')
    parser.add_argument('--manufacturer-report', action='store_true',
                        help='Report manufacturer names that do not resolve')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose output')
    parser.add_argument('--db-config', help='Path to database configuration JSON file')
    parser.add_argument('--create-samples', action='store_true',
                        help='Create sample JSON files for testing')

    args = parser.parse_args()

    if args.create_samples:
        create_sample_files()
        return

    if not (args.file or args.seed_manufacturers or args.manufacturer_report):
        parser.print_help()
        print("\nError: Must specify --file, --seed-manufacturers or --manufacturer-report")
        sys.exit(1)

    if args.file and not args.user:
        print("✗ --file requires --user")
        sys.exit(1)

    database_url = DatabaseConfig.from_file(args.db_config) if args.db_config else None

    try:
        cli = SwitchbookCLI(database_url, verbose=args.verbose)
        if args.verbose:
            print(f"✓ Connected to database ({os.environ.get('DB_NAME', 'configured')})")

        success = True
        if args.seed_manufacturers:
            success = cli.seed_manufacturers(args.seed_manufacturers) and success
        if args.file:
            success = cli.import_switches(args.file, args.user) and success
        if args.manufacturer_report:
            success = cli.manufacturer_report() and success
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user")
        sys.exit(130)
    except Exception as e:
        print(f"✗ Unexpected error: {e}")
        if args.verbose:
            print(f"Traceback:\n{traceback.format_exc()}")
        sys.exit(1)

if __name__ == "__main__":
    main()
