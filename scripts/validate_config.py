"""
Validate a configuration file and report any issues.

Usage:
    python scripts/validate_config.py configs/sun_earth.yaml
"""

import sys
from pathlib import Path

# Add src to path so we can import archain package
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from archain.config import SimulationParameters


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/validate_config.py <config_file.yaml>")
        sys.exit(1)

    config_path = sys.argv[1]

    print(f"Validating configuration: {config_path}")
    print("=" * 70)

    try:
        params = SimulationParameters.from_yaml(config_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"[ERROR] Could not load configuration: {e}")
        sys.exit(1)

    print("[OK] Configuration loaded successfully")
    print()

    messages = params.validate()
    if not messages:
        print("[OK] All validation checks passed!")
        print()
        print(params)
        sys.exit(0)

    errors = [m for m in messages if m.startswith("ERROR")]
    warns = [m for m in messages if m.startswith("WARNING")]

    if errors:
        print(f"[ERROR] {len(errors)} ERROR(S) found:")
        for error in errors:
            print(f"  {error}")
        print()

    if warns:
        print(f"[WARN] {len(warns)} WARNING(S):")
        for warn in warns:
            print(f"  {warn}")
        print()

    print(params)
    sys.exit(1 if errors else 0)


if __name__ == '__main__':
    main()
