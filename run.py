#!/usr/bin/env python3
"""
Custodial Vault Entry Point

Starts the FastAPI server with the configured limits, storage and payout
service (see VAULT_* environment variables).
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from custodial_vault.api import run_server
from custodial_vault.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Custodial Vault...")
    print(f"Withdrawal limit: {config.withdrawal_limit}")
    print(f"Bank cap: {config.bank_cap}")
    print(f"Storage: {config.storage_backend}")
    print(f"API available at: http://{config.api_host}:{config.api_port}")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Custodial Vault...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
