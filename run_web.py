#!/usr/bin/env python3
"""Web entry point for the ERP data chat service."""

import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from agent.config import load_config
from web.app import create_app


def main():
    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.json"
    config = load_config(config_path)

    print("\n  ERP Data Chat")
    print(f"  Model: {config.provider.model}")
    print(f"  Gateway: {config.provider.base_url}")
    print(f"  Data sources: {len(config.data_sources)}")
    print("  POST http://localhost:5000/api/chat\n")

    app = create_app(config)
    app.run(host="0.0.0.0", port=5000, threaded=True)


if __name__ == "__main__":
    main()
