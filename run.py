#!/usr/bin/env python3
"""
SecureBank Entry Point

Starts the FastAPI server with the identity & ledger access API.
"""

import sys

import uvicorn

from secure_bank.config import get_config


if __name__ == "__main__":
    config = get_config()

    print("🏦 Starting SecureBank...")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(
            "secure_bank.api:create_app",
            factory=True,
            host=config.api_host,
            port=config.api_port
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down SecureBank...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
