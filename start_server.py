#!/usr/bin/env python3
"""
Startup script for the Game Recommendation Engine

Starts the FastAPI server with settings from the environment or .env file.
"""

import sys
from pathlib import Path

import uvicorn

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def main():
    """Start the FastAPI server."""
    print("Game Recommendation Engine - Starting Server")
    print("=" * 50)

    env_file = project_root / ".env"
    if not env_file.exists():
        print("No .env file found, creating one with default settings...")
        from config.settings import create_default_config_file
        create_default_config_file(str(env_file))

    try:
        from config.settings import get_settings, validate_settings
        settings = get_settings()
        validate_settings(settings)

        print("Configuration loaded successfully")
        print(f"  - API Host: {settings.api_host}")
        print(f"  - API Port: {settings.api_port}")
        print(f"  - Database: {settings.database_url}")
        print(f"  - Arm store: {settings.arm_store}")
        print(f"  - Reward policy: {settings.reward_policy}")
        print(f"  - Log Level: {settings.log_level}")
    except Exception as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)

    print(f"\nStarting server on {settings.api_host}:{settings.api_port}")
    print("Press Ctrl+C to stop the server")
    print("=" * 50)

    try:
        uvicorn.run(
            "api.main:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.debug,
            log_level=settings.log_level.lower(),
            access_log=True
        )
    except KeyboardInterrupt:
        print("\nServer stopped by user")
    except Exception as e:
        print(f"\nFailed to start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
