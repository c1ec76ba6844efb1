#!/usr/bin/env python3
"""
Startup script for the Tracker Sync Service.
Facilitates running the application with different configurations.
"""

import argparse
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv


def main():
    """Main function to run the application."""
    parser = argparse.ArgumentParser(description="Tracker Sync Service - Jira / Azure DevOps mirror and insights")

    parser.add_argument(
        "--host",
        default=None,
        help="Host for server bind (default: HOST setting)"
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for server bind (default: PORT setting)"
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )

    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Log level (default: info)"
    )

    parser.add_argument(
        "--env-file",
        default=".env",
        help="Environment variables file (default: .env)"
    )

    args = parser.parse_args()

    env_file_path = Path(args.env_file)
    if env_file_path.exists():
        load_dotenv(env_file_path, override=False)
        print(f"⚙️  Configuration file: {env_file_path.absolute()}")
    else:
        print(f"⚠️  Configuration file '{args.env_file}' not found - using environment variables and defaults")

    # Imported after the env file is loaded so settings pick it up
    from tracker_sync.core.config import get_settings

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Error loading settings: {e}")
        sys.exit(1)

    host = args.host or settings.HOST
    port = args.port or settings.PORT

    print(f"🚀 Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    display_host = "localhost" if host == "0.0.0.0" else host
    print(f"🌐 Server: http://{display_host}:{port}")
    print(f"📚 Documentation: http://{display_host}:{port}/docs")
    print(f"🔍 Health Check: http://{display_host}:{port}/health")
    print()

    try:
        uvicorn.run(
            "tracker_sync.main:app",
            host=host,
            port=port,
            reload=args.reload,
            log_level=args.log_level,
            access_log=True
        )
    except KeyboardInterrupt:
        print("\n👋 Application interrupted by user")
    except Exception as e:
        print(f"Error running application: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
