#!/usr/bin/env python3
"""
NodeGate - Entry Point
========================
One-command startup for the NodeGate control plane.

Usage:
    python app.py              # Start with default settings
    python app.py --port 9000  # Start on custom port

This script:
    1. Creates config.yaml from config.yaml.example if missing
    2. Loads environment variables from .env (JWT_SECRET, ALLOWED_WALLETS)
    3. Configures logging
    4. Starts the uvicorn server with the FastAPI application factory
"""

import os
import shutil
import argparse
import logging

import uvicorn
from dotenv import load_dotenv


def main():
    """Parse arguments, load config, and start the web server."""

    # -- Parse command-line arguments ------------------------------------------
    parser = argparse.ArgumentParser(
        description="NodeGate - Polkadot node fleet control plane",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port number for the API server (overrides config.yaml)",
    )
    parser.add_argument(
        "--host", type=str, default=None,
        help="Host binding address (overrides config.yaml)",
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info, debug when debug mode is on)",
    )
    args = parser.parse_args()

    # -- Resolve project directory ---------------------------------------------
    project_dir = os.path.dirname(os.path.abspath(__file__))

    # -- Ensure configuration file exists --------------------------------------
    config_path = os.path.join(project_dir, "config.yaml")
    config_example = os.path.join(project_dir, "config.yaml.example")
    if not os.path.exists(config_path) and os.path.exists(config_example):
        shutil.copy2(config_example, config_path)
        print("[INIT] Created config.yaml from template")

    # -- Load environment variables from .env ----------------------------------
    env_path = os.path.join(project_dir, ".env")
    if os.path.exists(env_path):
        load_dotenv(env_path)

    # -- Load configuration to get web server settings -------------------------
    from nodegate.config import ConfigManager, DEFAULTS
    config_manager = ConfigManager(project_dir)
    config = config_manager.load()

    # Command-line args override config file
    host = args.host or config["web"].get("host", DEFAULTS["web"]["host"])
    port = args.port or config["web"].get("port", DEFAULTS["web"]["port"])
    log_level = args.log_level or ("debug" if config.get("debug") else "info")

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # -- Print startup banner --------------------------------------------------
    print()
    print("  NodeGate control plane")
    print(f"  API     : http://{host}:{port}/api")
    print(f"  Docs    : http://{host}:{port}/docs")
    print()

    # -- Start the web server --------------------------------------------------
    uvicorn.run(
        "nodegate.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        log_level=log_level,
    )


if __name__ == "__main__":
    main()
