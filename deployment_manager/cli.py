"""
Deployment manager CLI entry point.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from deployment_manager.config.settings import DeploymentManagerConfig, generate_default_config
from deployment_manager.errors import OrchestratorError
from deployment_manager.logging_config import setup_logging as setup_full_logging
from deployment_manager.manifest_generator import ManifestGenerator
from deployment_manager.naming import DeploymentNamer

DEFAULT_CONFIG_PATH = "/etc/deployment-manager/config.yml"

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Console logging, plus log files when the log directory is writable."""
    console_level = "DEBUG" if verbose else "INFO"

    log_dir: Optional[str] = "/var/log/deployment-manager"
    if not os.access("/var/log", os.W_OK):
        log_dir = str(Path.home() / ".local" / "log" / "deployment-manager")

    try:
        setup_full_logging(log_dir=log_dir, console_level=console_level, file_level="DEBUG")
    except PermissionError:
        setup_full_logging(log_dir=None, console_level=console_level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Deployment manager - naming, manifests and backups of service deployments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a default config
  deployment-manager --generate-config

  # Decode a deployment name
  deployment-manager parse-name service-fabrik-0003-5a6f0c1e

  # Render the manifest of an instance
  deployment-manager render-manifest --plan small --instance 5a6f0c1e --index 3
""",
    )
    parser.add_argument(
        "--config", "-c", type=str, default=DEFAULT_CONFIG_PATH, help="Path to configuration file"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--generate-config", action="store_true", help="Generate default configuration file and exit"
    )
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration file and exit"
    )

    subparsers = parser.add_subparsers(dest="command")

    parse_name = subparsers.add_parser("parse-name", help="Decode a deployment name")
    parse_name.add_argument("name", help="Deployment name")
    parse_name.add_argument("--subnet", help="Subnet the deployment belongs to")

    render = subparsers.add_parser("render-manifest", help="Render the manifest of an instance")
    render.add_argument("--plan", required=True, help="Plan id")
    render.add_argument("--instance", required=True, help="Instance id")
    render.add_argument("--index", required=True, type=int, help="Network segment index")
    render.add_argument("--parameters", default="{}", help="Instance parameters as JSON")
    render.add_argument("--previous", help="File holding the currently deployed manifest")

    return parser


def _namer(config: DeploymentManagerConfig, subnet: Optional[str] = None) -> DeploymentNamer:
    return DeploymentNamer(
        prefix=config.manager.prefix,
        subnet=subnet if subnet is not None else config.manager.subnet,
        index_width=config.manager.index_width,
        capacity=config.manager.index_capacity,
    )


def cmd_parse_name(config: DeploymentManagerConfig, args: argparse.Namespace) -> int:
    parsed = _namer(config, args.subnet).parse(args.name)
    print(json.dumps(parsed._asdict(), indent=2))
    return 0


def cmd_render_manifest(config: DeploymentManagerConfig, args: argparse.Namespace) -> int:
    plan = config.get_plan(args.plan)
    if plan is None:
        print(f"Unknown plan: {args.plan}", file=sys.stderr)
        return 1

    try:
        parameters = json.loads(args.parameters)
    except json.JSONDecodeError as e:
        print(f"Invalid --parameters: {e}", file=sys.stderr)
        return 1

    previous = Path(args.previous).read_text() if args.previous else None
    name = _namer(config).format(args.instance, args.index)
    generator = ManifestGenerator(config.infrastructure, plan, config.network_name)
    print(generator.generate(name, args.index, parameters, previous), end="")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.generate_config:
        generate_default_config(args.config)
        print(f"Generated default configuration at: {args.config}")
        return 0

    if not Path(args.config).exists():
        print(f"Configuration file not found: {args.config}", file=sys.stderr)
        print("Run with --generate-config to create a default configuration", file=sys.stderr)
        return 1

    try:
        config = DeploymentManagerConfig.from_file(args.config)
    except Exception as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    if args.validate_config:
        print("Configuration is valid")
        return 0

    try:
        if args.command == "parse-name":
            return cmd_parse_name(config, args)
        if args.command == "render-manifest":
            return cmd_render_manifest(config, args)
    except (OrchestratorError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
