"""
Main entry point for the API Insights client.

This module provides a command-line interface for logging in (including the
two-factor step), inspecting the current session and issuing authenticated
requests against the backend.
"""

import sys
import json
import asyncio
import getpass
import argparse
import logging
from typing import Optional, List, Any, Dict

from api_insights.client.api_client import InsightsAPIClient
from api_insights.client.auth.session_manager import SessionManager
from api_insights.client.auth.token_storage import MemoryTokenStorage, SecureTokenStorage
from api_insights.client.config import ClientConfiguration
from api_insights.shared.exceptions import (
    AuthFatalError, ConfigurationError, ErrorCode, InsightsClientError, ValidationError,
    handle_exception
)
from api_insights.shared.interfaces import ITokenStorage
from api_insights.shared.logging_config import LogFormat, LogLevel, log_structured_error, setup_logging
from api_insights.shared.models import User

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_TWO_FACTOR_REQUIRED = 2
EXIT_NOT_AUTHENTICATED = 3


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="api-insights",
        description="API Insights Client",
        epilog="""
Examples:
  %(prog)s --login user@example.com          # Log in, prompting for the password
  %(prog)s --verify-2fa 123456               # Complete a two-factor login
  %(prog)s --whoami --json                   # Show the current user as JSON
  %(prog)s --get /api/v1/projects/           # Authenticated GET request
  %(prog)s --logout                          # Revoke and forget the session

Exit codes:
  0 success, 1 error, 2 two-factor code required, 3 not authenticated
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Operation modes (mutually exclusive)
    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--login", type=str, metavar="EMAIL",
                                 help="Log in with the given email")
    operation_group.add_argument("--verify-2fa", type=str, metavar="CODE", dest="verify_2fa",
                                 help="Complete a pending two-factor login")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Log out and clear stored credentials")
    operation_group.add_argument("--whoami", action="store_true",
                                 help="Show the authenticated user")
    operation_group.add_argument("--get", type=str, metavar="PATH",
                                 help="Send an authenticated GET request to PATH")

    parser.add_argument("--password", type=str, metavar="PASSWORD",
                        help="Password for --login (prompted when omitted)")

    # Configuration options
    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Path to configuration file")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override server URL")
    config_group.add_argument("--no-persist", action="store_true",
                              help="Keep credentials in memory only")

    # Output format options
    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-error output")

    # Debug options
    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to file")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    if args.password and not args.login:
        parser.error("--password can only be used with --login")

    return args


def configure_logging(args: argparse.Namespace, config: ClientConfiguration) -> None:
    """Configure logging from arguments and configuration."""
    if args.debug:
        level = LogLevel.DEBUG
    elif args.verbose:
        level = LogLevel.INFO
    elif args.quiet or args.json:
        level = LogLevel.ERROR
    else:
        level = LogLevel(config.get_log_level())

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid log format: {config.get_log_format()}",
            error_code=ErrorCode.CONFIG_INVALID_VALUE,
            config_key='logging.format',
            cause=e
        ) from e

    setup_logging(
        log_level=level,
        log_format=log_format,
        log_file=config.get_log_file()
    )


def build_token_storage(args: argparse.Namespace, config: ClientConfiguration) -> ITokenStorage:
    if args.no_persist:
        return MemoryTokenStorage()
    return SecureTokenStorage(
        service_name=config.get_service_name(),
        storage_path=config.get_token_file(),
        use_keyring=config.get_use_keyring()
    )


def _user_payload(user: User) -> Dict[str, Any]:
    return {
        'id': user.id,
        'email': user.email,
        'name': user.full_name,
        'email_verified': user.is_email_verified,
        'two_factor_enabled': user.is_two_factor_enabled
    }


def _emit(args: argparse.Namespace, payload: Any, text: str) -> None:
    if args.json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(text)


def _status(args: argparse.Namespace, message: str) -> None:
    if not args.quiet and not args.json:
        print(message)


async def execute(args: argparse.Namespace, session: SessionManager, api_client: InsightsAPIClient) -> int:
    """
    Run the selected operation.

    Args:
        args: Parsed command line arguments
        session: Session manager bound to ``api_client``
        api_client: Authenticated API client

    Returns:
        Process exit code
    """
    try:
        if args.login:
            password = args.password or getpass.getpass(f"Password for {args.login}: ")
            result = await session.login(args.login, password)
            if result.two_factor_required:
                _status(args, "Two-factor code required, run with --verify-2fa CODE")
                if args.json:
                    _emit(args, {'two_factor_required': True}, "")
                return EXIT_TWO_FACTOR_REQUIRED
            if not result.user:
                print("Login succeeded but the profile could not be loaded", file=sys.stderr)
                return EXIT_NOT_AUTHENTICATED
            _emit(args, _user_payload(result.user), f"✓ Logged in as {result.user.full_name} <{result.user.email}>")
            return EXIT_OK

        if args.verify_2fa:
            result = await session.verify_two_factor(args.verify_2fa)
            if not result.user:
                print("Verification succeeded but the profile could not be loaded", file=sys.stderr)
                return EXIT_NOT_AUTHENTICATED
            _emit(args, _user_payload(result.user), f"✓ Logged in as {result.user.full_name} <{result.user.email}>")
            return EXIT_OK

        if args.logout:
            await session.logout()
            _status(args, "✓ Logged out")
            return EXIT_OK

        if args.whoami:
            user = await session.initialize()
            if user is None:
                print("Not logged in", file=sys.stderr)
                return EXIT_NOT_AUTHENTICATED
            _emit(args, _user_payload(user), f"{user.full_name} <{user.email}>")
            return EXIT_OK

        if args.get:
            data = await api_client.get(args.get)
            # Raw payloads are always printed as JSON
            print(json.dumps(data, indent=2, default=str))
            return EXIT_OK

    except AuthFatalError as e:
        print(f"Not authenticated: {e.message}", file=sys.stderr)
        return EXIT_NOT_AUTHENTICATED
    except ValidationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.error_code == ErrorCode.AUTH_CHALLENGE_MISSING:
            return EXIT_NOT_AUTHENTICATED
        return EXIT_ERROR
    except InsightsClientError as e:
        print(f"Error: {e.user_message}", file=sys.stderr)
        logger.debug(f"Operation failed: {e.to_dict()}")
        return EXIT_ERROR

    return EXIT_ERROR


async def run_cli_mode(args: argparse.Namespace, config: ClientConfiguration) -> int:
    """Build the client stack from configuration and run one operation."""
    token_storage = build_token_storage(args, config)
    api_client = InsightsAPIClient(
        server_url=config.get_server_url(),
        token_storage=token_storage,
        timeout=config.get_timeout(),
        auth_paths=config.get_auth_paths()
    )
    async with api_client:
        session = SessionManager(api_client)
        return await execute(args, session, api_client)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)
    try:
        config = ClientConfiguration(args.config)
        if args.server_url:
            config.set_override('server.url', args.server_url)
        if args.log_file:
            config.set_override('logging.file', args.log_file)

        configure_logging(args, config)
        return asyncio.run(run_cli_mode(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except Exception as e:
        error = handle_exception(e, {'operation': 'cli'})
        log_structured_error(logger, error)
        print(f"Fatal error: {error.user_message}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
