#!/usr/bin/env python3
"""
Push Dispatch Testing & Debugging Tool

Helps debug delivery issues by:
- Showing which providers are configured
- Signing an APNS provider token with the configured key
- Resolving a user's registered endpoints from the device registry
- Sending a test notification to one device token
"""

import sys
import asyncio
import argparse
import logging

try:
    import jwt
    from push_dispatch.core.config import settings
    from push_dispatch.services.push import (
        APNSConfig,
        APNSTokenSigner,
        DeviceEndpoint,
        NormalizedNotification,
        PushDispatchService,
        RegistryUnavailableError,
        SigningKeyError,
    )
    from push_dispatch.services.push.device_registry import get_device_registry
except ImportError as e:
    print(f"Failed to import push_dispatch modules: {e}")
    print("Install the project first: pip install -e .")
    sys.exit(1)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class Colors:
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    END = '\033[0m'


def print_success(msg: str):
    print(f"{Colors.GREEN}OK{Colors.END}   {msg}")


def print_error(msg: str):
    print(f"{Colors.RED}FAIL{Colors.END} {msg}")


def print_warning(msg: str):
    print(f"{Colors.YELLOW}WARN{Colors.END} {msg}")


def print_info(msg: str):
    print(f"{Colors.BLUE}INFO{Colors.END} {msg}")


# ============================================================================
# Diagnostic Functions
# ============================================================================

def check_config() -> bool:
    """Report which collaborators and providers are configured."""
    checks = [
        ("Device registry (SUPABASE_URL + service role key)", settings.registry_ready),
        ("APNS (APNS_KEY, APNS_KEY_ID, APNS_TEAM_ID, APNS_BUNDLE_ID)", settings.apns_ready),
        ("FCM (FCM_SERVER_KEY)", settings.fcm_ready),
    ]
    for label, ready in checks:
        if ready:
            print_success(label)
        else:
            print_warning(f"{label} not configured")

    if settings.audit_enabled:
        print_info("Delivery audit store enabled")
    return settings.registry_ready


def check_apns_token() -> bool:
    """Sign an APNS provider token and show its header and claims."""
    signer = APNSTokenSigner(APNSConfig(
        key_pem=settings.APNS_KEY,
        key_id=settings.APNS_KEY_ID,
        team_id=settings.APNS_TEAM_ID,
    ))
    try:
        token = signer.get_signing_token()
    except SigningKeyError as e:
        print_error(str(e))
        return False

    if token is None:
        print_warning("APNS signing key, key ID or team ID missing")
        return False

    print_success("APNS provider token signed")
    print_info(f"Header: {jwt.get_unverified_header(token)}")
    print_info(f"Claims: {jwt.decode(token, options={'verify_signature': False})}")
    print_info(f"Expires at: {signer.cached_credential.expires_at}")
    return True


async def resolve_user(user_id: str) -> bool:
    """List the endpoints registered for a user."""
    if not settings.registry_ready:
        print_error("Device registry not configured")
        return False

    registry = get_device_registry()
    try:
        endpoints = await registry.resolve([user_id])
    except RegistryUnavailableError as e:
        print_error(f"Registry unavailable: {e}")
        return False
    finally:
        await registry.close()

    if not endpoints:
        print_warning(f"No endpoints registered for {user_id}")
        return True

    for endpoint in endpoints:
        print_info(
            f"{endpoint.platform_tag or '(no platform)':10} -> {endpoint.provider.value:5} "
            f"{endpoint.token[:24]}..."
        )
    return True


async def send_test(token: str, platform: str, title: str, body: str, dry_run: bool) -> bool:
    """Send a test notification to a single device token."""
    endpoint = DeviceEndpoint(token=token, platform_tag=platform)
    notification = NormalizedNotification(title=title, body=body, data={"source": "debug-tool"})

    print_info(f"Routing platform '{platform}' to {endpoint.provider.value}")
    if dry_run:
        print_info("Dry run - nothing sent")
        return True

    async with PushDispatchService.from_settings(settings) as service:
        result = await service.dispatch(notification, [endpoint], recipient_count=1)

    for delivery in result.results:
        if delivery.success:
            print_success(f"Delivered (HTTP {delivery.status_code})")
        else:
            print_error(
                f"{delivery.status.value}: {delivery.error_reason or delivery.error} "
                f"(HTTP {delivery.status_code})"
            )
    return result.failed_count == 0


def main():
    parser = argparse.ArgumentParser(description="Push dispatch debugging tool")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("config", help="Show provider configuration")
    subparsers.add_parser("apns-token", help="Sign an APNS provider token")

    resolve_parser = subparsers.add_parser("resolve", help="List a user's endpoints")
    resolve_parser.add_argument("user_id", help="User ID to look up")

    send_parser = subparsers.add_parser("test-send", help="Send a test notification")
    send_parser.add_argument("token", help="Device token")
    send_parser.add_argument(
        "--platform",
        default="ios",
        help="Registry platform tag (ios/apns go to APNS, anything else to FCM)"
    )
    send_parser.add_argument("--title", default=settings.PUSH_DEFAULT_TITLE)
    send_parser.add_argument("--body", default="Test notification")
    send_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Don't actually send, just show the routing"
    )

    args = parser.parse_args()

    try:
        if args.command == "config":
            ok = check_config()
        elif args.command == "apns-token":
            ok = check_apns_token()
        elif args.command == "resolve":
            ok = asyncio.run(resolve_user(args.user_id))
        elif args.command == "test-send":
            ok = asyncio.run(send_test(
                args.token,
                platform=args.platform,
                title=args.title,
                body=args.body,
                dry_run=args.dry_run,
            ))
        else:
            parser.print_help()
            ok = True
    except Exception as e:
        print_error(f"Error: {e}")
        logger.exception("Diagnostic error")
        sys.exit(1)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
