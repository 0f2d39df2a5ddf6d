from __future__ import annotations

import argparse
import asyncio
import sys

from streamhub.core.errors import (
    ConfigError,
    DefinitiveProviderError,
    ProviderError,
    TransientProviderError,
    VaultError,
)
from streamhub.persistence.db import SessionLocal
from streamhub.persistence.repos.settings import SqlSettingsStore
from streamhub.services.provider_config import StreamConfigService
from streamhub.services.vault import CredentialVault


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Check saved video provider credentials against the live API."
    )
    parser.add_argument("--provider", choices=["cloudflare", "bunny"], help="Defaults to the active provider")
    parser.add_argument("--video-id", help="Also fetch this video and print its status")
    parser.add_argument("--list", action="store_true", help="List collections (Cloudflare: videos)")
    return parser


def build_config_service() -> StreamConfigService:
    return StreamConfigService(SqlSettingsStore(SessionLocal), CredentialVault())


def _format_error(exc: Exception) -> tuple[int, str]:
    if isinstance(exc, (ConfigError, VaultError)):
        return 2, f"PROVIDER_CONFIG_INVALID: {exc}"
    if isinstance(exc, DefinitiveProviderError):
        return 4, f"PROVIDER_NOT_FOUND: {exc}"
    if isinstance(exc, TransientProviderError):
        return 5, f"PROVIDER_UNAVAILABLE: {exc}"
    if isinstance(exc, ProviderError):
        return 4, f"PROVIDER_ERROR: {exc}"
    return 1, f"UNKNOWN_ERROR: {exc}"


async def _run(args: argparse.Namespace) -> int:
    service = build_config_service()
    provider = args.provider or (await service.active_provider()).config_section
    result = await service.test_connection(provider)
    print(f"connection provider={provider} status={result.status} message=\"{result.message}\"")
    if not result.ok:
        return 3

    if not args.video_id and not args.list:
        return 0
    gateway = await service.build_gateway(provider)
    try:
        if args.video_id:
            video = await gateway.get_video(args.video_id)
            print(
                f"video id={video.video_id} ready_to_stream={video.ready_to_stream} "
                f"pct_complete={video.pct_complete} state={video.state}"
            )
        if args.list:
            for item in await gateway.list_collections():
                print(f"- id={item.get('id')} name={item.get('name')}")
    finally:
        await gateway.aclose()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface actionable errors
        code, message = _format_error(exc)
        print(message, file=sys.stderr)
        return code


if __name__ == "__main__":
    raise SystemExit(main())
