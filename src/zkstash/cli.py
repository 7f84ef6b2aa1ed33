"""
zkstash CLI: grants and attestations from the shell.

Commands:
    zkstash grant create        Sign a grant and print its share code
    zkstash grant inspect       Decode a share code
    zkstash grant verify        Check a share code's expiry and signature
    zkstash attestation verify  Verify a signed attestation JSON file
    zkstash memory-hash         Compute a memory content hash
    zkstash duration            Convert a duration string to seconds
"""

from __future__ import annotations

import asyncio
import json
import sys
import time
from typing import Optional

import click
from click.core import ParameterSource

from . import __version__
from .attestation import AttestationVerifier, compute_memory_hash
from .config import ClientConfig
from .errors import InputError
from .grants import create_grant, grant_from_share_code, parse_duration, verify_grant
from .signer import signer_from_private_key


def _fmt_time(ts: int) -> str:
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(ts))


@click.group()
@click.version_option(version=__version__)
def main():
    """zkstash: wallet auth, grants and attestations for zkStash agents."""
    pass


@main.group("grant")
def grant_group():
    """Create and check memory-sharing grants."""
    pass


@grant_group.command("create")
@click.option("--private-key", prompt=True, hide_input=True,
              help="Grantor private key (0x hex for EVM, base58 for Solana)")
@click.option(
    "--unsafe-allow-key-arg",
    is_flag=True,
    default=False,
    help="Allow passing --private-key via argv (unsafe; can leak in shell/process history).",
)
@click.option("--grantee", required=True, help="Grantee wallet address")
@click.option("--agent-id", default=None, help="Limit the grant to one agentId")
@click.option("--subject-id", default=None, help="Limit the grant to one subjectId")
@click.option("--expires-in", default=None, help="Duration until expiry, e.g. 24h, 7d, 2w (default: 7d)")
@click.option("--expires-at", type=int, default=None, help="Absolute expiry (unix seconds)")
def grant_create(
    private_key: str,
    unsafe_allow_key_arg: bool,
    grantee: str,
    agent_id: Optional[str],
    subject_id: Optional[str],
    expires_in: Optional[str],
    expires_at: Optional[int],
):
    """Sign a grant and print its share code."""
    ctx = click.get_current_context(silent=True)
    key_from_argv = (
        ctx is not None
        and ctx.get_parameter_source("private_key") == ParameterSource.COMMANDLINE
    )
    if key_from_argv and not unsafe_allow_key_arg:
        click.echo(
            "❌ Refusing --private-key from argv. Re-run with prompt input or pass "
            "--unsafe-allow-key-arg to acknowledge the risk.",
            err=True,
        )
        sys.exit(1)

    try:
        signer = signer_from_private_key(private_key)
        grant, share_code = create_grant(
            signer,
            grantee=grantee,
            agent_id=agent_id,
            subject_id=subject_id,
            expires_in=expires_in,
            expires_at=expires_at,
        )
    except InputError as e:
        click.echo(f"❌ Failed to create grant: {e}", err=True)
        sys.exit(1)

    click.echo(f"✅ Grant created ({grant.c})")
    click.echo(f"   Grantor:  {grant.p.f}")
    click.echo(f"   Grantee:  {grant.p.g}")
    if grant.p.a:
        click.echo(f"   Agent:    {grant.p.a}")
    if grant.p.u:
        click.echo(f"   Subject:  {grant.p.u}")
    click.echo(f"   Expires:  {_fmt_time(grant.p.e)}")
    click.echo(share_code)


@grant_group.command("inspect")
@click.argument("share_code")
def grant_inspect(share_code: str):
    """Decode a share code and print the grant as JSON."""
    try:
        grant = grant_from_share_code(share_code)
    except InputError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(grant.to_dict(), indent=2))


@grant_group.command("verify")
@click.argument("share_code")
def grant_verify(share_code: str):
    """Verify a share code's expiry and grantor signature."""
    try:
        grant = grant_from_share_code(share_code)
    except InputError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    valid, reason = verify_grant(grant)
    if valid:
        click.echo(f"✅ Grant is valid: {reason}")
        click.echo(f"   Grantor:  {grant.p.f}")
        click.echo(f"   Grantee:  {grant.p.g}")
        click.echo(f"   Expires:  {_fmt_time(grant.p.e)}")
    else:
        click.echo(f"❌ Grant is invalid: {reason}")
        sys.exit(1)


@main.group("attestation")
def attestation_group():
    """Verify service-issued attestations."""
    pass


@attestation_group.command("verify")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--api-url", default=None, help="Service base URL (default: $ZKSTASH_API_URL or api.zkstash.ai)")
def attestation_verify(path: str, api_url: Optional[str]):
    """Verify a JSON file holding {"attestation": ..., "signature": ...}."""
    with open(path) as f:
        signed = json.load(f)
    if not isinstance(signed, dict) or "attestation" not in signed or "signature" not in signed:
        click.echo("❌ File must contain 'attestation' and 'signature'", err=True)
        sys.exit(1)

    config = ClientConfig.from_env()

    async def _verify():
        async with AttestationVerifier(
            api_url or config.api_url,
            well_known_path=config.well_known_path,
            timeout_seconds=config.timeout_seconds,
        ) as verifier:
            return await verifier.verify_signed(signed)

    result = asyncio.run(_verify())
    if result.valid:
        click.echo("✅ Attestation is valid")
        click.echo(f"   Claim:    {signed['attestation'].get('claim')}")
        click.echo(f"   Expires:  {_fmt_time(int(signed['attestation']['expiresAt']))}")
    else:
        click.echo(f"❌ Attestation is invalid: {result.reason}")
        sys.exit(1)


@main.command("memory-hash")
@click.option("--kind", required=True, help="Memory kind")
@click.option("--agent-id", required=True, help="Owning agentId")
@click.option("--data", "data_json", required=True, help="Memory data as JSON")
def memory_hash(kind: str, agent_id: str, data_json: str):
    """Print the content hash the service stores for a memory."""
    try:
        data = json.loads(data_json)
    except ValueError as e:
        click.echo(f"❌ --data is not valid JSON: {e}", err=True)
        sys.exit(1)
    click.echo(compute_memory_hash(kind, data, agent_id))


@main.command()
@click.argument("text")
def duration(text: str):
    """Convert a duration like 7d or 2h to seconds."""
    try:
        click.echo(parse_duration(text))
    except InputError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
