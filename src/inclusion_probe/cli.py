"""
inclusion_probe/cli.py

Command-line entry point.

Run with:
    inclusion-probe send-txn
    inclusion-probe get-blocks
    python -m inclusion_probe send-txn --chain-id 901 --builder-url http://b:2222

Exit codes for send-txn:
    0  builder and sequencer agree
    1  builder and sequencer disagree (divergent receipts)
    2  a receipt never appeared before the deadline
    3  nonce, signing, submission or endpoint failure
"""

import json
import logging
import sys

import click
import trio

from .config import ProbeConfig
from .errors import InclusionTimeout, ProbeError
from .metrics import ProbeMetrics
from .verifier import InclusionVerifier, ReceiptStatus, Verdict, VerificationReport

logger = logging.getLogger("inclusion_probe.cli")

EXIT_OK = 0
EXIT_DIVERGENT = 1
EXIT_INCOMPLETE = 2
EXIT_FAILURE = 3

_VERDICT_EXIT = {
    Verdict.CONSISTENT: EXIT_OK,
    Verdict.DIVERGENT: EXIT_DIVERGENT,
    Verdict.INCOMPLETE: EXIT_INCOMPLETE,
}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(name)s] %(levelname)s: %(message)s',
        stream=sys.stderr,
    )


@click.group()
@click.option("--sequencer-url", default=None, help="Sequencer JSON-RPC endpoint")
@click.option("--builder-url", default=None, help="Builder JSON-RPC endpoint")
@click.option("--ingress-url", default=None, help="Ingress JSON-RPC endpoint")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
)
@click.option("--metrics-file", type=click.Path(dir_okay=False), default=None,
              help="Write Prometheus metrics to this file when done")
@click.pass_context
def main(ctx, sequencer_url, builder_url, ingress_url, log_level, metrics_file):
    """Submit probe transactions and cross-check builder and sequencer."""
    _setup_logging(log_level)
    try:
        config = ProbeConfig.from_env().with_overrides(
            sequencer_url=sequencer_url,
            builder_url=builder_url,
            ingress_url=ingress_url,
        )
    except ValueError as e:
        raise click.BadParameter(str(e))

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["metrics"] = ProbeMetrics()
    ctx.obj["metrics_file"] = metrics_file


def _write_metrics(ctx) -> None:
    path = ctx.obj.get("metrics_file")
    if path:
        ctx.obj["metrics"].write_textfile(path)


def _format_status(status: ReceiptStatus) -> str:
    if not status.found:
        return f"{status.endpoint:<10} not included (gave up after {status.elapsed or 0:.2f}s)"
    return (
        f"{status.endpoint:<10} status={status.status.value} block={status.block} "
        f"seen after {status.elapsed:.2f}s ({status.polls} polls)"
    )


def _print_report(report: VerificationReport) -> None:
    click.echo(f"tx {report.tx_hash}")
    click.echo(_format_status(report.sequencer))
    click.echo(_format_status(report.builder))

    if report.verdict is Verdict.CONSISTENT:
        click.secho("CONSISTENT", fg="green", bold=True)
    elif report.verdict is Verdict.DIVERGENT:
        click.secho(
            f"DIVERGENT: builder says {report.builder.status.value}, "
            f"sequencer says {report.sequencer.status.value}",
            fg="red",
            bold=True,
            err=True,
        )
    else:
        click.secho("INCOMPLETE: a receipt never appeared", fg="yellow", bold=True, err=True)


@main.command("send-txn")
@click.option("--sender", default=None, help="Sender address")
@click.option("--sender-key", default=None, help="Sender private key (hex)")
@click.option("--chain-id", type=int, default=None)
@click.option("--to", "recipient", default=None, help="Recipient address")
@click.option("--value", default=None, help="Transfer value in ether, e.g. 0.01")
@click.option("--poll-interval", type=float, default=None, help="Seconds between receipt lookups")
@click.option("--receipt-timeout", type=float, default=None, help="Seconds to wait per endpoint")
@click.option("--run-timeout", type=float, default=None, help="Deadline for the whole run")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_context
def send_txn(ctx, sender, sender_key, chain_id, recipient, value,
             poll_interval, receipt_timeout, run_timeout, as_json):
    """Send a transfer through ingress and verify both nodes include it."""
    config: ProbeConfig = ctx.obj["config"].with_overrides(
        sender_address=sender,
        sender_key=sender_key,
        chain_id=chain_id,
        recipient_address=recipient,
        value_ether=value,
        poll_interval=poll_interval,
        receipt_timeout=receipt_timeout,
        run_timeout=run_timeout,
    )

    try:
        verifier = InclusionVerifier(config, metrics=ctx.obj["metrics"])
    except ValueError as e:
        raise click.BadParameter(str(e))

    click.echo("sending txn", err=True)
    try:
        report = trio.run(verifier.run)
    except InclusionTimeout as e:
        click.secho(f"INCOMPLETE: {e}", fg="yellow", bold=True, err=True)
        _write_metrics(ctx)
        ctx.exit(EXIT_INCOMPLETE)
    except ProbeError as e:
        logger.error(f"Run failed: {e}")
        click.secho(f"FAILED: {type(e).__name__}: {e}", fg="red", err=True)
        _write_metrics(ctx)
        ctx.exit(EXIT_FAILURE)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)

    _write_metrics(ctx)
    ctx.exit(_VERDICT_EXIT[report.verdict])


@main.command("get-blocks")
@click.pass_context
def get_blocks(ctx):
    """Print the current block number of sequencer and builder."""
    try:
        verifier = InclusionVerifier(ctx.obj["config"], metrics=ctx.obj["metrics"])
        heights = trio.run(verifier.block_heights)
    except ValueError as e:
        raise click.BadParameter(str(e))
    except ProbeError as e:
        click.secho(f"FAILED: {e}", fg="red", err=True)
        ctx.exit(EXIT_FAILURE)

    click.echo("Sequencer")
    click.echo(str(heights.sequencer))
    click.echo("Builder")
    click.echo(str(heights.builder))
    if heights.lag:
        click.echo(f"builder lag: {heights.lag} blocks", err=True)

    _write_metrics(ctx)


if __name__ == "__main__":
    main()
