"""
Tests for inclusion_probe/cli.py

Runs the click commands with the verifier replaced by a stand-in, checking
output and exit codes.
"""

import json

import pytest
from click.testing import CliRunner

from inclusion_probe import cli
from inclusion_probe.errors import (
    InclusionTimeout,
    NonceFetchError,
    RpcTransportError,
    SubmissionError,
)
from inclusion_probe.verifier import (
    BlockHeights,
    BlockReference,
    InclusionStatus,
    ReceiptStatus,
    Verdict,
    VerificationReport,
)


TX_HASH = "0x" + "ab" * 32


def make_report(verdict: Verdict) -> VerificationReport:
    builder = ReceiptStatus("builder", InclusionStatus.SUCCESS, BlockReference(5, "0x05"), polls=2, elapsed=0.5)
    if verdict is Verdict.CONSISTENT:
        sequencer = ReceiptStatus("sequencer", InclusionStatus.SUCCESS, BlockReference(5, "0x05"), polls=1, elapsed=0.2)
    elif verdict is Verdict.DIVERGENT:
        sequencer = ReceiptStatus("sequencer", InclusionStatus.FAILURE, BlockReference(5, "0x05"), polls=1, elapsed=0.2)
    else:
        sequencer = ReceiptStatus.not_found("sequencer", polls=20, elapsed=5.0)
    return VerificationReport(TX_HASH, builder, sequencer, verdict)


def fake_verifier(report=None, error=None, heights=None):
    """Build a stand-in for InclusionVerifier with canned results."""

    class FakeVerifier:
        instances = []

        def __init__(self, config, metrics=None):
            config.validate()
            self.config = config
            self.metrics = metrics
            FakeVerifier.instances.append(self)

        async def run(self):
            if error is not None:
                raise error
            self.metrics.record_verdict(report.verdict.value)
            return report

        async def block_heights(self):
            if error is not None:
                raise error
            return heights

    return FakeVerifier


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def use_verifier(monkeypatch):
    def install(**kwargs):
        verifier_cls = fake_verifier(**kwargs)
        monkeypatch.setattr(cli, "InclusionVerifier", verifier_cls)
        return verifier_cls
    return install


# ============================================================================
# SEND-TXN TESTS
# ============================================================================

class TestSendTxn:
    """Tests for the send-txn command."""

    def test_consistent_exit_zero(self, runner, use_verifier):
        """Test that agreeing receipts exit 0."""
        use_verifier(report=make_report(Verdict.CONSISTENT))
        result = runner.invoke(cli.main, ["send-txn"])
        assert result.exit_code == 0
        assert "sending txn" in result.output
        assert "CONSISTENT" in result.output
        assert TX_HASH in result.output

    def test_divergent_exit_one(self, runner, use_verifier):
        """Test that disagreeing receipts exit 1 with both statuses named."""
        use_verifier(report=make_report(Verdict.DIVERGENT))
        result = runner.invoke(cli.main, ["send-txn"])
        assert result.exit_code == cli.EXIT_DIVERGENT == 1
        assert "DIVERGENT: builder says success, sequencer says failure" in result.output

    def test_incomplete_exit_two(self, runner, use_verifier):
        """Test that a missing receipt exits 2."""
        use_verifier(report=make_report(Verdict.INCOMPLETE))
        result = runner.invoke(cli.main, ["send-txn"])
        assert result.exit_code == cli.EXIT_INCOMPLETE == 2
        assert "INCOMPLETE" in result.output
        assert "not included" in result.output

    @pytest.mark.parametrize("error", [
        NonceFetchError("builder unreachable"),
        SubmissionError("Ingress rejected transaction: nonce too low"),
    ])
    def test_failure_exit_three(self, runner, use_verifier, error):
        """Test that workflow errors exit 3 with the error shown."""
        use_verifier(error=error)
        result = runner.invoke(cli.main, ["send-txn"])
        assert result.exit_code == cli.EXIT_FAILURE == 3
        assert "FAILED" in result.output
        assert type(error).__name__ in result.output

    def test_run_deadline_before_submission_exit_two(self, runner, use_verifier):
        """Test that a run deadline hit before submission completes exits 2."""
        use_verifier(error=InclusionTimeout("Run deadline passed while building the transaction",
                                            endpoint="builder", timeout=3.0))
        result = runner.invoke(cli.main, ["send-txn"])
        assert result.exit_code == cli.EXIT_INCOMPLETE
        assert "INCOMPLETE: Run deadline passed" in result.output

    def test_json_output(self, runner, use_verifier):
        """Test the --json report."""
        use_verifier(report=make_report(Verdict.CONSISTENT))
        result = runner.invoke(cli.main, ["send-txn", "--json"])
        assert result.exit_code == 0
        body = result.output[result.output.index("{"):]
        data = json.loads(body)
        assert data["verdict"] == "consistent"
        assert data["builder"]["block_number"] == 5

    def test_options_reach_config(self, runner, use_verifier):
        """Test that command-line options override the defaults."""
        verifier_cls = use_verifier(report=make_report(Verdict.CONSISTENT))
        result = runner.invoke(cli.main, [
            "--builder-url", "http://builder:2222",
            "send-txn",
            "--chain-id", "901",
            "--value", "0.5",
            "--poll-interval", "0.1",
        ])
        assert result.exit_code == 0
        config = verifier_cls.instances[0].config
        assert config.builder_url == "http://builder:2222"
        assert config.chain_id == 901
        assert config.value_wei == 5 * 10 ** 17
        assert config.poll_interval == 0.1

    def test_environment_reaches_config(self, runner, use_verifier):
        """Test that INCLUSION_PROBE_* variables are honoured."""
        verifier_cls = use_verifier(report=make_report(Verdict.CONSISTENT))
        result = runner.invoke(
            cli.main, ["send-txn"], env={"INCLUSION_PROBE_SEQUENCER_URL": "http://seq:8547"}
        )
        assert result.exit_code == 0
        assert verifier_cls.instances[0].config.sequencer_url == "http://seq:8547"

    def test_invalid_option_rejected(self, runner, use_verifier):
        """Test that an out-of-range setting is a usage error."""
        use_verifier(report=make_report(Verdict.CONSISTENT))
        result = runner.invoke(cli.main, ["send-txn", "--chain-id", "0"])
        assert result.exit_code == 2
        assert "chain_id" in result.output

    def test_metrics_file_written(self, runner, use_verifier, tmp_path):
        """Test that --metrics-file receives Prometheus output."""
        use_verifier(report=make_report(Verdict.CONSISTENT))
        path = tmp_path / "probe.prom"
        result = runner.invoke(cli.main, ["--metrics-file", str(path), "send-txn"])
        assert result.exit_code == 0
        assert 'inclusion_probe_runs_total{verdict="consistent"} 1' in path.read_text()


# ============================================================================
# GET-BLOCKS TESTS
# ============================================================================

class TestGetBlocks:
    """Tests for the get-blocks command."""

    def test_prints_heights(self, runner, use_verifier):
        """Test the sequencer and builder block listing."""
        use_verifier(heights=BlockHeights(sequencer=120, builder=118))
        result = runner.invoke(cli.main, ["get-blocks"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[:4] == ["Sequencer", "120", "Builder", "118"]
        assert "builder lag: 2 blocks" in result.output

    def test_in_sync_no_lag_line(self, runner, use_verifier):
        """Test that no lag is reported when heights match."""
        use_verifier(heights=BlockHeights(sequencer=7, builder=7))
        result = runner.invoke(cli.main, ["get-blocks"])
        assert result.exit_code == 0
        assert "lag" not in result.output

    def test_unreachable_node(self, runner, use_verifier):
        """Test that an unreachable node exits 3."""
        use_verifier(error=RpcTransportError("connection refused"))
        result = runner.invoke(cli.main, ["get-blocks"])
        assert result.exit_code == 3
        assert "connection refused" in result.output
