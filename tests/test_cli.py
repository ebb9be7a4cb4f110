"""
stakepool Simulation CLI Tests
"""

import pytest
from click.testing import CliRunner

from stakepool.cli.simulate import cli, format_rate, format_units
from stakepool.constants import ONE_UNIT, SCALE


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stakepool.toml"
    path.write_text(
        "[stakepool.simulation]\n"
        "epochs = 3\n"
    )
    return str(path)


class TestFormatting:

    def test_format_units(self):
        assert format_units(1_500 * ONE_UNIT) == "1,500.0000"

    def test_format_rate(self):
        assert format_rate(SCALE // 100) == "100.00 bps"


class TestRunCommand:

    def test_run_completes(self, runner, config_file):
        result = runner.invoke(cli, ["run", "--config", config_file])
        assert result.exit_code == 0, result.output
        assert "Conservation held" in result.output

    def test_run_with_bounded_crank(self, runner, config_file):
        result = runner.invoke(cli, ["run", "--config", config_file, "--epochs", "2",
                                     "--max-steps", "1"])
        assert result.exit_code == 0, result.output
        assert "2 epochs" in result.output

    def test_invalid_config(self, runner, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[stakepool.fee_curve]\nkink_bps = 0\n")
        result = runner.invoke(cli, ["run", "--config", str(path)])
        assert result.exit_code != 0
        assert "Invalid configuration" in result.output


class TestFeeCurveCommand:

    def test_prints_curve(self, runner, config_file):
        result = runner.invoke(cli, ["fee-curve", "--config", config_file, "--points", "5"])
        assert result.exit_code == 0, result.output
        assert "5.00 bps" in result.output
        assert "300.00 bps" in result.output

    def test_too_few_points(self, runner, config_file):
        result = runner.invoke(cli, ["fee-curve", "--config", config_file, "--points", "1"])
        assert result.exit_code != 0


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output
