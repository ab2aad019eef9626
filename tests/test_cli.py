"""
Unit tests for CLI commands.
"""

import json

from treelik.cli.main import app


class TestCLIHelp:
    """Test help messages and basic CLI functionality."""

    def test_main_help(self, cli_runner):
        result = cli_runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "pruning" in result.stdout
        assert "sse" in result.stdout
        assert "simmap" in result.stdout
        assert "simulate" in result.stdout

    def test_pruning_help(self, cli_runner):
        result = cli_runner.invoke(app, ["pruning", "--help"])
        assert result.exit_code == 0
        assert "--characters" in result.stdout or "-s" in result.stdout
        assert "--tree" in result.stdout or "-t" in result.stdout

    def test_simulate_help(self, cli_runner):
        result = cli_runner.invoke(app, ["simulate", "sse", "--help"])
        assert result.exit_code == 0
        assert "--root-age" in result.stdout


class TestCLIPruning:

    def test_text_output(self, cli_runner, tree_file, fasta_file):
        result = cli_runner.invoke(app, ["pruning", "-t", str(tree_file), "-s", str(fasta_file), "-q"])
        assert result.exit_code == 0
        assert "MODEL: Mk" in result.stdout
        assert "Log-likelihood:" in result.stdout

    def test_json_output(self, cli_runner, tree_file, fasta_file):
        result = cli_runner.invoke(app, [
            "pruning", "-t", str(tree_file), "-s", str(fasta_file), "--format", "json", "-q",
        ])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["n_sites"] == 4
        assert data["n_tips"] == 5
        assert data["n_states"] == 2
        assert data["lnL"] < 0
        assert abs(sum(data["site_lnL"]) - data["lnL"]) < 1e-8

    def test_no_compress_gives_same_likelihood(self, cli_runner, tree_file, fasta_file):
        args = ["pruning", "-t", str(tree_file), "-s", str(fasta_file), "--format", "json", "-q"]
        compressed = json.loads(cli_runner.invoke(app, args).stdout)
        full = json.loads(cli_runner.invoke(app, args + ["--no-compress"]).stdout)
        assert abs(compressed["lnL"] - full["lnL"]) < 1e-10
        assert full["n_patterns"] == 4

    def test_output_file(self, cli_runner, tree_file, fasta_file, tmp_path):
        output_file = tmp_path / "result.json"
        result = cli_runner.invoke(app, [
            "pruning", "-t", str(tree_file), "-s", str(fasta_file),
            "--format", "json", "-o", str(output_file), "-q",
        ])
        assert result.exit_code == 0
        assert json.loads(output_file.read_text())["n_tips"] == 5

    def test_taxon_mismatch(self, cli_runner, tree_file, tmp_path):
        fasta = tmp_path / "partial.fasta"
        fasta.write_text(">A\n0\n>B\n1\n>C\n0\n")
        result = cli_runner.invoke(app, ["pruning", "-t", str(tree_file), "-s", str(fasta)])
        assert result.exit_code == 1

    def test_missing_file(self, cli_runner, tree_file, tmp_path):
        result = cli_runner.invoke(app, [
            "pruning", "-t", str(tree_file), "-s", str(tmp_path / "nope.fasta"),
        ])
        assert result.exit_code != 0


class TestCLISSE:

    def test_json_output(self, cli_runner, tree_file, states_file):
        result = cli_runner.invoke(app, [
            "sse", "-t", str(tree_file), "-s", str(states_file),
            "--speciation", "1.0,2.0", "--extinction", "0.1,0.1",
            "--format", "json", "-q",
        ])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["n_tips"] == 5
        assert data["params"]["process_age"] == 3.0
        assert data["params"]["speciation_rates"] == [1.0, 2.0]

    def test_text_output_without_characters(self, cli_runner, tree_file):
        result = cli_runner.invoke(app, [
            "sse", "-t", str(tree_file), "--speciation", "1.0", "--extinction", "0.3", "--survival",
        ])
        assert result.exit_code == 0
        assert "MODEL: SSE" in result.stdout
        assert "condition = survival" in result.stdout

    def test_bad_rates(self, cli_runner, tree_file):
        result = cli_runner.invoke(app, [
            "sse", "-t", str(tree_file), "--speciation", "fast", "--extinction", "0.1",
        ])
        assert result.exit_code == 1

    def test_mismatched_rate_lengths(self, cli_runner, tree_file):
        result = cli_runner.invoke(app, [
            "sse", "-t", str(tree_file), "--speciation", "1,2", "--extinction", "0.1",
        ])
        assert result.exit_code == 1


class TestCLISimmap:

    def test_writes_one_map_per_sample(self, cli_runner, tree_file, states_file, tmp_path):
        output_file = tmp_path / "maps.tre"
        result = cli_runner.invoke(app, [
            "simmap", "-t", str(tree_file), "-s", str(states_file),
            "--speciation", "1.0,1.0", "--extinction", "0.1,0.1",
            "-n", "3", "--seed", "1", "-o", str(output_file), "-q",
        ])
        assert result.exit_code == 0
        lines = output_file.read_text().splitlines()
        assert len(lines) == 3
        assert all(line.endswith(";") for line in lines)

    def test_seed_is_reproducible(self, cli_runner, tree_file, states_file):
        args = [
            "simmap", "-t", str(tree_file), "-s", str(states_file),
            "--speciation", "1.0,1.0", "--extinction", "0.1,0.1", "--seed", "5", "-q",
        ]
        first = cli_runner.invoke(app, args)
        second = cli_runner.invoke(app, args)
        assert first.exit_code == 0
        assert first.stdout == second.stdout


class TestCLISimulate:

    def test_simulate_sse(self, cli_runner, tmp_path):
        output_file = tmp_path / "sim.nwk"
        result = cli_runner.invoke(app, [
            "simulate", "sse",
            "--speciation", "1.0,1.5", "--extinction", "0.1,0.1",
            "--root-age", "2", "-o", str(output_file), "--seed", "3", "-q",
        ])
        assert result.exit_code == 0
        assert output_file.read_text().strip().endswith(";")
        states = (tmp_path / "sim.states.tsv").read_text().splitlines()
        assert states[0] == "taxon\tstate"
        assert len(states) >= 3
        params = json.loads((tmp_path / "sim.params.json").read_text())
        assert params["seed"] == 3
        assert params["n_states"] == 2

    def test_replicates(self, cli_runner, tmp_path):
        output_file = tmp_path / "sim.nwk"
        result = cli_runner.invoke(app, [
            "simulate", "sse",
            "--speciation", "1,1", "--extinction", "0,0",
            "--root-age", "1.5", "-o", str(output_file), "-r", "2", "--seed", "1",
            "--no-output-params", "-q",
        ])
        assert result.exit_code == 0
        assert (tmp_path / "sim_rep1.nwk").exists()
        assert (tmp_path / "sim_rep2.states.tsv").exists()
        assert not (tmp_path / "sim.params.json").exists()

    def test_invalid_rates(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, [
            "simulate", "sse", "--speciation", "1,1", "--extinction", "0.1",
            "--root-age", "2", "-o", str(tmp_path / "sim.nwk"),
        ])
        assert result.exit_code == 1
