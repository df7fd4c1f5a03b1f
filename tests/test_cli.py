"""Tests for the cdrgraph-workers command line."""

import json

import pytest

from cdrgraph_workers.cli import run, setup_parser


@pytest.fixture
def calls_file(tmp_path, sample_csv):
    path = tmp_path / "calls.csv"
    path.write_bytes(sample_csv)
    return path


class TestParser:

    def test_network_arguments(self):
        args = setup_parser().parse_args([
            "network", "calls.csv", "--from", "2024-03-25T00:00:00+00:00",
            "--event-type", "sms", "--min-edge-weight", "2", "--limit-nodes", "10",
        ])
        assert args.files == ["calls.csv"]
        assert args.start.year == 2024
        assert args.end is None
        assert args.event_type == "sms"
        assert args.min_edge_weight == 2
        assert args.limit_nodes == 10

    def test_invalid_datetime_rejected(self):
        with pytest.raises(SystemExit):
            setup_parser().parse_args(["network", "calls.csv", "--from", "yesterday"])


class TestCommands:

    async def test_ingest_writes_json(self, calls_file, tmp_path):
        output = tmp_path / "result.json"
        code = await run(["ingest", str(calls_file), "--upload-id", "upload-1", "-o", str(output)])

        assert code == 0
        document = json.loads(output.read_text())
        assert document["uploadId"] == "upload-1"
        assert document["summary"]["totalInserted"] == 2
        assert "network" not in document

    async def test_ingest_with_network(self, calls_file, tmp_path):
        output = tmp_path / "result.json"
        code = await run(["ingest", str(calls_file), "--network", "-o", str(output)])

        assert code == 0
        network = json.loads(output.read_text())["network"]
        assert network["stats"]["nodeCount"] == 2
        assert network["graph"]["edges"][0]["id"] == "923001234567|923007654321"
        assert network["graph"]["edges"][0]["weight"] == 2

    async def test_network_prints_to_stdout(self, calls_file, capsys):
        code = await run(["network", str(calls_file), "--event-type", "sms"])

        assert code == 0
        document = json.loads(capsys.readouterr().out)
        assert document["filters"]["eventType"] == "sms"
        assert document["stats"]["edgeCount"] == 1

    async def test_network_with_date_only_range(self, calls_file, capsys):
        code = await run(["network", str(calls_file), "--from", "2024-03-01", "--to", "2024-03-26"])

        assert code == 0
        document = json.loads(capsys.readouterr().out)
        assert document["filters"]["from"] == "2024-03-01T00:00:00+05:00"
        # The 26/03 09:00 SMS falls after midnight local time and is excluded
        assert document["graph"]["edges"][0]["weight"] == 1

    async def test_missing_file(self, tmp_path, capsys):
        code = await run(["ingest", str(tmp_path / "missing.csv")])
        assert code == 1
        assert "does not exist" in capsys.readouterr().out

    async def test_no_command(self, capsys):
        assert await run([]) == 1
