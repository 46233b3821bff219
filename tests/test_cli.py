import json

import pytest
import yaml

import main as cli
from conftest import FakeProofOracle, FakeVerifier


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    (tmp_path / "voters.json").write_text(json.dumps({"voters": ["0xA", "0xB", "0xC"]}))
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.dump({
        'registry_path': str(tmp_path / "voters.json"),
        'ledger_path': str(tmp_path / "votingResults.json"),
        'mapping_path': str(tmp_path / "voterMapping.json"),
        'log_dir': str(tmp_path / "logs"),
    }))

    original = cli.build_poll

    def fake_build_poll(config):
        poll = original(config)
        poll.prover = FakeProofOracle()
        poll.verifier = FakeVerifier()
        return poll

    monkeypatch.setattr(cli, "build_poll", fake_build_poll)
    return tmp_path, config_file


def run(config_file, *argv):
    with pytest.raises(SystemExit) as exc_info:
        cli.main(['--config', str(config_file), *argv])
    return exc_info.value.code


class TestCli:

    def test_full_session(self, workspace, capsys):
        tmp_path, config_file = workspace

        assert run(config_file, 'init-poll') == 0
        assert json.loads((tmp_path / "voterMapping.json").read_text()) == {"0xa": 0, "0xb": 1, "0xc": 2}

        ticket = tmp_path / "ticket.json"
        assert run(config_file, 'proof', '0xB', '1', '--output', str(ticket)) == 0
        assert run(config_file, 'vote', str(ticket)) == 0

        # second submission of the same ticket is refused
        assert run(config_file, 'vote', str(ticket)) == 1

        ledger = json.loads((tmp_path / "votingResults.json").read_text())
        assert ledger['votes'] == {'1': 1}
        assert len(ledger['spentTickets']) == 1

        assert run(config_file, 'results') == 0
        assert "Total Votes: 1" in capsys.readouterr().out

    def test_reset(self, workspace):
        tmp_path, config_file = workspace
        assert run(config_file, 'init-poll') == 0
        assert run(config_file, 'reset') == 0
        ledger = json.loads((tmp_path / "votingResults.json").read_text())
        assert ledger == {'votingID': None, 'votes': {}, 'spentTickets': [], 'state': 'open'}

    def test_corrupt_ledger_refuses_to_start(self, workspace):
        tmp_path, config_file = workspace
        (tmp_path / "votingResults.json").write_text("{oops")
        assert run(config_file, 'results') == 2

    def test_demo(self, workspace):
        _, config_file = workspace
        assert run(config_file, 'demo') == 0
