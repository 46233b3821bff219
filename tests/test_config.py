from pathlib import Path

import pytest
import yaml

from config.config import (
    RELAY_TOKEN_ENV,
    PollConfig,
    ProverConfig,
    SystemConfig,
    VerifierConfig,
    config_to_dict,
    load_config,
    save_config,
)


class TestConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.poll.vote_options == [0, 1]
        assert config.poll.tree_depth is None
        assert config.verifier.mode == "local"

    def test_round_trip(self, tmp_path):
        path = tmp_path / "config.yaml"
        config = SystemConfig(
            poll=PollConfig(tree_depth=10, vote_options=[0, 1, 2], max_concurrent_submissions=4),
            prover=ProverConfig(proof_timeout=30.0, max_proof_attempts=5),
            verifier=VerifierConfig(mode="relay", relay_url="https://relay.example"),
            ledger_path=Path("state/ledger.json"),
        )
        save_config(config, path)
        loaded = load_config(path)

        assert loaded.poll.tree_depth == 10
        assert loaded.poll.vote_options == [0, 1, 2]
        assert loaded.prover.max_proof_attempts == 5
        assert loaded.verifier.mode == "relay"
        assert loaded.ledger_path == Path("state/ledger.json")
        assert config_to_dict(loaded) == config_to_dict(config)

    def test_token_never_written(self, tmp_path):
        path = tmp_path / "config.yaml"
        save_config(SystemConfig(verifier=VerifierConfig(relay_token="secret")), path)
        assert "secret" not in path.read_text()

    def test_token_from_environment(self, monkeypatch):
        monkeypatch.setenv(RELAY_TOKEN_ENV, "from-env")
        assert VerifierConfig().relay_token == "from-env"

    def test_invalid_file_falls_back(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({'poll': {'vote_options': []}}))
        assert load_config(path).poll.vote_options == [0, 1]

    @pytest.mark.parametrize("kwargs", [
        {'tree_depth': -1},
        {'vote_options': []},
        {'vote_options': [-1]},
        {'max_concurrent_submissions': 0},
    ])
    def test_poll_config_validation(self, kwargs):
        with pytest.raises(ValueError):
            PollConfig(**kwargs)

    def test_unknown_verifier_mode(self):
        with pytest.raises(ValueError):
            VerifierConfig(mode="carrier-pigeon")
