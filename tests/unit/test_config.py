"""
Unit tests for configuration and the command line.
"""

import pytest

from bpserver.config import ServerConfig, DEFAULT_ALLOWED_ORIGINS
from bpserver.__main__ import build_parser, config_from_args, main


ENV_VARS = (
    "HOST", "PORT", "HTTPS_PORT", "ENABLE_HTTPS", "SSL_KEY_FILE", "SSL_CERT_FILE",
    "ALLOWED_ORIGINS", "RATE_LIMIT_MAX", "RATE_LIMIT_WINDOW", "LOG_LEVEL", "LOG_FORMAT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.port == 3000
        assert config.https_port == 3443
        assert config.rate_limit_max == 100
        assert config.rate_limit_window == 900
        assert config.max_body_size == 10 * 1024
        assert config.allowed_origins == list(DEFAULT_ALLOWED_ORIGINS)

    def test_defaults_valid(self):
        ServerConfig().validate()

    @pytest.mark.parametrize("overrides", [
        {"port": 70000},
        {"https_port": -1},
        {"port": 3000, "https_port": 3000},
        {"min_workers": 0},
        {"min_workers": 8, "max_workers": 4},
        {"buffer_size": 10},
        {"timeout": 0},
        {"rate_limit_max": 0},
        {"rate_limit_window": 0},
        {"max_body_size": 0},
        {"log_format": "xml"},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_both_ports_zero_allowed(self):
        """Test port 0 on both listeners lets the OS pick two ports."""
        ServerConfig(port=0, https_port=0).validate()

    def test_from_env(self, clean_env):
        clean_env.setenv("PORT", "8080")
        clean_env.setenv("ENABLE_HTTPS", "false")
        clean_env.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")
        clean_env.setenv("RATE_LIMIT_MAX", "5")

        config = ServerConfig.from_env()

        assert config.port == 8080
        assert config.enable_https is False
        assert config.allowed_origins == ["https://a.example", "https://b.example"]
        assert config.rate_limit_max == 5

    def test_from_env_defaults(self, clean_env):
        config = ServerConfig.from_env()

        assert config.port == 3000
        assert config.enable_https is True
        assert config.key_file == "ssl/key.pem"


class TestCommandLine:
    """Tests for the bpserver command."""

    def test_flags_override_env(self, clean_env):
        clean_env.setenv("PORT", "8080")
        args = build_parser().parse_args([
            "--port", "9000", "--no-https",
            "--allow-origin", "https://one.example",
            "--allow-origin", "https://two.example",
            "--workers", "3",
        ])

        config = config_from_args(args)

        assert config.port == 9000
        assert config.enable_https is False
        assert config.allowed_origins == ["https://one.example", "https://two.example"]
        assert config.min_workers == 3
        assert config.max_workers == 6

    def test_unset_flags_keep_env(self, clean_env):
        clean_env.setenv("ENABLE_HTTPS", "false")

        config = config_from_args(build_parser().parse_args([]))

        assert config.enable_https is False
        assert config.port == 3000

    def test_invalid_config_exits_1(self, clean_env):
        assert main(["--port", "3443", "--https-port", "3443"]) == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["--version"])

        assert exc.value.code == 0
        assert "bpserver 1.0.0" in capsys.readouterr().out
