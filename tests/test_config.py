from __future__ import annotations

import io
import logging

import pytest

from treasury_engine.config import EngineConfig, apply_env_overrides, config_from_mapping, load_config
from treasury_engine.errors import ConfigurationError
from treasury_engine.log import LOGGER_NAME, configure_logging


@pytest.fixture
def engine_logger():
    logger = logging.getLogger(LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_defaults_are_valid() -> None:
    cfg = EngineConfig()
    assert cfg.bond_immediate_bps == 3000
    assert cfg.recipient_timelock == 48 * 60 * 60
    assert cfg.reward_token != cfg.counter_token


def test_yaml_file_overrides_defaults(tmp_path) -> None:
    path = tmp_path / "engine.yaml"
    path.write_text("treasury: dao_safe\ncounter_decimals: 18\n", encoding="utf-8")
    cfg = load_config(path, environ={})
    assert cfg.treasury == "dao_safe"
    assert cfg.counter_decimals == 18
    assert cfg.reward_token == "XOM"


def test_empty_yaml_yields_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path, environ={}) == EngineConfig()


def test_unknown_keys_rejected() -> None:
    with pytest.raises(ConfigurationError) as exc:
        config_from_mapping({"treasury": "x", "tresury": "typo"})
    assert "tresury" in str(exc.value)
    with pytest.raises(ConfigurationError):
        config_from_mapping(["not", "a", "mapping"])


def test_env_overrides_clamp_integers() -> None:
    cfg = apply_env_overrides(
        EngineConfig(),
        {
            "TREASURY_ENGINE_BOND_IMMEDIATE_BPS": "20000",
            "TREASURY_ENGINE_SWAP_ADAPTER_FEE_BPS": "-5",
            "TREASURY_ENGINE_TREASURY": "  multisig  ",
            "TREASURY_ENGINE_STAKING_POOL": "   ",
        },
    )
    assert cfg.bond_immediate_bps == 10_000
    assert cfg.swap_adapter_fee_bps == 0
    assert cfg.treasury == "multisig"
    assert cfg.staking_pool == "staking_pool"


def test_env_override_must_parse() -> None:
    with pytest.raises(ConfigurationError) as exc:
        apply_env_overrides(EngineConfig(), {"TREASURY_ENGINE_COUNTER_DECIMALS": "six"})
    assert exc.value.reason == "invalid_config"


@pytest.mark.parametrize(
    "kwargs, reason",
    [
        ({"counter_decimals": 37}, "invalid_config"),
        ({"bond_immediate_bps": True}, "invalid_config"),
        ({"treasury": ""}, "zero_address"),
        ({"fee_vault_address": "auction_pool"}, "invalid_config"),
        ({"counter_token": "XOM"}, "same_token"),
    ],
)
def test_invalid_configs(kwargs, reason) -> None:
    with pytest.raises(ConfigurationError) as exc:
        EngineConfig(**kwargs)
    assert exc.value.reason == reason


def test_configure_logging_installs_one_handler(engine_logger) -> None:
    stream = io.StringIO()
    configure_logging("debug", stream=stream)
    configure_logging("INFO", stream=stream)
    ours = [h for h in engine_logger.handlers if getattr(h, "_treasury_engine", False)]
    assert len(ours) == 1
    assert engine_logger.level == logging.INFO

    logging.getLogger("treasury_engine.core.engine").info("hello")
    assert "treasury_engine.core.engine: hello" in stream.getvalue()


def test_configure_logging_reads_env(engine_logger, monkeypatch) -> None:
    monkeypatch.setenv("TREASURY_ENGINE_LOG_LEVEL", "error")
    configure_logging(stream=io.StringIO())
    assert engine_logger.level == logging.ERROR
    with pytest.raises(ValueError):
        configure_logging("chatty")
