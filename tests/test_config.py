import pytest

from replaydesk.config import DEFAULT_SYMBOLS, ClientConfig
from replaydesk.service.http import DEFAULT_BASE_URL
from replaydesk.types import Mode


class TestDefaults:

    def test_defaults_match_dashboard(self):
        cfg = ClientConfig()
        assert cfg.base_url == DEFAULT_BASE_URL
        assert cfg.trading_account_id == 1
        assert cfg.training_account_id == 2
        assert cfg.symbol == "BTCUSDT"
        assert cfg.symbols == DEFAULT_SYMBOLS
        assert cfg.trading_period == 10.0
        assert cfg.training_period == 0.5
        assert (cfg.train_limit, cfg.train_offset) == (200, 500)
        assert cfg.max_markers == 30

    def test_mode_lookups(self):
        cfg = ClientConfig()
        assert cfg.account_for(Mode.TRADING) == 1
        assert cfg.account_for(Mode.TRAINING) == 2
        assert cfg.period_for(Mode.TRADING) == 10.0
        assert cfg.period_for(Mode.TRAINING) == 0.5


class TestFromRaw:

    def test_string_values_are_coerced(self):
        cfg = ClientConfig.from_raw(
            trading_account_id="7",
            training_period="0.25",
            train_limit="50",
            symbols="btcusdt, ethusdt,",
        )
        assert cfg.trading_account_id == 7
        assert cfg.training_period == 0.25
        assert cfg.train_limit == 50
        assert cfg.symbols == ("BTCUSDT", "ETHUSDT")

    def test_symbols_from_list(self):
        assert ClientConfig.from_raw(symbols=["solusdt"]).symbols == ("SOLUSDT",)

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="unknown config option"):
            ClientConfig.from_raw(speed=3)

    @pytest.mark.parametrize(
        "raw",
        [
            {"train_limit": "lots"},
            {"train_limit": True},
            {"trading_period": None},
            {"trading_period": False},
        ],
    )
    def test_bad_types_are_value_errors(self, raw):
        with pytest.raises(ValueError):
            ClientConfig.from_raw(**raw)

    @pytest.mark.parametrize(
        "raw, message",
        [
            ({"training_account_id": 1}, "must differ"),
            ({"candle_limit": 0}, "candle_limit"),
            ({"train_limit": 0}, "train_limit"),
            ({"snapshot_limit": -1}, "snapshot_limit"),
            ({"train_offset": -5}, "train_offset"),
            ({"max_markers": -1}, "max_markers"),
            ({"trading_period": 0}, "trading_period"),
            ({"training_period": "nan"}, "training_period"),
            ({"request_timeout": "inf"}, "request_timeout"),
            ({"symbols": " , "}, "symbols"),
            ({"base_url": "  "}, "base_url"),
        ],
    )
    def test_invalid_values_rejected(self, raw, message):
        with pytest.raises(ValueError, match=message):
            ClientConfig.from_raw(**raw)

    def test_zero_offset_and_markers_allowed(self):
        cfg = ClientConfig.from_raw(train_offset=0, max_markers=0)
        assert cfg.train_offset == 0
        assert cfg.max_markers == 0


class TestFromEnv:

    def test_reads_prefixed_variables(self):
        cfg = ClientConfig.from_env(
            {
                "REPLAYDESK_BASE_URL": "http://bot:9000",
                "REPLAYDESK_SYMBOL": "ETHUSDT",
                "REPLAYDESK_TRADING_PERIOD": "2.5",
                "UNRELATED": "x",
            }
        )
        assert cfg.base_url == "http://bot:9000"
        assert cfg.symbol == "ETHUSDT"
        assert cfg.trading_period == 2.5
        assert cfg.training_period == 0.5

    def test_empty_environment_gives_defaults(self):
        assert ClientConfig.from_env({}) == ClientConfig()

    def test_process_environment_is_default(self, monkeypatch):
        monkeypatch.setenv("REPLAYDESK_TRAIN_OFFSET", "0")
        assert ClientConfig.from_env().train_offset == 0

    def test_bad_environment_value(self):
        with pytest.raises(ValueError, match="train_limit"):
            ClientConfig.from_env({"REPLAYDESK_TRAIN_LIMIT": "many"})
