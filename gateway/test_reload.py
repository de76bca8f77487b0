import logging
from unittest.mock import Mock

import pytest

from gateway.config import parse_config
from gateway.errors import ConfigInvalid
from gateway.reload import BASE_LOG_LEVEL, ReloadController, ReloadResult, apply_debug, log_routes


@pytest.fixture(autouse=True)
def restore_log_level():
    yield
    apply_debug(False)


def _config(port=4000, host="127.0.0.1", listen_port=8080, debug=False):
    return parse_config(
        {
            "host": host,
            "port": listen_port,
            "debug": debug,
            "services": [
                {"path": "/api/users", "method": "GET", "host": "127.0.0.1", "port": port},
            ],
        }
    )


class TestInitialLoad:
    def test_loads_from_file(self, write_config, sample_config):
        controller = ReloadController(write_config(sample_config))

        assert len(controller.table) == 2
        assert controller.config.port == 8080
        assert controller.debug is False

    def test_invalid_file_raises(self, write_config):
        with pytest.raises(ConfigInvalid):
            ReloadController(write_config("{"))

    def test_initial_snapshot_skips_loader(self):
        loader = Mock()
        config = _config()

        controller = ReloadController("unused.json", loader=loader, initial=config)

        assert controller.config is config
        loader.assert_not_called()

    def test_force_debug(self):
        controller = ReloadController("unused.json", loader=Mock(return_value=_config()), force_debug=True)

        assert controller.debug is True
        assert logging.getLogger("uvicorn.error").level == logging.DEBUG


class TestReload:
    def test_success_swaps_snapshot(self):
        loader = Mock(side_effect=[_config(port=4000), _config(port=4100)])
        controller = ReloadController("config.json", loader=loader)
        old_table = controller.table

        result = controller.reload()

        assert result == ReloadResult(success=True, route_count=1)
        assert controller.table is not old_table
        assert controller.table.routes[0].backend_port == 4100
        assert loader.call_count == 2

    def test_failure_keeps_previous_snapshot(self, caplog):
        error = ConfigInvalid("config.json", "invalid JSON at line 1 column 2: Expecting value")
        loader = Mock(side_effect=[_config(), error])
        controller = ReloadController("config.json", loader=loader)
        old_table = controller.table

        with caplog.at_level(logging.ERROR, logger="uvicorn.error"):
            result = controller.reload()

        assert result.success is False
        assert result.error is error
        assert result.route_count == 1
        assert controller.table is old_table
        assert "invalid JSON" in caplog.text

    def test_undecodable_file_reports_failure(self, write_config, sample_config, tmp_path):
        path = write_config(sample_config)
        controller = ReloadController(path)
        old_table = controller.table

        (tmp_path / "config.json").write_bytes(b'{"host": "\xff"}')
        result = controller.reload()

        assert result.success is False
        assert isinstance(result.error, ConfigInvalid)
        assert "UTF-8" in result.error.reason
        assert controller.table is old_table

    def test_unexpected_loader_error_propagates(self):
        loader = Mock(side_effect=[_config(), RuntimeError("disk on fire")])
        controller = ReloadController("config.json", loader=loader)
        old_table = controller.table

        with pytest.raises(RuntimeError):
            controller.reload()

        assert controller.table is old_table

    def test_reads_file_again(self, write_config, sample_config):
        path = write_config(sample_config)
        controller = ReloadController(path)

        sample_config["services"].append({"prefix": "/img", "host": "127.0.0.1", "port": 5200})
        write_config(sample_config)
        result = controller.reload()

        assert result.success is True
        assert result.route_count == 3
        assert len(controller.table) == 3

    def test_listen_address_change_is_logged(self, caplog):
        loader = Mock(side_effect=[_config(listen_port=8080), _config(listen_port=9090)])
        controller = ReloadController("config.json", loader=loader)

        with caplog.at_level(logging.WARNING, logger="uvicorn.error"):
            controller.reload()

        assert "Listen address changed to 127.0.0.1:9090" in caplog.text
        assert controller.config.port == 9090

    def test_debug_flag_applied_on_reload(self):
        loader = Mock(side_effect=[_config(debug=False), _config(debug=True), _config(debug=False)])
        controller = ReloadController("config.json", loader=loader)
        gateway_logger = logging.getLogger("uvicorn.error")

        controller.reload()
        assert controller.debug is True
        assert gateway_logger.level == logging.DEBUG

        controller.reload()
        assert controller.debug is False
        assert gateway_logger.level == BASE_LOG_LEVEL


class TestLogRoutes:
    def test_lists_every_route(self, caplog, sample_config):
        config = parse_config(sample_config)

        with caplog.at_level(logging.INFO, logger="uvicorn.error"):
            log_routes(config)

        assert "Debug mode: OFF" in caplog.text
        assert "Loaded 2 services:" in caplog.text
        assert "1. path: GET /api/users => 127.0.0.1:4000" in caplog.text
        assert "2. prefix: /static => 127.0.0.1:5000" in caplog.text
