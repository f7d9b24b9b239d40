import logging

from replay_pipeline import create_app
from replay_pipeline.logging_setup import JsonRequestFormatter


def _json_handlers(name):
    logger = logging.getLogger(name)
    found = []
    while logger is not None:
        found += [h for h in logger.handlers if isinstance(h.formatter, JsonRequestFormatter)]
        if not logger.propagate:
            break
        logger = logger.parent
    return found


def test_package_loggers_reach_a_single_handler(tmp_path):
    create_app("testing", config_overrides={"RESULTS_DIR": str(tmp_path)})

    assert len(_json_handlers("replay_pipeline.services.processor")) == 1
    assert len(_json_handlers("replay_pipeline")) == 1


def test_package_log_line_is_printed_once(tmp_path, capsys):
    create_app("testing", config_overrides={"RESULTS_DIR": str(tmp_path)})

    logging.getLogger("replay_pipeline.services.processor").info("hello once")

    assert capsys.readouterr().err.count('"msg": "hello once"') == 1
